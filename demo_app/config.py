"""
Configuration management for the telemetry demo service.
Handles environment variables, collector endpoints, and fault-injection tunables.
"""

import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class ServiceConfig:
    """Static identity attached to every signal"""
    name: str = os.getenv("SERVICE_NAME", "demo-app")
    version: str = os.getenv("SERVICE_VERSION", "1.0.0")
    job: str = os.getenv("JOB_NAME", "demo-app")
    environment: str = os.getenv("DEPLOY_ENV", "dev")


@dataclass
class TelemetryConfig:
    """Collector and profiling endpoints"""
    # OTLP/HTTP base URL; /v1/traces, /v1/metrics and /v1/logs are appended per signal
    otlp_endpoint: str = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4318")
    pyroscope_address: str = os.getenv("PYROSCOPE_SERVER_ADDRESS", "http://localhost:4040")
    profiling_enabled: bool = _env_bool("PYROSCOPE_ENABLED", "true")

    metric_export_interval_ms: int = int(os.getenv("METRIC_EXPORT_INTERVAL_MS", "10000"))
    shutdown_timeout_ms: int = int(os.getenv("SHUTDOWN_TIMEOUT_MS", "5000"))


@dataclass
class FaultConfig:
    """Workload sizes for the three failure/performance signatures"""
    # /hello
    hello_failure_rate: float = float(os.getenv("HELLO_FAILURE_RATE", "0.05"))
    hello_max_delay_ms: int = int(os.getenv("HELLO_MAX_DELAY_MS", "50"))

    # /slow and /cpu
    slow_iterations: int = int(os.getenv("SLOW_ITERATIONS", "5000"))
    cpu_burn_max_ms: int = int(os.getenv("CPU_BURN_MAX_MS", "30000"))

    # /alloc: 256KB x 200 = ~50MB per request, at most 20 batches (~1GB) retained
    chunk_size: int = int(os.getenv("ALLOC_CHUNK_SIZE", str(256 * 1024)))
    chunk_count: int = int(os.getenv("ALLOC_CHUNK_COUNT", "200"))
    max_retained: int = int(os.getenv("ALLOC_MAX_RETAINED", "20"))

    @property
    def block_size(self) -> int:
        return self.chunk_size * self.chunk_count

    @property
    def retention_limit_bytes(self) -> int:
        return self.block_size * self.max_retained


@dataclass
class GeneratorConfig:
    """Self-driving traffic loop against the CPU-bound route"""
    enabled: bool = _env_bool("TRAFFIC_ENABLED", "true")
    target_url: str = os.getenv("TRAFFIC_TARGET_URL", "http://localhost:8080")
    route: str = "/slow"
    min_interval_ms: int = int(os.getenv("TRAFFIC_MIN_INTERVAL_MS", "100"))
    max_interval_ms: int = int(os.getenv("TRAFFIC_MAX_INTERVAL_MS", "600"))
    request_timeout_s: float = float(os.getenv("TRAFFIC_TIMEOUT_S", "30"))


@dataclass
class ServerConfig:
    """HTTP listener"""
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8080"))


@dataclass
class Settings:
    """Master configuration"""
    service: ServiceConfig = field(default_factory=ServiceConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    faults: FaultConfig = field(default_factory=FaultConfig)
    generator: GeneratorConfig = field(default_factory=GeneratorConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


def validate_settings(settings: Settings) -> list[str]:
    """Validate configuration and return list of warnings/errors"""
    issues = []

    faults = settings.faults
    if faults.max_retained < 1:
        issues.append("ERROR: ALLOC_MAX_RETAINED must be at least 1")
    if faults.chunk_size < 1 or faults.chunk_count < 1:
        issues.append("ERROR: ALLOC_CHUNK_SIZE and ALLOC_CHUNK_COUNT must be positive")
    if not 0.0 <= faults.hello_failure_rate <= 1.0:
        issues.append("ERROR: HELLO_FAILURE_RATE must be between 0 and 1")
    if faults.slow_iterations < 1:
        issues.append("ERROR: SLOW_ITERATIONS must be positive")

    generator = settings.generator
    if generator.min_interval_ms < 0 or generator.max_interval_ms < generator.min_interval_ms:
        issues.append("ERROR: traffic interval bounds must satisfy 0 <= min <= max")
    if generator.request_timeout_s <= 0:
        issues.append("ERROR: TRAFFIC_TIMEOUT_S must be positive")

    # ~1GB nominal at the defaults; anything above 4GB is likely to get the container killed
    if faults.retention_limit_bytes > 4 * 1024 ** 3:
        issues.append("WARNING: retention buffer may hold more than 4GB")

    if not settings.telemetry.otlp_endpoint.startswith(("http://", "https://")):
        issues.append("WARNING: OTEL_EXPORTER_OTLP_ENDPOINT has no http(s) scheme; exports will fail")

    return issues
