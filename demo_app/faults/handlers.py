"""
Fault-injection handlers.

Business logic for the demo routes. The HTTP layer (FastAPI + its OTel
instrumentation) already opens the top-level server span; each handler here
opens one named child span around its workload so the workload's profile can
be isolated from routing and serialization overhead.

| Route  | Child span             | Signature                                   |
|--------|------------------------|---------------------------------------------|
| /hello | -                      | 0-50ms sleep, ~5% injected 500              |
| /slow  | slow_business_logic    | long, flat CPU profile in the regex engine  |
| /cpu   | cpu_business_logic     | CPU burn for a wall-clock duration          |
| /alloc | alloc_business_logic   | stepped RSS growth, plateau at the cap      |
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Optional

from opentelemetry import trace

from ..config import FaultConfig
from .retention import RetentionBuffer
from .workloads import allocate_block, burn_cpu, check_email

logger = logging.getLogger(__name__)


@dataclass
class AllocResult:
    allocated_bytes: int
    held: bool
    retained_blocks: int
    retained_bytes: int
    evicted: int


class FaultHandlers:
    """
    Holds the retention buffer and the random source shared by all requests.

    Workload completion is never a failure. The only failure is the injected
    500 on /hello, which callers must not retry.
    """

    def __init__(
        self,
        tracer: trace.Tracer,
        config: FaultConfig,
        buffer: Optional[RetentionBuffer] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.tracer = tracer
        self.config = config
        self.buffer = buffer or RetentionBuffer(config.max_retained)
        self.rng = rng or random.Random()

    def hello(self) -> bool:
        """Fast path. Returns False when the injected failure fires."""
        time.sleep(self.rng.uniform(0, self.config.hello_max_delay_ms) / 1000.0)
        return self.rng.random() >= self.config.hello_failure_rate

    def slow(self, iterations: Optional[int] = None) -> bool:
        if iterations is None:
            iterations = self.config.slow_iterations
        iterations = max(1, iterations)
        with self.tracer.start_as_current_span("slow_business_logic") as span:
            span.set_attribute("demo.iterations", iterations)
            matched = check_email(iterations)
            span.set_attribute("demo.matched", matched)
        return matched

    def cpu(self, duration_ms: int) -> int:
        duration_ms = min(max(1, duration_ms), self.config.cpu_burn_max_ms)
        with self.tracer.start_as_current_span("cpu_business_logic") as span:
            span.set_attribute("demo.duration_ms", duration_ms)
            attempts = burn_cpu(duration_ms)
            span.set_attribute("demo.attempts", attempts)
        return attempts

    def alloc(self, hold: bool = True, clear: bool = False) -> AllocResult:
        with self.tracer.start_as_current_span("alloc_business_logic") as span:
            if clear:
                dropped = self.buffer.clear()
                logger.info(f"Retention buffer cleared ({dropped} blocks)")

            # Evict first so peak retention stays at capacity, not capacity + 1
            evicted = self.buffer.make_room() if hold else 0
            block = allocate_block(self.config.chunk_size, self.config.chunk_count)
            if hold:
                state = self.buffer.retain(block)
                evicted += state.evicted
            else:
                state = self.buffer.snapshot()

            result = AllocResult(
                allocated_bytes=len(block),
                held=hold,
                retained_blocks=state.blocks,
                retained_bytes=state.nbytes,
                evicted=evicted,
            )
            span.set_attributes({
                "demo.allocated_bytes": result.allocated_bytes,
                "demo.retained_blocks": result.retained_blocks,
                "demo.evicted_blocks": evicted,
            })
        return result
