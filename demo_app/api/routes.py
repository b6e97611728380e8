"""
API routes for the fault-injection demo.

Handlers are plain `def` functions: FastAPI runs them in its worker thread
pool, so the CPU-bound ones never block the event loop and their child spans
are tagged on the worker thread that actually burns the CPU.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from ..faults.handlers import FaultHandlers
from ..observability.instrumentation import Telemetry
from .main import get_faults, get_telemetry

router = APIRouter()


class HealthResponse(BaseModel):
    """Liveness plus current retention buffer usage."""
    status: str
    timestamp: datetime
    service: str
    version: str
    retained_blocks: int
    retained_bytes: int
    retention_capacity: int


@router.get("/hello", response_class=PlainTextResponse)
def hello(faults: FaultHandlers = Depends(get_faults)):
    """Fast path: small random delay, ~5% injected 500."""
    if not faults.hello():
        return Response(status_code=500)
    return "Hello World"


@router.get("/slow", response_class=PlainTextResponse)
def slow(
    loops: Optional[int] = Query(None, description="Regex iterations (default SLOW_ITERATIONS)"),
    faults: FaultHandlers = Depends(get_faults),
):
    """CPU hot path: repeated adversarial regex match in `slow_business_logic`."""
    faults.slow(loops)
    return "Slow endpoint finished"


@router.get("/cpu", response_class=PlainTextResponse)
def cpu(
    ms: int = Query(3000, description="Wall-clock milliseconds to burn"),
    faults: FaultHandlers = Depends(get_faults),
):
    """CPU burn for a fixed duration in `cpu_business_logic`."""
    faults.cpu(ms)
    return "CPU endpoint finished"


@router.get("/alloc", response_class=PlainTextResponse)
def alloc(
    hold: bool = Query(True, description="Keep the block in the retention buffer"),
    clear: bool = Query(False, description="Drop retained blocks first"),
    faults: FaultHandlers = Depends(get_faults),
):
    """Memory path: allocate chunk_size x chunk_count bytes in `alloc_business_logic`."""
    faults.alloc(hold=hold, clear=clear)
    return "Alloc endpoint finished"


@router.get("/health", response_model=HealthResponse)
def health(request: Request, faults: FaultHandlers = Depends(get_faults)):
    """Service health and retention buffer usage."""
    settings = request.app.state.settings
    state = faults.buffer.snapshot()
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        service=settings.service.name,
        version=settings.service.version,
        retained_blocks=state.blocks,
        retained_bytes=state.nbytes,
        retention_capacity=faults.buffer.capacity,
    )


@router.get("/metrics")
def metrics(telemetry: Telemetry = Depends(get_telemetry)):
    """Prometheus exposition of the request counter and duration histogram."""
    return Response(generate_latest(telemetry.metrics.registry), media_type=CONTENT_TYPE_LATEST)
