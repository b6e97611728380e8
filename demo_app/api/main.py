"""
FastAPI application exposing the fault-injection routes.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request

from ..config import Settings
from ..faults.handlers import FaultHandlers
from ..observability.instrumentation import Telemetry
from ..traffic.generator import TrafficGenerator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager: the traffic generator lives as long as the server."""
    generator: Optional[TrafficGenerator] = app.state.generator
    if generator is not None:
        generator.start()
        logger.info("Traffic generator started")

    yield

    if generator is not None:
        generator.stop(timeout=app.state.settings.generator.request_timeout_s)
    logger.info("Application shutdown complete")


def create_app(settings: Settings, telemetry: Telemetry, with_traffic: Optional[bool] = None) -> FastAPI:
    """
    Build the app around an existing telemetry context.

    Args:
        settings: Loaded configuration
        telemetry: Emitters/tracer shared with the traffic generator
        with_traffic: Override GeneratorConfig.enabled

    Returns:
        Instrumented FastAPI application
    """
    from .routes import router

    app = FastAPI(
        title="Correlated Telemetry Demo",
        description="Fault-injection endpoints producing joinable traces, metrics, logs and profiles",
        version=settings.service.version,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.telemetry = telemetry
    app.state.faults = FaultHandlers(telemetry.tracer, settings.faults)

    if with_traffic is None:
        with_traffic = settings.generator.enabled
    app.state.generator = (
        TrafficGenerator(telemetry, settings.generator, iterations=settings.faults.slow_iterations)
        if with_traffic
        else None
    )

    app.include_router(router)
    telemetry.instrument_app(app)
    return app


# Dependency injection
def get_faults(request: Request) -> FaultHandlers:
    faults = getattr(request.app.state, "faults", None)
    if faults is None:
        raise HTTPException(status_code=503, detail="Fault handlers not initialized")
    return faults


def get_telemetry(request: Request) -> Telemetry:
    return request.app.state.telemetry
