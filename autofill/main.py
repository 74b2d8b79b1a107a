"""Simulated fill-template service - FastAPI application.

Serves the same /api/v1 contract as the real backend, answered by a
SimulatedGateway, so the HTTP client can be exercised end to end:

    uvicorn autofill.main:app --port 8000
"""

import logging
import random
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from autofill import __version__
from autofill.api.v1.router import v1_router
from autofill.config import Settings
from autofill.errors import BackendError, GatewayError
from autofill.gateway.base import BackendGateway
from autofill.gateway.simulated import SimulatedGateway
from autofill.logger import configure_logging
from autofill.scheduling import Scheduler
from autofill.simulator.backend import SimulatedBackend
from autofill.simulator.latency import LatencyModel

logger = logging.getLogger(__name__)


def _simulated_gateway(settings: Settings) -> SimulatedGateway:
    rng = random.Random(settings.mock_seed)
    return SimulatedGateway(
        backend=SimulatedBackend(failure_rate=settings.mock_failure_rate, rng=rng),
        scheduler=Scheduler(),
        # Network latency is real here; the service answers immediately
        latency=LatencyModel.none(),
    )


def create_app(
    gateway: Optional[BackendGateway] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the service around a gateway (a fresh simulated one by default)."""
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        owns_gateway = getattr(app.state, "gateway", None) is None
        if owns_gateway:
            app.state.gateway = _simulated_gateway(settings)
        logger.info("Simulated service ready (failure rate %.2f)", settings.mock_failure_rate)
        yield
        if owns_gateway:
            await app.state.gateway.aclose()
            app.state.gateway = None
        logger.info("Simulated service stopped")

    app = FastAPI(
        title="Autofill Simulated Service",
        description="In-process stand-in for the fill-template job backend",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.gateway = gateway

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        code = exc.code if isinstance(exc, BackendError) else None
        return JSONResponse(
            status_code=exc.status_code or 502,
            content={"error": {"code": code or "BACKEND_ERROR", "message": exc.message}},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(v1_router)
    return app


app = create_app()
