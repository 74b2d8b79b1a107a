"""Health check endpoint."""

import platform
import sys

from fastapi import APIRouter, Depends

from autofill import __version__
from autofill.api.v1.deps import get_gateway
from autofill.gateway.base import BackendGateway

router = APIRouter()


@router.get("/health")
async def health_check(gateway: BackendGateway = Depends(get_gateway)):
    """Service health plus the gateway's own health payload."""
    backend = await gateway.health()
    return {
        "status": "healthy",
        "ok": bool(backend.get("ok", True)),
        "backend": backend,
        "version": __version__,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
