"""Request-scoped access to the gateway mounted on the application."""

from fastapi import HTTPException, Request

from autofill.gateway.base import BackendGateway


def get_gateway(request: Request) -> BackendGateway:
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(status_code=503, detail="Backend gateway not initialized")
    return gateway
