from autofill.gateway.base import BackendGateway
from autofill.gateway.factory import build_gateway
from autofill.gateway.http import HttpGateway
from autofill.gateway.simulated import SimulatedGateway

__all__ = ["BackendGateway", "HttpGateway", "SimulatedGateway", "build_gateway"]
