"""Pick the gateway implementation from settings."""

import logging
import random
from typing import Optional

from autofill.config import Settings
from autofill.gateway.base import BackendGateway
from autofill.gateway.http import HttpGateway
from autofill.gateway.simulated import SimulatedGateway
from autofill.scheduling import Scheduler
from autofill.simulator.backend import SimulatedBackend
from autofill.simulator.latency import LatencyModel

logger = logging.getLogger(__name__)


def build_gateway(settings: Settings, scheduler: Optional[Scheduler] = None) -> BackendGateway:
    """Simulated backend when use_mock is set, otherwise the HTTP service."""
    if settings.use_mock:
        rng = random.Random(settings.mock_seed)
        logger.info("Using simulated backend (failure rate %.2f)", settings.mock_failure_rate)
        return SimulatedGateway(
            backend=SimulatedBackend(failure_rate=settings.mock_failure_rate, rng=rng),
            scheduler=scheduler,
            latency=LatencyModel(rng=rng),
        )

    logger.info("Using backend at %s", settings.api_root)
    return HttpGateway.from_settings(settings)
