"""Application context: every long-lived component, created and torn down together."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from autofill.config import Settings
from autofill.gateway.base import BackendGateway
from autofill.gateway.factory import build_gateway
from autofill.jobs.polling import PollingEngine, Visibility
from autofill.jobs.service import JobService
from autofill.jobs.store import JobStore
from autofill.scheduling import Scheduler

logger = logging.getLogger(__name__)


class AppContext:
    """Holds settings, store, gateway, scheduler, pollers and the job service."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        gateway: Optional[BackendGateway] = None,
        store: Optional[JobStore] = None,
        scheduler: Optional[Scheduler] = None,
        visibility: Optional[Visibility] = None,
    ):
        self.settings = settings or Settings()
        self.scheduler = scheduler or Scheduler()
        self.visibility = visibility or Visibility()
        self.store = store or JobStore(self.settings.jobs_storage_path)
        self.gateway = gateway or build_gateway(self.settings, self.scheduler)
        self.polling = PollingEngine(
            self.store,
            self.gateway,
            self.scheduler,
            visibility=self.visibility,
            settings=self.settings,
        )
        self.jobs = JobService(self.gateway, self.store, self.polling)

    async def start(self, background_refresh: bool = True) -> None:
        """Load persisted jobs and resume tracking any that were in flight."""
        self.store.load()
        logger.info(
            "Loaded %d job(s) from %s (%d pending)",
            len(self.store),
            self.store.path,
            len(self.store.pending_ids()),
        )
        if background_refresh:
            self.polling.start_background()

    async def stop(self) -> None:
        self.polling.shutdown()
        await self.gateway.aclose()
        self.scheduler.cancel_all()
        logger.info("Application context stopped")

    async def __aenter__(self) -> "AppContext":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()


@asynccontextmanager
async def app_context(
    settings: Optional[Settings] = None,
    background_refresh: bool = True,
    **components,
) -> AsyncIterator[AppContext]:
    """Startup and shutdown around a block of work."""
    ctx = AppContext(settings=settings, **components)
    await ctx.start(background_refresh=background_refresh)
    try:
        yield ctx
    finally:
        await ctx.stop()
