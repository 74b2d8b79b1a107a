"""Status polling with backoff and visibility handling.

A JobPoller follows a single job until it reaches a terminal status. The
BackgroundRefresher keeps every other queued/running job in the store
eventually consistent by fetching one of them per round.
"""

import logging
from typing import Callable, Dict, List, Optional, Sequence

from autofill.config import Settings
from autofill.gateway.base import BackendGateway
from autofill.jobs.models import JobRecord, JobSnapshot
from autofill.jobs.store import JobStore
from autofill.scheduling import Scheduler, TaskHandle

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF = (1.0, 2.0, 3.0, 5.0, 8.0, 10.0)


class Visibility:
    """Whether the host (page, terminal, app window) is in the foreground.

    Read on every scheduling decision, never cached by the pollers.
    """

    def __init__(self, hidden: bool = False):
        self.hidden = hidden

    def is_hidden(self) -> bool:
        return self.hidden


class JobPoller:
    """Polls one job with exponential backoff until it is terminal or cancelled."""

    def __init__(
        self,
        gateway: BackendGateway,
        job_id: str,
        on_update: Callable[[JobSnapshot], None],
        scheduler: Scheduler,
        visibility: Optional[Visibility] = None,
        backoff: Sequence[float] = DEFAULT_BACKOFF,
        initial_delay: float = 0.35,
    ):
        if not backoff:
            raise ValueError("backoff schedule must not be empty")
        self.job_id = job_id
        self._gateway = gateway
        self._on_update = on_update
        self._scheduler = scheduler
        self._visibility = visibility or Visibility()
        self._backoff = tuple(backoff)
        self._initial_delay = initial_delay
        self._index = 0
        self._handle: Optional[TaskHandle] = None
        self._stopped = False
        self._finished = False
        self.attempts = 0

    @property
    def running(self) -> bool:
        return not self._stopped and not self._finished

    @property
    def finished(self) -> bool:
        """True once a terminal status was observed."""
        return self._finished

    @property
    def backoff_index(self) -> int:
        return self._index

    def next_wait(self) -> float:
        """Delay before the next poll given the current backoff position."""
        if self._visibility.is_hidden():
            return max(self._backoff)
        return self._backoff[self._index]

    def start(self) -> "JobPoller":
        if self._handle is None and self.running:
            self._index = 0
            self._handle = self._scheduler.call_later(self._initial_delay, self._poll)
        return self

    def cancel(self) -> None:
        """Stop polling; a poll already scheduled will not fire."""
        self._stopped = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def _poll(self) -> None:
        if self._stopped:
            return
        self.attempts += 1
        try:
            snapshot = await self._gateway.get_job(self.job_id)
        except Exception as exc:
            # Transient; the next attempt will catch up
            logger.debug("Poll of %s failed: %s", self.job_id, exc)
        else:
            if self._stopped:
                return
            try:
                self._on_update(snapshot)
            except Exception as exc:
                # Keep polling; a later snapshot gets another chance to land
                logger.warning("Applying status of %s failed: %s", self.job_id, exc)
            else:
                if snapshot.is_terminal:
                    self._finished = True
                    self._handle = None
                    logger.debug("Job %s reached %s", self.job_id, snapshot.status.value)
                    return

        if self._stopped:
            return
        wait = self.next_wait()
        self._index = min(self._index + 1, len(self._backoff) - 1)
        self._handle = self._scheduler.call_later(wait, self._poll)


class BackgroundRefresher:
    """Round-robin refresh of every non-terminal job in the store."""

    def __init__(
        self,
        store: JobStore,
        gateway: BackendGateway,
        scheduler: Scheduler,
        visibility: Optional[Visibility] = None,
        interval: float = 5.0,
        hidden_interval: float = 10.0,
        initial_delay: float = 1.2,
    ):
        self._store = store
        self._gateway = gateway
        self._scheduler = scheduler
        self._visibility = visibility or Visibility()
        self._interval = interval
        self._hidden_interval = hidden_interval
        self._initial_delay = initial_delay
        self._cursor = 0
        self._handle: Optional[TaskHandle] = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._handle is not None and not self._stopped

    def next_wait(self) -> float:
        return self._hidden_interval if self._visibility.is_hidden() else self._interval

    def start(self) -> "BackgroundRefresher":
        if self._handle is None:
            self._stopped = False
            self._handle = self._scheduler.call_later(self._initial_delay, self._round)
        return self

    def stop(self) -> None:
        self._stopped = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def _round(self) -> None:
        if self._stopped:
            return
        # Re-read every round so jobs added or finished meanwhile are picked up
        pending = self._store.pending_ids()
        if pending:
            job_id = pending[self._cursor % len(pending)]
            self._cursor += 1
            try:
                snapshot = await self._gateway.get_job(job_id)
            except Exception as exc:
                logger.debug("Background refresh of %s failed: %s", job_id, exc)
            else:
                if not self._stopped:
                    try:
                        self._store.upsert(snapshot_partial(snapshot))
                    except Exception as exc:
                        logger.warning("Storing refreshed %s failed: %s", job_id, exc)

        if not self._stopped:
            self._handle = self._scheduler.call_later(self.next_wait(), self._round)


def snapshot_partial(snapshot: JobSnapshot) -> Dict:
    """Store partial for a fetched status, keeping the raw payload as last_response."""
    partial = snapshot.model_dump(exclude_unset=True)
    partial["job_id"] = snapshot.job_id
    partial["last_response"] = snapshot.model_dump(mode="json")
    return partial


class PollingEngine:
    """Creates pollers whose results always flow through the job store."""

    def __init__(
        self,
        store: JobStore,
        gateway: BackendGateway,
        scheduler: Scheduler,
        visibility: Optional[Visibility] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or Settings()
        self._store = store
        self._gateway = gateway
        self._scheduler = scheduler
        self.visibility = visibility or Visibility()
        self._settings = settings
        self._pollers: Dict[str, JobPoller] = {}
        self._background: Optional[BackgroundRefresher] = None

    @property
    def watching(self) -> List[str]:
        """Ids of jobs with a live poller."""
        return list(self._pollers)

    def watch(
        self,
        job_id: str,
        on_update: Optional[Callable[[JobRecord], None]] = None,
        enabled: bool = True,
    ) -> Optional[JobPoller]:
        """Start following a job. Returns None when polling is disabled."""
        existing = self._pollers.pop(job_id, None)
        if existing is not None:
            existing.cancel()
        if not enabled or not job_id:
            return None

        def apply(snapshot: JobSnapshot) -> None:
            record = self._store.upsert(snapshot_partial(snapshot))
            if on_update is not None:
                on_update(record)
            if snapshot.is_terminal and self._pollers.get(job_id) is poller:
                del self._pollers[job_id]

        poller = JobPoller(
            self._gateway,
            job_id,
            apply,
            scheduler=self._scheduler,
            visibility=self.visibility,
            backoff=self._settings.poll_backoff_seconds,
            initial_delay=self._settings.poll_initial_delay_seconds,
        )
        self._pollers[job_id] = poller
        return poller.start()

    def unwatch(self, job_id: str) -> None:
        poller = self._pollers.pop(job_id, None)
        if poller is not None:
            poller.cancel()

    def start_background(self) -> BackgroundRefresher:
        if self._background is None:
            self._background = BackgroundRefresher(
                self._store,
                self._gateway,
                self._scheduler,
                visibility=self.visibility,
                interval=self._settings.background_interval_seconds,
                hidden_interval=self._settings.background_hidden_interval_seconds,
                initial_delay=self._settings.background_initial_delay_seconds,
            )
        return self._background.start()

    def shutdown(self) -> None:
        for poller in self._pollers.values():
            poller.cancel()
        self._pollers.clear()
        if self._background is not None:
            self._background.stop()
            self._background = None
