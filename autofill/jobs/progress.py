"""Synthetic progress for jobs whose backend only reports coarse status.

The value climbs quickly at first and slows near the top, reaching at most 99
while the job runs. It is kept roughly in line with a randomly drawn time
budget (40-55s) so it cannot race far ahead of elapsed time. Success floors
it at 99 and snaps to 100 shortly after; failure freezes it.
"""

import random
import time
from typing import Callable, Optional, Union

from autofill.jobs.models import PENDING_STATUSES, JobStatus
from autofill.scheduling import Scheduler, TaskHandle

CEILING = 99.0
FIRST_TICK_SECONDS = 0.7
TARGET_DURATION_SECONDS = (40.0, 55.0)
SUCCESS_SNAP_SECONDS = (0.38, 0.8)
# How far ahead of the time budget the value may get before it is damped
OVERSHOOT_MARGIN = 8.0
DAMPING = 0.35


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class ProgressEstimator:
    """Display-only 0-100 completion value derived from running/succeeded/failed."""

    def __init__(
        self,
        scheduler: Optional[Scheduler] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._scheduler = scheduler or Scheduler()
        self._rng = rng or random.Random()
        self._clock = clock
        self._value = 0.0
        self._running = False
        self._succeeded = False
        self._failed = False
        self._started_at = 0.0
        self._target = TARGET_DURATION_SECONDS[0]
        self._tick_handle: Optional[TaskHandle] = None
        self._snap_handle: Optional[TaskHandle] = None

    @property
    def value(self) -> float:
        return self._value

    @property
    def target_duration(self) -> float:
        return self._target

    def update_from_status(self, status: Union[JobStatus, str, None]) -> float:
        status = JobStatus(status) if status else None
        return self.update(
            running=status in PENDING_STATUSES,
            succeeded=status == JobStatus.SUCCEEDED,
            failed=status == JobStatus.FAILED,
        )

    def update(self, running: bool, succeeded: bool, failed: bool) -> float:
        """Feed the current phase; only transitions have an effect."""
        if running and not self._running:
            self._start_running()
        elif not running and self._running:
            self._cancel_tick()
        self._running = running

        if succeeded and not self._succeeded:
            self._value = max(self._value, CEILING)
            self._cancel_snap()
            delay = self._rng.uniform(*SUCCESS_SNAP_SECONDS)
            self._snap_handle = self._scheduler.call_later(delay, self._snap_to_complete)
        elif not succeeded and self._succeeded:
            self._cancel_snap()
        self._succeeded = succeeded
        self._failed = failed

        if not (running or succeeded or failed):
            self._cancel_snap()
            self._value = 0.0
        return self._value

    def _start_running(self) -> None:
        self._cancel_tick()
        self._value = 0.0
        self._started_at = self._clock()
        self._target = self._rng.uniform(*TARGET_DURATION_SECONDS)
        self._tick_handle = self._scheduler.call_later(FIRST_TICK_SECONDS, self._scheduled_tick)

    def _snap_to_complete(self) -> None:
        self._snap_handle = None
        if self._succeeded:
            self._value = 100.0

    def _scheduled_tick(self) -> None:
        self._tick_handle = None
        if not self._running or self._succeeded or self._failed:
            return
        self.tick()
        self._tick_handle = self._scheduler.call_later(self.next_tick_delay(), self._scheduled_tick)

    def tick(self) -> float:
        """Advance one step while running; otherwise return the value unchanged."""
        if not self._running or self._succeeded or self._failed:
            return self._value

        current = self._value
        if current >= CEILING:
            self._value = CEILING
            return self._value

        if current < 60:
            step = self._rng.uniform(2.0, 6.0)
        elif current < 90:
            step = self._rng.uniform(1.0, 3.0)
        else:
            step = self._rng.uniform(0.2, 1.0)
        candidate = current + step

        elapsed = self._clock() - self._started_at
        expected = _clamp(elapsed / self._target * CEILING, 0.0, CEILING)
        if candidate > expected + OVERSHOOT_MARGIN:
            candidate = current + (candidate - current) * DAMPING

        self._value = _clamp(candidate, 0.0, CEILING)
        return self._value

    def next_tick_delay(self) -> float:
        """Slower ticks as the value grows, plus up to half a second of jitter."""
        if self._value < 60:
            base = 0.9
        elif self._value < 90:
            base = 1.2
        else:
            base = 1.7
        return base + self._rng.uniform(0.0, 0.5)

    def _cancel_tick(self) -> None:
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None

    def _cancel_snap(self) -> None:
        if self._snap_handle is not None:
            self._snap_handle.cancel()
            self._snap_handle = None

    def close(self) -> None:
        self._cancel_tick()
        self._cancel_snap()
