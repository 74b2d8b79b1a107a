"""Cancellable scheduled work on the asyncio event loop.

Every timed wait in the client (poll backoff, simulated latency timelines,
progress ticks) goes through a Scheduler so it can be torn down as a unit.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Set, Union

logger = logging.getLogger(__name__)

Callback = Callable[[], Union[None, Awaitable[None]]]


class TaskHandle:
    """Handle to one scheduled unit of work.

    Cancelling before the delay elapses guarantees the callback never runs;
    cancelling while an async callback runs cancels its task.
    """

    def __init__(self, delay: float):
        self.delay = delay
        self._cancelled = False
        self._fired = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._on_release: Optional[Callable[["TaskHandle"], None]] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def active(self) -> bool:
        """True while the work is pending or still running."""
        if self._cancelled:
            return False
        if not self._fired:
            return True
        return self._task is not None and not self._task.done()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._release()

    def _release(self) -> None:
        if self._on_release is not None:
            self._on_release(self)
            self._on_release = None


class Scheduler:
    """Runs callbacks after a delay on the running event loop."""

    def __init__(self) -> None:
        self._handles: Set[TaskHandle] = set()

    def call_later(self, delay: float, callback: Callback) -> TaskHandle:
        loop = asyncio.get_running_loop()
        handle = TaskHandle(delay)
        handle._on_release = self._handles.discard
        handle._timer = loop.call_later(max(0.0, delay), self._fire, handle, callback)
        self._handles.add(handle)
        return handle

    def _fire(self, handle: TaskHandle, callback: Callback) -> None:
        if handle.cancelled:
            return
        handle._fired = True
        result = callback()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            handle._task = task
            task.add_done_callback(lambda t: self._finish(handle, t))
        else:
            handle._release()

    def _finish(self, handle: TaskHandle, task: asyncio.Future) -> None:
        handle._release()
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scheduled task failed: %s: %s", type(exc).__name__, exc)

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(max(0.0, delay))

    @property
    def pending_count(self) -> int:
        return len(self._handles)

    def cancel_all(self) -> None:
        for handle in list(self._handles):
            handle.cancel()
        self._handles.clear()
