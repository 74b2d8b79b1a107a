"""
Shared test fixtures.

Provides: a manual scheduler (timers fire only when a test says so), a stub
gateway with scripted job statuses, settings pointing at a temp directory.
"""

import heapq
import inspect
import itertools
from typing import Dict, List, Optional

import pytest

from autofill.config import Settings
from autofill.errors import NotFoundError, TransportError
from autofill.gateway.base import BackendGateway
from autofill.jobs.models import (
    DocumentSet,
    JobSnapshot,
    JobStatus,
    JobSubmission,
    TemplateInfo,
)
from autofill.jobs.store import JobStore
from autofill.scheduling import Scheduler, TaskHandle


class ManualScheduler(Scheduler):
    """Scheduler driven by the test: virtual time, explicit firing."""

    def __init__(self) -> None:
        super().__init__()
        self.now = 0.0
        self.delays: List[float] = []
        self._queue: list = []
        self._seq = itertools.count()

    def call_later(self, delay, callback) -> TaskHandle:
        handle = TaskHandle(delay)
        handle._on_release = self._handles.discard
        self._handles.add(handle)
        self.delays.append(delay)
        heapq.heappush(self._queue, (self.now + delay, next(self._seq), handle, callback))
        return handle

    @property
    def pending(self) -> List[TaskHandle]:
        return [entry[2] for entry in sorted(self._queue) if not entry[2].cancelled]

    async def run_next(self) -> bool:
        """Fire the earliest live timer. Returns False when none is left."""
        while self._queue:
            due, _, handle, callback = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.now = max(self.now, due)
            handle._fired = True
            result = callback()
            if inspect.isawaitable(result):
                await result
            handle._release()
            return True
        return False

    async def run_until_idle(self, limit: int = 1000) -> int:
        fired = 0
        while fired < limit and await self.run_next():
            fired += 1
        return fired

    async def sleep(self, delay: float) -> None:
        self.now += max(0.0, delay)


class StubGateway(BackendGateway):
    """Gateway whose job statuses are set directly by the test."""

    def __init__(self) -> None:
        self.jobs: Dict[str, JobSnapshot] = {}
        self.get_calls: List[str] = []
        self.created: list = []
        self.fail_next: int = 0
        self.closed = False

    def set_status(self, job_id: str, status: JobStatus, **fields) -> JobSnapshot:
        snapshot = JobSnapshot(job_id=job_id, status=status, **fields)
        self.jobs[job_id] = snapshot
        return snapshot

    async def health(self):
        return {"ok": True}

    async def create_document_set(self, files, name=None):
        return DocumentSet(docset_id=f"ds_{len(files)}", name=name)

    async def upload_template(self, file, name=None):
        return TemplateInfo(template_id="tp_stub", name=name or file.name, size=len(file.content))

    async def create_job(self, request):
        job_id = f"job_{len(self.created) + 1}"
        self.created.append(request)
        self.set_status(job_id, JobStatus.QUEUED)
        return JobSubmission(job_id=job_id, status=JobStatus.QUEUED)

    async def get_job(self, job_id: str) -> JobSnapshot:
        self.get_calls.append(job_id)
        if self.fail_next:
            self.fail_next -= 1
            raise TransportError("connection reset")
        snapshot: Optional[JobSnapshot] = self.jobs.get(job_id)
        if snapshot is None:
            raise NotFoundError(f"Job {job_id} not found")
        return snapshot.model_copy(deep=True)

    async def download_output(self, job_id: str, index: int = 0) -> bytes:
        return f"content of {job_id}#{index}".encode()

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        storage_dir=str(tmp_path),
        use_mock=True,
        mock_seed=7,
        _env_file=None,
    )


@pytest.fixture
def store(tmp_path) -> JobStore:
    return JobStore(tmp_path / "jobs.json")
