"""Gateway backed by the in-process simulated service."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from autofill.gateway.base import BackendGateway
from autofill.jobs.models import (
    DocumentSet,
    FileUpload,
    FillJobRequest,
    JobSnapshot,
    JobSubmission,
    TemplateInfo,
    utcnow,
)
from autofill.scheduling import Scheduler, TaskHandle
from autofill.simulator.backend import SimulatedBackend
from autofill.simulator.latency import LatencyModel

logger = logging.getLogger(__name__)


class SimulatedGateway(BackendGateway):
    """Same contract as HttpGateway, answered by a SimulatedBackend.

    Each call waits a randomized latency first. Job progress is driven by
    scheduled `advance` calls at the delays drawn when the job was created.
    """

    def __init__(
        self,
        backend: Optional[SimulatedBackend] = None,
        scheduler: Optional[Scheduler] = None,
        latency: Optional[LatencyModel] = None,
    ):
        self.backend = backend or SimulatedBackend()
        self._scheduler = scheduler or Scheduler()
        self._latency = latency or LatencyModel()
        self._timers: Dict[str, TaskHandle] = {}

    async def _delay(self, operation: str) -> None:
        await self._scheduler.sleep(self._latency.sample(operation))

    async def health(self) -> Dict[str, Any]:
        await self._delay("health")
        return {"ok": True, "time": utcnow().isoformat(), "mode": "simulated"}

    async def create_document_set(
        self, files: Sequence[FileUpload], name: Optional[str] = None
    ) -> DocumentSet:
        await self._delay("create_document_set")
        return self.backend.create_document_set([f.meta() for f in files], name=name)

    async def upload_template(
        self, file: FileUpload, name: Optional[str] = None
    ) -> TemplateInfo:
        await self._delay("upload_template")
        return self.backend.create_template(file.meta(), name=name)

    async def create_job(self, request: FillJobRequest) -> JobSubmission:
        await self._delay("create_job")
        job = self.backend.create_job(request)
        timeline = self.backend.timeline(job.job_id)
        logger.debug(
            "Job %s starts in %.2fs, resolves %.2fs later",
            job.job_id, timeline.start_delay, timeline.resolve_delay,
        )
        self._schedule_advance(job.job_id, timeline.start_delay, then=timeline.resolve_delay)
        return JobSubmission(job_id=job.job_id, status=job.status)

    def _schedule_advance(self, job_id: str, delay: float, then: Optional[float] = None) -> None:
        def step() -> None:
            self._timers.pop(job_id, None)
            self.backend.advance(job_id)
            if then is not None:
                self._schedule_advance(job_id, then)

        self._timers[job_id] = self._scheduler.call_later(delay, step)

    async def get_job(self, job_id: str) -> JobSnapshot:
        await self._delay("get_job")
        return self.backend.get_job(job_id)

    async def download_output(self, job_id: str, index: int = 0) -> bytes:
        await self._delay("download_output")
        return self.backend.read_output(job_id, index)

    @property
    def pending_transitions(self) -> List[str]:
        return list(self._timers)

    async def aclose(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
