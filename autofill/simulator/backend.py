"""In-memory model of the fill-template service.

Jobs live in a repository keyed by id and move through
queued -> running -> succeeded | failed. `advance` is the only operation that
changes a job; whoever owns the clock (the simulated gateway, or a test)
decides when to call it.
"""

import logging
import random
from datetime import datetime
from typing import Callable, Dict, List, Optional

from autofill.errors import NotFoundError
from autofill.jobs.models import (
    DocumentSet,
    FileMeta,
    FillJobRequest,
    JobError,
    JobOutput,
    JobSnapshot,
    JobStatus,
    TemplateInfo,
    utcnow,
)
from autofill.simulator.latency import JobTimeline, JobTiming, draw_timeline

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_RATE = 0.12
FAILURE_CODE = "MODEL_ERROR"
OUTPUT_EXTENSION = "xlsx"


class SimulatedBackend:
    """Repository of simulated docsets, templates and jobs."""

    def __init__(
        self,
        failure_rate: float = DEFAULT_FAILURE_RATE,
        timing: Optional[JobTiming] = None,
        rng: Optional[random.Random] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be between 0 and 1")
        self.failure_rate = failure_rate
        self.timing = timing or JobTiming()
        self._rng = rng or random.Random()
        self._now = now
        self._docsets: Dict[str, DocumentSet] = {}
        self._templates: Dict[str, TemplateInfo] = {}
        self._jobs: Dict[str, JobSnapshot] = {}
        self._inputs: Dict[str, FillJobRequest] = {}
        self._timelines: Dict[str, JobTimeline] = {}

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}_{self._rng.getrandbits(48):012x}"

    def create_document_set(self, files: List[FileMeta], name: Optional[str] = None) -> DocumentSet:
        docset = DocumentSet(
            docset_id=self._new_id("ds"), name=name, files=files, created_at=self._now()
        )
        self._docsets[docset.docset_id] = docset
        return docset

    def create_template(self, meta: FileMeta, name: Optional[str] = None) -> TemplateInfo:
        template = TemplateInfo(
            template_id=self._new_id("tp"),
            name=name or meta.name,
            size=meta.size,
            created_at=self._now(),
        )
        self._templates[template.template_id] = template
        return template

    def create_job(self, request: FillJobRequest) -> JobSnapshot:
        """Register a queued job and draw how long each phase will take."""
        created_at = self._now()
        job = JobSnapshot(
            job_id=self._new_id("job"),
            status=JobStatus.QUEUED,
            stage="uploading",
            created_at=created_at,
            updated_at=created_at,
        )
        self._jobs[job.job_id] = job
        self._inputs[job.job_id] = request
        self._timelines[job.job_id] = draw_timeline(self.timing, self._rng)
        logger.debug("Simulated job %s queued", job.job_id)
        return job.model_copy(deep=True)

    def timeline(self, job_id: str) -> JobTimeline:
        self._require(job_id)
        return self._timelines[job_id]

    def _require(self, job_id: str) -> JobSnapshot:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    def get_job(self, job_id: str) -> JobSnapshot:
        return self._require(job_id).model_copy(deep=True)

    def advance(self, job_id: str) -> JobSnapshot:
        """Move a job one step forward; terminal jobs are left untouched."""
        job = self._require(job_id)

        if job.status == JobStatus.QUEUED:
            job.status = JobStatus.RUNNING
            job.stage = "calling_model"
        elif job.status == JobStatus.RUNNING:
            if self._rng.random() < self.failure_rate:
                self._fail(job)
            else:
                self._succeed(job)
        else:
            return job.model_copy(deep=True)

        job.updated_at = max(self._now(), job.updated_at)
        logger.debug("Simulated job %s -> %s", job_id, job.status.value)
        return job.model_copy(deep=True)

    def _fail(self, job: JobSnapshot) -> None:
        job.status = JobStatus.FAILED
        job.outputs = []
        job.error = JobError(
            code=FAILURE_CODE,
            message="Upstream model failure (simulated)",
            detail={"hint": "Retry to submit a new job with the same inputs"},
        )

    def _succeed(self, job: JobSnapshot) -> None:
        stamp = int(self._now().timestamp() * 1000)
        suffix = f"{self._rng.getrandbits(16):04x}"
        job.status = JobStatus.SUCCEEDED
        job.stage = "done"
        job.error = None
        job.outputs = [
            JobOutput(
                filename=f"filled_{stamp}_{suffix}.{OUTPUT_EXTENSION}",
                download_url=f"/api/v1/jobs/{job.job_id}/files/0",
            )
        ]

    def read_output(self, job_id: str, index: int = 0) -> bytes:
        job = self._require(job_id)
        if job.status != JobStatus.SUCCEEDED or not 0 <= index < len(job.outputs):
            raise NotFoundError(f"Output {index} of job {job_id} not available")
        content = (
            f"Simulated output {job.outputs[index].filename} for {job_id}\n"
            f"Generated at {self._now().isoformat()}\n"
        )
        return content.encode("utf-8")

    def job_ids(self) -> List[str]:
        return list(self._jobs)
