"""Job operations used by front ends: upload, submit, follow, retry, download."""

import logging
from typing import Callable, List, Optional, Sequence, Tuple

from autofill.errors import JobStateError, NotFoundError
from autofill.gateway.base import BackendGateway
from autofill.jobs.models import (
    DEFAULT_INSTRUCTION,
    DEFAULT_MODEL,
    INSTRUCTION_PREVIEW_CHARS,
    DocumentSet,
    FileMeta,
    FileUpload,
    FillJobRequest,
    JobRecord,
    JobStatus,
    ModelOptions,
    TemplateInfo,
    utcnow,
)
from autofill.jobs.polling import JobPoller, PollingEngine, snapshot_partial
from autofill.jobs.store import JobStore

logger = logging.getLogger(__name__)


class JobService:
    """Thin layer over the gateway that records every job in the store."""

    def __init__(self, gateway: BackendGateway, store: JobStore, polling: PollingEngine):
        self._gateway = gateway
        self._store = store
        self._polling = polling

    async def upload_document_set(
        self, files: Sequence[FileUpload], name: Optional[str] = None
    ) -> DocumentSet:
        if not files:
            raise JobStateError("At least one source document is required")
        docset = await self._gateway.create_document_set(files, name=name)
        logger.info("Uploaded document set %s (%d files)", docset.docset_id, len(files))
        return docset

    async def upload_template(
        self, file: FileUpload, name: Optional[str] = None
    ) -> TemplateInfo:
        template = await self._gateway.upload_template(file, name=name or file.name)
        logger.info("Uploaded template %s (%s)", template.template_id, file.name)
        return template

    async def submit(
        self,
        request: FillJobRequest,
        template_file: Optional[FileMeta] = None,
        source_files: Sequence[FileMeta] = (),
    ) -> JobRecord:
        """Create a job and register it with its provenance."""
        submission = await self._gateway.create_job(request)
        now = utcnow()
        record = self._store.upsert(
            {
                "job_id": submission.job_id,
                "status": submission.status,
                "stage": "queued",
                "created_at": now,
                "local_created_at": now,
                "docset_id": request.docset_id,
                "template_id": request.template_id,
                "template_file": template_file,
                "source_files": list(source_files),
                "instruction": request.instruction[:INSTRUCTION_PREVIEW_CHARS],
                "model": request.model_options.model,
                "last_request": request.model_dump(mode="json"),
                "last_response": None,
                "outputs": [],
                "error": None,
            },
            now=now,
        )
        logger.info("Created job %s", record.job_id)
        return record

    async def refresh(self, job_id: str) -> JobRecord:
        """Fetch a job's status once and merge it into the store."""
        try:
            snapshot = await self._gateway.get_job(job_id)
        except NotFoundError:
            local = self._store.get(job_id)
            if local is not None and local.is_terminal:
                # Backend forgot a finished job; the local record stays authoritative
                logger.info(
                    "Job %s no longer on backend; keeping local %s record",
                    job_id,
                    local.status.value,
                )
                return local
            raise
        return self._store.upsert(snapshot_partial(snapshot))

    async def open(self, job_id: str) -> JobRecord:
        """Return the local record, fetching and registering it if unknown."""
        record = self._store.get(job_id)
        if record is not None:
            return record
        return await self.refresh(job_id)

    async def refresh_pending(self) -> List[JobRecord]:
        """Refresh every queued/running job once; failures are logged and skipped."""
        refreshed = []
        for job_id in self._store.pending_ids():
            try:
                refreshed.append(await self.refresh(job_id))
            except Exception as exc:
                logger.warning("Could not refresh %s: %s", job_id, exc)
        return refreshed

    async def retry(self, job_id: str) -> JobRecord:
        """Submit a brand-new job with the same inputs as an existing one."""
        previous = self._store.get(job_id)
        if previous is None:
            raise JobStateError(f"Job {job_id} is not in the local registry")
        if not previous.docset_id or not previous.template_id:
            raise JobStateError(f"Job {job_id} has no docset_id/template_id to retry with")

        if previous.last_request:
            request = FillJobRequest.model_validate(previous.last_request)
        else:
            request = FillJobRequest(
                docset_id=previous.docset_id,
                template_id=previous.template_id,
                model_options=ModelOptions(model=previous.model or DEFAULT_MODEL),
                instruction=previous.instruction or DEFAULT_INSTRUCTION,
            )
        record = await self.submit(
            request,
            template_file=previous.template_file,
            source_files=previous.source_files,
        )
        logger.info("Retried job %s as %s", job_id, record.job_id)
        return record

    async def download(self, job_id: str, index: int = 0) -> Tuple[str, bytes]:
        """Return (filename, content) of one output of a succeeded job."""
        record = self._store.get(job_id)
        if record is None or not record.outputs:
            raise JobStateError(f"Job {job_id} has no outputs to download")
        if not 0 <= index < len(record.outputs):
            raise JobStateError(f"Job {job_id} has no output #{index}")
        content = await self._gateway.download_output(job_id, index)
        filename = record.outputs[index].filename or f"filled_{job_id}"
        return filename, content

    def watch(
        self,
        job_id: str,
        on_update: Optional[Callable[[JobRecord], None]] = None,
    ) -> Optional[JobPoller]:
        """Poll a job until terminal; nothing to do for a job already finished."""
        record = self._store.get(job_id)
        enabled = record is None or not record.is_terminal
        return self._polling.watch(job_id, on_update=on_update, enabled=enabled)

    def list(self, job_filter: str = "all") -> List[JobRecord]:
        return self._store.list(job_filter)

    def get(self, job_id: str) -> Optional[JobRecord]:
        return self._store.get(job_id)

    def clear(self) -> None:
        for job_id in [r.job_id for r in self._store.records]:
            self._polling.unwatch(job_id)
        self._store.clear()
        logger.info("Cleared local job registry")


def status_counts(records: Sequence[JobRecord]) -> dict:
    counts = {status.value: 0 for status in JobStatus}
    for record in records:
        counts[record.status.value] += 1
    return counts
