"""Backend gateway interface (real HTTP service or in-process simulation)."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Sequence

from autofill.jobs.models import (
    DocumentSet,
    FileUpload,
    FillJobRequest,
    JobSnapshot,
    JobSubmission,
    TemplateInfo,
)


class BackendGateway(ABC):
    """Abstract interface to the document-generation backend.

    Both implementations raise the same exceptions from autofill.errors, so
    callers never need to know which one is active.
    """

    @abstractmethod
    async def health(self) -> Dict[str, Any]:
        """Return the backend's health payload."""
        ...

    @abstractmethod
    async def create_document_set(
        self, files: Sequence[FileUpload], name: Optional[str] = None
    ) -> DocumentSet:
        """Upload source documents as one named document set."""
        ...

    @abstractmethod
    async def upload_template(
        self, file: FileUpload, name: Optional[str] = None
    ) -> TemplateInfo:
        """Upload the template file to be filled."""
        ...

    @abstractmethod
    async def create_job(self, request: FillJobRequest) -> JobSubmission:
        """Submit a fill-template job. Returns its id and initial status."""
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> JobSnapshot:
        """Get the current status of a job."""
        ...

    @abstractmethod
    async def download_output(self, job_id: str, index: int = 0) -> bytes:
        """Fetch the content of one output file of a succeeded job."""
        ...

    async def aclose(self) -> None:
        """Release connections and pending timers."""
        return None
