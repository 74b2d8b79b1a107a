"""Job record data model for async document-generation jobs."""

import mimetypes
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_MODEL = "chatgpt5.2-thinking"
DEFAULT_INSTRUCTION = (
    "Read the document set and fill in the template. "
    "Output only the final filled file, without intermediate steps."
)
# Only a prefix of the instruction is kept in the local registry
INSTRUCTION_PREVIEW_CHARS = 200


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELED})
PENDING_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.RUNNING})


class JobMode(str, Enum):
    ASYNC = "async"
    SYNC = "sync"


class ReasoningEffort(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MemoryLimit(str, Enum):
    GB_1 = "1g"
    GB_4 = "4g"
    GB_16 = "16g"
    GB_64 = "64g"


class ModelOptions(BaseModel):
    model: str = DEFAULT_MODEL
    reasoning_effort: ReasoningEffort = ReasoningEffort.HIGH
    memory_limit: MemoryLimit = MemoryLimit.GB_4


class FillJobRequest(BaseModel):
    """Body of a fill-template job submission."""
    model_config = ConfigDict(protected_namespaces=())

    docset_id: str
    template_id: str
    mode: JobMode = JobMode.ASYNC
    model_options: ModelOptions = Field(default_factory=ModelOptions)
    instruction: str = DEFAULT_INSTRUCTION


class FileMeta(BaseModel):
    name: str
    size: int = 0
    type: str = ""


@dataclass
class FileUpload:
    """A file to send to the backend (docset member or template)."""
    name: str
    content: bytes
    content_type: str = "application/octet-stream"

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "FileUpload":
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            content=path.read_bytes(),
            content_type=content_type or "application/octet-stream",
        )

    def meta(self) -> FileMeta:
        return FileMeta(name=self.name, size=len(self.content), type=self.content_type)


class DocumentSet(BaseModel):
    docset_id: str
    name: Optional[str] = None
    files: List[FileMeta] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class TemplateInfo(BaseModel):
    template_id: str
    name: str = ""
    size: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class JobSubmission(BaseModel):
    job_id: str
    status: JobStatus = JobStatus.QUEUED


class JobOutput(BaseModel):
    filename: str
    download_url: str = ""


class JobError(BaseModel):
    code: str = ""
    message: str = ""
    detail: Any = None


class JobSnapshot(BaseModel):
    """Job state as reported by the backend."""
    model_config = ConfigDict(extra="ignore")

    job_id: str
    status: JobStatus = JobStatus.QUEUED
    stage: str = ""
    outputs: List[JobOutput] = Field(default_factory=list)
    error: Optional[JobError] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class JobRecord(JobSnapshot):
    """Tracks one job in the local registry, including client-side provenance."""
    docset_id: Optional[str] = None
    template_id: Optional[str] = None
    template_file: Optional[FileMeta] = None
    source_files: List[FileMeta] = Field(default_factory=list)
    instruction: str = ""
    model: Optional[str] = None
    local_created_at: Optional[datetime] = None
    last_request: Optional[Dict[str, Any]] = None
    last_response: Optional[Dict[str, Any]] = None
