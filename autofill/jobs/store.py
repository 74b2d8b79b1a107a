"""Persisted local registry of every job this client created or observed.

Records are kept newest-first and written to a JSON file on every upsert.
`upsert_job` is the only write path; it is order-tolerant, so a late status
response can never pull a finished job back to queued/running.
"""

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError

from autofill.jobs.models import (
    PENDING_STATUSES,
    JobRecord,
    JobStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

# Fields owned by the backend's lifecycle; frozen once a record is terminal
LIFECYCLE_FIELDS = ("status", "stage", "outputs", "error")

JOB_FILTERS = ("all", "running", "succeeded", "failed")

Partial = Union[Mapping[str, Any], BaseModel]


def _partial_fields(partial: Partial) -> Dict[str, Any]:
    if isinstance(partial, BaseModel):
        fields = partial.model_dump(exclude_unset=True)
    else:
        fields = dict(partial)
    # A missing timestamp means "keep what we have", not "erase it"
    for key in ("created_at", "updated_at"):
        if key in fields and fields[key] is None:
            del fields[key]
    return fields


def upsert_job(
    partial: Partial,
    records: List[JobRecord],
    now: Optional[datetime] = None,
) -> List[JobRecord]:
    """Merge a partial record into the collection and return the new collection.

    Unknown job ids are prepended; known ones are shallow-merged in place with
    the partial's fields winning, except that a terminal record keeps its
    lifecycle fields. `updated_at` is bumped and never moves backwards.
    """
    fields = _partial_fields(partial)
    job_id = fields.get("job_id")
    if not job_id:
        raise ValueError("upsert requires a job_id")
    now = now or utcnow()

    for idx, existing in enumerate(records):
        if existing.job_id != job_id:
            continue

        if existing.is_terminal:
            for key in LIFECYCLE_FIELDS:
                fields.pop(key, None)

        merged = {**existing.model_dump(), **fields}
        merged["updated_at"] = max(now, existing.updated_at)
        updated = list(records)
        updated[idx] = JobRecord.model_validate(merged)
        return updated

    fields.setdefault("status", JobStatus.QUEUED)
    fields.setdefault("outputs", [])
    fields.setdefault("error", None)
    fields["updated_at"] = now
    return [JobRecord.model_validate(fields), *records]


class JobStore:
    """JobRecord collection backed by a JSON file."""

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._records: List[JobRecord] = []

    @property
    def path(self) -> Path:
        return self._path

    @property
    def records(self) -> List[JobRecord]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def load(self) -> List[JobRecord]:
        """Read the collection from disk; anything unreadable becomes empty."""
        self._records = self._read()
        return self.records

    def _read(self) -> List[JobRecord]:
        if not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable job store %s: %s", self._path, exc)
            return []
        if not isinstance(raw, list):
            logger.warning("Ignoring job store %s: expected a JSON array", self._path)
            return []

        records = []
        seen = set()
        for item in raw:
            try:
                record = JobRecord.model_validate(item)
            except ValidationError as exc:
                logger.warning("Skipping invalid job entry: %s", exc.errors()[:1])
                continue
            if record.job_id in seen:
                continue
            seen.add(record.job_id)
            records.append(record)
        return records

    def save(self) -> None:
        self._write(self._records)

    def _write(self, records: List[JobRecord]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(
            [r.model_dump(mode="json") for r in records],
            ensure_ascii=False,
        )
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self._path.name}.", dir=str(self._path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_path, self._path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def upsert(self, partial: Partial, now: Optional[datetime] = None) -> JobRecord:
        records = upsert_job(partial, self._records, now=now)
        # Memory only moves once the file has
        self._write(records)
        self._records = records
        job_id = _partial_fields(partial)["job_id"]
        return self.get(job_id)

    def get(self, job_id: str) -> Optional[JobRecord]:
        for record in self._records:
            if record.job_id == job_id:
                return record
        return None

    def list(self, job_filter: str = "all") -> List[JobRecord]:
        """Records newest-created first, optionally narrowed by status group."""
        if job_filter not in JOB_FILTERS:
            raise ValueError(f"Unknown filter '{job_filter}'. Valid: {list(JOB_FILTERS)}")

        ordered = sorted(
            self._records,
            key=lambda r: r.created_at,
            reverse=True,
        )
        if job_filter == "running":
            return [r for r in ordered if r.status in PENDING_STATUSES]
        if job_filter == "succeeded":
            return [r for r in ordered if r.status == JobStatus.SUCCEEDED]
        if job_filter == "failed":
            return [r for r in ordered if r.status == JobStatus.FAILED]
        return ordered

    def pending_ids(self) -> List[str]:
        return [r.job_id for r in self._records if r.status in PENDING_STATUSES]

    def has_pending(self) -> bool:
        return any(r.status in PENDING_STATUSES for r in self._records)

    def clear(self) -> None:
        self._write([])
        self._records = []
