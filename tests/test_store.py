"""Tests for the persisted job registry and its merge rules."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from autofill.jobs.models import JobRecord, JobSnapshot, JobStatus
from autofill.jobs.store import JobStore, upsert_job

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_new_record_gets_defaults_and_goes_first():
    records = upsert_job({"job_id": "a"}, [], now=T0)
    records = upsert_job({"job_id": "b", "status": "running"}, records, now=T0)

    assert [r.job_id for r in records] == ["b", "a"]
    assert records[1].status == JobStatus.QUEUED
    assert records[1].outputs == []
    assert records[1].error is None
    assert records[1].updated_at == T0


def test_update_keeps_position_and_merges_shallowly():
    records = upsert_job({"job_id": "a", "docset_id": "ds_1", "instruction": "fill"}, [], now=T0)
    records = upsert_job({"job_id": "b"}, records, now=T0)

    later = T0 + timedelta(seconds=5)
    records = upsert_job({"job_id": "a", "status": "running", "stage": "calling_model"}, records, now=later)

    assert [r.job_id for r in records] == ["b", "a"]
    updated = records[1]
    assert updated.status == JobStatus.RUNNING
    assert updated.stage == "calling_model"
    # provenance survives a status refresh
    assert updated.docset_id == "ds_1"
    assert updated.instruction == "fill"
    assert updated.updated_at == later


def test_upsert_does_not_mutate_input_collection():
    original = upsert_job({"job_id": "a"}, [], now=T0)
    upsert_job({"job_id": "a", "status": "running"}, original, now=T0)
    assert original[0].status == JobStatus.QUEUED


def test_missing_job_id_is_rejected():
    with pytest.raises(ValueError):
        upsert_job({"status": "queued"}, [])


def test_terminal_status_is_never_regressed():
    records = upsert_job({"job_id": "a", "status": "running"}, [], now=T0)
    records = upsert_job(
        {
            "job_id": "a",
            "status": "succeeded",
            "stage": "done",
            "outputs": [{"filename": "out.xlsx", "download_url": "/f/0"}],
        },
        records,
        now=T0 + timedelta(seconds=1),
    )
    # A late response from before completion arrives afterwards
    records = upsert_job(
        {"job_id": "a", "status": "running", "stage": "calling_model", "outputs": []},
        records,
        now=T0 + timedelta(seconds=2),
    )

    record = records[0]
    assert record.status == JobStatus.SUCCEEDED
    assert record.stage == "done"
    assert [o.filename for o in record.outputs] == ["out.xlsx"]


def test_terminal_record_does_not_switch_to_another_terminal_status():
    records = upsert_job({"job_id": "a", "status": "failed", "error": {"code": "X"}}, [], now=T0)
    records = upsert_job({"job_id": "a", "status": "succeeded"}, records, now=T0)
    assert records[0].status == JobStatus.FAILED
    assert records[0].error.code == "X"


def test_terminal_record_still_accepts_provenance_fields():
    records = upsert_job({"job_id": "a", "status": "canceled"}, [], now=T0)
    records = upsert_job({"job_id": "a", "last_response": {"status": "canceled"}}, records, now=T0)
    assert records[0].last_response == {"status": "canceled"}


def test_updated_at_never_moves_backwards():
    records = upsert_job({"job_id": "a"}, [], now=T0)
    stamps = [records[0].updated_at]
    for offset in (10, 3, 20, -5, 21):
        records = upsert_job({"job_id": "a"}, records, now=T0 + timedelta(seconds=offset))
        stamps.append(records[0].updated_at)
    assert stamps == sorted(stamps)
    assert stamps[-1] == T0 + timedelta(seconds=21)


def test_status_sequence_property():
    """Whatever order observations arrive in, status only leaves non-terminal states."""
    observed = ["queued", "running", "queued", "failed", "running", "succeeded", "queued"]
    records = []
    seen_terminal = None
    for status in observed:
        records = upsert_job({"job_id": "a", "status": status}, records, now=T0)
        current = records[0].status
        if seen_terminal is not None:
            assert current == seen_terminal
        elif current.is_terminal:
            seen_terminal = current
    assert seen_terminal == JobStatus.FAILED


def test_model_partial_only_applies_fields_that_were_set():
    records = upsert_job({"job_id": "a", "stage": "uploading", "docset_id": "ds"}, [], now=T0)
    partial = JobRecord(job_id="a", status=JobStatus.RUNNING)
    records = upsert_job(partial, records, now=T0)
    assert records[0].status == JobStatus.RUNNING
    assert records[0].stage == "uploading"
    assert records[0].docset_id == "ds"


def test_store_persists_on_every_upsert(store):
    store.upsert({"job_id": "a", "docset_id": "ds_1"})
    store.upsert({"job_id": "b", "status": "running"})

    raw = json.loads(store.path.read_text(encoding="utf-8"))
    assert [item["job_id"] for item in raw] == ["b", "a"]

    reloaded = JobStore(store.path)
    reloaded.load()
    assert reloaded.get("a").docset_id == "ds_1"
    assert reloaded.get("b").status == JobStatus.RUNNING


@pytest.mark.parametrize("content", ["{not json", '{"job_id": "a"}', "42", ""])
def test_corrupt_storage_loads_as_empty(store, content):
    store.path.write_text(content, encoding="utf-8")
    assert store.load() == []
    assert len(store) == 0


def test_missing_storage_loads_as_empty(tmp_path):
    store = JobStore(tmp_path / "nested" / "jobs.json")
    assert store.load() == []


def test_invalid_entries_are_skipped(store):
    store.path.write_text(
        json.dumps([{"job_id": "ok", "status": "running"}, {"status": "bogus"}, "x"]),
        encoding="utf-8",
    )
    records = store.load()
    assert [r.job_id for r in records] == ["ok"]


def test_list_filters_and_orders_by_creation(store):
    store.upsert({"job_id": "old", "status": "succeeded", "created_at": T0})
    store.upsert({"job_id": "new", "status": "running", "created_at": T0 + timedelta(hours=1)})
    store.upsert({"job_id": "mid", "status": "failed", "created_at": T0 + timedelta(minutes=30)})
    store.upsert({"job_id": "q", "status": "queued", "created_at": T0 - timedelta(hours=1)})

    assert [r.job_id for r in store.list()] == ["new", "mid", "old", "q"]
    assert [r.job_id for r in store.list("running")] == ["new", "q"]
    assert [r.job_id for r in store.list("succeeded")] == ["old"]
    assert [r.job_id for r in store.list("failed")] == ["mid"]
    with pytest.raises(ValueError):
        store.list("everything")


def test_pending_ids_and_clear(store):
    store.upsert({"job_id": "a", "status": "queued"})
    store.upsert({"job_id": "b", "status": "running"})
    store.upsert({"job_id": "c", "status": "succeeded"})

    assert sorted(store.pending_ids()) == ["a", "b"]
    assert store.has_pending()

    store.clear()
    assert store.records == []
    assert json.loads(store.path.read_text(encoding="utf-8")) == []
    assert not store.has_pending()


def test_snapshot_timestamps_are_timezone_aware():
    snapshot = JobSnapshot.model_validate(
        {"job_id": "a", "status": "queued", "created_at": "2026-01-01T00:00:00"}
    )
    assert snapshot.created_at.tzinfo is not None


def test_failed_write_leaves_memory_and_file_unchanged(store, monkeypatch):
    store.upsert({"job_id": "a", "status": "queued"})
    on_disk = store.path.read_text(encoding="utf-8")

    def broken_write(records):
        raise OSError("disk full")

    monkeypatch.setattr(store, "_write", broken_write)
    with pytest.raises(OSError):
        store.upsert({"job_id": "a", "status": "running"})
    with pytest.raises(OSError):
        store.clear()

    assert store.get("a").status == JobStatus.QUEUED
    assert store.path.read_text(encoding="utf-8") == on_disk
