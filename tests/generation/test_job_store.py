"""Tests for the JSON job store."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

from autowriter.generation.models import Item, Job, JobStatus
from autowriter.generation.store import JobStore


def _job(minutes_ago: int, status: JobStatus = JobStatus.PENDING) -> Job:
    created = datetime(2024, 1, 1, tzinfo=UTC) - timedelta(minutes=minutes_ago)
    return Job(items=[Item(topic="t")], status=status, created_at=created)


class TestJobStore:
    def test_save_and_get(self, tmp_path: Path):
        store = JobStore(tmp_path)
        job = _job(0)
        store.save(job)
        loaded = store.get(job.id)
        assert loaded is not None
        assert loaded.items[0].topic == "t"
        assert (tmp_path / "jobs" / f"{job.id}.json").exists()

    def test_get_missing(self, tmp_path: Path):
        assert JobStore(tmp_path).get("nope") is None

    def test_list_newest_first_with_filter_and_paging(self, tmp_path: Path):
        store = JobStore(tmp_path)
        old, mid, new = _job(30), _job(20, JobStatus.COMPLETED), _job(10)
        for job in (mid, new, old):
            store.save(job)
        assert [j.id for j in store.list()] == [new.id, mid.id, old.id]
        assert [j.id for j in store.list(JobStatus.PENDING)] == [new.id, old.id]
        assert [j.id for j in store.list(limit=1, offset=1)] == [mid.id]
        assert [j.id for j in store.list(newest_first=False)] == [old.id, mid.id, new.id]

    def test_next_active_is_oldest_open_job(self, tmp_path: Path):
        store = JobStore(tmp_path)
        done = _job(30, JobStatus.COMPLETED)
        open_old, open_new = _job(20), _job(10)
        for job in (open_new, done, open_old):
            store.save(job)
        assert store.next_active().id == open_old.id

    def test_delete(self, tmp_path: Path):
        store = JobStore(tmp_path)
        job = _job(0)
        store.save(job)
        store.request_cancel(job.id)
        assert store.delete(job.id) is True
        assert store.delete(job.id) is False
        assert store.pop_cancel_requests(job.id) == []

    def test_corrupt_file_is_skipped(self, tmp_path: Path):
        store = JobStore(tmp_path)
        store.save(_job(0))
        (tmp_path / "jobs" / "broken.json").write_text("{")
        assert len(store.list()) == 1


class TestCancelRequests:
    def test_requests_accumulate_and_pop_once(self, tmp_path: Path):
        store = JobStore(tmp_path)
        store.request_cancel("j1", "item-a")
        store.request_cancel("j1")
        assert store.pop_cancel_requests("j1") == ["item-a", None]
        assert store.pop_cancel_requests("j1") == []

    def test_cancel_file_is_not_listed_as_job(self, tmp_path: Path):
        store = JobStore(tmp_path)
        store.save(_job(0))
        store.request_cancel("other")
        assert len(store.list()) == 1
