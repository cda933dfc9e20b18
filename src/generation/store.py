"""JSON-backed job store.

One file per job under ``<state_dir>/jobs/``. Every read goes to disk so
separate invocations never act on stale copies.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from autowriter.errors import PersistenceError
from autowriter.generation.models import Job, JobStatus, utc_now
from autowriter.shared.storage import atomic_write_text, load_model, save_model

logger = logging.getLogger(__name__)

JOBS_DIRNAME = "jobs"

# Alias to avoid shadowing by JobStore.list method
_list = list


class JobStore:
    """CRUD over persisted jobs and the items they own."""

    def __init__(self, state_dir: Path) -> None:
        self._dir = state_dir / JOBS_DIRNAME

    # ── Private helpers ──────────────────────────────────────────

    def _path(self, job_id: str) -> Path:
        return self._dir / f"{job_id}.json"

    def _all(self) -> _list[Job]:
        if not self._dir.exists():
            return []
        jobs: _list[Job] = []
        for path in self._dir.glob("*.json"):
            job = load_model(path, Job)
            if job is not None:
                jobs.append(job)
        jobs.sort(key=lambda j: (j.created_at, j.id))
        return jobs

    # ── Write operations ─────────────────────────────────────────

    def save(self, job: Job) -> None:
        """Persist *job*, replacing any previous version."""
        job.updated_at = utc_now()
        save_model(self._path(job.id), job)

    def delete(self, job_id: str) -> bool:
        path = self._path(job_id)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as exc:
            raise PersistenceError(f"Failed to delete job {job_id}: {exc}") from exc
        self._cancel_path(job_id).unlink(missing_ok=True)
        return True

    # ── Read operations ──────────────────────────────────────────

    def get(self, job_id: str) -> Job | None:
        return load_model(self._path(job_id), Job)

    def list(
        self,
        status: JobStatus | None = None,
        *,
        limit: int | None = None,
        offset: int = 0,
        newest_first: bool = True,
    ) -> _list[Job]:
        """Return jobs, optionally filtered by status and paginated."""
        jobs = self._all()
        if newest_first:
            jobs.reverse()
        if status is not None:
            jobs = [j for j in jobs if j.status == status]
        jobs = jobs[offset:]
        if limit is not None:
            jobs = jobs[:limit]
        return jobs

    def next_active(self) -> Job | None:
        """Oldest job that still has work to do."""
        for job in self._all():
            if not job.is_terminal:
                return job
        return None

    # ── Cancellation requests ────────────────────────────────────

    def _cancel_path(self, job_id: str) -> Path:
        return self._dir / f"{job_id}.cancel"

    def request_cancel(self, job_id: str, item_id: str | None = None) -> None:
        """Queue a cancellation for the next invocation holding the lock.

        ``item_id=None`` cancels the whole job.
        """
        path = self._cancel_path(job_id)
        requests = self._read_cancel_requests(path)
        requests.append(item_id or "*")
        atomic_write_text(path, json.dumps(requests))

    def pop_cancel_requests(self, job_id: str) -> _list[str | None]:
        path = self._cancel_path(job_id)
        requests = self._read_cancel_requests(path)
        if requests:
            path.unlink(missing_ok=True)
        return [None if r == "*" else r for r in requests]

    def _read_cancel_requests(self, path: Path) -> _list[str]:
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("Unreadable cancel request file %s, ignoring", path)
            return []
        return [str(r) for r in data] if isinstance(data, list) else []
