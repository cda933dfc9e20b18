"""JSON-backed schedule store, one file per schedule."""

from __future__ import annotations

import logging
from pathlib import Path

from autowriter.errors import PersistenceError
from autowriter.generation.models import utc_now
from autowriter.scheduling.models import Schedule
from autowriter.shared.storage import load_model, save_model

logger = logging.getLogger(__name__)

SCHEDULES_DIRNAME = "schedules"

# Alias to avoid shadowing by ScheduleStore.list method
_list = list


class ScheduleStore:
    def __init__(self, state_dir: Path) -> None:
        self._dir = state_dir / SCHEDULES_DIRNAME

    def _path(self, schedule_id: str) -> Path:
        return self._dir / f"{schedule_id}.json"

    def save(self, schedule: Schedule) -> None:
        schedule.updated_at = utc_now()
        save_model(self._path(schedule.id), schedule)

    def get(self, schedule_id: str) -> Schedule | None:
        return load_model(self._path(schedule_id), Schedule)

    def delete(self, schedule_id: str) -> bool:
        path = self._path(schedule_id)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as exc:
            raise PersistenceError(f"Failed to delete schedule {schedule_id}: {exc}") from exc
        return True

    def list(self, active: bool | None = None) -> _list[Schedule]:
        if not self._dir.exists():
            return []
        schedules: _list[Schedule] = []
        for path in self._dir.glob("*.json"):
            schedule = load_model(path, Schedule)
            if schedule is not None and (active is None or schedule.is_active == active):
                schedules.append(schedule)
        schedules.sort(key=lambda s: (s.created_at, s.id))
        return schedules
