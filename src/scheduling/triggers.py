"""Persisted one-shot triggers.

A schedule is re-armed after every firing with a single future
timestamp; there is no repeating timer to cancel when its frequency
changes. Any process that polls :meth:`TriggerStore.due` can act as the
timer substrate.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

from autowriter.lock import file_mutex
from autowriter.shared.storage import load_model, save_model

logger = logging.getLogger(__name__)

TRIGGERS_FILENAME = "triggers.json"


class Trigger(BaseModel):
    schedule_id: str
    fire_at: datetime


class _TriggerData(BaseModel):
    triggers: list[Trigger] = Field(default_factory=list)


class TriggerStore:
    """At most one pending trigger per schedule."""

    def __init__(self, state_dir: Path) -> None:
        self._path = state_dir / TRIGGERS_FILENAME

    def _load(self) -> _TriggerData:
        return load_model(self._path, _TriggerData) or _TriggerData()

    def arm(self, schedule_id: str, fire_at: datetime) -> None:
        """Replace any pending trigger for *schedule_id* with one at *fire_at*."""
        with file_mutex(self._path):
            data = self._load()
            data.triggers = [t for t in data.triggers if t.schedule_id != schedule_id]
            data.triggers.append(Trigger(schedule_id=schedule_id, fire_at=fire_at))
            save_model(self._path, data)
        logger.debug("Armed schedule %s for %s", schedule_id, fire_at.isoformat())

    def clear(self, schedule_id: str) -> bool:
        with file_mutex(self._path):
            data = self._load()
            remaining = [t for t in data.triggers if t.schedule_id != schedule_id]
            if len(remaining) == len(data.triggers):
                return False
            data.triggers = remaining
            save_model(self._path, data)
        logger.debug("Cleared trigger for schedule %s", schedule_id)
        return True

    def get(self, schedule_id: str) -> Trigger | None:
        for trigger in self._load().triggers:
            if trigger.schedule_id == schedule_id:
                return trigger
        return None

    def pending(self) -> list[Trigger]:
        return sorted(self._load().triggers, key=lambda t: t.fire_at)

    def due(self, now: datetime) -> list[Trigger]:
        return [t for t in self.pending() if t.fire_at <= now]
