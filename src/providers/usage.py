"""Provider usage counters used for cost reporting.

Counters live in one JSON file in the state directory. Each update is a
read-modify-write under a lock file next to the counters (see
:func:`autowriter.lock.file_mutex`) followed by an atomic replace, so
concurrent processes never lose each other's increments and readers
never observe a half-written file.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from autowriter.lock import file_mutex
from autowriter.shared.storage import load_model, save_model

logger = logging.getLogger(__name__)

USAGE_FILENAME = "usage.json"


class ProviderUsage(BaseModel):
    """Counters for one provider."""

    requests_by_day: dict[str, int] = Field(default_factory=dict)
    requests_by_month: dict[str, int] = Field(default_factory=dict)
    tokens_used: int = 0
    estimated_cost: float = 0.0
    last_used: datetime | None = None

    def requests_on(self, day: str) -> int:
        return self.requests_by_day.get(day, 0)


class UsageData(BaseModel):
    providers: dict[str, ProviderUsage] = Field(default_factory=dict)
    generations_by_month: dict[str, int] = Field(default_factory=dict)


class UsageTracker:
    """Reads and increments per-provider usage counters."""

    def __init__(self, state_dir: Path) -> None:
        self._path = state_dir / USAGE_FILENAME

    def load(self) -> UsageData:
        return load_model(self._path, UsageData) or UsageData()

    def record(self, provider: str, tokens: int, cost: float, *, now: datetime | None = None) -> ProviderUsage:
        """Count one successful request."""
        now = now or datetime.now(UTC)
        day = now.strftime("%Y-%m-%d")
        month = now.strftime("%Y-%m")
        with file_mutex(self._path):
            data = self.load()
            usage = data.providers.setdefault(provider, ProviderUsage())
            usage.requests_by_day[day] = usage.requests_by_day.get(day, 0) + 1
            usage.requests_by_month[month] = usage.requests_by_month.get(month, 0) + 1
            usage.tokens_used += tokens
            usage.estimated_cost = round(usage.estimated_cost + cost, 6)
            usage.last_used = now
            save_model(self._path, data)
        return usage

    def record_generation(self, *, now: datetime | None = None) -> int:
        """Count one finished article for the monthly total."""
        month = (now or datetime.now(UTC)).strftime("%Y-%m")
        with file_mutex(self._path):
            data = self.load()
            data.generations_by_month[month] = data.generations_by_month.get(month, 0) + 1
            save_model(self._path, data)
            return data.generations_by_month[month]

    def provider_usage(self, provider: str) -> ProviderUsage:
        return self.load().providers.get(provider, ProviderUsage())

    def generations_in(self, month: str) -> int:
        return self.load().generations_by_month.get(month, 0)
