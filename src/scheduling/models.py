"""Schedule models: recurring job factories and their statistics."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, Field

from autowriter.generation.models import new_id, utc_now


class Frequency(StrEnum):
    EVERY_15_MINUTES = "every_15_minutes"
    EVERY_30_MINUTES = "every_30_minutes"
    HOURLY = "hourly"
    EVERY_2_HOURS = "every_2_hours"
    EVERY_6_HOURS = "every_6_hours"
    TWICEDAILY = "twicedaily"
    DAILY = "daily"
    WEEKLY = "weekly"
    INTERVAL = "interval"
    CUSTOM_CRON = "custom_cron"


FREQUENCY_INTERVALS: dict[Frequency, timedelta] = {
    Frequency.EVERY_15_MINUTES: timedelta(minutes=15),
    Frequency.EVERY_30_MINUTES: timedelta(minutes=30),
    Frequency.HOURLY: timedelta(hours=1),
    Frequency.EVERY_2_HOURS: timedelta(hours=2),
    Frequency.EVERY_6_HOURS: timedelta(hours=6),
    Frequency.TWICEDAILY: timedelta(hours=12),
    Frequency.DAILY: timedelta(days=1),
    Frequency.WEEKLY: timedelta(weeks=1),
}


class TopicSourceKind(StrEnum):
    MANUAL = "manual"
    KEYWORDS = "keywords"
    RSS = "rss"
    TRENDING = "trending"


class TopicSource(BaseModel):
    """Where a firing gets its topic from."""

    kind: TopicSourceKind = TopicSourceKind.MANUAL
    topics: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    feeds: list[str] = Field(default_factory=list)


class PostDefaults(BaseModel):
    """Settings copied onto every job a schedule creates."""

    title_prefix: str = ""
    post_status: str = ""
    author: str = ""
    category: str = ""
    tags: list[str] = Field(default_factory=list)
    publish_at: datetime | None = None
    include_keywords: list[str] = Field(default_factory=list)
    exclude_keywords: list[str] = Field(default_factory=list)
    heading_count: int | None = None


class Schedule(BaseModel):
    """A recurring job factory."""

    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    frequency: Frequency = Frequency.DAILY
    interval_minutes: int | None = None
    cron_expression: str | None = None
    topic_source: TopicSource = Field(default_factory=TopicSource)
    template_id: str | None = None
    post_defaults: PostDefaults = Field(default_factory=PostDefaults)

    is_active: bool = True
    next_run: datetime | None = None
    last_run: datetime | None = None
    run_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    last_job_id: str | None = None
    last_error: str | None = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def success_rate(self) -> float:
        finished = self.success_count + self.failure_count
        return round(self.success_count / finished * 100, 2) if finished else 0.0


class ScheduleSpec(BaseModel):
    """Operator input for creating or updating a schedule.

    Every field is optional so the same model serves partial updates.
    """

    name: str | None = None
    description: str | None = None
    frequency: Frequency | None = None
    interval_minutes: int | None = None
    cron_expression: str | None = None
    topic_source: TopicSource | None = None
    template_id: str | None = None
    post_defaults: PostDefaults | None = None
    is_active: bool | None = None
