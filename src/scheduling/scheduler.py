"""Scheduler: turns recurring schedules into concrete single-item jobs.

Each firing resolves a topic, creates a ``scheduled`` job, bumps the run
statistics and re-arms one trigger for the next instant. Finished
jobs are counted against their schedule by
:meth:`Scheduler.record_finished_jobs`, which marks each counted job
under the execution lock.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, Field

from autowriter.errors import PersistenceError, ValidationError
from autowriter.generation.engine import JobEngine, JobSpec
from autowriter.generation.models import JobKind, JobStatus, TargetMetadata, utc_now
from autowriter.scheduling.cron import CronExpression
from autowriter.scheduling.models import (
    FREQUENCY_INTERVALS,
    Frequency,
    Schedule,
    ScheduleSpec,
    TopicSourceKind,
)
from autowriter.scheduling.store import ScheduleStore
from autowriter.scheduling.topics import TopicResolver
from autowriter.scheduling.triggers import TriggerStore

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = timedelta(days=1)
DEFAULT_CLEANUP_DAYS = 30


class FireStatus(StrEnum):
    CREATED = "created"
    FAILED = "failed"
    SKIPPED = "skipped"


class FireResult(BaseModel):
    status: FireStatus
    schedule_id: str
    job_id: str | None = None
    topic: str | None = None
    next_run: datetime | None = None
    message: str = ""


class ScheduleStatistics(BaseModel):
    total_schedules: int = 0
    active_schedules: int = 0
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    upcoming: list[dict] = Field(default_factory=list)

    @property
    def success_rate(self) -> float:
        finished = self.successful_runs + self.failed_runs
        return round(self.successful_runs / finished * 100, 2) if finished else 0.0


def compute_next_run(schedule: Schedule, now: datetime) -> datetime:
    """Next firing strictly after *now* for the schedule's frequency."""
    if schedule.frequency == Frequency.CUSTOM_CRON and schedule.cron_expression:
        try:
            return CronExpression(schedule.cron_expression).next_run(now)
        except ValueError:
            logger.warning(
                "Schedule %s cron %r has no upcoming match, falling back to daily",
                schedule.id,
                schedule.cron_expression,
            )
            return now + DEFAULT_INTERVAL
    if schedule.frequency == Frequency.INTERVAL and schedule.interval_minutes:
        return now + timedelta(minutes=schedule.interval_minutes)
    return now + FREQUENCY_INTERVALS.get(schedule.frequency, DEFAULT_INTERVAL)


def validate_schedule(schedule: Schedule, engine: JobEngine | None = None) -> None:
    """Reject definitions that could never produce a job.

    Raises:
        ValidationError: With a message naming the offending field.
    """
    if not schedule.name.strip():
        raise ValidationError("Schedule name is required")
    if schedule.frequency == Frequency.CUSTOM_CRON:
        if not schedule.cron_expression:
            raise ValidationError("custom_cron schedules need a cron expression")
        try:
            CronExpression(schedule.cron_expression)
        except ValueError as exc:
            raise ValidationError(f"Invalid cron expression: {exc}") from exc
    if schedule.frequency == Frequency.INTERVAL and (schedule.interval_minutes or 0) < 1:
        raise ValidationError("interval schedules need interval_minutes of at least 1")

    source = schedule.topic_source
    if source.kind == TopicSourceKind.MANUAL and not any(t.strip() for t in source.topics):
        raise ValidationError("A manual topic source needs at least one topic")
    if source.kind in (TopicSourceKind.KEYWORDS, TopicSourceKind.TRENDING) and not any(
        k.strip() for k in source.keywords
    ):
        raise ValidationError(f"A {source.kind} topic source needs keywords")
    if source.kind == TopicSourceKind.RSS and not any(f.strip() for f in source.feeds):
        raise ValidationError("An rss topic source needs at least one feed URL")

    if schedule.template_id and engine is not None and engine.templates.get(schedule.template_id) is None:
        raise ValidationError(f"Unknown template: {schedule.template_id!r}")


class Scheduler:
    """Creates, edits and fires schedules."""

    def __init__(
        self,
        store: ScheduleStore,
        triggers: TriggerStore,
        engine: JobEngine,
        *,
        topics: TopicResolver | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.triggers = triggers
        self.engine = engine
        self.topics = topics or TopicResolver()
        self.clock = clock

    # ── Arming ───────────────────────────────────────────────────

    def _arm(self, schedule: Schedule, now: datetime) -> None:
        if schedule.next_run is None or schedule.next_run <= now:
            schedule.next_run = compute_next_run(schedule, now)
        self.triggers.arm(schedule.id, schedule.next_run)

    def _disarm(self, schedule: Schedule) -> None:
        schedule.next_run = None
        self.triggers.clear(schedule.id)

    # ── Operator operations ──────────────────────────────────────

    def create_schedule(self, spec: ScheduleSpec) -> Schedule:
        """Validate and store a new schedule, arming it when active.

        Raises:
            ValidationError: The definition is incomplete. Nothing is stored.
        """
        data = spec.model_dump(exclude_none=True)
        if "name" not in data:
            raise ValidationError("Schedule name is required")
        schedule = Schedule.model_validate(data)
        validate_schedule(schedule, self.engine)

        now = self.clock()
        if schedule.is_active:
            schedule.next_run = compute_next_run(schedule, now)
        self.store.save(schedule)
        if schedule.is_active:
            self.triggers.arm(schedule.id, schedule.next_run)
        logger.info("Created schedule %s (%s), next run %s", schedule.id, schedule.name, schedule.next_run)
        return schedule

    def update_schedule(self, schedule_id: str, spec: ScheduleSpec) -> bool:
        """Apply the fields set in *spec*. Returns False for unknown ids.

        A changed frequency takes effect immediately: the pending trigger
        is replaced by one computed from now.

        Raises:
            ValidationError: The edited definition is incomplete.
        """
        schedule = self.store.get(schedule_id)
        if schedule is None:
            return False

        changes = spec.model_dump(exclude_none=True)
        timing_fields = {"frequency", "interval_minutes", "cron_expression"}
        timing_changed = any(
            field in changes and changes[field] != getattr(schedule, field) for field in timing_fields
        )
        updated = Schedule.model_validate({**schedule.model_dump(), **changes})
        validate_schedule(updated, self.engine)

        now = self.clock()
        if not updated.is_active:
            self._disarm(updated)
        else:
            if timing_changed or not schedule.is_active:
                updated.next_run = None
            self._arm(updated, now)
        self.store.save(updated)
        logger.info("Updated schedule %s", schedule_id)
        return True

    def toggle(self, schedule_id: str, active: bool) -> bool:
        schedule = self.store.get(schedule_id)
        if schedule is None:
            return False
        schedule.is_active = active
        if active:
            self._arm(schedule, self.clock())
        else:
            self._disarm(schedule)
        self.store.save(schedule)
        logger.info("Schedule %s %s", schedule_id, "activated" if active else "deactivated")
        return True

    def delete_schedule(self, schedule_id: str) -> bool:
        """Delete a schedule. Jobs it already created are left alone."""
        self.triggers.clear(schedule_id)
        deleted = self.store.delete(schedule_id)
        if deleted:
            logger.info("Deleted schedule %s", schedule_id)
        return deleted

    def get_schedule(self, schedule_id: str) -> Schedule | None:
        return self.store.get(schedule_id)

    def list_schedules(self, active: bool | None = None) -> list[Schedule]:
        return self.store.list(active)

    # ── Firing ───────────────────────────────────────────────────

    def fire(self, schedule_id: str) -> FireResult:
        """Create one job from the schedule and re-arm it.

        Never raises: a firing that cannot create a job is counted as a
        failure and the schedule is still rescheduled.
        """
        schedule = self.store.get(schedule_id)
        if schedule is None:
            self.triggers.clear(schedule_id)
            return FireResult(status=FireStatus.SKIPPED, schedule_id=schedule_id, message="No such schedule")
        if not schedule.is_active:
            self.triggers.clear(schedule_id)
            return FireResult(status=FireStatus.SKIPPED, schedule_id=schedule_id, message="Schedule is inactive")

        now = self.clock()
        schedule.run_count += 1
        schedule.last_run = now

        topic: str | None = None
        job_id: str | None = None
        try:
            topic = self.topics.resolve(schedule.topic_source)
            if not topic:
                raise ValidationError(f"{schedule.topic_source.kind} topic source produced no topic")
            job = self.engine.create_job(self._job_spec(schedule, topic))
            job_id = job.id
        except (ValidationError, PersistenceError) as exc:
            schedule.failure_count += 1
            schedule.last_error = str(exc)
            status = FireStatus.FAILED
            message = str(exc)
            logger.warning("Schedule %s firing failed: %s", schedule.id, exc)
        else:
            schedule.last_job_id = job_id
            schedule.last_error = None
            status = FireStatus.CREATED
            message = f"Created job {job_id}"
            logger.info("Schedule %s created job %s for %r", schedule.id, job_id, topic)

        schedule.next_run = compute_next_run(schedule, now)
        self.store.save(schedule)
        self.triggers.arm(schedule.id, schedule.next_run)
        return FireResult(
            status=status,
            schedule_id=schedule.id,
            job_id=job_id,
            topic=topic,
            next_run=schedule.next_run,
            message=message,
        )

    @staticmethod
    def _job_spec(schedule: Schedule, topic: str) -> JobSpec:
        defaults = schedule.post_defaults
        return JobSpec(
            topics=[topic],
            kind=JobKind.SCHEDULED,
            schedule_id=schedule.id,
            template_id=schedule.template_id,
            heading_count=defaults.heading_count,
            include_keywords=defaults.include_keywords,
            exclude_keywords=defaults.exclude_keywords,
            target=TargetMetadata(
                author=defaults.author,
                category=defaults.category,
                tags=list(defaults.tags),
                publish_at=defaults.publish_at,
                post_status=defaults.post_status,
                title_prefix=defaults.title_prefix,
            ),
        )

    def fire_due(self, now: datetime | None = None) -> list[FireResult]:
        """Fire every schedule whose trigger time has passed."""
        now = now or self.clock()
        return [self.fire(trigger.schedule_id) for trigger in self.triggers.due(now)]

    def record_outcome(self, schedule_id: str, success: bool) -> bool:
        """Count a finished job against the schedule that spawned it."""
        schedule = self.store.get(schedule_id)
        if schedule is None:
            return False
        if success:
            schedule.success_count += 1
        else:
            schedule.failure_count += 1
        self.store.save(schedule)
        return True

    def record_finished_jobs(self) -> int:
        """Count every finished scheduled job against its schedule, once.

        Covers jobs finished by any path: the runner, a manual advance, or
        a cancel applied later. Each job is flagged before its schedule is
        updated. Returns how many outcomes were recorded; 0 when an advance
        holds the lock.
        """
        recorded = 0
        with self.engine.lock.hold() as acquired:
            if not acquired:
                return 0
            for job in self.engine.list_jobs():
                if not job.is_terminal or job.schedule_id is None or job.outcome_recorded:
                    continue
                job.outcome_recorded = True
                self.engine.store.save(job)
                if self.record_outcome(job.schedule_id, job.status == JobStatus.COMPLETED):
                    recorded += 1
                    logger.info("Schedule %s: job %s %s", job.schedule_id, job.id, job.status)
        return recorded

    # ── Maintenance ──────────────────────────────────────────────

    def cleanup_inactive(self, days: int = DEFAULT_CLEANUP_DAYS) -> int:
        """Delete inactive schedules untouched for more than *days* days."""
        cutoff = self.clock() - timedelta(days=days)
        removed = 0
        for schedule in self.store.list(active=False):
            if schedule.updated_at < cutoff and self.delete_schedule(schedule.id):
                removed += 1
        if removed:
            logger.info("Removed %d stale inactive schedule(s)", removed)
        return removed

    def statistics(self, upcoming: int = 5) -> ScheduleStatistics:
        schedules = self.store.list()
        stats = ScheduleStatistics(
            total_schedules=len(schedules),
            active_schedules=sum(1 for s in schedules if s.is_active),
            total_runs=sum(s.run_count for s in schedules),
            successful_runs=sum(s.success_count for s in schedules),
            failed_runs=sum(s.failure_count for s in schedules),
        )
        armed = sorted(
            (s for s in schedules if s.is_active and s.next_run is not None),
            key=lambda s: s.next_run,
        )
        stats.upcoming = [
            {"id": s.id, "name": s.name, "next_run": s.next_run.isoformat()} for s in armed[:upcoming]
        ]
        return stats
