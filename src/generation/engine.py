"""Job engine: the single entry point triggers call to make progress.

``advance`` takes the execution lock, does one bounded unit of work,
persists it and releases the lock. Triggers may fire concurrently from
separate processes; losers get a ``busy`` result and change nothing.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel, Field

from autowriter.config import AutowriterConfig, RuntimeSettings
from autowriter.errors import (
    AutowriterError,
    PersistenceError,
    ProviderError,
    PublishError,
    ValidationError,
)
from autowriter.generation.models import (
    AdvanceOutcome,
    AdvanceResult,
    Item,
    ItemStatus,
    Job,
    JobError,
    JobKind,
    JobResult,
    JobStatus,
    TargetMetadata,
    utc_now,
)
from autowriter.generation.pipeline import ItemPipeline
from autowriter.generation.store import JobStore
from autowriter.generation.templates import TemplateLibrary
from autowriter.lock import ExecutionLock, FileKVStore
from autowriter.providers.manager import ProviderManager
from autowriter.publishers.base import ContentPublisher

logger = logging.getLogger(__name__)

DEFAULT_TOKENS_PER_ITEM = 800
MAX_HEADING_COUNT = 20


class JobSpec(BaseModel):
    """What an operator (or a schedule firing) asks to be generated."""

    topics: list[str]
    kind: JobKind | None = None
    include_keywords: list[str] = Field(default_factory=list)
    exclude_keywords: list[str] = Field(default_factory=list)
    heading_count: int | None = None
    template_id: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    target: TargetMetadata = Field(default_factory=TargetMetadata)
    schedule_id: str | None = None


class JobStatistics(BaseModel):
    total_jobs: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    total_items: int = 0
    completed_items: int = 0
    failed_items: int = 0
    actual_tokens: int = 0
    actual_cost: float = 0.0


def clean_keywords(keywords: list[str]) -> list[str]:
    """Split comma lists and drop blanks, keeping order."""
    cleaned: list[str] = []
    for entry in keywords:
        for part in entry.split(","):
            part = part.strip()
            if part and part not in cleaned:
                cleaned.append(part)
    return cleaned


class JobEngine:
    """Creates jobs and drives their items through the pipeline."""

    def __init__(
        self,
        store: JobStore,
        lock: ExecutionLock,
        providers: ProviderManager,
        publisher: ContentPublisher,
        *,
        config: AutowriterConfig | None = None,
        templates: TemplateLibrary | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.lock = lock
        self.providers = providers
        self.config = config or providers.config
        self.templates = templates or TemplateLibrary()
        self.sleep = sleep
        self.pipeline = ItemPipeline(
            providers,
            publisher,
            body_format=self.config.generation.body_format,
            templates=self.templates,
        )

    @classmethod
    def from_config(
        cls,
        config: AutowriterConfig,
        publisher: ContentPublisher,
        *,
        providers: ProviderManager | None = None,
    ) -> JobEngine:
        """Wire an engine over the on-disk stores in ``config.storage``."""
        state_dir: Path = config.storage.path
        return cls(
            JobStore(state_dir),
            ExecutionLock(FileKVStore(state_dir / "locks"), ttl=config.generation.lock_ttl),
            providers or ProviderManager(config, state_dir),
            publisher,
            config=config,
            templates=TemplateLibrary(state_dir),
        )

    @property
    def settings(self) -> RuntimeSettings:
        return self.providers.settings

    # ── Job creation ─────────────────────────────────────────────

    def create_job(self, spec: JobSpec) -> Job:
        """Validate *spec*, estimate its cost and persist it as pending.

        Raises:
            ValidationError: Empty or oversized batch, blank topic, bad
                heading count or unknown template. Nothing is stored.
        """
        topics = [t.strip() for t in spec.topics]
        if not topics:
            raise ValidationError("A job needs at least one topic")
        if any(not t for t in topics):
            raise ValidationError("Topics must not be blank")

        limit = self.config.generation.max_batch_size
        if len(topics) > limit:
            raise ValidationError(f"Batch of {len(topics)} topics exceeds the maximum of {limit}")

        kind = spec.kind or (JobKind.BULK if len(topics) > 1 else JobKind.SINGLE)
        if kind != JobKind.BULK and len(topics) != 1:
            raise ValidationError(f"A {kind} job takes exactly one topic")

        template = None
        if spec.template_id:
            template = self.templates.get(spec.template_id)
            if template is None:
                raise ValidationError(f"Unknown template: {spec.template_id!r}")

        settings = self.settings
        heading_count = spec.heading_count
        if heading_count is None and template is not None:
            heading_count = template.settings.heading_count
        heading_count = heading_count or settings.heading_count
        if not 1 <= heading_count <= MAX_HEADING_COUNT:
            raise ValidationError(f"Heading count must be between 1 and {MAX_HEADING_COUNT}")

        temperature = spec.temperature
        if temperature is None and template is not None:
            temperature = template.settings.temperature

        include = clean_keywords(spec.include_keywords)
        exclude = clean_keywords(spec.exclude_keywords)
        items = [
            Item(
                position=index,
                topic=topic,
                include_keywords=include,
                exclude_keywords=exclude,
                heading_count=heading_count,
                temperature=temperature,
                max_tokens=spec.max_tokens,
                model=spec.model,
                template_id=spec.template_id,
                target=spec.target.model_copy(deep=True),
            )
            for index, topic in enumerate(topics)
        ]

        per_item = template.token_budget if template is not None else DEFAULT_TOKENS_PER_ITEM
        estimated_tokens = per_item * len(items)
        job = Job(
            kind=kind,
            items=items,
            schedule_id=spec.schedule_id,
            template_id=spec.template_id,
            total_items=len(items),
            estimated_tokens=estimated_tokens,
            estimated_cost=self.providers.estimate_cost(estimated_tokens, spec.model),
        )
        self.store.save(job)
        logger.info(
            "Created %s job %s with %d item(s), estimated %d tokens",
            kind,
            job.id,
            len(items),
            estimated_tokens,
        )
        if template is not None:
            try:
                self.templates.increment_usage(template.id)
            except PersistenceError as exc:
                logger.error("Usage of template %s was not recorded: %s", template.id, exc)
        return job

    # ── Advancement ──────────────────────────────────────────────

    def advance(self, job_id: str) -> AdvanceResult:
        """Do the next unit of work on a job.

        Never raises: lock contention, missing jobs, provider failures and
        persistence failures all come back as an :class:`AdvanceResult`.
        """
        try:
            with self.lock.hold() as acquired:
                if not acquired:
                    return AdvanceResult(
                        outcome=AdvanceOutcome.BUSY,
                        job_id=job_id,
                        message="Another advance is already in progress",
                    )
                return self._advance_locked(job_id)
        except PersistenceError as exc:
            logger.error("Could not persist job %s; generated output may be lost: %s", job_id, exc)
            return AdvanceResult(outcome=AdvanceOutcome.ERROR, job_id=job_id, message=str(exc))
        except AutowriterError as exc:
            logger.error("Advancing job %s failed: %s", job_id, exc)
            return AdvanceResult(outcome=AdvanceOutcome.ERROR, job_id=job_id, message=str(exc))

    def _advance_locked(self, job_id: str) -> AdvanceResult:
        job = self.store.get(job_id)
        if job is None:
            return AdvanceResult(outcome=AdvanceOutcome.NOT_FOUND, job_id=job_id, message="No such job")

        if self._apply_cancel_requests(job):
            self.store.save(job)
        if job.is_terminal:
            return self._result(job, AdvanceOutcome.IDLE, message=f"Job is {job.status}")

        if job.kind == JobKind.BULK:
            return self._run_bulk(job)

        item = job.next_item()
        if item is None:
            self._finish_if_done(job)
            self.store.save(job)
            return self._result(job, AdvanceOutcome.IDLE, message="No pending items")

        result = self._step(job, item)
        self._commit(job, item, result)
        return result

    def _run_bulk(self, job: Job) -> AdvanceResult:
        """Work through every open item in one invocation.

        Items that hit a retryable provider error are left for the next
        invocation instead of being retried in a blocking loop. The lock
        is refreshed before every stage; if it was lost to another holder
        the invocation stops with what it has already saved.
        """
        worked = 0
        retrying = 0
        for item in sorted(job.items, key=lambda i: i.position):
            if item.is_terminal:
                continue
            if worked:
                self.sleep(self.config.generation.inter_item_delay)
            if not self.lock.refresh():
                return self._lock_lost(job, worked)
            if self._apply_cancel_requests(job):
                self._save(job)
            if job.is_terminal:
                break
            if item.is_terminal:
                continue

            worked += 1
            while not item.is_terminal:
                step = self._step(job, item)
                self._commit(job, item, step)
                if step.outcome == AdvanceOutcome.RETRY:
                    retrying += 1
                    break
                if not item.is_terminal and not self.lock.refresh():
                    return self._lock_lost(job, worked)

        if worked == 0:
            return self._result(job, AdvanceOutcome.IDLE, message="No pending items")
        message = f"Processed {worked} item(s)"
        if retrying:
            message += f", {retrying} waiting to retry"
        return self._result(job, AdvanceOutcome.ADVANCED, message=message)

    def _lock_lost(self, job: Job, worked: int) -> AdvanceResult:
        logger.warning(
            "Lock %s expired while processing job %s; stopping after %d item(s)",
            self.lock.key,
            job.id,
            worked,
        )
        return self._result(
            job,
            AdvanceOutcome.ERROR,
            message="Execution lock was lost; remaining work left for the next invocation",
        )

    def _step(self, job: Job, item: Item) -> AdvanceResult:
        """Advance one item by one stage and fold the outcome into the job."""
        if job.status == JobStatus.PENDING:
            job.status = JobStatus.PROCESSING
            job.started_at = utc_now()

        stage = item.stage
        outcome = AdvanceOutcome.ADVANCED
        message = ""
        try:
            self.pipeline.advance(item, checkpoint=lambda: self._save(job))
        except ProviderError as exc:
            outcome, message = self._provider_failure(job, item, exc)
        except PublishError as exc:
            self._fail_item(job, item, f"Publish failed: {exc}")
            outcome, message = AdvanceOutcome.ITEM_FAILED, str(exc)
        else:
            message = f"{stage} -> {item.stage}"
            if item.status == ItemStatus.COMPLETED:
                job.results.append(
                    JobResult(
                        item_id=item.id,
                        topic=item.topic,
                        content_id=item.content_id,
                        tokens_used=item.tokens_used,
                    )
                )

        self._finish_if_done(job)
        return self._result(job, outcome, item=item, message=message)

    def _commit(self, job: Job, item: Item, step: AdvanceResult) -> None:
        """Persist a step, then update the counters that depend on it.

        The job is written first. A failed counter update is logged and
        leaves the step as it was.
        """
        self._save(job)
        if step.outcome != AdvanceOutcome.ADVANCED or item.status != ItemStatus.COMPLETED:
            return
        try:
            self.providers.usage.record_generation()
        except PersistenceError as exc:
            logger.error("Item %s published but the generation counter was not updated: %s", item.id, exc)

    def _provider_failure(self, job: Job, item: Item, exc: ProviderError) -> tuple[AdvanceOutcome, str]:
        item.stage_attempts += 1
        item.last_error = str(exc)
        item.updated_at = utc_now()
        budget = self.config.generation.max_stage_retries
        if item.stage_attempts >= budget:
            self._fail_item(job, item, f"{type(exc).__name__} after {item.stage_attempts} attempt(s): {exc}")
            return AdvanceOutcome.ITEM_FAILED, str(exc)

        log = logger.warning if exc.retryable else logger.error
        log(
            "Item %s %s attempt %d/%d failed: %s",
            item.id,
            item.stage,
            item.stage_attempts,
            budget,
            exc,
        )
        return AdvanceOutcome.RETRY, str(exc)

    def _fail_item(self, job: Job, item: Item, message: str) -> None:
        item.status = ItemStatus.FAILED
        item.last_error = message
        item.updated_at = utc_now()
        job.error_log.append(
            JobError(item_id=item.id, index=item.position, topic=item.topic, stage=item.stage, error=message)
        )
        logger.warning("Item %s (%s) failed at %s: %s", item.id, item.topic, item.stage, message)

    def _finish_if_done(self, job: Job) -> bool:
        job.recount()
        if job.is_terminal or job.completed_items + job.failed_items < job.total_items:
            return False
        if job.completed_items == 0:
            all_cancelled = all(i.status == ItemStatus.CANCELLED for i in job.items)
            job.status = JobStatus.CANCELLED if all_cancelled else JobStatus.FAILED
        else:
            job.status = JobStatus.COMPLETED
        job.completed_at = utc_now()
        logger.info(
            "Job %s %s: %d completed, %d failed, %d tokens ($%.4f)",
            job.id,
            job.status,
            job.completed_items,
            job.failed_items,
            job.actual_tokens,
            job.actual_cost,
        )
        return True

    def _save(self, job: Job) -> None:
        self._apply_cancel_requests(job)
        self.store.save(job)

    def _result(
        self,
        job: Job,
        outcome: AdvanceOutcome,
        *,
        item: Item | None = None,
        message: str = "",
    ) -> AdvanceResult:
        return AdvanceResult(
            outcome=outcome,
            job_id=job.id,
            message=message,
            item_id=item.id if item else None,
            stage=item.stage if item else None,
            job_status=job.status,
            progress=job.progress,
            job_finished=job.is_terminal and outcome != AdvanceOutcome.IDLE,
        )

    # ── Cancellation ─────────────────────────────────────────────

    def _apply_cancel_requests(self, job: Job) -> bool:
        requests = self.store.pop_cancel_requests(job.id)
        changed = False
        for item_id in requests:
            if item_id is None:
                changed = self._cancel_job(job) or changed
            else:
                item = job.find_item(item_id)
                if item is not None and not item.is_terminal:
                    self._cancel_item(item)
                    changed = True
        if changed:
            self._finish_if_done(job)
        return changed

    @staticmethod
    def _cancel_item(item: Item) -> None:
        item.status = ItemStatus.CANCELLED
        item.updated_at = utc_now()
        logger.info("Cancelled item %s at stage %s", item.id, item.stage)

    def _cancel_job(self, job: Job) -> bool:
        if job.is_terminal:
            return False
        for item in job.items:
            if not item.is_terminal:
                self._cancel_item(item)
        job.recount()
        job.status = JobStatus.CANCELLED
        job.completed_at = utc_now()
        logger.info("Cancelled job %s", job.id)
        return True

    def cancel(self, job_id: str, item_id: str | None = None) -> bool:
        """Cancel a pending or processing job, or one of its items.

        When another invocation holds the lock the request is queued and
        applied by that invocation before it selects further work. An
        in-flight provider call is never interrupted. Returns False when
        the job or item does not exist or is already finished.
        """
        job = self.store.get(job_id)
        if job is None or job.is_terminal:
            return False
        if item_id is not None:
            item = job.find_item(item_id)
            if item is None or item.is_terminal:
                return False

        self.store.request_cancel(job_id, item_id)
        with self.lock.hold() as acquired:
            if acquired:
                job = self.store.get(job_id)
                if job is not None and self._apply_cancel_requests(job):
                    self.store.save(job)
        return True

    def cancel_item(self, job_id: str, item_id: str) -> bool:
        return self.cancel(job_id, item_id)

    # ── Queries and administration ───────────────────────────────

    def get_job(self, job_id: str) -> Job | None:
        return self.store.get(job_id)

    def list_jobs(
        self,
        status: JobStatus | None = None,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Job]:
        return self.store.list(status, limit=limit, offset=offset)

    def next_active_job(self) -> Job | None:
        return self.store.next_active()

    def delete_job(self, job_id: str) -> bool:
        """Delete a job and its items. Refused while an advance is running."""
        with self.lock.hold() as acquired:
            if not acquired:
                logger.warning("Not deleting job %s while an advance is in progress", job_id)
                return False
            deleted = self.store.delete(job_id)
        if deleted:
            logger.info("Deleted job %s", job_id)
        return deleted

    def statistics(self) -> JobStatistics:
        stats = JobStatistics()
        for job in self.store.list():
            stats.total_jobs += 1
            stats.by_status[job.status] = stats.by_status.get(job.status, 0) + 1
            stats.total_items += job.total_items
            stats.completed_items += job.completed_items
            stats.failed_items += job.failed_items
            stats.actual_tokens += job.actual_tokens
            stats.actual_cost = round(stats.actual_cost + job.actual_cost, 6)
        return stats
