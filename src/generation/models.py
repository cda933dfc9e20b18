"""Generation domain models: items, jobs and advance outcomes.

An ``Item`` is one article moving through the stage pipeline; a ``Job``
owns one or more items and carries the aggregate progress, token and
cost figures. Both are plain Pydantic v2 models persisted as JSON.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def utc_now() -> datetime:
    return datetime.now(UTC)


class Stage(StrEnum):
    """Pipeline position of an item. Values only ever move forward."""

    PENDING = "pending"
    INTRO = "intro"
    HEADINGS = "headings"
    CONTENT = "content"
    CONCLUSION = "conclusion"
    FINALIZE = "finalize"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return STAGE_ORDER.index(self)

    def next(self) -> Stage:
        if self is Stage.COMPLETED:
            raise ValueError("completed is the last stage")
        return STAGE_ORDER[self.rank + 1]


STAGE_ORDER: list[Stage] = list(Stage)


class ItemStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobKind(StrEnum):
    SINGLE = "single"
    BULK = "bulk"
    SCHEDULED = "scheduled"


TERMINAL_ITEM_STATUSES = frozenset({ItemStatus.COMPLETED, ItemStatus.FAILED, ItemStatus.CANCELLED})
TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class TargetMetadata(BaseModel):
    """Where and how the finished article is published."""

    author: str = ""
    category: str = ""
    tags: list[str] = Field(default_factory=list)
    publish_at: datetime | None = None
    post_status: str = ""
    title_prefix: str = ""


class SectionArtifact(BaseModel):
    """Generated body for one heading."""

    heading: str
    content: str = ""
    conclusion: str = ""


class ItemArtifacts(BaseModel):
    """Working output accumulated between stages."""

    intro: str | None = None
    headings: list[str] = Field(default_factory=list)
    sections: list[SectionArtifact] = Field(default_factory=list)
    sections_completed: int = 0
    final_conclusion: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.intro is None and not self.headings and self.final_conclusion is None


class PendingOutput(BaseModel):
    """Raw provider text saved before it is parsed into artifacts.

    If the invocation dies between the provider call and the artifact
    write, the next invocation applies this instead of paying for the
    same generation twice.
    """

    stage: Stage
    section_index: int | None = None
    text: str
    tokens_used: int = 0
    cost: float = 0.0
    model: str = ""


class Item(BaseModel):
    """One article generated through the stage pipeline."""

    id: str = Field(default_factory=new_id)
    position: int = 0
    topic: str
    include_keywords: list[str] = Field(default_factory=list)
    exclude_keywords: list[str] = Field(default_factory=list)
    heading_count: int = 3
    temperature: float | None = None
    max_tokens: int | None = None
    model: str | None = None
    template_id: str | None = None
    target: TargetMetadata = Field(default_factory=TargetMetadata)

    stage: Stage = Stage.PENDING
    status: ItemStatus = ItemStatus.PENDING
    artifacts: ItemArtifacts = Field(default_factory=ItemArtifacts)
    pending_output: PendingOutput | None = None
    body: str | None = None
    content_id: str | None = None

    tokens_used: int = 0
    cost: float = 0.0
    stage_attempts: int = 0
    last_error: str | None = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ITEM_STATUSES

    @property
    def title(self) -> str:
        prefix = self.target.title_prefix.strip()
        return f"{prefix} {self.topic}" if prefix else self.topic


class JobError(BaseModel):
    item_id: str
    index: int
    topic: str
    stage: Stage
    error: str
    at: datetime = Field(default_factory=utc_now)


class JobResult(BaseModel):
    item_id: str
    topic: str
    content_id: str | None = None
    tokens_used: int = 0


class Job(BaseModel):
    """One or more items generated together, with aggregate accounting."""

    id: str = Field(default_factory=new_id)
    kind: JobKind = JobKind.SINGLE
    status: JobStatus = JobStatus.PENDING
    items: list[Item] = Field(default_factory=list)
    schedule_id: str | None = None
    template_id: str | None = None
    outcome_recorded: bool = False

    total_items: int = 0
    completed_items: int = 0
    failed_items: int = 0
    progress: float = 0.0

    estimated_tokens: int = 0
    estimated_cost: float = 0.0
    actual_tokens: int = 0
    actual_cost: float = 0.0

    error_log: list[JobError] = Field(default_factory=list)
    results: list[JobResult] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def next_item(self) -> Item | None:
        """First non-terminal item in creation order."""
        for item in sorted(self.items, key=lambda i: i.position):
            if not item.is_terminal:
                return item
        return None

    def find_item(self, item_id: str) -> Item | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def recount(self) -> None:
        """Recompute counters and progress from item state."""
        self.total_items = len(self.items)
        self.completed_items = sum(1 for i in self.items if i.status == ItemStatus.COMPLETED)
        # Cancelled items count as failed so a job can still reach completion.
        self.failed_items = sum(
            1 for i in self.items if i.status in (ItemStatus.FAILED, ItemStatus.CANCELLED)
        )
        self.actual_tokens = sum(i.tokens_used for i in self.items)
        self.actual_cost = round(sum(i.cost for i in self.items), 6)
        done = self.completed_items + self.failed_items
        self.progress = round(done / self.total_items * 100, 2) if self.total_items else 0.0


class AdvanceOutcome(StrEnum):
    BUSY = "busy"
    IDLE = "idle"
    ADVANCED = "advanced"
    RETRY = "retry"
    ITEM_FAILED = "item_failed"
    NOT_FOUND = "not_found"
    ERROR = "error"


class AdvanceResult(BaseModel):
    """What one ``advance`` invocation did."""

    outcome: AdvanceOutcome
    job_id: str
    message: str = ""
    item_id: str | None = None
    stage: Stage | None = None
    job_status: JobStatus | None = None
    progress: float = 0.0
    job_finished: bool = False

    @property
    def mutated(self) -> bool:
        return self.outcome in (AdvanceOutcome.ADVANCED, AdvanceOutcome.RETRY, AdvanceOutcome.ITEM_FAILED)
