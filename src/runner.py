"""Local trigger substrate: poll due schedules and advance open jobs.

Any external timer (cron, systemd, a queue consumer) can call
``autowriter tick`` instead; ``run_forever`` only exists for hosts with
nothing better to drive it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime

from pydantic import BaseModel, Field

from autowriter.generation.engine import JobEngine
from autowriter.generation.models import AdvanceResult, utc_now
from autowriter.scheduling.scheduler import FireResult, Scheduler

logger = logging.getLogger(__name__)


class TickReport(BaseModel):
    fired: list[FireResult] = Field(default_factory=list)
    advanced: AdvanceResult | None = None
    recorded: int = 0


class Runner:
    def __init__(
        self,
        engine: JobEngine,
        scheduler: Scheduler,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.engine = engine
        self.scheduler = scheduler
        self.sleep = sleep

    def tick(self, now: datetime | None = None) -> TickReport:
        """Fire due schedules, advance the oldest open job once and count finished jobs."""
        now = now or utc_now()
        report = TickReport(fired=self.scheduler.fire_due(now))

        job = self.engine.next_active_job()
        if job is not None:
            result = self.engine.advance(job.id)
            report.advanced = result
            log = logger.info if result.mutated else logger.debug
            log("Advanced job %s: %s %s", job.id, result.outcome, result.message)

        report.recorded = self.scheduler.record_finished_jobs()
        return report

    def run_forever(self, interval: float = 60.0, *, max_ticks: int | None = None) -> int:
        """Tick every *interval* seconds until interrupted. Returns ticks run."""
        ticks = 0
        logger.info("Worker started, ticking every %.0fs", interval)
        try:
            while max_ticks is None or ticks < max_ticks:
                self.tick()
                ticks += 1
                if max_ticks is None or ticks < max_ticks:
                    self.sleep(interval)
        except KeyboardInterrupt:
            logger.info("Worker stopped after %d tick(s)", ticks)
        return ticks
