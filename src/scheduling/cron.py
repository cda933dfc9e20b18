"""Five-field cron expressions: ``minute hour day-of-month month day-of-week``.

Supports ``*``, single values, ranges (``1-5``), lists (``1,3,5``) and
steps (``*/15``, ``0-30/10``). Day-of-week uses 0=Sunday; 7 is accepted
as Sunday too.
"""

from __future__ import annotations

from datetime import datetime, timedelta

MAX_SEARCH_DAYS = 366


class CronField:
    """One field of a cron expression, expanded to the set of values it allows."""

    def __init__(self, expression: str, min_val: int, max_val: int) -> None:
        self.expression = expression
        self.min_val = min_val
        self.max_val = max_val
        self.values: frozenset[int] = frozenset(self._parse(expression))
        self.is_wildcard = expression.strip() == "*"

    def _check(self, value: int) -> int:
        if not self.min_val <= value <= self.max_val:
            raise ValueError(
                f"Value {value} out of range {self.min_val}-{self.max_val} in {self.expression!r}"
            )
        return value

    def _parse(self, expr: str) -> set[int]:
        values: set[int] = set()
        for part in expr.split(","):
            part = part.strip()
            if not part:
                raise ValueError(f"Empty list entry in cron field {expr!r}")

            step = 1
            if "/" in part:
                part, step_str = part.split("/", 1)
                step = int(step_str)
                if step < 1:
                    raise ValueError(f"Step must be positive in {expr!r}")

            if part == "*":
                values.update(range(self.min_val, self.max_val + 1, step))
            elif "-" in part:
                start_str, end_str = part.split("-", 1)
                start, end = self._check(int(start_str)), self._check(int(end_str))
                if start > end:
                    raise ValueError(f"Descending range in cron field {expr!r}")
                values.update(range(start, end + 1, step))
            else:
                start = self._check(int(part))
                if step > 1:
                    values.update(range(start, self.max_val + 1, step))
                else:
                    values.add(start)
        return values

    def matches(self, value: int) -> bool:
        return value in self.values

    def __repr__(self) -> str:
        return f"CronField({self.expression!r}, values={sorted(self.values)})"


class CronExpression:
    """Parse and evaluate a cron expression.

    Examples:
        "0 8 * * 1-5"    -> 8:00 on weekdays
        "*/15 * * * *"   -> every 15 minutes
        "0 0 1 * *"      -> midnight on the 1st of each month
    """

    def __init__(self, expression: str) -> None:
        self.expression = expression.strip()
        parts = self.expression.split()
        if len(parts) != 5:
            raise ValueError(
                f"Cron expression must have exactly 5 fields "
                f"(minute hour dom month dow), got {len(parts)}: {self.expression!r}"
            )
        self.minute = CronField(parts[0], 0, 59)
        self.hour = CronField(parts[1], 0, 23)
        self.day_of_month = CronField(parts[2], 1, 31)
        self.month = CronField(parts[3], 1, 12)
        dow = CronField(parts[4], 0, 7)
        if 7 in dow.values:
            dow.values = frozenset((dow.values - {7}) | {0})
        self.day_of_week = dow

    def _day_matches(self, dt: datetime) -> bool:
        cron_weekday = (dt.weekday() + 1) % 7  # Sun=0 .. Sat=6
        dom_ok = self.day_of_month.matches(dt.day)
        dow_ok = self.day_of_week.matches(cron_weekday)
        # Classic cron: when both day fields are restricted, either may match.
        if not self.day_of_month.is_wildcard and not self.day_of_week.is_wildcard:
            return dom_ok or dow_ok
        return dom_ok and dow_ok

    def matches(self, dt: datetime) -> bool:
        return (
            self.minute.matches(dt.minute)
            and self.hour.matches(dt.hour)
            and self.month.matches(dt.month)
            and self._day_matches(dt)
        )

    def next_run(self, after: datetime) -> datetime:
        """First matching minute strictly after *after*, in *after*'s timezone.

        Raises:
            ValueError: Nothing matches within a year (e.g. "0 0 31 2 *").
        """
        candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit = after + timedelta(days=MAX_SEARCH_DAYS)
        while candidate <= limit:
            if not self.month.matches(candidate.month) or not self._day_matches(candidate):
                candidate = (candidate + timedelta(days=1)).replace(hour=0, minute=0)
                continue
            if not self.hour.matches(candidate.hour):
                candidate = (candidate + timedelta(hours=1)).replace(minute=0)
                continue
            if self.minute.matches(candidate.minute):
                return candidate
            candidate += timedelta(minutes=1)

        raise ValueError(
            f"No matching time found for cron expression {self.expression!r} "
            f"within {MAX_SEARCH_DAYS} days after {after.isoformat()}"
        )

    def __str__(self) -> str:
        return self.expression

    def __repr__(self) -> str:
        return f"CronExpression({self.expression!r})"
