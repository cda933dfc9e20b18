"""Tests for five-field cron parsing and next-run search."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from autowriter.scheduling.cron import CronExpression, CronField


def _at(day: int, hour: int = 0, minute: int = 0, second: int = 0, month: int = 1) -> datetime:
    return datetime(2024, month, day, hour, minute, second, tzinfo=UTC)


class TestCronField:
    def test_wildcard(self):
        field = CronField("*", 0, 59)
        assert field.is_wildcard
        assert len(field.values) == 60

    def test_list_range_and_step(self):
        assert CronField("1,3,5", 0, 59).values == {1, 3, 5}
        assert CronField("1-4", 0, 59).values == {1, 2, 3, 4}
        assert CronField("*/15", 0, 59).values == {0, 15, 30, 45}
        assert CronField("0-30/10", 0, 59).values == {0, 10, 20, 30}
        assert CronField("5/20", 0, 59).values == {5, 25, 45}

    @pytest.mark.parametrize("expr", ["60", "5-1", "*/0", "a", "1,,2"])
    def test_invalid(self, expr):
        with pytest.raises(ValueError):
            CronField(expr, 0, 59)


class TestCronExpression:
    def test_requires_five_fields(self):
        with pytest.raises(ValueError, match="exactly 5 fields"):
            CronExpression("0 8 * *")

    def test_weekday_mornings(self):
        # 2024-01-05 is a Friday
        cron = CronExpression("0 8 * * 1-5")
        assert cron.next_run(_at(5, 9)) == _at(8, 8)

    def test_every_quarter_hour(self):
        assert CronExpression("*/15 * * * *").next_run(_at(1, 10, 7)) == _at(1, 10, 15)

    def test_first_of_month(self):
        assert CronExpression("0 0 1 * *").next_run(_at(15)) == _at(1, month=2)

    def test_strictly_after(self):
        cron = CronExpression("30 10 * * *")
        assert cron.next_run(_at(1, 10, 30)) == _at(2, 10, 30)
        assert cron.next_run(_at(1, 10, 29, 45)) == _at(1, 10, 30)

    def test_seven_is_sunday(self):
        cron = CronExpression("0 12 * * 7")
        assert cron.day_of_week.values == {0}
        # 2024-01-06 is a Saturday
        assert cron.next_run(_at(6)) == _at(7, 12)

    def test_restricted_day_fields_match_either(self):
        cron = CronExpression("0 0 13 * 5")
        # Friday the 5th comes before the 13th
        assert cron.next_run(_at(1)) == _at(5)
        assert cron.matches(_at(13))

    def test_impossible_date(self):
        with pytest.raises(ValueError, match="No matching time"):
            CronExpression("0 0 31 2 *").next_run(_at(1))

    def test_keeps_timezone(self):
        result = CronExpression("0 * * * *").next_run(_at(1, 3, 20))
        assert result.tzinfo is UTC
        assert result == _at(1, 4)

    def test_str(self):
        assert str(CronExpression("  0 8 * * 1  ")) == "0 8 * * 1"
