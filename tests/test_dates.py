"""Tests for effective date resolution."""

from datetime import datetime, timedelta, timezone

import pytest

from src.core.dates import resolve_dates


def utc(year, month, day, hour=0):
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


CREATED = utc(2025, 12, 1)


class TestResolveDates:
    def test_both_dates_used_as_is(self):
        result = resolve_dates(utc(2026, 1, 1), utc(2026, 1, 31), CREATED)

        assert result.effective_start == utc(2026, 1, 1)
        assert result.effective_end == utc(2026, 1, 31)
        assert result.duration_days == 30

    def test_only_start_spans_five_days(self):
        result = resolve_dates(utc(2026, 1, 1), None, CREATED)

        assert result.effective_end == utc(2026, 1, 6)
        assert result.duration_days == 5

    def test_only_target_starts_five_days_before(self):
        result = resolve_dates(None, utc(2026, 1, 10), CREATED)

        assert result.effective_start == utc(2026, 1, 5)
        assert result.effective_end == utc(2026, 1, 10)

    def test_no_dates_falls_back_to_created_date(self):
        result = resolve_dates(None, None, CREATED)

        assert result.effective_start == CREATED
        assert result.effective_end == CREATED + timedelta(days=5)

    def test_same_start_and_target_gets_one_day_span(self):
        result = resolve_dates(utc(2026, 1, 1), utc(2026, 1, 1), CREATED)

        assert result.effective_end == utc(2026, 1, 2)
        assert result.duration_days == 1

    def test_target_before_start_is_forced_after_start(self):
        result = resolve_dates(utc(2026, 1, 10), utc(2026, 1, 5), CREATED)

        assert result.effective_start == utc(2026, 1, 10)
        assert result.effective_end == utc(2026, 1, 11)
        assert result.duration_days == 1

    def test_partial_days_round_up(self):
        result = resolve_dates(utc(2026, 1, 1), utc(2026, 1, 2, hour=12), CREATED)

        assert result.duration_days == 2

    @pytest.mark.parametrize(
        "start,target",
        [
            (utc(2026, 3, 1), utc(2026, 2, 1)),
            (utc(2026, 3, 1), None),
            (None, utc(2026, 3, 1)),
            (None, None),
        ],
    )
    def test_end_always_after_start(self, start, target):
        result = resolve_dates(start, target, CREATED)

        assert result.effective_end > result.effective_start
        assert result.duration_days >= 1

    def test_pure_function(self):
        first = resolve_dates(None, utc(2026, 1, 10), CREATED)
        second = resolve_dates(None, utc(2026, 1, 10), CREATED)

        assert first == second
