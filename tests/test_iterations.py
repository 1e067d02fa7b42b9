"""Tests for @CurrentIteration resolution and iteration calendars."""

from datetime import datetime, timezone

import pytest

from src.core.iterations import (
    ITERATION_MACRO_OPTIONS,
    contains_iteration_macro,
    current_iteration_index,
    iteration_name_from_path,
    order_calendar,
    parse_iteration_period,
    parse_iteration_tree,
    resolve_iteration_macro,
    substitute_iteration_macros,
)
from src.core.store import IterationPeriod


def utc(year, month, day, hour=0):
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


class TestResolveMacro:
    @pytest.mark.parametrize(
        "expression,expected",
        [
            ("@CurrentIteration", "Proj\\Sprint 2"),
            ("@CurrentIteration-1", "Proj\\Sprint 1"),
            ("@CurrentIteration+1", "Proj\\Sprint 3"),
            ("@CurrentIteration + 1", "Proj\\Sprint 3"),
            ("@currentiteration - 1", "Proj\\Sprint 1"),
            ("@CurrentIteration−1", "Proj\\Sprint 1"),
            ("  @CurrentIteration  ", "Proj\\Sprint 2"),
        ],
    )
    def test_offsets_from_current(self, calendar, expression, expected):
        assert resolve_iteration_macro(expression, calendar) == expected

    def test_offset_past_end_is_none(self, calendar):
        assert resolve_iteration_macro("@CurrentIteration+2", calendar) is None

    def test_offset_before_start_is_none(self, calendar):
        assert resolve_iteration_macro("@CurrentIteration-2", calendar) is None

    def test_literal_path_is_returned_unchanged(self, calendar):
        assert resolve_iteration_macro("Proj\\Sprint 7", calendar) == "Proj\\Sprint 7"

    def test_no_current_iteration_is_none(self, calendar):
        periods = [
            IterationPeriod(id=p.id, name=p.name, path=p.path, start_date=p.start_date, end_date=p.end_date)
            for p in calendar
        ]

        assert resolve_iteration_macro("@CurrentIteration", periods) is None

    def test_current_from_now_when_nothing_flagged(self, calendar):
        periods = [
            IterationPeriod(id=p.id, name=p.name, path=p.path, start_date=p.start_date, end_date=p.end_date)
            for p in calendar
        ]

        assert resolve_iteration_macro("@CurrentIteration", periods, utc(2026, 2, 1)) == "Proj\\Sprint 3"

    def test_empty_calendar_is_none(self):
        assert resolve_iteration_macro("@CurrentIteration", []) is None


class TestCurrentIterationIndex:
    def test_flag_wins_over_now(self, calendar):
        assert current_iteration_index(calendar, utc(2026, 1, 5)) == 1

    def test_undated_periods_never_contain_now(self):
        periods = [IterationPeriod(id="x", name="Backlog", path="Proj\\Backlog")]

        assert current_iteration_index(periods, utc(2026, 1, 5)) is None


class TestMacroDetection:
    def test_contains_macro(self):
        assert contains_iteration_macro("@CurrentIteration-1")
        assert contains_iteration_macro("[System.IterationPath] = @CurrentIteration")
        assert not contains_iteration_macro("Proj\\Sprint 1")
        assert not contains_iteration_macro(None)
        assert not contains_iteration_macro("")

    def test_dropdown_options_are_macros(self):
        values = [option["value"] for option in ITERATION_MACRO_OPTIONS]

        assert "@CurrentIteration" in values
        assert all(contains_iteration_macro(v) for v in values)


class TestSubstituteMacros:
    def test_macros_replaced_with_quoted_paths(self, calendar):
        query = "[System.IterationPath] = @CurrentIteration OR [System.IterationPath] = @CurrentIteration-1"

        result = substitute_iteration_macros(query, calendar)

        assert result == "[System.IterationPath] = 'Proj\\Sprint 2' OR [System.IterationPath] = 'Proj\\Sprint 1'"

    def test_quotes_in_paths_are_doubled(self):
        periods = [IterationPeriod(id="a", name="O'Brien", path="Proj\\O'Brien", is_current=True)]

        assert substitute_iteration_macros("@CurrentIteration", periods) == "'Proj\\O''Brien'"

    def test_unresolvable_macro_left_as_is(self, calendar):
        query = "[System.IterationPath] = @CurrentIteration+5"

        assert substitute_iteration_macros(query, calendar) == query


class TestCalendar:
    def test_order_calendar_dated_first(self):
        periods = [
            IterationPeriod(id="b", name="Backlog", path="P\\Backlog"),
            IterationPeriod(id="2", name="Sprint 2", path="P\\Sprint 2", start_date=utc(2026, 2, 1)),
            IterationPeriod(id="a", name="Archive", path="P\\Archive"),
            IterationPeriod(id="1", name="Sprint 1", path="P\\Sprint 1", start_date=utc(2026, 1, 1)),
        ]

        assert [p.id for p in order_calendar(periods)] == ["1", "2", "a", "b"]

    def test_iteration_name_from_path(self):
        assert iteration_name_from_path("Proj\\Release 1\\Sprint 3") == "Sprint 3"
        assert iteration_name_from_path("Proj") == "Proj"

    def test_parse_iteration_tree(self):
        tree = {
            "name": "Proj",
            "structureType": 2,
            "children": [
                {
                    "name": "Sprint 2",
                    "identifier": "s2",
                    "structureType": 2,
                    "attributes": {"startDate": "2026-01-15T00:00:00Z", "finishDate": "2026-01-28T00:00:00Z"},
                },
                {
                    "name": "Sprint 1",
                    "identifier": "s1",
                    "structureType": 2,
                    "attributes": {"startDate": "2026-01-01T00:00:00Z", "finishDate": "2026-01-14T00:00:00Z"},
                },
                {"name": "Area", "structureType": 1},
            ],
        }

        periods = parse_iteration_tree(tree, now=utc(2026, 1, 20))

        assert [p.path for p in periods] == ["Proj\\Sprint 1", "Proj\\Sprint 2", "Proj"]
        assert [p.is_current for p in periods] == [False, True, False]
        assert periods[0].start_date == utc(2026, 1, 1)

    def test_parse_iteration_tree_empty(self):
        assert parse_iteration_tree(None) == []

    def test_parse_iteration_period_camel_case(self):
        period = parse_iteration_period(
            {"path": "Proj\\Sprint 4", "startDate": "2026-03-01", "finishDate": "2026-03-14", "isCurrent": True}
        )

        assert period.name == "Sprint 4"
        assert period.id == "Proj\\Sprint 4"
        assert period.start_date == utc(2026, 3, 1)
        assert period.end_date == utc(2026, 3, 14)
        assert period.is_current is True
