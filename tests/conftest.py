"""Shared fixtures for timeline engine tests."""

from datetime import datetime, timezone

import pytest

from src.core.store import Assignee, IterationPeriod, WorkRecord


def utc(year, month, day, hour=0):
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


@pytest.fixture
def make_record():
    """Factory for WorkRecords with sensible defaults."""

    def _make(record_id, **overrides):
        assignee = overrides.pop("assignee", None)
        if isinstance(assignee, str):
            assignee = Assignee(display_name=assignee, id=f"id-{assignee}", unique_name=f"{assignee}@example.com")
        fields = {
            "id": record_id,
            "title": f"Record {record_id}",
            "type": "Task",
            "state": "Active",
            "created_date": utc(2026, 1, 1),
            "changed_date": utc(2026, 1, 2),
            "assignee": assignee,
        }
        fields.update(overrides)
        return WorkRecord(**fields)

    return _make


@pytest.fixture
def calendar():
    """Three sprints with the middle one flagged current."""
    return [
        IterationPeriod(
            id="s1", name="Sprint 1", path="Proj\\Sprint 1",
            start_date=utc(2026, 1, 1), end_date=utc(2026, 1, 14),
        ),
        IterationPeriod(
            id="s2", name="Sprint 2", path="Proj\\Sprint 2",
            start_date=utc(2026, 1, 15), end_date=utc(2026, 1, 28), is_current=True,
        ),
        IterationPeriod(
            id="s3", name="Sprint 3", path="Proj\\Sprint 3",
            start_date=utc(2026, 1, 29), end_date=utc(2026, 2, 11),
        ),
    ]
