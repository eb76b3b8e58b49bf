# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test types:
- An in-memory AnalyticsStore with failure and delay injection
- Row builders for every backend collection
- A reference madrassah: ten active students, one teacher, one class
"""

import asyncio
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from typing import Any

import pytest

from src.domains.analytics.context import COLLECTIONS, AnalyticsDataContext
from src.domains.analytics.policy import AnalyticsPolicy
from src.domains.analytics.schemas import TimeRange
from src.infrastructure.database.connection import DatabaseError
from src.infrastructure.database.store import CollectionQuery

UTC = timezone.utc
RANGE_START = datetime(2025, 1, 1, tzinfo=UTC)
RANGE_END = datetime(2025, 1, 29, tzinfo=UTC)


# =============================================================================
# Fake store
# =============================================================================


def _comparable(value: Any, bound: date | datetime) -> bool:
    if isinstance(bound, datetime):
        return isinstance(value, datetime)
    return isinstance(value, date) and not isinstance(value, datetime)


class FakeAnalyticsStore:
    """In-memory AnalyticsStore.

    Applies equality and range filters like the SQL store does. Tables in
    ``failing`` raise DatabaseError; ``delay`` slows every fetch down.
    """

    def __init__(self, tables: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.failing: set[str] = set()
        self.delay: float = 0.0
        self.queries: list[CollectionQuery] = []
        self.updates: list[tuple[str, str, dict[str, Any]]] = []

    async def fetch(self, query: CollectionQuery) -> list[dict[str, Any]]:
        self.queries.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        if query.table in self.failing:
            raise DatabaseError(f"Query on '{query.table}' failed")

        rows = []
        for row in self.tables.get(query.table, []):
            if any(row.get(col) != value for col, value in query.equals.items()):
                continue
            value = row.get(query.range_column) if query.range_column else None
            if query.range_start is not None and _comparable(value, query.range_start):
                if value < query.range_start:
                    continue
            if query.range_end is not None and _comparable(value, query.range_end):
                if value > query.range_end:
                    continue
            rows.append(dict(row))
        return rows

    async def update_by_id(self, table: str, record_id: str, values: dict[str, Any]) -> bool:
        if table in self.failing:
            raise DatabaseError(f"Update of '{table}' row {record_id} failed")
        self.updates.append((table, record_id, values))
        for row in self.tables.get(table, []):
            if row.get("id") == record_id:
                row.update(values)
                return True
        return False


# =============================================================================
# Row builders
# =============================================================================


def _at(day: date, hour: int = 10) -> datetime:
    return datetime(day.year, day.month, day.day, hour, tzinfo=UTC)


class Rows:
    """Builders for backend rows with sensible defaults."""

    @staticmethod
    def student(student_id: str, name: str | None = None, **fields: Any) -> dict[str, Any]:
        return {
            "id": student_id,
            "name": name or f"Student {student_id}",
            "section": "boys",
            "status": "active",
            "enrollment_date": date(2024, 6, 1),
            "status_start_date": None,
            "current_juz": 1,
            "completed_juz": [],
            **fields,
        }

    @staticmethod
    def teacher(teacher_id: str, name: str | None = None, **fields: Any) -> dict[str, Any]:
        return {"id": teacher_id, "name": name or f"Teacher {teacher_id}", "role": "teacher", **fields}

    @staticmethod
    def class_(class_id: str, students: list[str], teachers: list[str], **fields: Any) -> dict[str, Any]:
        return {
            "id": class_id,
            "name": f"Class {class_id}",
            "capacity": 20,
            "current_students": students,
            "teacher_ids": teachers,
            "time_slots": [],
            "days_of_week": ["monday"],
            "status": "active",
            **fields,
        }

    @staticmethod
    def progress(entry_id: str, student_id: str, day: date, pages: float | None = 1, **fields: Any) -> dict[str, Any]:
        return {
            "id": entry_id,
            "student_id": student_id,
            "created_at": _at(day),
            "date": day,
            "pages_memorized": pages,
            "teacher_id": "t1",
            **fields,
        }

    @staticmethod
    def attendance(entry_id: str, student_id: str, day: date, status: str = "present", **fields: Any) -> dict[str, Any]:
        return {
            "id": entry_id,
            "student_id": student_id,
            "class_id": "c1",
            "teacher_id": "t1",
            "date": day,
            "created_at": _at(day, 9),
            "status": status,
            **fields,
        }

    @staticmethod
    def assignment(assignment_id: str, teacher_id: str, students: list[str], created: datetime, **fields: Any) -> dict[str, Any]:
        return {
            "id": assignment_id,
            "teacher_id": teacher_id,
            "student_ids": students,
            "created_at": created,
            "due_date": None,
            **fields,
        }

    @staticmethod
    def submission(submission_id: str, assignment_id: str, student_id: str, created: datetime, **fields: Any) -> dict[str, Any]:
        return {
            "id": submission_id,
            "assignment_id": assignment_id,
            "student_id": student_id,
            "status": "pending",
            "created_at": created,
            **fields,
        }

    @staticmethod
    def juz_revision(revision_id: str, student_id: str, day: date, quality: str | None = "good") -> dict[str, Any]:
        return {
            "id": revision_id,
            "student_id": student_id,
            "revision_date": day,
            "juz_revised": 1,
            "memorization_quality": quality,
        }

    @staticmethod
    def sabaq_para(revision_id: str, student_id: str, day: date, quality: str | None = "good") -> dict[str, Any]:
        return {
            "id": revision_id,
            "student_id": student_id,
            "revision_date": day,
            "juz_number": 1,
            "quality_rating": quality,
        }


def days(start: date, count: int) -> list[date]:
    return [start + timedelta(days=i) for i in range(count)]


def mondays_in_range() -> list[date]:
    return [d for d in days(RANGE_START.date(), 28) if d.weekday() == 0]


def build_scenario_tables() -> dict[str, list[dict[str, Any]]]:
    """Ten active students in one class with one teacher.

    Students s01-s08 memorize one page every day and attend every Monday
    session. Students s09 and s10 attend but record no progress at all.
    """
    student_ids = [f"s{i:02d}" for i in range(1, 11)]
    students = [Rows.student(sid, name=f"Student {sid}") for sid in student_ids]

    progress = [
        Rows.progress(f"p-{sid}-{day.isoformat()}", sid, day)
        for sid in student_ids[:8]
        for day in days(RANGE_START.date(), 28)
    ]
    attendance = [
        Rows.attendance(f"a-{sid}-{day.isoformat()}", sid, day)
        for sid in student_ids
        for day in mondays_in_range()
    ]
    return {
        "students": students,
        "profiles": [Rows.teacher("t1", name="Ustadh Bilal")],
        "classes": [Rows.class_("c1", student_ids, ["t1"])],
        "progress": progress,
        "attendance": attendance,
        "teacher_assignments": [],
        "teacher_assignment_submissions": [],
        "juz_revisions": [],
        "sabaq_para": [],
        "communications": [],
        "analytics_alerts": [],
    }


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def rows() -> type[Rows]:
    """Provide the row builders."""
    return Rows


@pytest.fixture
def policy() -> AnalyticsPolicy:
    """Provide the default analytics policy."""
    return AnalyticsPolicy()


@pytest.fixture
def time_range() -> TimeRange:
    """Provide the four-week reference window (2025-01-01 to 2025-01-29)."""
    return TimeRange(from_=RANGE_START, to=RANGE_END)


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Provide a clock frozen at the end of the reference window."""
    return lambda: RANGE_END


@pytest.fixture
def fake_store() -> FakeAnalyticsStore:
    """Provide an empty in-memory store."""
    return FakeAnalyticsStore()


@pytest.fixture
def scenario_store() -> FakeAnalyticsStore:
    """Provide a store holding the ten-student reference madrassah."""
    return FakeAnalyticsStore(build_scenario_tables())


@pytest.fixture
def build_context(time_range: TimeRange) -> Callable[..., AnalyticsDataContext]:
    """Provide a factory building a context straight from rows.

    Keyword arguments are context collection names mapped to row lists.
    """
    models = {spec.name: spec.model for spec in COLLECTIONS}

    def factory(range_: TimeRange | None = None, **collections: list[dict[str, Any]]) -> AnalyticsDataContext:
        records = {
            name: tuple(models[name].model_validate(row) for row in collection)
            for name, collection in collections.items()
        }
        return AnalyticsDataContext(time_range=range_ or time_range, **records)

    return factory


@pytest.fixture
def scenario_context(build_context: Callable[..., AnalyticsDataContext]) -> AnalyticsDataContext:
    """Provide the reference madrassah as a context."""
    tables = build_scenario_tables()
    return build_context(
        students=tables["students"],
        teachers=tables["profiles"],
        classes=tables["classes"],
        progress=tables["progress"],
        attendance=tables["attendance"],
    )


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
