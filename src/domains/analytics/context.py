# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Analytics data context and its loader.

An AnalyticsDataContext is the immutable snapshot every calculator works
from: ten record collections scoped to one ``[from, to]`` window. The
loader fetches all collections concurrently under a single timeout.

Students, teachers and classes are critical: a failure there aborts the
load with AnalyticsFetchError. The other seven collections are optional:
a failure is logged, the collection is left empty and its name recorded
in ``degraded_collections``.

Example:
    loader = AnalyticsContextLoader(store, timeout_seconds=30)
    context = await loader.load()
    print(len(context.students), context.degraded_collections)
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from functools import cached_property
from typing import Any, Callable, Generic, TypeVar

from pydantic import ValidationError

from src.domains.analytics.models import (
    Assignment,
    AttendanceEntry,
    ClassRecord,
    Communication,
    JuzRevision,
    ProgressEntry,
    RecordModel,
    SabaqPara,
    Student,
    Submission,
    Teacher,
)
from src.domains.analytics.schemas import TimeRange
from src.infrastructure.database.store import AnalyticsStore, CollectionQuery
from src.utils.datetime import ensure_utc, subtract_months, utc_now

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=RecordModel)


class AnalyticsError(Exception):
    """Base exception for analytics operations."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        self.message = message
        self.original_error = original_error
        super().__init__(self.message)


class AnalyticsFetchError(AnalyticsError):
    """A critical collection could not be loaded."""

    def __init__(
        self,
        collection: str,
        message: str,
        original_error: Exception | None = None,
    ) -> None:
        self.collection = collection
        super().__init__(f"Failed to fetch {collection}: {message}", original_error)


class AnalyticsTimeoutError(AnalyticsFetchError):
    """The joint fetch did not finish within the configured bound."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            "analytics data",
            f"request timed out after {timeout_seconds:g}s",
        )


def resolve_time_range(
    from_: datetime | None = None,
    to: datetime | None = None,
    *,
    now: datetime | None = None,
    lookback_months: int = 12,
) -> TimeRange:
    """Apply defaults and clamping to a requested window.

    Rules:
    - missing ``to`` is now; a future ``to`` is clamped to now
    - missing ``from_`` is ``to`` minus the lookback; a future ``from_``
      is reset to now minus the lookback
    - ``from_ >= to`` moves ``from_`` to one month before ``to``

    Args:
        from_: Requested start, naive values are taken as UTC.
        to: Requested end.
        now: Reference time, defaults to the current UTC time.
        lookback_months: Default window length in months.

    Returns:
        A valid TimeRange with ``from < to <= now``.
    """
    now = ensure_utc(now) if now is not None else utc_now()
    to = ensure_utc(to) if to is not None else now
    if to > now:
        to = now

    if from_ is None:
        from_ = subtract_months(to, lookback_months)
    else:
        from_ = ensure_utc(from_)
        if from_ > now:
            from_ = subtract_months(now, lookback_months)

    if from_ >= to:
        from_ = subtract_months(to, 1)

    return TimeRange(from_=from_, to=to)


def previous_period(time_range: TimeRange) -> TimeRange:
    """The window of equal length ending where time_range starts."""
    return TimeRange(from_=time_range.from_ - time_range.duration, to=time_range.from_)


@dataclass(frozen=True)
class AnalyticsDataContext:
    """Immutable snapshot of the backend collections for one window."""

    time_range: TimeRange
    students: tuple[Student, ...] = ()
    teachers: tuple[Teacher, ...] = ()
    classes: tuple[ClassRecord, ...] = ()
    progress: tuple[ProgressEntry, ...] = ()
    attendance: tuple[AttendanceEntry, ...] = ()
    assignments: tuple[Assignment, ...] = ()
    submissions: tuple[Submission, ...] = ()
    juz_revisions: tuple[JuzRevision, ...] = ()
    sabaq_para: tuple[SabaqPara, ...] = ()
    communications: tuple[Communication, ...] = ()
    degraded_collections: tuple[str, ...] = ()

    @property
    def active_students(self) -> tuple[Student, ...]:
        return tuple(s for s in self.students if s.is_active)

    @cached_property
    def progress_by_student(self) -> dict[str, tuple[ProgressEntry, ...]]:
        return _group(self.progress, lambda p: p.student_id)

    @cached_property
    def attendance_by_student(self) -> dict[str, tuple[AttendanceEntry, ...]]:
        return _group(self.attendance, lambda a: a.student_id)

    @cached_property
    def submissions_by_student(self) -> dict[str, tuple[Submission, ...]]:
        return _group(self.submissions, lambda s: s.student_id)

    @cached_property
    def juz_revisions_by_student(self) -> dict[str, tuple[JuzRevision, ...]]:
        return _group(self.juz_revisions, lambda r: r.student_id)

    @cached_property
    def sabaq_para_by_student(self) -> dict[str, tuple[SabaqPara, ...]]:
        return _group(self.sabaq_para, lambda r: r.student_id)


def _group(records: tuple[R, ...], key: Callable[[R], str]) -> dict[str, tuple[R, ...]]:
    grouped: dict[str, list[R]] = defaultdict(list)
    for record in records:
        grouped[key(record)].append(record)
    return {k: tuple(v) for k, v in grouped.items()}


@dataclass(frozen=True)
class CollectionSpec(Generic[R]):
    """How one context collection is queried, validated and scoped.

    Attributes:
        name: Context attribute the records are stored under.
        table: Backend table.
        columns: Columns selected.
        model: Record model rows are validated into.
        critical: Whether a failure aborts the whole load.
        equals: Equality filters.
        range_column: Column the window is applied to, None if unscoped.
        date_precision: Compare the window at day precision.
    """

    name: str
    table: str
    columns: tuple[str, ...]
    model: type[R]
    critical: bool = False
    equals: tuple[tuple[str, Any], ...] = ()
    range_column: str | None = None
    date_precision: bool = False

    def build_query(self, time_range: TimeRange) -> CollectionQuery:
        start: date | datetime | None = None
        end: date | datetime | None = None
        if self.range_column:
            start, end = time_range.from_, time_range.to
            if self.date_precision:
                start, end = start.date(), end.date()
        return CollectionQuery(
            table=self.table,
            columns=self.columns,
            equals=dict(self.equals),
            range_column=self.range_column,
            range_start=start,
            range_end=end,
        )

    def in_range(self, record: R, time_range: TimeRange) -> bool:
        if not self.range_column:
            return True
        value = getattr(record, self.range_column, None)
        if value is None:
            return False
        if self.date_precision:
            day = value.date() if isinstance(value, datetime) else value
            return time_range.from_.date() <= day <= time_range.to.date()
        return time_range.contains(ensure_utc(value))


COLLECTIONS: tuple[CollectionSpec[Any], ...] = (
    CollectionSpec(
        name="students",
        table="students",
        columns=(
            "id", "name", "section", "status", "enrollment_date",
            "status_start_date", "current_juz", "completed_juz",
        ),
        model=Student,
        critical=True,
    ),
    CollectionSpec(
        name="teachers",
        table="profiles",
        columns=("id", "name", "section", "role"),
        model=Teacher,
        critical=True,
        equals=(("role", "teacher"),),
    ),
    CollectionSpec(
        name="classes",
        table="classes",
        columns=(
            "id", "name", "capacity", "current_students", "teacher_ids",
            "time_slots", "days_of_week", "status",
        ),
        model=ClassRecord,
        critical=True,
    ),
    CollectionSpec(
        name="progress",
        table="progress",
        columns=(
            "id", "student_id", "created_at", "date", "pages_memorized",
            "verses_memorized", "current_surah", "current_juz", "start_ayat",
            "end_ayat", "memorization_quality", "mistake_count",
            "contributor_id", "teacher_id",
        ),
        model=ProgressEntry,
        range_column="created_at",
    ),
    CollectionSpec(
        name="attendance",
        table="attendance",
        columns=(
            "id", "student_id", "class_id", "teacher_id", "date",
            "created_at", "status", "notes", "late_reason",
        ),
        model=AttendanceEntry,
        range_column="created_at",
    ),
    CollectionSpec(
        name="assignments",
        table="teacher_assignments",
        columns=("id", "teacher_id", "student_ids", "created_at", "due_date"),
        model=Assignment,
        range_column="created_at",
    ),
    CollectionSpec(
        name="submissions",
        table="teacher_assignment_submissions",
        columns=(
            "id", "assignment_id", "student_id", "status", "created_at",
            "submitted_at", "graded_at",
        ),
        model=Submission,
        range_column="created_at",
    ),
    CollectionSpec(
        name="juz_revisions",
        table="juz_revisions",
        columns=(
            "id", "student_id", "revision_date", "juz_revised",
            "memorization_quality", "teacher_id",
        ),
        model=JuzRevision,
        range_column="revision_date",
        date_precision=True,
    ),
    CollectionSpec(
        name="sabaq_para",
        table="sabaq_para",
        columns=(
            "id", "student_id", "revision_date", "juz_number",
            "quality_rating", "teacher_id",
        ),
        model=SabaqPara,
        range_column="revision_date",
        date_precision=True,
    ),
    CollectionSpec(
        name="communications",
        table="communications",
        columns=("id", "sender_id", "created_at"),
        model=Communication,
        range_column="created_at",
    ),
)


class AnalyticsContextLoader:
    """Builds AnalyticsDataContext snapshots from an AnalyticsStore.

    The loader holds no per-query state; concurrent loads for different
    windows are independent.
    """

    def __init__(
        self,
        store: AnalyticsStore,
        timeout_seconds: float = 30.0,
        lookback_months: int = 12,
        clock: Callable[[], datetime] = utc_now,
        collections: tuple[CollectionSpec[Any], ...] = COLLECTIONS,
    ) -> None:
        self._store = store
        self._timeout_seconds = timeout_seconds
        self._lookback_months = lookback_months
        self._clock = clock
        self._collections = collections

    def resolve(self, from_: datetime | None = None, to: datetime | None = None) -> TimeRange:
        """Resolve a requested window against the loader's clock."""
        return resolve_time_range(
            from_, to, now=self._clock(), lookback_months=self._lookback_months
        )

    async def load(
        self,
        from_: datetime | None = None,
        to: datetime | None = None,
    ) -> AnalyticsDataContext:
        """Fetch every collection for a window and assemble the context.

        Args:
            from_: Requested window start (defaults/clamping applied).
            to: Requested window end.

        Returns:
            The assembled context.

        Raises:
            AnalyticsFetchError: If a critical collection fails.
            AnalyticsTimeoutError: If the joint fetch exceeds the timeout.
        """
        time_range = self.resolve(from_, to)
        return await self.load_range(time_range)

    async def load_range(self, time_range: TimeRange) -> AnalyticsDataContext:
        """Load an already-resolved window."""
        started = self._clock()
        try:
            results = await asyncio.wait_for(
                asyncio.gather(
                    *(self._store.fetch(spec.build_query(time_range)) for spec in self._collections),
                    return_exceptions=True,
                ),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.error(
                "Analytics fetch timed out after %ss for %s",
                self._timeout_seconds,
                time_range.cache_key,
            )
            raise AnalyticsTimeoutError(self._timeout_seconds) from e

        collections: dict[str, tuple[RecordModel, ...]] = {}
        degraded: list[str] = []

        for spec, result in zip(self._collections, results):
            if isinstance(result, BaseException):
                if spec.critical:
                    logger.error("Critical collection %s failed: %s", spec.name, result)
                    raise AnalyticsFetchError(
                        spec.name,
                        str(result),
                        result if isinstance(result, Exception) else None,
                    ) from result
                logger.warning("Optional collection %s unavailable: %s", spec.name, result)
                degraded.append(spec.name)
                collections[spec.name] = ()
                continue

            collections[spec.name] = self._build_records(spec, result, time_range)

        context = AnalyticsDataContext(
            time_range=time_range,
            degraded_collections=tuple(degraded),
            **collections,
        )
        logger.info(
            "Loaded analytics context: students=%d teachers=%d classes=%d "
            "progress=%d attendance=%d degraded=%s elapsed=%.3fs",
            len(context.students),
            len(context.teachers),
            len(context.classes),
            len(context.progress),
            len(context.attendance),
            ",".join(degraded) or "none",
            (self._clock() - started) / timedelta(seconds=1),
        )
        return context

    def _build_records(
        self,
        spec: CollectionSpec[Any],
        rows: list[dict[str, Any]],
        time_range: TimeRange,
    ) -> tuple[RecordModel, ...]:
        records: list[RecordModel] = []
        skipped = 0
        for row in rows:
            try:
                record = spec.model.model_validate(row)
            except ValidationError as e:
                if spec.critical:
                    raise AnalyticsFetchError(
                        spec.name, f"invalid row {row.get('id')!r}", e
                    ) from e
                skipped += 1
                continue
            if spec.in_range(record, time_range):
                records.append(record)

        if skipped:
            logger.warning("Skipped %d invalid %s rows", skipped, spec.name)
        return tuple(records)
