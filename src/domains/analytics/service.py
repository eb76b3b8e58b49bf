# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Analytics service module.

This module provides the facade the API and the scheduler talk to. It
ties together the context loader, the metric calculators, the alert
engine and the result cache, and performs the alert status writes on the
persisted ``analytics_alerts`` table.

Every metric query returns a MetricCalculationResult carrying the
resolved time range, the calculation time and a data-quality grade that
reflects which optional collections were unavailable.

Usage:
    from src.domains.analytics import AnalyticsService

    service = AnalyticsService(loader=loader, policy=policy, cache=cache, store=store)

    students = await service.get_student_metrics(from_=start, to=end)
    summary = await service.get_summary()
    alerts = await service.get_alerts(alert_type=AlertType.MEMORIZATION_PACE_DROP)

    await service.acknowledge_alert(alert_id)
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from src.domains.analytics.alerts import AlertEngine
from src.domains.analytics.classes import ClassMetricsCalculator
from src.domains.analytics.context import (
    COLLECTIONS,
    AnalyticsContextLoader,
    AnalyticsDataContext,
    AnalyticsError,
    AnalyticsFetchError,
    previous_period,
)
from src.domains.analytics.policy import AnalyticsPolicy
from src.domains.analytics.program import ProgramMetricsCalculator
from src.domains.analytics.schemas import (
    AlertStatus,
    AlertType,
    AnalyticsAlert,
    AnalyticsSummary,
    ClassMetrics,
    DataQuality,
    MetricCalculationResult,
    ProgramMetrics,
    StudentMetrics,
    TeacherMetrics,
    TimeRange,
)
from src.domains.analytics.students import StudentMetricsCalculator
from src.domains.analytics.teachers import TeacherMetricsCalculator
from src.infrastructure.cache.result_cache import InMemoryResultCache, ResultCache
from src.infrastructure.database.connection import DatabaseError
from src.infrastructure.database.store import AnalyticsStore, CollectionQuery
from src.utils.datetime import floor_to_interval, utc_now

logger = logging.getLogger(__name__)

ALERTS_TABLE = "analytics_alerts"
ALERT_COLUMNS = (
    "id", "date", "type", "severity", "status", "title", "description",
    "entity_id", "entity_name", "entity_type", "threshold", "current_value",
    "created_at", "acknowledged_at", "resolved_at", "metadata",
)

StudentMetricsResult = MetricCalculationResult[list[StudentMetrics]]
ClassMetricsResult = MetricCalculationResult[list[ClassMetrics]]
TeacherMetricsResult = MetricCalculationResult[list[TeacherMetrics]]
ProgramMetricsResult = MetricCalculationResult[ProgramMetrics]
SummaryResult = MetricCalculationResult[AnalyticsSummary]
AlertsResult = MetricCalculationResult[list[AnalyticsAlert]]


class AnalyticsServiceError(AnalyticsError):
    """Base exception for analytics service operations."""

    pass


class AlertNotFoundError(AnalyticsServiceError):
    """No persisted alert row has the requested id."""

    def __init__(self, alert_id: str) -> None:
        self.alert_id = alert_id
        super().__init__(f"Alert not found: {alert_id}")


def assess_data_quality(degraded: tuple[str, ...], total_collections: int) -> DataQuality:
    """Grade a context by the share of optional collections that failed."""
    if not degraded:
        return DataQuality.EXCELLENT
    missing = len(degraded) / max(1, total_collections)
    if missing <= 0.2:
        return DataQuality.GOOD
    if missing <= 0.4:
        return DataQuality.FAIR
    return DataQuality.POOR


@dataclass(frozen=True)
class _Snapshot:
    """Context plus the entity metrics computed from it."""

    context: AnalyticsDataContext
    students: list[StudentMetrics]
    classes: list[ClassMetrics]
    teachers: list[TeacherMetrics]


class AnalyticsService:
    """Facade over loading, calculating, caching and alert status writes.

    Attributes:
        policy: Analytics policy every calculator runs under.
        cache: Result cache, in-memory unless one is injected.
    """

    def __init__(
        self,
        loader: AnalyticsContextLoader,
        policy: AnalyticsPolicy,
        cache: ResultCache | None = None,
        store: AnalyticsStore | None = None,
        clock: Callable[[], datetime] = utc_now,
        metrics_ttl_seconds: float = 300,
        alerts_ttl_seconds: float = 120,
    ) -> None:
        self._loader = loader
        self._store = store
        self._clock = clock
        self._metrics_ttl = metrics_ttl_seconds
        self._alerts_ttl = alerts_ttl_seconds
        self.policy = policy
        self.cache: ResultCache = cache if cache is not None else InMemoryResultCache(clock)

        self.students = StudentMetricsCalculator(policy)
        self.classes = ClassMetricsCalculator(policy)
        self.teachers = TeacherMetricsCalculator(policy)
        self.program = ProgramMetricsCalculator(policy)
        self.alert_engine = AlertEngine(policy)

    # ========== Metric queries ==========

    async def get_student_metrics(
        self,
        from_: datetime | None = None,
        to: datetime | None = None,
    ) -> StudentMetricsResult:
        """Metrics for every active student, ordered by name."""

        async def compute(time_range: TimeRange) -> StudentMetricsResult:
            context = await self._loader.load_range(time_range)
            return self._wrap(StudentMetricsResult, self.students.calculate(context), context)

        return await self._cached("students", from_, to, StudentMetricsResult, self._metrics_ttl, compute)

    async def get_class_metrics(
        self,
        from_: datetime | None = None,
        to: datetime | None = None,
    ) -> ClassMetricsResult:
        """Metrics for every active class, ordered by name."""

        async def compute(time_range: TimeRange) -> ClassMetricsResult:
            snapshot = await self._snapshot(time_range)
            return self._wrap(ClassMetricsResult, snapshot.classes, snapshot.context)

        return await self._cached("classes", from_, to, ClassMetricsResult, self._metrics_ttl, compute)

    async def get_teacher_metrics(
        self,
        from_: datetime | None = None,
        to: datetime | None = None,
    ) -> TeacherMetricsResult:
        """Metrics for every teacher, ordered by name."""

        async def compute(time_range: TimeRange) -> TeacherMetricsResult:
            snapshot = await self._snapshot(time_range)
            return self._wrap(TeacherMetricsResult, snapshot.teachers, snapshot.context)

        return await self._cached("teachers", from_, to, TeacherMetricsResult, self._metrics_ttl, compute)

    async def get_program_metrics(
        self,
        from_: datetime | None = None,
        to: datetime | None = None,
    ) -> ProgramMetricsResult:
        """Program-wide metrics, including prior-period retention."""

        async def compute(time_range: TimeRange) -> ProgramMetricsResult:
            snapshot, program, warnings = await self._program(time_range)
            return self._wrap(ProgramMetricsResult, program, snapshot.context, warnings)

        return await self._cached("program", from_, to, ProgramMetricsResult, self._metrics_ttl, compute)

    async def get_summary(
        self,
        from_: datetime | None = None,
        to: datetime | None = None,
    ) -> SummaryResult:
        """The essential dashboard numbers."""

        async def compute(time_range: TimeRange) -> SummaryResult:
            snapshot, program, warnings = await self._program(time_range)
            summary = self.program.summarize(program, snapshot.teachers)
            return self._wrap(SummaryResult, summary, snapshot.context, warnings)

        return await self._cached("summary", from_, to, SummaryResult, self._metrics_ttl, compute)

    async def get_alerts(
        self,
        from_: datetime | None = None,
        to: datetime | None = None,
        alert_type: AlertType | None = None,
        status: AlertStatus | None = None,
    ) -> AlertsResult:
        """Threshold alerts for a window, optionally filtered.

        The unfiltered alert list is cached; filters are applied on the
        cached result. Program metrics are computed only when a rule
        targets the program.
        """

        async def compute(time_range: TimeRange) -> AlertsResult:
            program = None
            warnings: list[str] = []
            if self.alert_engine.needs_program:
                snapshot, program, warnings = await self._program(time_range)
            else:
                snapshot = await self._snapshot(time_range)
            alerts = self.alert_engine.evaluate(
                students=snapshot.students,
                classes=snapshot.classes,
                teachers=snapshot.teachers,
                program=program,
                evaluated_at=time_range.to,
            )
            return self._wrap(AlertsResult, alerts, snapshot.context, warnings)

        result = await self._cached("alerts", from_, to, AlertsResult, self._alerts_ttl, compute)
        if alert_type is None and status is None:
            return result

        filtered = [
            alert for alert in result.data
            if (alert_type is None or alert.type == alert_type)
            and (status is None or alert.status == status)
        ]
        return result.model_copy(update={"data": filtered})

    async def refresh_alerts(self) -> AlertsResult:
        """Drop cached alerts and re-evaluate them for the default window."""
        await self.cache.invalidate("alerts")
        result = await self.get_alerts()
        logger.info(
            "Refreshed analytics alerts: count=%d quality=%s",
            len(result.data),
            result.data_quality.value,
        )
        return result

    async def invalidate_cache(self, namespace: str | None = None) -> int:
        """Drop cached results of one namespace, or all of them."""
        removed = await self.cache.invalidate(namespace)
        logger.info("Invalidated %d cached analytics results (namespace=%s)", removed, namespace or "*")
        return removed

    # ========== Persisted alerts ==========

    async def list_persisted_alerts(
        self,
        day: date | None = None,
        status: AlertStatus | None = AlertStatus.ACTIVE,
    ) -> list[AnalyticsAlert]:
        """Persisted alert rows of one day, most severe first.

        Args:
            day: Alert date, defaults to today (UTC).
            status: Status filter, None for every status.

        Raises:
            AnalyticsFetchError: If the alert table cannot be read.
        """
        store = self._require_store()
        equals: dict[str, Any] = {"date": day or self._clock().date()}
        if status is not None:
            equals["status"] = status.value

        query = CollectionQuery(
            table=ALERTS_TABLE,
            columns=ALERT_COLUMNS,
            equals=equals,
            order_by="created_at",
        )
        try:
            rows = await store.fetch(query)
        except DatabaseError as e:
            raise AnalyticsFetchError(ALERTS_TABLE, str(e), e) from e

        alerts: list[AnalyticsAlert] = []
        for row in rows:
            try:
                alerts.append(AnalyticsAlert.model_validate({**row, "metadata": row.get("metadata") or {}}))
            except ValidationError as e:
                logger.warning("Skipping invalid alert row %s: %s", row.get("id"), e)

        alerts.sort(key=lambda a: (-a.severity.rank, -a.created_at.timestamp()))
        return alerts

    async def acknowledge_alert(self, alert_id: str) -> None:
        """Mark a persisted alert as acknowledged."""
        await self.update_alert_status(alert_id, AlertStatus.ACKNOWLEDGED)

    async def resolve_alert(self, alert_id: str) -> None:
        """Mark a persisted alert as resolved."""
        await self.update_alert_status(alert_id, AlertStatus.RESOLVED)

    async def update_alert_status(self, alert_id: str, status: AlertStatus) -> None:
        """Write a status transition to a persisted alert row.

        Args:
            alert_id: Persisted alert id.
            status: ``acknowledged`` or ``resolved``.

        Raises:
            ValueError: If status is not a transition target.
            AlertNotFoundError: If no row has the id.
            AnalyticsServiceError: If the write fails.
        """
        now = self._clock()
        if status == AlertStatus.ACKNOWLEDGED:
            values = {"status": status.value, "acknowledged_at": now}
        elif status == AlertStatus.RESOLVED:
            values = {"status": status.value, "resolved_at": now}
        else:
            raise ValueError(f"Cannot transition an alert to '{status.value}'")

        store = self._require_store()
        try:
            updated = await store.update_by_id(ALERTS_TABLE, alert_id, values)
        except DatabaseError as e:
            raise AnalyticsServiceError(f"Failed to update alert {alert_id}", e) from e

        if not updated:
            raise AlertNotFoundError(alert_id)
        logger.info("Alert %s marked %s", alert_id, status.value)

    # ========== Internals ==========

    def _require_store(self) -> AnalyticsStore:
        if self._store is None:
            raise AnalyticsServiceError("No analytics store configured for alert persistence")
        return self._store

    async def _cached(
        self,
        namespace: str,
        from_: datetime | None,
        to: datetime | None,
        result_type: Any,
        ttl_seconds: float,
        compute: Callable[[TimeRange], Awaitable[Any]],
    ) -> Any:
        if to is None and ttl_seconds > 0:
            # Defaulted windows end on a TTL boundary so repeated calls share one entry.
            to = floor_to_interval(self._clock(), ttl_seconds)
        time_range = self._loader.resolve(from_, to)
        cached = await self.cache.get(namespace, time_range, result_type)
        if cached is not None:
            logger.debug("Cache hit for %s %s", namespace, time_range.cache_key)
            return cached

        result = await compute(time_range)
        await self.cache.set(namespace, time_range, result, ttl_seconds, result_type)
        return result

    async def _snapshot(self, time_range: TimeRange) -> _Snapshot:
        context = await self._loader.load_range(time_range)
        return self._calculate(context)

    def _calculate(self, context: AnalyticsDataContext) -> _Snapshot:
        students = self.students.calculate(context)
        return _Snapshot(
            context=context,
            students=students,
            classes=self.classes.calculate(context, students),
            teachers=self.teachers.calculate(context, students),
        )

    async def _program(self, time_range: TimeRange) -> tuple[_Snapshot, ProgramMetrics, list[str]]:
        """Current snapshot and program metrics; the prior period loads alongside."""
        current, prior = await asyncio.gather(
            self._loader.load_range(time_range),
            self._loader.load_range(previous_period(time_range)),
            return_exceptions=True,
        )
        if isinstance(current, BaseException):
            raise current

        warnings: list[str] = []
        if isinstance(prior, BaseException):
            logger.warning("Previous period unavailable, retention not computed: %s", prior)
            warnings.append("Retention unavailable: the previous period could not be loaded")
            prior = None

        snapshot = self._calculate(current)
        program = self.program.calculate(
            current,
            snapshot.students,
            snapshot.teachers,
            snapshot.classes,
            prior_context=prior,
        )
        return snapshot, program, warnings

    def _wrap(
        self,
        result_type: Any,
        data: Any,
        context: AnalyticsDataContext,
        warnings: list[str] | None = None,
    ) -> Any:
        messages = [
            f"Optional collection '{name}' unavailable" for name in context.degraded_collections
        ]
        messages.extend(warnings or ())
        return result_type(
            data=data,
            calculated_at=self._clock(),
            time_range=context.time_range,
            data_quality=assess_data_quality(context.degraded_collections, len(COLLECTIONS)),
            warnings=tuple(messages),
        )
