# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for AnalyticsService."""

from datetime import date, datetime, timedelta, timezone

import pytest

from src.domains.analytics.context import (
    AnalyticsContextLoader,
    AnalyticsFetchError,
)
from src.domains.analytics.policy import AlertRule, ThresholdBand
from src.domains.analytics.schemas import (
    AlertSeverity,
    AlertStatus,
    AlertType,
    DataQuality,
    EntityType,
    TimeRange,
)
from src.domains.analytics.service import (
    AlertNotFoundError,
    AnalyticsService,
    AnalyticsServiceError,
    assess_data_quality,
)

UTC = timezone.utc
RANGE_START = datetime(2025, 1, 1, tzinfo=UTC)
RANGE_END = datetime(2025, 1, 29, tzinfo=UTC)


def alert_row(alert_id: str, severity: str = "high", status: str = "active", **fields):
    return {
        "id": alert_id,
        "date": date(2025, 1, 29),
        "type": "memorization_pace_drop",
        "severity": severity,
        "status": status,
        "title": "Memorization Pace Drop",
        "description": "Pace dropped",
        "entity_id": "s09",
        "entity_name": "Student s09",
        "entity_type": "student",
        "threshold": 60,
        "current_value": 100,
        "created_at": datetime(2025, 1, 29, 6, tzinfo=UTC),
        "acknowledged_at": None,
        "resolved_at": None,
        "metadata": None,
        **fields,
    }


class TickingClock:
    """Clock that advances a fixed step on every read."""

    def __init__(self, now: datetime, step: timedelta = timedelta(milliseconds=5)) -> None:
        self.now = now
        self.step = step

    def __call__(self) -> datetime:
        now = self.now
        self.now += self.step
        return now


class PriorPeriodFailingLoader(AnalyticsContextLoader):
    """Loader whose windows ending at or before the reference start fail."""

    async def load_range(self, time_range: TimeRange):
        if time_range.to <= RANGE_START:
            raise AnalyticsFetchError("students", "previous period offline")
        return await super().load_range(time_range)


@pytest.fixture
def service(scenario_store, policy, clock):
    """Create a service over the reference madrassah."""
    loader = AnalyticsContextLoader(scenario_store, clock=clock)
    return AnalyticsService(loader, policy, store=scenario_store, clock=clock)


class TestMetricQueries:
    """Tests for the metric getters."""

    @pytest.mark.asyncio
    async def test_student_metrics(self, service) -> None:
        """Test students of the reference madrassah."""
        result = await service.get_student_metrics(from_=RANGE_START, to=RANGE_END)

        assert len(result.data) == 10
        assert result.time_range == TimeRange(from_=RANGE_START, to=RANGE_END)
        assert result.calculated_at == RANGE_END
        assert result.data_quality == DataQuality.EXCELLENT
        assert result.warnings == ()
        assert [s.is_at_risk for s in result.data].count(True) == 2

    @pytest.mark.asyncio
    async def test_class_and_teacher_metrics(self, service) -> None:
        """Test class and teacher rollups of the reference madrassah."""
        classes = await service.get_class_metrics(from_=RANGE_START, to=RANGE_END)
        teachers = await service.get_teacher_metrics(from_=RANGE_START, to=RANGE_END)

        [klass] = classes.data
        [teacher] = teachers.data
        assert klass.capacity_utilization == 50
        assert klass.at_risk_student_count == 2
        assert teacher.student_count == 10
        assert teacher.session_reliability == 100

    @pytest.mark.asyncio
    async def test_program_metrics_use_prior_period(self, service) -> None:
        """Test retention is computed against the preceding window."""
        result = await service.get_program_metrics(from_=RANGE_START, to=RANGE_END)

        assert result.data.students_on_track_percentage == 80
        assert result.data.at_risk_student_count == 2
        assert result.data.retention_rate == 100
        assert result.warnings == ()

    @pytest.mark.asyncio
    async def test_summary(self, service) -> None:
        """Test the dashboard summary."""
        result = await service.get_summary(from_=RANGE_START, to=RANGE_END)

        assert result.data.total_active_students == 10
        assert result.data.students_on_track_percentage == 80
        assert result.data.at_risk_students_percentage == 20
        assert result.data.retention_rate == 100

    @pytest.mark.asyncio
    async def test_empty_store(self, fake_store, policy, clock) -> None:
        """Test an empty backend yields empty metrics rather than errors."""
        service = AnalyticsService(AnalyticsContextLoader(fake_store, clock=clock), policy, clock=clock)

        students = await service.get_student_metrics(from_=RANGE_START, to=RANGE_END)
        program = await service.get_program_metrics(from_=RANGE_START, to=RANGE_END)
        alerts = await service.get_alerts(from_=RANGE_START, to=RANGE_END)

        assert students.data == []
        assert alerts.data == []
        assert program.data.total_student_count == 0
        assert program.data.students_on_track_percentage is None


class TestCaching:
    """Tests for result caching."""

    @pytest.mark.asyncio
    async def test_second_query_is_served_from_cache(self, service, scenario_store) -> None:
        """Test a repeated query issues no backend fetches."""
        first = await service.get_student_metrics(from_=RANGE_START, to=RANGE_END)
        fetched = len(scenario_store.queries)

        second = await service.get_student_metrics(from_=RANGE_START, to=RANGE_END)

        assert fetched == 10
        assert len(scenario_store.queries) == fetched
        assert second is first

    @pytest.mark.asyncio
    async def test_invalidate_forces_reload(self, service, scenario_store) -> None:
        """Test invalidation drops the cached results."""
        await service.get_student_metrics(from_=RANGE_START, to=RANGE_END)

        removed = await service.invalidate_cache("students")
        await service.get_student_metrics(from_=RANGE_START, to=RANGE_END)

        assert removed == 1
        assert len(scenario_store.queries) == 20

    @pytest.mark.asyncio
    async def test_other_window_is_not_shared(self, service, scenario_store) -> None:
        """Test a different window is computed separately."""
        await service.get_student_metrics(from_=RANGE_START, to=RANGE_END)
        await service.get_student_metrics(from_=datetime(2025, 1, 8, tzinfo=UTC), to=RANGE_END)

        assert len(scenario_store.queries) == 20

    @pytest.mark.asyncio
    async def test_default_window_is_cached_while_clock_advances(self, scenario_store, policy) -> None:
        """Test calls without a range share one entry within the TTL."""
        clock = TickingClock(RANGE_END + timedelta(seconds=30))
        service = AnalyticsService(AnalyticsContextLoader(scenario_store, clock=clock), policy, clock=clock)

        first = await service.get_student_metrics()
        second = await service.get_student_metrics()
        third = await service.get_student_metrics()

        assert len(scenario_store.queries) == 10
        assert len(service.cache) == 1
        assert first.time_range.to == RANGE_END
        assert second is first
        assert third is first

    @pytest.mark.asyncio
    async def test_default_window_moves_with_the_ttl(self, scenario_store, policy) -> None:
        """Test a later bucket is recomputed and the expired entry dropped."""
        clock = TickingClock(RANGE_END + timedelta(seconds=30))
        service = AnalyticsService(AnalyticsContextLoader(scenario_store, clock=clock), policy, clock=clock)
        await service.get_student_metrics()

        clock.now = RANGE_END + timedelta(seconds=400)
        later = await service.get_student_metrics()

        assert later.time_range.to == RANGE_END + timedelta(seconds=300)
        assert len(scenario_store.queries) == 20
        assert len(service.cache) == 1


class TestDataQuality:
    """Tests for degraded loads."""

    @pytest.mark.parametrize(
        "degraded, expected",
        [
            ((), DataQuality.EXCELLENT),
            (("a", "b"), DataQuality.GOOD),
            (("a", "b", "c"), DataQuality.FAIR),
            (("a", "b", "c", "d"), DataQuality.FAIR),
            (("a", "b", "c", "d", "e"), DataQuality.POOR),
        ],
    )
    def test_assess_data_quality(self, degraded, expected) -> None:
        """Test grading by the share of missing collections."""
        assert assess_data_quality(degraded, 10) == expected

    @pytest.mark.asyncio
    async def test_optional_failures_degrade_the_result(self, service, scenario_store) -> None:
        """Test failed optional collections become warnings."""
        scenario_store.failing = {"communications", "juz_revisions", "sabaq_para"}

        result = await service.get_student_metrics(from_=RANGE_START, to=RANGE_END)

        assert len(result.data) == 10
        assert result.data_quality == DataQuality.FAIR
        assert set(result.warnings) == {
            "Optional collection 'communications' unavailable",
            "Optional collection 'juz_revisions' unavailable",
            "Optional collection 'sabaq_para' unavailable",
        }

    @pytest.mark.asyncio
    async def test_critical_failure_propagates(self, service, scenario_store) -> None:
        """Test a failed critical collection fails the query."""
        scenario_store.failing = {"classes"}

        with pytest.raises(AnalyticsFetchError):
            await service.get_class_metrics(from_=RANGE_START, to=RANGE_END)

    @pytest.mark.asyncio
    async def test_prior_period_failure_is_a_warning(self, scenario_store, policy, clock) -> None:
        """Test an unavailable previous window only drops retention."""
        loader = PriorPeriodFailingLoader(scenario_store, clock=clock)
        service = AnalyticsService(loader, policy, clock=clock)

        result = await service.get_program_metrics(from_=RANGE_START, to=RANGE_END)

        assert result.data.retention_rate is None
        assert result.data.students_on_track_percentage == 80
        assert result.warnings == (
            "Retention unavailable: the previous period could not be loaded",
        )


class TestAlerts:
    """Tests for alert evaluation and filtering."""

    @pytest.mark.asyncio
    async def test_reference_alerts(self, service) -> None:
        """Test the two stagnant students raise pace-drop alerts."""
        result = await service.get_alerts(from_=RANGE_START, to=RANGE_END)

        assert [(a.type, a.severity, a.entity_id) for a in result.data] == [
            (AlertType.MEMORIZATION_PACE_DROP, AlertSeverity.HIGH, "s09"),
            (AlertType.MEMORIZATION_PACE_DROP, AlertSeverity.HIGH, "s10"),
        ]
        assert all(a.created_at == RANGE_END for a in result.data)

    @pytest.mark.asyncio
    async def test_filters(self, service, scenario_store) -> None:
        """Test type and status filters run on the cached list."""
        by_type = await service.get_alerts(
            from_=RANGE_START, to=RANGE_END, alert_type=AlertType.CLASS_OVERCAPACITY
        )
        by_status = await service.get_alerts(
            from_=RANGE_START, to=RANGE_END, status=AlertStatus.ACTIVE
        )

        assert by_type.data == []
        assert len(by_status.data) == 2
        assert len(scenario_store.queries) == 10

    @pytest.mark.asyncio
    async def test_refresh_reevaluates(self, service, scenario_store) -> None:
        """Test refresh drops cached alerts before evaluating."""
        first = await service.get_alerts()

        result = await service.refresh_alerts()

        assert [a.id for a in result.data] == [a.id for a in first.data]
        assert len(scenario_store.queries) == 20

    @pytest.mark.asyncio
    async def test_program_rule_is_evaluated(self, scenario_store, policy, clock) -> None:
        """Test a program-level rule alerts on the program rollup."""
        rule = AlertRule(
            alert_type=AlertType.HIGH_AT_RISK_CONCENTRATION,
            entity_type=EntityType.PROGRAM,
            metric="at_risk_percentage",
            direction="above",
            bands=(ThresholdBand(bound=15, severity=AlertSeverity.LOW),),
        )
        policy = policy.model_copy(update={"alert_rules": policy.alert_rules + (rule,)})
        loader = AnalyticsContextLoader(scenario_store, clock=clock)
        service = AnalyticsService(loader, policy, clock=clock)

        result = await service.get_alerts(from_=RANGE_START, to=RANGE_END)

        assert [(a.entity_type, a.entity_id, a.severity) for a in result.data] == [
            (EntityType.STUDENT, "s09", AlertSeverity.HIGH),
            (EntityType.STUDENT, "s10", AlertSeverity.HIGH),
            (EntityType.PROGRAM, "program", AlertSeverity.LOW),
        ]
        assert result.data[-1].current_value == 20

    @pytest.mark.asyncio
    async def test_refreshed_alerts_are_served_to_callers(self, scenario_store, policy) -> None:
        """Test a default-window read after a refresh hits the cache."""
        clock = TickingClock(RANGE_END + timedelta(seconds=10))
        service = AnalyticsService(AnalyticsContextLoader(scenario_store, clock=clock), policy, clock=clock)

        refreshed = await service.refresh_alerts()
        served = await service.get_alerts()

        assert served is refreshed
        assert len(scenario_store.queries) == 10


class TestPersistedAlerts:
    """Tests for alert status writes and listing."""

    @pytest.mark.asyncio
    async def test_list_active_alerts(self, service, scenario_store) -> None:
        """Test today's active alerts are listed most severe first."""
        scenario_store.tables["analytics_alerts"] = [
            alert_row("a1", severity="medium"),
            alert_row("a2", severity="critical"),
            alert_row("a3", status="resolved"),
            alert_row("a4", date=date(2025, 1, 28)),
        ]

        alerts = await service.list_persisted_alerts()

        assert [a.id for a in alerts] == ["a2", "a1"]
        assert alerts[0].metadata == {}

    @pytest.mark.asyncio
    async def test_list_every_status(self, service, scenario_store) -> None:
        """Test a None status lists every row of the day."""
        scenario_store.tables["analytics_alerts"] = [
            alert_row("a1"),
            alert_row("a3", status="resolved"),
        ]

        alerts = await service.list_persisted_alerts(day=date(2025, 1, 29), status=None)

        assert {a.id for a in alerts} == {"a1", "a3"}

    @pytest.mark.asyncio
    async def test_list_failure(self, service, scenario_store) -> None:
        """Test a failing alert table surfaces as a fetch error."""
        scenario_store.failing = {"analytics_alerts"}

        with pytest.raises(AnalyticsFetchError):
            await service.list_persisted_alerts()

    @pytest.mark.asyncio
    async def test_acknowledge(self, service, scenario_store) -> None:
        """Test acknowledging stamps the status and time."""
        scenario_store.tables["analytics_alerts"] = [alert_row("a1")]

        await service.acknowledge_alert("a1")

        row = scenario_store.tables["analytics_alerts"][0]
        assert row["status"] == "acknowledged"
        assert row["acknowledged_at"] == RANGE_END
        assert row["resolved_at"] is None

    @pytest.mark.asyncio
    async def test_resolve(self, service, scenario_store) -> None:
        """Test resolving stamps the status and time."""
        scenario_store.tables["analytics_alerts"] = [alert_row("a1")]

        await service.resolve_alert("a1")

        assert scenario_store.updates == [
            ("analytics_alerts", "a1", {"status": "resolved", "resolved_at": RANGE_END}),
        ]

    @pytest.mark.asyncio
    async def test_unknown_alert(self, service) -> None:
        """Test an unknown id raises AlertNotFoundError."""
        with pytest.raises(AlertNotFoundError) as exc_info:
            await service.acknowledge_alert("missing")

        assert exc_info.value.alert_id == "missing"

    @pytest.mark.asyncio
    async def test_active_is_not_a_transition(self, service, scenario_store) -> None:
        """Test alerts cannot be moved back to active."""
        with pytest.raises(ValueError):
            await service.update_alert_status("a1", AlertStatus.ACTIVE)

        assert scenario_store.updates == []

    @pytest.mark.asyncio
    async def test_write_failure(self, service, scenario_store) -> None:
        """Test a failed write surfaces as a service error."""
        scenario_store.failing = {"analytics_alerts"}

        with pytest.raises(AnalyticsServiceError):
            await service.resolve_alert("a1")

    @pytest.mark.asyncio
    async def test_no_store(self, scenario_store, policy, clock) -> None:
        """Test status writes need a configured store."""
        service = AnalyticsService(AnalyticsContextLoader(scenario_store, clock=clock), policy, clock=clock)

        with pytest.raises(AnalyticsServiceError, match="No analytics store"):
            await service.acknowledge_alert("a1")
