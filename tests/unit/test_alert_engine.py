# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the threshold alert engine."""

from datetime import datetime, timezone

import pytest

from src.domains.analytics.alerts import AlertEngine
from src.domains.analytics.classes import ClassMetricsCalculator
from src.domains.analytics.policy import AlertRule, AnalyticsPolicy, ThresholdBand
from src.domains.analytics.schemas import (
    AlertSeverity,
    AlertStatus,
    AlertType,
    ClassMetrics,
    EntityType,
    ProgramMetrics,
    StudentMetrics,
    TeacherMetrics,
)
from src.domains.analytics.students import StudentMetricsCalculator
from src.domains.analytics.teachers import TeacherMetricsCalculator

UTC = timezone.utc
EVALUATED_AT = datetime(2025, 1, 29, tzinfo=UTC)

CRITICAL = AlertSeverity.CRITICAL
HIGH = AlertSeverity.HIGH
MEDIUM = AlertSeverity.MEDIUM


@pytest.fixture
def engine(policy):
    """Create an engine with the default rule table."""
    return AlertEngine(policy)


def student(**fields):
    return StudentMetrics(student_id="s01", student_name="Amina", **fields)


def teacher(**fields):
    return TeacherMetrics(teacher_id="t1", teacher_name="Ustadh Bilal", **fields)


def klass(**fields):
    return ClassMetrics(class_id="c1", class_name="Hifz A", **fields)


class TestBands:
    """Boundary values on both sides of every default band."""

    @pytest.mark.parametrize(
        "value, expected",
        [(80, None), (79.99, MEDIUM), (70, MEDIUM), (69.99, HIGH), (0, HIGH)],
    )
    def test_student_attendance(self, engine, value, expected) -> None:
        """Test below-rules breach strictly under the bound."""
        alerts = engine.evaluate(students=[student(attendance_rate=value)], evaluated_at=EVALUATED_AT)

        assert [a.severity for a in alerts] == ([expected] if expected else [])
        if expected:
            assert alerts[0].type == AlertType.MISSED_SESSIONS_THRESHOLD
            assert alerts[0].entity_type == EntityType.STUDENT

    @pytest.mark.parametrize(
        "value, expected",
        [(29.99, None), (30, MEDIUM), (59.99, MEDIUM), (60, HIGH), (100, HIGH)],
    )
    def test_pace_drop(self, engine, value, expected) -> None:
        """Test above-rules breach at the bound."""
        alerts = engine.evaluate(
            students=[student(pace_drop_percentage=value)], evaluated_at=EVALUATED_AT
        )

        assert [a.severity for a in alerts] == ([expected] if expected else [])

    @pytest.mark.parametrize(
        "value, expected",
        [(2, None), (3, HIGH), (5, HIGH), (6, CRITICAL)],
    )
    def test_teacher_missed_sessions(self, engine, value, expected) -> None:
        """Test missed sessions bands."""
        alerts = engine.evaluate(teachers=[teacher(missed_sessions=value)], evaluated_at=EVALUATED_AT)

        assert [a.severity for a in alerts] == ([expected] if expected else [])

    @pytest.mark.parametrize(
        "value, expected",
        [(4, None), (5, HIGH), (9, HIGH), (10, CRITICAL)],
    )
    def test_at_risk_concentration(self, engine, value, expected) -> None:
        """Test at-risk concentration bands."""
        alerts = engine.evaluate(
            teachers=[teacher(at_risk_student_count=value)], evaluated_at=EVALUATED_AT
        )

        assert [a.severity for a in alerts] == ([expected] if expected else [])

    @pytest.mark.parametrize(
        "value, expected",
        [(94.99, None), (95, MEDIUM), (99.99, MEDIUM), (100, HIGH), (150, HIGH)],
    )
    def test_class_capacity(self, engine, value, expected) -> None:
        """Test class capacity bands."""
        alerts = engine.evaluate(classes=[klass(capacity_utilization=value)], evaluated_at=EVALUATED_AT)

        assert [a.severity for a in alerts] == ([expected] if expected else [])

    @pytest.mark.parametrize(
        "value, expected",
        [(2.99, None), (3, HIGH), (4.99, HIGH), (5, CRITICAL)],
    )
    def test_teacher_cancellations(self, engine, value, expected) -> None:
        """Test cancellations per week bands."""
        alerts = engine.evaluate(
            teachers=[teacher(cancellations_per_week=value)], evaluated_at=EVALUATED_AT
        )

        assert [a.severity for a in alerts] == ([expected] if expected else [])


class TestAlertContent:
    """Tests for the emitted alerts."""

    def test_alert_fields(self, engine) -> None:
        """Test an alert carries the breach details."""
        [alert] = engine.evaluate(
            teachers=[teacher(missed_sessions=4)], evaluated_at=EVALUATED_AT
        )

        assert alert.status == AlertStatus.ACTIVE
        assert alert.title == "Missed Sessions Threshold Exceeded"
        assert alert.entity_id == "t1"
        assert alert.entity_name == "Ustadh Bilal"
        assert alert.threshold == 3
        assert alert.current_value == 4
        assert alert.created_at == EVALUATED_AT
        assert alert.metadata == {"metric": "missed_sessions", "direction": "above"}
        assert "Action:" in alert.description

    def test_none_metrics_are_skipped(self, engine) -> None:
        """Test not-applicable metrics never alert."""
        alerts = engine.evaluate(
            students=[student(attendance_rate=None)],
            classes=[klass(capacity_utilization=None)],
            evaluated_at=EVALUATED_AT,
        )

        assert alerts == []

    def test_ids_are_deterministic(self, engine) -> None:
        """Test the same breach gets the same id, another pass a new one."""
        metrics = [student(pace_drop_percentage=70)]

        first = engine.evaluate(students=metrics, evaluated_at=EVALUATED_AT)
        second = engine.evaluate(students=metrics, evaluated_at=EVALUATED_AT)
        later = engine.evaluate(students=metrics, evaluated_at=datetime(2025, 1, 30, tzinfo=UTC))

        assert first[0].id == second[0].id
        assert first[0].id != later[0].id

    def test_sorted_by_severity_then_entity(self, engine) -> None:
        """Test the most severe alerts come first."""
        alerts = engine.evaluate(
            students=[
                StudentMetrics(student_id="s02", student_name="Bilal", pace_drop_percentage=35),
                StudentMetrics(student_id="s01", student_name="Amina", pace_drop_percentage=40),
            ],
            teachers=[teacher(missed_sessions=7)],
            classes=[klass(capacity_utilization=100)],
            evaluated_at=EVALUATED_AT,
        )

        assert [(a.severity, a.entity_id) for a in alerts] == [
            (CRITICAL, "t1"),
            (HIGH, "c1"),
            (MEDIUM, "s01"),
            (MEDIUM, "s02"),
        ]

    def test_one_alert_per_rule_and_entity(self, engine) -> None:
        """Test several breached bands emit a single alert."""
        alerts = engine.evaluate(
            students=[student(attendance_rate=10, pace_drop_percentage=90)],
            evaluated_at=EVALUATED_AT,
        )

        assert sorted(a.type.value for a in alerts) == [
            "memorization_pace_drop",
            "missed_sessions_threshold",
        ]


class TestRuleTable:
    """Tests for custom rule tables."""

    def test_program_rule(self) -> None:
        """Test rules can target the program rollup."""
        policy = AnalyticsPolicy(
            alert_rules=(
                AlertRule(
                    alert_type=AlertType.HIGH_AT_RISK_CONCENTRATION,
                    entity_type=EntityType.PROGRAM,
                    metric="at_risk_percentage",
                    direction="above",
                    bands=(ThresholdBand(bound=15, severity=AlertSeverity.LOW),),
                ),
            )
        )

        alerts = AlertEngine(policy).evaluate(
            program=ProgramMetrics(at_risk_percentage=20),
            evaluated_at=EVALUATED_AT,
        )

        assert [(a.entity_id, a.severity) for a in alerts] == [("program", AlertSeverity.LOW)]
        assert alerts[0].title == "High At Risk Concentration"

    def test_unknown_metric_is_rejected(self) -> None:
        """Test a rule referencing a missing metric fails at construction."""
        policy = AnalyticsPolicy(
            alert_rules=(
                AlertRule(
                    alert_type=AlertType.CLASS_OVERCAPACITY,
                    entity_type=EntityType.CLASS,
                    metric="seats_left",
                    direction="below",
                    bands=(ThresholdBand(bound=1, severity=AlertSeverity.HIGH),),
                ),
            )
        )

        with pytest.raises(ValueError, match="seats_left"):
            AlertEngine(policy)

    def test_reference_scenario_alerts(self, engine, policy, scenario_context) -> None:
        """Test the reference madrassah raises one pace-drop alert per stagnant student."""
        students = StudentMetricsCalculator(policy).calculate(scenario_context)
        alerts = engine.evaluate(
            students=students,
            classes=ClassMetricsCalculator(policy).calculate(scenario_context, students),
            teachers=TeacherMetricsCalculator(policy).calculate(scenario_context, students),
            evaluated_at=scenario_context.time_range.to,
        )

        assert [(a.type, a.severity, a.entity_id) for a in alerts] == [
            (AlertType.MEMORIZATION_PACE_DROP, HIGH, "s09"),
            (AlertType.MEMORIZATION_PACE_DROP, HIGH, "s10"),
        ]
