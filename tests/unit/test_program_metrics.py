# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for program metrics, retention and the dashboard summary."""

from datetime import date

import pytest

from src.domains.analytics.classes import ClassMetricsCalculator
from src.domains.analytics.context import previous_period
from src.domains.analytics.program import (
    ProgramMetricsCalculator,
    calculate_retention,
    prior_period_cohort,
)
from src.domains.analytics.schemas import ProgramMetrics, TeacherMetrics
from src.domains.analytics.students import StudentMetricsCalculator
from src.domains.analytics.teachers import TeacherMetricsCalculator


@pytest.fixture
def calculate(policy):
    """Run every calculator and return program metrics."""
    students = StudentMetricsCalculator(policy)
    teachers = TeacherMetricsCalculator(policy)
    classes = ClassMetricsCalculator(policy)
    program = ProgramMetricsCalculator(policy)

    def run(context, prior_context=None):
        student_metrics = students.calculate(context)
        return program.calculate(
            context,
            student_metrics,
            teachers.calculate(context, student_metrics),
            classes.calculate(context, student_metrics),
            prior_context=prior_context,
        )

    return run


class TestProgramMetrics:
    """Tests for ProgramMetricsCalculator.calculate."""

    def test_reference_program(self, calculate, scenario_context) -> None:
        """Test the ten-student reference madrassah."""
        program = calculate(scenario_context)

        assert program.total_student_count == 10
        assert program.active_student_count == 10
        assert program.active_teacher_count == 1
        assert program.class_count == 1
        assert program.overall_memorization_velocity == 5.6
        assert program.students_on_track_count == 8
        assert program.students_on_track_percentage == 80
        assert program.students_behind_percentage == 20
        assert program.at_risk_student_count == 2
        assert program.at_risk_percentage == 20
        assert program.average_attendance_rate == 100
        assert program.average_accuracy_rate is None
        assert program.retention_rate is None
        assert program.enrollments == 0
        assert program.withdrawals == 0
        assert program.average_student_lifetime_days == 242
        assert program.teacher_utilization_rate == 3.75
        assert program.teacher_turnover_rate == 0
        assert program.sessions_delivered == 28
        assert program.sessions_planned == 4
        assert program.session_delivery_ratio == 100

    def test_empty_context(self, calculate, build_context) -> None:
        """Test an empty context yields zero counts and no rates."""
        program = calculate(build_context())

        assert program.total_student_count == 0
        assert program.active_student_count == 0
        assert program.active_teacher_count == 0
        assert program.class_count == 0
        assert program.overall_memorization_velocity is None
        assert program.students_on_track_percentage is None
        assert program.at_risk_percentage is None
        assert program.average_attendance_rate is None
        assert program.retention_rate is None
        assert program.average_student_lifetime_days is None
        assert program.teacher_utilization_rate is None
        assert program.session_delivery_ratio is None

    def test_enrollments_and_withdrawals(self, calculate, build_context, rows) -> None:
        """Test enrollment changes are counted within the range."""
        context = build_context(
            students=[
                rows.student("s01"),
                rows.student("s02", enrollment_date=date(2025, 1, 10)),
                rows.student("s03", enrollment_date=date(2025, 1, 12)),
                rows.student("s04", status="inactive", status_start_date=date(2025, 1, 20)),
                rows.student("s05", status="inactive", status_start_date=date(2024, 9, 1)),
            ],
        )

        program = calculate(context)

        assert program.total_student_count == 5
        assert program.active_student_count == 3
        assert program.enrollments == 2
        assert program.withdrawals == 1
        assert program.net_enrollment_change == 1

    def test_retention_with_prior_period(self, calculate, build_context, rows, time_range) -> None:
        """Test retention over the previous period's active cohort."""
        prior_range = previous_period(time_range)
        prior = build_context(
            range_=prior_range,
            students=[rows.student("s01"), rows.student("s02"), rows.student("s03")],
        )
        current = build_context(
            students=[
                rows.student("s01"),
                rows.student("s02"),
                rows.student("s03", status="inactive", status_start_date=date(2025, 1, 5)),
            ],
        )

        program = calculate(current, prior_context=prior)

        assert program.retention_rate == 66.67


class TestRetention:
    """Tests for the prior-period cohort and retention helpers."""

    def test_no_prior_context(self, build_context) -> None:
        """Test retention is not applicable without a prior context."""
        assert calculate_retention(build_context(), None) is None

    def test_empty_cohort(self, build_context, time_range) -> None:
        """Test retention is not applicable for an empty cohort."""
        prior = build_context(range_=previous_period(time_range))

        assert calculate_retention(build_context(), prior) is None

    def test_cohort_membership(self, build_context, rows, time_range) -> None:
        """Test who counts as active during the prior window."""
        prior = build_context(
            range_=previous_period(time_range),
            students=[
                rows.student("enrolled"),
                rows.student("late-joiner", enrollment_date=date(2025, 1, 10)),
                rows.student("left-after", status="inactive", status_start_date=date(2025, 1, 10)),
                rows.student("left-before", status="inactive", status_start_date=date(2024, 10, 1)),
                rows.student("no-date", enrollment_date=None),
            ],
            attendance=[rows.attendance("a1", "no-date", date(2024, 12, 16))],
        )

        assert prior_period_cohort(prior) == {"enrolled", "left-after", "no-date"}


class TestSummary:
    """Tests for ProgramMetricsCalculator.summarize."""

    def test_reference_summary(self, calculate, scenario_context, policy) -> None:
        """Test the summary mirrors program metrics."""
        program = calculate(scenario_context)
        teacher = TeacherMetrics(
            teacher_id="t1",
            teacher_name="Ustadh Bilal",
            at_risk_student_count=2,
            session_reliability=100,
        )

        summary = ProgramMetricsCalculator(policy).summarize(program, [teacher])

        assert summary.total_active_students == 10
        assert summary.students_on_track_count == 8
        assert summary.students_on_track_percentage == 80
        assert summary.at_risk_students_count == 2
        assert summary.overall_memorization_velocity == 5.6
        assert summary.total_active_teachers == 1
        assert summary.teachers_with_at_risk_count == 0
        assert summary.teachers_with_at_risk_percentage == 0
        assert summary.avg_session_reliability == 100

    def test_at_risk_concentration_threshold(self, policy) -> None:
        """Test a teacher counts from five at-risk students."""
        teachers = [
            TeacherMetrics(teacher_id="t1", teacher_name="A", at_risk_student_count=4),
            TeacherMetrics(teacher_id="t2", teacher_name="B", at_risk_student_count=5),
        ]

        summary = ProgramMetricsCalculator(policy).summarize(ProgramMetrics(), teachers)

        assert summary.teachers_with_at_risk_count == 1
        assert summary.teachers_with_at_risk_percentage == 50
        assert summary.avg_session_reliability is None
