# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Program (institution-wide) metrics.

Rolls student, teacher and class metrics up into madrassah-wide KPIs.

Retention compares two windows: the cohort of students active during the
previous period of equal length, and which of them are still active now.
It needs a second context for the previous period; without one (or with
an empty cohort) retention is None rather than a misleading 0% or 100%.
"""

import logging
from collections.abc import Sequence

from src.domains.analytics.calculator import (
    clamp,
    mean,
    mean_present,
    percentage,
    round_optional,
)
from src.domains.analytics.context import AnalyticsDataContext
from src.domains.analytics.policy import AnalyticsPolicy
from src.domains.analytics.schemas import (
    AnalyticsSummary,
    ClassMetrics,
    ProgramMetrics,
    StudentMetrics,
    TeacherMetrics,
)
from src.utils.datetime import as_utc_datetime

logger = logging.getLogger(__name__)


def prior_period_cohort(prior_context: AnalyticsDataContext) -> set[str]:
    """Students considered active during the prior context's window.

    A student belongs to the cohort if they have attendance or progress
    recorded in that window, or were enrolled by its end and had not
    withdrawn before it ended.
    """
    window_end = prior_context.time_range.to
    cohort = {p.student_id for p in prior_context.progress}
    cohort.update(a.student_id for a in prior_context.attendance)
    for student in prior_context.students:
        enrolled_at = as_utc_datetime(student.enrollment_date)
        if enrolled_at is None or enrolled_at > window_end:
            continue
        if student.is_active:
            cohort.add(student.id)
            continue
        left_at = as_utc_datetime(student.status_start_date)
        if left_at is not None and left_at > window_end:
            cohort.add(student.id)
    return cohort


def calculate_retention(
    context: AnalyticsDataContext,
    prior_context: AnalyticsDataContext | None,
) -> float | None:
    """Percentage of the prior period's active students still active now."""
    if prior_context is None:
        return None
    cohort = prior_period_cohort(prior_context)
    active_now = {s.id for s in context.active_students}
    return percentage(len(cohort & active_now), len(cohort))


class ProgramMetricsCalculator:
    """Computes ProgramMetrics and the essential dashboard summary."""

    def __init__(self, policy: AnalyticsPolicy) -> None:
        self.policy = policy

    def calculate(
        self,
        context: AnalyticsDataContext,
        student_metrics: Sequence[StudentMetrics],
        teacher_metrics: Sequence[TeacherMetrics],
        class_metrics: Sequence[ClassMetrics],
        prior_context: AnalyticsDataContext | None = None,
    ) -> ProgramMetrics:
        """Calculate program-wide metrics.

        Args:
            context: Snapshot for the current window.
            student_metrics: Metrics of the active students.
            teacher_metrics: Metrics of all teachers.
            class_metrics: Metrics of all active classes.
            prior_context: Snapshot for the previous window, if available.

        Returns:
            ProgramMetrics. An empty context yields zero counts and None rates.
        """
        time_range = context.time_range
        student_count = len(student_metrics)
        teacher_count = len(teacher_metrics)

        on_track = sum(1 for m in student_metrics if m.meets_weekly_target)
        at_risk = sum(1 for m in student_metrics if m.is_at_risk)

        start_day, end_day = time_range.from_.date(), time_range.to.date()
        enrollments = sum(
            1 for s in context.students
            if s.enrollment_date is not None and start_day <= s.enrollment_date <= end_day
        )
        withdrawals = sum(
            1 for s in context.students
            if not s.is_active
            and s.status_start_date is not None
            and start_day <= s.status_start_date <= end_day
        )

        lifetimes: list[float] = []
        for student in context.students:
            enrolled_at = as_utc_datetime(student.enrollment_date)
            if enrolled_at is None:
                continue
            ended_at = time_range.to
            if not student.is_active and student.status_start_date is not None:
                ended_at = as_utc_datetime(student.status_start_date)
            lifetimes.append(max(0.0, (ended_at - enrolled_at).total_seconds() / 86400))

        delivered = sum(m.sessions_conducted for m in teacher_metrics)
        planned = sum(m.sessions_scheduled for m in teacher_metrics)
        teaching_hours = sum(m.weekly_teaching_hours for m in teacher_metrics)
        idle_teachers = sum(1 for m in teacher_metrics if m.sessions_conducted == 0)

        retention = calculate_retention(context, prior_context)

        metrics = ProgramMetrics(
            total_student_count=len(context.students),
            active_student_count=student_count,
            active_teacher_count=teacher_count,
            class_count=len(class_metrics),
            overall_memorization_velocity=round_optional(
                mean(m.pages_per_week for m in student_metrics)
            ),
            students_on_track_count=on_track,
            students_on_track_percentage=round_optional(percentage(on_track, student_count)),
            students_behind_percentage=round_optional(
                percentage(student_count - on_track, student_count)
            ),
            at_risk_student_count=at_risk,
            at_risk_percentage=round_optional(percentage(at_risk, student_count)),
            average_attendance_rate=round_optional(
                mean_present(m.attendance_rate for m in student_metrics)
            ),
            average_accuracy_rate=round_optional(
                mean_present(m.accuracy_rate for m in student_metrics)
            ),
            retention_rate=round_optional(retention),
            enrollments=enrollments,
            withdrawals=withdrawals,
            net_enrollment_change=enrollments - withdrawals,
            average_student_lifetime_days=round_optional(mean(lifetimes)),
            teacher_utilization_rate=round_optional(
                percentage(teaching_hours, teacher_count * self.policy.teacher_available_hours_per_week)
            ),
            teacher_turnover_rate=round_optional(percentage(idle_teachers, teacher_count)),
            sessions_delivered=delivered,
            sessions_planned=planned,
            session_delivery_ratio=round_optional(
                None if planned == 0 else clamp(delivered / planned * 100)
            ),
        )
        logger.debug(
            "Program metrics: students=%d at_risk=%d retention=%s",
            student_count,
            at_risk,
            metrics.retention_rate,
        )
        return metrics

    def summarize(
        self,
        program: ProgramMetrics,
        teacher_metrics: Sequence[TeacherMetrics],
    ) -> AnalyticsSummary:
        """Reduce program and teacher metrics to the essential dashboard numbers."""
        threshold = self.policy.at_risk_concentration_threshold
        teachers_with_at_risk = sum(
            1 for m in teacher_metrics if m.at_risk_student_count >= threshold
        )
        return AnalyticsSummary(
            total_active_students=program.active_student_count,
            students_on_track_count=program.students_on_track_count,
            students_on_track_percentage=program.students_on_track_percentage,
            at_risk_students_count=program.at_risk_student_count,
            at_risk_students_percentage=program.at_risk_percentage,
            overall_attendance_rate=program.average_attendance_rate,
            overall_memorization_velocity=program.overall_memorization_velocity,
            total_active_teachers=program.active_teacher_count,
            teachers_with_at_risk_count=teachers_with_at_risk,
            teachers_with_at_risk_percentage=round_optional(
                percentage(teachers_with_at_risk, len(teacher_metrics))
            ),
            avg_session_reliability=round_optional(
                mean_present(m.session_reliability for m in teacher_metrics)
            ),
            retention_rate=program.retention_rate,
        )
