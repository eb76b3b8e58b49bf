# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Class metrics calculator.

Aggregates member students' metrics per class and adds class-level facts:
capacity utilization, attendance and scheduled-vs-conducted sessions.

A class with no enrolled students reports every rate as None so that an
empty section is shown as "n/a" rather than as a failing class.
"""

import logging
import math
from collections.abc import Sequence

from src.domains.analytics.calculator import (
    mean,
    percentage,
    round_optional,
    scheduled_dates,
    variance,
)
from src.domains.analytics.context import AnalyticsDataContext
from src.domains.analytics.models import AttendanceStatus, ClassRecord
from src.domains.analytics.policy import AnalyticsPolicy
from src.domains.analytics.schemas import ClassMetrics, StudentMetrics, TimeRange

logger = logging.getLogger(__name__)


def class_scheduled_sessions(class_record: ClassRecord, time_range: TimeRange) -> int:
    """Sessions a class is scheduled to hold within the range.

    Each time slot contributes one session per matching calendar day. A
    class without time slots falls back to its ``days_of_week``.
    """
    if class_record.time_slots:
        return sum(
            len(scheduled_dates(slot.days or class_record.days_of_week, time_range))
            for slot in class_record.time_slots
        )
    return len(scheduled_dates(class_record.days_of_week, time_range))


class ClassMetricsCalculator:
    """Computes ClassMetrics for every active class."""

    def __init__(self, policy: AnalyticsPolicy) -> None:
        self.policy = policy

    def calculate(
        self,
        context: AnalyticsDataContext,
        student_metrics: Sequence[StudentMetrics],
    ) -> list[ClassMetrics]:
        """Calculate metrics for all active classes.

        Args:
            context: Snapshot to calculate from.
            student_metrics: Metrics of the active students in the same
                context, as produced by StudentMetricsCalculator.

        Returns:
            Metrics ordered by class name, then id.
        """
        by_student = {m.student_id: m for m in student_metrics}
        results: list[ClassMetrics] = []
        for class_record in sorted(context.classes, key=lambda c: (c.name, c.id)):
            if not class_record.is_active:
                continue
            try:
                results.append(self.calculate_for(class_record, context, by_student))
            except (ArithmeticError, ValueError, TypeError) as e:
                logger.error(
                    "Failed to calculate metrics for class %s: %s",
                    class_record.id,
                    e,
                    exc_info=True,
                )
        return results

    def calculate_for(
        self,
        class_record: ClassRecord,
        context: AnalyticsDataContext,
        by_student: dict[str, StudentMetrics],
    ) -> ClassMetrics:
        """Calculate metrics for one class."""
        member_ids = list(dict.fromkeys(class_record.current_students))
        members = set(member_ids)
        enrolled = len(member_ids)

        member_metrics = [by_student[sid] for sid in member_ids if sid in by_student]
        paces = [m.pages_per_week for m in member_metrics]
        pace_variance = variance(paces)
        on_target = sum(1 for m in member_metrics if m.meets_weekly_target)

        known_students = {s.id: s for s in context.students}
        inactive = sum(
            1 for sid in member_ids
            if sid in known_students and not known_students[sid].is_active
        )

        scheduled = class_scheduled_sessions(class_record, context.time_range)
        class_attendance = [a for a in context.attendance if a.class_id == class_record.id]
        conducted = len({a.occurred_at.date() for a in class_attendance})

        attendance_rate: float | None = None
        capacity_utilization: float | None = None
        drop_off_rate: float | None = None
        session_ratio: float | None = None
        if enrolled > 0:
            if not class_attendance:
                # Attendance rows without class_id are attributed by membership.
                class_attendance = [
                    a for a in context.attendance
                    if a.class_id is None and a.student_id in members
                ]
            present = sum(1 for a in class_attendance if a.status == AttendanceStatus.PRESENT)
            attendance_rate = percentage(present, len(class_attendance))
            if class_record.capacity:
                capacity_utilization = percentage(enrolled, class_record.capacity)
            drop_off_rate = percentage(inactive, enrolled)
            session_ratio = percentage(conducted, scheduled)

        return ClassMetrics(
            class_id=class_record.id,
            class_name=class_record.name,
            teacher_ids=class_record.teacher_ids,
            enrolled_count=enrolled,
            active_student_count=len(member_metrics),
            capacity=class_record.capacity,
            capacity_utilization=round_optional(capacity_utilization),
            attendance_rate=round_optional(attendance_rate),
            average_pace=round_optional(mean(paces)),
            pace_variance=round_optional(pace_variance),
            pace_std_dev=round_optional(None if pace_variance is None else math.sqrt(pace_variance)),
            average_progress=round_optional(mean(m.total_pages for m in member_metrics)),
            students_on_target=on_target,
            students_below_target=len(member_metrics) - on_target,
            at_risk_student_count=sum(1 for m in member_metrics if m.is_at_risk),
            drop_off_rate=round_optional(drop_off_rate),
            sessions_scheduled=scheduled,
            sessions_conducted=conducted,
            session_ratio=round_optional(session_ratio),
        )
