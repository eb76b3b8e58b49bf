# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Teacher metrics calculator.

A teacher's students are the members of every class the teacher is
assigned to, either on the class itself or on one of its time slots.
Teacher metrics aggregate those students' metrics and add teaching
activity: scheduled vs conducted sessions, cancellations, grading
turnaround and communications.

Sessions conducted are inferred from records the teacher created: one
session per distinct (class, day) with attendance marked, plus one per
day with progress recorded and no attendance marked.
"""

import logging
from collections.abc import Sequence
from datetime import date, timedelta

from src.domains.analytics.calculator import (
    clamp,
    mean,
    mean_present,
    percentage,
    round2,
    round_optional,
    scheduled_dates,
    weekday_key,
    weeks_in_range,
)
from src.domains.analytics.context import AnalyticsDataContext
from src.domains.analytics.models import ClassRecord, Teacher
from src.domains.analytics.policy import AnalyticsPolicy
from src.domains.analytics.schemas import StudentMetrics, TeacherMetrics, TimeRange
from src.utils.datetime import as_utc_datetime

logger = logging.getLogger(__name__)


def teaches(teacher_id: str, class_record: ClassRecord) -> bool:
    """Whether the teacher is assigned to the class or any of its slots."""
    if teacher_id in class_record.teacher_ids:
        return True
    return any(teacher_id in slot.teacher_ids for slot in class_record.time_slots)


class TeacherMetricsCalculator:
    """Computes TeacherMetrics for every teacher profile."""

    def __init__(self, policy: AnalyticsPolicy) -> None:
        self.policy = policy

    def calculate(
        self,
        context: AnalyticsDataContext,
        student_metrics: Sequence[StudentMetrics],
    ) -> list[TeacherMetrics]:
        """Calculate metrics for all teachers.

        Args:
            context: Snapshot to calculate from.
            student_metrics: Metrics of the active students in the same context.

        Returns:
            Metrics ordered by teacher name, then id.
        """
        by_student = {m.student_id: m for m in student_metrics}
        results: list[TeacherMetrics] = []
        for teacher in sorted(context.teachers, key=lambda t: (t.name, t.id)):
            if teacher.role != "teacher":
                continue
            try:
                results.append(self.calculate_for(teacher, context, by_student))
            except (ArithmeticError, ValueError, TypeError) as e:
                logger.error(
                    "Failed to calculate metrics for teacher %s: %s",
                    teacher.id,
                    e,
                    exc_info=True,
                )
        return results

    def calculate_for(
        self,
        teacher: Teacher,
        context: AnalyticsDataContext,
        by_student: dict[str, StudentMetrics],
    ) -> TeacherMetrics:
        """Calculate metrics for one teacher."""
        policy = self.policy
        time_range = context.time_range
        classes = [c for c in context.classes if c.is_active and teaches(teacher.id, c)]

        student_ids = list(dict.fromkeys(sid for c in classes for sid in c.current_students))
        student_metrics = [by_student[sid] for sid in student_ids if sid in by_student]

        # Student outcomes
        average_pace = average_accuracy = meeting_target = retention = None
        if student_ids:
            average_pace = mean(m.pages_per_week for m in student_metrics)
            average_accuracy = mean_present(m.accuracy_rate for m in student_metrics)
            meeting_target = percentage(
                sum(1 for m in student_metrics if m.meets_weekly_target),
                len(student_metrics),
            )
            retention = self._retention(student_ids, context)

        # Teaching activity
        weekly_hours, scheduled = self._schedule(teacher.id, classes, time_range)
        conducted = self._conducted_sessions(teacher.id, context)
        turnaround = self._grading_turnaround(teacher.id, context)
        reliability = timeliness = missed = cancellations = None
        if student_ids:
            missed = max(0, scheduled - conducted)
            cancellations = round2(missed / weeks_in_range(time_range))
        if student_ids and scheduled > 0:
            reliability = clamp(conducted / scheduled * 100)
        if student_ids and turnaround is not None:
            overdue = max(0.0, turnaround - policy.grading_grace_hours)
            timeliness = clamp(100 - overdue * policy.grading_penalty_per_hour)

        return TeacherMetrics(
            teacher_id=teacher.id,
            teacher_name=teacher.name,
            class_ids=tuple(c.id for c in classes),
            student_count=len(student_ids),
            at_risk_student_count=sum(1 for m in student_metrics if m.is_at_risk),
            average_student_pace=round_optional(average_pace),
            average_student_accuracy=round_optional(average_accuracy),
            percentage_meeting_weekly_target=round_optional(meeting_target),
            student_retention_rate=round_optional(retention),
            weekly_teaching_hours=round2(weekly_hours),
            sessions_scheduled=scheduled,
            sessions_conducted=conducted,
            session_reliability=round_optional(reliability),
            missed_sessions=missed,
            cancellations_per_week=cancellations,
            average_grading_turnaround_hours=round_optional(turnaround),
            grading_timeliness_score=round_optional(timeliness),
            communications_sent=sum(1 for c in context.communications if c.sender_id == teacher.id),
        )

    def _schedule(
        self,
        teacher_id: str,
        classes: list[ClassRecord],
        time_range: TimeRange,
    ) -> tuple[float, int]:
        """Weekly teaching hours and sessions scheduled within the range."""
        weekly_hours = 0.0
        scheduled = 0
        for class_record in classes:
            slots = [
                slot for slot in class_record.time_slots
                if teacher_id in slot.teacher_ids
                or (not slot.teacher_ids and teacher_id in class_record.teacher_ids)
            ]
            if not slots and not class_record.time_slots and teacher_id in class_record.teacher_ids:
                days = {weekday_key(d) for d in class_record.days_of_week} - {None}
                weekly_hours += len(days) * self.policy.default_session_hours
                scheduled += len(scheduled_dates(class_record.days_of_week, time_range))
                continue
            for slot in slots:
                days_source = slot.days or class_record.days_of_week
                days = {weekday_key(d) for d in days_source} - {None}
                hours = slot.duration_hours or self.policy.default_session_hours
                weekly_hours += hours * len(days)
                scheduled += len(scheduled_dates(days_source, time_range))
        return weekly_hours, scheduled

    def _conducted_sessions(self, teacher_id: str, context: AnalyticsDataContext) -> int:
        attendance_sessions = {
            (a.class_id, a.occurred_at.date())
            for a in context.attendance
            if a.teacher_id == teacher_id
        }
        attendance_days = {day for _, day in attendance_sessions}
        progress_days: set[date] = {
            p.occurred_at.date()
            for p in context.progress
            if p.recorded_by == teacher_id
        }
        return len(attendance_sessions) + len(progress_days - attendance_days)

    def _grading_turnaround(self, teacher_id: str, context: AnalyticsDataContext) -> float | None:
        """Mean hours from the later of submission and due date to grading."""
        assignments = {a.id: a for a in context.assignments if a.teacher_id == teacher_id}
        hours: list[float] = []
        for submission in context.submissions:
            assignment = assignments.get(submission.assignment_id)
            if assignment is None or submission.graded_at is None:
                continue
            start = submission.submitted_at or submission.created_at
            if assignment.due_date is not None and assignment.due_date > start:
                start = assignment.due_date
            hours.append(max(0.0, (submission.graded_at - start) / timedelta(hours=1)))
        return mean(hours)

    def _retention(self, student_ids: list[str], context: AnalyticsDataContext) -> float | None:
        """Share of students enrolled by the range start who are still active."""
        start = context.time_range.from_
        students = {s.id: s for s in context.students}
        cohort = [
            students[sid] for sid in student_ids
            if sid in students
            and students[sid].enrollment_date is not None
            and as_utc_datetime(students[sid].enrollment_date) <= start
        ]
        return percentage(sum(1 for s in cohort if s.is_active), len(cohort))
