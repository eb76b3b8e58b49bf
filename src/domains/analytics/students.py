# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Student metrics calculator.

Derives per-student aggregates (memorization pace, attendance, stagnation,
accuracy, consistency and the at-risk composite score) for every active
student in an AnalyticsDataContext.

Every "recent" window (last 7 days, last 30 days, revision load) is
anchored at the end of the context's time range rather than the wall
clock, so the same context always yields the same metrics.

Example:
    calculator = StudentMetricsCalculator(policy)
    metrics = calculator.calculate(context)
    at_risk = [m for m in metrics if m.is_at_risk]
"""

import logging
from datetime import timedelta

from src.domains.analytics.calculator import (
    clamp,
    entries_between,
    entry_pages,
    longest_absence_streak,
    mean,
    percentage,
    round2,
    round_optional,
    weighted_score,
    whole_days_between,
)
from src.domains.analytics.context import AnalyticsDataContext
from src.domains.analytics.models import AttendanceStatus, ProgressEntry, Student
from src.domains.analytics.policy import AnalyticsPolicy
from src.domains.analytics.schemas import StudentMetrics
from src.utils.datetime import as_utc_datetime, days_between

logger = logging.getLogger(__name__)


class StudentMetricsCalculator:
    """Computes StudentMetrics from a context under an analytics policy."""

    def __init__(self, policy: AnalyticsPolicy) -> None:
        self.policy = policy

    def calculate(self, context: AnalyticsDataContext) -> list[StudentMetrics]:
        """Calculate metrics for every active student.

        A failure for one student is logged and that student skipped, so a
        single malformed record never blanks the whole dashboard.

        Args:
            context: Snapshot to calculate from.

        Returns:
            Metrics ordered by student name, then id.
        """
        results: list[StudentMetrics] = []
        for student in sorted(context.active_students, key=lambda s: (s.name, s.id)):
            try:
                results.append(self.calculate_for(student, context))
            except (ArithmeticError, ValueError, TypeError) as e:
                logger.error(
                    "Failed to calculate metrics for student %s: %s",
                    student.id,
                    e,
                    exc_info=True,
                )
        return results

    def calculate_for(self, student: Student, context: AnalyticsDataContext) -> StudentMetrics:
        """Calculate metrics for one student."""
        policy = self.policy
        time_range = context.time_range
        now = time_range.to

        progress = context.progress_by_student.get(student.id, ())
        attendance = context.attendance_by_student.get(student.id, ())
        submissions = context.submissions_by_student.get(student.id, ())
        juz_revisions = context.juz_revisions_by_student.get(student.id, ())
        sabaq_para = context.sabaq_para_by_student.get(student.id, ())
        assignments = [a for a in context.assignments if student.id in a.student_ids]

        # Memorization volume and pace
        window_start = time_range.from_
        enrolled_at = as_utc_datetime(student.enrollment_date)
        if enrolled_at is not None and window_start < enrolled_at < now:
            window_start = enrolled_at
        window_days = max(1.0, days_between(window_start, now))
        window_weeks = max(1.0, window_days / 7)

        total_pages = self._pages(progress)
        last_week = self._pages(entries_between(progress, now - timedelta(days=7), now))
        prior_week = self._pages(
            [
                e for e in progress
                if now - timedelta(days=14) <= e.occurred_at < now - timedelta(days=7)
            ]
        )
        last_month = self._pages(entries_between(progress, now - timedelta(days=30), now))
        pages_per_week = total_pages / window_weeks
        pages_per_day = total_pages / window_days

        # Revision
        revision_cutoff = now - timedelta(days=policy.active_revision_window_days)
        active_revision_load = sum(1 for r in juz_revisions if r.occurred_at >= revision_cutoff)
        retention_cutoff = now - timedelta(days=policy.retention_window_days)
        ratings = [
            r.memorization_quality for r in juz_revisions
            if r.memorization_quality is not None and r.occurred_at >= retention_cutoff
        ] + [
            r.quality_rating for r in sabaq_para
            if r.quality_rating is not None and r.occurred_at >= retention_cutoff
        ]
        best_score = max(policy.quality_scores.values())
        retention_avg = mean(policy.quality_scores[q] for q in ratings)
        revision_retention_score = (
            None if retention_avg is None else retention_avg / best_score * 100
        )

        accuracy_rate = self._accuracy(progress)

        # Completion
        hifz_goal = clamp(len(set(student.completed_juz)) / policy.total_juz * 100)
        current_juz_percentage = 0.0
        if student.current_juz is not None:
            juz_pages = self._pages(e for e in progress if e.current_juz == student.current_juz)
            current_juz_percentage = clamp(juz_pages / policy.pages_per_juz * 100)

        # Stagnation
        if progress:
            last_progress = max(e.occurred_at for e in progress)
            days_since_last_progress: int | None = whole_days_between(last_progress, now)
            is_stagnant = days_since_last_progress >= policy.stagnation_days
        else:
            days_since_last_progress = None
            is_stagnant = True

        # Attendance
        present = sum(1 for a in attendance if a.status == AttendanceStatus.PRESENT)
        attendance_rate = percentage(present, len(attendance))
        late_arrivals = sum(1 for a in attendance if a.status == AttendanceStatus.LATE)
        excused = sum(1 for a in attendance if a.is_excused_absence)
        unexcused = sum(
            1 for a in attendance
            if a.status == AttendanceStatus.ABSENT and not a.is_excused_absence
        )
        absence_streak = longest_absence_streak(attendance)

        submitted = sum(1 for s in submissions if s.is_submitted)
        assignment_completion_rate = (
            None if not assignments else clamp(submitted / len(assignments) * 100)
        )

        consistency = self._consistency(progress, now)
        expected_interactions = int(time_range.days / 7 * policy.expected_practice_days_per_week)
        teacher_effort = percentage(len(progress) + len(attendance), expected_interactions)
        if teacher_effort is not None:
            teacher_effort = clamp(teacher_effort)

        # Risk
        stagnation_risk = (
            100.0
            if days_since_last_progress is None
            else clamp(days_since_last_progress / policy.stagnation_risk_horizon_days * 100)
        )
        weights = policy.risk_weights
        at_risk_score = weighted_score(
            {
                "attendance": None if attendance_rate is None else 100 - attendance_rate,
                "pace": 100 - min(100.0, pages_per_week * policy.pace_risk_multiplier),
                "accuracy": None if accuracy_rate is None else 100 - accuracy_rate,
                "consistency": 100 - consistency,
                "stagnation": stagnation_risk,
            },
            weights.model_dump(),
        ) or 0.0
        is_at_risk = at_risk_score >= policy.at_risk_threshold or (
            policy.stagnant_without_progress_at_risk and is_stagnant and total_pages == 0
        )

        reference_pace = pages_per_week if pages_per_week > 0 else policy.weekly_target_pages
        pace_drop = 0.0
        if reference_pace > 0 and last_week < reference_pace:
            pace_drop = (reference_pace - last_week) / reference_pace * 100

        pace_declining = prior_week > 0 and last_week < prior_week * policy.pace_decline_ratio
        burnout_warning = (
            is_stagnant or consistency < policy.burnout_consistency_floor or pace_declining
        )

        drop_off = at_risk_score
        if absence_streak >= policy.drop_off_absence_streak:
            drop_off += policy.drop_off_absence_penalty
        if pace_declining:
            drop_off += policy.drop_off_decline_penalty
        if consistency < policy.drop_off_consistency_floor:
            drop_off += policy.drop_off_consistency_penalty

        return StudentMetrics(
            student_id=student.id,
            student_name=student.name,
            section=student.section,
            total_pages=round2(total_pages),
            pages_last_7_days=round2(last_week),
            pages_last_30_days=round2(last_month),
            pages_per_week=round2(pages_per_week),
            pages_per_day=round2(pages_per_day),
            meets_weekly_target=pages_per_week >= policy.weekly_target_pages,
            hifz_goal_percentage=round2(hifz_goal),
            current_juz_percentage=round2(current_juz_percentage),
            active_revision_load=active_revision_load,
            sabaq_para_revisions=len(sabaq_para),
            revision_retention_score=round_optional(revision_retention_score),
            accuracy_rate=round_optional(accuracy_rate),
            days_since_last_progress=days_since_last_progress,
            is_stagnant=is_stagnant,
            attendance_rate=round_optional(attendance_rate),
            late_arrivals=late_arrivals,
            excused_absences=excused,
            unexcused_absences=unexcused,
            longest_absence_streak=absence_streak,
            assignment_completion_rate=round_optional(assignment_completion_rate),
            practice_consistency_score=round2(consistency),
            teacher_effort_rating=round_optional(teacher_effort),
            at_risk_score=round2(at_risk_score),
            is_at_risk=is_at_risk,
            pace_drop_percentage=round2(pace_drop),
            pace_declining=pace_declining,
            burnout_warning=burnout_warning,
            drop_off_probability=round2(clamp(drop_off)),
        )

    def _pages(self, entries) -> float:
        return sum(entry_pages(e, self.policy) for e in entries)

    def _accuracy(self, progress: tuple[ProgressEntry, ...]) -> float | None:
        mistakes: list[float] = []
        for entry in progress:
            if entry.mistake_count is not None:
                mistakes.append(max(0, entry.mistake_count))
            elif entry.memorization_quality is not None:
                mistakes.append(self.policy.estimated_mistakes[entry.memorization_quality])
        average = mean(mistakes)
        if average is None:
            return None
        return 100 - min(100.0, average * self.policy.accuracy_penalty_per_mistake)

    def _consistency(self, progress: tuple[ProgressEntry, ...], now) -> float:
        """Distinct practice days in the window against the expected count."""
        cutoff = now - timedelta(days=self.policy.consistency_window_days)
        practice_days = {e.occurred_at.date() for e in progress if cutoff <= e.occurred_at <= now}
        return clamp(len(practice_days) / self.policy.expected_practice_days * 100)
