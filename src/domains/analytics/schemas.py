# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Analytics result schemas.

Derived metrics are never stored; they are computed per query from an
AnalyticsDataContext. Rate-style metrics are ``float | None`` where
``None`` means not-applicable (no underlying data), which presentation
layers must render as "n/a" rather than as a red zero.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.utils.datetime import ensure_utc


class AnalyticsSchema(BaseModel):
    """Base for derived analytics values."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class TimeRange(AnalyticsSchema):
    """Closed ``[from, to]`` window of an analytics query."""

    from_: datetime = Field(alias="from", description="Start of the window (inclusive)")
    to: datetime = Field(description="End of the window (inclusive)")

    @field_validator("from_", "to")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> "TimeRange":
        if self.from_ >= self.to:
            raise ValueError("time range start must be before its end")
        return self

    @property
    def duration(self) -> timedelta:
        return self.to - self.from_

    @property
    def days(self) -> float:
        return self.duration / timedelta(days=1)

    def contains(self, moment: datetime | None) -> bool:
        return moment is not None and self.from_ <= moment <= self.to

    @property
    def cache_key(self) -> str:
        return f"{self.from_.isoformat()}|{self.to.isoformat()}"


class StudentMetrics(AnalyticsSchema):
    """Per-student aggregates for one time range."""

    student_id: str
    student_name: str
    section: str | None = None

    # Memorization
    total_pages: float = 0.0
    pages_last_7_days: float = 0.0
    pages_last_30_days: float = 0.0
    pages_per_week: float = 0.0
    pages_per_day: float = 0.0
    meets_weekly_target: bool = False
    hifz_goal_percentage: float = 0.0
    current_juz_percentage: float = 0.0

    # Revision and quality
    active_revision_load: int = 0
    sabaq_para_revisions: int = 0
    revision_retention_score: float | None = None
    accuracy_rate: float | None = None

    # Engagement
    days_since_last_progress: int | None = None
    is_stagnant: bool = True
    attendance_rate: float | None = None
    late_arrivals: int = 0
    excused_absences: int = 0
    unexcused_absences: int = 0
    longest_absence_streak: int = 0
    assignment_completion_rate: float | None = None
    practice_consistency_score: float = 0.0
    teacher_effort_rating: float | None = None

    # Risk
    at_risk_score: float = 0.0
    is_at_risk: bool = False
    pace_drop_percentage: float = 0.0
    pace_declining: bool = False
    burnout_warning: bool = False
    drop_off_probability: float = 0.0


class ClassMetrics(AnalyticsSchema):
    """Per-class aggregates over member students and sessions."""

    class_id: str
    class_name: str
    teacher_ids: tuple[str, ...] = ()
    enrolled_count: int = 0
    active_student_count: int = 0
    capacity: int | None = None
    capacity_utilization: float | None = None
    attendance_rate: float | None = None
    average_pace: float | None = None
    pace_variance: float | None = None
    pace_std_dev: float | None = None
    average_progress: float | None = None
    students_on_target: int = 0
    students_below_target: int = 0
    at_risk_student_count: int = 0
    drop_off_rate: float | None = None
    sessions_scheduled: int = 0
    sessions_conducted: int = 0
    session_ratio: float | None = None


class TeacherMetrics(AnalyticsSchema):
    """Per-teacher aggregates over assigned students and teaching activity."""

    teacher_id: str
    teacher_name: str
    class_ids: tuple[str, ...] = ()
    student_count: int = 0
    at_risk_student_count: int = 0
    average_student_pace: float | None = None
    average_student_accuracy: float | None = None
    percentage_meeting_weekly_target: float | None = None
    student_retention_rate: float | None = None
    weekly_teaching_hours: float = 0.0
    sessions_scheduled: int = 0
    sessions_conducted: int = 0
    session_reliability: float | None = None
    missed_sessions: int | None = None
    cancellations_per_week: float | None = None
    average_grading_turnaround_hours: float | None = None
    grading_timeliness_score: float | None = None
    communications_sent: int = 0


class ProgramMetrics(AnalyticsSchema):
    """Institution-wide rollup."""

    total_student_count: int = 0
    active_student_count: int = 0
    active_teacher_count: int = 0
    class_count: int = 0
    overall_memorization_velocity: float | None = None
    students_on_track_count: int = 0
    students_on_track_percentage: float | None = None
    students_behind_percentage: float | None = None
    at_risk_student_count: int = 0
    at_risk_percentage: float | None = None
    average_attendance_rate: float | None = None
    average_accuracy_rate: float | None = None
    retention_rate: float | None = None
    enrollments: int = 0
    withdrawals: int = 0
    net_enrollment_change: int = 0
    average_student_lifetime_days: float | None = None
    teacher_utilization_rate: float | None = None
    teacher_turnover_rate: float | None = None
    sessions_delivered: int = 0
    sessions_planned: int = 0
    session_delivery_ratio: float | None = None


class AnalyticsSummary(AnalyticsSchema):
    """Essential dashboard numbers, computed on demand."""

    total_active_students: int = 0
    students_on_track_count: int = 0
    students_on_track_percentage: float | None = None
    at_risk_students_count: int = 0
    at_risk_students_percentage: float | None = None
    overall_attendance_rate: float | None = None
    overall_memorization_velocity: float | None = None
    total_active_teachers: int = 0
    teachers_with_at_risk_count: int = 0
    teachers_with_at_risk_percentage: float | None = None
    avg_session_reliability: float | None = None
    retention_rate: float | None = None


class AlertType(str, Enum):
    """Kinds of threshold breaches the alert engine detects."""

    MISSED_SESSIONS_THRESHOLD = "missed_sessions_threshold"
    MEMORIZATION_PACE_DROP = "memorization_pace_drop"
    HIGH_AT_RISK_CONCENTRATION = "high_at_risk_concentration"
    CLASS_OVERCAPACITY = "class_overcapacity"
    EXCESSIVE_TEACHER_CANCELLATIONS = "excessive_teacher_cancellations"


class AlertSeverity(str, Enum):
    """Severity levels for alerts."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    AlertSeverity.CRITICAL: 4,
    AlertSeverity.HIGH: 3,
    AlertSeverity.MEDIUM: 2,
    AlertSeverity.LOW: 1,
}


class AlertStatus(str, Enum):
    """Lifecycle of a persisted alert row."""

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class EntityType(str, Enum):
    """Kind of entity an alert refers to."""

    STUDENT = "student"
    TEACHER = "teacher"
    CLASS = "class"
    PROGRAM = "program"


class AnalyticsAlert(AnalyticsSchema):
    """A threshold breach found during one evaluation pass."""

    id: str
    type: AlertType
    severity: AlertSeverity
    status: AlertStatus = AlertStatus.ACTIVE
    title: str
    description: str
    entity_id: str
    entity_name: str
    entity_type: EntityType
    threshold: float
    current_value: float
    created_at: datetime
    acknowledged_at: datetime | None = None
    resolved_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class DataQuality(str, Enum):
    """Completeness grade of a calculation's inputs."""

    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


T = TypeVar("T")


class MetricCalculationResult(AnalyticsSchema, Generic[T]):
    """Envelope returned by the analytics service for every metric query."""

    data: T
    calculated_at: datetime
    time_range: TimeRange
    data_quality: DataQuality = DataQuality.EXCELLENT
    warnings: tuple[str, ...] = ()
