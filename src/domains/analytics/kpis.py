# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""KPI status classification and period-over-period comparison.

KPIs are rated green/yellow/red against two bounds. For higher-is-better
KPIs a value at or above the green bound is green, at or above the yellow
bound is yellow, anything lower is red. Lower-is-better KPIs mirror this
with ``<=``. A value of None (not applicable) has no status.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Literal

from src.domains.analytics.calculator import round2
from src.domains.analytics.schemas import AnalyticsSummary, TimeRange
from src.utils.datetime import start_of_day, subtract_months


class KpiStatus(str, Enum):
    """Traffic-light rating of a KPI value."""

    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


@dataclass(frozen=True)
class KpiDefinition:
    """Thresholds and guidance for one dashboard KPI.

    Attributes:
        id: Stable KPI identifier.
        name: Display name.
        unit: Display unit.
        green: Bound for green status.
        yellow: Bound for yellow status.
        higher_is_better: Direction of the comparison.
        red_action: Recommended action when the KPI is red.
    """

    id: str
    name: str
    unit: str
    green: float
    yellow: float
    higher_is_better: bool = True
    red_action: str = ""

    def status(self, value: float | None) -> KpiStatus | None:
        return evaluate_kpi_status(value, self)


def evaluate_kpi_status(value: float | None, definition: KpiDefinition) -> KpiStatus | None:
    """Rate a KPI value against its definition.

    Args:
        value: KPI value, None when not applicable.
        definition: KPI thresholds.

    Returns:
        The status, or None for a not-applicable value.
    """
    if value is None:
        return None
    if definition.higher_is_better:
        if value >= definition.green:
            return KpiStatus.GREEN
        if value >= definition.yellow:
            return KpiStatus.YELLOW
        return KpiStatus.RED
    if value <= definition.green:
        return KpiStatus.GREEN
    if value <= definition.yellow:
        return KpiStatus.YELLOW
    return KpiStatus.RED


DEFAULT_KPIS: dict[str, KpiDefinition] = {
    kpi.id: kpi
    for kpi in (
        KpiDefinition(
            id="students_on_track",
            name="Students On Track",
            unit="%",
            green=70,
            yellow=50,
            red_action="Review class schedules, identify struggling teachers, check target settings",
        ),
        KpiDefinition(
            id="at_risk_students",
            name="At-Risk Students",
            unit="%",
            green=10,
            yellow=20,
            higher_is_better=False,
            red_action="Review at-risk list immediately, assign interventions, check teacher support",
        ),
        KpiDefinition(
            id="teachers_with_at_risk",
            name="Teachers with At-Risk Students",
            unit="%",
            green=20,
            yellow=40,
            higher_is_better=False,
            red_action="Review teacher workload, provide additional support, consider reassignment",
        ),
        KpiDefinition(
            id="teacher_session_reliability",
            name="Teacher Session Reliability",
            unit="%",
            green=90,
            yellow=80,
            red_action="Review attendance policies, address cancellation patterns, check scheduling",
        ),
        KpiDefinition(
            id="memorization_velocity",
            name="Memorization Velocity",
            unit="pages/week",
            green=5.0,
            yellow=3.0,
            red_action="Investigate low-performing classes, review teacher engagement, check attendance",
        ),
        KpiDefinition(
            id="student_retention",
            name="Student Retention",
            unit="%",
            green=95,
            yellow=90,
            red_action="Identify drop-off patterns, review at-risk students, check parent engagement",
        ),
        KpiDefinition(
            id="attendance",
            name="Average Attendance",
            unit="%",
            green=90,
            yellow=80,
        ),
        KpiDefinition(
            id="institutional_accuracy",
            name="Institutional Accuracy Rate",
            unit="%",
            green=85,
            yellow=75,
        ),
        KpiDefinition(
            id="grading_timeliness",
            name="Grading Timeliness",
            unit="score",
            green=80,
            yellow=60,
        ),
        KpiDefinition(
            id="class_capacity",
            name="Class Capacity Utilization",
            unit="%",
            green=90,
            yellow=95,
            higher_is_better=False,
        ),
        KpiDefinition(
            id="class_dropoff_rate",
            name="Class Drop-off Rate",
            unit="%",
            green=4.9,
            yellow=10,
            higher_is_better=False,
        ),
    )
}


def summary_kpi_values(summary: AnalyticsSummary) -> dict[str, float | None]:
    """Dashboard summary numbers keyed by KPI id."""
    return {
        "students_on_track": summary.students_on_track_percentage,
        "at_risk_students": summary.at_risk_students_percentage,
        "teachers_with_at_risk": summary.teachers_with_at_risk_percentage,
        "teacher_session_reliability": summary.avg_session_reliability,
        "memorization_velocity": summary.overall_memorization_velocity,
        "student_retention": summary.retention_rate,
        "attendance": summary.overall_attendance_rate,
    }


def summary_statuses(
    summary: AnalyticsSummary,
    kpis: dict[str, KpiDefinition] = DEFAULT_KPIS,
) -> dict[str, KpiStatus | None]:
    """Rate the essential dashboard numbers."""
    values = summary_kpi_values(summary)
    return {kpi_id: kpis[kpi_id].status(value) for kpi_id, value in values.items()}


@dataclass(frozen=True)
class TrendData:
    """Change of a metric against the previous period."""

    current: float
    previous: float
    change: float
    is_positive: bool


def calculate_percentage_change(current: float, previous: float) -> float:
    """Percentage change from previous to current.

    A previous value of zero yields 100 for any growth and 0 otherwise.
    """
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round2((current - previous) / previous * 100)


def calculate_trend(current: float | None, previous: float | None) -> TrendData | None:
    """Trend of a metric, None when either side is not applicable."""
    if current is None or previous is None:
        return None
    if previous == 0:
        return TrendData(
            current=current,
            previous=0.0,
            change=100.0 if current > 0 else 0.0,
            is_positive=current > 0,
        )
    change = calculate_percentage_change(current, previous)
    return TrendData(current=current, previous=previous, change=change, is_positive=change >= 0)


def previous_calendar_period(
    period: Literal["week", "month"],
    reference: datetime,
) -> TimeRange:
    """The full calendar week (Monday-based) or month before reference."""
    day_start = start_of_day(reference)
    if period == "week":
        current_start = day_start - timedelta(days=day_start.weekday())
        previous_start = current_start - timedelta(days=7)
    else:
        current_start = day_start.replace(day=1)
        previous_start = subtract_months(current_start, 1)
    return TimeRange(from_=previous_start, to=current_start - timedelta(microseconds=1))
