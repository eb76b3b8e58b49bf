# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Madrassah analytics domain.

This package derives student, class, teacher and program metrics from a
time-scoped snapshot of backend records, and raises threshold alerts.

Components:
    context: AnalyticsDataContext and its concurrent loader.
    students / classes / teachers / program: Metric calculators.
    alerts: Stateless threshold alert engine.
    kpis: KPI status and period-over-period comparison.
    policy: Configurable thresholds, weights and alert rules.
    service: AnalyticsService facade with result caching.

Usage:
    from src.domains.analytics import AnalyticsContextLoader, AnalyticsService, get_policy

    loader = AnalyticsContextLoader(store, timeout_seconds=30)
    service = AnalyticsService(loader=loader, policy=get_policy(), store=store)
    result = await service.get_summary()
"""

from src.domains.analytics.alerts import AlertEngine, alert_id
from src.domains.analytics.classes import ClassMetricsCalculator
from src.domains.analytics.context import (
    AnalyticsContextLoader,
    AnalyticsDataContext,
    AnalyticsError,
    AnalyticsFetchError,
    AnalyticsTimeoutError,
    previous_period,
    resolve_time_range,
)
from src.domains.analytics.kpis import (
    DEFAULT_KPIS,
    KpiDefinition,
    KpiStatus,
    TrendData,
    calculate_percentage_change,
    calculate_trend,
    evaluate_kpi_status,
    previous_calendar_period,
    summary_kpi_values,
    summary_statuses,
)
from src.domains.analytics.policy import (
    AlertRule,
    AnalyticsPolicy,
    PolicyLoadError,
    get_policy,
    load_policy,
)
from src.domains.analytics.program import ProgramMetricsCalculator
from src.domains.analytics.schemas import (
    AlertSeverity,
    AlertStatus,
    AlertType,
    AnalyticsAlert,
    AnalyticsSummary,
    ClassMetrics,
    DataQuality,
    EntityType,
    MetricCalculationResult,
    ProgramMetrics,
    StudentMetrics,
    TeacherMetrics,
    TimeRange,
)
from src.domains.analytics.service import (
    AlertNotFoundError,
    AnalyticsService,
    AnalyticsServiceError,
)
from src.domains.analytics.students import StudentMetricsCalculator
from src.domains.analytics.teachers import TeacherMetricsCalculator

__all__ = [
    # Loading
    "AnalyticsContextLoader",
    "AnalyticsDataContext",
    "previous_period",
    "resolve_time_range",
    # Calculators
    "StudentMetricsCalculator",
    "ClassMetricsCalculator",
    "TeacherMetricsCalculator",
    "ProgramMetricsCalculator",
    "AlertEngine",
    "alert_id",
    # KPIs
    "DEFAULT_KPIS",
    "KpiDefinition",
    "KpiStatus",
    "TrendData",
    "calculate_percentage_change",
    "calculate_trend",
    "evaluate_kpi_status",
    "previous_calendar_period",
    "summary_kpi_values",
    "summary_statuses",
    # Policy
    "AlertRule",
    "AnalyticsPolicy",
    "PolicyLoadError",
    "get_policy",
    "load_policy",
    # Schemas
    "AlertSeverity",
    "AlertStatus",
    "AlertType",
    "AnalyticsAlert",
    "AnalyticsSummary",
    "ClassMetrics",
    "DataQuality",
    "EntityType",
    "MetricCalculationResult",
    "ProgramMetrics",
    "StudentMetrics",
    "TeacherMetrics",
    "TimeRange",
    # Service
    "AnalyticsService",
    # Errors
    "AnalyticsError",
    "AnalyticsFetchError",
    "AnalyticsTimeoutError",
    "AnalyticsServiceError",
    "AlertNotFoundError",
]
