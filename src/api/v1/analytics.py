# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Analytics API endpoints.

This module provides endpoints for madrassah analytics:
- GET /students, /classes, /teachers, /program - Metric lists and rollups
- GET /summary, /kpis - Essential dashboard numbers and their status
- GET /alerts - Threshold alerts computed for a window
- GET /alerts/persisted - Stored alert rows of one day
- POST /alerts/{alert_id}/acknowledge, /alerts/{alert_id}/resolve
- POST /cache/invalidate - Drop cached results

Every metric endpoint accepts optional ``from`` and ``to`` ISO datetimes;
missing bounds default to the last twelve months ending now.

Example:
    GET /api/v1/analytics/students?from=2025-01-01T00:00:00Z&to=2025-02-01T00:00:00Z
"""

import logging
from datetime import date, datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from src.api.dependencies import get_analytics_service
from src.domains.analytics import (
    DEFAULT_KPIS,
    AlertNotFoundError,
    AlertStatus,
    AlertType,
    AnalyticsAlert,
    AnalyticsError,
    AnalyticsFetchError,
    AnalyticsService,
    AnalyticsTimeoutError,
    KpiStatus,
    TimeRange,
    summary_kpi_values,
    summary_statuses,
)
from src.domains.analytics.service import (
    AlertsResult,
    ClassMetricsResult,
    ProgramMetricsResult,
    StudentMetricsResult,
    SummaryResult,
    TeacherMetricsResult,
)

logger = logging.getLogger(__name__)

router = APIRouter()

FromParam = Annotated[
    datetime | None,
    Query(alias="from", description="Window start (ISO datetime, inclusive)"),
]
ToParam = Annotated[
    datetime | None,
    Query(description="Window end (ISO datetime, inclusive)"),
]
Service = Annotated[AnalyticsService, Depends(get_analytics_service)]


# ============================================================================
# Response Models
# ============================================================================


class KpiValue(BaseModel):
    """One dashboard KPI with its traffic-light status."""

    id: str = Field(description="KPI identifier")
    name: str = Field(description="Display name")
    unit: str = Field(description="Display unit")
    value: float | None = Field(description="Current value, null when not applicable")
    status: KpiStatus | None = Field(description="green, yellow or red")
    action: str | None = Field(description="Recommended action when red")


class KpiReportResponse(BaseModel):
    """KPI statuses of the dashboard summary."""

    time_range: TimeRange = Field(description="Window the KPIs were computed for")
    calculated_at: datetime = Field(description="When the summary was calculated")
    kpis: list[KpiValue] = Field(description="KPI values and statuses")


class AlertActionResponse(BaseModel):
    """Result of an alert status transition."""

    alert_id: str = Field(description="Persisted alert ID")
    status: AlertStatus = Field(description="New alert status")


class CacheInvalidationResponse(BaseModel):
    """Result of a cache invalidation."""

    namespace: str | None = Field(description="Invalidated namespace, null for all")
    removed: int = Field(description="Number of cached results removed")


def _http_error(error: AnalyticsError) -> HTTPException:
    """Map an analytics error to its HTTP status."""
    if isinstance(error, AlertNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)
    if isinstance(error, AnalyticsTimeoutError):
        return HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=error.message)
    if isinstance(error, AnalyticsFetchError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=error.message)
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=error.message)


# ============================================================================
# Metric Endpoints
# ============================================================================


@router.get(
    "/students",
    response_model=StudentMetricsResult,
    summary="Get student metrics",
    description="Per-student metrics for every active student.",
)
async def get_student_metrics(
    service: Service,
    from_: FromParam = None,
    to: ToParam = None,
) -> StudentMetricsResult:
    try:
        return await service.get_student_metrics(from_, to)
    except AnalyticsError as e:
        logger.error("Student metrics failed: %s", e)
        raise _http_error(e) from e


@router.get(
    "/classes",
    response_model=ClassMetricsResult,
    summary="Get class metrics",
    description="Per-class metrics for every active class.",
)
async def get_class_metrics(
    service: Service,
    from_: FromParam = None,
    to: ToParam = None,
) -> ClassMetricsResult:
    try:
        return await service.get_class_metrics(from_, to)
    except AnalyticsError as e:
        logger.error("Class metrics failed: %s", e)
        raise _http_error(e) from e


@router.get(
    "/teachers",
    response_model=TeacherMetricsResult,
    summary="Get teacher metrics",
    description="Per-teacher metrics, including session reliability and grading timeliness.",
)
async def get_teacher_metrics(
    service: Service,
    from_: FromParam = None,
    to: ToParam = None,
) -> TeacherMetricsResult:
    try:
        return await service.get_teacher_metrics(from_, to)
    except AnalyticsError as e:
        logger.error("Teacher metrics failed: %s", e)
        raise _http_error(e) from e


@router.get(
    "/program",
    response_model=ProgramMetricsResult,
    summary="Get program metrics",
    description="Madrassah-wide metrics, including retention against the previous period.",
)
async def get_program_metrics(
    service: Service,
    from_: FromParam = None,
    to: ToParam = None,
) -> ProgramMetricsResult:
    try:
        return await service.get_program_metrics(from_, to)
    except AnalyticsError as e:
        logger.error("Program metrics failed: %s", e)
        raise _http_error(e) from e


@router.get(
    "/summary",
    response_model=SummaryResult,
    summary="Get dashboard summary",
    description="The essential dashboard numbers.",
)
async def get_summary(
    service: Service,
    from_: FromParam = None,
    to: ToParam = None,
) -> SummaryResult:
    try:
        return await service.get_summary(from_, to)
    except AnalyticsError as e:
        logger.error("Summary failed: %s", e)
        raise _http_error(e) from e


@router.get(
    "/kpis",
    response_model=KpiReportResponse,
    summary="Get KPI statuses",
    description="Rate the dashboard summary against the KPI thresholds.",
)
async def get_kpis(
    service: Service,
    from_: FromParam = None,
    to: ToParam = None,
) -> KpiReportResponse:
    try:
        result = await service.get_summary(from_, to)
    except AnalyticsError as e:
        logger.error("KPI report failed: %s", e)
        raise _http_error(e) from e

    values = summary_kpi_values(result.data)
    kpis = []
    for kpi_id, kpi_status in summary_statuses(result.data).items():
        definition = DEFAULT_KPIS[kpi_id]
        action = None
        if kpi_status == KpiStatus.RED and definition.red_action:
            action = definition.red_action
        kpis.append(
            KpiValue(
                id=kpi_id,
                name=definition.name,
                unit=definition.unit,
                value=values[kpi_id],
                status=kpi_status,
                action=action,
            )
        )
    return KpiReportResponse(
        time_range=result.time_range,
        calculated_at=result.calculated_at,
        kpis=kpis,
    )


# ============================================================================
# Alert Endpoints
# ============================================================================


@router.get(
    "/alerts",
    response_model=AlertsResult,
    summary="Get alerts",
    description="Threshold alerts for a window, most severe first.",
)
async def get_alerts(
    service: Service,
    from_: FromParam = None,
    to: ToParam = None,
    alert_type: Annotated[AlertType | None, Query(alias="type")] = None,
    alert_status: Annotated[AlertStatus | None, Query(alias="status")] = None,
) -> AlertsResult:
    try:
        return await service.get_alerts(from_, to, alert_type=alert_type, status=alert_status)
    except AnalyticsError as e:
        logger.error("Alert evaluation failed: %s", e)
        raise _http_error(e) from e


@router.get(
    "/alerts/persisted",
    response_model=list[AnalyticsAlert],
    summary="Get persisted alerts",
    description="Stored alert rows of one day (defaults to today).",
)
async def get_persisted_alerts(
    service: Service,
    day: Annotated[date | None, Query(alias="date")] = None,
    alert_status: Annotated[
        Literal["active", "acknowledged", "resolved", "all"],
        Query(alias="status"),
    ] = "active",
) -> list[AnalyticsAlert]:
    status_filter = None if alert_status == "all" else AlertStatus(alert_status)
    try:
        return await service.list_persisted_alerts(day, status_filter)
    except AnalyticsError as e:
        logger.error("Listing persisted alerts failed: %s", e)
        raise _http_error(e) from e


@router.post(
    "/alerts/{alert_id}/acknowledge",
    response_model=AlertActionResponse,
    summary="Acknowledge alert",
)
async def acknowledge_alert(alert_id: str, service: Service) -> AlertActionResponse:
    try:
        await service.acknowledge_alert(alert_id)
    except AnalyticsError as e:
        raise _http_error(e) from e
    return AlertActionResponse(alert_id=alert_id, status=AlertStatus.ACKNOWLEDGED)


@router.post(
    "/alerts/{alert_id}/resolve",
    response_model=AlertActionResponse,
    summary="Resolve alert",
)
async def resolve_alert(alert_id: str, service: Service) -> AlertActionResponse:
    try:
        await service.resolve_alert(alert_id)
    except AnalyticsError as e:
        raise _http_error(e) from e
    return AlertActionResponse(alert_id=alert_id, status=AlertStatus.RESOLVED)


# ============================================================================
# Cache
# ============================================================================


@router.post(
    "/cache/invalidate",
    response_model=CacheInvalidationResponse,
    summary="Invalidate cached results",
    description="Drop cached results of one namespace, or all of them.",
)
async def invalidate_cache(
    service: Service,
    namespace: Annotated[
        Literal["students", "classes", "teachers", "program", "summary", "alerts"] | None,
        Query(description="Result namespace, omit for all"),
    ] = None,
) -> CacheInvalidationResponse:
    removed = await service.invalidate_cache(namespace)
    return CacheInvalidationResponse(namespace=namespace, removed=removed)
