# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Threshold alert engine.

Evaluates the policy's alert rules against computed metrics and emits an
AnalyticsAlert for every breach. The engine is stateless: it does not
remember alerts from earlier passes, and the same metrics always produce
the same alerts (ids included). Lifecycle (acknowledge/resolve) lives on
the persisted alert rows, see AnalyticsService.

Evaluation rules:
- ``above`` bands breach at ``value >= bound``; ``below`` bands at
  ``value < bound``.
- At most one alert per (rule, entity): the most severe breached band.
- A metric that is None cannot be evaluated and is skipped silently.

Example:
    engine = AlertEngine(policy)
    alerts = engine.evaluate(
        students=student_metrics,
        classes=class_metrics,
        teachers=teacher_metrics,
        evaluated_at=context.time_range.to,
    )
"""

import logging
import uuid
from collections.abc import Iterator, Sequence
from datetime import datetime

from pydantic import BaseModel

from src.domains.analytics.policy import AlertRule, AnalyticsPolicy
from src.domains.analytics.schemas import (
    AlertStatus,
    AnalyticsAlert,
    ClassMetrics,
    EntityType,
    ProgramMetrics,
    StudentMetrics,
    TeacherMetrics,
)

logger = logging.getLogger(__name__)

_ALERT_NAMESPACE = uuid.UUID("6f1c0d4e-3a56-4b8e-9d2f-7c1e5a9b0d31")

_ENTITY_SCHEMAS: dict[EntityType, type[BaseModel]] = {
    EntityType.STUDENT: StudentMetrics,
    EntityType.CLASS: ClassMetrics,
    EntityType.TEACHER: TeacherMetrics,
    EntityType.PROGRAM: ProgramMetrics,
}


def alert_id(rule: AlertRule, entity_id: str, evaluated_at: datetime) -> str:
    """Deterministic alert id for a rule breach by one entity."""
    key = ":".join(
        (
            rule.alert_type.value,
            rule.entity_type.value,
            rule.metric,
            entity_id,
            evaluated_at.isoformat(),
        )
    )
    return str(uuid.uuid5(_ALERT_NAMESPACE, key))


class AlertEngine:
    """Stateless rule evaluator over computed metrics."""

    def __init__(self, policy: AnalyticsPolicy) -> None:
        for rule in policy.alert_rules:
            schema = _ENTITY_SCHEMAS[rule.entity_type]
            if rule.metric not in schema.model_fields:
                raise ValueError(
                    f"Alert rule {rule.alert_type.value} references unknown "
                    f"{rule.entity_type.value} metric '{rule.metric}'"
                )
        self.rules = policy.alert_rules
        self.needs_program = any(rule.entity_type == EntityType.PROGRAM for rule in self.rules)

    def evaluate(
        self,
        *,
        students: Sequence[StudentMetrics] = (),
        classes: Sequence[ClassMetrics] = (),
        teachers: Sequence[TeacherMetrics] = (),
        program: ProgramMetrics | None = None,
        evaluated_at: datetime,
    ) -> list[AnalyticsAlert]:
        """Evaluate every rule against the given metrics.

        Args:
            students: Student metrics.
            classes: Class metrics.
            teachers: Teacher metrics.
            program: Program metrics, for program-level rules.
            evaluated_at: Timestamp stamped on the alerts.

        Returns:
            Alerts ordered by severity (most severe first), then type and entity.
        """
        alerts: list[AnalyticsAlert] = []
        for rule in self.rules:
            entities = self._entities(rule.entity_type, students, classes, teachers, program)
            for entity_id, entity_name, metrics in entities:
                alert = self._check(rule, entity_id, entity_name, metrics, evaluated_at)
                if alert is not None:
                    alerts.append(alert)

        alerts.sort(
            key=lambda a: (-a.severity.rank, a.type.value, a.entity_name, a.entity_id)
        )
        logger.debug("Alert evaluation produced %d alerts", len(alerts))
        return alerts

    def _entities(
        self,
        entity_type: EntityType,
        students: Sequence[StudentMetrics],
        classes: Sequence[ClassMetrics],
        teachers: Sequence[TeacherMetrics],
        program: ProgramMetrics | None,
    ) -> Iterator[tuple[str, str, BaseModel]]:
        if entity_type == EntityType.STUDENT:
            yield from ((m.student_id, m.student_name, m) for m in students)
        elif entity_type == EntityType.CLASS:
            yield from ((m.class_id, m.class_name, m) for m in classes)
        elif entity_type == EntityType.TEACHER:
            yield from ((m.teacher_id, m.teacher_name, m) for m in teachers)
        elif program is not None:
            yield ("program", "Program", program)

    def _check(
        self,
        rule: AlertRule,
        entity_id: str,
        entity_name: str,
        metrics: BaseModel,
        evaluated_at: datetime,
    ) -> AnalyticsAlert | None:
        value = getattr(metrics, rule.metric)
        if value is None:
            return None

        value = float(value)
        band = rule.breached_band(value)
        if band is None:
            return None

        comparison = "at or above" if rule.direction == "above" else "below"
        label = rule.metric.replace("_", " ")
        description = f"{entity_name}: {label} is {value:g}, {comparison} the threshold of {band.bound:g}."
        if rule.action:
            description = f"{description} Action: {rule.action}"

        return AnalyticsAlert(
            id=alert_id(rule, entity_id, evaluated_at),
            type=rule.alert_type,
            severity=band.severity,
            status=AlertStatus.ACTIVE,
            title=rule.title or rule.alert_type.value.replace("_", " ").title(),
            description=description,
            entity_id=entity_id,
            entity_name=entity_name,
            entity_type=rule.entity_type,
            threshold=band.bound,
            current_value=value,
            created_at=evaluated_at,
            metadata={"metric": rule.metric, "direction": rule.direction},
        )
