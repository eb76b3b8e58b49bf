# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Analytics policy: scoring constants and alert thresholds.

Every weight, conversion factor and threshold used by the calculators and
the alert engine lives here. The defaults reproduce the dashboard's
historical behaviour; a deployment can override any subset from a YAML
file (``ANALYTICS_POLICY_FILE``).

Example YAML override:

    weekly_target_pages: 4
    risk_weights:
      attendance: 0.3
      pace: 0.2
    alert_rules:
      - alert_type: class_overcapacity
        entity_type: class
        metric: capacity_utilization
        direction: above
        bands:
          - {bound: 90, severity: medium}

Nested mappings are merged key by key; lists (``alert_rules``) replace
the default list as a whole.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.core.config import get_settings
from src.domains.analytics.models import MemorizationQuality
from src.domains.analytics.schemas import AlertSeverity, AlertType, EntityType


class PolicyLoadError(Exception):
    """Raised when a policy file cannot be read, parsed or validated."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load analytics policy '{path}': {reason}")


class PolicyModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class RiskWeights(PolicyModel):
    """Weights of the at-risk composite score factors."""

    attendance: float = Field(default=0.25, ge=0)
    pace: float = Field(default=0.25, ge=0)
    accuracy: float = Field(default=0.20, ge=0)
    consistency: float = Field(default=0.15, ge=0)
    stagnation: float = Field(default=0.15, ge=0)


class ThresholdBand(PolicyModel):
    """One severity band of an alert rule."""

    bound: float
    severity: AlertSeverity


class AlertRule(PolicyModel):
    """Threshold rule evaluated against one metric of one entity type.

    ``above`` rules breach when ``value >= bound`` (inclusive); ``below``
    rules breach when ``value < bound`` (exclusive). When several bands
    breach, the most severe one wins.
    """

    alert_type: AlertType
    entity_type: EntityType
    metric: str
    direction: Literal["above", "below"]
    bands: tuple[ThresholdBand, ...] = Field(min_length=1)
    title: str = ""
    action: str = ""

    def breached_band(self, value: float) -> ThresholdBand | None:
        """Return the most severe band breached by value, or None."""
        if self.direction == "above":
            breached = [band for band in self.bands if value >= band.bound]
        else:
            breached = [band for band in self.bands if value < band.bound]
        if not breached:
            return None
        return max(breached, key=lambda band: band.severity.rank)


DEFAULT_ALERT_RULES: tuple[AlertRule, ...] = (
    AlertRule(
        alert_type=AlertType.MISSED_SESSIONS_THRESHOLD,
        entity_type=EntityType.STUDENT,
        metric="attendance_rate",
        direction="below",
        bands=(
            ThresholdBand(bound=80, severity=AlertSeverity.MEDIUM),
            ThresholdBand(bound=70, severity=AlertSeverity.HIGH),
        ),
        title="Low Attendance",
        action="Contact parent/guardian and review attendance pattern.",
    ),
    AlertRule(
        alert_type=AlertType.MISSED_SESSIONS_THRESHOLD,
        entity_type=EntityType.TEACHER,
        metric="missed_sessions",
        direction="above",
        bands=(
            ThresholdBand(bound=3, severity=AlertSeverity.HIGH),
            ThresholdBand(bound=6, severity=AlertSeverity.CRITICAL),
        ),
        title="Missed Sessions Threshold Exceeded",
        action="Review teacher schedule and arrange cover for missed sessions.",
    ),
    AlertRule(
        alert_type=AlertType.MEMORIZATION_PACE_DROP,
        entity_type=EntityType.STUDENT,
        metric="pace_drop_percentage",
        direction="above",
        bands=(
            ThresholdBand(bound=30, severity=AlertSeverity.MEDIUM),
            ThresholdBand(bound=60, severity=AlertSeverity.HIGH),
        ),
        title="Memorization Pace Drop Detected",
        action="Contact student/parent, review progress, check external factors.",
    ),
    AlertRule(
        alert_type=AlertType.HIGH_AT_RISK_CONCENTRATION,
        entity_type=EntityType.TEACHER,
        metric="at_risk_student_count",
        direction="above",
        bands=(
            ThresholdBand(bound=5, severity=AlertSeverity.HIGH),
            ThresholdBand(bound=10, severity=AlertSeverity.CRITICAL),
        ),
        title="High At-Risk Student Concentration",
        action="Review teaching approach, provide support, consider redistributing students.",
    ),
    AlertRule(
        alert_type=AlertType.CLASS_OVERCAPACITY,
        entity_type=EntityType.CLASS,
        metric="capacity_utilization",
        direction="above",
        bands=(
            ThresholdBand(bound=95, severity=AlertSeverity.MEDIUM),
            ThresholdBand(bound=100, severity=AlertSeverity.HIGH),
        ),
        title="Class Near Capacity",
        action="Consider opening a new section or redistributing students.",
    ),
    AlertRule(
        alert_type=AlertType.EXCESSIVE_TEACHER_CANCELLATIONS,
        entity_type=EntityType.TEACHER,
        metric="cancellations_per_week",
        direction="above",
        bands=(
            ThresholdBand(bound=3, severity=AlertSeverity.HIGH),
            ThresholdBand(bound=5, severity=AlertSeverity.CRITICAL),
        ),
        title="Excessive Teacher Cancellations",
        action="Meet with teacher to understand causes and arrange substitutes.",
    ),
)


class AnalyticsPolicy(PolicyModel):
    """All tunable constants of the analytics engine."""

    # Memorization units
    verses_per_page: float = Field(default=10.0, gt=0)
    pages_per_juz: float = Field(default=20.0, gt=0)
    total_juz: int = Field(default=30, gt=0)
    weekly_target_pages: float = Field(default=5.0, ge=0)

    # Engagement windows
    stagnation_days: int = Field(default=7, ge=1)
    expected_practice_days_per_week: float = Field(default=5.0, gt=0, le=7)
    consistency_window_days: int = Field(default=30, ge=1)
    retention_window_days: int = Field(default=30, ge=1)
    active_revision_window_days: int = Field(default=90, ge=1)
    pace_decline_ratio: float = Field(default=0.7, gt=0, le=1)

    # Quality scoring
    quality_scores: dict[MemorizationQuality, float] = Field(
        default_factory=lambda: {
            MemorizationQuality.EXCELLENT: 5,
            MemorizationQuality.GOOD: 4,
            MemorizationQuality.AVERAGE: 3,
            MemorizationQuality.NEEDS_WORK: 2,
            MemorizationQuality.HORRIBLE: 1,
        }
    )
    estimated_mistakes: dict[MemorizationQuality, float] = Field(
        default_factory=lambda: {
            MemorizationQuality.EXCELLENT: 0,
            MemorizationQuality.GOOD: 2,
            MemorizationQuality.AVERAGE: 5,
            MemorizationQuality.NEEDS_WORK: 10,
            MemorizationQuality.HORRIBLE: 15,
        }
    )
    accuracy_penalty_per_mistake: float = Field(default=5.0, ge=0)

    # Risk scoring
    risk_weights: RiskWeights = Field(default_factory=RiskWeights)
    at_risk_threshold: float = Field(default=50.0, ge=0, le=100)
    stagnant_without_progress_at_risk: bool = True
    pace_risk_multiplier: float = Field(default=10.0, gt=0)
    stagnation_risk_horizon_days: float = Field(default=30.0, gt=0)
    drop_off_absence_streak: int = Field(default=5, ge=1)
    drop_off_absence_penalty: float = 20.0
    drop_off_decline_penalty: float = 15.0
    drop_off_consistency_floor: float = 40.0
    drop_off_consistency_penalty: float = 10.0
    burnout_consistency_floor: float = 50.0

    # Teaching
    grading_grace_hours: float = Field(default=24.0, ge=0)
    grading_penalty_per_hour: float = Field(default=2.0, ge=0)
    teacher_available_hours_per_week: float = Field(default=40.0, gt=0)
    default_session_hours: float = Field(default=1.5, gt=0)
    at_risk_concentration_threshold: int = Field(default=5, ge=1)

    alert_rules: tuple[AlertRule, ...] = DEFAULT_ALERT_RULES

    @field_validator("quality_scores", "estimated_mistakes")
    @classmethod
    def _complete_scale(
        cls, value: dict[MemorizationQuality, float]
    ) -> dict[MemorizationQuality, float]:
        missing = set(MemorizationQuality) - set(value)
        if missing:
            names = ", ".join(sorted(q.value for q in missing))
            raise ValueError(f"missing quality levels: {names}")
        return value

    @property
    def expected_practice_days(self) -> int:
        """Practice days expected within the consistency window."""
        weeks = self.consistency_window_days / 7
        return max(1, int(self.expected_practice_days_per_week * weeks))


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_policy(path: Path | None = None) -> AnalyticsPolicy:
    """Load the analytics policy, applying an optional YAML override.

    Args:
        path: YAML file with policy overrides. None returns the defaults.

    Returns:
        Validated AnalyticsPolicy.

    Raises:
        PolicyLoadError: If the file is missing, unparsable, not a mapping
            or produces an invalid policy.
    """
    if path is None:
        return AnalyticsPolicy()

    if not path.is_file():
        raise PolicyLoadError(path, "File does not exist")

    try:
        parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise PolicyLoadError(path, f"Cannot read file: {e}") from e
    except yaml.YAMLError as e:
        raise PolicyLoadError(path, f"Invalid YAML syntax: {e}") from e

    if parsed is None:
        return AnalyticsPolicy()
    if not isinstance(parsed, dict):
        raise PolicyLoadError(path, f"YAML root must be a mapping, got {type(parsed).__name__}")

    defaults = AnalyticsPolicy().model_dump(mode="json")
    try:
        return AnalyticsPolicy.model_validate(_merge(defaults, parsed))
    except ValidationError as e:
        raise PolicyLoadError(path, str(e)) from e


@lru_cache(maxsize=1)
def get_policy() -> AnalyticsPolicy:
    """Get the process-wide policy, honouring ANALYTICS_POLICY_FILE."""
    return load_policy(get_settings().analytics.policy_file)
