"""Unified risk criteria: the single threshold function used everywhere.

Both the per-category calculation engine and the automation gate's headline
classification go through classify_risk_level so that a given score and a
given set of thresholds always map to the same level.

Default bands (adjusted score 0-100):
    >= 80   critico
    >= 60   alto
    >= 40   medio
    <  40   baixo
"""

from dataclasses import dataclass
from typing import Any

from psychosocial_automation.core.taxonomy import ACTIONABLE_LEVELS, RiskLevel

DEFAULT_CRITICAL_THRESHOLD: float = 80.0
DEFAULT_HIGH_THRESHOLD: float = 60.0
DEFAULT_MEDIUM_THRESHOLD: float = 40.0
DEFAULT_WEIGHT: float = 1.0

# Days between reviews per level
MONITORING_FREQUENCY_DAYS: dict[RiskLevel, int] = {
    RiskLevel.CRITICO: 7,
    RiskLevel.ALTO: 14,
    RiskLevel.MEDIO: 30,
    RiskLevel.BAIXO: 90,
}

# Exposure level -> plan / job priority
LEVEL_PRIORITY: dict[RiskLevel, str] = {
    RiskLevel.CRITICO: "critical",
    RiskLevel.ALTO: "high",
    RiskLevel.MEDIO: "medium",
    RiskLevel.BAIXO: "low",
}


@dataclass(frozen=True)
class RiskThresholds:
    """Critical/high/medium cut points on the 0-100 adjusted score scale.

    Attributes:
        critical: Scores at or above this value are critico.
        high: Scores at or above this value (and below critical) are alto.
        medium: Scores at or above this value (and below high) are medio.
    """

    critical: float = DEFAULT_CRITICAL_THRESHOLD
    high: float = DEFAULT_HIGH_THRESHOLD
    medium: float = DEFAULT_MEDIUM_THRESHOLD

    @classmethod
    def from_row(cls, row: Any | None) -> "RiskThresholds":
        """Build thresholds from a store row, falling back to defaults.

        Any object exposing critical_threshold / high_threshold /
        medium_threshold attributes is accepted. Missing rows or null columns
        use the documented defaults.
        """
        if row is None:
            return cls()
        return cls(
            critical=_value_or(getattr(row, "critical_threshold", None), DEFAULT_CRITICAL_THRESHOLD),
            high=_value_or(getattr(row, "high_threshold", None), DEFAULT_HIGH_THRESHOLD),
            medium=_value_or(getattr(row, "medium_threshold", None), DEFAULT_MEDIUM_THRESHOLD),
        )


DEFAULT_THRESHOLDS = RiskThresholds()


def classify_risk_level(score: float, thresholds: RiskThresholds = DEFAULT_THRESHOLDS) -> RiskLevel:
    """Map an adjusted 0-100 score to an exposure level.

    Thresholds are checked in descending order and the first match wins, so
    the result is monotonic non-decreasing in score.

    Args:
        score: Adjusted score.
        thresholds: Active cut points.

    Returns:
        The RiskLevel band containing the score.
    """
    if score >= thresholds.critical:
        return RiskLevel.CRITICO
    if score >= thresholds.high:
        return RiskLevel.ALTO
    if score >= thresholds.medium:
        return RiskLevel.MEDIO
    return RiskLevel.BAIXO


def requires_action_plan(risk_level: RiskLevel) -> bool:
    """Generation policy: only alto and critico levels require a plan."""
    return risk_level in ACTIONABLE_LEVELS


def monitoring_frequency_days(risk_level: RiskLevel) -> int:
    """Return the number of days between reviews for a level."""
    return MONITORING_FREQUENCY_DAYS[risk_level]


def priority_for_level(risk_level: RiskLevel) -> str:
    """Return the low/medium/high/critical priority matching a level."""
    return LEVEL_PRIORITY[risk_level]


def _value_or(value: float | None, default: float) -> float:
    return default if value is None else float(value)
