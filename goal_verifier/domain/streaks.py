"""Streak evaluation - consecutive qualifying days for a goal's threshold"""

from datetime import timedelta
from typing import Optional, Sequence

from goal_verifier.domain.models import (
    COMPARISON_DIRECTIONS,
    ComparisonDirection,
    HealthDataType,
    HealthRecord,
)


def satisfies(value: Optional[float], target: float, direction: ComparisonDirection) -> bool:
    """Missing measurements never satisfy a target"""
    if value is None:
        return False
    if direction == ComparisonDirection.LTE:
        return value <= target
    return value >= target


def evaluate_streak(
    records: Sequence[HealthRecord],
    data_type: HealthDataType,
    target: float,
    direction: ComparisonDirection | None = None,
) -> int:
    """
    Count consecutive qualifying days ending at the most recent record.

    Requirements:
    - records are sorted most recent first (normalize_health_data output)
    - The walk stops at the first day that is missing the value or fails the
      comparison; earlier passing days beyond a break never count
    - A calendar gap between two records also ends the streak
    - Direction defaults to the per-type table (strain is lower-is-better)

    Example:
        sleep target 80, scores [85, 90, 82, 60, 95] -> 3
    """
    if direction is None:
        direction = COMPARISON_DIRECTIONS[data_type]

    consecutive_days = 0
    previous_date = None

    for record in records:
        if previous_date is not None and record.date != previous_date - timedelta(days=1):
            break
        if not satisfies(record.value_for(data_type), target, direction):
            break
        consecutive_days += 1
        previous_date = record.date

    return consecutive_days
