"""Completion condition parsing for goal contracts

Conditions arrive from goal creation as free text, e.g.
``["sleep_score >= 80", "consecutive_nights >= 5"]``. Only conditions that
mention ``consecutive_days`` or ``consecutive_nights`` carry a completion
threshold; everything else is descriptive.
"""

import re
from typing import Iterable, List, Optional

STREAK_KEYWORDS = ("consecutive_days", "consecutive_nights")

_INTEGER_TOKEN = re.compile(r"[+-]?\d+")


def _first_integer(condition: str) -> int:
    """First whitespace-separated token that starts with an integer, else 0"""
    for token in condition.split():
        match = _INTEGER_TOKEN.match(token)
        if match:
            return int(match.group())
    return 0


def _threshold(condition: str) -> Optional[int]:
    if any(keyword in condition for keyword in STREAK_KEYWORDS):
        return _first_integer(condition)
    return None


def completion_thresholds(conditions: Iterable[str]) -> List[int]:
    """Required streak length of every streak condition, in declaration order"""
    thresholds = []
    for condition in conditions:
        threshold = _threshold(condition)
        if threshold is not None:
            thresholds.append(threshold)
    return thresholds


def required_days(conditions: Iterable[str]) -> int:
    """
    Minimum consecutive days demanded by a goal.

    Returns the threshold of the first streak condition, or 0 when no
    condition mentions a streak.
    """
    thresholds = completion_thresholds(conditions)
    return thresholds[0] if thresholds else 0


def is_goal_satisfied(conditions: Iterable[str], consecutive_days: int) -> bool:
    """
    Decide completion from the current streak.

    Streak conditions are alternatives: meeting any one of them is enough.
    A goal without streak conditions completes on any non-zero streak. An
    empty streak never completes a goal.
    """
    if consecutive_days <= 0:
        return False

    thresholds = completion_thresholds(conditions)
    if not thresholds:
        return True
    return any(consecutive_days >= threshold for threshold in thresholds)
