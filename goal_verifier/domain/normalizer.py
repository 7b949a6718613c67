"""Vendor payload normalization into daily HealthRecords"""

import logging
import math
from collections.abc import Mapping
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple

from goal_verifier.domain.models import HealthRecord
from goal_verifier.utils.date_utils import parse_calendar_date

# Candidate paths per HealthRecord field, nested vendor shape first, flat shape second
FIELD_PATHS: Dict[str, Tuple[Tuple[str, ...], ...]] = {
    "sleep_score": (("sleep", "score"), ("sleep_score",)),
    "steps": (("workout", "steps"), ("steps",)),
    "heart_rate": (("workout", "heart_rate", "average"), ("heart_rate",)),
    "recovery_score": (("recovery", "score"), ("recovery_score",)),
    "strain_score": (("workout", "strain"), ("strain_score",)),
    "weight": (("body", "weight"), ("weight",)),
}

DATE_KEYS = ("date", "created_at")


def _lookup(entry: Mapping, path: Tuple[str, ...]) -> Any:
    value: Any = entry
    for key in path:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def _as_number(value: Any) -> Optional[float]:
    # bool is an int subclass; a flag is not a measurement
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return None
    # NaN and infinities ("inf", "1e400", bare JSON NaN) are not measurements
    if isinstance(value, float) and math.isfinite(value):
        return value
    return None


def _field_value(entry: Mapping, field_name: str) -> Optional[float]:
    for path in FIELD_PATHS[field_name]:
        value = _as_number(_lookup(entry, path))
        if value is not None:
            return value
    return None


def _entry_date(entry: Mapping) -> Optional[date]:
    for key in DATE_KEYS:
        parsed = parse_calendar_date(entry.get(key))
        if parsed is not None:
            return parsed
    return None


def normalize_health_data(raw_records: Iterable[Any]) -> List[HealthRecord]:
    """
    Convert raw vendor day payloads into HealthRecords, most recent first.

    Requirements:
    - Accept both nested (sleep.score) and flat (sleep_score) field naming
    - Drop entries without a parseable date; a bad entry never fails the batch
    - Absent or non-numeric values stay None ("not measured"), never zero
    - One record per calendar day; duplicate days are merged, first value wins
    """
    by_date: Dict[date, Dict[str, Any]] = {}
    skipped = 0

    for entry in raw_records or []:
        if not isinstance(entry, Mapping):
            skipped += 1
            continue

        day = _entry_date(entry)
        if day is None:
            skipped += 1
            continue

        merged = by_date.setdefault(day, {})
        for field_name in FIELD_PATHS:
            if merged.get(field_name) is None:
                merged[field_name] = _field_value(entry, field_name)

    if skipped:
        logging.debug(f"Normalizer dropped {skipped} unparseable vendor entries")

    records = []
    for day, values in by_date.items():
        steps = values.get("steps")
        records.append(
            HealthRecord(
                date=day,
                sleep_score=values.get("sleep_score"),
                steps=int(steps) if steps is not None else None,
                recovery_score=values.get("recovery_score"),
                strain_score=values.get("strain_score"),
                heart_rate=values.get("heart_rate"),
                weight=values.get("weight"),
            )
        )

    return sorted(records, key=lambda r: r.date, reverse=True)
