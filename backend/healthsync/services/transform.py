"""
Row transformation from flattened provider records to data point rows.

Each endpoint declares `FieldMapping(field, variable, aggregate)` entries. Samples
are grouped by (day, variable) and reduced with the mapping's aggregate, so the
output holds at most one row per (user_id, date, variable_id). For "last", the
last record in provider response order wins. When a date range is given, rows
for days outside it are not emitted.
"""
from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Iterable, Mapping
from datetime import date, datetime, time, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from ..errors import TransformError
from ..providers.base import Aggregate, Endpoint, FieldMapping
from .gaps import DateRange

logger = logging.getLogger(__name__)


def numeric_value(value: Any) -> float | int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def local_midnight_utc(day: date, tz: ZoneInfo) -> str:
    local_midnight = datetime.combine(day, time.min, tzinfo=tz)
    return local_midnight.astimezone(timezone.utc).isoformat()


def _reduce(aggregate: Aggregate, samples: list[float | int]) -> float | int:
    if aggregate == "min":
        return min(samples)
    if aggregate == "mean":
        return round(sum(samples) / len(samples))
    return samples[-1]


def transform_records(
    records: Iterable[Any],
    endpoint: Endpoint,
    *,
    user_id: str,
    variable_ids: Mapping[str, str],
    tz: ZoneInfo,
    date_range: Optional[DateRange] = None,
) -> list[dict[str, Any]]:
    samples: dict[tuple[date, str], list[float | int]] = {}
    mapping_by_variable: dict[str, FieldMapping] = {}
    skipped = 0
    outside = 0

    for record in records:
        try:
            flat_records = endpoint.flatten(record, tz)
        except TransformError as exc:
            skipped += 1
            logger.debug("Skipping %s record: %s", endpoint.name, exc)
            continue

        for flat in flat_records:
            day = flat["day"]
            if date_range is not None and not date_range.start <= day <= date_range.end:
                outside += 1
                continue
            for mapping in endpoint.mappings:
                value = numeric_value(flat.get(mapping.field))
                if value is None or mapping.variable not in variable_ids:
                    continue
                mapping_by_variable[mapping.variable] = mapping
                samples.setdefault((day, mapping.variable), []).append(value)

    if skipped:
        logger.info("Dropped %d malformed %s records", skipped, endpoint.name)
    if outside:
        logger.debug("Ignored %d %s samples outside the requested range", outside, endpoint.name)

    rows: list[dict[str, Any]] = []
    for (day, variable), values in sorted(samples.items()):
        mapping = mapping_by_variable[variable]
        rows.append(
            {
                "id": str(uuid.uuid4()),
                "user_id": user_id,
                "date": day.isoformat(),
                "variable_id": variable_ids[variable],
                "value": _reduce(mapping.aggregate, values),
                "created_at": local_midnight_utc(day, tz),
            }
        )
    return rows


def merge_rows(row_groups: Iterable[list[dict[str, Any]]]) -> list[dict[str, Any]]:
    """Collapse rows from several endpoints; later groups win on the same key."""

    merged: dict[tuple[str, str, str], dict[str, Any]] = {}
    for rows in row_groups:
        for row in rows:
            merged[(row["user_id"], row["date"], row["variable_id"])] = row
    return list(merged.values())
