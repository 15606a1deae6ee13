from __future__ import annotations

from collections.abc import Mapping
from datetime import date, timedelta
from typing import Any, Optional
from zoneinfo import ZoneInfo

from ..config import Settings
from ..errors import ProviderError, TransformError
from .base import (
    Endpoint,
    FieldMapping,
    FlatRecord,
    Provider,
    VariableDefinition,
    local_day_from_timestamp,
    local_midnight,
    require_mapping,
)

# Withings measure type id -> canonical variable
MEASURE_TYPES: dict[int, VariableDefinition] = {
    1: VariableDefinition("weight", "Weight", "kg", "Body Composition"),
    5: VariableDefinition("fat_free_mass", "Fat Free Mass", "kg", "Body Composition"),
    6: VariableDefinition("fat_ratio", "Fat Ratio", "%", "Body Composition"),
    8: VariableDefinition("fat_mass", "Fat Mass", "kg", "Body Composition"),
    76: VariableDefinition("muscle_mass", "Muscle Mass", "kg", "Body Composition"),
    77: VariableDefinition("hydration", "Hydration", "kg", "Body Composition"),
    88: VariableDefinition("bone_mass", "Bone Mass", "kg", "Body Composition"),
}


def _unix_midnight(day: date, tz: ZoneInfo) -> int:
    return int(local_midnight(day, tz).timestamp())


def build_measure_params(start: date, end: date, tz: ZoneInfo) -> dict[str, Any]:
    return {
        "action": "getmeas",
        "meastype": ",".join(str(key) for key in MEASURE_TYPES),
        "category": 1,
        "startdate": _unix_midnight(start, tz),
        "enddate": _unix_midnight(end + timedelta(days=1), tz) - 1,
    }


def flatten_measure_group(record: Any, tz: ZoneInfo) -> list[FlatRecord]:
    group = require_mapping(record)
    measures = group.get("measures")
    if not isinstance(measures, list):
        raise TransformError("Measure group has no measures list")

    flat: FlatRecord = {"day": local_day_from_timestamp(group.get("date"), tz)}
    for measure in measures:
        if not isinstance(measure, Mapping):
            continue
        measure_type = measure.get("type")
        definition = MEASURE_TYPES.get(measure_type) if isinstance(measure_type, int) else None
        value = measure.get("value")
        unit = measure.get("unit")
        if definition is None or isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if not isinstance(unit, int) or isinstance(unit, bool):
            continue
        try:
            flat[definition.slug] = value * (10.0**unit)
        except OverflowError:
            continue
    return [flat]


def extract_page(
    payload: Mapping[str, Any], params: dict[str, Any]
) -> tuple[list[Any], Optional[dict[str, Any]]]:
    body = payload.get("body") or {}
    if not isinstance(body, Mapping):
        raise ProviderError(f"Unexpected Withings body: {type(body).__name__}", payload=payload)
    records = body.get("measuregrps") or []
    if not isinstance(records, list):
        raise ProviderError(
            f"Unexpected Withings measuregrps: {type(records).__name__}", payload=payload
        )
    if body.get("more") and body.get("offset") is not None:
        return records, {**params, "offset": body["offset"]}
    return records, None


WITHINGS_ENDPOINTS = (
    Endpoint(
        name="measure",
        path="/measure",
        mappings=tuple(
            FieldMapping(definition.slug, definition.slug)
            for definition in MEASURE_TYPES.values()
        ),
        flatten=flatten_measure_group,
        build_params=build_measure_params,
    ),
)


def build_withings_provider(settings: Settings) -> Provider:
    return Provider(
        name="withings",
        display_name="Withings",
        api_base=settings.withings_api_base,
        token_url=f"{settings.withings_api_base}/v2/oauth2",
        client_id=settings.withings_client_id,
        client_secret=settings.withings_client_secret,
        variables=tuple(MEASURE_TYPES.values()),
        endpoints=WITHINGS_ENDPOINTS,
        extract_page=extract_page,
        request_delay_s=1.0,
        refresh_params={"action": "requesttoken"},
        token_body_key="body",
    )
