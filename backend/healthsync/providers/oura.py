from __future__ import annotations

from collections.abc import Mapping
from datetime import date, timedelta
from typing import Any, Optional
from zoneinfo import ZoneInfo

from ..config import Settings
from ..errors import ProviderError
from .base import (
    Endpoint,
    FieldMapping,
    FlatRecord,
    Provider,
    VariableDefinition,
    local_day_from_timestamp,
    local_midnight,
    parse_day,
    require_mapping,
)

OURA_VARIABLES = (
    VariableDefinition("sleep_score", "Sleep Score", "score", "Sleep"),
    VariableDefinition("total_sleep_duration", "Total Sleep Duration", "seconds", "Sleep"),
    VariableDefinition("rem_sleep_duration", "REM Sleep Duration", "seconds", "Sleep"),
    VariableDefinition("deep_sleep_duration", "Deep Sleep Duration", "seconds", "Sleep"),
    VariableDefinition("light_sleep_duration", "Light Sleep Duration", "seconds", "Sleep"),
    VariableDefinition("efficiency", "Sleep Efficiency", "%", "Sleep"),
    VariableDefinition("sleep_latency", "Sleep Latency", "seconds", "Sleep"),
    VariableDefinition("readiness_score", "Readiness Score", "score", "Recovery"),
    VariableDefinition("temperature_deviation", "Temperature Deviation", "°C", "Recovery"),
    VariableDefinition(
        "temperature_trend_deviation", "Temperature Trend Deviation", "°C", "Recovery"
    ),
    VariableDefinition("hr_lowest", "Lowest Heart Rate", "bpm", "Heart Rate"),
    VariableDefinition("hr_average", "Average Heart Rate", "bpm", "Heart Rate"),
    VariableDefinition("activity_score", "Activity Score", "score", "Activity"),
    VariableDefinition("steps", "Steps", "steps", "Activity"),
    VariableDefinition("calories_active", "Active Calories", "kcal", "Activity"),
    VariableDefinition("calories_total", "Total Calories", "kcal", "Activity"),
)

# Sleep periods other than the main night are ignored.
MAIN_SLEEP_TYPES = {"long_sleep", "sleep"}


def _date_params(start: date, end: date, tz: ZoneInfo) -> dict[str, Any]:
    return {"start_date": start.isoformat(), "end_date": end.isoformat()}


def _datetime_params(start: date, end: date, tz: ZoneInfo) -> dict[str, Any]:
    # Local midnight to local midnight in the user's zone.
    return {
        "start_datetime": local_midnight(start, tz).isoformat(),
        "end_datetime": local_midnight(end + timedelta(days=1), tz).isoformat(),
    }


def flatten_daily(record: Any, tz: ZoneInfo) -> list[FlatRecord]:
    entry = require_mapping(record)
    return [{**entry, "day": parse_day(entry.get("day"))}]


def flatten_sleep_period(record: Any, tz: ZoneInfo) -> list[FlatRecord]:
    entry = require_mapping(record)
    sleep_type = entry.get("type")
    if sleep_type is not None and sleep_type not in MAIN_SLEEP_TYPES:
        return []
    return [{**entry, "day": parse_day(entry.get("day"))}]


def flatten_heart_rate(record: Any, tz: ZoneInfo) -> list[FlatRecord]:
    entry = require_mapping(record)
    return [
        {
            "day": local_day_from_timestamp(entry.get("timestamp"), tz),
            "bpm": entry.get("bpm"),
        }
    ]


def extract_page(
    payload: Mapping[str, Any], params: dict[str, Any]
) -> tuple[list[Any], Optional[dict[str, Any]]]:
    records = payload.get("data") or []
    if not isinstance(records, list):
        raise ProviderError(f"Unexpected Oura data field: {type(records).__name__}", payload=payload)
    next_token = payload.get("next_token")
    if not next_token:
        return records, None
    return records, {**params, "next_token": next_token}


OURA_ENDPOINTS = (
    Endpoint(
        name="daily_sleep",
        path="/v2/usercollection/daily_sleep",
        mappings=(FieldMapping("score", "sleep_score"),),
        flatten=flatten_daily,
        build_params=_date_params,
    ),
    Endpoint(
        name="sleep",
        path="/v2/usercollection/sleep",
        mappings=(
            FieldMapping("total_sleep_duration", "total_sleep_duration"),
            FieldMapping("rem_sleep_duration", "rem_sleep_duration"),
            FieldMapping("deep_sleep_duration", "deep_sleep_duration"),
            FieldMapping("light_sleep_duration", "light_sleep_duration"),
            FieldMapping("efficiency", "efficiency"),
            FieldMapping("latency", "sleep_latency"),
        ),
        flatten=flatten_sleep_period,
        build_params=_date_params,
    ),
    Endpoint(
        name="daily_readiness",
        path="/v2/usercollection/daily_readiness",
        mappings=(
            FieldMapping("score", "readiness_score"),
            FieldMapping("temperature_deviation", "temperature_deviation"),
            FieldMapping("temperature_trend_deviation", "temperature_trend_deviation"),
        ),
        flatten=flatten_daily,
        build_params=_date_params,
    ),
    Endpoint(
        name="daily_activity",
        path="/v2/usercollection/daily_activity",
        mappings=(
            FieldMapping("score", "activity_score"),
            FieldMapping("steps", "steps"),
            FieldMapping("active_calories", "calories_active"),
            FieldMapping("total_calories", "calories_total"),
        ),
        flatten=flatten_daily,
        build_params=_date_params,
    ),
    Endpoint(
        name="heartrate",
        path="/v2/usercollection/heartrate",
        mappings=(
            FieldMapping("bpm", "hr_lowest", "min"),
            FieldMapping("bpm", "hr_average", "mean"),
        ),
        flatten=flatten_heart_rate,
        build_params=_datetime_params,
    ),
)


def build_oura_provider(settings: Settings) -> Provider:
    return Provider(
        name="oura",
        display_name="Oura Ring",
        api_base=settings.oura_api_base,
        token_url=f"{settings.oura_api_base}/oauth/token",
        client_id=settings.oura_client_id,
        client_secret=settings.oura_client_secret,
        variables=OURA_VARIABLES,
        endpoints=OURA_ENDPOINTS,
        extract_page=extract_page,
        request_delay_s=0.2,
    )
