from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Literal, Optional
from zoneinfo import ZoneInfo

from ..errors import TransformError
from ..services.retry import RetryPolicy

Aggregate = Literal["last", "min", "mean"]

# A flattened provider record: {"day": date, <field>: number, ...}
FlatRecord = dict[str, Any]
RecordFlattener = Callable[[Mapping[str, Any], ZoneInfo], list[FlatRecord]]
# Request params for the inclusive local-day range [start, end] in the user's zone.
ParamsBuilder = Callable[[date, date, ZoneInfo], dict[str, Any]]
# Returns the page's records and the params for the next page, if any.
PageExtractor = Callable[[Mapping[str, Any], dict[str, Any]], tuple[list[Any], Optional[dict[str, Any]]]]


@dataclass(frozen=True)
class VariableDefinition:
    slug: str
    label: str
    unit: str
    category: str


@dataclass(frozen=True)
class FieldMapping:
    field: str
    variable: str
    aggregate: Aggregate = "last"


@dataclass(frozen=True)
class Endpoint:
    name: str
    path: str
    mappings: tuple[FieldMapping, ...]
    flatten: RecordFlattener
    build_params: ParamsBuilder


@dataclass(frozen=True)
class Provider:
    name: str
    display_name: str
    api_base: str
    token_url: str
    client_id: str | None
    client_secret: str | None
    variables: tuple[VariableDefinition, ...]
    endpoints: tuple[Endpoint, ...]
    extract_page: PageExtractor
    request_delay_s: float = 0.2
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    refresh_params: Mapping[str, str] = field(default_factory=dict)
    # Withings wraps every answer, the token endpoint included, in "body".
    token_body_key: str | None = None

    def url_for(self, endpoint: Endpoint) -> str:
        return f"{self.api_base}{endpoint.path}"


def parse_day(value: Any) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        raise TransformError(f"Record has no usable day: {value!r}")
    try:
        return date.fromisoformat(value[:10])
    except ValueError as exc:
        raise TransformError(f"Unparseable day: {value!r}") from exc


def local_midnight(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def local_day_from_timestamp(value: Any, tz: ZoneInfo) -> date:
    """Calendar day of an ISO timestamp or unix epoch in the user's zone."""

    if isinstance(value, bool):
        raise TransformError(f"Unparseable timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz).date()
    if not isinstance(value, str) or not value:
        raise TransformError(f"Unparseable timestamp: {value!r}")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise TransformError(f"Unparseable timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        return parsed.date()
    return parsed.astimezone(tz).date()


def require_mapping(record: Any) -> Mapping[str, Any]:
    if not isinstance(record, Mapping):
        raise TransformError(f"Expected an object record, got {type(record).__name__}")
    return record
