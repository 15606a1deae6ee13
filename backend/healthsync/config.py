from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    database_path: str
    default_timezone: str
    log_level: str
    log_format: str
    http_timeout_seconds: float
    oura_api_base: str
    oura_client_id: str | None
    oura_client_secret: str | None
    withings_api_base: str
    withings_client_id: str | None
    withings_client_secret: str | None


def _optional(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def get_settings() -> Settings:
    # Read on every call so tests and the CLI can adjust the environment.
    return Settings(
        database_path=os.getenv("DATABASE_PATH", "/data/healthsync.db"),
        default_timezone=os.getenv("DEFAULT_TIMEZONE", "Europe/Stockholm"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_format=os.getenv("LOG_FORMAT", "text"),
        http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "30")),
        oura_api_base=os.getenv("OURA_API_BASE", "https://api.ouraring.com").rstrip("/"),
        oura_client_id=_optional("OURA_CLIENT_ID"),
        oura_client_secret=_optional("OURA_CLIENT_SECRET"),
        withings_api_base=os.getenv(
            "WITHINGS_API_BASE", "https://wbsapi.withings.net"
        ).rstrip("/"),
        withings_client_id=_optional("WITHINGS_CLIENT_ID"),
        withings_client_secret=_optional("WITHINGS_CLIENT_SECRET"),
    )
