import logging
import sqlite3
from datetime import date
from typing import Optional

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..db import get_db_dependency
from ..errors import NotConnected, RefreshError, UnknownProvider
from ..http_client import get_http_client
from ..providers.registry import get_provider
from ..services.sync import DEFAULT_START_YEAR, SyncOptions, SyncOrchestrator, validate_window

logger = logging.getLogger(__name__)

router = APIRouter()


class SyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    user_id: str = Field(alias="userId", min_length=1)
    clear_existing: bool = Field(default=False, alias="clearExisting")
    start_year: int = Field(default=DEFAULT_START_YEAR, alias="startYear", ge=2000, le=2100)
    force_full_sync: bool = Field(default=False, alias="forceFullSync")
    start_date: Optional[date] = Field(default=None, alias="startDate")
    end_date: Optional[date] = Field(default=None, alias="endDate")

    @model_validator(mode="after")
    def check_window(self):
        validate_window(self.start_date, self.end_date, self.force_full_sync)
        return self


def _failure(status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, **extra},
    )


@router.post("/{provider_name}")
async def sync_provider(
    provider_name: str,
    payload: SyncRequest,
    conn: sqlite3.Connection = Depends(get_db_dependency),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    try:
        provider = get_provider(provider_name)
    except UnknownProvider as exc:
        return _failure(404, str(exc))

    orchestrator = SyncOrchestrator(conn, provider, client)
    try:
        report = await orchestrator.sync(
            payload.user_id,
            SyncOptions(
                clear_existing=payload.clear_existing,
                start_year=payload.start_year,
                force_full_sync=payload.force_full_sync,
                start_date=payload.start_date,
                end_date=payload.end_date,
            ),
        )
    except NotConnected:
        return _failure(401, f"Not connected to {provider.display_name}")
    except RefreshError as exc:
        logger.warning("Sync aborted for user %s: %s", payload.user_id, exc)
        return _failure(
            401,
            f"Failed to refresh {provider.display_name} token; please reconnect",
            details=exc.payload,
        )

    body = {"success": True, "data": report.to_dict()}
    if not report.missing_ranges and payload.start_date is None:
        body["message"] = "No new data to sync - all dates are already present"
    return body
