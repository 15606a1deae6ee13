import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from ..db import get_db_dependency
from ..errors import UnknownProvider
from ..providers.base import Provider
from ..providers.registry import get_provider
from ..services.datapoints import DataPointStore
from ..services.tokens import TokenPair, TokenStore

router = APIRouter()


class ConnectionCreate(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    user_id: str = Field(min_length=1)
    access_token: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)
    expires_in: Optional[int] = Field(default=None, gt=0)


def _provider_or_404(name: str) -> Provider:
    try:
        return get_provider(name)
    except UnknownProvider as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get("/{provider_name}/status")
def connection_status(
    provider_name: str,
    user_id: str,
    conn: sqlite3.Connection = Depends(get_db_dependency),
):
    provider = _provider_or_404(provider_name)
    pair = TokenStore(conn).get(user_id, provider.name)
    data_count = DataPointStore(conn, provider.name).count(user_id) if pair else 0
    return {
        "success": True,
        "data": {
            "connected": pair is not None,
            "dataCount": data_count,
            "expiresAt": pair.expires_at.isoformat() if pair and pair.expires_at else None,
        },
    }


@router.put("/{provider_name}")
def connect(
    provider_name: str,
    entry: ConnectionCreate,
    conn: sqlite3.Connection = Depends(get_db_dependency),
):
    provider = _provider_or_404(provider_name)
    expires_at = (
        datetime.now(timezone.utc) + timedelta(seconds=entry.expires_in)
        if entry.expires_in
        else None
    )
    TokenStore(conn).set(
        entry.user_id,
        provider.name,
        TokenPair(entry.access_token, entry.refresh_token, expires_at),
    )
    return {"success": True, "message": f"Connected to {provider.display_name}"}


@router.delete("/{provider_name}")
def disconnect(
    provider_name: str,
    user_id: str,
    conn: sqlite3.Connection = Depends(get_db_dependency),
):
    provider = _provider_or_404(provider_name)
    TokenStore(conn).delete(user_id, provider.name)
    deleted = DataPointStore(conn, provider.name).delete_all(user_id)
    return {
        "success": True,
        "message": f"Successfully disconnected from {provider.display_name}",
        "data": {"deletedDataPoints": deleted},
    }
