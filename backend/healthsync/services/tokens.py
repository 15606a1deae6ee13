"""
OAuth token persistence and refresh.

The token pair is the only shared mutable state of a sync. The orchestrator
reads it once, and every refresh is persisted here before the next provider
call uses it.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from ..errors import RefreshError
from ..providers.base import Provider

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN_S = 3600
EXPIRED = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at


def _parse_expires_at(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        # Unreadable expiry: treat the token as expired so it gets refreshed.
        logger.warning("Ignoring malformed token expiry %r", value)
        return EXPIRED
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TokenStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, user_id: str, provider: str) -> Optional[TokenPair]:
        row = self.conn.execute(
            """SELECT access_token, refresh_token, expires_at
               FROM provider_tokens
               WHERE user_id=? AND provider=?""",
            (user_id, provider),
        ).fetchone()
        if not row or not row["access_token"] or not row["refresh_token"]:
            return None
        return TokenPair(
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expires_at=_parse_expires_at(row["expires_at"]),
        )

    def set(self, user_id: str, provider: str, pair: TokenPair) -> None:
        self.conn.execute(
            """INSERT INTO provider_tokens
               (user_id, provider, access_token, refresh_token, expires_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(user_id, provider) DO UPDATE SET
                 access_token=excluded.access_token,
                 refresh_token=excluded.refresh_token,
                 expires_at=excluded.expires_at,
                 updated_at=excluded.updated_at""",
            (
                user_id,
                provider,
                pair.access_token,
                pair.refresh_token,
                pair.expires_at.isoformat() if pair.expires_at else None,
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        self.conn.commit()

    def delete(self, user_id: str, provider: str) -> bool:
        cur = self.conn.execute(
            "DELETE FROM provider_tokens WHERE user_id=? AND provider=?",
            (user_id, provider),
        )
        self.conn.commit()
        return cur.rowcount > 0


class TokenRefresher:
    """Exchange a refresh token for a new pair and persist it."""

    def __init__(self, client: httpx.AsyncClient, provider: Provider, store: TokenStore):
        self.client = client
        self.provider = provider
        self.store = store

    async def refresh(self, user_id: str, refresh_token: str) -> TokenPair:
        data = {
            **self.provider.refresh_params,
            "grant_type": "refresh_token",
            "client_id": self.provider.client_id or "",
            "client_secret": self.provider.client_secret or "",
            "refresh_token": refresh_token,
        }
        try:
            response = await self.client.post(self.provider.token_url, data=data)
        except httpx.HTTPError as exc:
            raise RefreshError(
                f"{self.provider.display_name} token refresh request failed: {exc}"
            ) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {"message": response.text}

        body = payload
        if self.provider.token_body_key and isinstance(payload, dict):
            body = payload.get(self.provider.token_body_key) or {}

        status = payload.get("status") if isinstance(payload, dict) else None
        if (
            response.status_code >= 400
            or not isinstance(body, dict)
            or (isinstance(payload, dict) and payload.get("error"))
            or status not in (None, 0)
            or not body.get("access_token")
        ):
            logger.warning(
                "%s refused token refresh for user %s (HTTP %s)",
                self.provider.display_name,
                user_id,
                response.status_code,
            )
            raise RefreshError(
                f"Failed to refresh {self.provider.display_name} token",
                payload=payload,
            )

        expires_in = body.get("expires_in") or DEFAULT_EXPIRES_IN_S
        pair = TokenPair(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token") or refresh_token,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=int(expires_in)),
        )
        self.store.set(user_id, self.provider.name, pair)
        logger.info("Refreshed %s token for user %s", self.provider.name, user_id)
        return pair
