from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date
from typing import Any, Optional
from zoneinfo import ZoneInfo

import httpx

from ..errors import ProviderError, ProviderUnauthorized, RateLimited
from ..providers.base import Endpoint, Provider

logger = logging.getLogger(__name__)

# Withings answers HTTP 200 with these codes in the JSON "status" field.
STATUS_UNAUTHORIZED = 401
STATUS_TOO_MANY_REQUESTS = 601

MAX_PAGES = 500


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def classify_response(response: httpx.Response, payload: Any) -> None:
    """Raise the matching sync error for a non-successful provider answer."""

    status = payload.get("status") if isinstance(payload, Mapping) else None
    error = str(payload.get("error") or "") if isinstance(payload, Mapping) else ""

    if (
        response.status_code == 401
        or status == STATUS_UNAUTHORIZED
        or "invalid_token" in error
    ):
        raise ProviderUnauthorized(f"Access token rejected (HTTP {response.status_code})")

    if (
        response.status_code == 429
        or status == STATUS_TOO_MANY_REQUESTS
        or "Too Many Requests" in error
    ):
        raise RateLimited(
            f"Rate limited (HTTP {response.status_code}, status {status})",
            retry_after_s=_retry_after_seconds(response),
        )

    if response.status_code >= 400:
        raise ProviderError(
            f"Provider request failed with HTTP {response.status_code}",
            status=response.status_code,
            payload=payload,
        )

    if not isinstance(payload, Mapping):
        raise ProviderError("Provider returned a non-object payload", payload=payload)

    if error or status not in (None, 0, 200):
        raise ProviderError(
            f"Provider returned error status {status}: {error}".rstrip(": "),
            status=status if isinstance(status, int) else None,
            payload=payload,
        )


class ProviderClient:
    def __init__(self, client: httpx.AsyncClient, provider: Provider):
        self.client = client
        self.provider = provider

    async def fetch(
        self,
        endpoint: Endpoint,
        *,
        access_token: str,
        start: date,
        end: date,
        tz: ZoneInfo,
    ) -> list[Any]:
        records: list[Any] = []
        params: Optional[dict[str, Any]] = endpoint.build_params(start, end, tz)
        pages = 0

        while params is not None:
            try:
                response = await self.client.get(
                    self.provider.url_for(endpoint),
                    params=params,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
            except httpx.HTTPError as exc:
                raise ProviderError(f"{endpoint.name} request failed: {exc}") from exc

            try:
                payload = response.json()
            except ValueError:
                payload = {"message": response.text}

            classify_response(response, payload)
            page_records, params = self.provider.extract_page(payload, params)
            records.extend(page_records)

            pages += 1
            if pages >= MAX_PAGES:
                logger.warning(
                    "Stopping %s pagination after %d pages for %s..%s",
                    endpoint.name,
                    pages,
                    start,
                    end,
                )
                break

        logger.debug("Fetched %d %s records for %s..%s", len(records), endpoint.name, start, end)
        return records
