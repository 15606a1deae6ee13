"""
Incremental provider sync.

One invocation syncs one user against one provider:

1. load the token pair (NotConnected when absent),
2. make sure the provider's canonical variables exist,
3. optionally clear previously synced data points,
4. compute the missing date ranges from the dates already stored,
5. fetch, transform and upsert each range in chronological order.

A range that fails is counted and skipped so the next sync only has to fetch
what is still missing. A rejected refresh token aborts the whole sync.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Literal, Optional
from zoneinfo import ZoneInfo

import httpx

from ..errors import (
    NotConnected,
    ProviderUnauthorized,
    RangeProcessingError,
    RateLimited,
    RefreshError,
    SyncError,
)
from ..providers.base import Endpoint, Provider
from .datapoints import DataPointStore
from .gaps import DateRange, find_missing_ranges, requested_window
from .profiles import get_user_timezone
from .provider_client import ProviderClient
from .retry import with_retry
from .tokens import TokenPair, TokenRefresher, TokenStore
from .transform import merge_rows, transform_records
from .variables import ensure_variables

logger = logging.getLogger(__name__)

DEFAULT_START_YEAR = 2020


def validate_window(
    start_date: Optional[date], end_date: Optional[date], force_full_sync: bool
) -> None:
    if (start_date is None) != (end_date is None):
        raise ValueError("start_date and end_date must be given together")
    if start_date is None:
        return
    if start_date > end_date:
        raise ValueError("start_date must not be after end_date")
    if force_full_sync:
        raise ValueError("An explicit date window cannot be combined with a full sync")


@dataclass(frozen=True)
class SyncOptions:
    clear_existing: bool = False
    start_year: int = DEFAULT_START_YEAR
    force_full_sync: bool = False
    # Both set: sync exactly this window instead of the detected gaps.
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    def __post_init__(self):
        validate_window(self.start_date, self.end_date, self.force_full_sync)


@dataclass
class RangeResult:
    date_range: DateRange
    status: Literal["processed", "failed"]
    upserted: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.date_range.to_dict(),
            "status": self.status,
            "upserted": self.upserted,
            "error": self.error,
        }


@dataclass
class SyncReport:
    provider: str
    sync_type: str
    existing_dates_count: int
    missing_ranges: list[DateRange]
    total_upserted: int = 0
    ranges_processed: int = 0
    ranges_failed: int = 0
    results: list[RangeResult] = field(default_factory=list)

    @property
    def total_ranges(self) -> int:
        return len(self.missing_ranges)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "syncType": self.sync_type,
            "totalUpserted": self.total_upserted,
            "dateRangesProcessed": self.ranges_processed,
            "dateRangesFailed": self.ranges_failed,
            "totalDateRanges": self.total_ranges,
            "existingDatesCount": self.existing_dates_count,
            "missingRanges": [date_range.to_dict() for date_range in self.missing_ranges],
            "ranges": [result.to_dict() for result in self.results],
        }


@dataclass
class _UserSync:
    user_id: str
    pair: TokenPair
    variable_ids: dict[str, str]
    tz: ZoneInfo


class SyncOrchestrator:
    def __init__(
        self,
        conn: sqlite3.Connection,
        provider: Provider,
        client: httpx.AsyncClient,
        *,
        token_store: Optional[TokenStore] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        today: Optional[date] = None,
    ):
        self.conn = conn
        self.provider = provider
        self.tokens = token_store or TokenStore(conn)
        self.refresher = TokenRefresher(client, provider, self.tokens)
        self.provider_client = ProviderClient(client, provider)
        self.data_points = DataPointStore(conn, provider.name)
        self.sleep = sleep
        self.today = today

    async def sync(self, user_id: str, options: Optional[SyncOptions] = None) -> SyncReport:
        options = options or SyncOptions()
        provider = self.provider.name

        pair = self.tokens.get(user_id, provider)
        if pair is None:
            raise NotConnected(user_id, provider)

        logger.info(
            "Starting %s %s sync for user %s",
            "window" if options.start_date is not None else "full" if options.force_full_sync else "incremental",
            provider,
            user_id,
        )

        variable_ids = ensure_variables(self.conn, provider=self.provider, user_id=user_id)

        cleared = options.clear_existing or options.force_full_sync
        if cleared:
            self.data_points.delete_all(user_id)
        existing_dates = set() if cleared else self.data_points.existing_dates(user_id)

        if options.start_date is not None:
            missing_ranges = requested_window(options.start_date, options.end_date, today=self.today)
            sync_type = "window_sync"
        else:
            missing_ranges = find_missing_ranges(
                options.start_year,
                existing_dates,
                force_full_sync=options.force_full_sync,
                today=self.today,
            )
            sync_type = "full_sync" if options.force_full_sync else "incremental_sync"
        report = SyncReport(
            provider=provider,
            sync_type=sync_type,
            existing_dates_count=len(existing_dates),
            missing_ranges=missing_ranges,
        )
        if not missing_ranges:
            logger.info("No new %s data to sync for user %s", provider, user_id)
            return report

        for date_range in missing_ranges:
            logger.info(
                "Missing %s range %s: %s to %s (%d days)",
                provider,
                date_range.reason,
                date_range.start,
                date_range.end,
                date_range.days,
            )

        session = _UserSync(
            user_id=user_id,
            pair=pair,
            variable_ids=variable_ids,
            tz=get_user_timezone(self.conn, user_id),
        )
        if session.pair.is_expired():
            logger.info("Stored %s token expired, refreshing before sync", provider)
            session.pair = await self.refresher.refresh(user_id, session.pair.refresh_token)

        for index, date_range in enumerate(missing_ranges):
            if index:
                await self.sleep(self.provider.request_delay_s)
            logger.info(
                "Processing %s range %d/%d: %s to %s",
                date_range.reason,
                index + 1,
                len(missing_ranges),
                date_range.start,
                date_range.end,
            )
            try:
                upserted = await self._process_range(session, date_range)
            except (NotConnected, RefreshError):
                raise
            except (SyncError, httpx.HTTPError, sqlite3.Error, ValueError) as exc:
                logger.error(
                    "Error processing %s range %s to %s: %s",
                    provider,
                    date_range.start,
                    date_range.end,
                    exc,
                )
                report.ranges_failed += 1
                report.results.append(RangeResult(date_range, "failed", error=str(exc)))
                continue

            report.total_upserted += upserted
            report.ranges_processed += 1
            report.results.append(RangeResult(date_range, "processed", upserted=upserted))

        logger.info(
            "Finished %s sync for user %s: %d upserted, %d/%d ranges failed",
            provider,
            user_id,
            report.total_upserted,
            report.ranges_failed,
            report.total_ranges,
        )
        return report

    async def _process_range(self, session: _UserSync, date_range: DateRange) -> int:
        records_by_endpoint = await self._fetch_range(session, date_range)
        rows = merge_rows(
            transform_records(
                records,
                endpoint,
                user_id=session.user_id,
                variable_ids=session.variable_ids,
                tz=session.tz,
                date_range=date_range,
            )
            for endpoint, records in records_by_endpoint
        )
        upserted = self.data_points.upsert(rows)
        logger.info(
            "Upserted %d %s rows for %s to %s",
            upserted,
            self.provider.name,
            date_range.start,
            date_range.end,
        )
        return upserted

    async def _fetch_range(
        self, session: _UserSync, date_range: DateRange
    ) -> list[tuple[Endpoint, list[Any]]]:
        async def attempt() -> list[tuple[Endpoint, list[Any]]]:
            return await self._fetch_endpoints(session, date_range)

        policy = self.provider.retry_policy
        try:
            return await with_retry(attempt, policy, sleep=self.sleep)
        except ProviderUnauthorized:
            logger.info(
                "%s token rejected for user %s, refreshing",
                self.provider.display_name,
                session.user_id,
            )

        session.pair = await self.refresher.refresh(session.user_id, session.pair.refresh_token)
        try:
            return await with_retry(attempt, policy, sleep=self.sleep)
        except ProviderUnauthorized as exc:
            raise RangeProcessingError(
                "Access token rejected again after refresh", cause=exc
            ) from exc

    async def _fetch_endpoints(
        self, session: _UserSync, date_range: DateRange
    ) -> list[tuple[Endpoint, list[Any]]]:
        endpoints = self.provider.endpoints
        results = await asyncio.gather(
            *(
                self.provider_client.fetch(
                    endpoint,
                    access_token=session.pair.access_token,
                    start=date_range.start,
                    end=date_range.end,
                    tz=session.tz,
                )
                for endpoint in endpoints
            ),
            return_exceptions=True,
        )

        errors = [result for result in results if isinstance(result, BaseException)]
        for error in errors:
            if not isinstance(error, Exception):
                raise error
        for error in errors:
            if isinstance(error, ProviderUnauthorized):
                raise error
        rate_limits = [error for error in errors if isinstance(error, RateLimited)]
        if rate_limits:
            raise max(rate_limits, key=lambda error: error.retry_after_s or 0.0)
        if errors:
            raise errors[0]

        return list(zip(endpoints, results))
