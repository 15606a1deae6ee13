#!/usr/bin/env python3

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import date
from typing import Any

import httpx

from healthsync import db
from healthsync.config import get_settings
from healthsync.errors import NotConnected, RefreshError, UnknownProvider
from healthsync.logging_config import setup_logging
from healthsync.providers.registry import PROVIDER_BUILDERS, get_provider
from healthsync.services.sync import DEFAULT_START_YEAR, SyncOptions, SyncOrchestrator

logger = logging.getLogger("sync_health")


@dataclass
class CliConfig:
    provider: str
    user_id: str
    options: SyncOptions
    timeout_seconds: float = 30.0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Incrementally sync provider data for one user."
    )
    parser.add_argument(
        "--provider", required=True, choices=sorted(PROVIDER_BUILDERS), help="Provider to sync."
    )
    parser.add_argument("--user-id", required=True, help="User to sync.")
    parser.add_argument(
        "--start-year",
        type=int,
        default=DEFAULT_START_YEAR,
        help=f"Earliest year of interest. Defaults to {DEFAULT_START_YEAR}.",
    )
    parser.add_argument(
        "--clear-existing",
        action="store_true",
        help="Delete previously synced data points before syncing.",
    )
    parser.add_argument(
        "--force-full-sync",
        action="store_true",
        help="Clear and refetch the whole window.",
    )
    parser.add_argument(
        "--start-date",
        type=date.fromisoformat,
        help="First day of an explicit window to refetch (YYYY-MM-DD). Needs --end-date.",
    )
    parser.add_argument(
        "--end-date",
        type=date.fromisoformat,
        help="Last day of the explicit window. Days after today are skipped.",
    )
    return parser.parse_args(argv)


def resolve_config(args: argparse.Namespace) -> CliConfig:
    user_id = args.user_id.strip()
    if not user_id:
        raise ValueError("--user-id must not be empty.")
    return CliConfig(
        provider=args.provider,
        user_id=user_id,
        options=SyncOptions(
            clear_existing=args.clear_existing,
            start_year=args.start_year,
            force_full_sync=args.force_full_sync,
            start_date=args.start_date,
            end_date=args.end_date,
        ),
        timeout_seconds=get_settings().http_timeout_seconds,
    )


async def run_sync(
    config: CliConfig,
    *,
    conn: sqlite3.Connection,
    client: httpx.AsyncClient,
) -> dict[str, Any]:
    orchestrator = SyncOrchestrator(conn, get_provider(config.provider), client)
    report = await orchestrator.sync(config.user_id, config.options)
    return {"success": True, "data": report.to_dict()}


async def _main_async(config: CliConfig) -> dict[str, Any]:
    conn = db.get_db()
    try:
        async with httpx.AsyncClient(timeout=config.timeout_seconds) as client:
            return await run_sync(config, conn=conn, client=client)
    finally:
        conn.close()


def main(argv: list[str] | None = None) -> int:
    setup_logging()
    try:
        config = resolve_config(parse_args(argv))
        db.init_db()
        result = asyncio.run(_main_async(config))
        print(json.dumps(result, indent=2))
        return 0
    except (ValueError, UnknownProvider, NotConnected, RefreshError, sqlite3.Error) as exc:
        logger.error("sync_health failed: %s", exc)
        print(json.dumps({"success": False, "error": str(exc)}, indent=2))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
