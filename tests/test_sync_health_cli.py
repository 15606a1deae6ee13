import asyncio
import json
from datetime import date

import httpx
import pytest

from healthsync.services.tokens import TokenPair, TokenStore
from scripts.sync_health import main, parse_args, resolve_config, run_sync


def test_parse_args_and_resolve_config():
    config = resolve_config(
        parse_args(
            [
                "--provider",
                "withings",
                "--user-id",
                "  user-1 ",
                "--start-year",
                "2022",
                "--force-full-sync",
            ]
        )
    )

    assert config.provider == "withings"
    assert config.user_id == "user-1"
    assert config.options.start_year == 2022
    assert config.options.force_full_sync is True
    assert config.options.clear_existing is False


def test_resolve_config_rejects_blank_user():
    with pytest.raises(ValueError):
        resolve_config(parse_args(["--provider", "oura", "--user-id", "   "]))


def test_parse_args_rejects_unknown_provider():
    with pytest.raises(SystemExit):
        parse_args(["--provider", "fitbit", "--user-id", "user-1"])


def test_run_sync_returns_report(conn):
    TokenStore(conn).set("user-1", "oura", TokenPair("access", "refresh"))
    start_year = date.today().year
    config = resolve_config(
        parse_args(["--provider", "oura", "--user-id", "user-1", "--start-year", str(start_year)])
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer access"
        if request.url.path.endswith("/daily_activity"):
            return httpx.Response(
                200, json={"data": [{"day": f"{start_year}-01-02", "steps": 4321}]}
            )
        return httpx.Response(200, json={"data": []})

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await run_sync(config, conn=conn, client=client)

    result = asyncio.run(run())

    assert result["success"] is True
    assert result["data"]["totalUpserted"] == 1
    assert result["data"]["syncType"] == "incremental_sync"


def test_main_exits_nonzero_when_not_connected(db_path, capsys):
    exit_code = main(["--provider", "oura", "--user-id", "user-1"])

    assert exit_code == 1
    output = json.loads(capsys.readouterr().out)
    assert output == {"success": False, "error": "Not connected to oura"}


def test_window_flags_map_to_sync_options():
    config = resolve_config(
        parse_args(
            [
                "--provider",
                "oura",
                "--user-id",
                "user-1",
                "--start-date",
                "2024-02-01",
                "--end-date",
                "2024-02-03",
            ]
        )
    )

    assert config.options.start_date == date(2024, 2, 1)
    assert config.options.end_date == date(2024, 2, 3)


def test_window_needs_both_flags(db_path, capsys):
    exit_code = main(["--provider", "oura", "--user-id", "user-1", "--start-date", "2024-02-01"])

    assert exit_code == 1
    assert json.loads(capsys.readouterr().out)["success"] is False
