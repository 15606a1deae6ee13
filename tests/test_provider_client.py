import asyncio
from datetime import date
from zoneinfo import ZoneInfo

import httpx
import pytest

from healthsync.config import get_settings
from healthsync.errors import ProviderError, ProviderUnauthorized, RateLimited
from healthsync.providers.oura import OURA_ENDPOINTS, build_oura_provider
from healthsync.providers.withings import WITHINGS_ENDPOINTS, build_withings_provider
from healthsync.services.provider_client import ProviderClient

OURA = {endpoint.name: endpoint for endpoint in OURA_ENDPOINTS}
UTC = ZoneInfo("UTC")
STOCKHOLM = ZoneInfo("Europe/Stockholm")


def _fetch(provider, endpoint, handler, **kwargs):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await ProviderClient(client, provider).fetch(
                endpoint,
                access_token=kwargs.get("access_token", "token"),
                start=kwargs.get("start", date(2024, 3, 1)),
                end=kwargs.get("end", date(2024, 3, 2)),
                tz=kwargs.get("tz", UTC),
            )

    return asyncio.run(run())


def test_fetch_follows_oura_next_token_pagination():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        assert request.headers["Authorization"] == "Bearer token"
        assert request.url.path == "/v2/usercollection/daily_activity"
        assert request.url.params["start_date"] == "2024-03-01"
        assert request.url.params["end_date"] == "2024-03-02"
        if calls["count"] == 1:
            return httpx.Response(
                200,
                json={"data": [{"day": "2024-03-01", "steps": 9000}], "next_token": "page-2"},
            )
        assert request.url.params["next_token"] == "page-2"
        return httpx.Response(200, json={"data": [{"day": "2024-03-02", "steps": 10000}]})

    records = _fetch(build_oura_provider(get_settings()), OURA["daily_activity"], handler)

    assert records == [
        {"day": "2024-03-01", "steps": 9000},
        {"day": "2024-03-02", "steps": 10000},
    ]


def test_heartrate_uses_datetime_window():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["start_datetime"] == "2024-03-01T00:00:00+00:00"
        assert request.url.params["end_datetime"] == "2024-03-03T00:00:00+00:00"
        return httpx.Response(200, json={"data": []})

    assert _fetch(build_oura_provider(get_settings()), OURA["heartrate"], handler) == []


def test_withings_request_and_offset_pagination():
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        seen.append(params)
        assert request.url.path == "/measure"
        assert params["action"] == "getmeas"
        assert params["meastype"] == "1,5,6,8,76,77,88"
        if "offset" not in params:
            return httpx.Response(
                200,
                json={"status": 0, "body": {"measuregrps": [{"grpid": 1}], "more": 1, "offset": 1}},
            )
        return httpx.Response(
            200, json={"status": 0, "body": {"measuregrps": [{"grpid": 2}], "more": 0}}
        )

    records = _fetch(build_withings_provider(get_settings()), WITHINGS_ENDPOINTS[0], handler)

    assert records == [{"grpid": 1}, {"grpid": 2}]
    assert seen[0]["startdate"] == "1709251200"
    assert seen[0]["enddate"] == str(1709251200 + 2 * 86400 - 1)


def test_fetch_windows_follow_the_user_timezone():
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(dict(request.url.params))
        if request.url.path == "/measure":
            return httpx.Response(200, json={"status": 0, "body": {"measuregrps": []}})
        return httpx.Response(200, json={"data": []})

    _fetch(build_oura_provider(get_settings()), OURA["heartrate"], handler, tz=STOCKHOLM)
    _fetch(build_withings_provider(get_settings()), WITHINGS_ENDPOINTS[0], handler, tz=STOCKHOLM)

    assert seen[0]["start_datetime"] == "2024-03-01T00:00:00+01:00"
    assert seen[0]["end_datetime"] == "2024-03-03T00:00:00+01:00"
    assert seen[1]["startdate"] == str(1709251200 - 3600)
    assert seen[1]["enddate"] == str(1709251200 - 3600 + 2 * 86400 - 1)


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(401, json={"detail": "Unauthorized"}),
        httpx.Response(200, json={"status": 401, "error": "invalid_token"}),
        httpx.Response(400, json={"error": "invalid_token: expired"}),
    ],
)
def test_unauthorized_answers_raise_provider_unauthorized(response):
    with pytest.raises(ProviderUnauthorized):
        _fetch(build_oura_provider(get_settings()), OURA["daily_sleep"], lambda request: response)


def test_rate_limit_reads_retry_after_header():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "12"}, json={"detail": "slow"})

    with pytest.raises(RateLimited) as exc_info:
        _fetch(build_oura_provider(get_settings()), OURA["daily_sleep"], handler)

    assert exc_info.value.retry_after_s == 12.0


def test_withings_601_status_is_rate_limited_without_wait_hint():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": 601, "error": "Too Many Requests"})

    with pytest.raises(RateLimited) as exc_info:
        _fetch(build_withings_provider(get_settings()), WITHINGS_ENDPOINTS[0], handler)

    assert exc_info.value.retry_after_s is None


def test_other_failures_raise_provider_error():
    def server_error(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    def withings_error(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": 503, "error": "Invalid params"})

    def network_down(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProviderError):
        _fetch(build_oura_provider(get_settings()), OURA["daily_sleep"], server_error)
    with pytest.raises(ProviderError):
        _fetch(build_withings_provider(get_settings()), WITHINGS_ENDPOINTS[0], withings_error)
    with pytest.raises(ProviderError):
        _fetch(build_oura_provider(get_settings()), OURA["daily_sleep"], network_down)


@pytest.mark.parametrize(
    "provider_builder, endpoint, payload",
    [
        (build_oura_provider, OURA["daily_sleep"], {"data": {"day": "2024-03-01"}}),
        (build_oura_provider, OURA["daily_sleep"], {"data": "2024-03-01"}),
        (build_withings_provider, WITHINGS_ENDPOINTS[0], {"status": 0, "body": ["unexpected"]}),
        (build_withings_provider, WITHINGS_ENDPOINTS[0], {"status": 0, "body": {"measuregrps": 7}}),
    ],
)
def test_unexpected_page_shapes_raise_provider_error(provider_builder, endpoint, payload):
    with pytest.raises(ProviderError):
        _fetch(
            provider_builder(get_settings()),
            endpoint,
            lambda request: httpx.Response(200, json=payload),
        )
