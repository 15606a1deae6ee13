from collections.abc import AsyncGenerator

import httpx

from .config import get_settings


async def get_http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(timeout=get_settings().http_timeout_seconds) as client:
        yield client
