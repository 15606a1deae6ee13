from __future__ import annotations

from ..config import Settings, get_settings
from ..errors import UnknownProvider
from .base import Provider
from .oura import build_oura_provider
from .withings import build_withings_provider

PROVIDER_BUILDERS = {
    "oura": build_oura_provider,
    "withings": build_withings_provider,
}


def get_provider(name: str, settings: Settings | None = None) -> Provider:
    builder = PROVIDER_BUILDERS.get(name)
    if builder is None:
        raise UnknownProvider(name)
    return builder(settings or get_settings())
