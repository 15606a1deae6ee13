from __future__ import annotations

from typing import Any


class SyncError(RuntimeError):
    """Base class for provider sync failures."""


class UnknownProvider(SyncError):
    def __init__(self, name: str):
        super().__init__(f"Unknown provider: {name}")
        self.name = name


class NotConnected(SyncError):
    def __init__(self, user_id: str, provider: str):
        super().__init__(f"Not connected to {provider}")
        self.user_id = user_id
        self.provider = provider


class RefreshError(SyncError):
    """
    Raised when the provider rejects a refresh token.

    Fatal for a sync: nothing else can be fetched until the user re-authorizes.
    """

    def __init__(self, message: str, *, payload: Any = None):
        super().__init__(message)
        self.payload = payload


class ProviderUnauthorized(SyncError):
    """The provider rejected the access token."""


class RateLimited(SyncError):
    def __init__(self, message: str, *, retry_after_s: float | None = None):
        super().__init__(message)
        self.retry_after_s = retry_after_s


class ProviderError(SyncError):
    def __init__(self, message: str, *, status: int | None = None, payload: Any = None):
        super().__init__(message)
        self.status = status
        self.payload = payload


class RangeProcessingError(SyncError):
    def __init__(self, message: str, *, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class TransformError(SyncError):
    """A single provider record could not be mapped to rows."""
