"""Custom exception hierarchy for motwatch."""

from __future__ import annotations


class MotWatchError(Exception):
    """Base exception for all motwatch errors."""


class ConfigError(MotWatchError):
    """Invalid or missing configuration."""

    def __init__(self, message: str, *, missing: tuple[str, ...] = ()) -> None:
        self.missing = missing
        super().__init__(message)


class ValidationError(MotWatchError):
    """Malformed caller input (missing/invalid registration, bad body)."""

    def __init__(self, message: str, *, code: str = "VALIDATION_ERROR") -> None:
        self.code = code
        super().__init__(message)


class NotFoundError(MotWatchError):
    """Vehicle absent upstream, or subscription absent locally."""

    def __init__(self, message: str, *, code: str = "NOT_FOUND") -> None:
        self.code = code
        super().__init__(message)


class AuthError(MotWatchError):
    """Credential exchange with the upstream token endpoint failed."""


class UpstreamError(MotWatchError):
    """Upstream API answered with a non-success status (other than 404)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str = "MOT_API_ERROR",
        endpoint: str = "",
        request_id: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.code = code
        self.endpoint = endpoint
        self.request_id = request_id
        super().__init__(message)


class RateLimitedError(UpstreamError):
    """Upstream rejected the request with HTTP 429."""


class UpstreamTimeoutError(UpstreamError):
    """Upstream call exceeded the fixed request timeout.

    Handled identically to :class:`UpstreamError` everywhere.
    """


class PersistenceError(MotWatchError):
    """The backing store is unavailable or a store operation failed."""


class PushDeliveryError(MotWatchError):
    """Push delivery to a single endpoint failed transiently."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class PushGoneError(PushDeliveryError):
    """Push service reported the endpoint as permanently gone (404/410)."""
