"""Service configuration for motwatch."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Callable, Mapping
from typing import Any

from motwatch._constants import (
    API_BASE_URL,
    BATCH_DELAY_S,
    BATCH_SIZE,
    PUSH_TTL_S,
    REQUEST_TIMEOUT_S,
    SCHEDULER_INTERVAL_S,
    TOKEN_REFRESH_MARGIN_S,
    TOKEN_RENEWAL_WAIT_S,
)
from motwatch.exceptions import ConfigError

#: Environment variables that must be present before the service starts.
_REQUIRED_ENV: dict[str, str] = {
    "MOT_API_BASE_URL": "api_base_url",
    "MOT_TOKEN_URL": "token_url",
    "MOT_CLIENT_ID": "client_id",
    "MOT_CLIENT_SECRET": "client_secret",
    "MOT_API_KEY": "api_key",
    "MOT_SCOPE": "scope",
    "MOT_DATABASE_URL": "database_url",
    "MOT_VAPID_PRIVATE_KEY": "vapid_private_key",
    "MOT_VAPID_MAILTO": "vapid_mailto",
    "MOT_BATCH_SIZE": "batch_size",
    "MOT_BATCH_DELAY": "batch_delay",
    "MOT_SCHEDULER_INTERVAL": "scheduler_interval",
}

_OPTIONAL_ENV: dict[str, str] = {
    "MOT_BATCH_CONCURRENCY": "batch_concurrency",
    "MOT_REQUEST_TIMEOUT": "request_timeout",
    "MOT_TOKEN_REFRESH_MARGIN": "token_refresh_margin",
    "MOT_TOKEN_RENEWAL_WAIT": "token_renewal_wait",
    "MOT_PUSH_TTL": "push_ttl",
    "MOT_HTTP_HOST": "http_host",
    "MOT_HTTP_PORT": "http_port",
}


@dataclasses.dataclass(frozen=True)
class MotWatchConfig:
    """Service configuration.

    Parameters
    ----------
    token_url : str
        OAuth2 token endpoint used for the client-credentials exchange.
    client_id : str
        OAuth2 client id (HTTP basic-auth user on the token endpoint).
    client_secret : str
        OAuth2 client secret.
    api_key : str
        Value of the ``X-API-Key`` header sent with every history request.
    scope : str
        OAuth2 scope requested with the token.
    database_url : str
        ``postgresql://...`` DSN, or ``memory://`` for the in-process store.
    vapid_private_key : str
        VAPID private key (PEM or base64url) used to sign Web Push requests.
    vapid_mailto : str
        Contact claim (``mailto:...``) sent with Web Push requests.
    api_base_url : str
        Upstream vehicle-history API base URL.
    batch_size : int
        Vehicles per scheduler batch.
    batch_delay : float
        Seconds slept between batches.
    scheduler_interval : float
        Seconds between scheduler runs.
    batch_concurrency : int
        Maximum vehicles checked in parallel inside one batch. ``1`` keeps
        the batch sequential.
    request_timeout : float
        Per-call timeout for upstream requests, in seconds.
    token_refresh_margin : float
        Seconds subtracted from the issued token lifetime.
    token_renewal_wait : float
        Upper bound on waiting for another caller's token renewal.
    push_ttl : int
        Time-to-live handed to the push service, in seconds.
    http_host : str
        Bind address for ``motwatch serve``.
    http_port : int
        Bind port for ``motwatch serve``.
    """

    token_url: str
    client_id: str
    client_secret: str
    api_key: str
    scope: str
    database_url: str = "memory://"
    vapid_private_key: str = ""
    vapid_mailto: str = ""
    api_base_url: str = API_BASE_URL
    batch_size: int = BATCH_SIZE
    batch_delay: float = BATCH_DELAY_S
    scheduler_interval: float = SCHEDULER_INTERVAL_S
    batch_concurrency: int = 1
    request_timeout: float = REQUEST_TIMEOUT_S
    token_refresh_margin: float = TOKEN_REFRESH_MARGIN_S
    token_renewal_wait: float = TOKEN_RENEWAL_WAIT_S
    push_ttl: int = PUSH_TTL_S
    http_host: str = "0.0.0.0"  # noqa: S104
    http_port: int = 8080

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ConfigError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.batch_concurrency < 1:
            raise ConfigError(f"batch_concurrency must be >= 1, got {self.batch_concurrency}")
        if self.batch_delay < 0:
            raise ConfigError(f"batch_delay must be >= 0, got {self.batch_delay}")
        if self.scheduler_interval <= 0:
            raise ConfigError(f"scheduler_interval must be > 0, got {self.scheduler_interval}")
        if self.request_timeout <= 0:
            raise ConfigError(f"request_timeout must be > 0, got {self.request_timeout}")

    @property
    def vapid_claims(self) -> dict[str, str]:
        sub = self.vapid_mailto
        if sub and not sub.startswith("mailto:"):
            sub = f"mailto:{sub}"
        return {"sub": sub}

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides: Any) -> MotWatchConfig:
        """Create configuration from environment variables.

        Every variable in the required set must be present (explicit keyword
        overrides count as present). A :class:`ConfigError` naming all
        missing variables is raised otherwise, so the service fails before
        serving traffic.

        Parameters
        ----------
        env
            Mapping to read instead of ``os.environ``.
        **overrides
            Explicit field values that take precedence over env vars.
        """
        source = os.environ if env is None else env

        missing = tuple(
            key
            for key, field_name in _REQUIRED_ENV.items()
            if field_name not in overrides and not (source.get(key) or "").strip()
        )
        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}",
                missing=missing,
            )

        converters = {f.name: _converter_for(f.type) for f in dataclasses.fields(cls)}
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in (_REQUIRED_ENV | _OPTIONAL_ENV).items():
            raw = source.get(env_key)
            if raw is None or not raw.strip() or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = converters[field_name](raw.strip())
            except ValueError as exc:
                raise ConfigError(f"{env_key} is not a valid value: {raw!r}") from exc

        config_kwargs.update(overrides)
        return cls(**config_kwargs)


def _converter_for(annotation: Any) -> Callable[[str], Any]:
    # Annotations are strings under ``from __future__ import annotations``.
    if annotation in ("int", int):
        return int
    if annotation in ("float", float):
        return float
    return str
