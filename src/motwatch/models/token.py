"""Upstream bearer credential model."""

from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict, Field


class AccessToken(BaseModel):
    """Bearer token obtained through the client-credentials exchange.

    Parameters
    ----------
    access_token : str
        Opaque bearer credential.
    expires_in : float
        Lifetime in seconds as issued by the token endpoint.
    created_at : float
        Monotonic timestamp (``time.monotonic()``) when the token was
        obtained.  Defaults to *now* if not provided.
    ttl : float
        Seconds the token is served from cache; the issued lifetime minus
        the refresh margin.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_default=True,
        str_strip_whitespace=True,
    )

    access_token: str = Field(min_length=1)
    token_type: str = "Bearer"
    expires_in: float
    created_at: float = Field(default_factory=time.monotonic)
    ttl: float

    @property
    def is_expired(self) -> bool:
        """Whether the token has exceeded its cache TTL."""
        return (time.monotonic() - self.created_at) >= self.ttl
