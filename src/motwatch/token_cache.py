"""Single-flight cache for the upstream bearer token."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from motwatch._constants import TOKEN_RENEWAL_WAIT_S
from motwatch.exceptions import AuthError
from motwatch.models.token import AccessToken

_logger = logging.getLogger(__name__)


class TokenCache:
    """Holds one cached bearer token and renews it on expiry.

    Construct once per process and share it between every client that talks
    to the upstream API. Only one renewal runs at a time: callers that find a
    renewal in flight wait for it (at most *renewal_wait* seconds) and reuse
    its result instead of issuing their own credential exchange.

    Parameters
    ----------
    renew
        Coroutine factory performing the credential exchange. Must raise
        :class:`AuthError` on failure.
    renewal_wait
        Upper bound on waiting for someone else's renewal.
    """

    def __init__(
        self,
        renew: Callable[[], Awaitable[AccessToken]],
        *,
        renewal_wait: float = TOKEN_RENEWAL_WAIT_S,
    ) -> None:
        self._renew = renew
        self._renewal_wait = renewal_wait
        self._token: AccessToken | None = None
        self._lock = asyncio.Lock()
        # Bumped after every renewal attempt, successful or not.
        self._attempts = 0

    @property
    def token(self) -> AccessToken | None:
        return self._token

    def _valid_token(self) -> str | None:
        token = self._token
        if token is not None and not token.is_expired:
            return token.access_token
        return None

    async def get_token(self) -> str:
        """Return a valid bearer token, renewing it if necessary."""
        cached = self._valid_token()
        if cached is not None:
            return cached

        attempts_seen = self._attempts
        if self._lock.locked():
            _logger.debug("Token renewal in progress, waiting")
        try:
            await asyncio.wait_for(self._lock.acquire(), self._renewal_wait)
        except TimeoutError as exc:
            raise AuthError(f"Token renewal did not complete within {self._renewal_wait}s") from exc

        try:
            cached = self._valid_token()
            if cached is not None:
                return cached
            if self._attempts != attempts_seen:
                # The renewal we waited on failed; do not pile another one on top.
                raise AuthError("Token renewal failed")

            _logger.info("Requesting new access token")
            try:
                token = await self._renew()
            finally:
                self._attempts += 1
            self._token = token
            return token.access_token
        finally:
            self._lock.release()

    def invalidate(self) -> None:
        """Drop the cached token (next call will renew)."""
        self._token = None
