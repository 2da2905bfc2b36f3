"""High-level async client for the upstream MOT history API."""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

from motwatch._api.history import fetch_vehicle_history
from motwatch._api.oauth import exchange_client_credentials
from motwatch._transport import HttpTransport, Transport
from motwatch.config import MotWatchConfig
from motwatch.exceptions import MotWatchError, UpstreamError
from motwatch.models.history import MotTest, VehicleRecord, latest_test
from motwatch.models.token import AccessToken
from motwatch.token_cache import TokenCache

_logger = logging.getLogger(__name__)


class MotHistoryClient:
    """Async client for the MOT history API.

    Usage::

        async with MotHistoryClient(config) as client:
            record = await client.fetch_history("AB12CDE")
            test = client.latest_test(record)

    A :class:`TokenCache` may be injected so that several clients in one
    process share a single bearer credential.
    """

    def __init__(
        self,
        config: MotWatchConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
        token_cache: TokenCache | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._transport: Transport | None = transport
        self._external_transport = transport is not None
        self._token_cache = token_cache or TokenCache(self._exchange, renewal_wait=config.token_renewal_wait)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> MotHistoryClient:
        if self._transport is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = HttpTransport(self._http_session, timeout=self._config.request_timeout)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        if not self._external_transport:
            self._transport = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @property
    def token_cache(self) -> TokenCache:
        return self._token_cache

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise MotWatchError("Client not initialized. Use 'async with MotHistoryClient(...) as client:'")
        return self._transport

    async def _exchange(self) -> AccessToken:
        return await exchange_client_credentials(self._config, self._require_transport())

    # ------------------------------------------------------------------
    # Read endpoints
    # ------------------------------------------------------------------

    async def fetch_history(self, registration: str) -> VehicleRecord:
        """Fetch the test history for an already-normalized registration.

        A 401 answer drops the cached token and retries once with a freshly
        renewed one; any other failure propagates.
        """
        transport = self._require_transport()
        token = await self._token_cache.get_token()
        try:
            return await fetch_vehicle_history(self._config, transport, registration, token)
        except UpstreamError as exc:
            if exc.status_code != 401:
                raise
            _logger.info("Bearer token rejected for %s, renewing", registration)
            self._token_cache.invalidate()
            token = await self._token_cache.get_token()
            return await fetch_vehicle_history(self._config, transport, registration, token)

    @staticmethod
    def latest_test(record: VehicleRecord) -> MotTest | None:
        return latest_test(record)
