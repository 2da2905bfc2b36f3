"""Vehicle history endpoint.

Endpoint:
  - ``GET /v1/trade/vehicles/registration/{registration}``
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from motwatch._constants import API_KEY_HEADER, HISTORY_ENDPOINT
from motwatch._transport import Transport
from motwatch.config import MotWatchConfig
from motwatch.exceptions import NotFoundError, RateLimitedError, UpstreamError
from motwatch.models.history import VehicleRecord

_logger = logging.getLogger(__name__)


def build_history_url(config: MotWatchConfig, registration: str) -> str:
    path = HISTORY_ENDPOINT.format(registration=quote(registration, safe=""))
    return f"{config.api_base_url.rstrip('/')}{path}"


def build_history_headers(config: MotWatchConfig, access_token: str) -> dict[str, str]:
    return {
        "authorization": f"Bearer {access_token}",
        API_KEY_HEADER: config.api_key,
    }


async def fetch_vehicle_history(
    config: MotWatchConfig,
    transport: Transport,
    registration: str,
    access_token: str,
) -> VehicleRecord:
    """Fetch the vehicle descriptor and full test list for *registration*.

    Raises
    ------
    NotFoundError
        Upstream has no vehicle with this registration (HTTP 404).
    RateLimitedError
        Upstream throttled the request (HTTP 429).
    UpstreamError
        Any other non-success answer, including 401 (the caller decides
        whether to renew the token) and timeouts.
    """
    url = build_history_url(config, registration)
    try:
        body = await transport.get_json(url, headers=build_history_headers(config, access_token))
    except UpstreamError as exc:
        if exc.status_code == 404:
            raise NotFoundError(
                f"No vehicle found with registration {registration}",
                code=exc.code if exc.code != "MOT_API_ERROR" else "VEHICLE_NOT_FOUND",
            ) from exc
        if exc.status_code == 429:
            raise RateLimitedError(
                str(exc),
                status_code=429,
                code=exc.code,
                endpoint=exc.endpoint,
                request_id=exc.request_id,
            ) from exc
        raise

    record = VehicleRecord.model_validate(body)
    _logger.debug("Fetched %d MOT tests for %s", len(record.mot_tests), registration)
    return record
