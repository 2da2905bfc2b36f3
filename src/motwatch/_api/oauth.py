"""OAuth2 client-credentials exchange.

Endpoint:
  - ``config.token_url`` (form-encoded POST, HTTP basic auth)
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from motwatch._constants import DEFAULT_TOKEN_LIFETIME_S
from motwatch._redact import redact_for_log
from motwatch._transport import Transport
from motwatch.config import MotWatchConfig
from motwatch.exceptions import AuthError, UpstreamError
from motwatch.models.token import AccessToken

_logger = logging.getLogger(__name__)


def build_token_request(config: MotWatchConfig) -> dict[str, str]:
    """Build the form body for the client-credentials grant."""
    return {"grant_type": "client_credentials", "scope": config.scope}


def parse_token_response(body: dict[str, Any], *, refresh_margin: float) -> AccessToken:
    """Parse ``{access_token, expires_in}`` into a cacheable token.

    The cache TTL is the issued lifetime minus *refresh_margin*, never below
    zero, so a token is renewed before upstream starts rejecting it.

    Raises
    ------
    AuthError
        If the body carries no usable ``access_token``.
    """
    try:
        expires_in = float(body.get("expires_in") or DEFAULT_TOKEN_LIFETIME_S)
    except (TypeError, ValueError):
        expires_in = DEFAULT_TOKEN_LIFETIME_S
    try:
        return AccessToken(
            access_token=str(body.get("access_token") or ""),
            token_type=str(body.get("token_type") or "Bearer"),
            expires_in=expires_in,
            ttl=max(0.0, expires_in - refresh_margin),
        )
    except PydanticValidationError as exc:
        _logger.debug("Token response rejected: %s", redact_for_log(body))
        raise AuthError("Token endpoint returned no access_token") from exc


async def exchange_client_credentials(config: MotWatchConfig, transport: Transport) -> AccessToken:
    """Obtain a new bearer token from the credential endpoint."""
    try:
        body = await transport.post_form(
            config.token_url,
            data=build_token_request(config),
            basic_auth=(config.client_id, config.client_secret),
        )
    except UpstreamError as exc:
        _logger.error("Credential exchange failed: %s", exc)
        raise AuthError("Failed to authenticate with MOT API") from exc

    token = parse_token_response(body, refresh_margin=config.token_refresh_margin)
    _logger.debug("Obtained access token (expires_in=%ss, cached for %ss)", token.expires_in, token.ttl)
    return token
