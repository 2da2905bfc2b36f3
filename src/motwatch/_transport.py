"""HTTP transport for the upstream MOT API and its token endpoint."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from motwatch._constants import REQUEST_TIMEOUT_S, USER_AGENT
from motwatch._redact import redact_for_log
from motwatch.exceptions import UpstreamError, UpstreamTimeoutError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles/mocks while
    keeping the production implementation (`HttpTransport`) concrete.
    """

    async def get_json(self, url: str, *, headers: Mapping[str, str]) -> dict[str, Any]:
        ...

    async def post_form(
        self,
        url: str,
        *,
        data: Mapping[str, str],
        basic_auth: tuple[str, str],
    ) -> dict[str, Any]:
        ...


def _error_fields(text: str) -> tuple[str, str, str | None]:
    """Pull ``errorCode``/``errorMessage``/``requestId`` out of an error body."""
    try:
        body = json.loads(text)
    except json.JSONDecodeError:
        return "MOT_API_ERROR", text[:200], None
    if not isinstance(body, dict):
        return "MOT_API_ERROR", text[:200], None
    code = str(body.get("errorCode") or body.get("error") or "MOT_API_ERROR")
    message = str(body.get("errorMessage") or body.get("error_description") or body.get("message") or text[:200])
    request_id = body.get("requestId")
    return code, message, str(request_id) if request_id is not None else None


class HttpTransport:
    """aiohttp-backed transport with a fixed per-request timeout."""

    def __init__(
        self,
        http_session: aiohttp.ClientSession,
        *,
        timeout: float = REQUEST_TIMEOUT_S,
    ) -> None:
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        headers = {"accept": "application/json", "user-agent": USER_AGENT, **kwargs.pop("headers", {})}
        _logger.debug("%s %s headers=%s", method, url, redact_for_log(headers))

        try:
            async with self._http.request(method, url, headers=headers, timeout=self._timeout, **kwargs) as resp:
                raw = await resp.read()
                if resp.status != 200:
                    code, message, request_id = _error_fields(raw.decode("utf-8", errors="replace"))
                    raise UpstreamError(
                        f"HTTP {resp.status} from {url}: {message}",
                        status_code=resp.status,
                        code=code,
                        endpoint=url,
                        request_id=request_id,
                    )
        except UpstreamError:
            raise
        except TimeoutError as exc:
            raise UpstreamTimeoutError(
                f"Request to {url} timed out after {self._timeout.total}s",
                code="TIMEOUT",
                endpoint=url,
            ) from exc
        except aiohttp.ClientError as exc:
            raise UpstreamError(
                f"Request to {url} failed: {exc}",
                code="CONNECTION_ERROR",
                endpoint=url,
            ) from exc

        try:
            body = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise UpstreamError(
                f"Invalid JSON from {url}: {raw[:200]!r}",
                code="INVALID_JSON",
                endpoint=url,
            ) from exc

        if not isinstance(body, dict):
            raise UpstreamError(
                f"Unexpected JSON payload from {url}: {type(body).__name__}",
                code="INVALID_JSON",
                endpoint=url,
            )
        return body

    async def get_json(self, url: str, *, headers: Mapping[str, str]) -> dict[str, Any]:
        return await self._request("GET", url, headers=dict(headers))

    async def post_form(
        self,
        url: str,
        *,
        data: Mapping[str, str],
        basic_auth: tuple[str, str],
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            url,
            data=dict(data),
            auth=aiohttp.BasicAuth(*basic_auth),
            headers={"content-type": "application/x-www-form-urlencoded"},
        )
