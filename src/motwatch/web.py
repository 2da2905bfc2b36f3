"""HTTP surface (aiohttp.web).

Routes::

    GET  /pending-notifications?registration=
    POST /enable-notification        {registration}
    POST /disable-notification       {registration}
    POST /subscribe-push             {registration, deviceId, subscription}
    POST /unsubscribe-push           {registration, deviceId}
    GET  /monitored-vehicles
    GET  /mot-history?registration=
    GET  /check-mot-updates?registration=
    GET  /health

Every response is JSON with CORS and no-cache headers. Errors use one
shape, ``{error: true, message, code, timestamp}``, produced by
:func:`error_middleware`.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web

from motwatch.exceptions import (
    AuthError,
    MotWatchError,
    NotFoundError,
    PersistenceError,
    UpstreamError,
    ValidationError,
)
from motwatch.models.tracking import SubscribeResult, utcnow
from motwatch.normalize import isoformat_or_none
from motwatch.service import MotWatchService

_logger = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("service", MotWatchService)

_RESPONSE_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Cache-Control": "no-cache, no-store, must-revalidate",
}

_HTTP_ERROR_CODES = {404: "NOT_FOUND", 405: "METHOD_NOT_ALLOWED"}
_UPSTREAM_MESSAGES = {
    "CONNECTION_ERROR": "Failed to connect to MOT API",
    "TIMEOUT": "MOT API request timed out",
}

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def error_body(message: str, code: str, **extra: Any) -> dict[str, Any]:
    return {
        "error": True,
        "message": message,
        "code": code,
        "timestamp": isoformat_or_none(utcnow()),
        **extra,
    }


def _error_response(exc: Exception) -> web.Response:
    if isinstance(exc, ValidationError):
        return web.json_response(error_body(str(exc), exc.code), status=400)
    if isinstance(exc, NotFoundError):
        return web.json_response(error_body(str(exc), exc.code), status=404)
    if isinstance(exc, UpstreamError):
        extra = {"details": {"requestId": exc.request_id}} if exc.request_id else {}
        message = _UPSTREAM_MESSAGES.get(exc.code, "Error from MOT API")
        return web.json_response(error_body(message, exc.code, **extra), status=502)
    if isinstance(exc, AuthError):
        return web.json_response(error_body("Failed to authenticate with MOT API", "AUTH_ERROR"), status=502)
    if isinstance(exc, PersistenceError):
        return web.json_response(error_body("Storage temporarily unavailable", "STORAGE_UNAVAILABLE"), status=503)
    return web.json_response(error_body("Internal server error", "INTERNAL_SERVER_ERROR"), status=500)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Map exceptions to structured JSON and stamp the common headers."""
    if request.method == "OPTIONS":
        response: web.StreamResponse = web.Response(status=200)
    else:
        try:
            response = await handler(request)
        except web.HTTPException as exc:
            code = _HTTP_ERROR_CODES.get(exc.status, "HTTP_ERROR")
            response = web.json_response(error_body(exc.reason, code), status=exc.status)
        except MotWatchError as exc:
            if isinstance(exc, (UpstreamError, AuthError, PersistenceError)):
                _logger.warning("%s %s failed: %s", request.method, request.path, exc)
            response = _error_response(exc)
        except Exception as exc:
            _logger.exception("Unhandled error on %s %s", request.method, request.path)
            response = _error_response(exc)
    response.headers.update(_RESPONSE_HEADERS)
    return response


async def _json_body(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Invalid JSON in request body", code="INVALID_JSON") from exc
    if not isinstance(body, dict):
        raise ValidationError("Invalid JSON in request body", code="INVALID_JSON")
    return body


# ----------------------------------------------------------------------
# Handlers
# ----------------------------------------------------------------------


async def pending_notifications(request: web.Request) -> web.Response:
    result = await request.app[SERVICE_KEY].poll_pending(request.query.get("registration"))
    return web.json_response(result.to_response())


async def enable_notification(request: web.Request) -> web.Response:
    body = await _json_body(request)
    reg, result = await request.app[SERVICE_KEY].enable_notification(body.get("registration"))
    if result is SubscribeResult.ALREADY_EXISTS:
        message = f"Notifications for {reg} are already enabled"
    else:
        message = f"Notifications enabled for {reg}"
    return web.json_response({"success": True, "message": message, "registration": reg})


async def disable_notification(request: web.Request) -> web.Response:
    body = await _json_body(request)
    reg = await request.app[SERVICE_KEY].disable_notification(body.get("registration"))
    return web.json_response({"success": True, "message": f"Notifications disabled for {reg}"})


async def subscribe_push(request: web.Request) -> web.Response:
    body = await _json_body(request)
    device = await request.app[SERVICE_KEY].subscribe_device(
        body.get("registration"),
        body.get("deviceId"),
        body.get("subscription"),
        user_agent=request.headers.get("User-Agent"),
    )
    return web.json_response(
        {
            "success": True,
            "message": f"Successfully subscribed to notifications for {device.vehicle_id}",
            "deviceId": device.device_id,
            "registration": device.vehicle_id,
        }
    )


async def unsubscribe_push(request: web.Request) -> web.Response:
    body = await _json_body(request)
    reg = await request.app[SERVICE_KEY].unsubscribe_device(body.get("registration"), body.get("deviceId"))
    return web.json_response(
        {"success": True, "message": f"Successfully unsubscribed from notifications for {reg}"}
    )


async def monitored_vehicles(request: web.Request) -> web.Response:
    vehicles = await request.app[SERVICE_KEY].list_monitored()
    items = [
        {
            "registration": v.id,
            "lastCheckedDate": isoformat_or_none(v.last_checked_at),
            "lastMotTestDate": isoformat_or_none(v.baseline_test_date),
            "hasUpdate": v.pending_update,
            "lastCheckError": v.last_check_error,
            "createdAt": isoformat_or_none(v.created_at),
        }
        for v in vehicles
    ]
    return web.json_response({"vehicles": items, "count": len(items)})


async def mot_history(request: web.Request) -> web.Response:
    record = await request.app[SERVICE_KEY].history(request.query.get("registration"))
    return web.json_response(record.raw or record.model_dump(mode="json", by_alias=True))


async def check_mot_updates(request: web.Request) -> web.Response:
    check = await request.app[SERVICE_KEY].check_now(request.query.get("registration"))
    body: dict[str, Any] = {
        "registration": check.vehicle_id,
        "hasUpdate": check.applied,
        "kind": check.kind.value,
        "latestMotTestDate": isoformat_or_none(check.outcome.latest_test_date),
        "checkedAt": isoformat_or_none(check.outcome.checked_at),
    }
    if check.dispatch is not None:
        body["dispatch"] = check.dispatch.model_dump()
    return web.json_response(body)


async def health(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    return web.json_response({"status": "ok", "schedulerRunning": service.scheduler.running})


def create_app(service: MotWatchService) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[SERVICE_KEY] = service
    app.router.add_get("/pending-notifications", pending_notifications)
    app.router.add_post("/enable-notification", enable_notification)
    app.router.add_post("/disable-notification", disable_notification)
    app.router.add_post("/subscribe-push", subscribe_push)
    app.router.add_post("/unsubscribe-push", unsubscribe_push)
    app.router.add_get("/monitored-vehicles", monitored_vehicles)
    app.router.add_get("/mot-history", mot_history)
    app.router.add_get("/check-mot-updates", check_mot_updates)
    app.router.add_get("/health", health)
    return app


class MotWatchServer:
    """Runs the HTTP surface on an :class:`aiohttp.web.AppRunner`."""

    def __init__(self, service: MotWatchService, *, host: str, port: int) -> None:
        self._app = create_app(service)
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    async def start(self) -> None:
        if self._runner is not None:
            _logger.debug("HTTP server already started, skipping")
            return
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        _logger.info("HTTP server listening on %s:%d", self._host, self._port)

    async def stop(self) -> None:
        if self._runner is None:
            return
        try:
            await self._runner.cleanup()
        finally:
            self._runner = None
            self._site = None
        _logger.info("HTTP server stopped")
