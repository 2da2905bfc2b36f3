"""Web Push delivery and per-vehicle notification fan-out."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

from pywebpush import WebPushException, webpush

from motwatch._constants import PUSH_GONE_STATUSES, PUSH_TTL_S
from motwatch._redact import short_endpoint
from motwatch.exceptions import PushDeliveryError, PushGoneError
from motwatch.models.history import TestResult
from motwatch.models.results import DispatchResult
from motwatch.models.tracking import PushEndpoint, UpdateDetails
from motwatch.normalize import isoformat_or_none
from motwatch.store.base import SubscriptionStore

_logger = logging.getLogger(__name__)

_RESULT_LABELS: dict[str, str] = {TestResult.PASSED: "Passed", TestResult.FAILED: "Failed"}


class PushSender(Protocol):
    """Delivers one payload to one endpoint.

    Raises :class:`PushGoneError` when the push service reports the endpoint
    as permanently invalid and :class:`PushDeliveryError` for anything else.
    """

    async def send(self, endpoint: PushEndpoint, payload: str, *, ttl: int) -> None: ...


class WebPushSender:
    """VAPID-signed Web Push via :func:`pywebpush.webpush`.

    ``webpush`` is blocking, so each delivery runs in a worker thread.
    """

    def __init__(self, vapid_private_key: str, vapid_claims: dict[str, str], *, timeout: float = 10.0) -> None:
        self._vapid_private_key = vapid_private_key
        self._vapid_claims = vapid_claims
        self._timeout = timeout

    def _send_blocking(self, endpoint: PushEndpoint, payload: str, ttl: int) -> None:
        try:
            webpush(
                subscription_info=endpoint.subscription_info(),
                data=payload,
                vapid_private_key=self._vapid_private_key,
                # webpush fills in aud/exp on the dict it is given.
                vapid_claims=dict(self._vapid_claims),
                ttl=ttl,
                headers={"Urgency": "high"},
                timeout=self._timeout,
            )
        except WebPushException as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            if status_code in PUSH_GONE_STATUSES:
                raise PushGoneError(f"Push endpoint gone: {short_endpoint(endpoint.endpoint)}", status_code=status_code) from exc
            raise PushDeliveryError(str(exc), status_code=status_code) from exc

    async def send(self, endpoint: PushEndpoint, payload: str, *, ttl: int) -> None:
        await asyncio.to_thread(self._send_blocking, endpoint, payload, ttl)


def build_payload(vehicle_id: str, details: UpdateDetails) -> dict[str, Any]:
    """Serialize an update into the notification body devices receive."""
    vehicle = details.vehicle
    outcome = _RESULT_LABELS.get(details.test_result, "Update")
    title = f"MOT {outcome} - {vehicle_id}"
    body = f"New MOT test recorded for your {vehicle.make} {vehicle.model}".strip()
    return {
        "title": title,
        "body": body,
        "registration": vehicle_id,
        "testResult": details.test_result,
        "previousDate": isoformat_or_none(details.previous_date),
        "newDate": isoformat_or_none(details.new_date),
        "vehicle": {"make": vehicle.make, "model": vehicle.model, "color": vehicle.color},
        "testDetails": {
            "expiryDate": isoformat_or_none(details.expiry_date),
            "defects": [d.model_dump(mode="json", by_alias=True) for d in details.defects],
        },
    }


class NotificationDispatcher:
    """Fans one detected update out to every active device of a vehicle."""

    def __init__(self, store: SubscriptionStore, sender: PushSender, *, ttl: int = PUSH_TTL_S) -> None:
        self._store = store
        self._sender = sender
        self._ttl = ttl

    async def dispatch(self, vehicle_id: str, details: UpdateDetails) -> DispatchResult:
        devices = await self._store.list_active_devices(vehicle_id)
        if not devices:
            _logger.debug("No active push subscriptions for %s", vehicle_id)
            return DispatchResult()

        payload = json.dumps(build_payload(vehicle_id, details))
        sent = failed = deactivated = 0

        for device in devices:
            endpoint_short = short_endpoint(device.endpoint.endpoint)
            try:
                await self._sender.send(device.endpoint, payload, ttl=self._ttl)
            except PushGoneError:
                failed += 1
                deactivated += 1
                _logger.info(
                    "Deactivating push subscription for device %s on %s (endpoint gone: %s)",
                    device.device_id,
                    vehicle_id,
                    endpoint_short,
                )
                try:
                    await self._store.deactivate_device(vehicle_id, device.device_id)
                except Exception:
                    _logger.exception("Failed to deactivate device %s on %s", device.device_id, vehicle_id)
                continue
            except Exception as exc:
                failed += 1
                _logger.warning(
                    "Push delivery failed for device %s on %s: %s",
                    device.device_id,
                    vehicle_id,
                    exc,
                )
                continue

            sent += 1
            try:
                await self._store.mark_device_notified(vehicle_id, device.device_id)
            except Exception:
                _logger.exception("Failed to record notification time for device %s", device.device_id)

        _logger.info("Push results for %s: %d sent, %d failed (%d deactivated)", vehicle_id, sent, failed, deactivated)
        return DispatchResult(sent=sent, failed=failed, deactivated=deactivated)
