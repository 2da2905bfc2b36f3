from __future__ import annotations

import json
from datetime import UTC, datetime
from types import SimpleNamespace
from typing import Any

import pytest
from conftest import FakePushSender, push_endpoint

from motwatch import push
from motwatch.exceptions import PushDeliveryError, PushGoneError
from motwatch.models.history import Defect
from motwatch.models.tracking import DeviceSubscription, UpdateDetails, VehicleDescriptor
from motwatch.push import NotificationDispatcher, WebPushSender, build_payload
from motwatch.store.memory import MemoryStore

DETAILS = UpdateDetails(
    previous_date=datetime(2024, 1, 10, tzinfo=UTC),
    new_date=datetime(2024, 7, 2, tzinfo=UTC),
    test_result="PASSED",
    expiry_date=datetime(2025, 7, 1, tzinfo=UTC),
    defects=[Defect(type="ADVISORY", text="Nearside front tyre worn")],
    vehicle=VehicleDescriptor(make="FORD", model="FIESTA", color="Blue", registration="AB12CDE"),
)


async def _subscribe_devices(store: MemoryStore, *names: str) -> None:
    await store.subscribe("AB12CDE")
    for name in names:
        await store.upsert_device(
            DeviceSubscription(vehicle_id="AB12CDE", device_id=name, endpoint=push_endpoint(name))
        )


def test_payload_shape() -> None:
    payload = build_payload("AB12CDE", DETAILS)

    assert payload["title"] == "MOT Passed - AB12CDE"
    assert payload["registration"] == "AB12CDE"
    assert payload["testResult"] == "PASSED"
    assert payload["previousDate"] == "2024-01-10T00:00:00Z"
    assert payload["newDate"] == "2024-07-02T00:00:00Z"
    assert payload["vehicle"] == {"make": "FORD", "model": "FIESTA", "color": "Blue"}
    assert payload["testDetails"]["expiryDate"] == "2025-07-01T00:00:00Z"
    assert payload["testDetails"]["defects"][0]["text"] == "Nearside front tyre worn"


@pytest.mark.asyncio
async def test_no_devices_sends_nothing(store: MemoryStore, sender: FakePushSender) -> None:
    await store.subscribe("AB12CDE")

    result = await NotificationDispatcher(store, sender).dispatch("AB12CDE", DETAILS)

    assert (result.sent, result.failed) == (0, 0)
    assert sender.sent == []


@pytest.mark.asyncio
async def test_gone_endpoint_is_deactivated(store: MemoryStore, sender: FakePushSender) -> None:
    await _subscribe_devices(store, "d1", "d2")
    sender.gone.add(push_endpoint("d2").endpoint)

    result = await NotificationDispatcher(store, sender, ttl=3600).dispatch("AB12CDE", DETAILS)

    assert (result.sent, result.failed, result.deactivated) == (1, 1, 1)
    d1 = await store.get_device("AB12CDE", "d1")
    d2 = await store.get_device("AB12CDE", "d2")
    assert d1 is not None and d1.active and d1.last_notified_at is not None
    assert d2 is not None and not d2.active and d2.deactivated_at is not None
    endpoint, body, ttl = sender.sent[0]
    assert endpoint == push_endpoint("d1").endpoint
    assert json.loads(body)["newDate"] == "2024-07-02T00:00:00Z"
    assert ttl == 3600


@pytest.mark.asyncio
async def test_transient_failure_keeps_device_active(store: MemoryStore, sender: FakePushSender) -> None:
    await _subscribe_devices(store, "d1", "d2")
    sender.failing.add(push_endpoint("d1").endpoint)

    result = await NotificationDispatcher(store, sender).dispatch("AB12CDE", DETAILS)

    assert (result.sent, result.failed, result.deactivated) == (1, 1, 0)
    d1 = await store.get_device("AB12CDE", "d1")
    assert d1 is not None and d1.active and d1.last_notified_at is None


@pytest.mark.asyncio
async def test_inactive_devices_are_skipped(store: MemoryStore, sender: FakePushSender) -> None:
    await _subscribe_devices(store, "d1", "d2")
    await store.deactivate_device("AB12CDE", "d1")

    result = await NotificationDispatcher(store, sender).dispatch("AB12CDE", DETAILS)

    assert result.sent == 1
    assert [s[0] for s in sender.sent] == [push_endpoint("d2").endpoint]


# ------------------------------------------------------------------
# WebPushSender
# ------------------------------------------------------------------


class _FakeWebPushException(Exception):
    def __init__(self, message: str, status: int | None) -> None:
        super().__init__(message)
        self.response = SimpleNamespace(status_code=status) if status is not None else None


def _patch_webpush(monkeypatch: pytest.MonkeyPatch, status: int | None) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []

    def fake_webpush(**kwargs: Any) -> None:
        calls.append(kwargs)
        if status is not None and status >= 400:
            raise _FakeWebPushException(f"Push failed: {status}", status)

    monkeypatch.setattr(push, "webpush", fake_webpush)
    monkeypatch.setattr(push, "WebPushException", _FakeWebPushException)
    return calls


@pytest.mark.asyncio
async def test_webpush_sender_passes_vapid_ttl_and_urgency(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _patch_webpush(monkeypatch, None)
    claims = {"sub": "mailto:ops@example.test"}
    sender = WebPushSender("vapid-private", claims)

    await sender.send(push_endpoint("d1"), '{"title": "x"}', ttl=3600)

    assert calls[0]["subscription_info"] == push_endpoint("d1").subscription_info()
    assert calls[0]["vapid_private_key"] == "vapid-private"
    assert calls[0]["ttl"] == 3600
    assert calls[0]["headers"] == {"Urgency": "high"}
    assert calls[0]["vapid_claims"] == claims
    assert calls[0]["vapid_claims"] is not claims


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [404, 410])
async def test_webpush_sender_gone_statuses(monkeypatch: pytest.MonkeyPatch, status: int) -> None:
    _patch_webpush(monkeypatch, status)

    with pytest.raises(PushGoneError) as exc_info:
        await WebPushSender("k", {"sub": "mailto:a@b"}).send(push_endpoint("d1"), "{}", ttl=60)
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
async def test_webpush_sender_other_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_webpush(monkeypatch, 500)

    with pytest.raises(PushDeliveryError) as exc_info:
        await WebPushSender("k", {"sub": "mailto:a@b"}).send(push_endpoint("d1"), "{}", ttl=60)
    assert not isinstance(exc_info.value, PushGoneError)
