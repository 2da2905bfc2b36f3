"""End-to-end scenarios: scheduler, detector, store, dispatcher and polling together."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest
from conftest import FakeMotBackend, FakePushSender, StepClock, mot_test, push_endpoint, vehicle_payload

from motwatch.client import MotHistoryClient
from motwatch.config import MotWatchConfig
from motwatch.detect import UpdateKind
from motwatch.models.tracking import DeviceSubscription
from motwatch.push import NotificationDispatcher
from motwatch.scheduler import BatchScheduler
from motwatch.service import MotWatchService
from motwatch.store.memory import MemoryStore

JAN = datetime(2024, 1, 10, tzinfo=UTC)
JUL = datetime(2024, 7, 2, tzinfo=UTC)


async def _no_sleep(_delay: float) -> None:
    return None


@pytest.mark.asyncio
@pytest.mark.e2e
async def test_first_observation_then_new_test_with_gone_endpoint(
    config: MotWatchConfig,
    backend: FakeMotBackend,
    sender: FakePushSender,
    store: MemoryStore,
    clock: StepClock,
) -> None:
    await store.subscribe("AB12CDE")
    backend.vehicles["AB12CDE"] = vehicle_payload("AB12CDE", mot_test("2024-01-10"))

    async with MotHistoryClient(config, transport=backend) as client:
        dispatcher = NotificationDispatcher(store, sender)
        scheduler = BatchScheduler(store, client, dispatcher, config, sleep=_no_sleep, clock=clock)
        service = MotWatchService(store, client, scheduler)

        # Pass 1: no baseline yet, one test upstream, nobody to push to.
        vehicle = await store.get_vehicle("AB12CDE")
        assert vehicle is not None
        first = await scheduler.check_vehicle(vehicle)

        assert first.kind is UpdateKind.FIRST_OBSERVATION
        assert first.dispatch is not None
        assert (first.dispatch.sent, first.dispatch.failed) == (0, 0)
        stored = await store.get_vehicle("AB12CDE")
        assert stored is not None
        assert stored.pending_update
        assert stored.baseline_test_date == JAN

        # Two devices subscribe; upstream records a newer pass.
        for name in ("phone", "laptop"):
            await store.upsert_device(
                DeviceSubscription(vehicle_id="AB12CDE", device_id=name, endpoint=push_endpoint(name))
            )
        sender.gone.add(push_endpoint("laptop").endpoint)
        backend.vehicles["AB12CDE"] = vehicle_payload(
            "AB12CDE",
            mot_test("2024-01-10", "FAILED"),
            mot_test("2024-07-02", "PASSED", expiryDate="2025-07-01"),
        )

        summary = await scheduler.run_once()

        assert summary is not None
        assert (summary.total, summary.checked, summary.updated, summary.errors) == (1, 1, 1, 0)
        stored = await store.get_vehicle("AB12CDE")
        assert stored is not None
        assert stored.baseline_test_date == JUL
        assert stored.pending_update_details is not None
        assert stored.pending_update_details.previous_date == JAN

        laptop = await store.get_device("AB12CDE", "laptop")
        phone = await store.get_device("AB12CDE", "phone")
        assert laptop is not None and not laptop.active
        assert phone is not None and phone.active and phone.last_notified_at is not None
        assert len(sender.sent) == 1
        payload = json.loads(sender.sent[0][1])
        assert payload["testResult"] == "PASSED"
        assert payload["previousDate"] == "2024-01-10T00:00:00Z"
        assert payload["newDate"] == "2024-07-02T00:00:00Z"

        # Poll twice: the update is handed out once.
        polled = await service.poll_pending("AB12CDE")
        repolled = await service.poll_pending("AB12CDE")

    assert polled.has_update
    assert polled.details is not None
    assert polled.details.new_date == JUL
    assert not repolled.has_update
    assert repolled.last_mot_test_date == JUL


@pytest.mark.asyncio
@pytest.mark.e2e
async def test_older_upstream_record_never_regresses_baseline(
    config: MotWatchConfig,
    backend: FakeMotBackend,
    sender: FakePushSender,
    store: MemoryStore,
    clock: StepClock,
) -> None:
    await store.subscribe("AB12CDE")
    backend.vehicles["AB12CDE"] = vehicle_payload("AB12CDE", mot_test("2024-07-02"))

    async with MotHistoryClient(config, transport=backend) as client:
        scheduler = BatchScheduler(
            store, client, NotificationDispatcher(store, sender), config, sleep=_no_sleep, clock=clock
        )
        await scheduler.run_once()
        await store.claim_pending_update("AB12CDE")

        backend.vehicles["AB12CDE"] = vehicle_payload("AB12CDE", mot_test("2024-01-10"))
        vehicle = await store.get_vehicle("AB12CDE")
        assert vehicle is not None
        check = await scheduler.check_vehicle(vehicle)

    assert check.kind is UpdateKind.NO_CHANGE
    stored = await store.get_vehicle("AB12CDE")
    assert stored is not None
    assert stored.baseline_test_date == JUL
    assert not stored.pending_update
