"""In-memory subscription store.

Used for single-process deployments (``database_url = memory://``) and in
tests. Records are immutable models; every mutation swaps in a new record
under one lock, which is what makes each operation atomic.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime

from motwatch.models.tracking import (
    CheckOutcome,
    DeviceSubscription,
    SubscribeResult,
    TrackedVehicle,
    UnsubscribeResult,
    utcnow,
)


class MemoryStore:
    """Deterministic in-process implementation of :class:`SubscriptionStore`."""

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._lock = asyncio.Lock()
        self._vehicles: dict[str, TrackedVehicle] = {}
        self._devices: dict[tuple[str, str], DeviceSubscription] = {}

    async def subscribe(self, vehicle_id: str) -> SubscribeResult:
        async with self._lock:
            if vehicle_id in self._vehicles:
                return SubscribeResult.ALREADY_EXISTS
            now = self._clock()
            self._vehicles[vehicle_id] = TrackedVehicle(id=vehicle_id, created_at=now, last_checked_at=now)
            return SubscribeResult.CREATED

    async def unsubscribe(self, vehicle_id: str) -> UnsubscribeResult:
        async with self._lock:
            if self._vehicles.pop(vehicle_id, None) is None:
                return UnsubscribeResult.NOT_FOUND
            for key in [k for k in self._devices if k[0] == vehicle_id]:
                del self._devices[key]
            return UnsubscribeResult.REMOVED

    async def get_vehicle(self, vehicle_id: str) -> TrackedVehicle | None:
        return self._vehicles.get(vehicle_id)

    async def list_enabled(self) -> list[TrackedVehicle]:
        return [v for v in self._vehicles.values() if v.enabled]

    async def record_check_result(self, vehicle_id: str, outcome: CheckOutcome) -> TrackedVehicle | None:
        async with self._lock:
            current = self._vehicles.get(vehicle_id)
            if current is None:
                return None
            updated = current.with_check_result(outcome)
            self._vehicles[vehicle_id] = updated
            return updated

    async def record_check_error(self, vehicle_id: str, message: str) -> None:
        async with self._lock:
            current = self._vehicles.get(vehicle_id)
            if current is None:
                return
            self._vehicles[vehicle_id] = current.model_copy(
                update={"last_checked_at": self._clock(), "last_check_error": message}
            )

    async def seed_baseline(self, vehicle_id: str, test_date: datetime) -> bool:
        async with self._lock:
            current = self._vehicles.get(vehicle_id)
            if current is None or current.baseline_test_date is not None:
                return False
            self._vehicles[vehicle_id] = current.model_copy(
                update={"baseline_test_date": test_date, "last_checked_at": self._clock()}
            )
            return True

    async def claim_pending_update(self, vehicle_id: str) -> TrackedVehicle | None:
        async with self._lock:
            current = self._vehicles.get(vehicle_id)
            if current is None or not current.pending_update:
                return None
            claimed = current.model_copy(
                update={"pending_update": False, "update_acknowledged_at": self._clock()}
            )
            self._vehicles[vehicle_id] = claimed
            return claimed

    async def upsert_device(self, subscription: DeviceSubscription) -> None:
        async with self._lock:
            self._devices[(subscription.vehicle_id, subscription.device_id)] = subscription

    async def remove_device(self, vehicle_id: str, device_id: str) -> bool:
        async with self._lock:
            return self._devices.pop((vehicle_id, device_id), None) is not None

    async def get_device(self, vehicle_id: str, device_id: str) -> DeviceSubscription | None:
        return self._devices.get((vehicle_id, device_id))

    async def list_active_devices(self, vehicle_id: str) -> list[DeviceSubscription]:
        return [d for (vid, _), d in self._devices.items() if vid == vehicle_id and d.active]

    async def mark_device_notified(self, vehicle_id: str, device_id: str) -> None:
        await self._update_device(vehicle_id, device_id, last_notified_at=self._clock())

    async def deactivate_device(self, vehicle_id: str, device_id: str) -> None:
        await self._update_device(vehicle_id, device_id, active=False, deactivated_at=self._clock())

    async def _update_device(self, vehicle_id: str, device_id: str, **changes: object) -> None:
        async with self._lock:
            key = (vehicle_id, device_id)
            current = self._devices.get(key)
            if current is not None:
                self._devices[key] = current.model_copy(update=changes)

    async def close(self) -> None:
        return None
