"""Storage interface shared by the in-memory and PostgreSQL stores."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from motwatch.models.tracking import (
    CheckOutcome,
    DeviceSubscription,
    SubscribeResult,
    TrackedVehicle,
    UnsubscribeResult,
)


class SubscriptionStore(Protocol):
    """Durable tracking state.

    Each operation touches a single vehicle record (or a single device row)
    and is atomic on its own. :meth:`claim_pending_update` must be a true
    compare-and-clear in the backend, never a read followed by a write; it
    returns the record exactly as the claim left it, so the caller gets the
    details and detection time that belong together.
    """

    async def subscribe(self, vehicle_id: str) -> SubscribeResult: ...

    async def unsubscribe(self, vehicle_id: str) -> UnsubscribeResult: ...

    async def get_vehicle(self, vehicle_id: str) -> TrackedVehicle | None: ...

    async def list_enabled(self) -> list[TrackedVehicle]: ...

    async def record_check_result(self, vehicle_id: str, outcome: CheckOutcome) -> TrackedVehicle | None: ...

    async def record_check_error(self, vehicle_id: str, message: str) -> None: ...

    async def seed_baseline(self, vehicle_id: str, test_date: datetime) -> bool: ...

    async def claim_pending_update(self, vehicle_id: str) -> TrackedVehicle | None: ...

    async def upsert_device(self, subscription: DeviceSubscription) -> None: ...

    async def remove_device(self, vehicle_id: str, device_id: str) -> bool: ...

    async def list_active_devices(self, vehicle_id: str) -> list[DeviceSubscription]: ...

    async def mark_device_notified(self, vehicle_id: str, device_id: str) -> None: ...

    async def deactivate_device(self, vehicle_id: str, device_id: str) -> None: ...

    async def close(self) -> None: ...
