"""Consumer-facing operations shared by the HTTP surface and the CLI."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import pydantic

from motwatch.client import MotHistoryClient
from motwatch.exceptions import NotFoundError, ValidationError
from motwatch.models.history import VehicleRecord, latest_test
from motwatch.models.results import PollResult
from motwatch.models.tracking import (
    DeviceSubscription,
    PushEndpoint,
    SubscribeResult,
    TrackedVehicle,
    UnsubscribeResult,
)
from motwatch.normalize import normalize_registration, safe_str
from motwatch.scheduler import BatchScheduler, VehicleCheck
from motwatch.store.base import SubscriptionStore

_logger = logging.getLogger(__name__)


class MotWatchService:
    """Subscription management, polling and on-demand checks.

    Every method normalizes the registration it is given first, so callers
    may pass user input straight through.
    """

    def __init__(self, store: SubscriptionStore, client: MotHistoryClient, scheduler: BatchScheduler) -> None:
        self._store = store
        self._client = client
        self._scheduler = scheduler

    @property
    def store(self) -> SubscriptionStore:
        return self._store

    @property
    def scheduler(self) -> BatchScheduler:
        return self._scheduler

    async def _require_vehicle(self, registration: str) -> TrackedVehicle:
        vehicle = await self._store.get_vehicle(registration)
        if vehicle is None:
            raise NotFoundError(
                f"No notification subscription found for {registration}",
                code="SUBSCRIPTION_NOT_FOUND",
            )
        return vehicle

    async def _seed_baseline(self, registration: str) -> None:
        # Best effort: the next scheduled pass fills the baseline in if this fails.
        try:
            record = await self._client.fetch_history(registration)
            test = latest_test(record)
            if test is not None and test.completed_date is not None:
                await self._store.seed_baseline(registration, test.completed_date)
                _logger.info("Baseline for %s set to %s", registration, test.completed_date)
        except Exception as exc:
            _logger.warning("Initial baseline fetch failed for %s: %s", registration, exc)

    # ------------------------------------------------------------------
    # Vehicle subscriptions
    # ------------------------------------------------------------------

    async def enable_notification(self, registration: Any) -> tuple[str, SubscribeResult]:
        reg = normalize_registration(registration)
        result = await self._store.subscribe(reg)
        if result is SubscribeResult.CREATED:
            _logger.info("Now monitoring %s", reg)
            await self._seed_baseline(reg)
        return reg, result

    async def disable_notification(self, registration: Any) -> str:
        reg = normalize_registration(registration)
        removed = await self._store.unsubscribe(reg)
        if removed is UnsubscribeResult.NOT_FOUND:
            raise NotFoundError(f"No notifications found for {reg}", code="NOTIFICATION_NOT_FOUND")
        _logger.info("Stopped monitoring %s", reg)
        return reg

    async def list_monitored(self) -> list[TrackedVehicle]:
        return await self._store.list_enabled()

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll_pending(self, registration: Any) -> PollResult:
        """Claim the pending update for *registration*, if there is one.

        Only the caller whose claim clears the pending flag receives the
        details; every other concurrent poller sees ``has_update=False``.
        """
        reg = normalize_registration(registration)
        vehicle = await self._require_vehicle(reg)
        claimed = await self._store.claim_pending_update(reg)
        if claimed is None or claimed.pending_update_details is None:
            return PollResult(
                registration=reg,
                has_update=False,
                last_checked_date=vehicle.last_checked_at,
                last_mot_test_date=vehicle.baseline_test_date,
            )

        _logger.info("Pending update for %s claimed by poller", reg)
        return PollResult(
            registration=reg,
            has_update=True,
            last_checked_date=claimed.last_checked_at,
            last_mot_test_date=claimed.baseline_test_date,
            update_detected_at=claimed.pending_update_detected_at,
            details=claimed.pending_update_details,
        )

    # ------------------------------------------------------------------
    # Push subscriptions
    # ------------------------------------------------------------------

    async def subscribe_device(
        self,
        registration: Any,
        device_id: Any,
        subscription: Any,
        *,
        user_agent: str | None = None,
    ) -> DeviceSubscription:
        reg = normalize_registration(registration)
        if not isinstance(subscription, Mapping):
            raise ValidationError(
                "Valid push subscription with endpoint and keys is required",
                code="INVALID_SUBSCRIPTION",
            )
        try:
            endpoint = PushEndpoint.model_validate(subscription)
        except pydantic.ValidationError as exc:
            raise ValidationError(
                "Valid push subscription with endpoint and keys is required",
                code="INVALID_SUBSCRIPTION",
            ) from exc
        device = safe_str(device_id)
        if device is None:
            raise ValidationError("Device ID is required", code="MISSING_DEVICE_ID")

        # Devices can only attach to a tracked vehicle.
        await self.enable_notification(reg)
        record = DeviceSubscription(vehicle_id=reg, device_id=device, endpoint=endpoint, user_agent=user_agent)
        await self._store.upsert_device(record)
        _logger.info("Device %s subscribed to push notifications for %s", device, reg)
        return record

    async def unsubscribe_device(self, registration: Any, device_id: Any) -> str:
        reg = normalize_registration(registration)
        device = safe_str(device_id)
        if device is None:
            raise ValidationError("Device ID is required", code="MISSING_DEVICE_ID")
        if not await self._store.remove_device(reg, device):
            raise NotFoundError(
                f"No subscription found for {reg} on this device",
                code="SUBSCRIPTION_NOT_FOUND",
            )
        _logger.info("Device %s unsubscribed from %s", device, reg)
        return reg

    # ------------------------------------------------------------------
    # Upstream passthrough
    # ------------------------------------------------------------------

    async def history(self, registration: Any) -> VehicleRecord:
        return await self._client.fetch_history(normalize_registration(registration))

    async def check_now(self, registration: Any) -> VehicleCheck:
        """Run the scheduler pipeline for one tracked vehicle immediately."""
        reg = normalize_registration(registration)
        vehicle = await self._require_vehicle(reg)
        return await self._scheduler.check_vehicle(vehicle)
