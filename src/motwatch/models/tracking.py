"""Persisted tracking records: vehicles, device subscriptions, update snapshots."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import Field, field_validator, model_validator

from motwatch.detect import UpdateKind
from motwatch.models._base import RecordModel
from motwatch.models.history import Defect, MotTest, VehicleRecord


def utcnow() -> datetime:
    return datetime.now(UTC)


class SubscribeResult(StrEnum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class UnsubscribeResult(StrEnum):
    REMOVED = "removed"
    NOT_FOUND = "not_found"


class VehicleDescriptor(RecordModel):
    """Make/model/colour shown alongside a notification."""

    make: str = "Unknown"
    model: str = "Unknown"
    color: str = "Unknown"
    registration: str = ""

    @classmethod
    def from_record(cls, record: VehicleRecord) -> VehicleDescriptor:
        return cls(
            make=record.make or "Unknown",
            model=record.model or "Unknown",
            color=record.primary_colour or "Unknown",
            registration=record.registration,
        )


class UpdateDetails(RecordModel):
    """Snapshot of a detected change, kept until a poller claims it."""

    previous_date: datetime | None = None
    new_date: datetime
    test_result: str = ""
    expiry_date: datetime | None = None
    defects: list[Defect] = Field(default_factory=list)
    vehicle: VehicleDescriptor = Field(default_factory=VehicleDescriptor)

    @classmethod
    def from_test(
        cls,
        record: VehicleRecord,
        test: MotTest,
        previous_date: datetime | None,
    ) -> UpdateDetails:
        if test.completed_date is None:
            raise ValueError("latest test has no completion date")
        return cls(
            previous_date=previous_date,
            new_date=test.completed_date,
            test_result=test.test_result,
            expiry_date=test.expiry_date,
            defects=list(test.defects),
            vehicle=VehicleDescriptor.from_record(record),
        )


class CheckOutcome(RecordModel):
    """Result of one scheduler (or on-demand) check, handed to the store."""

    kind: UpdateKind
    latest_test_date: datetime | None = None
    details: UpdateDetails | None = None
    checked_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _update_requires_details(self) -> CheckOutcome:
        if self.kind.is_update and (self.details is None or self.latest_test_date is None):
            raise ValueError(f"{self.kind} outcome requires details and latest_test_date")
        return self


class TrackedVehicle(RecordModel):
    """One monitored registration and its detection baseline."""

    id: str
    enabled: bool = True
    baseline_test_date: datetime | None = None
    last_checked_at: datetime = Field(default_factory=utcnow)
    pending_update: bool = False
    pending_update_details: UpdateDetails | None = None
    pending_update_detected_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    last_check_error: str | None = None
    update_acknowledged_at: datetime | None = None

    @model_validator(mode="after")
    def _pending_requires_details(self) -> TrackedVehicle:
        if self.pending_update and self.pending_update_details is None:
            raise ValueError("pending_update requires pending_update_details")
        return self

    def with_check_result(self, outcome: CheckOutcome) -> TrackedVehicle:
        """Return the record as it looks after *outcome* has been applied.

        The baseline only ever moves forward, so a stale outcome (for
        example one computed before a concurrent check advanced the
        baseline) only refreshes ``last_checked_at``.
        """
        changes: dict[str, Any] = {
            "last_checked_at": outcome.checked_at,
            "last_check_error": None,
        }
        advances = outcome.latest_test_date is not None and (
            self.baseline_test_date is None or outcome.latest_test_date > self.baseline_test_date
        )
        if outcome.kind.is_update and advances:
            changes.update(
                baseline_test_date=outcome.latest_test_date,
                pending_update=True,
                pending_update_details=outcome.details,
                pending_update_detected_at=outcome.checked_at,
            )
        return self.model_copy(update=changes)


class PushKeys(RecordModel):
    p256dh: str
    auth: str


class PushEndpoint(RecordModel):
    """Web Push subscription as produced by the browser ``PushManager``."""

    endpoint: str
    keys: PushKeys

    @field_validator("endpoint")
    @classmethod
    def _require_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("https://", "http://")):
            raise ValueError("endpoint must be an http(s) URL")
        return value

    def subscription_info(self) -> dict[str, Any]:
        """Shape expected by :func:`pywebpush.webpush`."""
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.keys.p256dh, "auth": self.keys.auth}}


class DeviceSubscription(RecordModel):
    """A device that wants push notifications for one vehicle."""

    vehicle_id: str
    device_id: str
    endpoint: PushEndpoint
    active: bool = True
    last_notified_at: datetime | None = None
    subscribed_at: datetime = Field(default_factory=utcnow)
    deactivated_at: datetime | None = None
    user_agent: str | None = None
