"""Data models for upstream payloads and persisted tracking records."""

from motwatch.models._base import MotBaseModel, MotTimestamp, RecordModel
from motwatch.models.history import Defect, MotTest, TestResult, VehicleRecord, latest_test
from motwatch.models.results import DispatchResult, PollResult, RunSummary
from motwatch.models.token import AccessToken
from motwatch.models.tracking import (
    CheckOutcome,
    DeviceSubscription,
    PushEndpoint,
    PushKeys,
    SubscribeResult,
    TrackedVehicle,
    UnsubscribeResult,
    UpdateDetails,
    VehicleDescriptor,
)

__all__ = [
    "AccessToken",
    "CheckOutcome",
    "Defect",
    "DeviceSubscription",
    "DispatchResult",
    "MotBaseModel",
    "MotTest",
    "MotTimestamp",
    "PollResult",
    "PushEndpoint",
    "PushKeys",
    "RecordModel",
    "RunSummary",
    "SubscribeResult",
    "TestResult",
    "TrackedVehicle",
    "UnsubscribeResult",
    "UpdateDetails",
    "VehicleDescriptor",
    "VehicleRecord",
    "latest_test",
]
