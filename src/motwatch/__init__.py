"""motwatch - MOT update detection and push notification service."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("motwatch")
except PackageNotFoundError:
    __version__ = "0+local"
from motwatch.client import MotHistoryClient
from motwatch.config import MotWatchConfig
from motwatch.detect import UpdateKind, detect
from motwatch.exceptions import (
    AuthError,
    ConfigError,
    MotWatchError,
    NotFoundError,
    PersistenceError,
    PushDeliveryError,
    PushGoneError,
    RateLimitedError,
    UpstreamError,
    UpstreamTimeoutError,
    ValidationError,
)
from motwatch.models import (
    CheckOutcome,
    Defect,
    DeviceSubscription,
    DispatchResult,
    MotTest,
    PollResult,
    PushEndpoint,
    RunSummary,
    SubscribeResult,
    TrackedVehicle,
    UnsubscribeResult,
    UpdateDetails,
    VehicleRecord,
)
from motwatch.push import NotificationDispatcher, WebPushSender
from motwatch.scheduler import BatchScheduler, VehicleCheck
from motwatch.service import MotWatchService
from motwatch.store import MemoryStore, SubscriptionStore, open_store
from motwatch.token_cache import TokenCache

__all__ = [
    "__version__",
    "AuthError",
    "BatchScheduler",
    "CheckOutcome",
    "ConfigError",
    "Defect",
    "DeviceSubscription",
    "DispatchResult",
    "MemoryStore",
    "MotHistoryClient",
    "MotTest",
    "MotWatchConfig",
    "MotWatchError",
    "MotWatchService",
    "NotFoundError",
    "NotificationDispatcher",
    "PersistenceError",
    "PollResult",
    "PushDeliveryError",
    "PushEndpoint",
    "PushGoneError",
    "RateLimitedError",
    "RunSummary",
    "SubscribeResult",
    "SubscriptionStore",
    "TokenCache",
    "TrackedVehicle",
    "UnsubscribeResult",
    "UpdateDetails",
    "UpdateKind",
    "UpstreamError",
    "UpstreamTimeoutError",
    "ValidationError",
    "VehicleCheck",
    "VehicleRecord",
    "WebPushSender",
    "detect",
    "open_store",
]
