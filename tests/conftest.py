from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from motwatch.config import MotWatchConfig
from motwatch.exceptions import PushDeliveryError, PushGoneError, UpstreamError
from motwatch.models.tracking import PushEndpoint
from motwatch.store.memory import MemoryStore

TOKEN_URL = "https://login.example.test/oauth2/v2.0/token"
API_BASE = "https://history.example.test"


def mot_test(completed: str, result: str = "PASSED", **extra: Any) -> dict[str, Any]:
    return {
        "completedDate": completed,
        "testResult": result,
        "expiryDate": extra.pop("expiryDate", None),
        "odometerValue": "42000",
        "odometerUnit": "MI",
        "motTestNumber": extra.pop("motTestNumber", "100000000001"),
        "defects": extra.pop("defects", []),
        **extra,
    }


def vehicle_payload(registration: str, *tests: dict[str, Any]) -> dict[str, Any]:
    return {
        "registration": registration,
        "make": "FORD",
        "model": "FIESTA",
        "primaryColour": "Blue",
        "fuelType": "Petrol",
        "firstUsedDate": "2015-03-01",
        "motTests": list(tests),
    }


def push_endpoint(name: str) -> PushEndpoint:
    return PushEndpoint(
        endpoint=f"https://push.example.test/send/{name}",
        keys={"p256dh": f"p256dh-{name}", "auth": f"auth-{name}"},
    )


@dataclass
class FakeMotBackend:
    """Stands in for both the token endpoint and the history API."""

    vehicles: dict[str, dict[str, Any]] = field(default_factory=dict)
    errors: dict[str, tuple[int, str]] = field(default_factory=dict)
    unauthorized_once: set[str] = field(default_factory=set)
    token_should_fail: bool = False
    token_delay: float = 0.0
    expires_in: int = 3600
    token_calls: int = 0
    history_calls: list[str] = field(default_factory=list)
    seen_headers: list[dict[str, str]] = field(default_factory=list)

    async def post_form(self, url: str, *, data: Mapping[str, str], basic_auth: tuple[str, str]) -> dict[str, Any]:
        self.token_calls += 1
        if self.token_delay:
            await asyncio.sleep(self.token_delay)
        if self.token_should_fail:
            raise UpstreamError("HTTP 401 from token endpoint", status_code=401, code="invalid_client", endpoint=url)
        return {
            "access_token": f"token-{self.token_calls}",
            "token_type": "Bearer",
            "expires_in": self.expires_in,
        }

    async def get_json(self, url: str, *, headers: Mapping[str, str]) -> dict[str, Any]:
        registration = url.rsplit("/", 1)[-1]
        self.history_calls.append(registration)
        self.seen_headers.append(dict(headers))
        if registration in self.unauthorized_once:
            self.unauthorized_once.discard(registration)
            raise UpstreamError("HTTP 401", status_code=401, code="UNAUTHORIZED", endpoint=url)
        if registration in self.errors:
            status, code = self.errors[registration]
            raise UpstreamError(f"HTTP {status}", status_code=status, code=code, endpoint=url, request_id="req-1")
        if registration not in self.vehicles:
            raise UpstreamError("HTTP 404", status_code=404, endpoint=url)
        return self.vehicles[registration]


@dataclass
class FakePushSender:
    gone: set[str] = field(default_factory=set)
    failing: set[str] = field(default_factory=set)
    sent: list[tuple[str, str, int]] = field(default_factory=list)

    async def send(self, endpoint: PushEndpoint, payload: str, *, ttl: int) -> None:
        if endpoint.endpoint in self.gone:
            raise PushGoneError("gone", status_code=410)
        if endpoint.endpoint in self.failing:
            raise PushDeliveryError("push service unavailable", status_code=503)
        self.sent.append((endpoint.endpoint, payload, ttl))


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 8, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def config() -> MotWatchConfig:
    return MotWatchConfig(
        token_url=TOKEN_URL,
        client_id="client-id",
        client_secret="client-secret",
        api_key="api-key",
        scope="https://tapi.example.test/.default",
        api_base_url=API_BASE,
        vapid_private_key="vapid-private",
        vapid_mailto="ops@example.test",
    )


@pytest.fixture
def backend() -> FakeMotBackend:
    return FakeMotBackend()


@pytest.fixture
def sender() -> FakePushSender:
    return FakePushSender()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def store(clock: StepClock) -> MemoryStore:
    return MemoryStore(clock=clock)
