"""PostgreSQL subscription store (asyncpg).

Each tracked vehicle is one row; the pending-update snapshot and push
endpoints are JSONB documents. Every operation is a single statement, so
row-level atomicity is all the consistency the pipeline needs. The claim
is a conditional ``UPDATE ... WHERE pending_update RETURNING``: only the
statement that flips the flag gets a row back.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import asyncpg
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from motwatch._constants import STORE_CONNECT_BASE_DELAY_S, STORE_CONNECT_RETRIES
from motwatch.exceptions import PersistenceError
from motwatch.models.tracking import (
    CheckOutcome,
    DeviceSubscription,
    SubscribeResult,
    TrackedVehicle,
    UnsubscribeResult,
    utcnow,
)

_logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS tracked_vehicles (
    id TEXT PRIMARY KEY,
    enabled BOOLEAN NOT NULL DEFAULT TRUE,
    baseline_test_date TIMESTAMPTZ,
    last_checked_at TIMESTAMPTZ NOT NULL,
    pending_update BOOLEAN NOT NULL DEFAULT FALSE,
    pending_update_details JSONB,
    pending_update_detected_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL,
    last_check_error TEXT,
    update_acknowledged_at TIMESTAMPTZ,
    CONSTRAINT pending_update_has_details
        CHECK (NOT pending_update OR pending_update_details IS NOT NULL)
);
CREATE INDEX IF NOT EXISTS tracked_vehicles_enabled_idx ON tracked_vehicles (enabled);

CREATE TABLE IF NOT EXISTS device_subscriptions (
    vehicle_id TEXT NOT NULL REFERENCES tracked_vehicles (id) ON DELETE CASCADE,
    device_id TEXT NOT NULL,
    endpoint JSONB NOT NULL,
    active BOOLEAN NOT NULL DEFAULT TRUE,
    last_notified_at TIMESTAMPTZ,
    subscribed_at TIMESTAMPTZ NOT NULL,
    deactivated_at TIMESTAMPTZ,
    user_agent TEXT,
    PRIMARY KEY (vehicle_id, device_id)
);
"""

_VEHICLE_COLUMNS = (
    "id, enabled, baseline_test_date, last_checked_at, pending_update, pending_update_details, "
    "pending_update_detected_at, created_at, last_check_error, update_acknowledged_at"
)
_DEVICE_COLUMNS = (
    "vehicle_id, device_id, endpoint, active, last_notified_at, subscribed_at, deactivated_at, user_agent"
)

# $3 = outcome is an update, $4 = latest upstream test date.
# All SET expressions see the pre-update row, so the guard is evaluated once per column
# against the same baseline.
_ADVANCES = "($3::boolean AND $4::timestamptz IS NOT NULL AND (baseline_test_date IS NULL OR baseline_test_date < $4))"

RECORD_CHECK_RESULT_SQL = f"""
UPDATE tracked_vehicles SET
    last_checked_at = $2,
    last_check_error = NULL,
    baseline_test_date = CASE WHEN {_ADVANCES} THEN $4 ELSE baseline_test_date END,
    pending_update = CASE WHEN {_ADVANCES} THEN TRUE ELSE pending_update END,
    pending_update_details = CASE WHEN {_ADVANCES} THEN $5::jsonb ELSE pending_update_details END,
    pending_update_detected_at = CASE WHEN {_ADVANCES} THEN $2 ELSE pending_update_detected_at END
WHERE id = $1
RETURNING {_VEHICLE_COLUMNS}
"""

CLAIM_PENDING_UPDATE_SQL = f"""
UPDATE tracked_vehicles
SET pending_update = FALSE, update_acknowledged_at = $2
WHERE id = $1 AND pending_update
RETURNING {_VEHICLE_COLUMNS}
"""

UPSERT_DEVICE_SQL = f"""
INSERT INTO device_subscriptions ({_DEVICE_COLUMNS})
VALUES ($1, $2, $3::jsonb, $4, $5, $6, $7, $8)
ON CONFLICT (vehicle_id, device_id) DO UPDATE SET
    endpoint = EXCLUDED.endpoint,
    active = EXCLUDED.active,
    last_notified_at = EXCLUDED.last_notified_at,
    subscribed_at = EXCLUDED.subscribed_at,
    deactivated_at = EXCLUDED.deactivated_at,
    user_agent = EXCLUDED.user_agent
"""


_DRIVER_ERRORS = (OSError, asyncpg.PostgresError, asyncpg.InterfaceError)


async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


def connect_retry_policy(
    retries: int = STORE_CONNECT_RETRIES,
    base_delay: float = STORE_CONNECT_BASE_DELAY_S,
) -> AsyncRetrying:
    """Exponential backoff for establishing the pool: ``base_delay * 2**n`` between attempts."""
    return AsyncRetrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_exponential(multiplier=base_delay),
        retry=retry_if_exception_type(_DRIVER_ERRORS),
        before_sleep=before_sleep_log(_logger, logging.WARNING),
    )


async def create_pool(
    dsn: str,
    *,
    retries: int = STORE_CONNECT_RETRIES,
    base_delay: float = STORE_CONNECT_BASE_DELAY_S,
    **pool_kwargs: Any,
) -> asyncpg.Pool:
    """Create a connection pool, retrying with exponential backoff.

    This is the only place persistence failures are retried; operation-level
    errors surface immediately as :class:`PersistenceError`.
    """
    policy = connect_retry_policy(retries, base_delay)
    try:
        return await policy(asyncpg.create_pool, dsn, init=_init_connection, **pool_kwargs)
    except RetryError as exc:
        cause = exc.last_attempt.exception()
        raise PersistenceError(f"Failed to connect to database after {retries + 1} attempts: {cause}") from cause


def _vehicle_from_row(row: Any) -> TrackedVehicle:
    return TrackedVehicle.model_validate(dict(row))


def _device_from_row(row: Any) -> DeviceSubscription:
    return DeviceSubscription.model_validate(dict(row))


class PostgresStore:
    """asyncpg-backed implementation of :class:`SubscriptionStore`."""

    def __init__(self, pool: asyncpg.Pool, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._pool = pool
        self._clock = clock

    @classmethod
    async def connect(cls, dsn: str, **pool_kwargs: Any) -> PostgresStore:
        pool = await create_pool(dsn, **pool_kwargs)
        store = cls(pool)
        await store.ensure_schema()
        return store

    @asynccontextmanager
    async def _acquire(self) -> AsyncIterator[asyncpg.Connection]:
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except _DRIVER_ERRORS as exc:
            raise PersistenceError(f"Database operation failed: {exc}") from exc

    async def ensure_schema(self) -> None:
        async with self._acquire() as conn:
            await conn.execute(SCHEMA_SQL)

    async def close(self) -> None:
        await self._pool.close()

    # ------------------------------------------------------------------
    # Vehicles
    # ------------------------------------------------------------------

    async def subscribe(self, vehicle_id: str) -> SubscribeResult:
        now = self._clock()
        async with self._acquire() as conn:
            inserted = await conn.fetchval(
                "INSERT INTO tracked_vehicles (id, enabled, last_checked_at, created_at) "
                "VALUES ($1, TRUE, $2, $2) ON CONFLICT (id) DO NOTHING RETURNING id",
                vehicle_id,
                now,
            )
        return SubscribeResult.CREATED if inserted is not None else SubscribeResult.ALREADY_EXISTS

    async def unsubscribe(self, vehicle_id: str) -> UnsubscribeResult:
        async with self._acquire() as conn:
            deleted = await conn.fetchval("DELETE FROM tracked_vehicles WHERE id = $1 RETURNING id", vehicle_id)
        return UnsubscribeResult.REMOVED if deleted is not None else UnsubscribeResult.NOT_FOUND

    async def get_vehicle(self, vehicle_id: str) -> TrackedVehicle | None:
        async with self._acquire() as conn:
            row = await conn.fetchrow(f"SELECT {_VEHICLE_COLUMNS} FROM tracked_vehicles WHERE id = $1", vehicle_id)
        return _vehicle_from_row(row) if row is not None else None

    async def list_enabled(self) -> list[TrackedVehicle]:
        async with self._acquire() as conn:
            rows = await conn.fetch(f"SELECT {_VEHICLE_COLUMNS} FROM tracked_vehicles WHERE enabled ORDER BY created_at, id")
        return [_vehicle_from_row(row) for row in rows]

    async def record_check_result(self, vehicle_id: str, outcome: CheckOutcome) -> TrackedVehicle | None:
        details = outcome.details.model_dump(mode="json", by_alias=True) if outcome.details is not None else None
        async with self._acquire() as conn:
            row = await conn.fetchrow(
                RECORD_CHECK_RESULT_SQL,
                vehicle_id,
                outcome.checked_at,
                outcome.kind.is_update,
                outcome.latest_test_date,
                details,
            )
        return _vehicle_from_row(row) if row is not None else None

    async def record_check_error(self, vehicle_id: str, message: str) -> None:
        async with self._acquire() as conn:
            await conn.execute(
                "UPDATE tracked_vehicles SET last_checked_at = $2, last_check_error = $3 WHERE id = $1",
                vehicle_id,
                self._clock(),
                message,
            )

    async def seed_baseline(self, vehicle_id: str, test_date: datetime) -> bool:
        async with self._acquire() as conn:
            seeded = await conn.fetchval(
                "UPDATE tracked_vehicles SET baseline_test_date = $2, last_checked_at = $3 "
                "WHERE id = $1 AND baseline_test_date IS NULL RETURNING id",
                vehicle_id,
                test_date,
                self._clock(),
            )
        return seeded is not None

    async def claim_pending_update(self, vehicle_id: str) -> TrackedVehicle | None:
        async with self._acquire() as conn:
            row = await conn.fetchrow(CLAIM_PENDING_UPDATE_SQL, vehicle_id, self._clock())
        return _vehicle_from_row(row) if row is not None else None

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    async def upsert_device(self, subscription: DeviceSubscription) -> None:
        async with self._acquire() as conn:
            await conn.execute(
                UPSERT_DEVICE_SQL,
                subscription.vehicle_id,
                subscription.device_id,
                subscription.endpoint.model_dump(mode="json", by_alias=True),
                subscription.active,
                subscription.last_notified_at,
                subscription.subscribed_at,
                subscription.deactivated_at,
                subscription.user_agent,
            )

    async def remove_device(self, vehicle_id: str, device_id: str) -> bool:
        async with self._acquire() as conn:
            deleted = await conn.fetchval(
                "DELETE FROM device_subscriptions WHERE vehicle_id = $1 AND device_id = $2 RETURNING device_id",
                vehicle_id,
                device_id,
            )
        return deleted is not None

    async def list_active_devices(self, vehicle_id: str) -> list[DeviceSubscription]:
        async with self._acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_DEVICE_COLUMNS} FROM device_subscriptions "
                "WHERE vehicle_id = $1 AND active ORDER BY subscribed_at, device_id",
                vehicle_id,
            )
        return [_device_from_row(row) for row in rows]

    async def mark_device_notified(self, vehicle_id: str, device_id: str) -> None:
        async with self._acquire() as conn:
            await conn.execute(
                "UPDATE device_subscriptions SET last_notified_at = $3 WHERE vehicle_id = $1 AND device_id = $2",
                vehicle_id,
                device_id,
                self._clock(),
            )

    async def deactivate_device(self, vehicle_id: str, device_id: str) -> None:
        async with self._acquire() as conn:
            await conn.execute(
                "UPDATE device_subscriptions SET active = FALSE, deactivated_at = $3 "
                "WHERE vehicle_id = $1 AND device_id = $2",
                vehicle_id,
                device_id,
                self._clock(),
            )
