"""Periodic batch scheduler: fetch, detect, persist, dispatch."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime

from motwatch.client import MotHistoryClient
from motwatch.config import MotWatchConfig
from motwatch.detect import UpdateKind, detect
from motwatch.models.history import latest_test
from motwatch.models.results import DispatchResult, RunSummary
from motwatch.models.tracking import CheckOutcome, TrackedVehicle, UpdateDetails, utcnow
from motwatch.push import NotificationDispatcher
from motwatch.store.base import SubscriptionStore

_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class VehicleCheck:
    """What one check did to one vehicle."""

    vehicle_id: str
    outcome: CheckOutcome
    #: True when this check advanced the baseline and raised the pending flag.
    applied: bool
    dispatch: DispatchResult | None = None

    @property
    def kind(self) -> UpdateKind:
        return self.outcome.kind


def _batches(items: Sequence[TrackedVehicle], size: int) -> list[Sequence[TrackedVehicle]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class BatchScheduler:
    """Checks every enabled vehicle in ordered, rate-limited batches.

    Runs never overlap: :meth:`run_once` returns ``None`` when another run
    is still in progress.

    Parameters
    ----------
    store
        Subscription store holding the tracked vehicles.
    client
        Entered :class:`MotHistoryClient`.
    dispatcher
        Push fan-out invoked for every applied update.
    config
        Supplies ``batch_size``, ``batch_delay`` and ``batch_concurrency``.
    sleep
        Awaitable used for the inter-batch delay (tests pass a recorder).
    clock
        Source of ``checked_at`` timestamps.
    """

    def __init__(
        self,
        store: SubscriptionStore,
        client: MotHistoryClient,
        dispatcher: NotificationDispatcher,
        config: MotWatchConfig,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._client = client
        self._dispatcher = dispatcher
        self._batch_size = config.batch_size
        self._batch_delay = config.batch_delay
        self._interval = config.scheduler_interval
        self._concurrency = config.batch_concurrency
        self._sleep = sleep
        self._clock = clock
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Single vehicle
    # ------------------------------------------------------------------

    async def check_vehicle(self, vehicle: TrackedVehicle) -> VehicleCheck:
        """Fetch, classify and persist one vehicle, dispatching on update.

        Upstream and store errors propagate. Dispatch errors are logged and
        never fail the check.
        """
        record = await self._client.fetch_history(vehicle.id)
        test = latest_test(record)
        latest_date = test.completed_date if test is not None else None
        kind = detect(latest_date, vehicle.baseline_test_date)

        details = None
        if kind.is_update and test is not None:
            details = UpdateDetails.from_test(record, test, vehicle.baseline_test_date)
        outcome = CheckOutcome(kind=kind, latest_test_date=latest_date, details=details, checked_at=self._clock())

        updated = await self._store.record_check_result(vehicle.id, outcome)
        applied = (
            kind.is_update
            and updated is not None
            and updated.pending_update
            and updated.pending_update_detected_at == outcome.checked_at
        )
        if kind.is_update and not applied:
            _logger.info("Discarding stale %s for %s", kind, vehicle.id)
        if not applied or details is None:
            return VehicleCheck(vehicle.id, outcome, applied=False)

        _logger.info("%s for %s: latest test %s", kind, vehicle.id, latest_date)
        dispatch: DispatchResult | None = None
        try:
            dispatch = await self._dispatcher.dispatch(vehicle.id, details)
        except Exception:
            _logger.exception("Notification dispatch failed for %s", vehicle.id)
        return VehicleCheck(vehicle.id, outcome, applied=True, dispatch=dispatch)

    async def _check_safely(self, vehicle: TrackedVehicle) -> VehicleCheck | None:
        try:
            return await self.check_vehicle(vehicle)
        except Exception as exc:
            _logger.warning("Check failed for %s: %s", vehicle.id, exc)
            try:
                await self._store.record_check_error(vehicle.id, str(exc) or type(exc).__name__)
            except Exception:
                _logger.exception("Failed to record check error for %s", vehicle.id)
            return None

    async def _run_batch(self, batch: Sequence[TrackedVehicle]) -> list[VehicleCheck | None]:
        if self._concurrency <= 1:
            return [await self._check_safely(vehicle) for vehicle in batch]

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _limited(vehicle: TrackedVehicle) -> VehicleCheck | None:
            async with semaphore:
                return await self._check_safely(vehicle)

        return list(await asyncio.gather(*(_limited(v) for v in batch)))

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def run_once(self) -> RunSummary | None:
        """Check every enabled vehicle once.

        Returns the run summary, or ``None`` if a run was already in
        progress and this trigger was skipped.
        """
        if self._running:
            _logger.warning("Scheduler run already in progress, skipping trigger")
            return None
        self._running = True
        try:
            return await self._run()
        finally:
            self._running = False

    async def _run(self) -> RunSummary:
        vehicles = await self._store.list_enabled()
        total = len(vehicles)
        _logger.info("Starting MOT check for %d vehicles", total)

        checked = updated = errors = 0
        batches = _batches(vehicles, self._batch_size)
        for index, batch in enumerate(batches):
            for result in await self._run_batch(batch):
                checked += 1
                if result is None:
                    errors += 1
                elif result.applied:
                    updated += 1
            if index < len(batches) - 1 and self._batch_delay > 0:
                await self._sleep(self._batch_delay)

        summary = RunSummary(total=total, checked=checked, updated=updated, errors=errors)
        _logger.info(
            "MOT check complete: %d total, %d checked, %d updated, %d errors",
            summary.total,
            summary.checked,
            summary.updated,
            summary.errors,
        )
        return summary

    async def run_forever(self) -> None:
        """Run immediately, then once per interval until :meth:`stop`."""
        while not self._shutdown_event.is_set():
            try:
                await self.run_once()
            except Exception:
                _logger.exception("Scheduler run failed")
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self._interval)
            except TimeoutError:
                continue

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            _logger.warning("Scheduler is already running")
            return
        self._shutdown_event.clear()
        self._task = asyncio.create_task(self.run_forever())
        _logger.info("Scheduler started (interval %.0fs)", self._interval)

    async def stop(self, timeout: float = 30.0) -> None:
        if self._task is None:
            return
        self._shutdown_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except TimeoutError:
            self._task.cancel()
        self._task = None
        _logger.info("Scheduler stopped")
