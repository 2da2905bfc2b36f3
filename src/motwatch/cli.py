"""Command-line entry point: ``motwatch serve | check-once | history REG``."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

from motwatch.client import MotHistoryClient
from motwatch.config import MotWatchConfig
from motwatch.exceptions import ConfigError, MotWatchError
from motwatch.models.history import latest_test
from motwatch.normalize import isoformat_or_none, normalize_registration
from motwatch.push import NotificationDispatcher, WebPushSender
from motwatch.scheduler import BatchScheduler
from motwatch.service import MotWatchService
from motwatch.store import open_store
from motwatch.web import MotWatchServer

_logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_service(config: MotWatchConfig) -> AsyncIterator[MotWatchService]:
    """Wire store, client, dispatcher and scheduler into a service."""
    store = await open_store(config.database_url)
    try:
        async with MotHistoryClient(config) as client:
            sender = WebPushSender(config.vapid_private_key, config.vapid_claims, timeout=config.request_timeout)
            dispatcher = NotificationDispatcher(store, sender, ttl=config.push_ttl)
            scheduler = BatchScheduler(store, client, dispatcher, config)
            yield MotWatchService(store, client, scheduler)
    finally:
        await store.close()


async def _serve(config: MotWatchConfig) -> None:
    async with open_service(config) as service:
        server = MotWatchServer(service, host=config.http_host, port=config.http_port)
        await server.start()
        service.scheduler.start()

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                pass
        try:
            await stop.wait()
        finally:
            _logger.info("Shutting down")
            await service.scheduler.stop()
            await server.stop()


async def _check_once(config: MotWatchConfig) -> int:
    async with open_service(config) as service:
        summary = await service.scheduler.run_once()
    if summary is None:
        return 1
    print(json.dumps(summary.model_dump(), indent=2))
    return 0


async def _history(config: MotWatchConfig, registration: str) -> int:
    reg = normalize_registration(registration)
    async with MotHistoryClient(config) as client:
        record = await client.fetch_history(reg)
    test = latest_test(record)
    print(f"{record.registration or reg}: {record.make} {record.model} ({record.primary_colour})")
    if test is None:
        print("No MOT tests recorded")
        return 0
    print(f"Latest test : {isoformat_or_none(test.completed_date)} {test.test_result}")
    print(f"Expires     : {isoformat_or_none(test.expiry_date) or '-'}")
    for defect in test.defects:
        flag = " (DANGEROUS)" if defect.dangerous else ""
        print(f"  - [{defect.type}] {defect.text}{flag}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="motwatch", description="MOT update detection and notification service")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable DEBUG logging")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("serve", help="Run the HTTP API and the background scheduler")
    sub.add_parser("check-once", help="Run a single scheduler pass and print its summary")
    history = sub.add_parser("history", help="Print the latest MOT test for a registration")
    history.add_argument("registration")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = MotWatchConfig.from_env()
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    try:
        if args.command == "serve":
            asyncio.run(_serve(config))
            return 0
        if args.command == "check-once":
            return asyncio.run(_check_once(config))
        return asyncio.run(_history(config, args.registration))
    except MotWatchError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nAborted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
