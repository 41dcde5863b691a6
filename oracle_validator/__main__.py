"""
Command line entry point.

    python -m oracle_validator serve
    python -m oracle_validator feed Mainnet [--heartbeat --timestamp MS]
    python -m oracle_validator validate <tx-hex> [--stage Mainnet]
    python -m oracle_validator sync [--force]
    python -m oracle_validator device --id 7 --key <hex> [--primary]
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from .config import STAGE_NAMES
from .events import EventLog
from .log_mask import install_secret_filter
from .net import AiohttpClient
from .notify import LogNotifier, Notifier, TelegramNotifier
from .settings import Settings, load_settings
from .store import ConfigStore
from .validator import CloudValidator
from .worker import FeedWorker

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-5s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger("oracle_validator")


def _notifier(http, settings: Settings) -> Notifier:
    if settings.telegram_token and settings.telegram_chat_id:
        return TelegramNotifier(http, settings.telegram_token, settings.telegram_chat_id)
    return LogNotifier()


async def _run_worker(args: argparse.Namespace, settings: Settings) -> int:
    store = ConfigStore(settings.db_path)
    events = EventLog(settings.events_path)

    async with AiohttpClient() as http:
        worker = FeedWorker(store, events, _notifier(http, settings), http)
        if args.command == "feed":
            await worker.handle_feed(args.stage, heartbeat=args.heartbeat, timestamp=args.timestamp)
        else:
            synced = await worker.sync(force=args.force)
            log.info("Sync %s, authorized stages: %s",
                     "done" if synced else "skipped", ", ".join(worker.authorized_stages()) or "none")
    return 0


async def _run_validate(args: argparse.Namespace, settings: Settings) -> int:
    api_keys = {"mainnet": settings.blockfrost_mainnet, "preprod": settings.blockfrost_preprod}
    async with AiohttpClient() as http:
        validator = CloudValidator(http, settings.signing_key, api_keys)
        response = await validator.handle({"kind": "price-update", "tx": args.tx, "stage": args.stage})
    print(json.dumps(response, indent=2))
    return 0 if response["statusCode"] == 200 else 1


def _run_device(args: argparse.Namespace, settings: Settings) -> int:
    store = ConfigStore(settings.db_path)
    if args.id is not None:
        store.set_device_id(args.id)
    if args.key:
        store.set_private_key(args.key.strip().lower())
    if args.primary is not None:
        store.set_is_primary(args.primary)
    log.info("Device %d, primary=%s, key set=%s",
             store.device_id(), store.is_primary(), bool(store.private_key()))
    return 0


def _run_serve(settings: Settings) -> int:
    import uvicorn

    from .server import create_app

    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port, log_level="info")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="oracle_validator", description="Oracle price validator")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Run the cloud validator HTTP server")

    feed = sub.add_parser("feed", help="Handle one feed notification")
    feed.add_argument("stage", choices=STAGE_NAMES)
    feed.add_argument("--heartbeat", action="store_true")
    feed.add_argument("--timestamp", type=int, default=None)

    validate = sub.add_parser("validate", help="Validate and sign a price update tx")
    validate.add_argument("tx")
    validate.add_argument("--stage", choices=STAGE_NAMES, default="Mainnet")

    sync = sub.add_parser("sync", help="Re-authorize stages and sync the push subscription")
    sync.add_argument("--force", action="store_true")

    device = sub.add_parser("device", help="Set device id, key and role")
    device.add_argument("--id", type=int, default=None)
    device.add_argument("--key", default=None)
    device.add_argument("--primary", action=argparse.BooleanOptionalAction, default=None)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    install_secret_filter()
    settings = load_settings()

    if args.command == "serve":
        return _run_serve(settings)
    if args.command == "device":
        return _run_device(args, settings)
    if args.command == "validate":
        return asyncio.run(_run_validate(args, settings))
    return asyncio.run(_run_worker(args, settings))


if __name__ == "__main__":
    sys.exit(main())
