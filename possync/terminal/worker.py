#!/usr/bin/env python3
# possync/terminal/worker.py - terminal sync worker
"""
Terminal sync worker.

    python -m possync.terminal.worker set-endpoint https://central.example.com
    python -m possync.terminal.worker sweep --model sale
    python -m possync.terminal.worker run --interval 30
"""

import argparse
import json
import logging
import sys
import time
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from possync.config.settings import settings
from possync.core.exceptions import SyncError
from possync.core.logging import setup_logging
from .batcher import Batcher, SWEEP_ORDER
from .config import CLOUD_API_URL_KEY, load_sync_config
from .dispatcher import SyncQueueDispatcher
from .local_store import LocalStore
from .transport import CentralClient

logger = logging.getLogger("possync.terminal.worker")

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="POS terminal sync worker")
    parser.add_argument("--database-url", default=settings.local_database_url, help="Terminal database URL")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    commands = parser.add_subparsers(dest="command", required=True)

    sweep = commands.add_parser("sweep", help="Push every unsynced record in chunks")
    sweep.add_argument("--model", choices=SWEEP_ORDER, help="Only this model (default: all, parents first)")
    sweep.add_argument("--chunk-size", type=int, help="Records per request")

    commands.add_parser("dispatch", help="Run one sync queue cycle")

    run = commands.add_parser("run", help="Dispatch the queue in a loop")
    run.add_argument("--interval", type=float, default=settings.sync_dispatch_interval_seconds,
                     help="Seconds between cycles")
    run.add_argument("--sweep", action="store_true", help="Also sweep all models every cycle")

    commands.add_parser("status", help="Show sync queue counts and recent errors")
    commands.add_parser("requeue-failed", help="Move FAILED entries back to PENDING")
    commands.add_parser("cleanup", help="Ask central to remove empty placeholders")

    endpoint = commands.add_parser("set-endpoint", help=f"Store the central URL ({CLOUD_API_URL_KEY})")
    endpoint.add_argument("url")

    return parser

def _print(data):
    print(json.dumps(data, indent=2, default=str))

def run_loop(
    store: LocalStore,
    interval: float,
    sweep: bool = False,
    session=None,
    sleep=time.sleep,
    cycles: Optional[int] = None
):
    """
    Dispatch (and optionally sweep) every `interval` seconds.

    The endpoint is re-read from the store before each cycle, so
    `set-endpoint` takes effect without a restart. Errors end the cycle,
    never the worker.
    """
    logger.info(f"🚀 Sync worker started (every {interval}s)")
    dispatcher = None
    completed = 0
    while cycles is None or completed < cycles:
        try:
            config = load_sync_config(store)
            client = CentralClient.from_config(config, session=session)
            if dispatcher is None:
                dispatcher = SyncQueueDispatcher(store, client, config)
            else:
                dispatcher.reconfigure(client, config)

            if sweep:
                Batcher(store, client, config).sync_all()
            dispatcher.dispatch()
        except SyncError as e:
            logger.error(f"❌ Sync cycle failed: {e}")
        except SQLAlchemyError as e:
            logger.error(f"❌ Local database error, retrying next cycle: {e}")

        completed += 1
        if cycles is None or completed < cycles:
            sleep(interval)

def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging("DEBUG" if args.verbose else settings.log_level)

    store = LocalStore.from_url(args.database_url)

    if args.command == "set-endpoint":
        store.set_setting(CLOUD_API_URL_KEY, args.url.strip().rstrip("/"))
        logger.info(f"✅ Central endpoint set to {args.url}")
        return 0
    if args.command == "status":
        _print(store.queue_status().model_dump(mode="json"))
        return 0
    if args.command == "requeue-failed":
        _print({"requeued": store.requeue_failed()})
        return 0

    try:
        config = load_sync_config(store)
    except SyncError as e:
        logger.error(f"❌ {e}")
        return 2

    client = CentralClient.from_config(config)
    batcher = Batcher(store, client, config)
    dispatcher = SyncQueueDispatcher(store, client, config)

    try:
        if args.command == "sweep":
            if args.model:
                reports = [batcher.sync_model(args.model, args.chunk_size)]
            else:
                reports = batcher.sync_all(args.chunk_size)
            _print([report.model_dump(mode="json") for report in reports])
            return 0 if all(report.success for report in reports) else 1

        if args.command == "dispatch":
            report = dispatcher.dispatch()
            _print(report.model_dump(mode="json"))
            return 0 if not report.errors else 1

        if args.command == "cleanup":
            _print(client.trigger_cleanup())
            return 0

        if args.command == "run":
            run_loop(store, args.interval, args.sweep)
    except KeyboardInterrupt:
        logger.info("Sync worker stopped")
    except SyncError as e:
        logger.error(f"❌ {e}")
        return 1
    return 0

if __name__ == "__main__":
    sys.exit(main())
