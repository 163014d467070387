"""`webhook-queue` command line entry point.

    webhook-queue drain            one pending batch + one retry batch, JSON summary
    webhook-queue watch            poll continuously until SIGINT/SIGTERM
    webhook-queue purge            delete terminal events past the retention window
    webhook-queue release-stale    fail events stuck in processing
    webhook-queue schedule         register the recurring rq-scheduler jobs

Exit status is 0 on success and 1 on any error.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from datetime import timedelta
from typing import TYPE_CHECKING

from webhook_intake.core.config import settings
from webhook_intake.core.logging import configure_logging, get_logger
from webhook_intake.db.session import Database
from webhook_intake.services.webhooks.factory import build_store, build_worker
from webhook_intake.services.webhooks.jobs import drain_queue, purge_queue
from webhook_intake.services.webhooks.scheduler import bootstrap_queue_drain_schedule

if TYPE_CHECKING:
    from collections.abc import Sequence

    from webhook_intake.core.config import Settings

logger = get_logger(__name__)


def _print_json(payload: object) -> None:
    print(json.dumps(payload, sort_keys=True))


async def _watch(config: Settings) -> None:
    database = Database.from_url(config.database_url)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - non-unix event loops
            pass
    try:
        worker = build_worker(config, build_store(database))
        await worker.run_forever(stop)
    finally:
        await database.dispose()


async def _release_stale(config: Settings, older_than_seconds: float | None) -> int:
    seconds = (
        older_than_seconds
        if older_than_seconds is not None
        else config.webhook_claim_timeout_seconds
    )
    database = Database.from_url(config.database_url)
    try:
        return await build_store(database).release_stale_claims(
            timedelta(seconds=seconds),
            config.webhook_max_attempts,
        )
    finally:
        await database.dispose()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="webhook-queue",
        description="Operate the webhook event queue.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("drain", help="Process one pending batch and one retry batch.")
    commands.add_parser("watch", help="Process the queue continuously.")

    purge = commands.add_parser("purge", help="Delete old completed/exhausted events.")
    purge.add_argument(
        "--older-than-days",
        type=int,
        default=None,
        help="Retention window (defaults to WEBHOOK_RETENTION_DAYS).",
    )

    release = commands.add_parser(
        "release-stale",
        help="Fail events whose processing claim has expired.",
    )
    release.add_argument(
        "--older-than-seconds",
        type=float,
        default=None,
        help="Claim age (defaults to WEBHOOK_CLAIM_TIMEOUT_SECONDS).",
    )

    schedule = commands.add_parser("schedule", help="Register the recurring drain job.")
    schedule.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between drains (defaults to WEBHOOK_DRAIN_SCHEDULE_INTERVAL_SECONDS).",
    )
    schedule.add_argument(
        "--no-purge",
        action="store_true",
        help="Do not register the daily purge job.",
    )
    return parser


def main(argv: Sequence[str] | None = None, *, config: Settings | None = None) -> int:
    args = _build_parser().parse_args(argv)
    config = config if config is not None else settings
    # stdout carries the command result.
    configure_logging(config.log_level, config.log_format, stream=sys.stderr)

    try:
        if args.command == "drain":
            _print_json(asyncio.run(drain_queue(config)))
        elif args.command == "watch":
            asyncio.run(_watch(config))
        elif args.command == "purge":
            deleted = asyncio.run(purge_queue(config, older_than_days=args.older_than_days))
            _print_json({"deleted": deleted})
        elif args.command == "release-stale":
            released = asyncio.run(_release_stale(config, args.older_than_seconds))
            _print_json({"released": released})
        elif args.command == "schedule":
            bootstrap_queue_drain_schedule(
                config,
                args.interval,
                include_purge=not args.no_purge,
            )
            _print_json({"scheduled": config.webhook_drain_schedule_id})
    except Exception as exc:
        logger.exception("webhook.cli.failed", extra={"command": args.command})
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
