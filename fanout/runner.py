"""Entry point: wire registry, tracker and router from settings, then route JSON-lines events."""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import IO, Any

from dotenv import load_dotenv

from fanout.delivery.journal import DeadLetterJournal
from fanout.delivery.tracker import DeliveryTracker, RetryPolicy
from fanout.delivery.transports import LoggingTransport, WebhookTransport
from fanout.errors import MalformedEventError
from fanout.logging_config import setup_logging
from fanout.registry import SubscriptionRegistry
from fanout.router import FanoutRouter
from fanout.settings import get_setting, load_settings
from fanout.subscriptions import apply_subscriptions, load_subscriptions_file

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fanout",
        description="Route object-store change events to filtered subscribers.",
    )
    parser.add_argument("--events", type=Path, help="JSON-lines file (default: stdin)")
    parser.add_argument("--subscriptions", type=Path, help="Subscription YAML file")
    parser.add_argument("--config-dir", type=Path, help="Directory holding settings.yaml")
    parser.add_argument(
        "--dry-run", action="store_true", help="Log deliveries instead of sending them"
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def _build_tracker(
    settings: dict[str, Any], dry_run: bool
) -> tuple[DeliveryTracker, LoggingTransport | WebhookTransport]:
    retry_cfg = get_setting(settings, "delivery.retry", {})
    journal_cfg = get_setting(settings, "delivery.journal", {})
    webhook_cfg = get_setting(settings, "delivery.webhook", {})
    if dry_run:
        transport: LoggingTransport | WebhookTransport = LoggingTransport()
    else:
        token = os.environ.get(webhook_cfg.get("token_env", "FANOUT_WEBHOOK_TOKEN"))
        transport = WebhookTransport(timeout=webhook_cfg.get("timeout", 10.0), token=token)
    journal = DeadLetterJournal(
        _PROJECT_ROOT / journal_cfg.get("db_path", "data/dead_letters.db"),
        busy_timeout=journal_cfg.get("busy_timeout", 5000),
    )
    return DeliveryTracker(
        transport,
        retry_policy=RetryPolicy(
            max_attempts=retry_cfg.get("max_attempts", 5),
            base_delay=retry_cfg.get("base_delay", 1.0),
            multiplier=retry_cfg.get("multiplier", 2.0),
            max_delay=retry_cfg.get("max_delay", 60.0),
        ),
        journal=journal,
    ), transport


def _build_router(
    settings: dict[str, Any], subscriptions_path: Path, dry_run: bool
) -> tuple[FanoutRouter, LoggingTransport | WebhookTransport]:
    registry = SubscriptionRegistry()
    if subscriptions_path.exists():
        ids = apply_subscriptions(registry, load_subscriptions_file(subscriptions_path))
        logger.info("Loaded %d subscription(s) from %s", len(ids), subscriptions_path)
    else:
        logger.warning("Subscription file %s not found; nothing will match", subscriptions_path)
    tracker, transport = _build_tracker(settings, dry_run)
    router = FanoutRouter(
        registry,
        tracker,
        remove_after_permanent_failures=get_setting(
            settings, "router.remove_after_permanent_failures", 3
        ),
    )
    return router, transport


def route_line(router: FanoutRouter, line: str) -> int:
    """Route one JSON line: a notification envelope or a single record."""
    data = json.loads(line)
    if isinstance(data, dict) and ("Records" in data or "Event" in data):
        return router.submit_notification(data)
    return router.submit(data)


async def route_stream(router: FanoutRouter, stream: IO[str]) -> tuple[int, int]:
    """Route every line of stream. Returns (matched, rejected). Malformed lines are skipped."""
    matched = rejected = 0
    while True:
        line = await asyncio.to_thread(stream.readline)
        if not line:
            break
        line = line.strip()
        if not line:
            continue
        try:
            matched += route_line(router, line)
        except (json.JSONDecodeError, MalformedEventError) as e:
            rejected += 1
            logger.warning("Rejected event: %s", e)
    return matched, rejected


async def main_async(args: argparse.Namespace) -> int:
    """Bootstrap -> route input -> wait for deliveries -> report. Returns exit code."""
    settings = load_settings(args.config_dir)
    setup_logging(_PROJECT_ROOT, settings, verbose=args.verbose)
    subscriptions_path = args.subscriptions or _PROJECT_ROOT / get_setting(
        settings, "subscriptions.file", "config/subscriptions.yaml"
    )
    router, transport = _build_router(settings, subscriptions_path, args.dry_run)
    tracker = router.tracker
    try:
        if args.events:
            with args.events.open(encoding="utf-8") as f:
                matched, rejected = await route_stream(router, f)
        else:
            matched, rejected = await route_stream(router, sys.stdin)
        await tracker.wait_idle()
    finally:
        await tracker.close()
        await transport.aclose()
    failed = len(tracker.failures())
    print(
        f"matched={matched} delivered={tracker.delivered_count} "
        f"dead_lettered={failed} rejected={rejected}"
    )
    return 1 if failed else 0


def main(argv: list[str] | None = None) -> int:
    """Synchronous entry for `python -m fanout` and the console script."""
    load_dotenv(_PROJECT_ROOT / ".env")
    args = _build_parser().parse_args(argv)
    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        return 130


__all__ = ["main", "route_line", "route_stream"]
