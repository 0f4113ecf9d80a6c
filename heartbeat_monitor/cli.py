"""
Command line entry point.

    heartbeat-monitor serve            # HTTP ingest + internal sweep timer
    heartbeat-monitor sweep            # one sweep, for an external cron
    heartbeat-monitor hosts            # print the host listing as JSON
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import replace

import httpx
import structlog

from heartbeat_monitor.clock import SystemClock
from heartbeat_monitor.errors import StoreError
from heartbeat_monitor.liveness import LivenessEngine
from heartbeat_monitor.logs import configure_logging
from heartbeat_monitor.notifier import build_notifier
from heartbeat_monitor.settings import MonitorSettings
from heartbeat_monitor.store import build_store
from heartbeat_monitor.sweep import SweepScheduler


logger = structlog.get_logger(__name__)


def _engine(settings: MonitorSettings) -> LivenessEngine:
    store = build_store(settings.store_backend, db_path=settings.db_path)
    return LivenessEngine(
        store,
        default_interval=settings.default_interval,
        alarm_cooldown=settings.alarm_cooldown,
        clock=SystemClock(),
    )


async def run_sweep_once(settings: MonitorSettings) -> int:
    engine = _engine(settings)
    async with httpx.AsyncClient(headers={"User-Agent": "heartbeat-monitor"}) as client:
        notifier = build_notifier(
            client,
            alerts_enabled=settings.alerts_enabled,
            bot_token=settings.telegram_bot_token,
            chat_id=settings.telegram_chat_id,
        )
        sweeper = SweepScheduler(engine, notifier)
        try:
            events = await sweeper.run_tick()
        except StoreError as exc:
            logger.error("sweep_tick_failed", error=str(exc))
            return 1
    print(json.dumps({"ok": True, "down": [e.name for e in events]}))
    return 0


async def print_hosts(settings: MonitorSettings) -> int:
    engine = _engine(settings)
    try:
        hosts = await engine.list_hosts()
    except StoreError as exc:
        logger.error("list_hosts_failed", error=str(exc))
        return 1
    print(json.dumps([h.as_listing() for h in hosts], ensure_ascii=False, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="heartbeat-monitor", description="Dead-man's-switch heartbeat monitor")
    parser.add_argument("--db-path", default=None, help="SQLite file (overrides HEARTBEAT_DB_PATH)")
    parser.add_argument("--log-level", default=None, help="Log level (overrides LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP service")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    sub.add_parser("sweep", help="Run a single sweep and exit")
    sub.add_parser("hosts", help="Print all known hosts as JSON")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    settings = MonitorSettings()
    overrides: dict[str, object] = {}
    if args.db_path:
        overrides["db_path"] = args.db_path
    if args.log_level:
        overrides["log_level"] = str(args.log_level).upper()
    if args.command == "serve":
        if args.host:
            overrides["host"] = args.host
        if args.port:
            overrides["port"] = int(args.port)
    if overrides:
        settings = replace(settings, **overrides)

    try:
        settings.validate()
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    if args.command == "serve":
        from heartbeat_monitor.server import main as serve_main

        serve_main(settings)
        return 0
    if args.command == "sweep":
        return asyncio.run(run_sweep_once(settings))
    if args.command == "hosts":
        return asyncio.run(print_hosts(settings))
    return 2


if __name__ == "__main__":
    sys.exit(main())
