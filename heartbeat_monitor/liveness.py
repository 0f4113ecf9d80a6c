"""
Liveness state machine.

A host is either healthy (``alarmed_ts`` unset) or down (``alarmed_ts`` set).
Pings move it to healthy; sweeps that find it stale move it to down, and
re-alarm a down host only once the cooldown since the previous alarm has
elapsed. The engine decides and persists transitions; it never talks to the
notification sink, callers act on the returned outcomes.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import AsyncIterator

import structlog

from heartbeat_monitor.clock import Clock, SystemClock
from heartbeat_monitor.durations import parse_duration
from heartbeat_monitor.errors import InvalidIntervalError, MissingHostError
from heartbeat_monitor.models import DownEvent, HostRecord, RecoveryOutcome
from heartbeat_monitor.store import HostStore


logger = structlog.get_logger(__name__)


def effective_interval_seconds(record: HostRecord, default_interval: float) -> float:
    if record.interval:
        return parse_duration(record.interval)
    return float(default_interval)


def is_stale(record: HostRecord, now: float, default_interval: float) -> bool:
    return record.last_ping_ts < now - effective_interval_seconds(record, default_interval)


def should_alarm(record: HostRecord, now: float, *, default_interval: float, alarm_cooldown: float) -> bool:
    if not is_stale(record, now, default_interval):
        return False
    if record.alarmed_ts is None:
        return True
    return record.alarmed_ts < now - float(alarm_cooldown)


class _KeyedLocks:
    """One asyncio.Lock per key, dropped again once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] <= 0:
                del self._users[key]
                del self._locks[key]


class LivenessEngine:
    def __init__(
        self,
        store: HostStore,
        *,
        default_interval: str = "-5 minutes",
        alarm_cooldown: str = "-1 hour",
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.clock: Clock = clock or SystemClock()
        self.default_interval = parse_duration(default_interval)
        self.alarm_cooldown = parse_duration(alarm_cooldown)
        self._locks = _KeyedLocks()

    def _now(self, now: float | None) -> float:
        return self.clock.now() if now is None else float(now)

    async def record_ping(self, name: str, now: float | None = None, interval: str | None = None) -> RecoveryOutcome:
        """
        Record a ping for ``name`` and report whether it ended an alarm.

        ``interval`` is stored verbatim when given; otherwise the host keeps whatever it had
        (nothing means the configured default). A ping older than the stored one is dropped.
        """
        if not name or not str(name).strip():
            raise MissingHostError()
        token = str(interval).strip() if interval is not None else ""
        if token:
            try:
                parse_duration(token)
            except ValueError as exc:
                raise InvalidIntervalError(token, str(exc)) from exc

        ts = self._now(now)
        async with self._locks.hold(name):
            current = await self.store.get(name)
            if current is not None and ts < current.last_ping_ts:
                logger.warning("ping_out_of_order", host=name, ping_ts=ts, last_ping_ts=current.last_ping_ts)
                return RecoveryOutcome(recovered=False, previous_alarm_ts=None, ignored=True)

            previous_alarm = current.alarmed_ts if current is not None else None
            fields: dict[str, object] = {"last_ping_ts": ts, "alarmed_ts": None}
            if token:
                fields["interval"] = token
            await self.store.upsert(name, fields)

        if previous_alarm is not None:
            logger.info("host_recovered", host=name, alarmed_ts=previous_alarm, ping_ts=ts)
        else:
            logger.debug("ping_recorded", host=name, ping_ts=ts, first_seen=current is None)
        return RecoveryOutcome(recovered=previous_alarm is not None, previous_alarm_ts=previous_alarm)

    async def evaluate_all(self, now: float | None = None) -> list[DownEvent]:
        """
        Evaluate every known host against one fixed ``now`` and commit new alarms.

        A failure to list hosts propagates. A failure for one host is logged and that host is
        skipped for this sweep.
        """
        ts = self._now(now)
        records = await self.store.list_all()
        events: list[DownEvent] = []
        for record in records:
            try:
                event = await self._evaluate_one(record, ts)
            except Exception as exc:
                logger.error("sweep_host_failed", host=record.name, error=f"{type(exc).__name__}: {exc}")
                continue
            if event is not None:
                events.append(event)
        return events

    async def _evaluate_one(self, record: HostRecord, now: float) -> DownEvent | None:
        if not self._should_alarm(record, now):
            return None
        async with self._locks.hold(record.name):
            # A ping may have landed after the listing; decide again on fresh state.
            fresh = await self.store.get(record.name)
            if fresh is None or not self._should_alarm(fresh, now):
                return None
            await self.store.upsert(fresh.name, {"alarmed_ts": now})
        logger.info("host_down", host=fresh.name, last_ping_ts=fresh.last_ping_ts, alarmed_ts=now, realarm=fresh.is_down)
        return DownEvent(name=fresh.name, last_ping_ts=fresh.last_ping_ts)

    def _should_alarm(self, record: HostRecord, now: float) -> bool:
        return should_alarm(record, now, default_interval=self.default_interval, alarm_cooldown=self.alarm_cooldown)

    async def list_hosts(self) -> list[HostRecord]:
        return await self.store.list_all()
