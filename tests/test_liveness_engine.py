from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import pytest

from heartbeat_monitor.clock import ManualClock
from heartbeat_monitor.errors import InvalidIntervalError, MissingHostError, StoreError
from heartbeat_monitor.liveness import LivenessEngine, is_stale, should_alarm
from heartbeat_monitor.models import DownEvent, HostRecord
from heartbeat_monitor.store import HostStore, MemoryHostStore, SqliteHostStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> HostStore:
    if request.param == "memory":
        return MemoryHostStore()
    return SqliteHostStore(str(tmp_path / "hosts.db"))


def _engine(store: HostStore, *, clock: ManualClock | None = None) -> LivenessEngine:
    return LivenessEngine(
        store,
        default_interval="-5 minutes",
        alarm_cooldown="300 seconds",
        clock=clock or ManualClock(0.0),
    )


def test_should_alarm_respects_interval_and_cooldown() -> None:
    healthy = HostRecord(name="a", last_ping_ts=0.0, interval="60s")
    assert is_stale(healthy, 30.0, 300.0) is False
    assert is_stale(healthy, 61.0, 300.0) is True
    assert should_alarm(healthy, 61.0, default_interval=300.0, alarm_cooldown=300.0) is True

    alarmed = HostRecord(name="a", last_ping_ts=0.0, interval="60s", alarmed_ts=90.0)
    assert should_alarm(alarmed, 120.0, default_interval=300.0, alarm_cooldown=300.0) is False
    assert should_alarm(alarmed, 390.0, default_interval=300.0, alarm_cooldown=300.0) is False
    assert should_alarm(alarmed, 391.0, default_interval=300.0, alarm_cooldown=300.0) is True


def test_missing_interval_falls_back_to_default() -> None:
    rec = HostRecord(name="a", last_ping_ts=0.0)
    assert is_stale(rec, 299.0, 300.0) is False
    assert is_stale(rec, 301.0, 300.0) is True


@pytest.mark.asyncio
async def test_scenario_a_first_detection(store: HostStore) -> None:
    engine = _engine(store)

    outcome = await engine.record_ping("hostA", now=0.0, interval="60s")
    assert outcome.recovered is False

    assert await engine.evaluate_all(30.0) == []

    events = await engine.evaluate_all(90.0)
    assert events == [DownEvent(name="hostA", last_ping_ts=0.0)]
    rec = await store.get("hostA")
    assert rec is not None
    assert rec.alarmed_ts == 90.0
    assert rec.is_down is True


@pytest.mark.asyncio
async def test_scenario_b_cooldown_gates_renotification(store: HostStore) -> None:
    engine = _engine(store)
    await engine.record_ping("hostA", now=0.0, interval="60s")
    assert len(await engine.evaluate_all(90.0)) == 1

    assert await engine.evaluate_all(120.0) == []

    events = await engine.evaluate_all(400.0)
    assert events == [DownEvent(name="hostA", last_ping_ts=0.0)]
    rec = await store.get("hostA")
    assert rec is not None and rec.alarmed_ts == 400.0


@pytest.mark.asyncio
async def test_scenario_c_ping_while_alarmed_recovers_once(store: HostStore) -> None:
    engine = _engine(store)
    await engine.record_ping("hostA", now=0.0, interval="60s")
    await engine.evaluate_all(90.0)

    outcome = await engine.record_ping("hostA", now=95.0)
    assert outcome.recovered is True
    assert outcome.previous_alarm_ts == 90.0
    rec = await store.get("hostA")
    assert rec is not None
    assert rec.alarmed_ts is None
    assert rec.last_ping_ts == 95.0
    # The per-host interval survives a ping that does not carry one.
    assert rec.interval == "60s"

    assert await engine.evaluate_all(96.0) == []

    again = await engine.record_ping("hostA", now=97.0)
    assert again.recovered is False


@pytest.mark.asyncio
async def test_scenario_d_only_stale_host_reported(store: HostStore) -> None:
    engine = _engine(store)
    await engine.record_ping("stale", now=0.0, interval="60s")
    await engine.record_ping("fresh", now=80.0, interval="60s")

    events = await engine.evaluate_all(90.0)
    assert [e.name for e in events] == ["stale"]


@pytest.mark.asyncio
async def test_never_pinged_hosts_are_never_reported(store: HostStore) -> None:
    engine = _engine(store)
    assert await engine.evaluate_all(10_000.0) == []


@pytest.mark.asyncio
async def test_repeated_sweeps_at_same_instant_do_not_realarm(store: HostStore) -> None:
    engine = _engine(store)
    await engine.record_ping("hostA", now=0.0, interval="60s")

    first = await engine.evaluate_all(90.0)
    assert len(first) == 1
    for _ in range(3):
        assert await engine.evaluate_all(90.0) == []


@pytest.mark.asyncio
async def test_ping_while_healthy_is_not_a_recovery(store: HostStore) -> None:
    engine = _engine(store)
    assert (await engine.record_ping("h", now=1.0)).recovered is False
    assert (await engine.record_ping("h", now=2.0)).recovered is False


@pytest.mark.asyncio
async def test_out_of_order_ping_is_ignored(store: HostStore) -> None:
    engine = _engine(store)
    await engine.record_ping("h", now=100.0)

    outcome = await engine.record_ping("h", now=50.0)
    assert outcome.ignored is True
    assert outcome.recovered is False
    rec = await store.get("h")
    assert rec is not None and rec.last_ping_ts == 100.0


@pytest.mark.asyncio
async def test_record_ping_uses_clock_when_now_omitted(store: HostStore) -> None:
    clock = ManualClock(1234.0)
    engine = _engine(store, clock=clock)
    await engine.record_ping("h")
    rec = await store.get("h")
    assert rec is not None and rec.last_ping_ts == 1234.0

    clock.advance(301.0)
    events = await engine.evaluate_all()
    assert [e.name for e in events] == ["h"]
    rec = await store.get("h")
    assert rec is not None and rec.alarmed_ts == 1535.0


@pytest.mark.asyncio
async def test_record_ping_rejects_blank_name_and_bad_interval_without_writing(store: HostStore) -> None:
    engine = _engine(store)
    with pytest.raises(MissingHostError):
        await engine.record_ping("", now=1.0)
    with pytest.raises(MissingHostError):
        await engine.record_ping("   ", now=1.0)
    with pytest.raises(InvalidIntervalError):
        await engine.record_ping("h", now=1.0, interval="soon")
    assert await store.list_all() == []


@pytest.mark.asyncio
async def test_host_names_are_case_sensitive(store: HostStore) -> None:
    engine = _engine(store)
    await engine.record_ping("Host", now=0.0)
    await engine.record_ping("host", now=0.0)
    assert sorted(h.name for h in await engine.list_hosts()) == ["Host", "host"]


class _WrappedStore:
    def __init__(self, inner: HostStore) -> None:
        self.inner = inner

    async def get(self, name: str) -> HostRecord | None:
        return await self.inner.get(name)

    async def upsert(self, name: str, fields: Mapping[str, Any]) -> HostRecord:
        return await self.inner.upsert(name, fields)

    async def list_all(self) -> list[HostRecord]:
        return await self.inner.list_all()


class _PingDuringListingStore(_WrappedStore):
    """Lands a ping right after the sweep has taken its snapshot."""

    def __init__(self, inner: HostStore) -> None:
        super().__init__(inner)
        self.engine: LivenessEngine | None = None
        self.ping_at: float | None = None

    async def list_all(self) -> list[HostRecord]:
        snapshot = await super().list_all()
        if self.engine is not None and self.ping_at is not None:
            await self.engine.record_ping("racer", now=self.ping_at)
        return snapshot


@pytest.mark.asyncio
async def test_ping_racing_a_sweep_is_not_overwritten_by_stale_alarm(store: HostStore) -> None:
    racing = _PingDuringListingStore(store)
    engine = _engine(racing)
    await engine.record_ping("racer", now=0.0, interval="60s")

    racing.engine = engine
    racing.ping_at = 89.0
    events = await engine.evaluate_all(90.0)

    assert events == []
    rec = await store.get("racer")
    assert rec is not None
    assert rec.alarmed_ts is None
    assert rec.last_ping_ts == 89.0


class _FlakyStore(_WrappedStore):
    def __init__(self, inner: HostStore, broken: str) -> None:
        super().__init__(inner)
        self.broken = broken

    async def upsert(self, name: str, fields: Mapping[str, Any]) -> HostRecord:
        if name == self.broken and "last_ping_ts" not in fields:
            raise StoreError("disk on fire")
        return await super().upsert(name, fields)


@pytest.mark.asyncio
async def test_store_failure_for_one_host_does_not_affect_others(store: HostStore) -> None:
    engine = _engine(_FlakyStore(store, broken="bad"))
    await engine.record_ping("bad", now=0.0, interval="60s")
    await engine.record_ping("good", now=0.0, interval="60s")

    events = await engine.evaluate_all(90.0)
    assert [e.name for e in events] == ["good"]
    bad = await store.get("bad")
    assert bad is not None and bad.alarmed_ts is None
    good = await store.get("good")
    assert good is not None and good.alarmed_ts == 90.0


class _UnlistableStore(MemoryHostStore):
    async def list_all(self) -> list[HostRecord]:
        raise StoreError("cannot list")


@pytest.mark.asyncio
async def test_listing_failure_aborts_the_sweep() -> None:
    engine = _engine(_UnlistableStore())
    with pytest.raises(StoreError):
        await engine.evaluate_all(90.0)


@pytest.mark.asyncio
async def test_alarm_never_predates_last_ping(store: HostStore) -> None:
    engine = _engine(store)
    await engine.record_ping("h", now=10.0, interval="30s")
    for t in (20.0, 41.0, 100.0, 400.0, 800.0):
        await engine.evaluate_all(t)
        rec = await store.get("h")
        assert rec is not None
        assert rec.alarmed_ts is None or rec.alarmed_ts >= rec.last_ping_ts


def test_engine_rejects_bad_configuration() -> None:
    with pytest.raises(ValueError):
        LivenessEngine(MemoryHostStore(), default_interval="nope")
    with pytest.raises(ValueError):
        LivenessEngine(MemoryHostStore(), alarm_cooldown="0")
