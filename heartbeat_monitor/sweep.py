"""Periodic staleness sweeps."""

from __future__ import annotations

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from heartbeat_monitor.liveness import LivenessEngine
from heartbeat_monitor.models import DownEvent, format_ts
from heartbeat_monitor.notifier import Notifier, dispatch_all


logger = structlog.get_logger(__name__)

SWEEP_JOB_ID = "heartbeat-sweep"


def build_down_message(event: DownEvent) -> str:
    return f"{event.name} is down, last seen: {format_ts(event.last_ping_ts)}"


class SweepScheduler:
    def __init__(self, engine: LivenessEngine, notifier: Notifier, *, interval_seconds: int = 60) -> None:
        self.engine = engine
        self.notifier = notifier
        self.interval_seconds = max(1, int(interval_seconds))
        self.scheduler: AsyncIOScheduler | None = None

    async def run_tick(self, now: float | None = None) -> list[DownEvent]:
        """
        One sweep: evaluate all hosts as of a single ``now`` and notify every host found down.
        Returns only after every notification has finished (successfully or not).
        """
        ts = self.engine.clock.now() if now is None else float(now)
        events = await self.engine.evaluate_all(ts)
        results = await dispatch_all(self.notifier, [build_down_message(e) for e in events])
        logger.info(
            "sweep_completed",
            now=ts,
            down=len(events),
            notified=sum(1 for ok in results if ok),
        )
        return events

    async def _scheduled_tick(self) -> None:
        try:
            await self.run_tick()
        except Exception as exc:
            # The next tick retries; nothing is re-driven here.
            logger.error("sweep_tick_failed", error=f"{type(exc).__name__}: {exc}")

    def start(self) -> None:
        if self.scheduler is not None and self.scheduler.running:
            logger.warning("sweep_scheduler_already_running")
            return
        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._scheduled_tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=SWEEP_JOB_ID,
            name="heartbeat sweep",
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info("sweep_scheduler_started", interval_seconds=self.interval_seconds)

    def stop(self) -> None:
        if self.scheduler is None or not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=False)
        self.scheduler = None
        logger.info("sweep_scheduler_stopped")

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running
