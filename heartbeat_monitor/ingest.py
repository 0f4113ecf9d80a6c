from __future__ import annotations

import structlog

from heartbeat_monitor.errors import MissingHostError
from heartbeat_monitor.liveness import LivenessEngine
from heartbeat_monitor.models import PingAck, format_ts
from heartbeat_monitor.notifier import Notifier, dispatch_all


logger = structlog.get_logger(__name__)


def build_recovery_message(name: str, previous_alarm_ts: float | None) -> str:
    return f"{name} recovered from alarm ({format_ts(previous_alarm_ts)})"


class IngestHandler:
    def __init__(self, engine: LivenessEngine, notifier: Notifier) -> None:
        self.engine = engine
        self.notifier = notifier

    async def handle(self, name: str | None, interval: str | None = None) -> PingAck:
        """
        Record one ping. The recovery notice, if any, is sent before the ack is returned;
        its failure is logged and does not fail the ping.
        """
        if name is None or not str(name).strip():
            raise MissingHostError()
        outcome = await self.engine.record_ping(name, interval=interval)
        if outcome.recovered:
            await dispatch_all(self.notifier, [build_recovery_message(name, outcome.previous_alarm_ts)])
        return PingAck(ok=True, recovered=outcome.recovered)
