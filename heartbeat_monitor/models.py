from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


def format_ts(ts: float | None) -> str:
    """Render a unix timestamp the way SQLite's ``datetime('now')`` does; empty for None."""
    if ts is None:
        return ""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


@dataclass(frozen=True)
class HostRecord:
    name: str
    last_ping_ts: float
    interval: str | None = None
    # None while healthy; the only health flag that is persisted.
    alarmed_ts: float | None = None

    @property
    def is_down(self) -> bool:
        return self.alarmed_ts is not None

    def as_listing(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "pinged": format_ts(self.last_ping_ts),
            "alarmed": format_ts(self.alarmed_ts),
            "interval": self.interval or "",
            "last_ping_ts": self.last_ping_ts,
            "alarmed_ts": self.alarmed_ts,
        }


@dataclass(frozen=True)
class RecoveryOutcome:
    recovered: bool
    previous_alarm_ts: float | None = None
    # True when the ping was older than the stored one and was dropped.
    ignored: bool = False


@dataclass(frozen=True)
class DownEvent:
    name: str
    last_ping_ts: float


@dataclass(frozen=True)
class PingAck:
    ok: bool
    recovered: bool
