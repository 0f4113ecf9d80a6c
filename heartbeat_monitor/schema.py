from __future__ import annotations

from pydantic import BaseModel, Field


class HostOut(BaseModel):
    name: str
    # Rendered UTC timestamps; "alarmed" is empty while the host is healthy.
    pinged: str
    alarmed: str = ""
    interval: str = ""
    last_ping_ts: float
    alarmed_ts: float | None = None


class DownEventOut(BaseModel):
    name: str
    last_ping_ts: float


class SweepOut(BaseModel):
    ok: bool = True
    now: float
    down: list[DownEventOut] = Field(default_factory=list)
