"""
Duration tokens.

Intervals are written as SQLite ``datetime()`` modifiers such as ``-5 minutes``,
which is what the ``INTERVAL`` and ``ALARM_TIMEOUT`` variables hold. Compact forms (``90s``,
``1h30m``) and bare second counts are accepted too. The sign is ignored since
an interval is a span, not a direction.
"""

from __future__ import annotations

import re


_UNIT_SECONDS = {
    "s": 1.0,
    "sec": 1.0,
    "secs": 1.0,
    "second": 1.0,
    "seconds": 1.0,
    "m": 60.0,
    "min": 60.0,
    "mins": 60.0,
    "minute": 60.0,
    "minutes": 60.0,
    "h": 3600.0,
    "hr": 3600.0,
    "hrs": 3600.0,
    "hour": 3600.0,
    "hours": 3600.0,
    "d": 86400.0,
    "day": 86400.0,
    "days": 86400.0,
}

_NUMBER_RE = re.compile(r"^\d+(?:\.\d+)?$")
_MODIFIER_RE = re.compile(r"^(\d+(?:\.\d+)?)\s+([a-z]+)$")
_COMPACT_PART_RE = re.compile(r"(\d+(?:\.\d+)?)([a-z]+)")


def parse_duration(token: str) -> float:
    """Return the number of seconds named by ``token``; raise ValueError if it names none."""
    s = str(token or "").strip().lower()
    if s[:1] in {"+", "-"}:
        s = s[1:].strip()
    if not s:
        raise ValueError("empty duration")

    if _NUMBER_RE.match(s):
        seconds = float(s)
    else:
        m = _MODIFIER_RE.match(s)
        if m:
            seconds = float(m.group(1)) * _unit(m.group(2))
        else:
            seconds = _parse_compact(s)

    if seconds <= 0:
        raise ValueError(f"duration must be positive: {token!r}")
    return seconds


def _unit(name: str) -> float:
    try:
        return _UNIT_SECONDS[name]
    except KeyError:
        raise ValueError(f"unknown duration unit: {name!r}") from None


def _parse_compact(s: str) -> float:
    pos = 0
    total = 0.0
    for m in _COMPACT_PART_RE.finditer(s):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _unit(m.group(2))
        pos = m.end()
    if pos == 0 or pos != len(s):
        raise ValueError(f"unparseable duration: {s!r}")
    return total

