from __future__ import annotations

import os
from dataclasses import dataclass, field

from heartbeat_monitor.durations import parse_duration


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return bool(default)
    s = str(raw).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        return int(str(raw).strip())
    except ValueError:
        return int(default)


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return str(default)
    s = str(raw).strip()
    return s if s else str(default)


def _env_first(names: tuple[str, ...], default: str) -> str:
    for name in names:
        raw = os.getenv(name)
        if raw is not None and str(raw).strip():
            return str(raw).strip()
    return default


@dataclass(frozen=True)
class MonitorSettings:
    db_path: str = field(default_factory=lambda: _env_str("HEARTBEAT_DB_PATH", "/data/heartbeat.db"))
    # sqlite | memory
    store_backend: str = field(default_factory=lambda: _env_str("HEARTBEAT_STORE", "sqlite").lower())

    # Duration tokens, e.g. "-5 minutes" or "90s".
    default_interval: str = field(
        default_factory=lambda: _env_first(("HEARTBEAT_INTERVAL", "INTERVAL"), "-5 minutes")
    )
    alarm_cooldown: str = field(
        default_factory=lambda: _env_first(("HEARTBEAT_ALARM_TIMEOUT", "ALARM_TIMEOUT"), "-1 hour")
    )

    # Alerting
    alerts_enabled: bool = field(default_factory=lambda: _env_bool("HEARTBEAT_ALERTS_ENABLED", True))
    telegram_bot_token: str = field(
        default_factory=lambda: _env_first(("HEARTBEAT_TELEGRAM_TOKEN", "TELEGRAM_TOKEN", "TELEGRAM_BOT_TOKEN"), "")
    )
    telegram_chat_id: str = field(
        default_factory=lambda: _env_first(("HEARTBEAT_TELEGRAM_CHAT_ID", "CHAT_ID", "TELEGRAM_CHAT_ID"), "")
    )

    # Internal sweep timer. Disable when an external cron hits POST /sweep instead.
    sweep_enabled: bool = field(default_factory=lambda: _env_bool("HEARTBEAT_SWEEP_ENABLED", True))
    sweep_interval_seconds: int = field(default_factory=lambda: _env_int("HEARTBEAT_SWEEP_INTERVAL_SECONDS", 60))
    # Bearer token required by POST /sweep; the endpoint is off while empty.
    sweep_token: str = field(default_factory=lambda: os.getenv("HEARTBEAT_SWEEP_TOKEN", "").strip())

    host: str = field(default_factory=lambda: _env_str("HEARTBEAT_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _env_int("HEARTBEAT_PORT", 8787))
    log_level: str = field(default_factory=lambda: _env_str("LOG_LEVEL", "INFO").upper())

    def validate(self) -> None:
        """Raise ValueError if a duration or the store backend cannot be used."""
        for label, token in (("default_interval", self.default_interval), ("alarm_cooldown", self.alarm_cooldown)):
            try:
                parse_duration(token)
            except ValueError as exc:
                raise ValueError(f"{label}: {exc}") from exc
        if self.store_backend not in {"sqlite", "memory"}:
            raise ValueError(f"store_backend: unknown backend {self.store_backend!r}")
        if self.sweep_interval_seconds < 1:
            raise ValueError("sweep_interval_seconds must be >= 1")
