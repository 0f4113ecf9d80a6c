from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Iterable, Protocol

import httpx
import structlog


logger = structlog.get_logger(__name__)

TELEGRAM_MAX_MESSAGE_LEN = 3900


class Notifier(Protocol):
    async def send(self, text: str) -> bool: ...


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str
    chat_id: str


def split_telegram_message(text: str, *, max_len: int = TELEGRAM_MAX_MESSAGE_LEN) -> list[str]:
    s = (text or "").strip()
    if not s:
        return [""]

    max_len = max(1, int(max_len))
    parts: list[str] = []
    while s:
        if len(s) <= max_len:
            parts.append(s)
            break
        cut = s.rfind("\n", 0, max_len + 1)
        if cut < max_len * 0.6:
            cut = max_len
        chunk = s[:cut].rstrip()
        parts.append(chunk)
        s = s[cut:].lstrip()
    return parts


async def send_telegram_message(client: httpx.AsyncClient, config: TelegramConfig, text: str) -> tuple[bool, dict]:
    url = f"https://api.telegram.org/bot{config.bot_token}/sendMessage"
    payload = {"chat_id": config.chat_id, "text": text}
    try:
        resp = await client.post(url, json=payload, timeout=15.0)
        data = resp.json()
        return bool(data.get("ok")), data
    except Exception as e:
        msg = f"{type(e).__name__}: {e}"
        if config.bot_token:
            msg = msg.replace(config.bot_token, "<redacted>")
        return False, {"ok": False, "error": msg}


class TelegramNotifier:
    """Sends every message to one Telegram chat. Transport errors are reported, never raised."""

    def __init__(self, client: httpx.AsyncClient, config: TelegramConfig) -> None:
        self.client = client
        self.config = config

    async def send(self, text: str) -> bool:
        ok_all = True
        for part in split_telegram_message(text):
            ok, resp = await send_telegram_message(self.client, self.config, part)
            if not ok:
                logger.warning("notification_failed", sink="telegram", error=resp.get("error") or resp.get("description"))
            ok_all = ok_all and ok
        return ok_all


class LogNotifier:
    """Sink used when no Telegram destination is configured: the message only reaches the log."""

    async def send(self, text: str) -> bool:
        logger.info("notification_logged", text=text)
        return True


def build_notifier(
    client: httpx.AsyncClient,
    *,
    alerts_enabled: bool,
    bot_token: str,
    chat_id: str,
) -> Notifier:
    if not alerts_enabled:
        return LogNotifier()
    if not bot_token or not chat_id:
        logger.warning("telegram_not_configured")
        return LogNotifier()
    return TelegramNotifier(client, TelegramConfig(bot_token=bot_token, chat_id=chat_id))


async def _send_quietly(notifier: Notifier, text: str) -> bool:
    try:
        return bool(await notifier.send(text))
    except Exception as exc:
        logger.warning("notification_failed", error=f"{type(exc).__name__}: {exc}", text=text)
        return False


async def dispatch_all(notifier: Notifier, messages: Iterable[str]) -> list[bool]:
    """
    Fire every message at once and wait for all of them. A failed send is logged and
    counted as False; it never cancels or fails the others.
    """
    texts = list(messages)
    if not texts:
        return []
    return list(await asyncio.gather(*(_send_quietly(notifier, t) for t in texts)))
