from __future__ import annotations

import asyncio
import hmac
import time
from typing import Any

import httpx
import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse

from heartbeat_monitor.clock import Clock, SystemClock
from heartbeat_monitor.errors import ClientInputError, StoreError
from heartbeat_monitor.ingest import IngestHandler
from heartbeat_monitor.liveness import LivenessEngine
from heartbeat_monitor.notifier import Notifier, build_notifier
from heartbeat_monitor.schema import DownEventOut, HostOut, SweepOut
from heartbeat_monitor.settings import MonitorSettings
from heartbeat_monitor.store import HostStore, SqliteHostStore, build_store
from heartbeat_monitor.sweep import SweepScheduler


logger = structlog.get_logger(__name__)


def _auth_header_token(req: Request) -> str:
    raw = req.headers.get("authorization") or ""
    if not raw:
        return ""
    parts = raw.split(None, 1)
    if len(parts) != 2:
        return ""
    scheme, rest = parts[0].strip().lower(), parts[1].strip()
    if scheme != "bearer":
        return ""
    return rest


def get_settings(req: Request) -> MonitorSettings:
    settings: Any = getattr(req.app.state, "settings", None)
    if not isinstance(settings, MonitorSettings):
        raise RuntimeError("Monitor settings not configured")
    return settings


def require_sweep_token(req: Request, settings: MonitorSettings = Depends(get_settings)) -> None:
    if not settings.sweep_token:
        raise HTTPException(status_code=503, detail="sweep_token_not_configured")
    token = _auth_header_token(req)
    if not token:
        raise HTTPException(status_code=401, detail="missing_bearer_token")
    if not hmac.compare_digest(token.strip(), settings.sweep_token.strip()):
        raise HTTPException(status_code=403, detail="invalid_sweep_token")


def create_app(
    settings: MonitorSettings | None = None,
    *,
    store: HostStore | None = None,
    notifier: Notifier | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    settings = settings or MonitorSettings()
    settings.validate()

    app = FastAPI(title="Heartbeat Monitor", version="0.1.0")
    app.state.settings = settings
    app.state.store = store or build_store(settings.store_backend, db_path=settings.db_path)
    app.state.http_client = httpx.AsyncClient(headers={"User-Agent": "heartbeat-monitor"})
    app.state.notifier = notifier or build_notifier(
        app.state.http_client,
        alerts_enabled=settings.alerts_enabled,
        bot_token=settings.telegram_bot_token,
        chat_id=settings.telegram_chat_id,
    )
    app.state.engine = LivenessEngine(
        app.state.store,
        default_interval=settings.default_interval,
        alarm_cooldown=settings.alarm_cooldown,
        clock=clock or SystemClock(),
    )
    app.state.ingest = IngestHandler(app.state.engine, app.state.notifier)
    app.state.sweeper = SweepScheduler(
        app.state.engine,
        app.state.notifier,
        interval_seconds=settings.sweep_interval_seconds,
    )

    @app.on_event("startup")
    async def _startup() -> None:
        if isinstance(app.state.store, SqliteHostStore):
            await asyncio.to_thread(app.state.store.ensure_schema)
        if settings.sweep_enabled:
            app.state.sweeper.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        app.state.sweeper.stop()
        await app.state.http_client.aclose()

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True, "ts": time.time()}

    # Older clients append to the path (/ping/<anything>); treat it as a plain ping.
    @app.api_route("/ping", methods=["GET", "POST"], response_class=PlainTextResponse)
    @app.api_route("/ping/{_suffix:path}", methods=["GET", "POST"], response_class=PlainTextResponse, include_in_schema=False)
    async def ping(req: Request, host: str | None = None, interval: str | None = None) -> PlainTextResponse:
        # Reporting hosts identify themselves with Origin; ?host= is for clients that cannot set it.
        name = req.headers.get("origin") or host
        try:
            ack = await app.state.ingest.handle(name, interval=interval)
        except ClientInputError as exc:
            raise HTTPException(status_code=400, detail=exc.code) from exc
        except StoreError as exc:
            logger.error("ping_store_failed", host=name, error=str(exc))
            raise HTTPException(status_code=503, detail="store_unavailable") from exc
        return PlainTextResponse("ok", headers={"X-Heartbeat-Recovered": "1" if ack.recovered else "0"})

    @app.get("/list", response_model=list[HostOut])
    @app.get("/list/{_suffix:path}", response_model=list[HostOut], include_in_schema=False)
    async def list_hosts() -> list[dict[str, Any]]:
        try:
            hosts = await app.state.engine.list_hosts()
        except StoreError as exc:
            raise HTTPException(status_code=503, detail="store_unavailable") from exc
        return [h.as_listing() for h in hosts]

    @app.post("/sweep", response_model=SweepOut)
    async def sweep(_auth: None = Depends(require_sweep_token)) -> SweepOut:
        now = app.state.engine.clock.now()
        try:
            events = await app.state.sweeper.run_tick(now)
        except StoreError as exc:
            logger.error("sweep_tick_failed", error=str(exc))
            raise HTTPException(status_code=503, detail="store_unavailable") from exc
        return SweepOut(now=now, down=[DownEventOut(name=e.name, last_ping_ts=e.last_ping_ts) for e in events])

    @app.api_route("/{full_path:path}", methods=["GET", "POST"], include_in_schema=False)
    async def not_found(full_path: str) -> PlainTextResponse:
        return PlainTextResponse("notok", status_code=404)

    return app
