from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Body, FastAPI, HTTPException, Query
from pydantic import BaseModel

from signaldesk.bots.registry import BotsRegistry
from signaldesk.bots.router import AlertsRouter, AlertValidationError
from signaldesk.bots.scheduler import BotsScheduler
from signaldesk.core.config import Settings, load_bots_file, settings
from signaldesk.core.logging_setup import configure_logging
from signaldesk.persistence.audit import Audit
from signaldesk.persistence.db import DB
from signaldesk.persistence.positions_store import PositionsStore
from signaldesk.persistence.trend_store import TrendStore
from signaldesk.services.telegram import TelegramService
from signaldesk.services.trend import TrendService
from signaldesk.services.volume_up import VolumeUpService, close_state_to_dict, reading_to_dict

log = logging.getLogger("signaldesk.api")

app = FastAPI(title="SignalDesk alert router")


@dataclass
class Services:
    db: DB
    audit: Audit
    store: PositionsStore
    trend: TrendService
    volume_up: VolumeUpService
    telegram: TelegramService
    registry: BotsRegistry
    router: AlertsRouter
    scheduler: BotsScheduler

    def start(self) -> None:
        self.volume_up.start()
        self.scheduler.start()
        for strategy in self.registry.domination_strategies:
            strategy.start()

    async def stop(self) -> None:
        for strategy in self.registry.domination_strategies:
            await strategy.stop()
        await self.scheduler.stop()
        await self.volume_up.stop()


def build_services(s: Settings) -> Services:
    db = DB(s.DB_PATH)
    audit = Audit(db, s.AUDIT_JSONL_PATH)
    store = PositionsStore(db)
    trend = TrendService(TrendStore(db))
    volume_up = VolumeUpService(cleanup_interval=float(s.VOLUME_UP_CLEANUP_SECONDS))

    bots, channels = load_bots_file(s.BOTS_CONFIG_PATH)
    telegram = TelegramService(channels, api_url=s.TELEGRAM_API_URL)

    registry = BotsRegistry(s, store, trend, volume_up, telegram, audit=audit).load(bots)
    return Services(
        db=db,
        audit=audit,
        store=store,
        trend=trend,
        volume_up=volume_up,
        telegram=telegram,
        registry=registry,
        router=AlertsRouter(registry, volume_up, audit),
        scheduler=BotsScheduler(registry),
    )


services: Optional[Services] = None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _services() -> Services:
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialised")
    return services


@app.on_event("startup")
async def _startup():
    """Fail-fast config validation, then wire services and background tasks."""
    global services
    configure_logging(settings.LOG_LEVEL)
    try:
        warnings = settings.validate_runtime()
        for w in warnings:
            log.warning("[CONFIG WARNING] %s", w)
    except ValueError as e:
        log.error("%s", e)
        raise

    if services is None:
        services = build_services(settings)
    await services.trend.purge_expired()
    services.start()
    log.info("Started with %d bot(s)", len(services.registry.all()))


@app.on_event("shutdown")
async def _shutdown():
    if services is not None:
        await services.stop()
        log.info("Background tasks stopped")


# =========================
# Alerts
# =========================
@app.post("/alerts")
async def post_alert(payload: Any = Body(...)):
    svc = _services()
    try:
        result = await svc.router.handle(payload)
    except AlertValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, **result}


@app.get("/alerts/volume-up")
def volume_up_all():
    vu = _services().volume_up
    data = [reading_to_dict(r) for r in vu.get_all_active_volume_up()]
    return {"ok": True, "message": f"Found {len(data)} active Volume Up records", "data": data, "stats": vu.get_stats()}


@app.post("/alerts/volume-up/clear")
def volume_up_clear():
    _services().volume_up.clear_all()
    return {"ok": True, "message": "All Volume Up data cleared"}


@app.get("/alerts/volume-up/close-states")
def volume_up_close_states():
    data = [close_state_to_dict(s) for s in _services().volume_up.get_all_close_states()]
    return {"ok": True, "message": f"Found {len(data)} active close states", "data": data, "count": len(data)}


@app.get("/alerts/volume-up/close-states/{symbol}/{bot_name}")
def volume_up_close_state(symbol: str, bot_name: str):
    symbol = symbol.upper()
    state = _services().volume_up.get_close_state(symbol, bot_name)
    if state is None:
        return {"ok": False, "message": f"No active close state for {symbol} ({bot_name})", "data": None}
    return {"ok": True, "message": f"Close state found for {symbol} ({bot_name})", "data": close_state_to_dict(state)}


@app.get("/alerts/volume-up/symbol/{symbol}")
def volume_up_by_symbol(symbol: str):
    symbol = symbol.upper()
    data = [reading_to_dict(r) for r in _services().volume_up.get_volume_up_by_symbol(symbol)]
    return {"ok": True, "message": f"Found {len(data)} active Volume Up records for {symbol}", "data": data, "count": len(data)}


@app.get("/alerts/volume-up/timeframe/{timeframe}")
def volume_up_by_timeframe(timeframe: str):
    timeframe = timeframe.lower()
    data = [reading_to_dict(r) for r in _services().volume_up.get_volume_up_by_timeframe(timeframe)]
    return {
        "ok": True,
        "message": f"Found {len(data)} active Volume Up records for timeframe {timeframe}",
        "data": data,
        "count": len(data),
    }


@app.get("/alerts/volume-up/{symbol}")
def volume_up_one(symbol: str, timeframe: Optional[str] = Query(default=None)):
    if not timeframe:
        raise HTTPException(status_code=400, detail="timeframe query parameter is required")
    symbol, timeframe = symbol.upper(), timeframe.lower()
    reading = _services().volume_up.get_volume_up(symbol, timeframe)
    if reading is None:
        return {"ok": False, "message": f"No active Volume Up data for {symbol} ({timeframe})", "data": None}
    return {"ok": True, "message": f"Volume Up data found for {symbol} ({timeframe})", "data": reading_to_dict(reading)}


@app.get("/alerts/test-telegram/{channel}")
def test_telegram(channel: str):
    tg = _services().telegram
    if tg.channel(channel) is None:
        raise HTTPException(status_code=400, detail=f"Unknown telegram channel: {channel}")
    if not tg.test_connection(channel):
        return {"ok": False, "message": f"Telegram test failed for {channel}", "timestamp": _utc_now_iso()}
    try:
        tg.send_message(f"🧪 Test message from {channel} - {_utc_now_iso()}", channel)
    except Exception as e:
        log.error("Telegram test message via %s failed: %s", channel, e)
        return {"ok": False, "message": f"Telegram test error: {e}", "timestamp": _utc_now_iso()}
    return {"ok": True, "message": f"Telegram test successful for {channel}", "timestamp": _utc_now_iso()}


@app.post("/alerts/send-telegram/{channel}")
def send_telegram(channel: str, body: Dict[str, Any] = Body(...)):
    tg = _services().telegram
    if tg.channel(channel) is None:
        raise HTTPException(status_code=400, detail=f"Unknown telegram channel: {channel}")
    message = str(body.get("message") or "").strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message is required")
    try:
        sent = tg.send_message(message, channel)
    except Exception as e:
        log.error("Telegram send via %s failed: %s", channel, e)
        return {"ok": False, "message": f"Failed to send message: {e}", "timestamp": _utc_now_iso()}
    if not sent:
        return {"ok": False, "message": f"Channel {channel} is not usable", "timestamp": _utc_now_iso()}
    return {"ok": True, "message": f"Message sent successfully via {channel}", "timestamp": _utc_now_iso()}


# =========================
# Trend
# =========================
class TrendConfirmBody(BaseModel):
    symbol: str
    timeframe: str
    direction: str
    source: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None


@app.post("/trend/confirm")
async def trend_confirm(body: TrendConfirmBody):
    try:
        row = await _services().trend.confirm(
            body.symbol, body.timeframe, body.direction, source=body.source, meta=body.meta
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "expiresAt": row.expires_at_ms}


@app.get("/trend/current")
async def trend_current(symbol: str, timeframe: str):
    trend = await _services().trend.get_current_trend(symbol, timeframe)
    return {"symbol": symbol, "timeframe": timeframe, "trend": trend.value}


@app.get("/trend/agree")
async def trend_agree(symbol: str, timeframes: str):
    tfs: List[str] = [t.strip() for t in timeframes.split(",") if t.strip()]
    trend = await _services().trend.agree_all(symbol, tfs)
    return {"symbol": symbol, "timeframes": tfs, "trend": trend.value}


# =========================
# Scheduler
# =========================
@app.post("/scheduler/test-trend-report/{bot_name}")
async def test_trend_report(bot_name: str):
    svc = _services()
    bot = svc.registry.get(bot_name)
    if bot is None:
        return {"ok": False, "error": f"Bot {bot_name} not found", "availableBots": svc.registry.names()}
    sent = await svc.scheduler.send_trend_report(bot)
    return {"ok": sent, "message": f"Trend report sent for {bot_name}", "timestamp": _utc_now_iso()}


@app.post("/scheduler/send-all-trend-reports")
async def send_all_trend_reports():
    results = await _services().scheduler.send_all_trend_reports()
    return {
        "ok": True,
        "results": [{"bot": name, "status": "success" if ok else "error"} for name, ok in results.items()],
        "timestamp": _utc_now_iso(),
    }


# =========================
# Introspection
# =========================
@app.get("/health")
def health():
    svc = services
    return {
        "status": "ok",
        "bots": len(svc.registry.all()) if svc else 0,
        "bitget_keys_loaded": settings.has_bitget_keys(),
        "timestamp": _utc_now_iso(),
    }


@app.get("/bots")
def list_bots():
    out = []
    for bot in _services().registry.all():
        c = bot.cfg
        out.append(
            {
                "name": c.name,
                "strategy": bot.strategy.name,
                "prod": c.prod,
                "direction": c.direction,
                "timeframe_trend": c.timeframe_trend,
                "symbol_filter": c.symbol_filter,
                "telegram_channel": c.telegram_channel,
            }
        )
    return {"count": len(out), "bots": out}


@app.get("/positions/{bot_name}/summary")
async def positions_summary(bot_name: str, prices: Optional[str] = None):
    """`prices` is an optional CSV of SYMBOL:PRICE pairs used to mark positions."""
    current: Dict[str, str] = {}
    for pair in (prices or "").split(","):
        if ":" in pair:
            sym, px = pair.split(":", 1)
            current[sym.strip().upper()] = px.strip()
    try:
        return await _services().store.get_bot_summary(bot_name, current)
    except ArithmeticError as e:
        raise HTTPException(status_code=400, detail=f"Invalid prices: {e}")


def serve() -> None:
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT, log_config=None)


if __name__ == "__main__":
    serve()
