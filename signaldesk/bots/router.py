# signaldesk/bots/router.py
from __future__ import annotations

import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from signaldesk.bots.engine import BotEngine
from signaldesk.bots.models import ALERT_ALIASES, Alert, AlertKind, AlertType, kind_of
from signaldesk.bots.registry import BotsRegistry
from signaldesk.ops.context import clear_alert_id, set_alert_id
from signaldesk.persistence.audit import Audit
from signaldesk.services.volume_up import VolumeUpService

log = logging.getLogger("signaldesk.router")

# kinds accepted from the webhook; three-alerts types stay internal
ACCEPTED_KINDS = (AlertKind.SMARTVOL, AlertKind.TREND_PIVOT, AlertKind.DOMINATION)


class AlertValidationError(ValueError):
    """Malformed or unknown webhook payload."""


def _resolve_type(name: str) -> Optional[AlertType]:
    if name in ALERT_ALIASES:
        return ALERT_ALIASES[name]
    try:
        alert_type = AlertType(name)
    except ValueError:
        return None
    return alert_type if kind_of(alert_type) in ACCEPTED_KINDS else None


def parse_alert(payload: Any) -> Alert:
    """
    Validates a raw webhook body and returns a typed Alert.
    Raises AlertValidationError before any bot is touched.
    """
    if not isinstance(payload, dict):
        raise AlertValidationError("Invalid payload")
    if "alertName" not in payload:
        raise AlertValidationError("alertName is required")

    name = str(payload["alertName"]).strip()
    alert_type = _resolve_type(name)
    if alert_type is None:
        raise AlertValidationError(f"Unknown alert type: {name}")

    symbol = str(payload.get("symbol") or "").strip().upper()
    raw_price = payload.get("price")
    if not symbol or raw_price is None or str(raw_price).strip() == "":
        raise AlertValidationError("symbol and price are required")
    try:
        price = Decimal(str(raw_price).strip())
    except InvalidOperation:
        raise AlertValidationError(f"price must be numeric, got {raw_price!r}")
    if not price.is_finite():
        raise AlertValidationError(f"price must be numeric, got {raw_price!r}")
    if price <= 0:
        raise AlertValidationError(f"price must be positive, got {raw_price!r}")

    timeframe = payload.get("timeframe")
    timeframe = str(timeframe).strip().lower() if timeframe not in (None, "") else None

    volume: Optional[float] = None
    raw_volume = payload.get("volume")
    if raw_volume is not None and raw_volume != "":
        try:
            volume = float(raw_volume)
        except (TypeError, ValueError):
            raise AlertValidationError(f"volume must be numeric, got {raw_volume!r}")

    if alert_type is AlertType.VOLUME_UP and (volume is None or not timeframe):
        raise AlertValidationError("VolumeUp requires volume and timeframe")

    return Alert(
        kind=kind_of(alert_type),
        type=alert_type,
        symbol=symbol,
        price=price,
        timeframe=timeframe,
        volume=volume,
        raw_name=name,
    )


class AlertsRouter:
    """
    Webhook entry point: validate, record, fan out.

    Bots are processed one after another; a failing bot is logged and audited
    and never stops the remaining ones.
    """

    def __init__(self, registry: BotsRegistry, volume_up: VolumeUpService, audit: Optional[Audit] = None):
        self.registry = registry
        self.volume_up = volume_up
        self.audit = audit

    async def handle(self, payload: Any) -> Dict[str, Any]:
        alert_id = str(uuid.uuid4())
        set_alert_id(alert_id)
        try:
            try:
                alert = parse_alert(payload)
            except AlertValidationError as e:
                log.warning("Alert rejected: %s", e)
                await self._audit("REJECTED", details={"error": str(e), "payload": payload})
                raise

            log.info("Alert %s %s @%s tf=%s", alert.raw_name, alert.symbol, alert.price, alert.timeframe)
            await self._audit(
                "RECEIVED",
                symbol=alert.symbol,
                details={"alertName": alert.raw_name, "type": alert.type.value, "timeframe": alert.timeframe},
            )

            if alert.type is AlertType.VOLUME_UP:
                self.volume_up.save_volume_up(alert.symbol, alert.timeframe or "", alert.volume or 0.0)

            processed: List[str] = []
            failed: List[str] = []
            for bot in self.targets(alert):
                try:
                    await bot.process(alert)
                    processed.append(bot.name)
                except Exception as e:
                    log.warning("Bot %s failed on %s %s: %s", bot.name, alert.type.value, alert.symbol, e)
                    log.debug("Bot %s failure", bot.name, exc_info=True)
                    failed.append(bot.name)
                    await self._audit("FAILED", event_type="BOT", bot_name=bot.name, symbol=alert.symbol, details={"error": str(e)})

            return {"alert_id": alert_id, "processed": processed, "failed": failed}
        finally:
            clear_alert_id()

    def targets(self, alert: Alert) -> List[BotEngine]:
        out: List[BotEngine] = []
        for bot in self.registry.all():
            if alert.kind is AlertKind.DOMINATION and bot.cfg.strategy != "domination":
                continue
            if alert.kind is AlertKind.TREND_PIVOT and bot.cfg.strategy != "trend-pivot":
                continue
            symbols = bot.cfg.symbol_filter
            if symbols and alert.symbol not in symbols:
                continue
            out.append(bot)
        return out

    async def _audit(
        self,
        action: str,
        event_type: str = "ALERT",
        bot_name: Optional[str] = None,
        symbol: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self.audit is None:
            return
        try:
            await self.audit.aevent(event_type, action=action, bot_name=bot_name, symbol=symbol, details=details)
        except Exception:
            log.exception("Audit %s/%s failed", event_type, action)
