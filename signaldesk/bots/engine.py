# signaldesk/bots/engine.py
from __future__ import annotations

import logging
import math
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Dict, Optional

from signaldesk.bots.interfaces import ExchangeGateway, Notifier, TrendProvider
from signaldesk.bots.locks import KeyedLocks
from signaldesk.bots.models import Alert, AlertType, Direction
from signaldesk.core.config import BotConfig
from signaldesk.core.timeframes import main_timeframe

if TYPE_CHECKING:
    from signaldesk.strategies.base import Strategy

log = logging.getLogger("signaldesk.engine")

# alert type -> Strategy handler
HANDLERS: Dict[AlertType, str] = {
    AlertType.SMART_OPEN: "on_open",
    AlertType.SMART_VOL_ADD: "on_add",
    AlertType.SMART_CLOSE: "on_close",
    AlertType.SMART_BIG_CLOSE: "on_big_close",
    AlertType.SMART_BIG_ADD: "on_big_add",
    AlertType.SMART_VOLUME_OPEN: "on_smart_volume_open",
    AlertType.BULLISH_VOLUME: "on_bullish_volume",
    AlertType.VOLUME_UP: "on_volume_up",
    AlertType.FIXED_SHORT_SYNC: "on_fixed_short_synchronization",
    AlertType.LIVE_SHORT_SYNC: "on_live_short_synchronization",
    AlertType.LONG_TREND: "on_long_trend",
    AlertType.SHORT_TREND: "on_short_trend",
    AlertType.LONG_PIVOT: "on_long_pivot_point",
    AlertType.SHORT_PIVOT: "on_short_pivot_point",
    AlertType.STRONG_LONG_PIVOT: "on_strong_long_pivot_point",
    AlertType.STRONG_SHORT_PIVOT: "on_strong_short_pivot_point",
    AlertType.BUYER_DOMINATION: "on_buyer_domination",
    AlertType.SELLER_DOMINATION: "on_seller_domination",
    AlertType.BUYER_CONTINUATION: "on_buyer_continuation",
    AlertType.SELLER_CONTINUATION: "on_seller_continuation",
    AlertType.BULL_RELSI: "on_bull_relsi",
    AlertType.BEAR_RELSI: "on_bear_relsi",
    AlertType.BULL_MARUBOZU: "on_bull_marubozu",
    AlertType.BEAR_MARUBOZU: "on_bear_marubozu",
    AlertType.BULL_ENGULFING: "on_bull_engulfing",
    AlertType.BEAR_ENGULFING: "on_bear_engulfing",
}


def _positive_decimal(value: Optional[float]) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(f) or f <= 0:
        return None
    return Decimal(str(value))


class BotEngine:
    """
    One configured bot: static config plus its exchange, notifier, trend provider
    and strategy. Alerts for the same symbol are processed one at a time.
    """

    def __init__(
        self,
        cfg: BotConfig,
        exchange: ExchangeGateway,
        notifier: Notifier,
        trend: TrendProvider,
        strategy: "Strategy",
    ):
        self.cfg = cfg
        self.exchange = exchange
        self.notifier = notifier
        self.trend = trend
        self.strategy = strategy
        self._locks = KeyedLocks()

    @property
    def name(self) -> str:
        return self.cfg.name

    async def notify(self, text: str) -> None:
        await self.notifier.send(text)

    # ---------- sizing ----------
    def base_usd(self) -> Optional[Decimal]:
        raw = self.cfg.smartvol.base_usd if self.cfg.smartvol else None
        value = _positive_decimal(raw)
        if value is None:
            log.error("Bot %s: baseUsd is missing or not a number (%r)", self.name, raw)
        return value

    def add_usd(self) -> Optional[Decimal]:
        base = self.base_usd()
        if base is None:
            return None
        raw = self.cfg.smartvol.add_fraction if self.cfg.smartvol else None
        fraction = _positive_decimal(raw)
        if fraction is None:
            log.error("Bot %s: addFraction is missing or not a number (%r)", self.name, raw)
            return None
        return (base * fraction).quantize(Decimal("1"), rounding=ROUND_HALF_UP)

    def leverage(self) -> int:
        return int(self.cfg.smartvol.leverage) if self.cfg.smartvol else 1

    def max_fills(self, default: int) -> int:
        return self.cfg.max_fills if self.cfg.max_fills is not None else default

    def position_side(self) -> Direction:
        return Direction.SHORT if self.cfg.direction == "short" else Direction.LONG

    # ---------- trend ----------
    def must_check_trend(self) -> bool:
        return bool(self.cfg.is_trended and self.cfg.timeframe_trend)

    def main_timeframe(self) -> Optional[str]:
        return main_timeframe(self.cfg.timeframe_trend)

    async def trend_agrees(self, symbol: str) -> Direction:
        return await self.trend.agree_all(symbol, self.cfg.timeframe_trend)

    async def trend_agrees_with_hierarchy(self, symbol: str) -> Direction:
        return await self.trend.agree_all_with_hierarchy(symbol, self.cfg.timeframe_trend)

    async def can_add_position(self, symbol: str) -> bool:
        return await self.trend.can_add_position(symbol, self.cfg.timeframe_trend, self.cfg.direction)

    async def should_close_position(self, symbol: str) -> bool:
        return await self.trend.should_close_position(symbol, self.cfg.timeframe_trend, self.cfg.direction)

    # ---------- dispatch ----------
    async def process(self, alert: Alert) -> None:
        handler_name = HANDLERS.get(alert.type)
        if handler_name is None:
            log.warning("Bot %s: unsupported alert type %s dropped", self.name, alert.type)
            return

        log.info("Bot %s processing %s %s @%s", self.name, alert.type.value, alert.symbol, alert.price)
        handler = getattr(self.strategy, handler_name)
        async with self._locks.hold(alert.symbol):
            await handler(self, alert)
