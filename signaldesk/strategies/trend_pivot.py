from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

from signaldesk.bots.models import Alert, Direction, Position, TrendPivotMeta
from signaldesk.persistence.positions_store import PositionsStore
from signaldesk.services.trend import TrendService
from signaldesk.strategies.base import Strategy

if TYPE_CHECKING:
    from signaldesk.bots.engine import BotEngine

log = logging.getLogger("signaldesk.strategy.trend_pivot")

ANCHOR_TIMEFRAME = "4h"
DEFAULT_MAIN_TIMEFRAME = "15m"
SOURCE = "trend-pivot"
LADDER_STEPS = 3


def partial_exit_fraction(remaining: int) -> Decimal:
    """
    Share of the remaining notional to close when the main timeframe turns
    against the position, by how many ladder steps are left (the last one
    closes everything).
    """
    if remaining <= 1:
        return Decimal("1")
    if remaining == 2:
        return Decimal("0.5")
    return Decimal("0.33")


class TrendPivotStrategy(Strategy):
    """
    Every trend / pivot / strong pivot signal is written to the trend ledger
    as the one row for its timeframe, then the position is re-evaluated:

      - enter when the 4h anchor is directional and equals the main timeframe
      - exit fully when the 4h anchor turns against the entry direction
      - exit partially when an opposing main-timeframe signal flips the main
        trend while the anchor still holds
    """

    name = "trend-pivot"

    def __init__(self, store: PositionsStore, trend: TrendService):
        super().__init__(store)
        self.trend = trend

    @staticmethod
    def main_timeframe_for(bot: "BotEngine") -> str:
        for tf in bot.cfg.timeframe_trend:
            if tf != ANCHOR_TIMEFRAME:
                return tf
        return DEFAULT_MAIN_TIMEFRAME

    async def on_long_trend(self, bot: "BotEngine", alert: Alert) -> None:
        await self._on_signal(bot, alert, Direction.LONG)

    async def on_short_trend(self, bot: "BotEngine", alert: Alert) -> None:
        await self._on_signal(bot, alert, Direction.SHORT)

    async def on_long_pivot_point(self, bot: "BotEngine", alert: Alert) -> None:
        await self._on_signal(bot, alert, Direction.LONG)

    async def on_short_pivot_point(self, bot: "BotEngine", alert: Alert) -> None:
        await self._on_signal(bot, alert, Direction.SHORT)

    async def on_strong_long_pivot_point(self, bot: "BotEngine", alert: Alert) -> None:
        await self._on_signal(bot, alert, Direction.LONG)

    async def on_strong_short_pivot_point(self, bot: "BotEngine", alert: Alert) -> None:
        await self._on_signal(bot, alert, Direction.SHORT)

    async def _on_signal(self, bot: "BotEngine", alert: Alert, direction: Direction) -> None:
        timeframe = (alert.timeframe or DEFAULT_MAIN_TIMEFRAME).lower()
        row_name = f"{SOURCE}@{timeframe}"
        streak = 1
        for row in await self.trend.live_confirmations(alert.symbol, timeframe):
            if row.name == row_name and row.direction is direction:
                streak = int(row.meta.get("count", 0)) + 1
                break
        await self.trend.confirm(
            alert.symbol,
            timeframe,
            direction,
            source=SOURCE,
            meta={"name": row_name, "count": streak, "signal": alert.type.value},
        )

        main_tf = self.main_timeframe_for(bot)
        if timeframe not in (main_tf, ANCHOR_TIMEFRAME):
            log.debug("Bot %s: %s signal on %s recorded only", bot.name, alert.symbol, timeframe)
            return

        anchor = await self.trend.get_current_trend(alert.symbol, ANCHOR_TIMEFRAME)
        main = await self.trend.get_current_trend(alert.symbol, main_tf)
        log.info("Bot %s: %s anchor(4h)=%s main(%s)=%s", bot.name, alert.symbol, anchor.value, main_tf, main.value)

        existing = await self.store.find_open(bot.name, alert.symbol)
        if existing is None:
            await self._maybe_enter(bot, alert, anchor, main, main_tf)
            return

        meta = existing.meta
        if not isinstance(meta, TrendPivotMeta):
            log.warning("Bot %s: open %s position has no trend-pivot meta, skipping", bot.name, alert.symbol)
            return

        original = meta.original_direction
        if anchor is not Direction.NEUTRAL and anchor is not original:
            await self.close_position(bot, alert, existing, side=original, reason="4h trend reversed")
            return

        if timeframe == main_tf and direction is not original and main is original.opposite():
            await self._partial_exit(bot, alert, existing, meta, main_tf)

    async def _maybe_enter(
        self, bot: "BotEngine", alert: Alert, anchor: Direction, main: Direction, main_tf: str
    ) -> None:
        if anchor is Direction.NEUTRAL or anchor is not main:
            return
        if bot.cfg.direction not in ("both", anchor.value):
            log.info("Bot %s: %s %s entry not allowed for direction %s", bot.name, alert.symbol, anchor.value, bot.cfg.direction)
            return

        base_usd = bot.base_usd()
        if base_usd is None:
            await bot.notify(f"❌ {bot.name}: configuration error - baseUsd is not set")
            return

        await self.open_position(
            bot,
            alert,
            base_usd,
            side=anchor,
            meta=TrendPivotMeta(original_direction=anchor),
        )
        log.info("Bot %s: trend entry %s %s (4h + %s agree)", bot.name, anchor.value, alert.symbol, main_tf)

    async def _partial_exit(
        self, bot: "BotEngine", alert: Alert, position: Position, meta: TrendPivotMeta, main_tf: str
    ) -> None:
        fraction = partial_exit_fraction(LADDER_STEPS - meta.closed_confirmations)

        if fraction >= 1:
            await self.close_position(
                bot, alert, position, side=meta.original_direction, reason=f"{main_tf} trend reversed"
            )
            return

        updated = await self.partial_close(bot, alert, position, fraction, side=meta.original_direction)
        meta.closed_confirmations += 1
        await self.store.update_meta(updated, meta)
