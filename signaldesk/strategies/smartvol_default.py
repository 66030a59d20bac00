from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from signaldesk.bots.models import Alert
from signaldesk.persistence.positions_store import PositionsStore
from signaldesk.services.volume_up import CLOSE_VOLUME_THRESHOLD, VolumeUpService
from signaldesk.strategies.base import Strategy

if TYPE_CHECKING:
    from signaldesk.bots.engine import BotEngine

log = logging.getLogger("signaldesk.strategy.default")


class SmartVolDefaultStrategy(Strategy):
    """
    Trend-gated open / add / close with a fill-count ceiling.

    With `volume_gated_close` the first close signal only arms a VolumeUp
    wait state; later close signals go through once the cached reading
    reaches the threshold.
    """

    name = "default"
    default_max_fills = 4

    def __init__(self, store: PositionsStore, volume_up: Optional[VolumeUpService] = None):
        super().__init__(store)
        self.volume_up = volume_up

    async def on_open(self, bot: "BotEngine", alert: Alert) -> None:
        if bot.must_check_trend():
            trend_tf = bot.cfg.timeframe_trend[0]
            trend = await bot.trend.get_current_trend(alert.symbol, trend_tf)
            log.info("Bot %s: %s trend on %s is %s (bot direction %s)", bot.name, alert.symbol, trend_tf, trend.value, bot.cfg.direction)
            if trend.value != bot.cfg.direction:
                await bot.notify(
                    f"⏸ {bot.name}: trend {trend.value} does not match bot direction "
                    f"{bot.cfg.direction} ({trend_tf}), skipping {alert.symbol}"
                )
                return

        existing = await self.store.find_open(bot.name, alert.symbol)
        if existing:
            max_fills = bot.max_fills(self.default_max_fills)
            if existing.fills_count >= max_fills:
                await bot.notify(f"⚠️ {bot.name}: max fills reached for {alert.symbol}")
                return
            # already open -> add
            await self.on_add(bot, alert)
            return

        base_usd = bot.base_usd()
        if base_usd is None:
            await bot.notify(f"❌ {bot.name}: configuration error - baseUsd is not set")
            return

        await self.open_position(bot, alert, base_usd, side=bot.position_side())

    async def on_add(self, bot: "BotEngine", alert: Alert) -> None:
        if bot.must_check_trend():
            can_add = await bot.can_add_position(alert.symbol)
            if not can_add:
                tfs = ",".join(bot.cfg.timeframe_trend)
                await bot.notify(
                    f"⏸ {bot.name}: add to {alert.symbol} not allowed - trends disagree across ({tfs})"
                )
                return

        existing = await self.store.find_open(bot.name, alert.symbol)
        if not existing:
            await self.on_open(bot, alert)
            return

        if existing.fills_count >= bot.max_fills(self.default_max_fills):
            await bot.notify(f"⚠️ {bot.name}: max fills reached for {alert.symbol}")
            return

        add_usd = bot.add_usd()
        if add_usd is None:
            await bot.notify(f"❌ {bot.name}: configuration error - addUsd is not set")
            return

        await self.add_to_position(bot, alert, existing, add_usd, side=bot.position_side())

    async def on_close(self, bot: "BotEngine", alert: Alert) -> None:
        if bot.must_check_trend():
            if await bot.should_close_position(alert.symbol):
                await bot.notify(
                    f"🔄 {bot.name}: main trend ({bot.main_timeframe()}) reversed, closing {alert.symbol}"
                )
            else:
                log.info("Bot %s: main trend unchanged, closing %s on signal", bot.name, alert.symbol)

        existing = await self.store.find_open(bot.name, alert.symbol)
        if not existing:
            await bot.notify(f"⚠️ {bot.name}: no open {alert.symbol} position found, close skipped")
            return

        if bot.cfg.volume_gated_close and self.volume_up is not None:
            if not await self._volume_gate_passed(bot, alert):
                return

        await self.close_position(bot, alert, existing, side=bot.position_side())
        if self.volume_up is not None:
            self.volume_up.mark_position_closed(alert.symbol, bot.name)

    async def on_big_close(self, bot: "BotEngine", alert: Alert) -> None:
        existing = await self.store.find_open(bot.name, alert.symbol)
        if not existing:
            return
        await self.close_position(bot, alert, existing, side=bot.position_side(), reason="big close")
        if self.volume_up is not None:
            self.volume_up.mark_position_closed(alert.symbol, bot.name)

    async def _volume_gate_passed(self, bot: "BotEngine", alert: Alert) -> bool:
        assert self.volume_up is not None
        state = self.volume_up.get_close_state(alert.symbol, bot.name)
        if state is None:
            reading = None
            if alert.timeframe:
                reading = self.volume_up.get_volume_up(alert.symbol, alert.timeframe)
            if reading is None:
                reading = self.volume_up.latest_for_symbol(alert.symbol)
            seed = reading.volume if reading else 0.0
            self.volume_up.init_close_state(alert.symbol, bot.name, seed)
            await bot.notify(
                f"⏳ {bot.name}: close {alert.symbol} armed, waiting for VolumeUp >= "
                f"{CLOSE_VOLUME_THRESHOLD:g} (now {seed:g})"
            )
            return False

        if not self.volume_up.can_close_position(alert.symbol, bot.name):
            await bot.notify(
                f"⏳ {bot.name}: still waiting to close {alert.symbol}, VolumeUp "
                f"{state.current_volume:g} < {CLOSE_VOLUME_THRESHOLD:g}"
            )
            return False
        return True
