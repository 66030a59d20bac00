from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, Tuple

from signaldesk.bots.models import Alert
from signaldesk.strategies.base import Strategy

if TYPE_CHECKING:
    from signaldesk.bots.engine import BotEngine

log = logging.getLogger("signaldesk.strategy.partial_close")

OPEN_TIMEFRAME = "1h"
FULL_CLOSE_TIMEFRAME = "4h"
HALF = Decimal("0.5")
BIG_VOLUME_NOTICE = 1_000_000


@dataclass
class PartialCloseState:
    close_count: int = 0
    last_update: float = 0.0


class SmartVolPartialCloseStrategy(Strategy):
    """
    Opens on 1h signals only. 4h close signals close everything; other close
    signals walk a ladder: arm, then sell half, then close the rest.
    Ladder state is in-memory per (bot, symbol).
    """

    name = "partial-close"
    default_max_fills = 4

    def __init__(self, store):
        super().__init__(store)
        self._states: Dict[Tuple[str, str], PartialCloseState] = {}

    def state_for(self, bot_name: str, symbol: str) -> PartialCloseState:
        key = (bot_name, symbol)
        st = self._states.get(key)
        if st is None:
            st = PartialCloseState(last_update=time.time())
            self._states[key] = st
        return st

    def clear_state(self, bot_name: str, symbol: str) -> None:
        self._states.pop((bot_name, symbol), None)

    async def on_open(self, bot: "BotEngine", alert: Alert) -> None:
        timeframe = alert.timeframe or OPEN_TIMEFRAME
        if timeframe != OPEN_TIMEFRAME:
            await bot.notify(
                f"⏸ {bot.name}: SmartOpen on {timeframe} skipped - positions open on {OPEN_TIMEFRAME} only"
            )
            return

        existing = await self.store.find_open(bot.name, alert.symbol)
        if existing:
            if existing.fills_count >= bot.max_fills(self.default_max_fills):
                await bot.notify(f"⚠️ {bot.name}: max fills reached for {alert.symbol}")
                return
            await self.on_add(bot, alert)
            return

        base_usd = bot.base_usd()
        if base_usd is None:
            await bot.notify(f"❌ {bot.name}: configuration error - baseUsd is not set")
            return

        position = await self.open_position(bot, alert, base_usd)
        if position is not None:
            self.clear_state(bot.name, alert.symbol)
            self.state_for(bot.name, alert.symbol)

    async def on_add(self, bot: "BotEngine", alert: Alert) -> None:
        existing = await self.store.find_open(bot.name, alert.symbol)
        if not existing:
            log.info("Bot %s: no open %s position, add skipped", bot.name, alert.symbol)
            return

        if existing.fills_count >= bot.max_fills(self.default_max_fills):
            await bot.notify(f"⚠️ {bot.name}: max fills reached for {alert.symbol}")
            return

        add_usd = bot.add_usd()
        if add_usd is None:
            await bot.notify(f"❌ {bot.name}: configuration error - addUsd is not set")
            return

        await self.add_to_position(bot, alert, existing, add_usd)

    async def on_close(self, bot: "BotEngine", alert: Alert) -> None:
        existing = await self.store.find_open(bot.name, alert.symbol)
        if not existing:
            log.info("Bot %s: no open %s position, close skipped", bot.name, alert.symbol)
            return

        timeframe = alert.timeframe or OPEN_TIMEFRAME
        if timeframe == FULL_CLOSE_TIMEFRAME:
            await self.close_position(bot, alert, existing, reason=FULL_CLOSE_TIMEFRAME)
            self.clear_state(bot.name, alert.symbol)
            return

        state = self.state_for(bot.name, alert.symbol)
        state.last_update = time.time()

        if state.close_count == 0:
            state.close_count = 1
            await bot.notify(
                f"⏳ {bot.name}: first SmartClose for {alert.symbol} - waiting for a second signal to close 50%"
            )
            return

        if state.close_count == 1:
            await self.partial_close(bot, alert, existing, HALF)
            state.close_count = 2
            return

        await self.close_position(bot, alert, existing, reason="ladder complete")
        self.clear_state(bot.name, alert.symbol)

    async def on_big_close(self, bot: "BotEngine", alert: Alert) -> None:
        existing = await self.store.find_open(bot.name, alert.symbol)
        if not existing:
            return
        await self.close_position(bot, alert, existing, reason="big close")
        self.clear_state(bot.name, alert.symbol)

    async def on_big_add(self, bot: "BotEngine", alert: Alert) -> None:
        await bot.notify(f"📣 {bot.name}: SmartBigAdd for {alert.symbol} @{alert.price}")

    async def on_volume_up(self, bot: "BotEngine", alert: Alert) -> None:
        volume = alert.volume or 0
        if volume > BIG_VOLUME_NOTICE:
            await bot.notify(
                f"📈 {bot.name}: VolumeUp {alert.symbol} ({alert.timeframe}): {volume:,.0f}"
            )
