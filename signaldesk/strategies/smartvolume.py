from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Optional, Tuple

from signaldesk.bots.models import Alert
from signaldesk.persistence.positions_store import PositionsStore
from signaldesk.strategies.base import Strategy

if TYPE_CHECKING:
    from signaldesk.bots.engine import BotEngine

log = logging.getLogger("signaldesk.strategy.smartvolume")

OPEN_TIMEFRAME = "30m"
SYNC_TIMEFRAME = "1h"
ARM_WINDOW_SECONDS = 30 * 60
ENTRY_BLOCK_SECONDS = 60 * 60


@dataclass
class SmartVolumeState:
    ready_to_close: bool = False
    last_bullish_volume: float = 0.0  # when BullishVolume armed the close
    last_smart_volume: float = 0.0
    last_update: float = 0.0


def format_remaining(seconds: float) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


class SmartVolumeStrategy(Strategy):
    """
    BullishVolume arms a close; while armed (30 min window) a VolumeUp reading
    lower than the previous one closes the position, otherwise the cached
    reading ratchets up. Synchronization alerts on 1h block new entries for
    an hour.
    """

    name = "smartvolume"
    default_max_fills = 3

    def __init__(self, store: PositionsStore, clock: Optional[Callable[[], float]] = None):
        super().__init__(store)
        self._clock = clock or time.time
        self._states: Dict[Tuple[str, str], SmartVolumeState] = {}
        self._blocked_until: Dict[Tuple[str, str], float] = {}

    # ---------- state helpers ----------
    def state_for(self, bot_name: str, symbol: str) -> SmartVolumeState:
        key = (bot_name, symbol)
        st = self._states.get(key)
        if st is None:
            st = SmartVolumeState(last_update=self._clock())
            self._states[key] = st
        return st

    def clear_state(self, bot_name: str, symbol: str) -> None:
        self._states.pop((bot_name, symbol), None)

    def is_entry_blocked(self, bot_name: str, symbol: str) -> bool:
        key = (bot_name, symbol)
        until = self._blocked_until.get(key)
        if until is None:
            return False
        if self._clock() >= until:
            del self._blocked_until[key]
            return False
        return True

    def block_entry(self, bot_name: str, symbol: str, reason: str) -> None:
        self._blocked_until[(bot_name, symbol)] = self._clock() + ENTRY_BLOCK_SECONDS
        log.info("Entry blocked for %s (%s) for 1h: %s", symbol, bot_name, reason)

    def remaining_block(self, bot_name: str, symbol: str) -> str:
        until = self._blocked_until.get((bot_name, symbol))
        if until is None:
            return "not blocked"
        return format_remaining(until - self._clock())

    # ---------- entries ----------
    async def on_open(self, bot: "BotEngine", alert: Alert) -> None:
        if self.is_entry_blocked(bot.name, alert.symbol):
            remaining = self.remaining_block(bot.name, alert.symbol)
            await bot.notify(f"⏸ {bot.name}: entry blocked for {alert.symbol} - {remaining} left")
            return

        timeframe = alert.timeframe or OPEN_TIMEFRAME
        if timeframe != OPEN_TIMEFRAME:
            log.info("Bot %s: open on %s ignored (needs %s)", bot.name, timeframe, OPEN_TIMEFRAME)
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

    async def on_smart_volume_open(self, bot: "BotEngine", alert: Alert) -> None:
        await self.on_open(bot, alert)

    async def on_add(self, bot: "BotEngine", alert: Alert) -> None:
        existing = await self.store.find_open(bot.name, alert.symbol)
        if not existing:
            return

        if existing.fills_count >= bot.max_fills(self.default_max_fills):
            await bot.notify(f"⚠️ {bot.name}: max fills reached for {alert.symbol}")
            return

        add_usd = bot.add_usd()
        if add_usd is None:
            await bot.notify(f"❌ {bot.name}: configuration error - addUsd is not set")
            return

        await self.add_to_position(bot, alert, existing, add_usd)

    # ---------- exits ----------
    async def on_close(self, bot: "BotEngine", alert: Alert) -> None:
        # exits come from BullishVolume + VolumeUp only
        log.debug("Bot %s: SmartClose ignored for %s", bot.name, alert.symbol)

    async def on_big_close(self, bot: "BotEngine", alert: Alert) -> None:
        existing = await self.store.find_open(bot.name, alert.symbol)
        if not existing:
            return
        await self.close_position(bot, alert, existing, reason="big close")
        self.clear_state(bot.name, alert.symbol)

    async def on_big_add(self, bot: "BotEngine", alert: Alert) -> None:
        await bot.notify(f"📣 {bot.name}: SmartBigAdd for {alert.symbol} @{alert.price}")

    async def on_bullish_volume(self, bot: "BotEngine", alert: Alert) -> None:
        existing = await self.store.find_open(bot.name, alert.symbol)
        if not existing:
            log.info("Bot %s: BullishVolume without open %s position ignored", bot.name, alert.symbol)
            return

        now = self._clock()
        state = self.state_for(bot.name, alert.symbol)
        state.ready_to_close = True
        state.last_bullish_volume = now
        state.last_update = now

        await bot.notify(
            f"🟢 {bot.name}: BullishVolume on {alert.symbol} - waiting for VolumeUp to decrease to close"
        )

    async def on_volume_up(self, bot: "BotEngine", alert: Alert) -> None:
        existing = await self.store.find_open(bot.name, alert.symbol)
        if not existing:
            return

        state = self.state_for(bot.name, alert.symbol)
        active = self._clock() - state.last_update <= ARM_WINDOW_SECONDS
        if not state.ready_to_close or not active:
            log.debug(
                "Bot %s: VolumeUp on %s ignored (ready=%s active=%s)",
                bot.name,
                alert.symbol,
                state.ready_to_close,
                active,
            )
            return

        volume = float(alert.volume or 0)
        previous = state.last_smart_volume
        if previous > 0 and volume < previous:
            await self.close_position(
                bot, alert, existing, reason=f"VolumeUp decreased {previous:g} -> {volume:g}"
            )
            self.clear_state(bot.name, alert.symbol)
            return

        state.last_smart_volume = volume
        state.last_update = self._clock()

    # ---------- synchronization ----------
    async def on_fixed_short_synchronization(self, bot: "BotEngine", alert: Alert) -> None:
        await self._synchronization(bot, alert, "Fixed Short Synchronization")

    async def on_live_short_synchronization(self, bot: "BotEngine", alert: Alert) -> None:
        await self._synchronization(bot, alert, "Live Short Synchronization")

    async def _synchronization(self, bot: "BotEngine", alert: Alert, reason: str) -> None:
        timeframe = alert.timeframe or SYNC_TIMEFRAME
        if timeframe != SYNC_TIMEFRAME:
            return
        self.block_entry(bot.name, alert.symbol, reason)
        await bot.notify(f"🔒 {bot.name}: {reason} on {alert.symbol} - entries blocked for 1h")
