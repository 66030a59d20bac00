from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from signaldesk.bots.models import Alert, Direction, DominationMeta, Position
from signaldesk.persistence.audit import Audit
from signaldesk.persistence.db import utc_now
from signaldesk.persistence.positions_store import PositionsStore, format_duration
from signaldesk.strategies.base import Strategy

if TYPE_CHECKING:
    from signaldesk.bots.engine import BotEngine

log = logging.getLogger("signaldesk.strategy.domination")


class DominationStrategy(Strategy):
    """
    Buyer/Seller domination opens a fixed-notional long/short tracked in the
    store only. Matching continuation signals keep it alive; a background
    sweep closes positions whose last continuation is older than the timeout.
    """

    name = "domination"
    default_max_fills = 1

    def __init__(
        self,
        store: PositionsStore,
        notional_usd: Decimal = Decimal("200"),
        timeout: timedelta = timedelta(minutes=30),
        sweep_interval: float = 300.0,
        clock: Optional[Callable[[], datetime]] = None,
        audit: Optional[Audit] = None,
    ):
        super().__init__(store)
        self.notional_usd = Decimal(str(notional_usd))
        self.timeout = timeout
        self.sweep_interval = sweep_interval
        self._clock = clock or utc_now
        self.audit = audit
        self._bots: Dict[str, "BotEngine"] = {}
        self._task: Optional[asyncio.Task] = None

    def bind(self, bot: "BotEngine") -> None:
        self._bots[bot.name] = bot

    # ---------- background sweep ----------
    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._sweep_loop())
            log.info("Domination sweep started (every %ss, timeout %s)", self.sweep_interval, self.timeout)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.check_continuation_timeouts()
            except Exception:
                log.exception("Domination sweep failed")

    async def check_continuation_timeouts(self, now: Optional[datetime] = None) -> List[Position]:
        """Close every bound bot's domination position whose continuation timed out."""
        now = now or self._clock()
        closed: List[Position] = []
        for position in await self.open_positions():
            bot = self._bots.get(position.bot_name)
            if bot is None:
                continue
            meta = position.meta
            last = meta.last_continuation if isinstance(meta, DominationMeta) else position.opened_at
            if now - last > self.timeout:
                log.info("Domination %s/%s continuation timed out", position.bot_name, position.symbol)
                closed.append(await self._timeout_close(bot, position, now))
        return closed

    async def open_positions(self) -> List[Position]:
        positions = await self.store.get_all_open_positions()
        return [p for p in positions if isinstance(p.meta, DominationMeta) and p.bot_name in self._bots]

    async def _timeout_close(self, bot: "BotEngine", position: Position, now: datetime) -> Position:
        # no market price on a timer: close at entry
        closed = await self.store.close(position, position.avg_entry_price)
        duration = format_duration(int((now - position.opened_at).total_seconds()))
        side = position.meta.side if isinstance(position.meta, DominationMeta) else Direction.LONG
        emoji = "🟢" if side is Direction.LONG else "🔴"

        if self.audit is not None:
            await self.audit.aevent(
                "DOMINATION",
                action="TIMEOUT_CLOSE",
                bot_name=bot.name,
                symbol=position.symbol,
                details={"side": side.value, "duration": duration},
            )

        await bot.notify(
            f"{emoji} {bot.name}: EXIT {side.value.upper()} {position.symbol}\n"
            f"⏰ Reason: no continuation for {int(self.timeout.total_seconds() // 60)}m\n"
            f"💰 Entry: ${position.avg_entry_price}\n"
            f"⏱ Duration: {duration}"
        )
        return closed

    # ---------- signals ----------
    async def on_buyer_domination(self, bot: "BotEngine", alert: Alert) -> None:
        await self._enter(bot, alert, Direction.LONG)

    async def on_seller_domination(self, bot: "BotEngine", alert: Alert) -> None:
        await self._enter(bot, alert, Direction.SHORT)

    async def on_buyer_continuation(self, bot: "BotEngine", alert: Alert) -> None:
        await self._continue(bot, alert, Direction.LONG)

    async def on_seller_continuation(self, bot: "BotEngine", alert: Alert) -> None:
        await self._continue(bot, alert, Direction.SHORT)

    async def _enter(self, bot: "BotEngine", alert: Alert, side: Direction) -> None:
        self.bind(bot)
        existing = await self.store.find_open(bot.name, alert.symbol)
        if existing:
            log.info("Bot %s: %s already open, domination entry skipped", bot.name, alert.symbol)
            return

        meta = DominationMeta(side=side, last_continuation=self._clock())
        await self.store.open(bot.name, alert.symbol, alert.price, self.notional_usd, meta)

        emoji = "🟢" if side is Direction.LONG else "🔴"
        await bot.notify(
            f"{emoji} {bot.name}: ENTER {side.value.upper()} {alert.symbol} @{alert.price}\n"
            f"💵 Notional: ${self.notional_usd}\n"
            f"⏰ Auto-exit without continuation for {int(self.timeout.total_seconds() // 60)}m"
        )

    async def _continue(self, bot: "BotEngine", alert: Alert, side: Direction) -> None:
        existing = await self.store.find_open(bot.name, alert.symbol)
        meta = existing.meta if existing else None
        if not isinstance(meta, DominationMeta) or meta.side is not side:
            log.info("Bot %s: %s continuation without matching %s position", bot.name, alert.symbol, side.value)
            return

        meta.last_continuation = self._clock()
        await self.store.update_meta(existing, meta)
        await bot.notify(f"🔄 {bot.name}: {side.value.upper()} continuation on {alert.symbol} @{alert.price}")
