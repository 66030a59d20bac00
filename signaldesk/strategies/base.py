from __future__ import annotations

import logging
import time
from decimal import ROUND_DOWN, Decimal
from typing import TYPE_CHECKING, Optional

from signaldesk.bots.models import Alert, Direction, Position, PositionMeta
from signaldesk.exchange.bitget.symbols import to_bitget_symbol_id
from signaldesk.exchange.errors import is_no_position_error
from signaldesk.persistence.positions_store import PositionsStore

if TYPE_CHECKING:
    from signaldesk.bots.engine import BotEngine

log = logging.getLogger("signaldesk.strategy")

_TOKEN_QUANT = Decimal("1e-8")


def _base_asset(symbol: str) -> str:
    return symbol.upper().replace("USDT", "")


def _oid(bot: "BotEngine", action: str) -> str:
    return f"{bot.name}-{action}-{int(time.time() * 1000)}"


class Strategy:
    """
    Lifecycle contract for every strategy. Every handler defaults to a no-op;
    concrete strategies override the signal families they trade.
    """

    name: str = "base"
    default_max_fills: int = 4

    def __init__(self, store: PositionsStore):
        self.store = store

    # ---------- smartvol family ----------
    async def on_open(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_add(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_close(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_big_close(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_big_add(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_smart_volume_open(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_bullish_volume(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_volume_up(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_fixed_short_synchronization(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_live_short_synchronization(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    # ---------- trend-pivot family ----------
    async def on_long_trend(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_short_trend(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_long_pivot_point(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_short_pivot_point(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_strong_long_pivot_point(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_strong_short_pivot_point(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    # ---------- domination family ----------
    async def on_buyer_domination(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_seller_domination(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_buyer_continuation(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_seller_continuation(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    # ---------- three-alerts family ----------
    async def on_bull_relsi(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_bear_relsi(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_bull_marubozu(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_bear_marubozu(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_bull_engulfing(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    async def on_bear_engulfing(self, bot: "BotEngine", alert: Alert) -> None:
        return None

    # =========================
    # shared position mechanics
    # =========================
    async def open_position(
        self,
        bot: "BotEngine",
        alert: Alert,
        usd: Decimal,
        side: Direction = Direction.LONG,
        meta: Optional[PositionMeta] = None,
    ) -> Optional[Position]:
        """Exchange entry followed by the store row. Returns None when the symbol is rejected."""
        symbol_id = to_bitget_symbol_id(alert.symbol)
        if not bot.exchange.is_allowed(symbol_id):
            log.info("Bot %s: %s not allowed", bot.name, symbol_id)
            await bot.notify(f"⚠️ {bot.name}: {symbol_id} not allowed")
            return None

        await bot.exchange.ensure_leverage(symbol_id, bot.leverage())
        size = await bot.exchange.calc_size_from_usd(symbol_id, alert.price, usd)
        order_side = "sell" if side is Direction.SHORT else "buy"
        await bot.exchange.place_market(symbol_id, order_side, str(size), _oid(bot, "open"))

        position = await self.store.open(bot.name, alert.symbol, alert.price, usd, meta)
        log.info("Bot %s opened %s %s @%s $%s (id=%s)", bot.name, side.value, alert.symbol, alert.price, usd, position.id)

        pnl = self.store.calculate_pnl(position, alert.price, side).as_dict()
        await bot.notify(
            f"✅ {bot.name}: OPEN {side.value.upper()} {alert.symbol} @{alert.price} ${usd}\n"
            f"📊 Size: {pnl['totalSize']} {_base_asset(alert.symbol)}\n"
            f"💰 Avg entry: ${pnl['avgEntryPrice']}\n"
            f"💵 PnL: ${pnl['pnl']} ({pnl['pnlPercent']}%)"
        )
        return position

    async def add_to_position(
        self,
        bot: "BotEngine",
        alert: Alert,
        position: Position,
        usd: Decimal,
        side: Direction = Direction.LONG,
    ) -> Position:
        symbol_id = to_bitget_symbol_id(alert.symbol)
        size = await bot.exchange.calc_size_from_usd(symbol_id, alert.price, usd)
        order_side = "sell" if side is Direction.SHORT else "buy"
        await bot.exchange.place_market(symbol_id, order_side, str(size), _oid(bot, "add"))

        updated = await self.store.add(position, alert.price, usd)
        log.info("Bot %s added $%s to %s (fills=%s)", bot.name, usd, alert.symbol, updated.fills_count)

        pnl = self.store.calculate_pnl(updated, alert.price, side).as_dict()
        await bot.notify(
            f"➕ {bot.name}: ADD {alert.symbol} @{alert.price} ${usd}\n"
            f"📊 New size: {pnl['totalSize']} {_base_asset(alert.symbol)}\n"
            f"💰 New avg entry: ${pnl['avgEntryPrice']}\n"
            f"💵 PnL: ${pnl['pnl']} ({pnl['pnlPercent']}%)"
        )
        return updated

    async def close_position(
        self,
        bot: "BotEngine",
        alert: Alert,
        position: Position,
        side: Direction = Direction.LONG,
        reason: str = "",
    ) -> Position:
        """
        Flash-close on the exchange, then close the row. An exchange that reports
        no position is treated as already closed; other failures are re-raised.
        """
        try:
            await bot.exchange.flash_close(alert.symbol, side.value)
        except Exception as e:
            if not is_no_position_error(e):
                log.error("Bot %s: close %s failed: %s", bot.name, alert.symbol, e)
                await bot.notify(f"❌ {bot.name}: error closing {alert.symbol}: {e}")
                raise
            closed = await self.store.close(position, alert.price)
            log.info("Bot %s: %s already closed on exchange, row closed", bot.name, alert.symbol)
            await bot.notify(f"ℹ️ {bot.name}: {alert.symbol} was already closed on the exchange, updated locally")
            return closed

        final = self.store.calculate_pnl(position, alert.price, side).as_dict()
        closed = await self.store.close(position, alert.price)
        suffix = f" ({reason})" if reason else ""
        await bot.notify(
            f"🛑 {bot.name}: CLOSE {alert.symbol} @{alert.price}{suffix}\n"
            f"📊 Final size: {final['totalSize']} {_base_asset(alert.symbol)}\n"
            f"💰 Avg entry: ${final['avgEntryPrice']}\n"
            f"💵 Final PnL: ${final['pnl']} ({final['pnlPercent']}%)"
        )
        return closed

    async def partial_close(
        self,
        bot: "BotEngine",
        alert: Alert,
        position: Position,
        fraction: Decimal,
        side: Direction = Direction.LONG,
    ) -> Position:
        """Reduce `fraction` of the open notional on the exchange and in the store."""
        close_usd = position.amount_usd * fraction
        tokens = (close_usd / position.avg_entry_price).quantize(_TOKEN_QUANT, rounding=ROUND_DOWN)

        await bot.exchange.flash_close(alert.symbol, side.value, f"{tokens:f}")
        updated = await self.store.reduce(position, close_usd)

        pnl = self.store.calculate_pnl(position, alert.price, side)
        realized = pnl.pnl * fraction
        await bot.notify(
            f"✂️ {bot.name}: PARTIAL CLOSE {int(fraction * 100)}% {alert.symbol} @{alert.price}\n"
            f"📊 Closed: {tokens:f} {_base_asset(alert.symbol)} (${close_usd:.2f})\n"
            f"💵 Realized PnL: ${realized:.2f}\n"
            f"📦 Remaining: ${updated.amount_usd:.2f}"
        )
        return updated
