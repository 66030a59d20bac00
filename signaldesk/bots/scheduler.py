# signaldesk/bots/scheduler.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from signaldesk.bots.engine import BotEngine
from signaldesk.bots.models import Direction
from signaldesk.bots.registry import BotsRegistry
from signaldesk.core.timeframes import parse_interval_seconds
from signaldesk.persistence.db import utc_now

log = logging.getLogger("signaldesk.scheduler")

DEFAULT_REPORT_SYMBOL = "BTCUSDT"


def trend_status(trends: List[Direction], bot_direction: str) -> Tuple[str, str]:
    """Returns (status line, recommendation line) for a bot's trend report."""
    direction = bot_direction.upper()
    if trends and all(t.value == bot_direction for t in trends):
        return (
            f"🟢 STRONG {direction} - all timeframes agree",
            "💡 Recommendation: trend is strong, entries are fine",
        )
    if any(t.value == bot_direction for t in trends):
        return (
            f"🟡 MIXED {direction} - partially aligned",
            "🔄 Recommendation: trend is mixed, be careful",
        )
    if all(t is Direction.NEUTRAL for t in trends):
        return (
            "⚪ NEUTRAL - no clear direction",
            "⏸ Recommendation: trend is neutral, wait for a clear signal",
        )
    opposite = "SHORT" if bot_direction == "long" else "LONG"
    return (
        f"🔴 OPPOSITE {opposite} - trend reversed",
        "⚠️ Recommendation: trend reversed, consider closing positions",
    )


def build_trend_report(
    bot_name: str,
    direction: str,
    symbols: List[str],
    trends: Dict[str, Direction],
    now: Optional[datetime] = None,
) -> str:
    now = now or utc_now()
    lines = [
        f"📊 {bot_name} - trend report",
        f"⏰ Time: {now.strftime('%Y-%m-%d %H:%M:%S')} UTC",
        f"🎯 Bot direction: {direction.upper()}",
        f"📈 Timeframes: {', '.join(trends)}",
    ]
    if symbols:
        lines.append(f"🎯 Symbols: {', '.join(symbols)}")
    lines.append("")

    for tf, trend in trends.items():
        if trend.value == direction:
            marker = "✅"
        elif trend is Direction.NEUTRAL:
            marker = "⚪"
        else:
            marker = "❌"
        lines.append(f"{marker} {tf}: {trend.value.upper()}")

    status, recommendation = trend_status(list(trends.values()), direction)
    lines.append("")
    lines.append(f"📈 Overall: {status}")
    lines.append(recommendation)
    return "\n".join(lines)


class BotsScheduler:
    """Periodic trend reports for bots with `scheduled_notification` enabled."""

    def __init__(self, registry: BotsRegistry):
        self.registry = registry
        self._tasks: List[asyncio.Task] = []

    def start(self) -> None:
        for bot in self.registry.all():
            c = bot.cfg
            if not c.scheduled_notification or not c.scheduled_time:
                continue
            seconds = parse_interval_seconds(c.scheduled_time)
            log.info("Schedule %s: trend report every %s (%ss)", bot.name, c.scheduled_time, seconds)
            self._tasks.append(asyncio.create_task(self._loop(bot, seconds)))

    async def stop(self) -> None:
        for t in self._tasks:
            t.cancel()
        for t in self._tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

    async def _loop(self, bot: BotEngine, seconds: int) -> None:
        while True:
            await asyncio.sleep(seconds)
            await self.send_trend_report(bot)

    async def send_trend_report(self, bot: BotEngine) -> bool:
        """Sends one report; errors are logged and reported as False."""
        try:
            c = bot.cfg
            symbol = c.symbol_filter[0] if c.symbol_filter else DEFAULT_REPORT_SYMBOL
            trends: Dict[str, Direction] = {}
            for tf in c.timeframe_trend:
                trends[tf] = await bot.trend.get_current_trend(symbol, tf)

            text = build_trend_report(bot.name, c.direction, c.symbol_filter, trends)
            await bot.notify(text)
            log.info("Trend report sent for %s", bot.name)
            return True
        except Exception:
            log.exception("Trend report for %s failed", bot.name)
            return False

    async def send_all_trend_reports(self) -> Dict[str, bool]:
        out: Dict[str, bool] = {}
        for bot in self.registry.all():
            if bot.cfg.timeframe_trend:
                out[bot.name] = await self.send_trend_report(bot)
        return out
