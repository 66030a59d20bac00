# signaldesk/services/trend.py
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Union

from signaldesk.bots.models import Direction, TrendConfirmation
from signaldesk.core.timeframes import main_timeframe, sort_by_priority, timeframe_ms
from signaldesk.persistence.trend_store import TrendStore

log = logging.getLogger("signaldesk.trend")

DirectionLike = Union[Direction, str]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _as_direction(value: DirectionLike) -> Direction:
    if isinstance(value, Direction):
        return value
    return Direction(str(value).strip().lower())


class TrendService:
    """
    Multi-timeframe trend votes.

    Every confirmation lives for 2x its timeframe. The current trend of a
    (symbol, timeframe) pair is a majority vote over its live rows; an exact
    tie is re-voted over the three newest rows and stays neutral if still tied.
    """

    def __init__(self, store: TrendStore, clock: Optional[Callable[[], int]] = None):
        self.store = store
        self._clock = clock or _now_ms

    async def confirm(
        self,
        symbol: str,
        timeframe: str,
        direction: DirectionLike,
        source: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> TrendConfirmation:
        sym = str(symbol).strip().upper()
        tf = str(timeframe).strip().lower()
        d = _as_direction(direction)
        if d is Direction.NEUTRAL:
            raise ValueError("Trend confirmation direction must be long or short")

        ttl = 2 * timeframe_ms(tf)
        now = self._clock()
        meta = dict(meta or {})
        name = meta.get("name")

        row = await self.store.save(
            sym,
            tf,
            d,
            created_at_ms=now,
            expires_at_ms=now + ttl,
            source=source,
            name=str(name) if name else None,
            meta=meta,
        )
        log.info("Trend confirmed %s %s -> %s (name=%s)", sym, tf, d.value, name)
        return row

    async def live_confirmations(self, symbol: str, timeframe: str) -> List[TrendConfirmation]:
        """Unexpired rows for the pair, newest first."""
        return await self.store.live(
            str(symbol).strip().upper(), str(timeframe).strip().lower(), self._clock()
        )

    async def get_current_trend(self, symbol: str, timeframe: str) -> Direction:
        rows = await self.live_confirmations(symbol, timeframe)
        if not rows:
            return Direction.NEUTRAL

        verdict = _vote(rows)
        if verdict is None and len(rows) >= 3:
            verdict = _vote(rows[:3])
        return verdict or Direction.NEUTRAL

    async def purge_expired(self) -> int:
        removed = await self.store.purge_expired(self._clock())
        if removed:
            log.info("Purged %d expired trend confirmation(s)", removed)
        return removed

    async def get_trends(self, symbol: str, timeframes: List[str]) -> Dict[str, Direction]:
        out: Dict[str, Direction] = {}
        for tf in timeframes:
            out[tf] = await self.get_current_trend(symbol, tf)
        return out

    async def agree_all(self, symbol: str, timeframes: List[str]) -> Direction:
        trends = set((await self.get_trends(symbol, timeframes)).values())
        if len(trends) == 1:
            only = next(iter(trends))
            if only is not Direction.NEUTRAL:
                return only
        return Direction.NEUTRAL

    async def agree_all_with_hierarchy(self, symbol: str, timeframes: List[str]) -> Direction:
        ordered = sort_by_priority(timeframes)
        if not ordered:
            return Direction.NEUTRAL

        trends = await self.get_trends(symbol, ordered)
        main = trends[ordered[0]]
        if main is Direction.NEUTRAL:
            return Direction.NEUTRAL

        for tf in ordered[1:]:
            t = trends[tf]
            if t is not Direction.NEUTRAL and t is not main:
                return Direction.NEUTRAL
        return main

    async def can_add_position(
        self, symbol: str, timeframes: List[str], expected_direction: str
    ) -> bool:
        # strict: every timeframe must match, neutral included
        if not timeframes:
            return False
        expected = str(expected_direction).strip().lower()
        trends = await self.get_trends(symbol, timeframes)
        return all(t.value == expected for t in trends.values())

    async def should_close_position(
        self, symbol: str, timeframes: List[str], current_direction: str
    ) -> bool:
        main = main_timeframe(timeframes)
        if main is None:
            return False
        trend = await self.get_current_trend(symbol, main)
        return trend is not Direction.NEUTRAL and trend.value != str(current_direction).strip().lower()


def _vote(rows: List[TrendConfirmation]) -> Optional[Direction]:
    longs = sum(1 for r in rows if r.direction is Direction.LONG)
    shorts = sum(1 for r in rows if r.direction is Direction.SHORT)
    if longs > shorts:
        return Direction.LONG
    if shorts > longs:
        return Direction.SHORT
    return None
