import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from signaldesk.bots.models import Direction, DominationMeta, TrendPivotMeta
from signaldesk.persistence.positions_store import PositionAlreadyOpenError, format_duration


def test_add_recomputes_weighted_average(store):
    async def scenario():
        pos = await store.open("B", "BTCUSDT", "50000", "100")
        return await store.add(pos, "51000", "50")

    pos = asyncio.run(scenario())

    assert pos.amount_usd == Decimal("150")
    assert pos.fills_count == 2
    assert round(pos.avg_entry_price, 2) == Decimal("50333.33")


def test_only_one_open_row_per_bot_and_symbol(store):
    async def scenario():
        first = await store.open("B", "ETHUSDT", "100", "10")
        with pytest.raises(PositionAlreadyOpenError):
            await store.open("B", "ETHUSDT", "101", "10")
        # other bot, same symbol is fine
        await store.open("Other", "ETHUSDT", "100", "10")

        closed = await store.close(first, "110")
        reopened = await store.open("B", "ETHUSDT", "120", "10")
        return closed, reopened

    closed, reopened = asyncio.run(scenario())

    assert closed.status == "closed"
    assert closed.close_price == Decimal("110")
    assert closed.closed_at is not None
    assert reopened.is_open
    assert reopened.id != closed.id


def test_find_open_ignores_closed_rows(store):
    async def scenario():
        pos = await store.open("B", "ETHUSDT", "100", "10")
        await store.close(pos, "100")
        return await store.find_open("B", "ETHUSDT")

    assert asyncio.run(scenario()) is None


def test_reduce_keeps_average_and_lowers_notional(store):
    async def scenario():
        pos = await store.open("B", "ETHUSDT", "100", "200")
        return await store.reduce(pos, Decimal("50"))

    pos = asyncio.run(scenario())
    assert pos.amount_usd == Decimal("150")
    assert pos.avg_entry_price == Decimal("100")
    assert pos.is_open


def test_meta_round_trips_through_the_store(store):
    seen = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    async def scenario():
        dom = await store.open("D", "ETHUSDT", "100", "200", DominationMeta(side=Direction.SHORT, last_continuation=seen))
        tp = await store.open("T", "ETHUSDT", "100", "200", TrendPivotMeta(original_direction=Direction.LONG))
        tp = await store.update_meta(tp, TrendPivotMeta(original_direction=Direction.LONG, closed_confirmations=2))
        return await store.get(dom.id), tp

    dom, tp = asyncio.run(scenario())

    assert isinstance(dom.meta, DominationMeta)
    assert dom.meta.side is Direction.SHORT
    assert dom.meta.last_continuation == seen
    assert isinstance(tp.meta, TrendPivotMeta)
    assert tp.meta.closed_confirmations == 2


def test_pnl_long_and_short(store):
    async def scenario():
        return await store.open("B", "ETHUSDT", "100", "100")

    pos = asyncio.run(scenario())

    long_pnl = store.calculate_pnl(pos, "110")
    assert long_pnl.total_size == Decimal("1")
    assert long_pnl.pnl == Decimal("10")
    assert long_pnl.as_dict()["pnlPercent"] == "10.00"

    short_pnl = store.calculate_pnl(pos, "110", Direction.SHORT)
    assert short_pnl.pnl == Decimal("-10")


def test_bot_summary_marks_priced_positions(store):
    async def scenario():
        await store.open("B", "ETHUSDT", "100", "100")
        await store.open("B", "LINKUSDT", "10", "50")
        await store.open("Other", "ETHUSDT", "100", "999")
        return await store.get_bot_summary("B", {"ethusdt": "120"})

    summary = asyncio.run(scenario())

    assert summary["openPositions"] == 2
    assert summary["totalInvested"] == "150.00"
    # ETH marked at 120, LINK unpriced counts at cost
    assert summary["totalCurrentValue"] == "170.00"
    assert summary["totalPnl"] == "20.00"
    eth = next(p for p in summary["positions"] if p["symbol"] == "ETHUSDT")
    assert eth["pnl"]["pnl"] == "20.00"


def test_format_duration():
    assert format_duration(3725) == "1h 2m"
    assert format_duration(59) == "0m"
    assert format_duration(600) == "10m"
