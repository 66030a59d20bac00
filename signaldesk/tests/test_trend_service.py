import asyncio

import pytest

from signaldesk.bots.models import Direction

MINUTE_MS = 60_000


def _confirm_seq(trend, ms_clock, symbol, timeframe, directions):
    async def run():
        for d in directions:
            await trend.confirm(symbol, timeframe, d)
            ms_clock.advance(1000)

    asyncio.run(run())


def test_no_rows_is_neutral(trend):
    assert asyncio.run(trend.get_current_trend("ETHUSDT", "15m")) is Direction.NEUTRAL


def test_majority_vote(trend, ms_clock):
    _confirm_seq(trend, ms_clock, "ethusdt", "15m", ["long", "long", "short"])
    assert asyncio.run(trend.get_current_trend("ETHUSDT", "15m")) is Direction.LONG


def test_tie_is_revoted_over_the_three_newest(trend, ms_clock):
    _confirm_seq(trend, ms_clock, "ETHUSDT", "15m", ["long", "short", "long", "short"])
    # newest three: short, long, short
    assert asyncio.run(trend.get_current_trend("ETHUSDT", "15m")) is Direction.SHORT


def test_two_row_tie_stays_neutral(trend, ms_clock):
    _confirm_seq(trend, ms_clock, "ETHUSDT", "15m", ["long", "short"])
    assert asyncio.run(trend.get_current_trend("ETHUSDT", "15m")) is Direction.NEUTRAL


def test_confirmations_expire_after_two_timeframes(trend, ms_clock):
    asyncio.run(trend.confirm("ETHUSDT", "15m", "long"))

    ms_clock.advance(29 * MINUTE_MS)
    assert asyncio.run(trend.get_current_trend("ETHUSDT", "15m")) is Direction.LONG

    ms_clock.advance(1 * MINUTE_MS)
    assert asyncio.run(trend.get_current_trend("ETHUSDT", "15m")) is Direction.NEUTRAL


def test_named_confirmation_overwrites_in_place(trend, ms_clock):
    async def run():
        await trend.confirm("ETHUSDT", "15m", "long", meta={"name": "LongTrend@15m"})
        ms_clock.advance(1000)
        await trend.confirm("ETHUSDT", "15m", "short", meta={"name": "LongTrend@15m"})
        return await trend.live_confirmations("ETHUSDT", "15m"), await trend.get_current_trend("ETHUSDT", "15m")

    rows, current = asyncio.run(run())
    assert len(rows) == 1
    assert current is Direction.SHORT


def test_confirm_rejects_neutral_and_bad_timeframe(trend):
    with pytest.raises(ValueError):
        asyncio.run(trend.confirm("ETHUSDT", "15m", "neutral"))
    with pytest.raises(ValueError):
        asyncio.run(trend.confirm("ETHUSDT", "fortnight", "long"))


def test_agree_all(trend, ms_clock):
    _confirm_seq(trend, ms_clock, "ETHUSDT", "1h", ["long"])
    _confirm_seq(trend, ms_clock, "ETHUSDT", "15m", ["long"])
    assert asyncio.run(trend.agree_all("ETHUSDT", ["1h", "15m"])) is Direction.LONG
    assert asyncio.run(trend.agree_all("ETHUSDT", ["1h", "15m", "5m"])) is Direction.NEUTRAL


def test_hierarchy_follows_the_largest_timeframe(trend, ms_clock):
    _confirm_seq(trend, ms_clock, "ETHUSDT", "4h", ["long"])
    # lower timeframe neutral does not veto
    assert asyncio.run(trend.agree_all_with_hierarchy("ETHUSDT", ["15m", "4h"])) is Direction.LONG

    _confirm_seq(trend, ms_clock, "ETHUSDT", "15m", ["short"])
    assert asyncio.run(trend.agree_all_with_hierarchy("ETHUSDT", ["15m", "4h"])) is Direction.NEUTRAL


def test_hierarchy_with_neutral_main_is_neutral(trend, ms_clock):
    _confirm_seq(trend, ms_clock, "ETHUSDT", "15m", ["long"])
    assert asyncio.run(trend.agree_all_with_hierarchy("ETHUSDT", ["15m", "4h"])) is Direction.NEUTRAL


def test_can_add_position_is_strict(trend, ms_clock):
    _confirm_seq(trend, ms_clock, "ETHUSDT", "1h", ["long"])
    assert asyncio.run(trend.can_add_position("ETHUSDT", ["1h", "15m"], "long")) is False

    _confirm_seq(trend, ms_clock, "ETHUSDT", "15m", ["long"])
    assert asyncio.run(trend.can_add_position("ETHUSDT", ["1h", "15m"], "long")) is True


def test_can_add_position_without_timeframes_is_refused(trend, ms_clock):
    _confirm_seq(trend, ms_clock, "ETHUSDT", "1h", ["long"])
    assert asyncio.run(trend.can_add_position("ETHUSDT", [], "long")) is False


def test_should_close_on_main_timeframe_reversal(trend, ms_clock):
    assert asyncio.run(trend.should_close_position("ETHUSDT", ["15m", "1h"], "long")) is False

    _confirm_seq(trend, ms_clock, "ETHUSDT", "1h", ["short"])
    assert asyncio.run(trend.should_close_position("ETHUSDT", ["15m", "1h"], "long")) is True
    assert asyncio.run(trend.should_close_position("ETHUSDT", ["15m", "1h"], "short")) is False


def test_purge_expired(trend, ms_clock):
    asyncio.run(trend.confirm("ETHUSDT", "1m", "long"))
    ms_clock.advance(3 * MINUTE_MS)
    assert asyncio.run(trend.purge_expired()) == 1
