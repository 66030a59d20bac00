import asyncio
from decimal import Decimal

from signaldesk.bots.models import AlertType
from signaldesk.strategies.partial_close import SmartVolPartialCloseStrategy
from signaldesk.tests.fakes import FakeExchange, FakeNotifier, alert, make_bot


def _bot(store, trend, ex=None, note=None):
    return make_bot(SmartVolPartialCloseStrategy(store), trend, exchange=ex, notifier=note)


def test_close_ladder_arms_then_halves_then_closes(store, trend):
    ex, note = FakeExchange(), FakeNotifier()
    bot = _bot(store, trend, ex, note)

    async def scenario():
        await bot.process(alert(AlertType.SMART_OPEN, timeframe="1h"))
        await bot.process(alert(AlertType.SMART_CLOSE, timeframe="1h"))
        armed = await store.find_open(bot.name, "ETHUSDT")
        flashes_after_first = len(ex.of("flash_close"))
        await bot.process(alert(AlertType.SMART_CLOSE, timeframe="1h"))
        halved = await store.find_open(bot.name, "ETHUSDT")
        await bot.process(alert(AlertType.SMART_CLOSE, timeframe="1h"))
        return armed, flashes_after_first, halved, await store.find_open(bot.name, "ETHUSDT")

    armed, flashes_after_first, halved, after = asyncio.run(scenario())

    assert armed.amount_usd == Decimal("100")
    assert flashes_after_first == 0
    assert halved.amount_usd == Decimal("50")
    assert after is None

    flashes = ex.of("flash_close")
    assert flashes[0] == ("ETHUSDT", "long", "0.50000000")
    assert flashes[1] == ("ETHUSDT", "long", None)
    assert "waiting for a second signal" in note.joined()
    assert "PARTIAL CLOSE 50%" in note.joined()


def test_four_hour_close_is_a_full_close(store, trend):
    ex = FakeExchange()
    bot = _bot(store, trend, ex)

    async def scenario():
        await bot.process(alert(AlertType.SMART_OPEN, timeframe="1h"))
        await bot.process(alert(AlertType.SMART_CLOSE, timeframe="4h"))
        return await store.find_open(bot.name, "ETHUSDT")

    assert asyncio.run(scenario()) is None
    assert ex.of("flash_close") == [("ETHUSDT", "long", None)]


def test_ladder_restarts_after_a_new_open(store, trend):
    ex = FakeExchange()
    bot = _bot(store, trend, ex)

    async def scenario():
        await bot.process(alert(AlertType.SMART_OPEN, timeframe="1h"))
        await bot.process(alert(AlertType.SMART_CLOSE, timeframe="1h"))
        await bot.process(alert(AlertType.SMART_CLOSE, timeframe="4h"))
        await bot.process(alert(AlertType.SMART_OPEN, timeframe="1h"))
        await bot.process(alert(AlertType.SMART_CLOSE, timeframe="1h"))
        return await store.find_open(bot.name, "ETHUSDT")

    pos = asyncio.run(scenario())
    assert pos.amount_usd == Decimal("100")
    assert len(ex.of("flash_close")) == 1


def test_open_on_other_timeframes_is_skipped(store, trend):
    ex, note = FakeExchange(), FakeNotifier()
    bot = _bot(store, trend, ex, note)

    async def scenario():
        await bot.process(alert(AlertType.SMART_OPEN, timeframe="15m"))
        return await store.find_open(bot.name, "ETHUSDT")

    assert asyncio.run(scenario()) is None
    assert ex.of("place_market") == []
    assert "positions open on 1h only" in note.joined()


def test_big_close_skips_the_ladder(store, trend):
    bot = _bot(store, trend)

    async def scenario():
        await bot.process(alert(AlertType.SMART_OPEN, timeframe="1h"))
        await bot.process(alert(AlertType.SMART_BIG_CLOSE))
        return await store.find_open(bot.name, "ETHUSDT")

    assert asyncio.run(scenario()) is None
