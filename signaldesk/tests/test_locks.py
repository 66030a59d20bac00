import asyncio

from signaldesk.bots.locks import KeyedLocks
from signaldesk.bots.models import AlertType
from signaldesk.strategies.smartvol_default import SmartVolDefaultStrategy
from signaldesk.tests.fakes import alert, make_bot


def test_same_key_is_serialized_and_released():
    locks = KeyedLocks()
    events = []

    async def worker(tag):
        async with locks.hold("ETHUSDT"):
            events.append(f"{tag}-in")
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            events.append(f"{tag}-out")

    async def run():
        await asyncio.gather(worker("a"), worker("b"))
        return len(locks)

    assert asyncio.run(run()) == 0
    assert events == ["a-in", "a-out", "b-in", "b-out"]


def test_lock_is_dropped_even_when_the_body_raises():
    locks = KeyedLocks()

    async def run():
        try:
            async with locks.hold("BTCUSDT"):
                assert len(locks) == 1
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        return len(locks)

    assert asyncio.run(run()) == 0


def test_engine_does_not_keep_a_lock_per_symbol(store, trend):
    bot = make_bot(SmartVolDefaultStrategy(store), trend)

    async def run():
        for symbol in ("ETHUSDT", "BTCUSDT", "SOLUSDT"):
            await bot.process(alert(AlertType.SMART_OPEN, symbol=symbol))

    asyncio.run(run())
    assert len(bot._locks) == 0
