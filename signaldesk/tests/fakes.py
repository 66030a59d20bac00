from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from signaldesk.bots.engine import BotEngine
from signaldesk.bots.models import Alert, AlertType, kind_of
from signaldesk.core.config import BotConfig


class FakeClock:
    """Callable clock returning a settable number (seconds or ms, caller's choice)."""

    def __init__(self, now: float):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, delta: float) -> None:
        self.now += delta


class FakeExchange:
    """Records every gateway call; optional error raised from flash_close."""

    def __init__(self, allowed: bool = True, close_error: Optional[Exception] = None):
        self.allowed = allowed
        self.close_error = close_error
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []

    def is_allowed(self, symbol_id: str) -> bool:
        self.calls.append(("is_allowed", (symbol_id,)))
        return self.allowed

    async def ensure_leverage(self, symbol_id: str, leverage: int) -> None:
        self.calls.append(("ensure_leverage", (symbol_id, leverage)))

    async def calc_size_from_usd(self, symbol_id: str, last_price: Decimal, usd_amount: Decimal) -> str:
        self.calls.append(("calc_size_from_usd", (symbol_id, last_price, usd_amount)))
        return f"{(Decimal(usd_amount) / Decimal(last_price)):.6f}"

    async def place_market(self, symbol_id: str, side: str, size: str, client_oid: Optional[str] = None) -> Dict[str, Any]:
        self.calls.append(("place_market", (symbol_id, side, size)))
        return {"orderId": "1"}

    async def flash_close(
        self, symbol: str, hold_side: Optional[str] = None, partial_size: Optional[str] = None
    ) -> Dict[str, Any]:
        self.calls.append(("flash_close", (symbol, hold_side, partial_size)))
        if self.close_error is not None:
            raise self.close_error
        return {"ok": True}

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def of(self, name: str) -> List[Tuple[Any, ...]]:
        return [args for n, args in self.calls if n == name]


class FakeNotifier:
    def __init__(self):
        self.messages: List[str] = []

    async def send(self, text: str) -> None:
        self.messages.append(text)

    def joined(self) -> str:
        return "\n".join(self.messages)


def bot_config(**overrides: Any) -> BotConfig:
    raw: Dict[str, Any] = {
        "name": "TestBot",
        "direction": "long",
        "telegram_channel": "bot1",
        "smartvol": {"baseUsd": 100, "addFraction": 0.5, "leverage": 10},
    }
    raw.update(overrides)
    return BotConfig.model_validate(raw)


def make_bot(strategy_impl, trend, exchange: Optional[FakeExchange] = None, notifier: Optional[FakeNotifier] = None, **cfg: Any) -> BotEngine:
    return BotEngine(
        cfg=bot_config(**cfg),
        exchange=exchange or FakeExchange(),
        notifier=notifier or FakeNotifier(),
        trend=trend,
        strategy=strategy_impl,
    )


def alert(
    alert_type: AlertType,
    symbol: str = "ETHUSDT",
    price: str = "100",
    timeframe: Optional[str] = None,
    volume: Optional[float] = None,
) -> Alert:
    return Alert(
        kind=kind_of(alert_type),
        type=alert_type,
        symbol=symbol,
        price=Decimal(price),
        timeframe=timeframe,
        volume=volume,
        raw_name=alert_type.value,
    )
