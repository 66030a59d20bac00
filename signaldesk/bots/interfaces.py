from decimal import Decimal
from typing import Any, List, Optional, Protocol

from signaldesk.bots.models import Direction


class ExchangeGateway(Protocol):
    def is_allowed(self, symbol_id: str) -> bool: ...

    async def ensure_leverage(self, symbol_id: str, leverage: int) -> None: ...

    async def calc_size_from_usd(
        self, symbol_id: str, last_price: Decimal, usd_amount: Decimal
    ) -> str: ...

    async def place_market(
        self, symbol_id: str, side: str, size: str, client_oid: Optional[str] = None
    ) -> Any: ...

    async def flash_close(
        self, symbol: str, hold_side: Optional[str] = None, partial_size: Optional[str] = None
    ) -> Any: ...


class Notifier(Protocol):
    async def send(self, text: str) -> None: ...


class TrendProvider(Protocol):
    async def get_current_trend(self, symbol: str, timeframe: str) -> Direction: ...

    async def agree_all(self, symbol: str, timeframes: List[str]) -> Direction: ...

    async def agree_all_with_hierarchy(self, symbol: str, timeframes: List[str]) -> Direction: ...

    async def can_add_position(
        self, symbol: str, timeframes: List[str], expected_direction: str
    ) -> bool: ...

    async def should_close_position(
        self, symbol: str, timeframes: List[str], current_direction: str
    ) -> bool: ...
