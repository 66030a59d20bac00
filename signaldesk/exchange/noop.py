from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

log = logging.getLogger("signaldesk.exchange.noop")


class NoopExchange:
    """Paper gateway: every symbol allowed, no orders leave the process."""

    def is_allowed(self, symbol_id: str) -> bool:
        return True

    async def ensure_leverage(self, symbol_id: str, leverage: int) -> None:
        return None

    async def calc_size_from_usd(self, symbol_id: str, last_price: Decimal, usd_amount: Decimal) -> str:
        return "0"

    async def place_market(
        self, symbol_id: str, side: str, size: str, client_oid: Optional[str] = None
    ) -> None:
        log.debug("noop order %s %s %s (%s)", symbol_id, side, size, client_oid)

    async def flash_close(
        self, symbol: str, hold_side: Optional[str] = None, partial_size: Optional[str] = None
    ) -> Dict[str, Any]:
        return {"ok": True, "noop": True}
