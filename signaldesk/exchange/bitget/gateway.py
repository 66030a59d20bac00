from __future__ import annotations

import asyncio
import logging
import time
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Set

from signaldesk.exchange.bitget.client import BitgetClient
from signaldesk.exchange.bitget.contracts import ContractSpec, contract_from_row, size_from_usd
from signaldesk.exchange.bitget.symbols import to_bitget_symbol_id, to_bitget_v2_symbol, v2_product_type
from signaldesk.exchange.errors import ExchangeError, is_no_position_error

log = logging.getLogger("signaldesk.exchange.bitget")

SIDE_MISMATCH_CODE = "400172"


def _is_side_mismatch(err: ExchangeError) -> bool:
    return str(err.code) == SIDE_MISMATCH_CODE and "side mismatch" in str(err).lower()


class BitgetExchangeGateway:
    """
    Live gateway. Blocking HTTP runs in a worker thread; contract metadata and
    applied leverage are cached per process.
    """

    def __init__(
        self,
        client: BitgetClient,
        allowed_symbols: Iterable[str],
        product_type: str = "umcbl",
        margin_coin: str = "USDT",
        contract_cache_ttl: float = 600.0,
    ):
        self.client = client
        self.allowed: Set[str] = {s.strip().upper() for s in allowed_symbols if s.strip()}
        self.product_type = product_type
        self.margin_coin = margin_coin
        self.contract_cache_ttl = contract_cache_ttl

        self._contracts: Dict[str, ContractSpec] = {}
        self._contracts_ts: float = 0.0
        self._leverage_applied: Set[str] = set()

    def is_allowed(self, symbol_id: str) -> bool:
        return symbol_id.upper() in self.allowed

    # ---------------- contracts ----------------
    def _load_contract(self, symbol_id: str) -> ContractSpec:
        now = time.time()
        cached = self._contracts.get(symbol_id)
        if cached and now - self._contracts_ts < self.contract_cache_ttl:
            return cached

        rows = self.client.contracts(self.product_type)
        self._contracts = {str(r.get("symbol")): contract_from_row(r) for r in rows if r.get("symbol")}
        self._contracts_ts = now

        spec = self._contracts.get(symbol_id)
        if spec is None:
            raise ExchangeError(f"Contract config not found for {symbol_id}")
        return spec

    async def calc_size_from_usd(self, symbol_id: str, last_price: Decimal, usd_amount: Decimal) -> str:
        spec = await asyncio.to_thread(self._load_contract, symbol_id)
        return size_from_usd(spec, Decimal(str(last_price)), Decimal(str(usd_amount)))

    # ---------------- leverage ----------------
    async def ensure_leverage(self, symbol_id: str, leverage: int, hold_side: Optional[str] = None) -> None:
        key = f"{symbol_id}:{hold_side or 'na'}:{leverage}"
        if key in self._leverage_applied:
            return
        await asyncio.to_thread(self.client.set_leverage, symbol_id, self.margin_coin, leverage, hold_side)
        self._leverage_applied.add(key)
        log.info("Leverage set %s x%s", symbol_id, leverage)

    # ---------------- orders ----------------
    async def place_market(
        self, symbol_id: str, side: str, size: str, client_oid: Optional[str] = None
    ) -> Any:
        try:
            return await asyncio.to_thread(
                self.client.place_order, symbol_id, self.margin_coin, side, size, client_oid
            )
        except ExchangeError as e:
            if not _is_side_mismatch(e):
                raise
            log.warning("One-way order rejected with side mismatch for %s, retrying hedge mode", symbol_id)

        hedge_side = "open_long" if side == "buy" else "open_short"
        return await asyncio.to_thread(
            self.client.place_order, symbol_id, self.margin_coin, hedge_side, size, client_oid
        )

    async def reduce_market(
        self, symbol_id: str, hold_side: str, size: str, client_oid: Optional[str] = None
    ) -> Any:
        side = "close_long" if hold_side == "long" else "close_short"
        return await asyncio.to_thread(
            self.client.place_order, symbol_id, self.margin_coin, side, size, client_oid
        )

    async def flash_close(
        self, symbol: str, hold_side: Optional[str] = None, partial_size: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Market-close a position. "No position" responses count as success.
        With partial_size, only that quantity is reduced.
        """
        symbol_id = to_bitget_symbol_id(symbol)
        if not self.is_allowed(symbol_id):
            log.warning("flash_close skipped: symbol not allowed: %s -> %s", symbol, symbol_id)
            return {"skipped": True, "reason": "symbol-not-allowed", "symbolId": symbol_id}

        try:
            if partial_size is not None:
                data = await self.reduce_market(symbol_id, hold_side or "long", partial_size)
            else:
                data = await asyncio.to_thread(
                    self.client.close_positions,
                    to_bitget_v2_symbol(symbol),
                    v2_product_type(self.product_type),
                    hold_side,
                )
        except ExchangeError as e:
            if is_no_position_error(e):
                log.info("flash_close: no %s position on exchange, treating as closed", symbol)
                return {"ok": True, "noop": True, "reason": "no-position-on-exchange"}
            log.error("flash_close failed for %s: %s", symbol, e)
            raise
        return {"ok": True, "data": data}
