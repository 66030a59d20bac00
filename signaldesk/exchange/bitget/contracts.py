from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Optional


@dataclass(frozen=True)
class ContractSpec:
    symbol: str
    volume_place: int
    price_place: int
    size_multiplier: Decimal
    min_trade_num: Decimal
    max_market_order_qty: Optional[Decimal]


def contract_from_row(row: dict) -> ContractSpec:
    """Parse one row of /api/mix/v1/market/contracts."""
    max_qty = row.get("maxMarketOrderQty")
    return ContractSpec(
        symbol=str(row["symbol"]),
        volume_place=int(row.get("volumePlace") or 0),
        price_place=int(row.get("pricePlace") or 0),
        size_multiplier=Decimal(str(row.get("sizeMultiplier") or "0")),
        min_trade_num=Decimal(str(row.get("minTradeNum") or "0")),
        max_market_order_qty=Decimal(str(max_qty)) if max_qty else None,
    )


def size_step(spec: ContractSpec) -> Decimal:
    if spec.size_multiplier > 0:
        return spec.size_multiplier
    return Decimal(1).scaleb(-spec.volume_place)


def size_from_usd(spec: ContractSpec, last_price: Decimal, usd_amount: Decimal) -> str:
    """
    Contract quantity for a USD notional:
    floor to the size step, lift to minTradeNum, cap at maxMarketOrderQty.
    """
    if usd_amount <= 0:
        raise ValueError("usd_amount must be > 0")
    if last_price <= 0:
        raise ValueError("last_price must be > 0")

    raw = usd_amount / last_price
    step = size_step(spec)
    floored = (raw / step).to_integral_value(rounding=ROUND_DOWN) * step

    qty = max(floored, spec.min_trade_num)
    if spec.max_market_order_qty is not None:
        qty = min(qty, spec.max_market_order_qty)

    q = Decimal(1).scaleb(-spec.volume_place)
    qty = qty.quantize(q, rounding=ROUND_DOWN)
    if qty < spec.min_trade_num:
        raise ValueError(f"Size {qty} < minTradeNum {spec.min_trade_num}")
    return f"{qty:.{spec.volume_place}f}"
