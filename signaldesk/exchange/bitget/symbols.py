from __future__ import annotations


def alert_symbol_to_base(symbol: str) -> str:
    """
    "op_usdt" -> "OPUSDT", "OP" -> "OPUSDT", "ETHUSDT" -> "ETHUSDT".
    """
    s = str(symbol).upper().strip()
    if s.endswith("_USDT"):
        return s[: -len("_USDT")].replace("_", "") + "USDT"
    if s.endswith("USDT"):
        return s
    return f"{s}USDT"


def to_bitget_symbol_id(symbol: str) -> str:
    """v1 mix symbol id: "OPUSDT_UMCBL"."""
    return f"{alert_symbol_to_base(symbol)}_UMCBL"


def to_bitget_v2_symbol(symbol: str) -> str:
    return alert_symbol_to_base(symbol)


def v2_product_type(product_type: str) -> str:
    p = (product_type or "").lower()
    if p in {"umcbl", "umcb", "usdt"}:
        return "USDT-FUTURES"
    if p in {"dmcbl", "coin"}:
        return "COIN-FUTURES"
    if p in {"cmcbl", "usdc"}:
        return "USDC-FUTURES"
    return "USDT-FUTURES"
