import asyncio
import base64
import hashlib
import hmac
from decimal import Decimal

import pytest

from signaldesk.exchange.bitget.client import BitgetClient
from signaldesk.exchange.bitget.contracts import ContractSpec, contract_from_row, size_from_usd
from signaldesk.exchange.bitget.gateway import BitgetExchangeGateway
from signaldesk.exchange.bitget.signing import build_query, prehash, sign
from signaldesk.exchange.bitget.symbols import (
    alert_symbol_to_base,
    to_bitget_symbol_id,
    to_bitget_v2_symbol,
    v2_product_type,
)
from signaldesk.exchange.errors import ExchangeError, is_no_position_error


class _FakeClient:
    """Minimal fake Bitget client for gateway tests."""

    def __init__(self, *, order_errors=None, close_error=None):
        # errors raised by successive place_order calls
        self._order_errors = list(order_errors or [])
        self.close_error = close_error
        self.orders = []
        self.closes = []
        self.leverage_calls = 0
        self.contract_calls = 0

    def contracts(self, product_type):
        self.contract_calls += 1
        return [
            {
                "symbol": "ETHUSDT_UMCBL",
                "volumePlace": "2",
                "pricePlace": "2",
                "sizeMultiplier": "0.01",
                "minTradeNum": "0.01",
                "maxMarketOrderQty": "100",
            }
        ]

    def set_leverage(self, symbol_id, margin_coin, leverage, hold_side=None):
        self.leverage_calls += 1

    def place_order(self, symbol_id, margin_coin, side, size, client_oid=None):
        self.orders.append((symbol_id, side, size))
        if self._order_errors:
            raise self._order_errors.pop(0)
        return {"orderId": str(len(self.orders))}

    def close_positions(self, symbol_v2, product_type_v2, hold_side=None):
        self.closes.append((symbol_v2, product_type_v2, hold_side))
        if self.close_error is not None:
            raise self.close_error
        return {"successList": [symbol_v2]}


def _gateway(client):
    return BitgetExchangeGateway(client, allowed_symbols=["ETHUSDT_UMCBL"])


def test_prehash_and_sign():
    payload = prehash("1700000000000", "post", "/api/mix/v1/order/placeOrder", body='{"a":1}')
    assert payload == '1700000000000POST/api/mix/v1/order/placeOrder{"a":1}'
    assert prehash("1", "GET", "/p", query="x=1") == "1GET/p?x=1"
    expected = base64.b64encode(hmac.new(b"secret", b"payload", hashlib.sha256).digest()).decode("ascii")
    assert sign("secret", "payload") == expected
    assert build_query({"a": 1, "b": None}) == "a=1"


def test_symbol_normalisation():
    assert alert_symbol_to_base("op_usdt") == "OPUSDT"
    assert alert_symbol_to_base("op") == "OPUSDT"
    assert to_bitget_symbol_id("ethusdt") == "ETHUSDT_UMCBL"
    assert to_bitget_v2_symbol("ETHUSDT") == "ETHUSDT"
    assert v2_product_type("umcbl") == "USDT-FUTURES"
    assert v2_product_type("dmcbl") == "COIN-FUTURES"


def test_size_from_usd_floors_to_step():
    spec = contract_from_row(
        {"symbol": "ETHUSDT_UMCBL", "volumePlace": 2, "sizeMultiplier": "0.01", "minTradeNum": "0.01"}
    )
    assert size_from_usd(spec, Decimal("3000"), Decimal("100")) == "0.03"


def test_size_from_usd_lifts_to_min_and_caps_at_max():
    spec = ContractSpec("X", 0, 2, Decimal("1"), Decimal("5"), Decimal("10"))
    assert size_from_usd(spec, Decimal("100"), Decimal("10")) == "5"
    assert size_from_usd(spec, Decimal("1"), Decimal("1000")) == "10"
    with pytest.raises(ValueError):
        size_from_usd(spec, Decimal("0"), Decimal("10"))


def test_no_position_error_detection():
    assert is_no_position_error(ExchangeError("whatever", code="22002"))
    assert is_no_position_error(RuntimeError("No position to close"))
    assert not is_no_position_error(ExchangeError("rate limited", code="429"))


def test_place_market_retries_hedge_side_on_mismatch():
    client = _FakeClient(order_errors=[ExchangeError("side mismatch", code="400172")])
    gw = _gateway(client)

    asyncio.run(gw.place_market("ETHUSDT_UMCBL", "buy", "0.03"))

    assert [o[1] for o in client.orders] == ["buy", "open_long"]


def test_place_market_other_errors_propagate():
    client = _FakeClient(order_errors=[ExchangeError("insufficient balance", code="40754")])
    with pytest.raises(ExchangeError):
        asyncio.run(_gateway(client).place_market("ETHUSDT_UMCBL", "sell", "1"))
    assert len(client.orders) == 1


def test_flash_close_without_position_is_a_noop():
    client = _FakeClient(close_error=ExchangeError("No position to close", code="22002"))
    result = asyncio.run(_gateway(client).flash_close("ETHUSDT", "long"))
    assert result["noop"] is True
    assert client.closes == [("ETHUSDT", "USDT-FUTURES", "long")]


def test_flash_close_partial_reduces_with_close_side():
    client = _FakeClient()
    asyncio.run(_gateway(client).flash_close("ETHUSDT", "short", "0.5"))
    assert client.orders == [("ETHUSDT_UMCBL", "close_short", "0.5")]
    assert client.closes == []


def test_flash_close_skips_disallowed_symbols():
    client = _FakeClient()
    result = asyncio.run(_gateway(client).flash_close("DOGEUSDT", "long"))
    assert result["skipped"] is True
    assert client.closes == []


def test_contracts_and_leverage_are_cached():
    client = _FakeClient()
    gw = _gateway(client)

    async def scenario():
        first = await gw.calc_size_from_usd("ETHUSDT_UMCBL", Decimal("2000"), Decimal("100"))
        await gw.calc_size_from_usd("ETHUSDT_UMCBL", Decimal("2000"), Decimal("100"))
        await gw.ensure_leverage("ETHUSDT_UMCBL", 10)
        await gw.ensure_leverage("ETHUSDT_UMCBL", 10)
        return first

    assert asyncio.run(scenario()) == "0.05"
    assert client.contract_calls == 1
    assert client.leverage_calls == 1


class _Resp:
    def __init__(self, status_code, data):
        self.status_code = status_code
        self._data = data
        self.content = b"x"
        self.text = str(data)
        self.headers = {}

    def json(self):
        return self._data


def test_client_raises_on_error_code_in_body(monkeypatch):
    monkeypatch.setattr(
        "signaldesk.exchange.bitget.client.requests.request",
        lambda *a, **kw: _Resp(200, {"code": "40019", "msg": "bad param"}),
    )
    client = BitgetClient("k", "s", "p")
    with pytest.raises(ExchangeError) as e:
        client.contracts("umcbl")
    assert e.value.code == "40019"


def test_client_retries_server_errors(monkeypatch):
    responses = [_Resp(502, None), _Resp(200, {"code": "00000", "data": [{"symbol": "ETHUSDT_UMCBL"}]})]
    monkeypatch.setattr("signaldesk.exchange.bitget.client.requests.request", lambda *a, **kw: responses.pop(0))
    monkeypatch.setattr("signaldesk.exchange.bitget.client.time.sleep", lambda s: None)

    assert BitgetClient("k", "s", "p").contracts("umcbl") == [{"symbol": "ETHUSDT_UMCBL"}]


def test_client_requires_credentials():
    with pytest.raises(ValueError):
        BitgetClient("", "", "").contracts("umcbl")
