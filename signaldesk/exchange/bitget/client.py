from __future__ import annotations

import json
import logging
import random
import time
from typing import Any, Dict, List, Optional

import requests

from signaldesk.exchange.bitget.signing import build_query, prehash, sign
from signaldesk.exchange.errors import ExchangeError

log = logging.getLogger("signaldesk.exchange.bitget")

SUCCESS_CODE = "00000"


class BitgetClient:
    """Signed Bitget mix REST client (blocking)."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        passphrase: str,
        base_url: str = "https://api.bitget.com",
        timeout: float = 15.0,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.passphrase = passphrase
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    # ------------------------------------------------------------------
    # request helper: retries rate limits, 5xx and network errors
    # ------------------------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        body: Optional[dict] = None,
        max_retries: int = 4,
    ) -> Any:
        if not self.api_key or not self.api_secret or not self.passphrase:
            raise ValueError("Missing BITGET_API_KEY / BITGET_API_SECRET / BITGET_PASSPHRASE in .env")

        method = method.upper()
        query = build_query(params or {})
        body_str = json.dumps(body, separators=(",", ":")) if body is not None else ""
        url = f"{self.base_url}{path}" + (f"?{query}" if query else "")

        last_err: Optional[Exception] = None
        for attempt in range(max_retries + 1):
            ts = str(int(time.time() * 1000))
            headers = {
                "ACCESS-KEY": self.api_key,
                "ACCESS-SIGN": sign(self.api_secret, prehash(ts, method, path, query, body_str)),
                "ACCESS-PASSPHRASE": self.passphrase,
                "ACCESS-TIMESTAMP": ts,
                "locale": "en-US",
                "Content-Type": "application/json",
            }
            try:
                r = requests.request(
                    method,
                    url,
                    headers=headers,
                    data=body_str if method == "POST" else None,
                    timeout=self.timeout,
                )
            except (requests.Timeout, requests.ConnectionError) as e:
                last_err = e
                time.sleep(min(0.4 * (2**attempt), 8.0))
                continue

            # Rate limit
            if r.status_code == 429:
                ra = r.headers.get("Retry-After")
                sleep_s = float(ra) if ra else (0.4 * (2**attempt))
                sleep_s += random.uniform(0, 0.2)
                time.sleep(min(sleep_s, 10.0))
                last_err = ExchangeError("rate limited", status=429)
                continue

            # Server errors
            if r.status_code >= 500:
                last_err = ExchangeError(r.text[:200], status=r.status_code)
                time.sleep(min(0.4 * (2**attempt), 8.0))
                continue

            try:
                data = r.json() if r.content else None
            except ValueError:
                data = None

            if r.status_code >= 400:
                code = str(data.get("code")) if isinstance(data, dict) and data.get("code") else None
                msg = (data or {}).get("msg") if isinstance(data, dict) else None
                raise ExchangeError(msg or r.text, code=code, status=r.status_code, data=data)

            if isinstance(data, dict) and data.get("code") and str(data["code"]) != SUCCESS_CODE:
                raise ExchangeError(
                    str(data.get("msg") or ""), code=str(data["code"]), status=r.status_code, data=data
                )
            return data

        raise ExchangeError(f"Bitget request failed after retries: {method} {path} ({last_err})")

    # ---------------- MARKET ----------------
    def contracts(self, product_type: str) -> List[Dict[str, Any]]:
        data = self._request("GET", "/api/mix/v1/market/contracts", params={"productType": product_type})
        return list((data or {}).get("data") or [])

    # ---------------- ACCOUNT ----------------
    def set_leverage(
        self, symbol_id: str, margin_coin: str, leverage: int, hold_side: Optional[str] = None
    ) -> Any:
        body: Dict[str, Any] = {"symbol": symbol_id, "marginCoin": margin_coin, "leverage": str(leverage)}
        if hold_side:
            body["holdSide"] = hold_side
        data = self._request("POST", "/api/mix/v1/account/setLeverage", body=body)
        return (data or {}).get("data")

    # ---------------- ORDERS ----------------
    def place_order(
        self,
        symbol_id: str,
        margin_coin: str,
        side: str,
        size: str,
        client_oid: Optional[str] = None,
    ) -> Any:
        body: Dict[str, Any] = {
            "symbol": symbol_id,
            "marginCoin": margin_coin,
            "size": size,
            "side": side,
            "orderType": "market",
        }
        if client_oid:
            body["clientOid"] = client_oid
        data = self._request("POST", "/api/mix/v1/order/placeOrder", body=body)
        return (data or {}).get("data")

    def close_positions(self, symbol_v2: str, product_type_v2: str, hold_side: Optional[str] = None) -> Any:
        body: Dict[str, Any] = {"symbol": symbol_v2, "productType": product_type_v2}
        if hold_side:
            body["holdSide"] = hold_side
        data = self._request("POST", "/api/v2/mix/order/close-positions", body=body)
        return (data or {}).get("data")
