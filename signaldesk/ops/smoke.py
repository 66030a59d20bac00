"""
Connectivity smoke check: signed Bitget contracts call plus Telegram getMe for
every channel in the bots file.

    python -m signaldesk.ops.smoke
"""
from __future__ import annotations

import os
from typing import Dict, List

from dotenv import load_dotenv

from signaldesk.core.config import load_bots_file
from signaldesk.exchange.bitget.client import BitgetClient
from signaldesk.exchange.errors import ExchangeError
from signaldesk.services.telegram import TelegramService


def read_env() -> Dict[str, str]:
    return {
        "key": os.getenv("BITGET_API_KEY", "").strip(),
        "secret": os.getenv("BITGET_API_SECRET", "").strip(),
        "passphrase": os.getenv("BITGET_PASSPHRASE", "").strip(),
        "base": os.getenv("BITGET_BASE_URL", "https://api.bitget.com").strip(),
        "product_type": os.getenv("BITGET_PRODUCT_TYPE", "umcbl").strip().lower(),
        "bots_path": os.getenv("BOTS_CONFIG_PATH", "config/bots.json").strip(),
        "telegram_api": os.getenv("TELEGRAM_API_URL", "https://api.telegram.org").strip(),
    }


def check_bitget(env: Dict[str, str]) -> str:
    if not env["key"] or not env["secret"] or not env["passphrase"]:
        return "bitget: SKIPPED (credentials missing)"
    client = BitgetClient(env["key"], env["secret"], env["passphrase"], base_url=env["base"])
    try:
        rows = client.contracts(env["product_type"])
    except ExchangeError as e:
        return f"bitget: FAILED ({e})"
    return f"bitget: OK ({len(rows)} contracts)"


def check_telegram(env: Dict[str, str]) -> List[str]:
    _, channels = load_bots_file(env["bots_path"])
    service = TelegramService(channels, api_url=env["telegram_api"])
    return [f"telegram {name}: {'OK' if service.test_connection(name) else 'FAILED'}" for name in channels]


def main() -> int:
    load_dotenv()
    env = read_env()
    lines = [check_bitget(env)] + check_telegram(env)
    for line in lines:
        print(line)
    return 1 if any("FAILED" in line for line in lines) else 0


if __name__ == "__main__":
    raise SystemExit(main())
