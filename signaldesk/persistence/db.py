from __future__ import annotations

import asyncio
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, TypeVar

T = TypeVar("T")


# =========================
# Time helpers
# =========================
def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


# =========================
# Database class
# =========================
class DB:
    """
    Single source of truth for SQLite access.
    Default path: data/signaldesk.db
    """

    def __init__(self, path: str = "data/signaldesk.db"):
        self.path = path

        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)

        self._init()

    # -------------------------
    # Connection manager
    # -------------------------
    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run blocking SQLite work off the event loop."""
        return await asyncio.to_thread(fn, *args)

    # -------------------------
    # Init / migrations
    # -------------------------
    def _init(self) -> None:
        conn = sqlite3.connect(self.path, timeout=30)
        try:
            # =========================
            # Positions (one open row per bot+symbol)
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS positions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    bot_name TEXT NOT NULL,
                    symbol TEXT NOT NULL,
                    status TEXT NOT NULL,               -- open/closed
                    avg_entry_price TEXT NOT NULL,      -- decimal string
                    amount_usd TEXT NOT NULL,           -- notional, decimal string
                    fills_count INTEGER NOT NULL,
                    opened_at TEXT NOT NULL,
                    closed_at TEXT,
                    close_price TEXT,
                    meta_json TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

            # =========================
            # Trend confirmations (TTL-bound votes)
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS trend_confirmations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    symbol TEXT NOT NULL,
                    timeframe TEXT NOT NULL,
                    direction TEXT NOT NULL,            -- long/short
                    created_at_ms INTEGER NOT NULL,
                    expires_at_ms INTEGER NOT NULL,
                    source TEXT,
                    name TEXT,
                    meta_json TEXT
                )
                """
            )

            # =========================
            # Events (audit log)
            # =========================
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp_utc TEXT NOT NULL,
                    alert_id TEXT,
                    bot_name TEXT,
                    symbol TEXT,
                    event_type TEXT NOT NULL,
                    action TEXT,
                    details_json TEXT
                )
                """
            )

            # =========================
            # Indexes
            # =========================
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS uq_positions_open
                ON positions(bot_name, symbol) WHERE status = 'open'
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_positions_status ON positions(status)"
            )
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS uq_trend_name
                ON trend_confirmations(symbol, name) WHERE name IS NOT NULL
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_trend_lookup
                ON trend_confirmations(symbol, timeframe, expires_at_ms)
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_time ON events(timestamp_utc)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_symbol ON events(symbol)"
            )

            conn.commit()

        finally:
            conn.close()
