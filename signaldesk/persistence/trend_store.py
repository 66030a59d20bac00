# signaldesk/persistence/trend_store.py

from __future__ import annotations

import json
import sqlite3
from typing import Any, Dict, List, Optional

from signaldesk.bots.models import Direction, TrendConfirmation
from signaldesk.persistence.db import DB


def _row_to_confirmation(r: sqlite3.Row) -> TrendConfirmation:
    return TrendConfirmation(
        id=int(r["id"]),
        symbol=r["symbol"],
        timeframe=r["timeframe"],
        direction=Direction(r["direction"]),
        created_at_ms=int(r["created_at_ms"]),
        expires_at_ms=int(r["expires_at_ms"]),
        source=r["source"],
        name=r["name"],
        meta=json.loads(r["meta_json"]) if r["meta_json"] else {},
    )


class TrendStore:
    """Trend confirmation rows. Named rows are unique per (symbol, name)."""

    def __init__(self, db: DB):
        self.db = db

    async def live(self, symbol: str, timeframe: str, now_ms: int) -> List[TrendConfirmation]:
        """Non-expired rows for (symbol, timeframe), newest first."""
        return await self.db.run(self._live, symbol, timeframe, now_ms)

    async def save(
        self,
        symbol: str,
        timeframe: str,
        direction: Direction,
        created_at_ms: int,
        expires_at_ms: int,
        source: Optional[str] = None,
        name: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> TrendConfirmation:
        """
        Insert a confirmation. When `name` is given and a row with (symbol, name)
        exists, that row is overwritten in place instead.
        """
        return await self.db.run(
            self._save,
            symbol,
            timeframe,
            direction,
            created_at_ms,
            expires_at_ms,
            source,
            name,
            meta or {},
        )

    async def purge_expired(self, now_ms: int) -> int:
        return await self.db.run(self._purge_expired, now_ms)

    # =========================
    # sync internals
    # =========================
    def _live(self, symbol: str, timeframe: str, now_ms: int) -> List[TrendConfirmation]:
        with self.db.connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM trend_confirmations
                WHERE symbol = ? AND timeframe = ? AND expires_at_ms > ?
                ORDER BY created_at_ms DESC, id DESC
                """,
                (symbol, timeframe, now_ms),
            ).fetchall()
        return [_row_to_confirmation(r) for r in rows]

    def _save(
        self,
        symbol: str,
        timeframe: str,
        direction: Direction,
        created_at_ms: int,
        expires_at_ms: int,
        source: Optional[str],
        name: Optional[str],
        meta: Dict[str, Any],
    ) -> TrendConfirmation:
        meta_json = json.dumps(meta, ensure_ascii=False) if meta else None
        with self.db.connect() as conn:
            existing = None
            if name:
                existing = conn.execute(
                    "SELECT id FROM trend_confirmations WHERE symbol = ? AND name = ?",
                    (symbol, name),
                ).fetchone()

            if existing:
                row_id = int(existing["id"])
                conn.execute(
                    """
                    UPDATE trend_confirmations
                    SET timeframe = ?, direction = ?, created_at_ms = ?, expires_at_ms = ?,
                        source = ?, meta_json = ?
                    WHERE id = ?
                    """,
                    (timeframe, direction.value, created_at_ms, expires_at_ms, source, meta_json, row_id),
                )
            else:
                cur = conn.execute(
                    """
                    INSERT INTO trend_confirmations(
                        symbol, timeframe, direction, created_at_ms, expires_at_ms, source, name, meta_json
                    )
                    VALUES (?,?,?,?,?,?,?,?)
                    """,
                    (symbol, timeframe, direction.value, created_at_ms, expires_at_ms, source, name, meta_json),
                )
                row_id = int(cur.lastrowid)

            row = conn.execute(
                "SELECT * FROM trend_confirmations WHERE id = ?", (row_id,)
            ).fetchone()
        return _row_to_confirmation(row)

    def _purge_expired(self, now_ms: int) -> int:
        with self.db.connect() as conn:
            cur = conn.execute(
                "DELETE FROM trend_confirmations WHERE expires_at_ms <= ?", (now_ms,)
            )
            return int(cur.rowcount or 0)
