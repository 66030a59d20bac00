# signaldesk/persistence/positions_store.py

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Union

from signaldesk.bots.models import Direction, PnL, Position, PositionMeta, meta_from_dict
from signaldesk.persistence.db import DB, utc_now, utc_now_iso

Number = Union[Decimal, str, int, float]

_AVG_QUANT = Decimal("1e-12")


class PositionAlreadyOpenError(RuntimeError):
    """Raised when a second open row for the same (bot, symbol) would be created."""


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _dec_str(value: Decimal) -> str:
    # plain notation, no exponent, trailing zeros trimmed
    s = format(value, "f")
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    return s or "0"


def _row_to_position(r: sqlite3.Row) -> Position:
    meta_raw = json.loads(r["meta_json"]) if r["meta_json"] else None
    return Position(
        id=int(r["id"]),
        bot_name=r["bot_name"],
        symbol=r["symbol"],
        status=r["status"],
        avg_entry_price=Decimal(r["avg_entry_price"]),
        amount_usd=Decimal(r["amount_usd"]),
        fills_count=int(r["fills_count"] or 0),
        opened_at=datetime.fromisoformat(r["opened_at"]),
        closed_at=datetime.fromisoformat(r["closed_at"]) if r["closed_at"] else None,
        close_price=Decimal(r["close_price"]) if r["close_price"] else None,
        meta=meta_from_dict(meta_raw),
    )


class PositionsStore:
    """
    Durable positions keyed by (bot_name, symbol).
    At most one row with status='open' per key (enforced by a partial unique index).
    Money is kept as decimal strings on disk.
    """

    def __init__(self, db: DB):
        self.db = db

    # ---------- READS ----------
    async def find_open(self, bot_name: str, symbol: str) -> Optional[Position]:
        return await self.db.run(self._find_open, bot_name, symbol)

    async def get(self, position_id: int) -> Optional[Position]:
        return await self.db.run(self._get, position_id)

    async def get_all_open_positions(self, bot_name: Optional[str] = None) -> List[Position]:
        return await self.db.run(self._all_open, bot_name)

    # ---------- WRITES ----------
    async def open(
        self,
        bot_name: str,
        symbol: str,
        price: Number,
        usd_amount: Number,
        meta: Optional[PositionMeta] = None,
    ) -> Position:
        return await self.db.run(
            self._open, bot_name, symbol, to_decimal(price), to_decimal(usd_amount), meta
        )

    async def add(self, position: Position, add_price: Number, add_usd: Number) -> Position:
        return await self.db.run(self._add, position.id, to_decimal(add_price), to_decimal(add_usd))

    async def reduce(self, position: Position, close_usd: Number) -> Position:
        """Partial exit bookkeeping: lowers the open notional, keeps the entry average."""
        return await self.db.run(self._reduce, position.id, to_decimal(close_usd))

    async def update_meta(self, position: Position, meta: Optional[PositionMeta]) -> Position:
        return await self.db.run(self._update_meta, position.id, meta)

    async def close(self, position: Position, close_price: Number) -> Position:
        return await self.db.run(self._close, position.id, to_decimal(close_price))

    # ---------- PNL (pure) ----------
    def calculate_pnl(
        self, position: Position, current_price: Number, side: Direction = Direction.LONG
    ) -> PnL:
        price = to_decimal(current_price)
        amount = position.amount_usd
        avg = position.avg_entry_price

        qty = amount / avg if avg > 0 else Decimal("0")
        current_value = qty * price
        if side is Direction.SHORT:
            pnl = amount - current_value
        else:
            pnl = current_value - amount
        pnl_percent = (pnl / amount * 100) if amount > 0 else Decimal("0")

        return PnL(
            total_size=qty,
            avg_entry_price=avg,
            current_price=price,
            current_value=current_value,
            pnl=pnl,
            pnl_percent=pnl_percent,
        )

    def get_position_info(
        self,
        position: Position,
        current_price: Optional[Number] = None,
        side: Direction = Direction.LONG,
    ) -> Dict[str, Any]:
        now = utc_now()
        end = position.closed_at or now
        duration_s = max(0, int((end - position.opened_at).total_seconds()))
        info: Dict[str, Any] = {
            "id": position.id,
            "botName": position.bot_name,
            "symbol": position.symbol,
            "status": position.status,
            "avgEntryPrice": _dec_str(position.avg_entry_price),
            "amountUsd": _dec_str(position.amount_usd),
            "fillsCount": position.fills_count,
            "openedAt": position.opened_at.isoformat(),
            "closedAt": position.closed_at.isoformat() if position.closed_at else None,
            "durationSeconds": duration_s,
            "duration": format_duration(duration_s),
            "meta": position.meta.to_dict() if position.meta else None,
            "pnl": None,
        }
        if current_price is not None:
            info["pnl"] = self.calculate_pnl(position, current_price, side).as_dict()
        return info

    async def get_bot_summary(
        self, bot_name: str, current_prices: Optional[Mapping[str, Number]] = None
    ) -> Dict[str, Any]:
        prices = {k.upper(): to_decimal(v) for k, v in (current_prices or {}).items()}
        positions = await self.get_all_open_positions(bot_name)

        total_invested = Decimal("0")
        total_value = Decimal("0")
        items: List[Dict[str, Any]] = []
        for p in positions:
            total_invested += p.amount_usd
            price = prices.get(p.symbol.upper())
            info = self.get_position_info(p, price)
            if price is not None:
                total_value += self.calculate_pnl(p, price).current_value
            else:
                # unpriced positions count at cost
                total_value += p.amount_usd
            items.append(info)

        total_pnl = total_value - total_invested
        pnl_pct = (total_pnl / total_invested * 100) if total_invested > 0 else Decimal("0")
        return {
            "botName": bot_name,
            "openPositions": len(positions),
            "totalInvested": f"{total_invested:.2f}",
            "totalCurrentValue": f"{total_value:.2f}",
            "totalPnl": f"{total_pnl:.2f}",
            "totalPnlPercent": f"{pnl_pct:.2f}",
            "positions": items,
        }

    # =========================
    # sync internals (run in worker thread)
    # =========================
    def _get(self, position_id: int) -> Optional[Position]:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM positions WHERE id = ?", (position_id,)).fetchone()
        return _row_to_position(row) if row else None

    def _find_open(self, bot_name: str, symbol: str) -> Optional[Position]:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM positions WHERE bot_name = ? AND symbol = ? AND status = 'open'",
                (bot_name, symbol),
            ).fetchone()
        return _row_to_position(row) if row else None

    def _all_open(self, bot_name: Optional[str]) -> List[Position]:
        with self.db.connect() as conn:
            if bot_name:
                rows = conn.execute(
                    "SELECT * FROM positions WHERE status = 'open' AND bot_name = ? ORDER BY id",
                    (bot_name,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM positions WHERE status = 'open' ORDER BY id"
                ).fetchall()
        return [_row_to_position(r) for r in rows]

    def _open(
        self,
        bot_name: str,
        symbol: str,
        price: Decimal,
        usd: Decimal,
        meta: Optional[PositionMeta],
    ) -> Position:
        now = utc_now_iso()
        meta_json = json.dumps(meta.to_dict()) if meta else None
        try:
            with self.db.connect() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO positions(
                        bot_name, symbol, status, avg_entry_price, amount_usd, fills_count,
                        opened_at, meta_json, created_at, updated_at
                    )
                    VALUES (?,?,?,?,?,?,?,?,?,?)
                    """,
                    (bot_name, symbol, "open", _dec_str(price), _dec_str(usd), 1, now, meta_json, now, now),
                )
                new_id = cur.lastrowid
        except sqlite3.IntegrityError as e:
            raise PositionAlreadyOpenError(
                f"Open position already exists for {bot_name}/{symbol}"
            ) from e

        pos = self._get(int(new_id))
        assert pos is not None
        return pos

    def _add(self, position_id: int, add_price: Decimal, add_usd: Decimal) -> Position:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM positions WHERE id = ? AND status = 'open'", (position_id,)
            ).fetchone()
            if not row:
                raise ValueError(f"Position {position_id} is not open")
            curr_amt = Decimal(row["amount_usd"])
            curr_avg = Decimal(row["avg_entry_price"])

            new_amt = curr_amt + add_usd
            if new_amt <= 0:
                raise ValueError("Resulting position notional must be > 0")
            new_avg = ((curr_amt * curr_avg + add_usd * add_price) / new_amt).quantize(_AVG_QUANT)

            conn.execute(
                """
                UPDATE positions
                SET avg_entry_price = ?, amount_usd = ?, fills_count = fills_count + 1, updated_at = ?
                WHERE id = ?
                """,
                (_dec_str(new_avg), _dec_str(new_amt), utc_now_iso(), position_id),
            )
        pos = self._get(position_id)
        assert pos is not None
        return pos

    def _reduce(self, position_id: int, close_usd: Decimal) -> Position:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT amount_usd FROM positions WHERE id = ? AND status = 'open'", (position_id,)
            ).fetchone()
            if not row:
                raise ValueError(f"Position {position_id} is not open")
            remaining = Decimal(row["amount_usd"]) - close_usd
            if remaining < 0:
                remaining = Decimal("0")
            conn.execute(
                "UPDATE positions SET amount_usd = ?, updated_at = ? WHERE id = ?",
                (_dec_str(remaining), utc_now_iso(), position_id),
            )
        pos = self._get(position_id)
        assert pos is not None
        return pos

    def _update_meta(self, position_id: int, meta: Optional[PositionMeta]) -> Position:
        meta_json = json.dumps(meta.to_dict()) if meta else None
        with self.db.connect() as conn:
            conn.execute(
                "UPDATE positions SET meta_json = ?, updated_at = ? WHERE id = ?",
                (meta_json, utc_now_iso(), position_id),
            )
        pos = self._get(position_id)
        assert pos is not None
        return pos

    def _close(self, position_id: int, close_price: Decimal) -> Position:
        now = utc_now_iso()
        with self.db.connect() as conn:
            conn.execute(
                """
                UPDATE positions
                SET status = 'closed', closed_at = ?, close_price = ?, updated_at = ?
                WHERE id = ? AND status = 'open'
                """,
                (now, _dec_str(close_price), now, position_id),
            )
        pos = self._get(position_id)
        assert pos is not None
        return pos


def format_duration(seconds: int) -> str:
    hours, rem = divmod(int(seconds), 3600)
    minutes = rem // 60
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
