# signaldesk/persistence/audit.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from signaldesk.ops.context import get_alert_id
from signaldesk.persistence.db import DB, utc_now_iso

log = logging.getLogger("signaldesk.audit")


class Audit:
    """
    DB audit is the source of truth.
    Additionally mirrors events to a JSONL file for tailing.
    """

    def __init__(self, db: DB, jsonl_path: str = "logs/alerts_audit.jsonl"):
        self.db = db
        self.jsonl_path = Path(jsonl_path)

        # ensure logs folder + file exist
        try:
            self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
            self.jsonl_path.touch(exist_ok=True)
        except OSError as e:
            log.warning("Audit mirror %s unavailable: %s", self.jsonl_path, e)

    def event(
        self,
        event_type: str,
        action: Optional[str] = None,
        bot_name: Optional[str] = None,
        symbol: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        alert_id = get_alert_id()
        payload = json.dumps(details or {}, ensure_ascii=False, default=str)
        ts = utc_now_iso()

        # 1) DB (source of truth)
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO events(timestamp_utc, alert_id, bot_name, symbol, event_type, action, details_json)
                VALUES (?,?,?,?,?,?,?)
                """,
                (ts, alert_id, bot_name, symbol, event_type, action, payload),
            )

        # 2) JSONL mirror
        self._write_jsonl(
            {
                "timestamp_utc": ts,
                "event_type": event_type,
                "action": action,
                "alert_id": alert_id,
                "bot_name": bot_name,
                "symbol": symbol,
                "details": details or {},
            }
        )

    async def aevent(self, *args: Any, **kwargs: Any) -> None:
        await self.db.run(lambda: self.event(*args, **kwargs))

    def tail(self, limit: int = 50) -> list:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM events ORDER BY id DESC LIMIT ?", (int(limit),)
            ).fetchall()
        out = []
        for r in rows:
            d = dict(r)
            d["details"] = json.loads(d.pop("details_json") or "{}")
            out.append(d)
        return out

    def _write_jsonl(self, obj: Dict[str, Any]) -> None:
        try:
            self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
            with self.jsonl_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(obj, ensure_ascii=False, default=str) + "\n")
        except OSError:
            # never break alert handling because the mirror write failed
            pass
