# signaldesk/core/timeframes.py
from __future__ import annotations

import re
from typing import List, Optional

_TF_RE = re.compile(r"^(\d+)([mhdw])$", re.IGNORECASE)
_INTERVAL_RE = re.compile(r"^(\d+)([smh])$", re.IGNORECASE)

# minutes per unit
_UNIT_MINUTES = {"m": 1, "h": 60, "d": 1440, "w": 10080}


def timeframe_minutes(timeframe: str) -> int:
    """
    "15m" -> 15, "4h" -> 240, "1d" -> 1440.
    Unparseable timeframes get 0 (lowest priority).
    """
    m = _TF_RE.match(str(timeframe or "").strip())
    if not m:
        return 0
    return int(m.group(1)) * _UNIT_MINUTES[m.group(2).lower()]


def timeframe_ms(timeframe: str) -> int:
    """Duration in milliseconds. Raises ValueError for unparseable timeframes."""
    minutes = timeframe_minutes(timeframe)
    if minutes <= 0:
        raise ValueError(f"Invalid timeframe: {timeframe!r}")
    return minutes * 60_000


def sort_by_priority(timeframes: List[str]) -> List[str]:
    # stable: equal priorities keep config order
    return sorted(timeframes, key=timeframe_minutes, reverse=True)


def main_timeframe(timeframes: List[str]) -> Optional[str]:
    if not timeframes:
        return None
    return sort_by_priority(timeframes)[0]


def parse_interval_seconds(value: Optional[str], default: int = 60) -> int:
    """Report cadence: "45s", "30m", "1h". Anything else -> default."""
    m = _INTERVAL_RE.match(str(value or "").strip())
    if not m:
        return default
    v = int(m.group(1))
    unit = m.group(2).lower()
    if unit == "s":
        return v
    if unit == "m":
        return v * 60
    return v * 3600
