# signaldesk/bots/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union


class Direction(str, Enum):
    LONG = "long"
    SHORT = "short"
    NEUTRAL = "neutral"

    def opposite(self) -> "Direction":
        if self is Direction.LONG:
            return Direction.SHORT
        if self is Direction.SHORT:
            return Direction.LONG
        return Direction.NEUTRAL


class AlertKind(str, Enum):
    SMARTVOL = "smartvol"
    TREND_PIVOT = "trend-pivot"
    DOMINATION = "domination"
    THREE_ALERTS = "three-alerts"


class AlertType(str, Enum):
    # smartvol family
    SMART_OPEN = "SmartOpen"
    SMART_VOL_ADD = "SmartVolAdd"
    SMART_CLOSE = "SmartClose"
    SMART_BIG_CLOSE = "SmartBigClose"
    SMART_BIG_ADD = "SmartBigAdd"
    SMART_VOLUME_OPEN = "SmartVolumeOpen"
    BULLISH_VOLUME = "BullishVolume"
    VOLUME_UP = "VolumeUp"
    FIXED_SHORT_SYNC = "FixedShortSynchronization"
    LIVE_SHORT_SYNC = "LiveShortSynchronization"

    # trend-pivot family
    LONG_TREND = "LongTrend"
    SHORT_TREND = "ShortTrend"
    LONG_PIVOT = "LongPivotPoint"
    SHORT_PIVOT = "ShortPivotPoint"
    STRONG_LONG_PIVOT = "StrongLongPivotPoint"
    STRONG_SHORT_PIVOT = "StrongShortPivotPoint"

    # domination family
    BUYER_DOMINATION = "BuyerDomination"
    SELLER_DOMINATION = "SellerDomination"
    BUYER_CONTINUATION = "BuyerContinuation"
    SELLER_CONTINUATION = "SellerContinuation"

    # three-alerts family (handled by strategies only, not accepted from the webhook)
    BULL_RELSI = "BullRelsi"
    BEAR_RELSI = "BearRelsi"
    BULL_MARUBOZU = "BullMarubozu"
    BEAR_MARUBOZU = "BearMarubozu"
    BULL_ENGULFING = "IstinoeBullPogloshenie"
    BEAR_ENGULFING = "IstinoeBearPogloshenie"


# webhook names that map onto a canonical type
ALERT_ALIASES: Dict[str, AlertType] = {
    "SmartVolOpen": AlertType.SMART_OPEN,
    "SmartVolClose": AlertType.SMART_CLOSE,
}

_KIND_BY_TYPE: Dict[AlertType, AlertKind] = {}
for _t in (
    AlertType.SMART_OPEN,
    AlertType.SMART_VOL_ADD,
    AlertType.SMART_CLOSE,
    AlertType.SMART_BIG_CLOSE,
    AlertType.SMART_BIG_ADD,
    AlertType.SMART_VOLUME_OPEN,
    AlertType.BULLISH_VOLUME,
    AlertType.VOLUME_UP,
    AlertType.FIXED_SHORT_SYNC,
    AlertType.LIVE_SHORT_SYNC,
):
    _KIND_BY_TYPE[_t] = AlertKind.SMARTVOL
for _t in (
    AlertType.LONG_TREND,
    AlertType.SHORT_TREND,
    AlertType.LONG_PIVOT,
    AlertType.SHORT_PIVOT,
    AlertType.STRONG_LONG_PIVOT,
    AlertType.STRONG_SHORT_PIVOT,
):
    _KIND_BY_TYPE[_t] = AlertKind.TREND_PIVOT
for _t in (
    AlertType.BUYER_DOMINATION,
    AlertType.SELLER_DOMINATION,
    AlertType.BUYER_CONTINUATION,
    AlertType.SELLER_CONTINUATION,
):
    _KIND_BY_TYPE[_t] = AlertKind.DOMINATION
for _t in (
    AlertType.BULL_RELSI,
    AlertType.BEAR_RELSI,
    AlertType.BULL_MARUBOZU,
    AlertType.BEAR_MARUBOZU,
    AlertType.BULL_ENGULFING,
    AlertType.BEAR_ENGULFING,
):
    _KIND_BY_TYPE[_t] = AlertKind.THREE_ALERTS


def kind_of(alert_type: AlertType) -> AlertKind:
    return _KIND_BY_TYPE[alert_type]


@dataclass(frozen=True)
class Alert:
    kind: AlertKind
    type: AlertType
    symbol: str
    price: Decimal
    timeframe: Optional[str] = None
    volume: Optional[float] = None
    # name as received on the webhook (may be an alias)
    raw_name: str = ""


# =========================
# Position metadata (tagged by "type")
# =========================
@dataclass
class DominationMeta:
    side: Direction
    last_continuation: datetime

    TYPE = "domination"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.TYPE,
            "side": self.side.value,
            "lastContinuation": self.last_continuation.isoformat(),
        }


@dataclass
class TrendPivotMeta:
    original_direction: Direction
    closed_confirmations: int = 0

    TYPE = "trend-pivot"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.TYPE,
            "originalDirection": self.original_direction.value,
            "closedConfirmations": self.closed_confirmations,
        }


PositionMeta = Union[DominationMeta, TrendPivotMeta]


def meta_from_dict(raw: Optional[Dict[str, Any]]) -> Optional[PositionMeta]:
    if not raw:
        return None
    t = raw.get("type")
    if t == DominationMeta.TYPE:
        return DominationMeta(
            side=Direction(raw["side"]),
            last_continuation=datetime.fromisoformat(raw["lastContinuation"]),
        )
    if t == TrendPivotMeta.TYPE:
        return TrendPivotMeta(
            original_direction=Direction(raw["originalDirection"]),
            closed_confirmations=int(raw.get("closedConfirmations", 0)),
        )
    raise ValueError(f"Unknown position meta type: {t!r}")


@dataclass
class Position:
    id: int
    bot_name: str
    symbol: str
    status: str  # "open" | "closed"
    avg_entry_price: Decimal
    amount_usd: Decimal
    fills_count: int
    opened_at: datetime
    closed_at: Optional[datetime] = None
    close_price: Optional[Decimal] = None
    meta: Optional[PositionMeta] = None

    @property
    def is_open(self) -> bool:
        return self.status == "open"


@dataclass
class PnL:
    total_size: Decimal
    avg_entry_price: Decimal
    current_price: Decimal
    current_value: Decimal
    pnl: Decimal
    pnl_percent: Decimal

    def as_dict(self) -> Dict[str, str]:
        return {
            "totalSize": f"{self.total_size:.6f}",
            "avgEntryPrice": f"{self.avg_entry_price:.2f}",
            "currentPrice": f"{self.current_price:.2f}",
            "currentValue": f"{self.current_value:.2f}",
            "pnl": f"{self.pnl:.2f}",
            "pnlPercent": f"{self.pnl_percent:.2f}",
        }


@dataclass
class TrendConfirmation:
    id: int
    symbol: str
    timeframe: str
    direction: Direction
    created_at_ms: int
    expires_at_ms: int
    source: Optional[str] = None
    name: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)
