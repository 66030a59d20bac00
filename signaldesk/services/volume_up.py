# signaldesk/services/volume_up.py
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

log = logging.getLogger("signaldesk.volume_up")

STALE_AFTER_SECONDS = 120.0
CLOSE_VOLUME_THRESHOLD = 19.0


@dataclass
class VolumeUpReading:
    symbol: str
    timeframe: str
    volume: float
    timestamp: float


@dataclass
class VolumeUpCloseState:
    symbol: str
    bot_name: str
    initial_volume: float
    current_volume: float
    timestamp: float
    waiting_for_close: bool = True


class VolumeUpService:
    """
    In-memory cache of the latest VolumeUp reading per (symbol, timeframe)
    and of per-(symbol, bot) close-wait states. Both expire after 2 minutes;
    read paths evict stale entries.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], float]] = None,
        cleanup_interval: float = 60.0,
    ):
        self._clock = clock or time.time
        self.cleanup_interval = cleanup_interval
        self._readings: Dict[Tuple[str, str], VolumeUpReading] = {}
        self._close_states: Dict[Tuple[str, str], VolumeUpCloseState] = {}
        self._task: Optional[asyncio.Task] = None

    # ---------- lifecycle ----------
    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._cleanup_loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            removed = self.cleanup_expired()
            if removed:
                log.debug("VolumeUp cleanup removed %s entries", removed)

    # ---------- readings ----------
    def save_volume_up(self, symbol: str, timeframe: str, volume: float) -> VolumeUpReading:
        now = self._clock()
        reading = VolumeUpReading(symbol=symbol, timeframe=timeframe, volume=float(volume), timestamp=now)
        self._readings[(symbol, timeframe)] = reading
        log.info("VolumeUp saved %s (%s): %s", symbol, timeframe, volume)

        # refresh every waiting close-state for this symbol
        for state in self._close_states.values():
            if state.symbol == symbol and state.waiting_for_close:
                state.current_volume = float(volume)
                state.timestamp = now
                if state.current_volume >= CLOSE_VOLUME_THRESHOLD:
                    log.info(
                        "VolumeUp %s >= %s for %s (%s), close allowed",
                        volume,
                        CLOSE_VOLUME_THRESHOLD,
                        symbol,
                        state.bot_name,
                    )
        return reading

    def get_volume_up(self, symbol: str, timeframe: str) -> Optional[VolumeUpReading]:
        key = (symbol, timeframe)
        reading = self._readings.get(key)
        if reading is None:
            return None
        if self._is_stale(reading.timestamp):
            del self._readings[key]
            return None
        return reading

    def get_volume_up_by_symbol(self, symbol: str) -> List[VolumeUpReading]:
        return [r for r in self.get_all_active_volume_up() if r.symbol == symbol]

    def get_volume_up_by_timeframe(self, timeframe: str) -> List[VolumeUpReading]:
        return [r for r in self.get_all_active_volume_up() if r.timeframe == timeframe]

    def get_all_active_volume_up(self) -> List[VolumeUpReading]:
        out: List[VolumeUpReading] = []
        for key in list(self._readings):
            reading = self.get_volume_up(*key)
            if reading is not None:
                out.append(reading)
        return out

    def latest_for_symbol(self, symbol: str) -> Optional[VolumeUpReading]:
        readings = self.get_volume_up_by_symbol(symbol)
        if not readings:
            return None
        return max(readings, key=lambda r: r.timestamp)

    # ---------- close states ----------
    def init_close_state(self, symbol: str, bot_name: str, initial_volume: float) -> VolumeUpCloseState:
        state = VolumeUpCloseState(
            symbol=symbol,
            bot_name=bot_name,
            initial_volume=float(initial_volume),
            current_volume=float(initial_volume),
            timestamp=self._clock(),
        )
        self._close_states[(symbol, bot_name)] = state
        log.info("Close state armed for %s (%s) with VolumeUp %s", symbol, bot_name, initial_volume)
        return state

    def get_close_state(self, symbol: str, bot_name: str) -> Optional[VolumeUpCloseState]:
        key = (symbol, bot_name)
        state = self._close_states.get(key)
        if state is None or not state.waiting_for_close:
            return None
        if self._is_stale(state.timestamp):
            log.info("Close state for %s (%s) expired", symbol, bot_name)
            del self._close_states[key]
            return None
        return state

    def can_close_position(self, symbol: str, bot_name: str) -> bool:
        state = self.get_close_state(symbol, bot_name)
        if state is None:
            return False
        return state.current_volume >= CLOSE_VOLUME_THRESHOLD

    def mark_position_closed(self, symbol: str, bot_name: str) -> None:
        if self._close_states.pop((symbol, bot_name), None) is not None:
            log.info("Close state cleared for %s (%s)", symbol, bot_name)

    def get_all_close_states(self) -> List[VolumeUpCloseState]:
        out: List[VolumeUpCloseState] = []
        for symbol, bot_name in list(self._close_states):
            state = self.get_close_state(symbol, bot_name)
            if state is not None:
                out.append(state)
        return out

    # ---------- maintenance ----------
    def clear_all(self) -> None:
        self._readings.clear()
        self._close_states.clear()

    def clear_by_symbol(self, symbol: str) -> int:
        keys = [k for k in self._readings if k[0] == symbol]
        for k in keys:
            del self._readings[k]
        return len(keys)

    def clear_by_timeframe(self, timeframe: str) -> int:
        keys = [k for k in self._readings if k[1] == timeframe]
        for k in keys:
            del self._readings[k]
        return len(keys)

    def cleanup_expired(self) -> int:
        removed = 0
        for key, reading in list(self._readings.items()):
            if self._is_stale(reading.timestamp):
                del self._readings[key]
                removed += 1
        for key, state in list(self._close_states.items()):
            if self._is_stale(state.timestamp):
                del self._close_states[key]
                removed += 1
        return removed

    def get_stats(self) -> Dict[str, Any]:
        active = self.get_all_active_volume_up()
        return {
            "totalRecords": len(self._readings),
            "activeRecords": len(active),
            "symbols": sorted({r.symbol for r in active}),
            "timeframes": sorted({r.timeframe for r in active}),
            "closeStates": len(self.get_all_close_states()),
        }

    def _is_stale(self, ts: float) -> bool:
        return self._clock() - ts > STALE_AFTER_SECONDS


def reading_to_dict(reading: VolumeUpReading) -> Dict[str, Any]:
    return asdict(reading)


def close_state_to_dict(state: VolumeUpCloseState) -> Dict[str, Any]:
    return asdict(state)
