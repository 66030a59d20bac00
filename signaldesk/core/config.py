# signaldesk/core/config.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger("signaldesk.config")


def _parse_list(v: Any) -> List[str]:
    """
    Accepts:
      - list: ["ETHUSDT_UMCBL","LINKUSDT_UMCBL"]
      - csv:  "ETHUSDT_UMCBL,LINKUSDT_UMCBL"
      - json: '["ETHUSDT_UMCBL","LINKUSDT_UMCBL"]'
    Returns uppercase, trimmed symbols.
    """
    if v is None:
        return []
    if isinstance(v, list):
        return [str(x).strip().upper() for x in v if str(x).strip()]
    s = str(v).strip()
    if not s:
        return []
    if s.startswith("["):
        try:
            arr = json.loads(s)
            return [str(x).strip().upper() for x in arr if str(x).strip()]
        except Exception:
            # fall back to csv parse
            pass
    return [p.strip().upper() for p in s.split(",") if p.strip()]


class Settings(BaseSettings):
    """Runtime configuration loaded from .env / environment variables."""

    # IMPORTANT:
    # enable_decoding=False prevents pydantic-settings from auto-json-decoding List fields.
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        enable_decoding=False,
    )

    # --- Storage / files ---
    DB_PATH: str = "data/signaldesk.db"
    AUDIT_JSONL_PATH: str = "logs/alerts_audit.jsonl"
    BOTS_CONFIG_PATH: str = "config/bots.json"

    LOG_LEVEL: str = "INFO"

    # --- HTTP ---
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 3000

    # --- Telegram ---
    TELEGRAM_API_URL: str = "https://api.telegram.org"
    # probe getMe for every bot's channel before registering it
    TELEGRAM_VERIFY_ON_START: bool = False

    # --- Exchange / Bitget ---
    BITGET_BASE_URL: str = "https://api.bitget.com"
    BITGET_API_KEY: str = ""
    BITGET_API_SECRET: str = ""
    BITGET_PASSPHRASE: str = ""
    BITGET_PRODUCT_TYPE: str = "umcbl"
    BITGET_MARGIN_COIN: str = "USDT"
    BITGET_ALLOWED_SYMBOLS: List[str] = Field(
        default_factory=lambda: ["ETHUSDT_UMCBL", "LINKUSDT_UMCBL", "ARBUSDT_UMCBL"]
    )
    BITGET_CONTRACT_CACHE_TTL: int = 600

    # --- Domination timing ---
    DOMINATION_SWEEP_SECONDS: int = 300
    DOMINATION_TIMEOUT_MINUTES: int = 30
    DOMINATION_NOTIONAL_USD: str = "200"

    # --- VolumeUp cache ---
    VOLUME_UP_CLEANUP_SECONDS: int = 60

    @field_validator("BITGET_ALLOWED_SYMBOLS", mode="before")
    @classmethod
    def parse_allowed_symbols(cls, v: Any) -> List[str]:
        return _parse_list(v)

    def model_post_init(self, __context: Any) -> None:
        # Normalize env
        self.LOG_LEVEL = (self.LOG_LEVEL or "INFO").upper().strip()
        self.BITGET_PRODUCT_TYPE = (self.BITGET_PRODUCT_TYPE or "umcbl").lower().strip()
        self.BITGET_MARGIN_COIN = (self.BITGET_MARGIN_COIN or "USDT").upper().strip()
        self.BITGET_BASE_URL = (self.BITGET_BASE_URL or "").strip().rstrip("/")

    def has_bitget_keys(self) -> bool:
        return bool(self.BITGET_API_KEY and self.BITGET_API_SECRET and self.BITGET_PASSPHRASE)

    def validate_runtime(self) -> List[str]:
        """
        Fail-fast validation. Returns warnings (non-fatal).
        Raises ValueError for fatal misconfiguration.
        """
        errors: List[str] = []
        warnings: List[str] = []

        if self.LOG_LEVEL not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            errors.append("LOG_LEVEL must be one of DEBUG/INFO/WARNING/ERROR/CRITICAL.")

        if not self.BITGET_BASE_URL.startswith("http"):
            errors.append("BITGET_BASE_URL must be an http(s) URL.")

        if not 0 < self.API_PORT < 65536:
            errors.append("API_PORT must be between 1 and 65535.")

        if self.BITGET_CONTRACT_CACHE_TTL < 0:
            errors.append("BITGET_CONTRACT_CACHE_TTL must be >= 0.")

        if self.DOMINATION_SWEEP_SECONDS <= 0:
            errors.append("DOMINATION_SWEEP_SECONDS must be > 0.")
        if self.DOMINATION_TIMEOUT_MINUTES <= 0:
            errors.append("DOMINATION_TIMEOUT_MINUTES must be > 0.")

        try:
            if float(self.DOMINATION_NOTIONAL_USD) <= 0:
                errors.append("DOMINATION_NOTIONAL_USD must be > 0.")
        except ValueError:
            errors.append("DOMINATION_NOTIONAL_USD must be numeric.")

        if not Path(self.BOTS_CONFIG_PATH).exists():
            warnings.append(
                f"BOTS_CONFIG_PATH ({self.BOTS_CONFIG_PATH}) does not exist. No bots will be registered."
            )

        if not self.has_bitget_keys():
            warnings.append(
                "Bitget credentials are incomplete. Bots with prod=true will fail on every order."
            )
        elif not self.BITGET_ALLOWED_SYMBOLS:
            warnings.append(
                "BITGET_ALLOWED_SYMBOLS is empty. Live bots will reject every symbol."
            )

        if errors:
            msg = "Config validation failed:\n" + "\n".join([f"- {e}" for e in errors])
            raise ValueError(msg)

        return warnings


# =========================
# Bots file
# =========================
class SmartVolSizing(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    base_usd: Optional[float] = Field(default=None, alias="baseUsd")
    add_fraction: Optional[float] = Field(default=None, alias="addFraction")
    leverage: int = 10


class BotConfig(BaseModel):
    """One bot entry from the bots file. Immutable after load."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    name: str
    enabled: bool = True
    strategy: Optional[str] = None
    prod: bool = False
    is_trended: bool = False
    direction: str = "long"  # long | short | both
    # ordered by priority; the first entry is the trend gate timeframe
    timeframe_trend: List[str] = Field(default_factory=list)
    symbol_filter: List[str] = Field(default_factory=list)
    scheduled_notification: bool = False
    scheduled_time: Optional[str] = None
    telegram_channel: Optional[str] = None
    smartvol: Optional[SmartVolSizing] = None
    max_fills: Optional[int] = Field(default=None, alias="maxFills")
    volume_gated_close: bool = False

    @field_validator("direction", mode="before")
    @classmethod
    def parse_direction(cls, v: Any) -> str:
        s = str(v or "long").strip().lower()
        if s not in {"long", "short", "both"}:
            raise ValueError(f"direction must be long/short/both, got {v!r}")
        return s

    @field_validator("strategy", mode="before")
    @classmethod
    def parse_strategy(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        s = str(v).strip().lower()
        return s or None

    @field_validator("symbol_filter", mode="before")
    @classmethod
    def parse_symbol_filter(cls, v: Any) -> List[str]:
        return _parse_list(v)

    @field_validator("timeframe_trend", mode="before")
    @classmethod
    def parse_timeframes(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        return [str(x).strip().lower() for x in v if str(x).strip()]


class TelegramChannel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    token: str = ""
    chat_id: str = Field(default="", alias="chatId")
    name: str = ""

    @field_validator("chat_id", mode="before")
    @classmethod
    def parse_chat_id(cls, v: Any) -> str:
        return "" if v is None else str(v).strip()


def load_bots_file(path: str) -> Tuple[List[BotConfig], Dict[str, TelegramChannel]]:
    """
    Reads the bots JSON file:
      {"bots": [...], "telegram": {"bot1": {"token": "...", "chatId": "..."}}}
    Invalid bot entries are logged and skipped.
    """
    p = Path(path)
    if not p.exists():
        log.warning("Bots file %s not found; no bots loaded", path)
        return [], {}

    raw = json.loads(p.read_text(encoding="utf-8"))

    bots: List[BotConfig] = []
    for entry in raw.get("bots") or []:
        try:
            bots.append(BotConfig.model_validate(entry))
        except ValidationError as e:
            name = entry.get("name") if isinstance(entry, dict) else None
            log.error("Invalid bot config %s skipped: %s", name, e)

    channels: Dict[str, TelegramChannel] = {}
    for key, val in (raw.get("telegram") or {}).items():
        try:
            channels[str(key)] = TelegramChannel.model_validate(val or {})
        except ValidationError as e:
            log.error("Invalid telegram channel %s skipped: %s", key, e)

    return bots, channels


# Pydantic v2 + postponed annotations safety
Settings.model_rebuild()
settings = Settings()
