# signaldesk/bots/registry.py
from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from signaldesk.bots.engine import BotEngine
from signaldesk.bots.interfaces import ExchangeGateway
from signaldesk.core.config import BotConfig, Settings
from signaldesk.exchange.bitget.client import BitgetClient
from signaldesk.exchange.bitget.gateway import BitgetExchangeGateway
from signaldesk.exchange.noop import NoopExchange
from signaldesk.persistence.audit import Audit
from signaldesk.persistence.positions_store import PositionsStore
from signaldesk.services.telegram import TelegramNotifier, TelegramService
from signaldesk.services.trend import TrendService
from signaldesk.services.volume_up import VolumeUpService
from signaldesk.strategies.base import Strategy
from signaldesk.strategies.domination import DominationStrategy
from signaldesk.strategies.partial_close import SmartVolPartialCloseStrategy
from signaldesk.strategies.smartvol_default import SmartVolDefaultStrategy
from signaldesk.strategies.smartvolume import SmartVolumeStrategy
from signaldesk.strategies.trend_pivot import TrendPivotStrategy

log = logging.getLogger("signaldesk.registry")


class BotsRegistry:
    """
    Builds one BotEngine per usable bot entry.

    A bot is skipped (logged) when it is disabled, when a trading strategy is
    missing its sizing, or when its Telegram channel is not configured.
    """

    def __init__(
        self,
        settings: Settings,
        store: PositionsStore,
        trend: TrendService,
        volume_up: VolumeUpService,
        telegram: TelegramService,
        audit: Optional[Audit] = None,
        live_exchange: Optional[ExchangeGateway] = None,
    ):
        self.settings = settings
        self.store = store
        self.trend = trend
        self.volume_up = volume_up
        self.telegram = telegram
        self.audit = audit
        self._live_exchange = live_exchange
        self._noop_exchange = NoopExchange()
        self._bots: Dict[str, BotEngine] = {}
        self.domination_strategies: List[DominationStrategy] = []

    # ---------- build ----------
    def load(self, configs: Iterable[BotConfig]) -> "BotsRegistry":
        for cfg in configs:
            bot = self._build(cfg)
            if bot is not None:
                self._bots[cfg.name] = bot
        log.info("Registered %d bot(s): %s", len(self._bots), ", ".join(self._bots) or "-")
        return self

    def _build(self, cfg: BotConfig) -> Optional[BotEngine]:
        if not cfg.enabled:
            log.info("Bot %s disabled, skipped", cfg.name)
            return None

        if cfg.name in self._bots:
            log.error("Bot %s defined twice, later entry skipped", cfg.name)
            return None

        if cfg.strategy != "domination":
            sizing = cfg.smartvol
            if sizing is None or sizing.base_usd is None or sizing.add_fraction is None:
                log.error("Bot %s: smartvol.baseUsd / smartvol.addFraction missing, skipped", cfg.name)
                return None

        channel = cfg.telegram_channel or ""
        if not self.telegram.is_configured(channel):
            log.error("Bot %s: telegram channel %r not configured, skipped", cfg.name, channel)
            return None
        if self.settings.TELEGRAM_VERIFY_ON_START and not self.telegram.test_connection(channel):
            log.error("Bot %s: telegram channel %r failed getMe, skipped", cfg.name, channel)
            return None

        strategy = self._strategy_for(cfg)
        bot = BotEngine(
            cfg=cfg,
            exchange=self._exchange_for(cfg),
            notifier=TelegramNotifier(self.telegram, channel),
            trend=self.trend,
            strategy=strategy,
        )
        if isinstance(strategy, DominationStrategy):
            strategy.bind(bot)

        log.info(
            "Bot %s registered (strategy=%s prod=%s direction=%s)",
            cfg.name,
            strategy.name,
            cfg.prod,
            cfg.direction,
        )
        return bot

    def _exchange_for(self, cfg: BotConfig) -> ExchangeGateway:
        if not cfg.prod:
            return self._noop_exchange
        if self._live_exchange is None:
            s = self.settings
            client = BitgetClient(
                api_key=s.BITGET_API_KEY,
                api_secret=s.BITGET_API_SECRET,
                passphrase=s.BITGET_PASSPHRASE,
                base_url=s.BITGET_BASE_URL,
            )
            self._live_exchange = BitgetExchangeGateway(
                client,
                allowed_symbols=s.BITGET_ALLOWED_SYMBOLS,
                product_type=s.BITGET_PRODUCT_TYPE,
                margin_coin=s.BITGET_MARGIN_COIN,
                contract_cache_ttl=s.BITGET_CONTRACT_CACHE_TTL,
            )
        return self._live_exchange

    def _strategy_for(self, cfg: BotConfig) -> Strategy:
        tag = cfg.strategy
        if tag == "domination":
            s = self.settings
            strategy = DominationStrategy(
                self.store,
                notional_usd=Decimal(s.DOMINATION_NOTIONAL_USD),
                timeout=timedelta(minutes=s.DOMINATION_TIMEOUT_MINUTES),
                sweep_interval=float(s.DOMINATION_SWEEP_SECONDS),
                audit=self.audit,
            )
            self.domination_strategies.append(strategy)
            return strategy
        if tag == "partial-close":
            return SmartVolPartialCloseStrategy(self.store)
        if tag == "smartvolume":
            return SmartVolumeStrategy(self.store)
        if tag == "trend-pivot":
            return TrendPivotStrategy(self.store, self.trend)
        if tag is not None:
            log.warning("Bot %s: unknown strategy %r, using default", cfg.name, tag)
        return SmartVolDefaultStrategy(self.store, volume_up=self.volume_up)

    # ---------- lookup ----------
    def all(self) -> List[BotEngine]:
        return list(self._bots.values())

    def get(self, name: str) -> Optional[BotEngine]:
        return self._bots.get(name)

    def names(self) -> List[str]:
        return list(self._bots)
