"""Configuration models for the signal engine."""

from __future__ import annotations

from typing import Dict, List, Literal

from pydantic import BaseModel, Field

from crypto_signals.strategy.models import Strategy, scalping_strategy, swing_strategy
from crypto_signals.strategy.pair import PairCategory, PairSettings, SpecialRules, TradingPair


class ExchangeConfig(BaseModel):
    name: str = "binance"
    base_url: str = "https://api.binance.com"
    kline_path: str = "/api/v3/klines"
    ping_path: str = "/api/v3/ping"
    timeout_seconds: float = 30.0
    retry_attempts: int = 3
    rate_limit_per_minute: int = 1200


class MonitoringConfig(BaseModel):
    candle_limit: int = 100
    max_error_count: int = 10
    latency_window: int = 100
    health_check: bool = True
    # seconds between ticks, keyed by strategy timeframe
    intervals: Dict[str, float] = Field(
        default_factory=lambda: {
            "1m": 15,
            "5m": 30,
            "15m": 60,
            "1h": 120,
            "4h": 300,
            "1d": 600,
        }
    )
    default_interval: float = 60


class AnalysisConfig(BaseModel):
    trend_model: Literal["voting", "cascade"] = "voting"
    generator: Literal["scored", "confluence"] = "scored"
    min_candles: int = 20
    stale_data_minutes: float = 15
    signal_max_age_minutes: float = 60


class NotificationConfig(BaseModel):
    console: bool = True
    webhook_url: str | None = None
    webhook_timeout_seconds: float = 10.0
    retry_attempts: int = 3
    max_backoff_seconds: float = 30.0


class StorageConfig(BaseModel):
    pairs_file: str | None = None


class SpecialRulesConfig(BaseModel):
    stop_loss_multiplier: float = 1.0
    take_profit_multiplier: float = 1.0
    volume_weight: float = 1.0
    avoid_weekends: bool = False


class PairConfig(BaseModel):
    symbol: str
    base_asset: str
    quote_asset: str
    exchange: str = "binance"
    category: PairCategory = PairCategory.CRYPTO_ALT
    strategy: Literal["scalping", "swing"] = "swing"
    timeframe: str | None = None
    signal_cooldown_seconds: float = 300
    volatility_multiplier: float = 1.0
    risk_adjustment: float = 1.0
    special_rules: SpecialRulesConfig = Field(default_factory=SpecialRulesConfig)
    active: bool = True

    def build_strategy(self) -> Strategy:
        strategy = scalping_strategy() if self.strategy == "scalping" else swing_strategy()
        if self.timeframe and self.timeframe != strategy.timeframe:
            strategy = strategy.clone(name=strategy.name, timeframe=self.timeframe)
        return strategy

    def to_pair(self) -> TradingPair:
        settings = PairSettings(
            signal_cooldown=self.signal_cooldown_seconds,
            volatility_multiplier=self.volatility_multiplier,
            risk_adjustment=self.risk_adjustment,
            special_rules=SpecialRules(**self.special_rules.model_dump()),
        )
        return TradingPair(
            symbol=self.symbol,
            base_asset=self.base_asset,
            quote_asset=self.quote_asset,
            exchange=self.exchange,
            category=self.category,
            settings=settings,
            strategy=self.build_strategy(),
            is_active=self.active,
        )


def _default_pairs() -> List[PairConfig]:
    return [
        PairConfig(symbol="BTC/USDT", base_asset="BTC", quote_asset="USDT", category=PairCategory.CRYPTO_MAJOR),
        PairConfig(symbol="ETH/USDT", base_asset="ETH", quote_asset="USDT", category=PairCategory.CRYPTO_MAJOR),
    ]


class AppConfig(BaseModel):
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    pairs: List[PairConfig] = Field(default_factory=_default_pairs)


def default_config() -> AppConfig:
    return AppConfig()
