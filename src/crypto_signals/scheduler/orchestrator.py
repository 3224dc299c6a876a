from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Deque, Dict, List, Mapping

from crypto_signals.config.models import MonitoringConfig
from crypto_signals.data.models import MarketData, utcnow
from crypto_signals.data.provider_base import ExchangeAdapter
from crypto_signals.errors import ValidationError
from crypto_signals.events.bus import EventBus, EventType
from crypto_signals.repositories.base import PairRepository
from crypto_signals.signals.models import Signal
from crypto_signals.strategy.pair import TradingPair
from crypto_signals.usecases.generate_signal import GenerateSignalUseCase

logger = logging.getLogger(__name__)

SOURCE = "MonitorOrchestrator"


@dataclass(slots=True)
class MonitoringStatus:
    is_active: bool
    started_at: datetime | None
    total_pairs_monitored: int
    active_pairs: List[str] = field(default_factory=list)
    active_exchanges: List[str] = field(default_factory=list)
    signals_generated: int = 0
    error_count: int = 0
    average_latency_ms: float = 0.0
    last_update: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "is_active": self.is_active,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "total_pairs_monitored": self.total_pairs_monitored,
            "active_pairs": ", ".join(self.active_pairs) or "-",
            "active_exchanges": ", ".join(self.active_exchanges) or "-",
            "signals_generated": self.signals_generated,
            "error_count": self.error_count,
            "average_latency_ms": self.average_latency_ms,
        }


class MonitorOrchestrator:
    """One self-scheduling task per active (pair, exchange).

    Ticks of the same pair never overlap: the next sleep starts only after
    the previous tick has finished. A pair's counters are only touched by
    its own task.
    """

    def __init__(
        self,
        config: MonitoringConfig,
        exchanges: Mapping[str, ExchangeAdapter],
        pair_repository: PairRepository,
        use_case: GenerateSignalUseCase,
        event_bus: EventBus,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config
        self._exchanges = dict(exchanges)
        self._pairs = pair_repository
        self._use_case = use_case
        self._events = event_bus
        self._clock = clock
        self._tasks: Dict[str, asyncio.Task] = {}
        self._running = False
        self._started_at: datetime | None = None
        self._last_update: datetime | None = None
        self._total_pairs = 0
        self._signals_generated = 0
        self._error_count = 0
        self._pair_errors: Dict[str, int] = {}
        self._latencies: Deque[float] = deque(maxlen=config.latency_window)

    @property
    def is_running(self) -> bool:
        return self._running

    def interval_for(self, timeframe: str) -> float:
        return float(self._config.intervals.get(timeframe, self._config.default_interval))

    def pair_error_count(self, pair: TradingPair) -> int:
        return self._pair_errors.get(pair.key, 0)

    async def start(self) -> None:
        if self._running:
            raise ValidationError("Market monitoring is already active")
        pairs = await self._pairs.find_active()
        if not pairs:
            raise ValidationError("No active trading pairs found")
        if not self._exchanges:
            raise ValidationError("No exchanges configured")

        self._running = True
        self._started_at = self._clock()
        logger.info("Starting monitoring of %d pairs across %d exchanges", len(pairs), len(self._exchanges))
        healthy: Dict[str, bool] = {}
        scheduled = 0
        try:
            for pair in pairs:
                if await self._schedule_pair(pair, healthy):
                    scheduled += 1
        except Exception:
            logger.exception("Failed to start market monitoring")
            await self.stop()
            raise
        if scheduled == 0:
            self._running = False
            self._started_at = None
            raise ValidationError("No trading pairs could be scheduled")
        self._total_pairs = scheduled
        await self._events.publish(
            EventType.MONITORING_STARTED,
            {
                "total_pairs": self._total_pairs,
                "exchanges": sorted(self._exchanges),
                "start_time": self._started_at.isoformat(),
            },
            source=SOURCE,
        )

    async def stop(self) -> None:
        if not self._running:
            logger.warning("Market monitoring is not active")
            return
        self._running = False
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        try:
            await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            self._tasks.clear()
        duration = (self._clock() - self._started_at).total_seconds() if self._started_at else 0.0
        await self._events.publish(
            EventType.MONITORING_STOPPED,
            {
                "duration_seconds": duration,
                "total_pairs_monitored": self._total_pairs,
                "signals_generated": self._signals_generated,
                "error_count": self._error_count,
            },
            source=SOURCE,
        )
        logger.info("Monitoring stopped after %.0fs", duration)

    async def wait_until_stopped(self) -> None:
        if not self._tasks:
            return
        try:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
        except asyncio.CancelledError:
            pass

    async def _healthy(self, adapter: ExchangeAdapter, cache: Dict[str, bool]) -> bool:
        if not self._config.health_check:
            return True
        if adapter.name not in cache:
            health = await adapter.health()
            cache[adapter.name] = health.can_poll
            if not health.can_poll:
                logger.warning("Exchange %s cannot be polled: %s", adapter.name, health.message or "rate limited")
        return cache[adapter.name]

    async def _schedule_pair(self, pair: TradingPair, healthy: Dict[str, bool]) -> bool:
        adapter = self._exchanges.get(pair.exchange)
        if adapter is None:
            logger.error("Exchange not found for pair %s: %s", pair.symbol, pair.exchange)
            return False
        if not await self._healthy(adapter, healthy):
            logger.warning("Skipping %s on unhealthy exchange %s", pair.symbol, pair.exchange)
            return False
        existing = self._tasks.pop(pair.key, None)
        if existing is not None:
            existing.cancel()
        interval = self.interval_for(pair.strategy.timeframe)
        self._tasks[pair.key] = asyncio.create_task(
            self._pair_loop(pair, adapter, interval), name=f"monitor-{pair.key}"
        )
        logger.debug("Monitoring %s every %.0fs", pair.key, interval)
        return True

    async def _pair_loop(self, pair: TradingPair, adapter: ExchangeAdapter, interval: float) -> None:
        try:
            while self._running and pair.is_active:
                await self._tick(pair, adapter)
                if not (self._running and pair.is_active):
                    break
                await asyncio.sleep(interval)
        finally:
            if self._tasks.get(pair.key) is asyncio.current_task():
                del self._tasks[pair.key]

    async def _tick(self, pair: TradingPair, adapter: ExchangeAdapter) -> Signal | None:
        started = time.perf_counter()
        try:
            now = self._clock()
            if pair.should_auto_disable(now):
                logger.warning("Auto-disabling %s due to poor performance", pair.symbol)
                await self._deactivate(pair, "poor performance")
                return None

            market_data = await self._fetch(pair, adapter)
            await self._events.publish(
                EventType.MARKET_DATA_UPDATED,
                {
                    "symbol": market_data.symbol,
                    "exchange": market_data.exchange,
                    "timeframe": market_data.timeframe,
                    "timestamp": market_data.timestamp.isoformat(),
                    "candle_count": len(market_data),
                    "price": market_data.current_price,
                    "volume": market_data.latest.volume,
                },
                source=SOURCE,
            )

            signal = await self._use_case.execute(pair, market_data)
            if signal is not None:
                self._signals_generated += 1
            self._last_update = self._clock()
            return signal
        except Exception as exc:
            await self._handle_error(pair, exc)
            return None
        finally:
            self._latencies.append((time.perf_counter() - started) * 1000)

    async def _fetch(self, pair: TradingPair, adapter: ExchangeAdapter) -> MarketData:
        timeframe = pair.strategy.timeframe
        candles = await adapter.get_candles(pair.symbol, timeframe, self._config.candle_limit)
        return MarketData(
            symbol=pair.symbol,
            timeframe=timeframe,
            exchange=pair.exchange,
            candles=candles,
            timestamp=self._clock(),
        )

    async def _handle_error(self, pair: TradingPair, exc: Exception) -> None:
        self._error_count += 1
        count = self._pair_errors.get(pair.key, 0) + 1
        self._pair_errors[pair.key] = count
        logger.exception("Error monitoring %s (%d errors): %s", pair.key, count, exc)
        await self._events.publish(
            EventType.MONITORING_ERROR,
            {"pair": pair.symbol, "exchange": pair.exchange, "error": str(exc), "error_count": count},
            source=SOURCE,
        )
        if count > self._config.max_error_count and pair.is_active:
            logger.warning("Too many errors, disabling %s", pair.key)
            try:
                await self._deactivate(pair, f"error budget exceeded ({count} errors)")
            except Exception:
                logger.exception("Could not persist deactivation of %s", pair.key)

    async def _deactivate(self, pair: TradingPair, reason: str) -> None:
        pair.deactivate()
        await self._pairs.update(pair)
        await self._events.publish(
            EventType.PAIR_DEACTIVATED,
            {"pair": pair.symbol, "exchange": pair.exchange, "reason": reason},
            source=SOURCE,
        )

    async def monitor_single_pair(self, symbol: str, exchange: str) -> Signal | None:
        matches = await self._pairs.find_by_symbol(symbol, exchange)
        if not matches:
            raise ValidationError(f"Trading pair not found: {symbol} on {exchange}")
        pair = matches[0]
        if not pair.is_active:
            raise ValidationError(f"Trading pair is not active: {pair.key}")
        adapter = self._exchanges.get(pair.exchange)
        if adapter is None:
            raise ValidationError(f"Exchange not found: {pair.exchange}")
        return await self._tick(pair, adapter)

    async def monitor_exchange(self, exchange: str) -> List[Signal]:
        adapter = self._exchanges.get(exchange)
        if adapter is None:
            raise ValidationError(f"Exchange not found: {exchange}")
        pairs = [pair for pair in await self._pairs.find_active() if pair.exchange == exchange]
        if not pairs:
            raise ValidationError(f"No active pairs found for exchange: {exchange}")
        results = await asyncio.gather(*(self._tick(pair, adapter) for pair in pairs))
        return [signal for signal in results if signal is not None]

    def status(self) -> MonitoringStatus:
        latencies = self._latencies
        average = sum(latencies) / len(latencies) if latencies else 0.0
        return MonitoringStatus(
            is_active=self._running,
            started_at=self._started_at,
            total_pairs_monitored=self._total_pairs,
            active_pairs=sorted(self._tasks),
            active_exchanges=sorted(self._exchanges),
            signals_generated=self._signals_generated,
            error_count=self._error_count,
            average_latency_ms=round(average, 2),
            last_update=self._last_update,
        )
