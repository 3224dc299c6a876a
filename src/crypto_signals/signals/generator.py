"""Strategy-parameterised signal generation.

``SignalGenerator.generate`` runs the shared pipeline: identity check,
pair/data gates, market analysis, scoring, the implementation's own gates,
the open-signal limit, then target construction and validation. Every
"should not generate" outcome is a :class:`GenerationRejected` turned into
a non-generating :class:`GenerationResult`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Sequence, Tuple

from crypto_signals.analysis.market import MarketAnalyzer
from crypto_signals.analysis.models import MarketAnalysis, RiskLevel, TrendDirection, VolumeLevel
from crypto_signals.config.models import AnalysisConfig
from crypto_signals.data.models import MarketData, utcnow
from crypto_signals.errors import GenerationRejected, ValidationError
from crypto_signals.indicators.models import IndicatorSignal, VolatilityLevel
from crypto_signals.repositories.base import SignalRepository
from crypto_signals.strategy.models import Strategy, StrategyType
from crypto_signals.strategy.pair import PairCategory, TradingPair

from .models import MAX_TAKE_PROFITS, GenerationResult, Signal, SignalDirection, SignalTargets
from .scorer import Action, SignalScore, SignalScorer

logger = logging.getLogger(__name__)

_MIN_SCORE = {
    PairCategory.CRYPTO_MAJOR: 4.5,
    PairCategory.CRYPTO_ALT: 5.0,
    PairCategory.MEME: 6.0,
}

_CATEGORY_TARGETS = {
    PairCategory.CRYPTO_MAJOR: (0.8, 0.9),
    PairCategory.MEME: (1.3, 1.5),
}

_HIGH_RISK = {RiskLevel.HIGH, RiskLevel.VERY_HIGH}

_RR_TOLERANCE = 1e-9


@dataclass(slots=True, frozen=True)
class TargetPlan:
    """Stop-loss and take-profit distances as fractions of the entry price."""

    stop_loss: float
    take_profits: Tuple[float, ...]

    def scaled(self, stop_loss: float = 1.0, take_profit: float = 1.0) -> "TargetPlan":
        return TargetPlan(self.stop_loss * stop_loss, tuple(tp * take_profit for tp in self.take_profits))

    def reward_to_risk(self) -> float:
        reference = self.take_profits[1] if len(self.take_profits) > 1 else self.take_profits[0]
        return reference / self.stop_loss if self.stop_loss > 0 else 0.0

    def with_min_reward(self, floor: float) -> "TargetPlan":
        """Stretch every take-profit by the same factor until reward/risk reaches ``floor``."""
        ratio = self.reward_to_risk()
        if ratio <= 0 or ratio >= floor:
            return self
        return self.scaled(take_profit=floor / ratio)

    def to_targets(self, entry: float, direction: SignalDirection) -> SignalTargets:
        if direction is SignalDirection.LONG:
            return SignalTargets(entry * (1 - self.stop_loss), tuple(entry * (1 + tp) for tp in self.take_profits))
        return SignalTargets(entry * (1 + self.stop_loss), tuple(entry * (1 - tp) for tp in self.take_profits))


def base_targets(strategy: Strategy) -> TargetPlan:
    return TargetPlan(strategy.risk.stop_loss, tuple(strategy.risk.take_profits[:MAX_TAKE_PROFITS]))


def max_loss_percent(risk: RiskLevel) -> float:
    if risk in _HIGH_RISK:
        return 2.5
    if risk is RiskLevel.MEDIUM:
        return 3.0
    return 3.5


class SignalGenerator(ABC):
    name: str = "base"
    label: str = "Signal Generator"

    def __init__(
        self,
        analyzer: MarketAnalyzer,
        scorer: SignalScorer,
        signal_repository: SignalRepository,
        config: AnalysisConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._analyzer = analyzer
        self._scorer = scorer
        self._signals = signal_repository
        self._config = config or AnalysisConfig()
        self._clock = clock

    async def generate(self, pair: TradingPair, market_data: MarketData) -> GenerationResult:
        self.ensure_same_market(pair, market_data)
        started = time.perf_counter()
        analysis: MarketAnalysis | None = None
        score: SignalScore | None = None
        try:
            now = self._clock()
            strategy = pair.adapted_strategy()
            self._check_pair(pair, now)
            self._check_data(pair, market_data, strategy, now)
            analysis = self._analyzer.analyze(market_data, strategy)
            score = self._scorer.score(analysis.trend, analysis.indicators, market_data, analysis.volume)
            self.check_analysis(pair, strategy, analysis, score)
            await self._check_open_signals(pair, strategy)
            signal = self.build_signal(pair, strategy, analysis, score, now)
            self.validate(signal, strategy, analysis)
        except GenerationRejected as rejected:
            logger.debug("No signal for %s: %s", pair.symbol, rejected.reason)
            return GenerationResult(
                should_generate=False,
                reason=rejected.reason,
                analysis=analysis,
                score=score,
                processing_ms=(time.perf_counter() - started) * 1000,
            )

        logger.info(
            "Signal generated for %s: %s @ %.6f (confidence %.1f, score %.1f)",
            pair.symbol,
            signal.direction.value,
            signal.entry,
            signal.confidence,
            score.total,
        )
        return GenerationResult(
            should_generate=True,
            reason="Signal generated successfully",
            signal=signal,
            analysis=analysis,
            score=score,
            processing_ms=(time.perf_counter() - started) * 1000,
        )

    async def generate_batch(
        self, pairs_with_data: Iterable[Tuple[TradingPair, MarketData]]
    ) -> Dict[str, GenerationResult]:
        items = list(pairs_with_data)

        async def _one(pair: TradingPair, market_data: MarketData) -> GenerationResult:
            try:
                return await self.generate(pair, market_data)
            except Exception as exc:
                logger.exception("Batch generation failed for %s", pair.symbol)
                return GenerationResult(should_generate=False, reason=f"Error: {exc}")

        results = await asyncio.gather(*(_one(pair, data) for pair, data in items))
        generated = sum(1 for result in results if result.should_generate)
        logger.info("Batch generation finished: %d/%d pairs produced signals", generated, len(items))
        return {pair.key: result for (pair, _), result in zip(items, results)}

    @staticmethod
    def ensure_same_market(pair: TradingPair, market_data: MarketData) -> None:
        if market_data.symbol.upper() != pair.symbol:
            raise ValidationError(f"Market data symbol {market_data.symbol} does not match pair {pair.symbol}")
        if market_data.exchange != pair.exchange:
            raise ValidationError(f"Market data exchange {market_data.exchange} does not match pair exchange {pair.exchange}")

    # gates

    @staticmethod
    def _check_pair(pair: TradingPair, now: datetime) -> None:
        if not pair.is_active:
            raise GenerationRejected("Trading pair is inactive")
        if not pair.can_generate_signal(now):
            raise GenerationRejected(f"Cooldown active: {pair.remaining_cooldown(now):.0f}s remaining")

    def _check_data(self, pair: TradingPair, market_data: MarketData, strategy: Strategy, now: datetime) -> None:
        required = max(self._config.min_candles, strategy.min_candles)
        if not market_data.has_sufficient_data(required):
            raise GenerationRejected(
                f"Insufficient market data: {len(market_data)} candles, need {required}"
            )
        max_age = self._config.stale_data_minutes
        if not market_data.is_recent(max_age, now=now):
            raise GenerationRejected(
                f"Market data too stale: {market_data.age_in_minutes(now)}m > {max_age:g}m"
            )

    async def _check_open_signals(self, pair: TradingPair, strategy: Strategy) -> None:
        # unlocked read: concurrent ticks may overshoot the limit slightly
        active = await self._signals.find_active_by_pair(pair.symbol)
        limit = strategy.max_simultaneous_signals
        if len(active) >= limit:
            raise GenerationRejected(f"Too many active signals for {pair.symbol}: {len(active)}/{limit}")

    @abstractmethod
    def check_analysis(
        self, pair: TradingPair, strategy: Strategy, analysis: MarketAnalysis, score: SignalScore
    ) -> None:
        """Raise :class:`GenerationRejected` when the analysis does not warrant a signal."""

    @abstractmethod
    def build_signal(
        self,
        pair: TradingPair,
        strategy: Strategy,
        analysis: MarketAnalysis,
        score: SignalScore,
        now: datetime,
    ) -> Signal:
        raise NotImplementedError

    def validate(self, signal: Signal, strategy: Strategy, analysis: MarketAnalysis) -> None:
        floor = strategy.risk.risk_reward_ratio
        risk_reward = signal.risk_reward()
        if risk_reward + _RR_TOLERANCE < round(floor, 2):
            raise GenerationRejected(f"Risk/reward too low: {risk_reward:.2f} (min: {floor:.2f})")
        if signal.confidence < 2:
            raise GenerationRejected(f"Signal confidence too low: {signal.confidence}/10")
        loss = signal.potential_loss()
        ceiling = max_loss_percent(analysis.risk.level)
        if loss > ceiling:
            raise GenerationRejected(
                f"Potential loss too high: {loss:.1f}% > {ceiling}% (risk: {analysis.risk.level.value})"
            )
        if any(tp <= 0 for tp in signal.targets.take_profits):
            raise GenerationRejected("Take profit target at or below zero")
        first = signal.targets.take_profits[0]
        stop = signal.targets.stop_loss
        if signal.direction is SignalDirection.LONG and not stop < signal.entry < first:
            raise GenerationRejected("Invalid LONG targets: SL >= entry or TP <= entry")
        if signal.direction is SignalDirection.SHORT and not first < signal.entry < stop:
            raise GenerationRejected("Invalid SHORT targets: SL <= entry or TP >= entry")

    def _make_signal(
        self,
        pair: TradingPair,
        strategy: Strategy,
        direction: SignalDirection,
        entry: float,
        plan: TargetPlan,
        confidence: float,
        reasoning: Sequence[str],
        now: datetime,
    ) -> Signal:
        plan = plan.with_min_reward(strategy.risk.risk_reward_ratio)
        return Signal(
            pair=pair.symbol,
            direction=direction,
            entry=entry,
            targets=plan.to_targets(entry, direction),
            confidence=confidence,
            reasoning=tuple(reasoning[:5]),
            exchange=pair.exchange,
            timeframe=strategy.timeframe,
            strategy=f"{self.label} ({strategy.name})",
            created_at=now,
        )


class ScoredSignalGenerator(SignalGenerator):
    """Gate on the composite score, then size targets by signal quality."""

    name = "scored"
    label = "Scored"

    def check_analysis(
        self, pair: TradingPair, strategy: Strategy, analysis: MarketAnalysis, score: SignalScore
    ) -> None:
        min_score = _MIN_SCORE.get(pair.category, 5.0)
        if score.total < min_score:
            raise GenerationRejected(
                f"Signal quality too low: {score.total}/{min_score} ({pair.category.value})"
            )
        min_confidence = self.min_confidence(pair.category, analysis.risk.level)
        if score.confidence < min_confidence:
            raise GenerationRejected(
                f"Confidence too low: {score.confidence:.0f}%/{min_confidence}% (risk: {analysis.risk.level.value})"
            )
        if score.recommendation.action is Action.HOLD:
            raise GenerationRejected("Analysis recommends HOLD")

    @staticmethod
    def min_confidence(category: PairCategory, risk: RiskLevel) -> float:
        if category is PairCategory.CRYPTO_MAJOR:
            base = 40
        elif category is PairCategory.MEME:
            base = 55
        else:
            base = 45
        if risk in _HIGH_RISK:
            base += 15
        elif risk is RiskLevel.MEDIUM:
            base += 5
        else:
            base -= 5
        return max(30, min(80, base))

    def build_signal(
        self,
        pair: TradingPair,
        strategy: Strategy,
        analysis: MarketAnalysis,
        score: SignalScore,
        now: datetime,
    ) -> Signal:
        direction = self._direction(analysis, score)
        entry = self.entry_price(analysis, direction)
        plan = self.target_plan(pair, strategy, analysis, score)
        return self._make_signal(
            pair,
            strategy,
            direction,
            entry,
            plan,
            self.confidence(pair, analysis, score),
            self._reasoning(analysis, score, direction),
            now,
        )

    @staticmethod
    def _direction(analysis: MarketAnalysis, score: SignalScore) -> SignalDirection:
        action = score.recommendation.action
        if action in (Action.STRONG_BUY, Action.BUY):
            return SignalDirection.LONG
        if action in (Action.STRONG_SELL, Action.SELL):
            return SignalDirection.SHORT
        if analysis.trend.direction is TrendDirection.BULLISH:
            return SignalDirection.LONG
        return SignalDirection.SHORT

    @staticmethod
    def entry_price(analysis: MarketAnalysis, direction: SignalDirection) -> float:
        price = analysis.market_data.current_price
        if analysis.volume is VolumeLevel.HIGH:
            spread = 0.0005
        elif analysis.volume is VolumeLevel.LOW:
            spread = 0.002
        else:
            spread = 0.001
        if analysis.risk.level in _HIGH_RISK or analysis.volatility is VolatilityLevel.HIGH:
            spread *= 1.5
        if direction is SignalDirection.LONG:
            return price * (1 + spread)
        return price * (1 - spread)

    @staticmethod
    def target_plan(
        pair: TradingPair, strategy: Strategy, analysis: MarketAnalysis, score: SignalScore
    ) -> TargetPlan:
        plan = base_targets(strategy)
        if score.total >= 8.5:
            plan = plan.scaled(1.25, 1.4)
        elif score.total >= 7:
            plan = plan.scaled(1.1, 1.2)
        elif score.total < 5.5:
            plan = plan.scaled(0.75, 0.8)

        if score.confidence >= 80:
            plan = plan.scaled(take_profit=1.2)
        elif score.confidence < 50:
            plan = plan.scaled(0.8, 0.9)

        if analysis.volume is VolumeLevel.HIGH:
            plan = plan.scaled(take_profit=1.15)
        elif analysis.volume is VolumeLevel.LOW:
            plan = plan.scaled(stop_loss=0.9)

        stop_factor, profit_factor = _CATEGORY_TARGETS.get(pair.category, (1.0, 1.0))
        return plan.scaled(stop_factor, profit_factor)

    @staticmethod
    def confidence(pair: TradingPair, analysis: MarketAnalysis, score: SignalScore) -> float:
        value = score.confidence / 100 * 7 + score.total / 10 * 2
        risk = analysis.risk.level
        if risk is RiskLevel.LOW:
            value += 1
        elif risk is RiskLevel.MEDIUM:
            value += 0.5
        else:
            value -= 0.5
        if pair.category is PairCategory.CRYPTO_MAJOR:
            value += 0.3
        elif pair.category is PairCategory.MEME:
            value -= 0.5
        return max(1.0, min(10.0, round(value, 1)))

    @staticmethod
    def _reasoning(analysis: MarketAnalysis, score: SignalScore, direction: SignalDirection) -> List[str]:
        lines = [f"{direction.value} position: {score.recommendation.action.value} (score: {score.total}/10)"]
        if analysis.trend.reasons:
            lines.append(analysis.trend.reasons[0])
        if score.recommendation.reasons:
            lines.append(score.recommendation.reasons[0])
        lines.append(f"Volume: {analysis.volume.value}, Risk: {analysis.risk.level.value}")
        if score.breakdown.penalties < -1:
            lines.append("Negative factors present, trade with caution")
        return lines


class ConfluenceSignalGenerator(SignalGenerator):
    """Gate on indicator agreement rather than the composite score."""

    name = "confluence"
    label = "Confluence"

    def check_analysis(
        self, pair: TradingPair, strategy: Strategy, analysis: MarketAnalysis, score: SignalScore
    ) -> None:
        required = strategy.min_signal_strength * 10
        if score.confidence < required:
            raise GenerationRejected(f"Analysis confidence {score.confidence:.0f}% below threshold {required:.0f}%")
        overall = analysis.indicators.overall_signal()
        if len(overall.bullish) < 2 and len(overall.bearish) < 2:
            raise GenerationRejected(
                f"Not enough indicator confluence: {len(overall.bullish)} bullish, {len(overall.bearish)} bearish"
            )
        if overall.strength < 6:
            raise GenerationRejected(f"Indicator strength too low: {overall.strength}/10")
        if analysis.indicators.has_divergence():
            raise GenerationRejected("Indicators diverge")
        if analysis.volatility is VolatilityLevel.HIGH and strategy.type is not StrategyType.SCALPING:
            raise GenerationRejected(f"High volatility is not suitable for {strategy.type.value} strategy")
        if analysis.volume is VolumeLevel.LOW:
            raise GenerationRejected("Volume too low")
        if self._direction(analysis) is None:
            raise GenerationRejected("No clear market direction")

    def build_signal(
        self,
        pair: TradingPair,
        strategy: Strategy,
        analysis: MarketAnalysis,
        score: SignalScore,
        now: datetime,
    ) -> Signal:
        direction = self._direction(analysis)
        if direction is None:
            raise GenerationRejected("No clear market direction")
        close = analysis.market_data.current_price
        entry = close * (1.001 if direction is SignalDirection.LONG else 0.999)
        plan = base_targets(strategy)
        if analysis.volatility is VolatilityLevel.HIGH:
            plan = plan.scaled(1.2, 1.2)
        return self._make_signal(
            pair,
            strategy,
            direction,
            entry,
            plan,
            self.confidence(strategy, analysis, score),
            self._reasoning(analysis, score),
            now,
        )

    @staticmethod
    def _direction(analysis: MarketAnalysis) -> SignalDirection | None:
        overall = analysis.indicators.overall_signal()
        if overall.direction is IndicatorSignal.BUY:
            return SignalDirection.LONG
        if overall.direction is IndicatorSignal.SELL:
            return SignalDirection.SHORT
        if analysis.trend.direction is TrendDirection.BULLISH:
            return SignalDirection.LONG
        if analysis.trend.direction is TrendDirection.BEARISH:
            return SignalDirection.SHORT
        return None

    def confidence(self, strategy: Strategy, analysis: MarketAnalysis, score: SignalScore) -> float:
        overall = analysis.indicators.overall_signal()
        value = score.confidence / 10 + overall.strength * 0.1
        if analysis.volume is VolumeLevel.HIGH:
            value += 0.5
        elif analysis.volume is VolumeLevel.LOW:
            value -= 1
        if analysis.volatility is VolatilityLevel.HIGH:
            value += 0.5 if strategy.type is StrategyType.SCALPING else -0.5
        trend = analysis.trend.direction
        if (trend is TrendDirection.BULLISH and overall.direction is IndicatorSignal.BUY) or (
            trend is TrendDirection.BEARISH and overall.direction is IndicatorSignal.SELL
        ):
            value += 0.5
        return max(1.0, min(10.0, round(value, 1)))

    @staticmethod
    def _reasoning(analysis: MarketAnalysis, score: SignalScore) -> List[str]:
        overall = analysis.indicators.overall_signal()
        lines = []
        if overall.bullish:
            lines.append(f"Bullish indicators: {', '.join(overall.bullish)}")
        if overall.bearish:
            lines.append(f"Bearish indicators: {', '.join(overall.bearish)}")
        lines.extend(analysis.trend.reasons[:1])
        lines.append(f"Volume: {analysis.volume.value}, Volatility: {analysis.volatility.value}")
        lines.append(f"Composite score {score.total}/10, risk {analysis.risk.level.value}")
        return lines


def build_signal_generator(
    kind: str,
    analyzer: MarketAnalyzer,
    scorer: SignalScorer,
    signal_repository: SignalRepository,
    config: AnalysisConfig | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> SignalGenerator:
    generators = {cls.name: cls for cls in (ScoredSignalGenerator, ConfluenceSignalGenerator)}
    if kind not in generators:
        raise ValidationError(f"Unknown signal generator: {kind}")
    return generators[kind](analyzer, scorer, signal_repository, config=config, clock=clock)
