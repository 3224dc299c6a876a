from __future__ import annotations

import logging
from dataclasses import replace

from .models import MarketConditions, Signal, SignalDirection, SignalTargets

logger = logging.getLogger(__name__)

OPTIMIZED_NOTE = "Optimized for current market conditions"


def _optimize_targets(signal: Signal, conditions: MarketConditions) -> SignalTargets:
    stop_factor = 1.0
    profit_factor = 1.0
    if conditions.volatility > 0.05:
        stop_factor, profit_factor = 1.2, 1.3
    elif conditions.volatility < 0.02:
        stop_factor, profit_factor = 0.8, 0.8
    if conditions.volume_ratio > 2:
        profit_factor *= 1.1

    entry = signal.entry
    stop_distance = abs(entry - signal.targets.stop_loss) * stop_factor
    profit_distances = [abs(tp - entry) * profit_factor for tp in signal.targets.take_profits]
    if signal.direction is SignalDirection.LONG:
        return SignalTargets(entry - stop_distance, tuple(entry + d for d in profit_distances))
    return SignalTargets(entry + stop_distance, tuple(entry - d for d in profit_distances))


def _optimize_confidence(signal: Signal, conditions: MarketConditions) -> float:
    confidence = signal.confidence
    if conditions.trend_strength > 0.7:
        confidence += 0.5
    if conditions.volume_ratio > 1.5:
        confidence += 0.3
    if conditions.volatility > 0.08:
        confidence -= 0.5
    if conditions.conflicting_signals:
        confidence -= 1
    return max(1.0, min(10.0, round(confidence, 1)))


def optimize_signal(signal: Signal, conditions: MarketConditions) -> Signal:
    """Return a copy of ``signal`` re-targeted for ``conditions``.

    The argument is left untouched and the copy keeps its id and creation
    time, so equal inputs always produce equal outputs.
    """
    reasoning = list(signal.reasoning)
    if OPTIMIZED_NOTE not in reasoning:
        reasoning = reasoning[:9] + [OPTIMIZED_NOTE]
    optimized = replace(
        signal,
        targets=_optimize_targets(signal, conditions),
        confidence=_optimize_confidence(signal, conditions),
        reasoning=tuple(reasoning),
    )
    logger.debug(
        "Optimized signal %s: confidence %.1f -> %.1f",
        signal.id,
        signal.confidence,
        optimized.confidence,
    )
    return optimized
