from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Dict, List

from crypto_signals.analysis.market import MarketAnalyzer
from crypto_signals.analysis.trend import build_trend_classifier
from crypto_signals.config.loader import load_config
from crypto_signals.config.models import AppConfig
from crypto_signals.data.provider_base import ExchangeAdapter
from crypto_signals.data.providers import BinanceExchangeAdapter, MockExchangeAdapter, SystemTimeProvider
from crypto_signals.events.bus import Event, EventBus, EventType
from crypto_signals.monitoring.logger import SignalConsole
from crypto_signals.notifications.base import NotificationChannel
from crypto_signals.notifications.channels import ConsoleChannel, WebhookChannel
from crypto_signals.notifications.service import NotificationService
from crypto_signals.repositories.base import PairRepository
from crypto_signals.repositories.file import FilePairRepository
from crypto_signals.repositories.memory import InMemoryPairRepository, InMemorySignalRepository
from crypto_signals.scheduler.orchestrator import MonitorOrchestrator
from crypto_signals.signals.generator import build_signal_generator
from crypto_signals.signals.scorer import SignalScorer
from crypto_signals.usecases.generate_signal import GenerateSignalUseCase


def build_exchanges(config: AppConfig, use_mock: bool) -> Dict[str, ExchangeAdapter]:
    names = {pair.exchange for pair in config.pairs} or {config.exchange.name}
    if use_mock:
        time_provider = SystemTimeProvider()
        return {name: MockExchangeAdapter(name=name, time_provider=time_provider) for name in names}
    return {config.exchange.name: BinanceExchangeAdapter(config.exchange)}


def build_channels(config: AppConfig, console: SignalConsole) -> List[NotificationChannel]:
    channels: List[NotificationChannel] = []
    if config.notifications.console:
        channels.append(ConsoleChannel(console))
    if config.notifications.webhook_url:
        channels.append(
            WebhookChannel(
                config.notifications.webhook_url,
                timeout=config.notifications.webhook_timeout_seconds,
            )
        )
    return channels


async def build_pair_repository(config: AppConfig) -> PairRepository:
    configured = [pair.to_pair() for pair in config.pairs]
    if not config.storage.pairs_file:
        return InMemoryPairRepository(configured)
    repository = FilePairRepository(config.storage.pairs_file)
    if not await repository.find_all():
        await repository.save_all(configured)
    return repository


async def run_app(config: AppConfig, run_minutes: float, use_mock: bool) -> None:
    console = SignalConsole()
    event_bus = EventBus()
    signal_repository = InMemorySignalRepository()
    pair_repository = await build_pair_repository(config)
    exchanges = build_exchanges(config, use_mock)
    notifications = NotificationService(build_channels(config, console), config.notifications)

    analyzer = MarketAnalyzer(trend_classifier=build_trend_classifier(config.analysis.trend_model))
    generator = build_signal_generator(
        config.analysis.generator,
        analyzer,
        SignalScorer(),
        signal_repository,
        config=config.analysis,
    )
    use_case = GenerateSignalUseCase(
        generator=generator,
        signal_repository=signal_repository,
        pair_repository=pair_repository,
        notifications=notifications,
        event_bus=event_bus,
        config=config.analysis,
    )
    orchestrator = MonitorOrchestrator(
        config=config.monitoring,
        exchanges=exchanges,
        pair_repository=pair_repository,
        use_case=use_case,
        event_bus=event_bus,
    )

    def _on_error(event: Event) -> None:
        console.warning("Monitoring error", details=event.payload)

    def _on_deactivated(event: Event) -> None:
        console.error("Pair deactivated", details=event.payload)

    event_bus.subscribe(EventType.MONITORING_ERROR, _on_error)
    event_bus.subscribe(EventType.PAIR_DEACTIVATED, _on_deactivated)

    await orchestrator.start()
    console.success(
        "Monitoring started",
        details={
            "pairs": orchestrator.status().total_pairs_monitored,
            "exchanges": ", ".join(sorted(exchanges)),
            "generator": config.analysis.generator,
            "trend model": config.analysis.trend_model,
        },
    )
    try:
        await asyncio.sleep(run_minutes * 60)
    finally:
        await orchestrator.stop()
        console.log_status("Monitoring status", orchestrator.status().to_dict())
        await notifications.close()
        for adapter in exchanges.values():
            await adapter.close()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Crypto market monitor and signal generator")
    parser.add_argument("--config", type=str, default=None, help="Path to a YAML, JSON or TOML config file")
    parser.add_argument(
        "--minutes",
        type=float,
        default=1.0,
        help="Run duration in minutes",
    )
    parser.add_argument("--mock", action="store_true", help="Use synthetic candles instead of a live exchange")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    config = load_config(args.config)
    asyncio.run(run_app(config, run_minutes=args.minutes, use_mock=args.mock))


if __name__ == "__main__":
    main()
