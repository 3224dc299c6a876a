"""Top-level package for the crypto market-analysis and signal engine."""

__all__ = [
    "config",
    "data",
    "indicators",
    "strategy",
    "analysis",
    "signals",
    "events",
    "notifications",
    "repositories",
    "usecases",
    "scheduler",
    "monitoring",
]
