from __future__ import annotations

import json
import os
import tomllib
from pathlib import Path
from typing import Any, Mapping

import yaml

from crypto_signals.config.models import AppConfig, default_config

CONFIG_ENV_PREFIX = "SIGNALS_"


def load_config(path: str | Path | None = None, env_prefix: str = CONFIG_ENV_PREFIX) -> AppConfig:
    config = default_config()
    if path:
        payload = _read_file(Path(path))
        config = AppConfig(**payload)
    return _apply_env_overrides(config, env_prefix=env_prefix)


def _read_file(path: Path) -> Mapping[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        return yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if suffix in {".toml", ".tml"}:
        with path.open("rb") as fh:
            return tomllib.load(fh)
    if suffix == ".json":
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    raise ValueError(f"Unsupported config format: {path.suffix}")


def _apply_env_overrides(config: AppConfig, env_prefix: str) -> AppConfig:
    base_url = os.getenv(f"{env_prefix}EXCHANGE_BASE_URL")
    webhook_url = os.getenv(f"{env_prefix}WEBHOOK_URL")
    trend_model = os.getenv(f"{env_prefix}TREND_MODEL")
    generator = os.getenv(f"{env_prefix}GENERATOR")
    candle_limit = _get_env_int(f"{env_prefix}CANDLE_LIMIT")

    exchange_cfg = config.exchange
    notification_cfg = config.notifications
    analysis_cfg = config.analysis
    monitoring_cfg = config.monitoring

    if base_url:
        exchange_cfg = exchange_cfg.model_copy(update={"base_url": base_url})
    if webhook_url:
        notification_cfg = notification_cfg.model_copy(update={"webhook_url": webhook_url})
    analysis_updates: dict[str, Any] = {}
    if trend_model in {"voting", "cascade"}:
        analysis_updates["trend_model"] = trend_model
    if generator in {"scored", "confluence"}:
        analysis_updates["generator"] = generator
    if analysis_updates:
        analysis_cfg = analysis_cfg.model_copy(update=analysis_updates)
    if candle_limit is not None:
        monitoring_cfg = monitoring_cfg.model_copy(update={"candle_limit": candle_limit})

    return config.model_copy(
        update={
            "exchange": exchange_cfg,
            "notifications": notification_cfg,
            "analysis": analysis_cfg,
            "monitoring": monitoring_cfg,
        }
    )


def _get_env_int(key: str) -> int | None:
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None
