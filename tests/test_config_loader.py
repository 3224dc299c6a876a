from __future__ import annotations

import json

import pytest

from crypto_signals.config.loader import load_config
from crypto_signals.strategy.pair import PairCategory


def test_defaults_without_file(monkeypatch):
    monkeypatch.delenv("SIGNALS_CANDLE_LIMIT", raising=False)
    config = load_config()
    assert config.exchange.name == "binance"
    assert config.monitoring.candle_limit == 100
    assert [pair.symbol for pair in config.pairs] == ["BTC/USDT", "ETH/USDT"]


def test_yaml_file_with_pairs(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        """
analysis:
  trend_model: cascade
monitoring:
  max_error_count: 5
  intervals:
    1h: 90
pairs:
  - symbol: DOGE/USDT
    base_asset: DOGE
    quote_asset: USDT
    category: meme
    strategy: scalping
    signal_cooldown_seconds: 600
""",
        encoding="utf-8",
    )
    config = load_config(path)
    assert config.analysis.trend_model == "cascade"
    assert config.monitoring.max_error_count == 5
    assert config.monitoring.intervals == {"1h": 90}
    pair = config.pairs[0].to_pair()
    assert pair.category is PairCategory.MEME
    assert pair.settings.signal_cooldown == 600
    assert pair.strategy.name == "Advanced Scalping"


def test_json_and_toml(tmp_path):
    json_path = tmp_path / "config.json"
    json_path.write_text(json.dumps({"notifications": {"retry_attempts": 1}}), encoding="utf-8")
    assert load_config(json_path).notifications.retry_attempts == 1

    toml_path = tmp_path / "config.toml"
    toml_path.write_text('[exchange]\nname = "binance"\ntimeout_seconds = 5.0\n', encoding="utf-8")
    assert load_config(toml_path).exchange.timeout_seconds == 5.0


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("SIGNALS_WEBHOOK_URL", "https://hooks.example.test/x")
    monkeypatch.setenv("SIGNALS_GENERATOR", "confluence")
    monkeypatch.setenv("SIGNALS_TREND_MODEL", "neural")
    monkeypatch.setenv("SIGNALS_CANDLE_LIMIT", "250")
    config = load_config()
    assert config.notifications.webhook_url == "https://hooks.example.test/x"
    assert config.analysis.generator == "confluence"
    assert config.analysis.trend_model == "voting"
    assert config.monitoring.candle_limit == 250


def test_bad_integer_override_is_ignored(monkeypatch):
    monkeypatch.setenv("SIGNALS_CANDLE_LIMIT", "lots")
    assert load_config().monitoring.candle_limit == 100


def test_missing_and_unsupported_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")
    ini = tmp_path / "config.ini"
    ini.write_text("[x]", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(ini)
