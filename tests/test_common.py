from pathlib import Path

import pytest

from optimize import constants as C
from optimize.common import (
    StrategyConfig,
    config_from_mapping,
    guess_interval,
    guess_symbol,
    load_yaml,
    validate_config,
)


def test_defaults_match_constants():
    config = StrategyConfig()
    assert config.initial_balance == C.DEFAULT_INITIAL_BALANCE
    assert config.commission == C.DEFAULT_COMMISSION
    assert config.indicators == C.CLASSIC_INDICATORS
    assert config.cycle is True
    validate_config(config)


def test_config_from_nested_mapping():
    payload = {
        "strategy": {
            "symbol": "ETHUSDT",
            "base_amount": "25",
            "cycle": "false",
            "indicators": "rsi, ema",
            "rsi": {"period": 21, "oversold": 25},
            "macd": {"fast_period": 8, "slow_period": 30},
        },
        "risk": {"initial_balance": 1000, "commission": 0.001},
    }
    config = config_from_mapping(payload)
    assert config.symbol == "ETHUSDT"
    assert config.base_amount == 25.0
    assert config.cycle is False
    assert config.indicators == ("rsi", "ema")
    assert config.rsi_period == 21 and isinstance(config.rsi_period, int)
    assert config.rsi_oversold == 25.0
    assert (config.macd_fast, config.macd_slow) == (8, 30)
    assert config.initial_balance == 1000.0


def test_unknown_keys_are_ignored(caplog):
    config = config_from_mapping({"mystery": 1, "window_size": 80, "tp_percent": None})
    assert config.window_size == 80
    assert config.tp_percent == C.DEFAULT_TP_PERCENT
    assert "mystery" in caplog.text


def test_bad_number_rejected():
    with pytest.raises(ValueError):
        config_from_mapping({"base_amount": "lots"})


def test_load_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("strategy:\n  max_multiplier: 2.5\n  ema:\n    period: 75\n", encoding="utf-8")
    config = config_from_mapping(load_yaml(path))
    assert config.max_multiplier == 2.5
    assert config.ema_period == 75
    assert load_yaml(tmp_path / "missing.yaml") == {}


@pytest.mark.parametrize(
    "changes",
    [
        {"initial_balance": 0.0},
        {"commission": 1.5},
        {"base_amount": -1.0},
        {"max_multiplier": 1.0},
        {"price_threshold": 2.0},
        {"rsi_oversold": 70.0, "rsi_overbought": 30.0},
        {"macd_fast": 26, "macd_slow": 12},
        {"bb_std_dev": 0.0},
        {"ema_period": 1},
        {"indicators": ()},
    ],
)
def test_validate_config_rejects(changes):
    with pytest.raises(ValueError):
        validate_config(StrategyConfig().with_values(**changes))


def test_guess_interval_and_symbol():
    path = Path("data/bybit/linear/BTCUSDT/5m/candles.csv")
    assert guess_interval(path) == "5m"
    assert guess_symbol(path) == "BTCUSDT"
    assert guess_interval(Path("data/ETHUSDT_1h.csv")) == "1h"
    assert guess_interval(Path("candles.csv")) == ""


def test_validate_config_rejects_unknown_indicator():
    with pytest.raises(ValueError, match="sma"):
        validate_config(StrategyConfig(indicators=("rsi", "sma")))
