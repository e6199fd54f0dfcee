import numpy as np
import pytest

from optimize import constants as C
from optimize.common import StrategyConfig
from optimize.search_spaces import (
    ADVANCED,
    CLASSIC,
    family_for_config,
    get_family,
    parameter_lines,
    random_configuration,
)


def test_random_configuration_samples_from_candidates():
    rng = np.random.default_rng(7)
    for _ in range(20):
        config = random_configuration(StrategyConfig(), CLASSIC, rng)
        assert config.max_multiplier in C.MULTIPLIER_CHOICES
        assert config.tp_percent in C.TP_CHOICES
        assert config.rsi_period in C.RSI_PERIOD_CHOICES
        assert config.macd_slow in C.MACD_SLOW_CHOICES
        assert config.indicators == C.CLASSIC_INDICATORS
        assert isinstance(config.rsi_period, int)


def test_random_configuration_forces_zero_tp_without_cycle():
    rng = np.random.default_rng(3)
    base = StrategyConfig(cycle=False)
    for _ in range(10):
        assert random_configuration(base, CLASSIC, rng).tp_percent == 0.0


def test_random_configuration_keeps_risk_fields():
    base = StrategyConfig(initial_balance=1234.0, commission=0.001, base_amount=55.0)
    config = random_configuration(base, CLASSIC, np.random.default_rng(0))
    assert config.initial_balance == 1234.0
    assert config.commission == 0.001
    assert config.base_amount == 55.0


def test_advanced_fields_only_apply_to_included_indicators():
    config = ADVANCED.normalize(StrategyConfig())
    names = {spec.name for spec in ADVANCED.applicable_fields(config)}
    assert "hullma_period" in names
    assert "wavetrend_n1" in names
    assert "supertrend_period" not in names
    assert "rsi_period" not in names


def test_tp_field_requires_cycle():
    config = StrategyConfig(cycle=False)
    names = {spec.name for spec in CLASSIC.applicable_fields(config)}
    assert "tp_percent" not in names
    assert "max_multiplier" in names


def test_normalize_restores_canonical_indicators_and_family():
    broken = StrategyConfig(indicators=("rsi",), family="advanced", cycle=False, tp_percent=0.03)
    fixed = CLASSIC.normalize(broken)
    assert fixed.indicators == C.CLASSIC_INDICATORS
    assert fixed.family == "classic"
    assert fixed.tp_percent == 0.0


def test_normalize_orders_wavetrend_lengths():
    swapped = ADVANCED.normalize(StrategyConfig(wavetrend_n1=28, wavetrend_n2=18))
    assert (swapped.wavetrend_n1, swapped.wavetrend_n2) == (18, 28)

    equal = ADVANCED.normalize(StrategyConfig(wavetrend_n1=18, wavetrend_n2=18))
    assert equal.wavetrend_n1 == 18
    assert equal.wavetrend_n2 == 21


def test_restrict_rejects_unknown_indicator():
    with pytest.raises(ValueError):
        CLASSIC.restrict(["rsi", "supertrend"])
    subset = ADVANCED.restrict(["supertrend", "obv"])
    assert subset.indicators == ("supertrend", "obv")
    assert subset.pool == ADVANCED.pool


def test_family_lookup():
    assert get_family("ADVANCED") is ADVANCED
    with pytest.raises(ValueError):
        get_family("exotic")
    restricted = family_for_config(StrategyConfig(indicators=("rsi", "ema")))
    assert restricted.indicators == ("rsi", "ema")
    assert family_for_config(StrategyConfig()) is CLASSIC


def test_parameter_lines_follow_inclusion_set():
    lines = parameter_lines(StrategyConfig(indicators=("rsi", "ema"), rsi_period=21, ema_period=60))
    assert lines == ["RSI: period=21, oversold=30", "EMA: period=60"]
