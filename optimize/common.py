"""Common optimisation helpers: the strategy configuration model and its loaders."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np
import yaml

from .constants import (
    CLASSIC_INDICATORS,
    DEFAULT_BASE_AMOUNT,
    DEFAULT_BB_PERIOD,
    DEFAULT_BB_STD_DEV,
    DEFAULT_COMMISSION,
    DEFAULT_EMA_PERIOD,
    DEFAULT_INITIAL_BALANCE,
    DEFAULT_MACD_FAST,
    DEFAULT_MACD_SIGNAL,
    DEFAULT_MACD_SLOW,
    DEFAULT_MAX_MULTIPLIER,
    DEFAULT_MIN_ORDER_QTY,
    DEFAULT_PRICE_THRESHOLD,
    DEFAULT_RSI_OVERBOUGHT,
    DEFAULT_RSI_OVERSOLD,
    DEFAULT_RSI_PERIOD,
    DEFAULT_TP_PERCENT,
    DEFAULT_WINDOW_SIZE,
    MAX_COMMISSION,
    MAX_RSI_VALUE,
    MAX_THRESHOLD,
    MIN_BB_PERIOD,
    MIN_EMA_PERIOD,
    MIN_MACD_PERIOD,
    MIN_MULTIPLIER,
    MIN_RSI_PERIOD,
)

LOGGER = logging.getLogger(__name__)

_INTERVAL_PATTERN = re.compile(r"^\d+[mhdw]$", re.IGNORECASE)


@dataclass(frozen=True)
class StrategyConfig:
    """Flat record of every tunable DCA strategy parameter.

    인디케이터별 파라미터는 ``indicators`` 에 해당 지표가 포함된 경우에만 의미가
    있습니다. 포함 집합은 활성 콤보 패밀리의 정규 집합과 항상 일치해야 합니다.
    """

    symbol: str = ""
    interval: str = ""
    initial_balance: float = DEFAULT_INITIAL_BALANCE
    commission: float = DEFAULT_COMMISSION
    window_size: int = DEFAULT_WINDOW_SIZE
    min_order_qty: float = DEFAULT_MIN_ORDER_QTY

    base_amount: float = DEFAULT_BASE_AMOUNT
    max_multiplier: float = DEFAULT_MAX_MULTIPLIER
    price_threshold: float = DEFAULT_PRICE_THRESHOLD
    tp_percent: float = DEFAULT_TP_PERCENT
    cycle: bool = True

    family: str = "classic"
    indicators: Tuple[str, ...] = CLASSIC_INDICATORS

    rsi_period: int = DEFAULT_RSI_PERIOD
    rsi_oversold: float = DEFAULT_RSI_OVERSOLD
    rsi_overbought: float = DEFAULT_RSI_OVERBOUGHT
    macd_fast: int = DEFAULT_MACD_FAST
    macd_slow: int = DEFAULT_MACD_SLOW
    macd_signal: int = DEFAULT_MACD_SIGNAL
    bb_period: int = DEFAULT_BB_PERIOD
    bb_std_dev: float = DEFAULT_BB_STD_DEV
    ema_period: int = DEFAULT_EMA_PERIOD

    hullma_period: int = 20
    supertrend_period: int = 14
    supertrend_multiplier: float = 3.0
    mfi_period: int = 14
    mfi_oversold: float = 20.0
    mfi_overbought: float = 80.0
    keltner_period: int = 20
    keltner_multiplier: float = 2.0
    wavetrend_n1: int = 10
    wavetrend_n2: int = 21
    wavetrend_overbought: float = 60.0
    wavetrend_oversold: float = -60.0
    obv_trend_threshold: float = 0.01
    stochrsi_period: int = 14
    stochrsi_overbought: float = 80.0
    stochrsi_oversold: float = 20.0

    def with_values(self, **changes: Any) -> "StrategyConfig":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["indicators"] = list(self.indicators)
        return payload


_FIELD_TYPES: Dict[str, type] = {}


def _field_types() -> Dict[str, type]:
    if not _FIELD_TYPES:
        defaults = StrategyConfig()
        for item in fields(StrategyConfig):
            _FIELD_TYPES[item.name] = type(getattr(defaults, item.name))
    return _FIELD_TYPES


def _coerce_float(value: object) -> float:
    """Return a finite float representation or NaN."""

    if value is None:
        return math.nan
    if isinstance(value, bool):
        return float(int(value))
    try:
        result = float(value)
    except (TypeError, ValueError):
        return math.nan
    if not np.isfinite(result):
        return math.nan
    return result


def _coerce_bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "t", "1", "yes", "y", "on"}
    return bool(value)


def _coerce_value(name: str, value: object) -> object:
    expected = _field_types()[name]
    if expected is bool:
        return _coerce_bool(value)
    if expected is tuple:
        if isinstance(value, str):
            items = [part.strip().lower() for part in value.replace("+", ",").split(",")]
        else:
            items = [str(part).strip().lower() for part in (value or [])]
        return tuple(item for item in items if item)
    if expected is str:
        return "" if value is None else str(value)
    number = _coerce_float(value)
    if math.isnan(number):
        raise ValueError(f"'{name}' 값이 올바른 숫자가 아닙니다: {value!r}")
    if expected is int:
        return int(round(number))
    return float(number)


# 중첩 지표 블록(``rsi: {period: 14}``) → 평탄화된 필드 이름
_NESTED_INDICATOR_KEYS: Dict[str, Dict[str, str]] = {
    "rsi": {"period": "rsi_period", "oversold": "rsi_oversold", "overbought": "rsi_overbought"},
    "macd": {
        "fast_period": "macd_fast",
        "slow_period": "macd_slow",
        "signal_period": "macd_signal",
    },
    "bollinger_bands": {"period": "bb_period", "std_dev": "bb_std_dev"},
    "ema": {"period": "ema_period"},
}


def _flatten_config_mapping(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Accept both flat and the nested ``strategy:``/``risk:`` layout."""

    flat: Dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, Mapping) and key in {"strategy", "risk", "backtest"}:
            flat.update(_flatten_config_mapping(value))
        elif isinstance(value, Mapping) and key in _NESTED_INDICATOR_KEYS:
            mapping = _NESTED_INDICATOR_KEYS[key]
            for sub_key, sub_value in value.items():
                flat[mapping.get(str(sub_key), f"{key}_{sub_key}")] = sub_value
        else:
            flat[str(key)] = value
    return flat


def config_from_mapping(
    payload: Optional[Mapping[str, Any]],
    base: Optional[StrategyConfig] = None,
) -> StrategyConfig:
    """Build a :class:`StrategyConfig` from a YAML/JSON style mapping.

    알 수 없는 키는 경고 후 무시하며, ``None`` 값은 기본값을 유지합니다.
    """

    config = base or StrategyConfig()
    if not payload:
        return config
    known = _field_types()
    changes: Dict[str, Any] = {}
    for key, value in _flatten_config_mapping(payload).items():
        if key not in known:
            LOGGER.warning("알 수 없는 설정 키 '%s' 를 무시합니다.", key)
            continue
        if value is None:
            continue
        changes[key] = _coerce_value(key, value)
    return replace(config, **changes)


def load_yaml(path: Optional[Path]) -> Dict[str, object]:
    if path is None or not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def validate_config(config: StrategyConfig) -> None:
    """Reject parameter values that the engine cannot simulate."""

    if config.initial_balance <= 0:
        raise ValueError(f"initial balance must be positive, got: {config.initial_balance:.2f}")
    if config.commission < 0 or config.commission > MAX_COMMISSION:
        raise ValueError(
            f"commission must be between 0 and {MAX_COMMISSION:.2f}, got: {config.commission:.4f}"
        )
    if config.base_amount <= 0:
        raise ValueError(f"base amount must be positive, got: {config.base_amount:.2f}")
    if config.max_multiplier <= MIN_MULTIPLIER:
        raise ValueError(
            f"max multiplier must be greater than {MIN_MULTIPLIER:.1f}, got: {config.max_multiplier:.2f}"
        )
    if config.window_size <= 0:
        raise ValueError(f"window size must be positive, got: {config.window_size}")
    if config.min_order_qty < 0:
        raise ValueError(f"min order qty must not be negative, got: {config.min_order_qty}")
    for name in ("price_threshold", "tp_percent"):
        value = getattr(config, name)
        if value < 0 or value > MAX_THRESHOLD:
            raise ValueError(f"{name} must be between 0 and {MAX_THRESHOLD:.2f}, got: {value:.4f}")
    if config.rsi_period < MIN_RSI_PERIOD:
        raise ValueError(f"RSI period must be at least {MIN_RSI_PERIOD}, got: {config.rsi_period}")
    for name in ("rsi_oversold", "rsi_overbought"):
        value = getattr(config, name)
        if value <= 0 or value >= MAX_RSI_VALUE:
            raise ValueError(f"{name} must be between 0 and {MAX_RSI_VALUE}, got: {value:.1f}")
    if config.rsi_oversold >= config.rsi_overbought:
        raise ValueError(
            f"RSI oversold ({config.rsi_oversold:.1f}) must be less than overbought ({config.rsi_overbought:.1f})"
        )
    if min(config.macd_fast, config.macd_slow, config.macd_signal) < MIN_MACD_PERIOD:
        raise ValueError(
            f"MACD periods must be at least {MIN_MACD_PERIOD}, got: fast={config.macd_fast}, "
            f"slow={config.macd_slow}, signal={config.macd_signal}"
        )
    if config.macd_fast >= config.macd_slow:
        raise ValueError(
            f"MACD fast period ({config.macd_fast}) must be less than slow period ({config.macd_slow})"
        )
    if config.bb_period < MIN_BB_PERIOD:
        raise ValueError(f"BB period must be at least {MIN_BB_PERIOD}, got: {config.bb_period}")
    if config.bb_std_dev <= 0:
        raise ValueError(f"BB standard deviation must be positive, got: {config.bb_std_dev:.2f}")
    if config.ema_period < MIN_EMA_PERIOD:
        raise ValueError(f"EMA period must be at least {MIN_EMA_PERIOD}, got: {config.ema_period}")
    if not config.indicators:
        raise ValueError("at least one indicator must be enabled")
    from .indicators import SIGNAL_BUILDERS

    unknown = [name for name in config.indicators if name not in SIGNAL_BUILDERS]
    if unknown:
        raise ValueError(
            f"unsupported indicators: {', '.join(unknown)} (available: {', '.join(SIGNAL_BUILDERS)})"
        )


def guess_interval(path: Path) -> str:
    """Recover the candle interval from a path like ``data/bybit/BTCUSDT/5m/candles.csv``."""

    for part in reversed(Path(path).parts[:-1]):
        if _INTERVAL_PATTERN.match(part):
            return part.lower()
    stem_tokens = re.split(r"[_\-.]", Path(path).stem)
    for token in reversed(stem_tokens):
        if _INTERVAL_PATTERN.match(token):
            return token.lower()
    return ""


def guess_symbol(path: Path) -> str:
    for part in reversed(Path(path).parts[:-1]):
        if part.isupper() and part.isalnum() and len(part) >= 5:
            return part
    return ""
