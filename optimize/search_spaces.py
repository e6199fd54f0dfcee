"""Declarative search space for the DCA strategy: field registry and combo families."""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from . import constants as C
from .common import StrategyConfig


@dataclass(frozen=True)
class FieldSpec:
    """One tunable configuration field and its discrete candidate set.

    ``indicator`` 가 지정된 필드는 해당 지표가 포함 집합에 있을 때만 적용되고,
    ``requires_cycle`` 필드는 사이클(TP) 모드가 켜져 있을 때만 적용됩니다.
    """

    name: str
    candidates: Tuple[object, ...]
    indicator: Optional[str] = None
    requires_cycle: bool = False

    def applies(self, config: StrategyConfig, indicators: Sequence[str]) -> bool:
        if self.requires_cycle and not config.cycle:
            return False
        if self.indicator is not None and self.indicator not in indicators:
            return False
        return True

    def sample(self, rng: np.random.Generator) -> object:
        # 인덱스로 뽑아 numpy 스칼라 대신 원래 파이썬 타입을 유지한다.
        return self.candidates[int(rng.integers(len(self.candidates)))]


def _spec(name: str, candidates: Sequence[object], **kwargs: object) -> FieldSpec:
    return FieldSpec(name=name, candidates=tuple(candidates), **kwargs)  # type: ignore[arg-type]


COMMON_FIELDS: Tuple[FieldSpec, ...] = (
    _spec("max_multiplier", C.MULTIPLIER_CHOICES),
    _spec("tp_percent", C.TP_CHOICES, requires_cycle=True),
    _spec("price_threshold", C.PRICE_THRESHOLD_CHOICES),
)

CLASSIC_FIELDS: Tuple[FieldSpec, ...] = (
    _spec("rsi_period", C.RSI_PERIOD_CHOICES, indicator="rsi"),
    _spec("rsi_oversold", C.RSI_OVERSOLD_CHOICES, indicator="rsi"),
    _spec("macd_fast", C.MACD_FAST_CHOICES, indicator="macd"),
    _spec("macd_slow", C.MACD_SLOW_CHOICES, indicator="macd"),
    _spec("macd_signal", C.MACD_SIGNAL_CHOICES, indicator="macd"),
    _spec("bb_period", C.BB_PERIOD_CHOICES, indicator="bb"),
    _spec("bb_std_dev", C.BB_STD_DEV_CHOICES, indicator="bb"),
    _spec("ema_period", C.EMA_PERIOD_CHOICES, indicator="ema"),
)

ADVANCED_FIELDS: Tuple[FieldSpec, ...] = (
    _spec("hullma_period", C.HULLMA_PERIOD_CHOICES, indicator="hullma"),
    _spec("supertrend_period", C.SUPERTREND_PERIOD_CHOICES, indicator="supertrend"),
    _spec("supertrend_multiplier", C.SUPERTREND_MULTIPLIER_CHOICES, indicator="supertrend"),
    _spec("mfi_period", C.MFI_PERIOD_CHOICES, indicator="mfi"),
    _spec("mfi_oversold", C.MFI_OVERSOLD_CHOICES, indicator="mfi"),
    _spec("mfi_overbought", C.MFI_OVERBOUGHT_CHOICES, indicator="mfi"),
    _spec("keltner_period", C.KELTNER_PERIOD_CHOICES, indicator="keltner"),
    _spec("keltner_multiplier", C.KELTNER_MULTIPLIER_CHOICES, indicator="keltner"),
    _spec("wavetrend_n1", C.WAVETREND_N1_CHOICES, indicator="wavetrend"),
    _spec("wavetrend_n2", C.WAVETREND_N2_CHOICES, indicator="wavetrend"),
    _spec("wavetrend_overbought", C.WAVETREND_OVERBOUGHT_CHOICES, indicator="wavetrend"),
    _spec("wavetrend_oversold", C.WAVETREND_OVERSOLD_CHOICES, indicator="wavetrend"),
    _spec("obv_trend_threshold", C.OBV_TREND_THRESHOLD_CHOICES, indicator="obv"),
    _spec("stochrsi_period", C.STOCHRSI_PERIOD_CHOICES, indicator="stochrsi"),
    _spec("stochrsi_overbought", C.STOCHRSI_OVERBOUGHT_CHOICES, indicator="stochrsi"),
    _spec("stochrsi_oversold", C.STOCHRSI_OVERSOLD_CHOICES, indicator="stochrsi"),
)


@dataclass(frozen=True)
class ComboFamily:
    """A bundle of indicators optimised together, carrying its own field registry.

    ``indicators`` 는 이 패밀리의 정규 포함 집합이며, ``pool`` 은 exhaustive
    모드가 조합을 만들 때 사용하는 전체 지표 목록입니다.
    """

    name: str
    indicators: Tuple[str, ...]
    pool: Tuple[str, ...]
    fields: Tuple[FieldSpec, ...]

    def applicable_fields(self, config: StrategyConfig) -> List[FieldSpec]:
        return [spec for spec in self.fields if spec.applies(config, self.indicators)]

    def restrict(self, indicators: Sequence[str]) -> "ComboFamily":
        """Return the same family with a fixed indicator subset as its canonical set."""

        unknown = [name for name in indicators if name not in self.pool]
        if unknown:
            raise ValueError(f"'{self.name}' 패밀리에 없는 지표입니다: {', '.join(unknown)}")
        return replace(self, indicators=tuple(indicators))

    def normalize(self, config: StrategyConfig) -> StrategyConfig:
        """Re-assert the canonical indicator set and repair cross-field constraints."""

        changes: Dict[str, object] = {}
        if tuple(config.indicators) != self.indicators:
            changes["indicators"] = self.indicators
        if config.family != self.name:
            changes["family"] = self.name
        if not config.cycle and config.tp_percent != 0.0:
            changes["tp_percent"] = 0.0
        if "wavetrend" in self.indicators:
            n1, n2 = config.wavetrend_n1, config.wavetrend_n2
            if n1 > n2:
                changes["wavetrend_n1"], changes["wavetrend_n2"] = n2, n1
            elif n1 == n2:
                larger = [value for value in C.WAVETREND_N2_CHOICES if value > n2]
                changes["wavetrend_n2"] = larger[0] if larger else n2 + 1
        if not changes:
            return config
        return replace(config, **changes)


CLASSIC = ComboFamily(
    name="classic",
    indicators=C.CLASSIC_INDICATORS,
    pool=C.CLASSIC_INDICATORS,
    fields=COMMON_FIELDS + CLASSIC_FIELDS,
)

ADVANCED = ComboFamily(
    name="advanced",
    indicators=C.ADVANCED_INDICATORS,
    pool=C.ADVANCED_INDICATORS + C.ADVANCED_EXTRA_INDICATORS,
    fields=COMMON_FIELDS + ADVANCED_FIELDS,
)

FAMILIES: Dict[str, ComboFamily] = {CLASSIC.name: CLASSIC, ADVANCED.name: ADVANCED}


def get_family(name: str) -> ComboFamily:
    key = str(name or "classic").strip().lower()
    if key not in FAMILIES:
        raise ValueError(f"Unsupported combo family: {name}")
    return FAMILIES[key]


def family_for_config(config: StrategyConfig) -> ComboFamily:
    """Resolve the family of *config*, restricted to its indicators when they form a subset."""

    family = get_family(config.family)
    indicators = tuple(config.indicators)
    if indicators and indicators != family.indicators and all(name in family.pool for name in indicators):
        return family.restrict(indicators)
    return family


def random_configuration(
    base: StrategyConfig,
    family: ComboFamily,
    rng: Optional[np.random.Generator] = None,
) -> StrategyConfig:
    """Resample every applicable field of *base* uniformly from its candidate set."""

    rng = rng or np.random.default_rng()
    config = family.normalize(base)
    changes = {spec.name: spec.sample(rng) for spec in family.applicable_fields(config)}
    if not config.cycle:
        changes["tp_percent"] = 0.0
    return family.normalize(replace(config, **changes))


def parameter_lines(config: StrategyConfig) -> List[str]:
    """Human-readable per-indicator parameter lines for logs and summaries."""

    lines: List[str] = []
    included = set(config.indicators)
    if "rsi" in included:
        lines.append(f"RSI: period={config.rsi_period}, oversold={config.rsi_oversold:.0f}")
    if "macd" in included:
        lines.append(f"MACD: fast={config.macd_fast}, slow={config.macd_slow}, signal={config.macd_signal}")
    if "bb" in included:
        lines.append(f"BB: period={config.bb_period}, stddev={config.bb_std_dev:.1f}")
    if "ema" in included:
        lines.append(f"EMA: period={config.ema_period}")
    if "hullma" in included:
        lines.append(f"HullMA: period={config.hullma_period}")
    if "supertrend" in included:
        lines.append(
            f"SuperTrend: period={config.supertrend_period}, multiplier={config.supertrend_multiplier:.1f}"
        )
    if "mfi" in included:
        lines.append(
            f"MFI: period={config.mfi_period}, oversold={config.mfi_oversold:.0f}, "
            f"overbought={config.mfi_overbought:.0f}"
        )
    if "keltner" in included:
        lines.append(f"Keltner: period={config.keltner_period}, multiplier={config.keltner_multiplier:.1f}")
    if "wavetrend" in included:
        lines.append(
            f"WaveTrend: n1={config.wavetrend_n1}, n2={config.wavetrend_n2}, "
            f"overbought={config.wavetrend_overbought:.0f}, oversold={config.wavetrend_oversold:.0f}"
        )
    if "obv" in included:
        lines.append(f"OBV: trend_threshold={config.obv_trend_threshold:.3f}")
    if "stochrsi" in included:
        lines.append(
            f"StochRSI: period={config.stochrsi_period}, overbought={config.stochrsi_overbought:.0f}, "
            f"oversold={config.stochrsi_oversold:.0f}"
        )
    return lines


__all__ = [
    "FieldSpec",
    "ComboFamily",
    "CLASSIC",
    "ADVANCED",
    "FAMILIES",
    "get_family",
    "family_for_config",
    "random_configuration",
    "parameter_lines",
]
