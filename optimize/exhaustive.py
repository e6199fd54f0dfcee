"""Exhaustive indicator-combination search built on the reduced GA."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

import numpy as np
import pandas as pd

from . import constants as C
from .common import StrategyConfig
from .genetic import REDUCED_GA_PARAMS, GAParams, OptimizationResult, run_genetic_optimization
from .search_spaces import ComboFamily, parameter_lines
from .state import SimulationResult

LOGGER = logging.getLogger(__name__)


@dataclass
class ComboOutcome:
    indicators: List[str]
    fitness: float
    config: StrategyConfig


@dataclass
class ExhaustiveResult:
    config: StrategyConfig
    result: SimulationResult
    fitness: float
    outcomes: List[ComboOutcome] = field(default_factory=list)


def generate_combinations(names: Sequence[str]) -> List[List[str]]:
    """Every subset of *names* with at least two members, in ascending bitmask order."""

    items = list(names)
    combinations: List[List[str]] = []
    for mask in range(3, 1 << len(items)):
        if bin(mask).count("1") < 2:
            continue
        combinations.append([items[bit] for bit in range(len(items)) if mask & (1 << bit)])
    return combinations


@contextmanager
def _run_log(log_path: Optional[Path]) -> Iterator[None]:
    """Mirror this module's log lines into *log_path* for the duration of the search."""

    if log_path is None:
        yield
        return
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(message)s"))
    previous_level = LOGGER.level
    if LOGGER.getEffectiveLevel() > logging.INFO:
        LOGGER.setLevel(logging.INFO)
    LOGGER.addHandler(handler)
    try:
        yield
    finally:
        LOGGER.removeHandler(handler)
        LOGGER.setLevel(previous_level)
        handler.close()


def _log_config(config: StrategyConfig, indent: str) -> None:
    LOGGER.info(
        "%sConfig: base=$%.0f, maxMult=%.1f, tp=%.1f%%, threshold=%.1f%%",
        indent,
        config.base_amount,
        config.max_multiplier,
        config.tp_percent * 100,
        config.price_threshold * 100,
    )
    for line in parameter_lines(config):
        LOGGER.info("%s%s", indent, line)


def optimize_exhaustive(
    base: StrategyConfig,
    series: pd.DataFrame,
    *,
    rng: np.random.Generator,
    family: ComboFamily,
    log_path: Optional[Path] = None,
    params: GAParams = REDUCED_GA_PARAMS,
    window_size: Optional[int] = None,
) -> ExhaustiveResult:
    """Run a reduced GA for every indicator subset (size >= 2) and keep the global best.

    조합마다 지표 구성은 고정되며 GA 는 수치 파라미터만 탐색합니다. 동률이면 먼저
    발견된 조합이 유지됩니다.
    """

    combinations = generate_combinations(family.pool)
    if not combinations:
        raise ValueError(f"'{family.name}' 패밀리는 2개 이상의 지표 조합을 만들 수 없습니다.")

    outcomes: List[ComboOutcome] = []
    best_fitness = C.EXHAUSTIVE_INITIAL_BEST
    best_run: Optional[OptimizationResult] = None

    with _run_log(log_path):
        LOGGER.info("Starting Exhaustive Combination Testing")
        LOGGER.info("Testing %d combinations (2+ indicators) with reduced GA", len(combinations))
        LOGGER.info("Symbol: %s, Interval: %s", base.symbol or "-", base.interval or "-")
        LOGGER.info("Data points: %d", len(series))
        LOGGER.info("Timestamp: %s", datetime.now().strftime("%Y-%m-%d %H:%M:%S"))
        LOGGER.info("=" * 60)

        for position, combo in enumerate(combinations, start=1):
            LOGGER.info("")
            LOGGER.info("[%d/%d] Testing: %s", position, len(combinations), "+".join(combo))
            combo_family = family.restrict(combo)
            combo_base = replace(base, indicators=tuple(combo), family=family.name)
            run = run_genetic_optimization(
                combo_base,
                series,
                rng=rng,
                family=combo_family,
                params=params,
                window_size=window_size,
            )
            outcomes.append(ComboOutcome(indicators=list(combo), fitness=run.fitness, config=run.config))
            LOGGER.info("         Result: %.2f%% return", run.fitness * 100)
            _log_config(run.config, "         ")

            if run.fitness > best_fitness:
                best_fitness = run.fitness
                best_run = run
                LOGGER.info("         NEW BEST! (%.2f%%)", run.fitness * 100)

        LOGGER.info("")
        LOGGER.info("=" * 60)
        if best_run is None:
            LOGGER.warning("No combination improved on the initial best")
            return ExhaustiveResult(
                config=base,
                result=SimulationResult(start_balance=base.initial_balance, end_balance=base.initial_balance),
                fitness=best_fitness,
                outcomes=outcomes,
            )
        LOGGER.info("Exhaustive optimization completed!")
        LOGGER.info(
            "Best combination: %s (%.2f%% return)",
            "+".join(best_run.config.indicators),
            best_fitness * 100,
        )
        LOGGER.info("Best config details:")
        _log_config(best_run.config, "  ")

    return ExhaustiveResult(
        config=best_run.config,
        result=best_run.result,
        fitness=best_run.fitness,
        outcomes=outcomes,
    )


__all__ = ["ComboOutcome", "ExhaustiveResult", "generate_combinations", "optimize_exhaustive"]
