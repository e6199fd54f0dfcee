"""
Reusable components for DCA backtesting and parameter search.

This module exposes a lightweight API on top of the ``optimize`` and
``datafeed`` packages. It provides:

* `load_candles` / `load_cached` - read a ``timestamp,open,high,low,close,volume``
  CSV into a UTC-indexed pandas `DataFrame` (the cached variant loads each
  file once per process).
* `filter_trailing` - keep only the most recent period (e.g. ``"30d"``).
* `run_backtest` - simulate one `StrategyConfig` on a candle frame.
* `optimize` - run the genetic optimizer for a combo family.
* `optimize_exhaustive` - run a reduced GA for every indicator combination.
* `walk_forward` - holdout or rolling walk-forward validation.

Other scripts or notebooks can `import module` and call these functions
directly instead of going through YAML files or the command-line interface.

Example:

    >>> from module import StrategyConfig, load_candles, optimize
    >>> candles = load_candles("data/bybit/BTCUSDT/5m/candles.csv")
    >>> best = optimize(StrategyConfig(symbol="BTCUSDT"), candles, seed=42)
    >>> print(best.fitness, best.config.indicators)
"""

from __future__ import annotations

from typing import Optional

import numpy as np
import pandas as pd

from datafeed.cache import filter_trailing, load_cached, load_candles
from optimize.common import StrategyConfig
from optimize.exhaustive import ExhaustiveResult, optimize_exhaustive
from optimize.genetic import GAParams, OptimizationResult, run_genetic_optimization
from optimize.search_spaces import family_for_config, get_family
from optimize.strategy_model import run_backtest
from optimize.wf import WalkForwardConfig, WalkForwardSummary, run_walk_forward


def optimize(
    base: StrategyConfig,
    candles: pd.DataFrame,
    *,
    seed: Optional[int] = None,
    params: GAParams = GAParams(),
) -> OptimizationResult:
    """Run the genetic optimizer over the family implied by ``base``.

    Args:
        base: Starting configuration; its ``family`` and ``indicators`` select
            the search space and its risk fields stay fixed.
        candles: Frame returned by :func:`load_candles`.
        seed: Seed for the run's random generator; ``None`` draws fresh entropy.
        params: Population/generation budget and worker settings.

    Returns:
        The best configuration found together with its backtest result.
    """

    return run_genetic_optimization(
        base,
        candles,
        rng=np.random.default_rng(seed),
        family=family_for_config(base),
        params=params,
    )


def exhaustive(
    base: StrategyConfig,
    candles: pd.DataFrame,
    *,
    seed: Optional[int] = None,
) -> ExhaustiveResult:
    """Test every indicator combination of ``base.family`` with the reduced GA."""

    return optimize_exhaustive(
        base,
        candles,
        rng=np.random.default_rng(seed),
        family=get_family(base.family),
    )


def walk_forward(
    base: StrategyConfig,
    candles: pd.DataFrame,
    wf_config: WalkForwardConfig = WalkForwardConfig(),
    *,
    seed: Optional[int] = None,
    params: GAParams = GAParams(),
) -> Optional[WalkForwardSummary]:
    """Validate the optimizer out-of-sample; ``None`` when the data is too short."""

    return run_walk_forward(
        base,
        candles,
        wf_config,
        rng=np.random.default_rng(seed),
        family=family_for_config(base),
        params=params,
    )


__all__ = [
    "StrategyConfig",
    "WalkForwardConfig",
    "exhaustive",
    "filter_trailing",
    "load_cached",
    "load_candles",
    "optimize",
    "optimize_exhaustive",
    "run_backtest",
    "walk_forward",
]
