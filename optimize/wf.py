"""Walk-forward analysis utilities."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import numpy as np
import pandas as pd

from . import constants as C
from .common import StrategyConfig
from .genetic import GAParams, run_genetic_optimization
from .metrics import average, sample_std
from .search_spaces import ComboFamily
from .state import SimulationResult
from .strategy_model import run_backtest

LOGGER = logging.getLogger(__name__)

Optimizer = Callable[[StrategyConfig, pd.DataFrame], Tuple[SimulationResult, StrategyConfig]]
Backtester = Callable[[StrategyConfig, pd.DataFrame], SimulationResult]


@dataclass
class Fold:
    train: pd.DataFrame
    test: pd.DataFrame
    train_start: pd.Timestamp
    train_end: pd.Timestamp
    test_start: pd.Timestamp
    test_end: pd.Timestamp


@dataclass
class FoldResult:
    fold: int
    train_result: SimulationResult
    test_result: SimulationResult
    best_config: StrategyConfig
    train_start: Optional[pd.Timestamp] = None
    train_end: Optional[pd.Timestamp] = None
    test_start: Optional[pd.Timestamp] = None
    test_end: Optional[pd.Timestamp] = None


@dataclass
class WalkForwardSummary:
    """Aggregated out-of-sample statistics; returns and drawdowns are in percent."""

    mode: str
    results: List[FoldResult] = field(default_factory=list)
    avg_train_return: float = 0.0
    avg_test_return: float = 0.0
    std_train_return: float = 0.0
    std_test_return: float = 0.0
    avg_train_drawdown: float = 0.0
    avg_test_drawdown: float = 0.0
    std_train_drawdown: float = 0.0
    std_test_drawdown: float = 0.0
    return_degradation: float = 0.0
    is_robust: bool = False
    overfitting_risk: str = "LOW"


@dataclass(frozen=True)
class WalkForwardConfig:
    rolling: bool = False
    split_ratio: float = C.DEFAULT_WF_SPLIT_RATIO
    train_days: int = C.DEFAULT_WF_TRAIN_DAYS
    test_days: int = C.DEFAULT_WF_TEST_DAYS
    roll_days: int = C.DEFAULT_WF_ROLL_DAYS


# ---------------------------------------------------------------------------
# Splitting
# ---------------------------------------------------------------------------


def split_by_ratio(series: pd.DataFrame, ratio: float) -> Tuple[pd.DataFrame, Optional[pd.DataFrame]]:
    """Contiguous train prefix / test suffix; ``(series, None)`` when the cut is degenerate."""

    if not 0 < ratio < 1:
        return series, None
    cut = int(len(series) * ratio)
    if cut <= 0 or cut >= len(series):
        return series, None
    return series.iloc[:cut], series.iloc[cut:]


def _median_spacing(index: pd.DatetimeIndex) -> pd.Timedelta:
    if len(index) < 2:
        return pd.Timedelta(0)
    return pd.Series(index).diff().dropna().median()


def create_rolling_folds(
    series: pd.DataFrame,
    train_days: int,
    test_days: int,
    roll_days: int,
    *,
    min_observations: int = C.MIN_DATA_POINTS,
    min_train: int = C.MIN_TRAIN_POINTS,
    min_test: int = C.MIN_TEST_POINTS,
) -> List[Fold]:
    """Slide train/test windows (in days) across *series* from its first timestamp.

    윈도우 경계는 타임스탬프 이진 탐색으로 찾습니다. 중간 구간의 관측치가 부족한
    fold 는 경고 후 건너뛰고, 테스트 구간이 시리즈 끝에 닿거나 마지막 캔들을
    넘어서면 생성을 멈춥니다.

    A final test window cut short by the end of the series is never emitted,
    even when it still holds ``min_test`` rows; every fold covers a full
    ``test_days`` span.
    """

    total = len(series)
    if total < min_observations:
        return []
    if train_days <= 0 or test_days <= 0 or roll_days <= 0:
        raise ValueError("train, test and roll days must be positive")

    index = series.index
    train_span = pd.Timedelta(days=train_days)
    test_span = pd.Timedelta(days=test_days)
    roll_span = pd.Timedelta(days=roll_days)
    spacing = _median_spacing(index)

    folds: List[Fold] = []
    start = 0
    while start < total:
        start_ts = index[start]
        train_end = int(index.searchsorted(start_ts + train_span, side="left"))
        if train_end >= total:
            break
        test_end_ts = index[train_end] + test_span
        test_end = int(index.searchsorted(test_end_ts, side="left"))
        reaches_end = test_end >= total
        if reaches_end and index[-1] + spacing < test_end_ts:
            break

        train_rows = train_end - start
        test_rows = test_end - train_end
        if train_rows < min_train or test_rows < min_test:
            if reaches_end:
                break
            LOGGER.warning(
                "Skipping fold at %s: train=%d, test=%d observations",
                start_ts,
                train_rows,
                test_rows,
            )
        else:
            train = series.iloc[start:train_end]
            test = series.iloc[train_end:test_end]
            folds.append(
                Fold(
                    train=train,
                    test=test,
                    train_start=train.index[0],
                    train_end=train.index[-1],
                    test_start=test.index[0],
                    test_end=test.index[-1],
                )
            )

        following = int(index.searchsorted(start_ts + roll_span, side="left"))
        start = following if following > start else start + 1
    return folds


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


def degradation(train_return: float, test_return: float) -> float:
    return (train_return - test_return) / max(0.01, abs(train_return)) * 100


def classify_rolling(value: float) -> str:
    if value > 30:
        return "HIGH"
    if value > 15:
        return "MODERATE"
    return "LOW"


def classify_holdout(value: float) -> str:
    if value > 50:
        return "HIGH"
    if value > 20:
        return "MODERATE"
    if value < -10:
        return "ROBUST"
    return "GOOD"


def summarize(results: List[FoldResult], mode: str = "rolling") -> WalkForwardSummary:
    summary = WalkForwardSummary(mode=mode, results=list(results))
    if not results:
        return summary

    train_returns = [item.train_result.total_return * 100 for item in results]
    test_returns = [item.test_result.total_return * 100 for item in results]
    train_drawdowns = [item.train_result.max_drawdown * 100 for item in results]
    test_drawdowns = [item.test_result.max_drawdown * 100 for item in results]

    summary.avg_train_return = average(train_returns)
    summary.avg_test_return = average(test_returns)
    summary.std_train_return = sample_std(train_returns)
    summary.std_test_return = sample_std(test_returns)
    summary.avg_train_drawdown = average(train_drawdowns)
    summary.avg_test_drawdown = average(test_drawdowns)
    summary.std_train_drawdown = sample_std(train_drawdowns)
    summary.std_test_drawdown = sample_std(test_drawdowns)
    summary.return_degradation = degradation(summary.avg_train_return, summary.avg_test_return)
    summary.is_robust = summary.return_degradation <= 30
    classify = classify_holdout if mode == "holdout" else classify_rolling
    summary.overfitting_risk = classify(summary.return_degradation)
    return summary


# ---------------------------------------------------------------------------
# Validation drivers
# ---------------------------------------------------------------------------


def ga_optimizer(
    *,
    rng: np.random.Generator,
    family: ComboFamily,
    params: GAParams = GAParams(),
    window_size: Optional[int] = None,
) -> Optimizer:
    """Wrap the GA driver as a ``(base, train) -> (train_result, best_config)`` callable."""

    def _optimize(base: StrategyConfig, train: pd.DataFrame) -> Tuple[SimulationResult, StrategyConfig]:
        run = run_genetic_optimization(
            base,
            train,
            rng=rng,
            family=family,
            params=params,
            window_size=window_size,
        )
        return run.result, run.config

    return _optimize


def _default_backtester(window_size: Optional[int]) -> Backtester:
    def _backtest(config: StrategyConfig, test: pd.DataFrame) -> SimulationResult:
        return run_backtest(config, test, window_size)

    return _backtest


def _log_fold(number: int, total: int, fold: Fold) -> None:
    LOGGER.info(
        "Fold %d/%d: Train %s → %s, Test %s → %s",
        number,
        total,
        fold.train_start.strftime("%Y-%m-%d"),
        fold.train_end.strftime("%Y-%m-%d"),
        fold.test_start.strftime("%Y-%m-%d"),
        fold.test_end.strftime("%Y-%m-%d"),
    )


def validate_holdout(
    base: StrategyConfig,
    series: pd.DataFrame,
    split_ratio: float,
    optimizer: Optimizer,
    backtester: Backtester,
) -> Optional[WalkForwardSummary]:
    LOGGER.info("Mode: Simple Holdout")
    LOGGER.info("Split: %.0f%% train, %.0f%% test", split_ratio * 100, (1 - split_ratio) * 100)

    train, test = split_by_ratio(series, split_ratio)
    if test is None or len(test) < C.MIN_HOLDOUT_TEST_POINTS or train.empty:
        LOGGER.warning("Walk-forward validation skipped: not enough test data for validation")
        return None

    LOGGER.info("Train: %d candles (%s → %s)", len(train), train.index[0], train.index[-1])
    LOGGER.info("Test:  %d candles (%s → %s)", len(test), test.index[0], test.index[-1])

    train_result, best_config = optimizer(base, train)
    LOGGER.info("Testing optimized parameters on test data...")
    try:
        test_result = backtester(best_config, test)
    except Exception:
        LOGGER.exception("Test backtest failed; walk-forward validation skipped")
        return None
    fold = FoldResult(
        fold=1,
        train_result=train_result,
        test_result=test_result,
        best_config=best_config,
        train_start=train.index[0],
        train_end=train.index[-1],
        test_start=test.index[0],
        test_end=test.index[-1],
    )
    summary = summarize([fold], mode="holdout")
    LOGGER.info(
        "Train %.2f%% (dd %.2f%%) | Test %.2f%% (dd %.2f%%) | degradation %.1f%% → %s",
        summary.avg_train_return,
        summary.avg_train_drawdown,
        summary.avg_test_return,
        summary.avg_test_drawdown,
        summary.return_degradation,
        summary.overfitting_risk,
    )
    return summary


def validate_rolling(
    base: StrategyConfig,
    series: pd.DataFrame,
    wf_config: WalkForwardConfig,
    optimizer: Optimizer,
    backtester: Backtester,
    **fold_kwargs: int,
) -> Optional[WalkForwardSummary]:
    LOGGER.info("Mode: Rolling Walk-Forward")
    LOGGER.info(
        "Train: %d days, Test: %d days, Roll: %d days",
        wf_config.train_days,
        wf_config.test_days,
        wf_config.roll_days,
    )
    folds = create_rolling_folds(
        series,
        wf_config.train_days,
        wf_config.test_days,
        wf_config.roll_days,
        **fold_kwargs,
    )
    if not folds:
        LOGGER.warning("Walk-forward validation skipped: not enough data for rolling folds")
        return None
    LOGGER.info("Created %d folds", len(folds))

    results: List[FoldResult] = []
    for number, fold in enumerate(folds, start=1):
        _log_fold(number, len(folds), fold)
        train_result, best_config = optimizer(base, fold.train)
        try:
            test_result = backtester(best_config, fold.test)
        except Exception:
            LOGGER.exception("Test backtest failed for fold %d; skipping", number)
            continue
        results.append(
            FoldResult(
                fold=number,
                train_result=train_result,
                test_result=test_result,
                best_config=best_config,
                train_start=fold.train_start,
                train_end=fold.train_end,
                test_start=fold.test_start,
                test_end=fold.test_end,
            )
        )
        LOGGER.info(
            "  GA → %.2f%% | Test → %.2f%% | Drawdown: %.2f%%",
            train_result.total_return * 100,
            test_result.total_return * 100,
            test_result.max_drawdown * 100,
        )

    summary = summarize(results, mode="rolling")
    LOGGER.info("Average performance across %d folds:", len(results))
    LOGGER.info("  Train Return:    %.2f%% ± %.2f%%", summary.avg_train_return, summary.std_train_return)
    LOGGER.info("  Test Return:     %.2f%% ± %.2f%%", summary.avg_test_return, summary.std_test_return)
    LOGGER.info("  Train Drawdown:  %.2f%% ± %.2f%%", summary.avg_train_drawdown, summary.std_train_drawdown)
    LOGGER.info("  Test Drawdown:   %.2f%% ± %.2f%%", summary.avg_test_drawdown, summary.std_test_drawdown)
    LOGGER.info(
        "  Return Degradation: %.1f%% (%s overfitting risk)",
        summary.return_degradation,
        summary.overfitting_risk,
    )
    return summary


def run_walk_forward(
    base: StrategyConfig,
    series: pd.DataFrame,
    wf_config: WalkForwardConfig,
    *,
    rng: Optional[np.random.Generator] = None,
    family: Optional[ComboFamily] = None,
    params: GAParams = GAParams(),
    window_size: Optional[int] = None,
    optimizer: Optional[Optimizer] = None,
    backtester: Optional[Backtester] = None,
    **fold_kwargs: int,
) -> Optional[WalkForwardSummary]:
    """Holdout or rolling walk-forward validation; ``None`` when the data is too short."""

    LOGGER.info("Walk-Forward Validation Starting")
    if optimizer is None:
        if rng is None or family is None:
            raise ValueError("rng and family are required when no optimizer is supplied")
        optimizer = ga_optimizer(rng=rng, family=family, params=params, window_size=window_size)
    if backtester is None:
        backtester = _default_backtester(window_size)

    if wf_config.rolling:
        return validate_rolling(base, series, wf_config, optimizer, backtester, **fold_kwargs)
    return validate_holdout(base, series, wf_config.split_ratio, optimizer, backtester)


__all__ = [
    "Fold",
    "FoldResult",
    "WalkForwardConfig",
    "WalkForwardSummary",
    "classify_holdout",
    "classify_rolling",
    "create_rolling_folds",
    "degradation",
    "ga_optimizer",
    "run_walk_forward",
    "split_by_ratio",
    "summarize",
    "validate_holdout",
    "validate_rolling",
]
