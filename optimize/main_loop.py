"""Command line interface for running parameter optimisation."""
from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from datafeed.cache import discover_interval_files, filter_trailing, load_cached
from optimize.common import (
    StrategyConfig,
    config_from_mapping,
    guess_interval,
    guess_symbol,
    load_yaml,
    validate_config,
)
from optimize.constants import (
    DEFAULT_DATA_ROOT,
    DEFAULT_OUTPUT_ROOT,
    EXHAUSTIVE_LOG_NAME,
    INTERVAL_COMPARISON_NAME,
    MAX_PARALLEL_WORKERS,
)
from optimize.exhaustive import optimize_exhaustive
from optimize.genetic import GAParams, REDUCED_GA_PARAMS, run_genetic_optimization
from optimize.report import (
    IntervalOutcome,
    best_interval,
    export_interval_comparison,
    format_interval_comparison,
    format_summary,
    generate_reports,
)
from optimize.search_spaces import family_for_config, get_family
from optimize.state import SimulationResult
from optimize.strategy_model import run_backtest
from optimize.wf import WalkForwardConfig, WalkForwardSummary, run_walk_forward

LOGGER = logging.getLogger("optimize")

logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")

# CLI 플래그 → StrategyConfig 필드
_OVERRIDE_FIELDS: Dict[str, str] = {
    "symbol": "symbol",
    "interval": "interval",
    "initial_balance": "initial_balance",
    "commission": "commission",
    "window": "window_size",
    "base_amount": "base_amount",
    "max_multiplier": "max_multiplier",
    "price_threshold": "price_threshold",
    "tp_percent": "tp_percent",
    "min_order_qty": "min_order_qty",
    "cycle": "cycle",
}


def _configure_logging(log_dir: Path) -> Path:
    log_dir.mkdir(parents=True, exist_ok=True)
    target = log_dir / "run.log"

    for handler in list(LOGGER.handlers):
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == target.resolve():
            LOGGER.removeHandler(handler)
            handler.close()

    handler = logging.FileHandler(target, mode="w", encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    LOGGER.addHandler(handler)
    return target


def _fail(message: str, *values: object) -> None:
    LOGGER.error(message, *values)
    raise SystemExit(1)


def build_config(args: argparse.Namespace) -> StrategyConfig:
    """Defaults, then the YAML file, then explicit CLI flags."""

    config_path = getattr(args, "config", None)
    if config_path is not None and not Path(config_path).exists():
        _fail("설정 파일을 찾을 수 없습니다: %s", config_path)
    config = config_from_mapping(load_yaml(Path(config_path)) if config_path else {})

    overrides = {
        field: getattr(args, flag)
        for flag, field in _OVERRIDE_FIELDS.items()
        if getattr(args, flag, None) is not None
    }
    config = config_from_mapping(overrides, base=config)

    data_path = getattr(args, "data", None)
    if data_path is not None:
        if not config.symbol:
            config = replace(config, symbol=guess_symbol(Path(data_path)))
        if not config.interval:
            config = replace(config, interval=guess_interval(Path(data_path)))

    if getattr(args, "advanced_combo", False):
        family = get_family("advanced")
        config = replace(config, family=family.name, indicators=family.indicators)
    if not config.cycle:
        config = replace(config, tp_percent=0.0)
    return config


def resolve_output_dir(args: argparse.Namespace, config: StrategyConfig) -> Path:
    output = getattr(args, "output", None)
    if output:
        return Path(output)
    symbol = (config.symbol or "UNKNOWN").upper()
    interval = config.interval or "na"
    return DEFAULT_OUTPUT_ROOT / f"{symbol}_{interval}"


def _prepare_series(data_path: Path, period: Optional[str], window_size: int) -> pd.DataFrame:
    """Cached candles for *data_path*, trimmed to *period*; raises on unusable data."""

    series = load_cached(data_path)
    if period:
        series = filter_trailing(series, period)
        LOGGER.info("Using trailing %s: %d candles", period, len(series))
    if series.empty:
        raise ValueError(f"사용 가능한 캔들이 없습니다: {data_path}")
    if len(series) <= window_size:
        raise ValueError(f"캔들 수({len(series)})가 윈도우 크기({window_size})보다 작거나 같습니다.")
    return series


def load_series(args: argparse.Namespace, window_size: int) -> pd.DataFrame:
    data_path = getattr(args, "data", None)
    if data_path is None:
        _fail("--data 로 캔들 CSV 경로를 지정해야 합니다.")
    try:
        return _prepare_series(Path(data_path), getattr(args, "period", None), window_size)
    except (FileNotFoundError, ValueError) as exc:
        _fail("데이터 로드 실패: %s", exc)


def _ga_params(args: argparse.Namespace, base: GAParams) -> GAParams:
    workers = getattr(args, "workers", None)
    executor = getattr(args, "executor", None)
    return replace(
        base,
        max_workers=int(workers) if workers else MAX_PARALLEL_WORKERS,
        executor=executor or "thread",
    )


def _mode_name(args: argparse.Namespace) -> str:
    if getattr(args, "exhaustive", False):
        return "exhaustive"
    if getattr(args, "optimize", False):
        return "optimize"
    return "backtest"


def _run_search(
    args: argparse.Namespace,
    config: StrategyConfig,
    series: pd.DataFrame,
    rng: np.random.Generator,
    exhaustive_log: Optional[Path],
) -> Tuple[StrategyConfig, SimulationResult]:
    """Plain backtest, GA or exhaustive search depending on the CLI mode."""

    mode = _mode_name(args)
    if mode == "exhaustive":
        outcome = optimize_exhaustive(
            config,
            series,
            rng=rng,
            family=get_family(config.family),
            log_path=exhaustive_log,
            params=_ga_params(args, REDUCED_GA_PARAMS),
        )
        return outcome.config, outcome.result
    if mode == "optimize":
        family = family_for_config(config)
        LOGGER.info("Starting genetic optimization (%s family)", family.name)
        outcome = run_genetic_optimization(
            config,
            series,
            rng=rng,
            family=family,
            params=_ga_params(args, GAParams()),
        )
        return outcome.config, outcome.result
    return config, run_backtest(config, series)


def _walk_forward(
    args: argparse.Namespace,
    config: StrategyConfig,
    series: pd.DataFrame,
    rng: np.random.Generator,
) -> Optional[WalkForwardSummary]:
    if not getattr(args, "wf_enable", False):
        return None
    if _mode_name(args) == "backtest":
        LOGGER.warning("Walk-forward validation requires --optimize or --exhaustive; skipping")
        return None
    wf_config = WalkForwardConfig(
        rolling=bool(getattr(args, "wf_rolling", False)),
        split_ratio=float(getattr(args, "wf_split_ratio", WalkForwardConfig.split_ratio)),
        train_days=int(getattr(args, "wf_train_days", WalkForwardConfig.train_days)),
        test_days=int(getattr(args, "wf_test_days", WalkForwardConfig.test_days)),
        roll_days=int(getattr(args, "wf_roll_days", WalkForwardConfig.roll_days)),
    )
    return run_walk_forward(
        config,
        series,
        wf_config,
        rng=rng,
        family=family_for_config(config),
        params=_ga_params(args, GAParams()),
    )


def _validated_config(args: argparse.Namespace) -> StrategyConfig:
    config = build_config(args)
    try:
        validate_config(config)
    except ValueError as exc:
        _fail("설정 검증 실패: %s", exc)
    return config


def execute(args: argparse.Namespace, argv: Optional[Sequence[str]] = None) -> Dict[str, object]:
    """Run one backtest / GA / exhaustive search based on CLI arguments."""

    if getattr(args, "all_intervals", False):
        return execute_all_intervals(args, argv)

    config = _validated_config(args)
    series = load_series(args, config.window_size)
    output_dir = resolve_output_dir(args, config)
    console_only = bool(getattr(args, "console_only", False))
    log_path = None if console_only else _configure_logging(output_dir)
    if argv:
        LOGGER.info("Arguments: %s", " ".join(argv))
    LOGGER.info(
        "Symbol=%s Interval=%s Candles=%d (%s → %s)",
        config.symbol or "-",
        config.interval or "-",
        len(series),
        series.index[0],
        series.index[-1],
    )

    rng = np.random.default_rng(getattr(args, "seed", None))
    mode = _mode_name(args)
    exhaustive_log = None if console_only else output_dir / EXHAUSTIVE_LOG_NAME
    config, result = _run_search(args, config, series, rng, exhaustive_log)
    wf_summary = _walk_forward(args, config, series, rng)

    for line in format_summary(result, config).splitlines():
        LOGGER.info(line)

    written: Dict[str, Path] = {}
    if console_only:
        LOGGER.info("Console-only mode: skipping file output")
    else:
        written = generate_reports(config, result, output_dir, wf_summary=wf_summary)
        LOGGER.info("Results saved to %s", output_dir)
    return {
        "mode": mode,
        "config": config,
        "result": result,
        "walk_forward": wf_summary,
        "output_dir": output_dir,
        "log_path": log_path,
        "files": written,
    }


def execute_all_intervals(args: argparse.Namespace, argv: Optional[Sequence[str]] = None) -> Dict[str, object]:
    """Run the selected mode on every interval stored for the symbol and keep the best one.

    ``<data-root>/<EXCHANGE>/[<CATEGORY>/]<SYMBOL>/<INTERVAL>/candles.csv`` 파일을
    인터벌별로 실행하고 총수익률이 가장 높은 인터벌의 결과만 저장합니다.
    사용할 수 없는 인터벌 데이터는 경고 후 건너뜁니다.
    """

    config = _validated_config(args)
    symbol = (config.symbol or "").upper()
    if not symbol:
        _fail("--all-intervals 모드에서는 --symbol 을 지정해야 합니다.")
    data_root = Path(getattr(args, "data_root", None) or DEFAULT_DATA_ROOT)
    try:
        files = discover_interval_files(data_root, symbol)
    except FileNotFoundError as exc:
        _fail("데이터 루트를 찾을 수 없습니다: %s", exc)
    if not files:
        _fail("%s 아래에서 %s 캔들 데이터를 찾을 수 없습니다.", data_root, symbol)

    output_dir = resolve_output_dir(args, replace(config, symbol=symbol, interval="all"))
    console_only = bool(getattr(args, "console_only", False))
    log_path = None if console_only else _configure_logging(output_dir)
    if argv:
        LOGGER.info("Arguments: %s", " ".join(argv))
    LOGGER.info("Found %d intervals for %s: %s", len(files), symbol, ", ".join(files))

    rng = np.random.default_rng(getattr(args, "seed", None))
    period = getattr(args, "period", None)
    outcomes: List[IntervalOutcome] = []
    series_by_interval: Dict[str, pd.DataFrame] = {}
    for interval, data_path in files.items():
        LOGGER.info("===== Interval %s (%s) =====", interval, data_path)
        try:
            series = _prepare_series(data_path, period, config.window_size)
        except (FileNotFoundError, ValueError) as exc:
            LOGGER.warning("Skipping interval %s: %s", interval, exc)
            continue
        interval_config = replace(config, symbol=symbol, interval=interval)
        exhaustive_log = None if console_only else output_dir / f"{interval}_{EXHAUSTIVE_LOG_NAME}"
        best_config, result = _run_search(args, interval_config, series, rng, exhaustive_log)
        LOGGER.info("Interval %s: %.2f%% return", interval, result.total_return * 100)
        outcomes.append(IntervalOutcome(interval=interval, data_path=data_path, config=best_config, result=result))
        series_by_interval[interval] = series

    if not outcomes:
        _fail("%s 의 어떤 인터벌 데이터도 실행할 수 없습니다.", symbol)

    for line in format_interval_comparison(outcomes, symbol).splitlines():
        LOGGER.info(line)
    best = best_interval(outcomes)
    wf_summary = _walk_forward(args, best.config, series_by_interval[best.interval], rng)

    LOGGER.info("Best interval detailed results:")
    for line in format_summary(best.result, best.config).splitlines():
        LOGGER.info(line)

    written: Dict[str, Path] = {}
    if console_only:
        LOGGER.info("Console-only mode: skipping file output for interval analysis")
    else:
        written = generate_reports(best.config, best.result, output_dir, wf_summary=wf_summary)
        written["intervals"] = export_interval_comparison(outcomes, output_dir / INTERVAL_COMPARISON_NAME)
        LOGGER.info("Results saved to %s", output_dir)
    return {
        "mode": _mode_name(args),
        "config": best.config,
        "result": best.result,
        "walk_forward": wf_summary,
        "output_dir": output_dir,
        "log_path": log_path,
        "files": written,
        "intervals": outcomes,
        "best_interval": best.interval,
    }


__all__ = ["build_config", "execute", "execute_all_intervals", "load_series", "resolve_output_dir"]
