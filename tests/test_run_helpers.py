import json
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from optimize.common import config_from_mapping
from optimize.genetic import OptimizationResult
from optimize.main_loop import build_config, execute, resolve_output_dir
from optimize.run import parse_args
from optimize.state import SimulationResult


def _write_candles(path: Path, periods: int = 200) -> Path:
    index = pd.date_range("2024-01-01", periods=periods, freq="1h", tz="UTC")
    rng = np.random.default_rng(8)
    close = 100.0 * np.exp(np.cumsum(rng.normal(0.0, 0.01, periods)))
    pd.DataFrame(
        {
            "timestamp": index.strftime("%Y-%m-%d %H:%M:%S"),
            "open": close,
            "high": close * 1.005,
            "low": close * 0.995,
            "close": close,
            "volume": 10.0,
        }
    ).to_csv(path, index=False)
    return path


def test_parse_args_defaults():
    args = parse_args([])
    assert args.optimize is False
    assert args.exhaustive is False
    assert args.cycle is None
    assert args.wf_split_ratio == pytest.approx(0.7)
    assert (args.wf_train_days, args.wf_test_days, args.wf_roll_days) == (180, 60, 30)
    assert args.all_intervals is False and args.console_only is False
    assert args.data_root == Path("data")


def test_parse_args_overrides():
    args = parse_args(
        [
            "--optimize",
            "--advanced-combo",
            "--no-cycle",
            "--max-multiplier",
            "2.5",
            "--wf-enable",
            "--wf-rolling",
            "--period",
            "30d",
        ]
    )
    assert args.optimize is True
    assert args.advanced_combo is True
    assert args.cycle is False
    assert args.max_multiplier == pytest.approx(2.5)
    assert args.wf_enable is True and args.wf_rolling is True
    assert args.period == "30d"


def test_build_config_merges_yaml_and_flags(tmp_path):
    yaml_path = tmp_path / "config.yaml"
    yaml_path.write_text("strategy:\n  base_amount: 25\n  max_multiplier: 2.0\n", encoding="utf-8")
    data = tmp_path / "bybit" / "BTCUSDT" / "5m" / "candles.csv"
    args = parse_args(
        ["--config", str(yaml_path), "--data", str(data), "--max-multiplier", "3.5", "--advanced-combo", "--no-cycle"]
    )
    config = build_config(args)
    assert config.base_amount == 25.0
    assert config.max_multiplier == 3.5
    assert config.family == "advanced"
    assert config.indicators == ("hullma", "mfi", "keltner", "wavetrend")
    assert config.cycle is False and config.tp_percent == 0.0
    assert (config.symbol, config.interval) == ("BTCUSDT", "5m")
    assert resolve_output_dir(args, config) == Path("results") / "BTCUSDT_5m"


def test_execute_backtest_writes_reports(tmp_path):
    data = _write_candles(tmp_path / "candles.csv")
    out = tmp_path / "out"
    args = parse_args(["--data", str(data), "--output", str(out), "--window", "30", "--symbol", "BTCUSDT"])

    payload = execute(args)

    assert payload["mode"] == "backtest"
    for name in ("best.json", "trades.csv", "cycles.csv", "run.log"):
        assert (out / name).exists()
    saved = json.loads((out / "best.json").read_text(encoding="utf-8"))
    assert set(saved) >= {"strategy", "risk", "metrics"}
    assert config_from_mapping(saved) == payload["config"]


def test_execute_optimize_with_walk_forward(tmp_path, monkeypatch):
    data = _write_candles(tmp_path / "candles.csv")
    out = tmp_path / "out"

    def fake_ga(base, series, *, rng, family, params, window_size=None):
        return OptimizationResult(
            config=base.with_values(rsi_period=21),
            result=SimulationResult(total_return=0.1, start_balance=500.0, end_balance=550.0),
            fitness=0.1,
        )

    monkeypatch.setattr("optimize.main_loop.run_genetic_optimization", fake_ga)
    monkeypatch.setattr("optimize.wf.run_genetic_optimization", fake_ga)
    args = parse_args(
        ["--data", str(data), "--output", str(out), "--window", "30", "--optimize", "--wf-enable", "--seed", "1"]
    )

    payload = execute(args)

    assert payload["mode"] == "optimize"
    assert payload["config"].rsi_period == 21
    summary = payload["walk_forward"]
    assert summary is not None and summary.mode == "holdout"
    assert (out / "walk_forward_folds.csv").exists()
    assert json.loads((out / "walk_forward_summary.json").read_text())["folds"] == 1


def test_execute_missing_data_exits(tmp_path):
    args = parse_args(["--data", str(tmp_path / "nope.csv"), "--output", str(tmp_path / "out")])
    with pytest.raises(SystemExit) as excinfo:
        execute(args)
    assert excinfo.value.code == 1


def test_execute_invalid_config_exits(tmp_path):
    data = _write_candles(tmp_path / "candles.csv")
    args = parse_args(["--data", str(data), "--max-multiplier", "0.5"])
    with pytest.raises(SystemExit):
        execute(args)


def test_execute_unknown_indicator_exits(tmp_path):
    data = _write_candles(tmp_path / "candles.csv")
    yaml_path = tmp_path / "config.yaml"
    yaml_path.write_text("strategy:\n  indicators: [rsi, sma]\n", encoding="utf-8")
    args = parse_args(["--config", str(yaml_path), "--data", str(data), "--output", str(tmp_path / "out")])
    with pytest.raises(SystemExit) as excinfo:
        execute(args)
    assert excinfo.value.code == 1


def test_execute_console_only_writes_nothing(tmp_path):
    data = _write_candles(tmp_path / "candles.csv")
    out = tmp_path / "out"
    args = parse_args(["--data", str(data), "--output", str(out), "--window", "30", "--console-only"])

    payload = execute(args)

    assert payload["files"] == {}
    assert payload["log_path"] is None
    assert not out.exists()


def test_execute_all_intervals_picks_best(tmp_path, monkeypatch):
    root = tmp_path / "data"
    for interval, periods in (("1h", 200), ("4h", 150), ("1d", 20)):
        folder = root / "bybit" / "linear" / "BTCUSDT" / interval
        folder.mkdir(parents=True)
        _write_candles(folder / "candles.csv", periods=periods)

    seen = []

    def fake_backtest(config, series, window_size=None):
        seen.append((config.interval, len(series)))
        total = 0.02 if config.interval == "4h" else 0.01
        return SimulationResult(total_return=total, start_balance=500.0, end_balance=500.0 * (1 + total))

    monkeypatch.setattr("optimize.main_loop.run_backtest", fake_backtest)
    out = tmp_path / "out"
    args = parse_args(
        ["--all-intervals", "--data-root", str(root), "--symbol", "BTCUSDT", "--window", "30", "--output", str(out)]
    )

    payload = execute(args)

    # the 1d file is shorter than the window and is skipped
    assert seen == [("1h", 200), ("4h", 150)]
    assert payload["best_interval"] == "4h"
    assert payload["config"].interval == "4h"
    assert [item.interval for item in payload["intervals"]] == ["1h", "4h"]
    comparison = pd.read_csv(out / "interval_comparison.csv")
    assert list(comparison["interval"]) == ["1h", "4h"]
    assert (out / "best.json").exists()


def test_execute_all_intervals_without_data_exits(tmp_path):
    (tmp_path / "data").mkdir()
    args = parse_args(["--all-intervals", "--data-root", str(tmp_path / "data"), "--symbol", "BTCUSDT"])
    with pytest.raises(SystemExit):
        execute(args)
