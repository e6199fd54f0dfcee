"""Report generation utilities for optimisation runs."""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import pandas as pd  # noqa: E402

from .common import StrategyConfig  # noqa: E402
from .search_spaces import parameter_lines  # noqa: E402
from .state import SimulationResult  # noqa: E402
from .wf import WalkForwardSummary  # noqa: E402

LOGGER = logging.getLogger(__name__)

_RISK_KEYS = ("initial_balance", "commission", "min_order_qty")
_NESTED_BLOCKS: Dict[str, Dict[str, str]] = {
    "rsi": {"rsi_period": "period", "rsi_oversold": "oversold", "rsi_overbought": "overbought"},
    "macd": {"macd_fast": "fast_period", "macd_slow": "slow_period", "macd_signal": "signal_period"},
    "bollinger_bands": {"bb_period": "period", "bb_std_dev": "std_dev"},
    "ema": {"ema_period": "period"},
}


def _ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def _json_number(value: float) -> Optional[float]:
    """JSON 은 inf/NaN 을 표현하지 못하므로 ``None`` 으로 기록합니다."""

    value = float(value)
    return value if math.isfinite(value) else None


def nested_config(config: StrategyConfig) -> Dict[str, object]:
    """``strategy``/``risk`` layout that :func:`optimize.common.config_from_mapping` reads back."""

    flat = config.to_dict()
    risk = {key: flat.pop(key) for key in _RISK_KEYS}
    strategy: Dict[str, object] = {}
    nested_fields = {field for block in _NESTED_BLOCKS.values() for field in block}
    for key, value in flat.items():
        if key not in nested_fields:
            strategy[key] = value
    for block, mapping in _NESTED_BLOCKS.items():
        strategy[block] = {target: flat[source] for source, target in mapping.items()}
    return {"strategy": strategy, "risk": risk}


def write_best_config(
    config: StrategyConfig,
    path: Path,
    result: Optional[SimulationResult] = None,
) -> Path:
    _ensure_dir(path.parent)
    payload = nested_config(config)
    if result is not None:
        payload["metrics"] = {key: _json_number(value) for key, value in result.metrics().items()}
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    LOGGER.info("Best config saved to %s", path)
    return path


def trades_frame(result: SimulationResult) -> pd.DataFrame:
    columns = ["cycle", "entry_time", "entry_price", "quantity", "commission", "exit_time", "exit_price", "pnl"]
    rows = [
        {
            "cycle": trade.cycle,
            "entry_time": trade.entry_time,
            "entry_price": trade.entry_price,
            "quantity": trade.quantity,
            "commission": trade.commission,
            "exit_time": trade.exit_time,
            "exit_price": trade.exit_price,
            "pnl": trade.pnl,
        }
        for trade in result.trades
    ]
    return pd.DataFrame(rows, columns=columns)


def export_trades(result: SimulationResult, path: Path) -> Path:
    _ensure_dir(path.parent)
    trades_frame(result).to_csv(path, index=False)
    return path


def export_cycles(result: SimulationResult, path: Path) -> Path:
    _ensure_dir(path.parent)
    columns = [
        "cycle_number",
        "start_time",
        "end_time",
        "entries",
        "avg_entry",
        "target_price",
        "realized_pnl",
        "total_cost",
        "total_commission",
        "completed",
    ]
    rows = [{column: getattr(cycle, column) for column in columns} for cycle in result.cycles]
    pd.DataFrame(rows, columns=columns).to_csv(path, index=False)
    return path


def walk_forward_frame(summary: WalkForwardSummary) -> pd.DataFrame:
    rows: List[Dict[str, object]] = []
    for item in summary.results:
        rows.append(
            {
                "fold": item.fold,
                "train_start": item.train_start,
                "train_end": item.train_end,
                "test_start": item.test_start,
                "test_end": item.test_end,
                "train_return_pct": item.train_result.total_return * 100,
                "test_return_pct": item.test_result.total_return * 100,
                "train_drawdown_pct": item.train_result.max_drawdown * 100,
                "test_drawdown_pct": item.test_result.max_drawdown * 100,
                "test_trades": item.test_result.total_trades,
                "indicators": "+".join(item.best_config.indicators),
            }
        )
    return pd.DataFrame(rows)


def export_walk_forward(summary: WalkForwardSummary, output_dir: Path) -> Dict[str, Path]:
    """Per-fold CSV plus a JSON summary."""

    _ensure_dir(output_dir)
    csv_path = output_dir / "walk_forward_folds.csv"
    walk_forward_frame(summary).to_csv(csv_path, index=False)

    payload = {
        "mode": summary.mode,
        "folds": len(summary.results),
        "avg_train_return": summary.avg_train_return,
        "avg_test_return": summary.avg_test_return,
        "std_train_return": summary.std_train_return,
        "std_test_return": summary.std_test_return,
        "avg_train_drawdown": summary.avg_train_drawdown,
        "avg_test_drawdown": summary.avg_test_drawdown,
        "std_train_drawdown": summary.std_train_drawdown,
        "std_test_drawdown": summary.std_test_drawdown,
        "return_degradation": summary.return_degradation,
        "is_robust": summary.is_robust,
        "overfitting_risk": summary.overfitting_risk,
    }
    json_path = output_dir / "walk_forward_summary.json"
    json_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return {"folds": csv_path, "summary": json_path}


@dataclass
class IntervalOutcome:
    """Best configuration and result found for one candle interval."""

    interval: str
    data_path: Path
    config: StrategyConfig
    result: SimulationResult


def best_interval(outcomes: Sequence[IntervalOutcome]) -> IntervalOutcome:
    """Highest total return; the first interval wins ties."""

    if not outcomes:
        raise ValueError("no interval outcomes to compare")
    best = outcomes[0]
    for outcome in outcomes[1:]:
        if outcome.result.total_return > best.result.total_return:
            best = outcome
    return best


def interval_comparison_frame(outcomes: Sequence[IntervalOutcome]) -> pd.DataFrame:
    rows = [
        {
            "interval": item.interval,
            "return_pct": item.result.total_return * 100,
            "max_drawdown_pct": item.result.max_drawdown * 100,
            "trades": item.result.total_trades,
            "base_amount": item.config.base_amount,
            "max_multiplier": item.config.max_multiplier,
            "tp_pct": item.config.tp_percent * 100,
            "threshold_pct": item.config.price_threshold * 100,
            "min_order_qty": item.config.min_order_qty,
            "indicators": "+".join(item.config.indicators),
            "data": str(item.data_path),
        }
        for item in outcomes
    ]
    return pd.DataFrame(rows)


def format_interval_comparison(outcomes: Sequence[IntervalOutcome], symbol: str) -> str:
    lines = [
        "================ Interval Comparison ================",
        f"Symbol: {symbol}",
        "Interval | Return% | Trades | Base$ | MaxMult |   TP% | Threshold% | Indicators",
    ]
    for item in outcomes:
        config = item.config
        lines.append(
            f"{item.interval:<8} | {item.result.total_return * 100:7.2f} | {item.result.total_trades:6d} | "
            f"{config.base_amount:5.0f} | {config.max_multiplier:7.2f} | {config.tp_percent * 100:5.2f} | "
            f"{config.price_threshold * 100:10.2f} | {','.join(config.indicators)}"
        )
    best = best_interval(outcomes)
    lines.append(f"Best interval: {best.interval} (Return {best.result.total_return * 100:.2f}%)")
    return "\n".join(lines)


def export_interval_comparison(outcomes: Sequence[IntervalOutcome], path: Path) -> Path:
    _ensure_dir(path.parent)
    interval_comparison_frame(outcomes).to_csv(path, index=False)
    return path


def plot_equity_curve(result: SimulationResult, path: Path, title: str = "Equity") -> Optional[Path]:
    if result.equity.empty:
        LOGGER.info("자본곡선이 비어 있어 차트 생성을 건너뜁니다.")
        return None
    _ensure_dir(path.parent)
    plt.figure(figsize=(10, 5))
    plt.plot(result.equity.index, result.equity.to_numpy(), linewidth=1.0)
    plt.axhline(result.start_balance, color="grey", linestyle="--", linewidth=0.8)
    plt.title(title)
    plt.ylabel("Equity")
    plt.tight_layout()
    plt.savefig(path)
    plt.close()
    return path


def format_summary(result: SimulationResult, config: Optional[StrategyConfig] = None) -> str:
    lines = [
        "========== BACKTEST RESULTS ==========",
        f"Initial Balance:  ${result.start_balance:,.2f}",
        f"Final Balance:    ${result.end_balance:,.2f}",
        f"Total Return:     {result.total_return * 100:.2f}%",
        f"Max Drawdown:     {result.max_drawdown * 100:.2f}%",
        f"Sharpe Ratio:     {result.sharpe_ratio:.2f}",
        f"Profit Factor:    {result.profit_factor:.2f}",
        f"Total Trades:     {result.total_trades} (win {result.winning_trades} / loss {result.losing_trades})",
        f"Completed Cycles: {result.completed_cycles}",
    ]
    if config is not None:
        lines.append(f"Indicators:       {'+'.join(config.indicators)}")
        lines.append(
            f"DCA: base=${config.base_amount:.0f}, maxMult={config.max_multiplier:.1f}, "
            f"threshold={config.price_threshold * 100:.1f}%, "
            f"tp={config.tp_percent * 100:.1f}%, cycle={'on' if config.cycle else 'off'}"
        )
        lines.extend(f"  {line}" for line in parameter_lines(config))
    return "\n".join(lines)


def generate_reports(
    config: StrategyConfig,
    result: SimulationResult,
    output_dir: Path,
    *,
    wf_summary: Optional[WalkForwardSummary] = None,
) -> Dict[str, Path]:
    """Write every artifact of a run into *output_dir*."""

    _ensure_dir(output_dir)
    written: Dict[str, Path] = {
        "best": write_best_config(config, output_dir / "best.json", result),
        "trades": export_trades(result, output_dir / "trades.csv"),
        "cycles": export_cycles(result, output_dir / "cycles.csv"),
    }
    chart = plot_equity_curve(result, output_dir / "equity.png", title=f"{config.symbol} {config.interval}".strip())
    if chart is not None:
        written["equity"] = chart
    if wf_summary is not None:
        written.update({f"wf_{key}": value for key, value in export_walk_forward(wf_summary, output_dir).items()})
    return written


__all__ = [
    "IntervalOutcome",
    "best_interval",
    "export_cycles",
    "export_interval_comparison",
    "export_trades",
    "export_walk_forward",
    "format_interval_comparison",
    "format_summary",
    "generate_reports",
    "interval_comparison_frame",
    "nested_config",
    "plot_equity_curve",
    "trades_frame",
    "walk_forward_frame",
    "write_best_config",
]
