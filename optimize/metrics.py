"""Performance metric calculations for optimisation."""
from __future__ import annotations

import math
from typing import Sequence, Tuple

import numpy as np
import pandas as pd


EPS = 1e-12


def drawdown_curve(equity: pd.Series) -> pd.Series:
    """자본곡선으로부터 드로우다운 시퀀스를 계산합니다."""

    if equity.empty:
        return pd.Series(dtype=np.float64)

    cleaned = equity.replace([np.inf, -np.inf], np.nan).ffill().fillna(0.0)
    values = cleaned.to_numpy(dtype=np.float64, copy=True)
    peaks = np.maximum.accumulate(np.maximum(values, EPS))
    drawdowns = (values - peaks) / peaks
    return pd.Series(drawdowns, index=cleaned.index, dtype=np.float64)


def max_drawdown(equity: pd.Series) -> float:
    """Return the maximum drawdown as a positive fraction of the running peak."""

    if equity.empty:
        return 0.0
    dd_series = drawdown_curve(equity)
    return float(-dd_series.min()) if not dd_series.empty else 0.0


def sharpe_ratio(returns: Sequence[float], risk_free: float = 0.0) -> float:
    cleaned = pd.Series(returns, dtype=float).replace([np.inf, -np.inf], np.nan).dropna()
    if cleaned.empty:
        return 0.0
    with np.errstate(invalid="ignore"):
        std = cleaned.std(ddof=0)
    if std < 1e-10 or np.isnan(std):
        return 0.0
    return float((cleaned.mean() - risk_free) / std)


def profit_factor(pnls: Sequence[float]) -> float:
    """Gross profit over gross loss; ``inf`` when there are profits but no losses."""

    if len(pnls) == 0:
        return 0.0
    gross_profit = float(sum(p for p in pnls if p > 0))
    gross_loss = float(sum(abs(p) for p in pnls if p <= 0))
    if gross_loss == 0.0:
        return math.inf if gross_profit > 0 else 0.0
    return gross_profit / gross_loss


def win_loss_counts(pnls: Sequence[float]) -> Tuple[int, int]:
    wins = sum(1 for p in pnls if p > 0)
    return wins, len(pnls) - wins


def average(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.mean(np.asarray(values, dtype=float)))


def sample_std(values: Sequence[float]) -> float:
    """Sample standard deviation (n-1); 0 for fewer than two values."""

    if len(values) <= 1:
        return 0.0
    return float(np.std(np.asarray(values, dtype=float), ddof=1))


__all__ = [
    "EPS",
    "drawdown_curve",
    "max_drawdown",
    "sharpe_ratio",
    "profit_factor",
    "win_loss_counts",
    "average",
    "sample_std",
]
