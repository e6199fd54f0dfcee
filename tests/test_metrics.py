import math

import numpy as np
import pandas as pd
import pytest

from optimize.metrics import (
    average,
    drawdown_curve,
    max_drawdown,
    profit_factor,
    sample_std,
    sharpe_ratio,
    win_loss_counts,
)


def test_max_drawdown_is_positive_fraction():
    equity = pd.Series([100.0, 120.0, 90.0, 130.0, 117.0])
    assert max_drawdown(equity) == pytest.approx(0.25)
    curve = drawdown_curve(equity)
    assert curve.iloc[0] == 0.0
    assert curve.min() == pytest.approx(-0.25)


def test_max_drawdown_empty_and_flat():
    assert max_drawdown(pd.Series(dtype=float)) == 0.0
    assert max_drawdown(pd.Series([50.0, 50.0, 50.0])) == 0.0


def test_sharpe_ratio_population_std():
    returns = [0.01, 0.03, -0.01, 0.02]
    expected = np.mean(returns) / np.std(returns, ddof=0)
    assert sharpe_ratio(returns) == pytest.approx(expected)
    assert sharpe_ratio([0.02, 0.02]) == 0.0
    assert sharpe_ratio([]) == 0.0


def test_profit_factor_cases():
    assert profit_factor([10.0, -5.0, 5.0]) == pytest.approx(3.0)
    assert math.isinf(profit_factor([1.0, 2.0]))
    assert profit_factor([]) == 0.0
    assert profit_factor([-1.0]) == 0.0


def test_win_loss_counts_treat_zero_as_loss():
    assert win_loss_counts([1.0, 0.0, -2.0, 3.0]) == (2, 2)


def test_average_and_sample_std():
    assert average([]) == 0.0
    assert average([1.0, 2.0, 3.0]) == pytest.approx(2.0)
    assert sample_std([5.0]) == 0.0
    assert sample_std([1.0, 3.0]) == pytest.approx(math.sqrt(2.0))
