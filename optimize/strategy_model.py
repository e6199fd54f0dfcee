"""DCA 전략 백테스트 엔진.

Walks a candle frame bar by bar, buys on indicator consensus with DCA price
spacing, and (in cycle mode) sells the whole position once the close reaches
the take-profit target above the average entry.
"""
from __future__ import annotations

from typing import List, Optional

import numpy as np
import pandas as pd

from .common import StrategyConfig
from .constants import MIN_CONFIDENCE
from .indicators import compute_signals
from .metrics import max_drawdown, profit_factor, sharpe_ratio, win_loss_counts
from .state import CycleState, CycleSummary, SimulationResult, TradeRecord


def _order_amount(config: StrategyConfig, confidence: float) -> float:
    multiplier = 1.0 + confidence * (config.max_multiplier - 1.0)
    return config.base_amount * min(multiplier, config.max_multiplier)


def _round_quantity(quantity: float, step: float) -> float:
    if step <= 0:
        return quantity
    steps = max(round(quantity / step), 1)
    return steps * step


def _close_cycle(
    trades: List[TradeRecord],
    cycle: CycleState,
    price: float,
    timestamp: pd.Timestamp,
    commission_rate: float,
    completed: bool,
) -> CycleSummary:
    open_trades = [trade for trade in trades if trade.is_open and trade.cycle == cycle.number]
    total_qty = sum(trade.quantity for trade in open_trades)
    sell_commission = total_qty * price * commission_rate if completed else 0.0
    realized = 0.0
    for trade in open_trades:
        share = trade.quantity / total_qty if total_qty > 0 else 0.0
        trade.exit_time = timestamp
        trade.exit_price = price
        trade.pnl = (price - trade.entry_price) * trade.quantity - trade.commission - sell_commission * share
        realized += trade.pnl
    return CycleSummary(
        cycle_number=cycle.number,
        start_time=cycle.start_time if cycle.start_time is not None else timestamp,
        end_time=timestamp,
        entries=cycle.entries,
        avg_entry=cycle.avg_entry,
        target_price=0.0,
        realized_pnl=realized,
        total_cost=cycle.cost_sum,
        total_commission=cycle.commission_sum + sell_commission,
        completed=completed,
    )


def run_backtest(
    config: StrategyConfig,
    df: pd.DataFrame,
    window_size: Optional[int] = None,
) -> SimulationResult:
    """Simulate *config* on *df* and return aggregate and detailed results.

    ``window_size`` 이전 구간은 지표 워밍업으로만 사용되며 주문을 내지 않습니다.
    입력 프레임은 읽기 전용으로만 사용합니다.
    """

    window = config.window_size if window_size is None else int(window_size)
    window = max(window, 0)
    initial = float(config.initial_balance)
    result = SimulationResult(start_balance=initial, end_balance=initial)
    total = len(df)
    if total == 0 or window >= total:
        return result

    signals = compute_signals(df, config)
    n_indicators = len(signals)
    buy_votes = np.zeros(total, dtype=np.int64)
    for buy, _sell in signals.values():
        buy_votes += buy.astype(np.int64)

    close = df["close"].to_numpy(dtype=float)
    index = df.index
    tp_enabled = config.cycle and config.tp_percent > 0

    balance = initial
    position = 0.0
    last_entry = 0.0
    trades: List[TradeRecord] = []
    cycles: List[CycleSummary] = []
    cycle = CycleState()
    equity = np.empty(total - window, dtype=float)

    for i in range(window, total):
        price = close[i]
        timestamp = index[i]
        confidence = buy_votes[i] / n_indicators if n_indicators else 0.0
        spaced = position <= 0 or price <= last_entry * (1.0 - config.price_threshold)

        if confidence >= MIN_CONFIDENCE and spaced and price > 0:
            target_amount = _order_amount(config, confidence)
            quantity = _round_quantity(target_amount / price, config.min_order_qty)
            actual_amount = quantity * price
            commission = target_amount * config.commission
            cost = actual_amount + commission
            if balance >= cost:
                position += quantity
                balance -= cost
                last_entry = price
                if tp_enabled and not cycle.open:
                    cycle.start(timestamp)
                trade = TradeRecord(
                    entry_time=timestamp,
                    entry_price=price,
                    quantity=quantity,
                    commission=commission,
                )
                if cycle.open:
                    cycle.add_entry(price, quantity, commission)
                    trade.cycle = cycle.number
                trades.append(trade)

        if tp_enabled and cycle.open and position > 0:
            target_price = cycle.avg_entry * (1.0 + config.tp_percent)
            if price >= target_price:
                summary = _close_cycle(trades, cycle, price, timestamp, config.commission, completed=True)
                summary.target_price = target_price
                cycles.append(summary)
                balance += position * price * (1.0 - config.commission)
                position = 0.0
                last_entry = 0.0
                cycle.open = False

        equity[i - window] = balance + position * price

    final_price = close[-1]
    final_time = index[-1]
    if tp_enabled and cycle.open and cycle.qty_sum > 0:
        summary = _close_cycle(trades, cycle, final_price, final_time, config.commission, completed=False)
        summary.target_price = cycle.avg_entry * (1.0 + config.tp_percent)
        cycles.append(summary)
    for trade in trades:
        if trade.is_open:
            trade.exit_time = final_time
            trade.exit_price = final_price
            trade.pnl = (final_price - trade.entry_price) * trade.quantity - trade.commission

    final_equity = balance + position * final_price
    pnls = [trade.pnl for trade in trades]
    trade_returns = [
        (trade.exit_price - trade.entry_price) / trade.entry_price
        for trade in trades
        if trade.entry_price > 0 and trade.exit_price > 0
    ]
    wins, losses = win_loss_counts(pnls)

    result.equity = pd.Series(equity, index=index[window:], dtype=float)
    result.max_drawdown = max_drawdown(pd.concat([pd.Series([initial]), pd.Series(equity)], ignore_index=True))
    result.total_return = (final_equity - initial) / initial
    result.end_balance = final_equity
    result.sharpe_ratio = sharpe_ratio(trade_returns)
    result.profit_factor = profit_factor(pnls)
    result.total_trades = len(trades)
    result.winning_trades = wins
    result.losing_trades = losses
    result.trades = trades
    result.cycles = cycles
    result.completed_cycles = sum(1 for item in cycles if item.completed)
    return result


__all__ = ["run_backtest"]
