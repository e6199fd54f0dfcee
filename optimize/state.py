"""백테스트 상태 추적용 데이터 클래스 모음."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd


@dataclass
class TradeRecord:
    """A single DCA entry; exit fields are filled on take-profit or at the end of the run."""

    entry_time: pd.Timestamp
    entry_price: float
    quantity: float
    commission: float
    cycle: int = 0
    exit_time: Optional[pd.Timestamp] = None
    exit_price: float = 0.0
    pnl: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.exit_time is None


@dataclass
class CycleSummary:
    cycle_number: int
    start_time: pd.Timestamp
    end_time: pd.Timestamp
    entries: int
    avg_entry: float
    target_price: float
    realized_pnl: float
    total_cost: float
    total_commission: float
    completed: bool


@dataclass
class CycleState:
    """Running totals of the currently open take-profit cycle."""

    number: int = 0
    open: bool = False
    entries: int = 0
    start_time: Optional[pd.Timestamp] = None
    qty_sum: float = 0.0
    cost_sum: float = 0.0
    commission_sum: float = 0.0
    last_entry_price: float = 0.0

    def start(self, timestamp: pd.Timestamp) -> None:
        self.number += 1
        self.open = True
        self.entries = 0
        self.start_time = timestamp
        self.qty_sum = 0.0
        self.cost_sum = 0.0
        self.commission_sum = 0.0

    def add_entry(self, price: float, qty: float, commission: float) -> None:
        self.entries += 1
        self.qty_sum += qty
        self.cost_sum += price * qty
        self.commission_sum += commission
        self.last_entry_price = price

    @property
    def avg_entry(self) -> float:
        return self.cost_sum / self.qty_sum if self.qty_sum > 0 else 0.0


@dataclass
class SimulationResult:
    """Aggregate and detailed outcome of one backtest run.

    옵티마이저는 ``total_return`` 만 적합도로 사용하고 나머지는 리포트에 그대로 전달합니다.
    """

    total_return: float = 0.0
    max_drawdown: float = 0.0
    sharpe_ratio: float = 0.0
    profit_factor: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    start_balance: float = 0.0
    end_balance: float = 0.0
    completed_cycles: int = 0
    trades: List[TradeRecord] = field(default_factory=list)
    cycles: List[CycleSummary] = field(default_factory=list)
    equity: pd.Series = field(default_factory=lambda: pd.Series(dtype=float))

    def metrics(self) -> Dict[str, float]:
        return {
            "TotalReturn": float(self.total_return),
            "MaxDrawdown": float(self.max_drawdown),
            "SharpeRatio": float(self.sharpe_ratio),
            "ProfitFactor": float(self.profit_factor),
            "TotalTrades": float(self.total_trades),
            "WinningTrades": float(self.winning_trades),
            "LosingTrades": float(self.losing_trades),
            "StartBalance": float(self.start_balance),
            "EndBalance": float(self.end_balance),
            "CompletedCycles": float(self.completed_cycles),
        }
