"""Repository-wide configuration defaults and shared constants."""
from __future__ import annotations

import multiprocessing
from pathlib import Path

# CPU cores / worker defaults -------------------------------------------------
CPU_COUNT: int = multiprocessing.cpu_count() or 1
MAX_PARALLEL_WORKERS: int = 4

# Storage defaults ------------------------------------------------------------
REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_OUTPUT_ROOT = Path("results")
DEFAULT_DATA_ROOT = Path("data")
INTERVAL_COMPARISON_NAME = "interval_comparison.csv"
EXHAUSTIVE_LOG_NAME = "exhaustive_test.log"

# Backtest defaults -----------------------------------------------------------
DEFAULT_INITIAL_BALANCE = 500.0
DEFAULT_COMMISSION = 0.0005
DEFAULT_WINDOW_SIZE = 100
DEFAULT_BASE_AMOUNT = 40.0
DEFAULT_MAX_MULTIPLIER = 3.0
DEFAULT_PRICE_THRESHOLD = 0.02
DEFAULT_TP_PERCENT = 0.02
DEFAULT_MIN_ORDER_QTY = 0.01
MIN_CONFIDENCE = 0.5

DEFAULT_RSI_PERIOD = 14
DEFAULT_RSI_OVERSOLD = 30.0
DEFAULT_RSI_OVERBOUGHT = 70.0
DEFAULT_MACD_FAST = 12
DEFAULT_MACD_SLOW = 26
DEFAULT_MACD_SIGNAL = 9
DEFAULT_BB_PERIOD = 20
DEFAULT_BB_STD_DEV = 2.0
DEFAULT_EMA_PERIOD = 50

# Validation bounds -----------------------------------------------------------
MAX_COMMISSION = 1.0
MAX_THRESHOLD = 1.0
MIN_MULTIPLIER = 1.0
MIN_RSI_PERIOD = 2
MAX_RSI_VALUE = 100
MIN_MACD_PERIOD = 2
MIN_BB_PERIOD = 2
MIN_EMA_PERIOD = 2

# GA budgets ------------------------------------------------------------------
GA_POPULATION_SIZE = 60
GA_GENERATIONS = 35
GA_MUTATION_RATE = 0.1
GA_CROSSOVER_RATE = 0.8
GA_ELITE_SIZE = 6
GA_TOURNAMENT_SIZE = 3

EXHAUSTIVE_POPULATION_SIZE = 20
EXHAUSTIVE_GENERATIONS = 15
EXHAUSTIVE_MUTATION_RATE = 0.15
EXHAUSTIVE_CROSSOVER_RATE = 0.8
EXHAUSTIVE_ELITE_SIZE = 3
EXHAUSTIVE_INITIAL_BEST = -999999.0

PROGRESS_REPORT_INTERVAL = 5
DETAIL_REPORT_INTERVAL = 10

# Optimisation safeguards -----------------------------------------------------
NON_FINITE_PENALTY = -1e12

# Walk-forward defaults -------------------------------------------------------
MIN_DATA_POINTS = 100
MIN_TRAIN_POINTS = 50
MIN_TEST_POINTS = 10
MIN_HOLDOUT_TEST_POINTS = 50
DEFAULT_WF_SPLIT_RATIO = 0.7
DEFAULT_WF_TRAIN_DAYS = 180
DEFAULT_WF_TEST_DAYS = 60
DEFAULT_WF_ROLL_DAYS = 30

# Candidate sets: classic bundle -----------------------------------------------
MULTIPLIER_CHOICES = [1.2, 1.5, 1.8, 2.0, 2.5, 3.0, 3.5, 4.0]
TP_CHOICES = [0.01, 0.015, 0.02, 0.025, 0.03, 0.035, 0.04, 0.045, 0.05, 0.055, 0.06]
PRICE_THRESHOLD_CHOICES = [0.01, 0.015, 0.02, 0.025, 0.03, 0.035, 0.04, 0.045, 0.05]
RSI_PERIOD_CHOICES = [10, 12, 14, 16, 18, 20, 22, 25]
RSI_OVERSOLD_CHOICES = [20.0, 25.0, 30.0, 35.0, 40.0]
MACD_FAST_CHOICES = [6, 8, 10, 12, 14, 16, 18]
MACD_SLOW_CHOICES = [20, 22, 24, 26, 28, 30, 32, 35]
MACD_SIGNAL_CHOICES = [7, 8, 9, 10, 12, 14]
BB_PERIOD_CHOICES = [10, 14, 16, 18, 20, 22, 25, 28, 30]
BB_STD_DEV_CHOICES = [1.5, 1.8, 2.0, 2.2, 2.5, 2.8, 3.0]
EMA_PERIOD_CHOICES = [15, 20, 25, 30, 40, 50, 60, 75, 100, 120]

# Candidate sets: advanced bundle ----------------------------------------------
HULLMA_PERIOD_CHOICES = [8, 10, 12, 14, 16, 18, 20, 22, 25, 30]
SUPERTREND_PERIOD_CHOICES = [10, 12, 14, 16, 18, 20, 25]
SUPERTREND_MULTIPLIER_CHOICES = [1.5, 2.0, 2.5, 3.0, 3.5, 4.0]
MFI_PERIOD_CHOICES = [10, 12, 14, 16, 18, 20, 22]
MFI_OVERSOLD_CHOICES = [15.0, 20.0, 25.0, 30.0]
MFI_OVERBOUGHT_CHOICES = [70.0, 75.0, 80.0, 85.0]
KELTNER_PERIOD_CHOICES = [15, 20, 25, 30, 40, 50]
KELTNER_MULTIPLIER_CHOICES = [1.5, 1.8, 2.0, 2.2, 2.5, 3.0, 3.5]
WAVETREND_N1_CHOICES = [8, 10, 12, 15, 18, 20]
WAVETREND_N2_CHOICES = [18, 21, 24, 28, 32, 35]
WAVETREND_OVERBOUGHT_CHOICES = [50.0, 60.0, 70.0, 80.0]
WAVETREND_OVERSOLD_CHOICES = [-80.0, -70.0, -60.0, -50.0]
OBV_TREND_THRESHOLD_CHOICES = [0.005, 0.008, 0.01, 0.012, 0.015, 0.018, 0.02, 0.025, 0.03]
STOCHRSI_PERIOD_CHOICES = [10, 12, 14, 16, 18, 20, 22]
STOCHRSI_OVERBOUGHT_CHOICES = [75.0, 80.0, 85.0, 90.0]
STOCHRSI_OVERSOLD_CHOICES = [10.0, 15.0, 20.0, 25.0]

CLASSIC_INDICATORS = ("rsi", "macd", "bb", "ema")
ADVANCED_INDICATORS = ("hullma", "mfi", "keltner", "wavetrend")
ADVANCED_EXTRA_INDICATORS = ("supertrend", "obv", "stochrsi")

__all__ = [name for name in dir() if name.isupper()]
