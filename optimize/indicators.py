"""보조 지표 및 시계열 계산 유틸리티."""
from __future__ import annotations

from collections import deque
from typing import Callable, Dict, Tuple

import numpy as np
import pandas as pd

from .common import StrategyConfig

EPS = 1e-12

SignalPair = Tuple[np.ndarray, np.ndarray]


def _seeded_ewma(series: pd.Series, length: int, alpha: float) -> pd.Series:
    """TradingView와 동일한 초기화 방식으로 지수이동평균을 계산합니다."""

    length = max(int(length), 1)
    values = series.to_numpy(dtype=float, copy=False)
    result = np.full(values.shape, np.nan, dtype=float)
    if values.size == 0:
        return pd.Series(result, index=series.index, dtype=float)

    window: deque[float] = deque(maxlen=length)
    window_sum = 0.0
    nan_count = 0
    prev = np.nan

    for idx, value in enumerate(values):
        if len(window) == length:
            oldest = window.popleft()
            if np.isnan(oldest):
                nan_count -= 1
            else:
                window_sum -= oldest

        window.append(value)
        if np.isnan(value):
            nan_count += 1
        else:
            window_sum += value

        if np.isnan(value):
            prev = np.nan
            continue

        if np.isnan(prev):
            # 첫 값은 직전 length 개의 단순 평균으로 시드한다.
            if len(window) == length and nan_count == 0:
                prev = window_sum / float(length)
                result[idx] = prev
        else:
            prev = prev + (value - prev) * alpha
            result[idx] = prev

    return pd.Series(result, index=series.index, dtype=float)


def _ema(series: pd.Series, length: int) -> pd.Series:
    length = max(int(length), 1)
    alpha = 2.0 / float(length + 1)
    return _seeded_ewma(series, length, alpha)


def _rma(series: pd.Series, length: int) -> pd.Series:
    length = max(int(length), 1)
    alpha = 1.0 / float(length)
    return _seeded_ewma(series, length, alpha)


def _sma(series: pd.Series, length: int) -> pd.Series:
    length = max(int(length), 1)
    return series.rolling(length, min_periods=length).mean()


def _std(series: pd.Series, length: int) -> pd.Series:
    length = max(int(length), 1)
    return series.rolling(length, min_periods=length).std(ddof=0)


def _wma(series: pd.Series, length: int) -> pd.Series:
    """
    Compute the weighted moving average (WMA) of a series.
    Later used for Hull MA.
    """
    length = max(int(length), 1)
    values = series.to_numpy(dtype=float)
    result = np.full(values.shape, np.nan, dtype=float)
    if values.size >= length:
        weights = np.arange(length, 0, -1, dtype=float)
        # NaN 이 포함된 창은 convolve 결과도 NaN 이 된다.
        result[length - 1 :] = np.convolve(values, weights, mode="valid") / weights.sum()
    return pd.Series(result, index=series.index, dtype=float)


def _hma(series: pd.Series, length: int) -> pd.Series:
    """
    Compute the Hull moving average of a series.
    HMA is defined as WMA(2*WMA(series, n/2) - WMA(series, n), sqrt(n)).
    """
    length = max(int(length), 1)
    half_len = max(int(round(length / 2.0)), 1)
    sqrt_len = max(int(round(np.sqrt(length))), 1)
    wma1 = _wma(series, half_len)
    wma2 = _wma(series, length)
    diff = 2.0 * wma1 - wma2
    return _wma(diff, sqrt_len)


def _true_range(df: pd.DataFrame) -> pd.Series:
    high_low = df["high"] - df["low"]
    high_close = (df["high"] - df["close"].shift()).abs()
    low_close = (df["low"] - df["close"].shift()).abs()
    return pd.concat([high_low, high_close, low_close], axis=1).max(axis=1)


def _atr(df: pd.DataFrame, length: int) -> pd.Series:
    return _rma(_true_range(df), length)


def _rsi(series: pd.Series, length: int) -> pd.Series:
    length = max(int(length), 1)
    diff = series.diff()
    up = diff.clip(lower=0)
    down = -diff.clip(upper=0)
    avg_gain = _rma(up, length)
    avg_loss = _rma(down, length)
    rs = avg_gain / avg_loss.replace(0.0, np.nan)
    rsi = 100.0 - (100.0 / (1.0 + rs))
    # 손실이 전혀 없는 구간은 100 으로 간주한다.
    return rsi.where(avg_loss != 0.0, 100.0).where(avg_gain.notna())


def _stoch_rsi(series: pd.Series, length: int) -> pd.Series:
    rsi = _rsi(series, length)
    lowest = rsi.rolling(length, min_periods=length).min()
    highest = rsi.rolling(length, min_periods=length).max()
    denom = (highest - lowest).replace(0, np.nan)
    return ((rsi - lowest) / denom * 100.0).fillna(50.0).where(lowest.notna())


def _macd(series: pd.Series, fast: int, slow: int, signal: int) -> Tuple[pd.Series, pd.Series]:
    line = _ema(series, fast) - _ema(series, slow)
    return line, _ema(line, signal)


def _supertrend(df: pd.DataFrame, length: int, multiplier: float) -> np.ndarray:
    """Return the SuperTrend direction per bar (1 up, -1 down, 0 during warm-up)."""

    atr = _atr(df, length).to_numpy(dtype=float)
    close = df["close"].to_numpy(dtype=float)
    hl2 = ((df["high"] + df["low"]) / 2.0).to_numpy(dtype=float)
    upper_basic = hl2 + multiplier * atr
    lower_basic = hl2 - multiplier * atr

    direction = np.zeros(close.shape[0], dtype=np.int8)
    upper = np.nan
    lower = np.nan
    trend = 1
    for idx in range(close.shape[0]):
        if np.isnan(atr[idx]):
            continue
        if np.isnan(upper):
            upper, lower = upper_basic[idx], lower_basic[idx]
        else:
            prev_close = close[idx - 1]
            upper = upper_basic[idx] if upper_basic[idx] < upper or prev_close > upper else upper
            lower = lower_basic[idx] if lower_basic[idx] > lower or prev_close < lower else lower
        if trend == 1 and close[idx] < lower:
            trend = -1
        elif trend == -1 and close[idx] > upper:
            trend = 1
        direction[idx] = trend
    return direction


def _mfi(df: pd.DataFrame, length: int) -> pd.Series:
    length = max(int(length), 1)
    typical = (df["high"] + df["low"] + df["close"]) / 3.0
    flow = typical * df["volume"]
    delta = typical.diff()
    positive = flow.where(delta > 0, 0.0).rolling(length, min_periods=length).sum()
    negative = flow.where(delta < 0, 0.0).rolling(length, min_periods=length).sum()
    ratio = positive / negative.replace(0.0, np.nan)
    mfi = 100.0 - 100.0 / (1.0 + ratio)
    return mfi.where(negative != 0.0, 100.0).where(positive.notna())


def _wavetrend(df: pd.DataFrame, n1: int, n2: int) -> Tuple[pd.Series, pd.Series]:
    ap = (df["high"] + df["low"] + df["close"]) / 3.0
    esa = _ema(ap, n1)
    dev = _ema((ap - esa).abs(), n1)
    ci = (ap - esa) / (0.015 * dev.replace(0.0, np.nan))
    wt1 = _ema(ci, n2)
    wt2 = _sma(wt1, 4)
    return wt1, wt2


def _obv_trend(close: pd.Series, volume: pd.Series, length: int = 20) -> pd.Series:
    direction = np.sign(close.diff().fillna(0.0))
    obv = (direction * volume.fillna(0.0)).cumsum()
    baseline = _sma(obv, length)
    return (obv - baseline) / (baseline.abs() + EPS)


def _cross_above(a: pd.Series, b: pd.Series) -> pd.Series:
    return (a > b) & (a.shift() <= b.shift())


def _cross_below(a: pd.Series, b: pd.Series) -> pd.Series:
    return (a < b) & (a.shift() >= b.shift())


def _as_pair(buy: pd.Series, sell: pd.Series) -> SignalPair:
    return (
        buy.fillna(False).to_numpy(dtype=bool),
        sell.fillna(False).to_numpy(dtype=bool),
    )


def _rsi_signals(df: pd.DataFrame, config: StrategyConfig) -> SignalPair:
    rsi = _rsi(df["close"], config.rsi_period)
    return _as_pair(rsi < config.rsi_oversold, rsi > config.rsi_overbought)


def _macd_signals(df: pd.DataFrame, config: StrategyConfig) -> SignalPair:
    line, signal = _macd(df["close"], config.macd_fast, config.macd_slow, config.macd_signal)
    return _as_pair(_cross_above(line, signal), _cross_below(line, signal))


def _bb_signals(df: pd.DataFrame, config: StrategyConfig) -> SignalPair:
    basis = _sma(df["close"], config.bb_period)
    width = config.bb_std_dev * _std(df["close"], config.bb_period)
    return _as_pair(df["close"] <= basis - width, df["close"] >= basis + width)


def _ema_signals(df: pd.DataFrame, config: StrategyConfig) -> SignalPair:
    ema = _ema(df["close"], config.ema_period)
    return _as_pair(df["close"] < ema, df["close"] > ema * 1.02)


def _hullma_signals(df: pd.DataFrame, config: StrategyConfig) -> SignalPair:
    hma = _hma(df["close"], config.hullma_period)
    rising = hma > hma.shift()
    falling = hma < hma.shift()
    return _as_pair((df["close"] > hma) & rising, (df["close"] < hma) & falling)


def _supertrend_signals(df: pd.DataFrame, config: StrategyConfig) -> SignalPair:
    direction = _supertrend(df, config.supertrend_period, config.supertrend_multiplier)
    return direction == 1, direction == -1


def _mfi_signals(df: pd.DataFrame, config: StrategyConfig) -> SignalPair:
    mfi = _mfi(df, config.mfi_period)
    return _as_pair(mfi < config.mfi_oversold, mfi > config.mfi_overbought)


def _keltner_signals(df: pd.DataFrame, config: StrategyConfig) -> SignalPair:
    mid = _ema(df["close"], config.keltner_period)
    width = config.keltner_multiplier * _atr(df, config.keltner_period)
    return _as_pair(df["close"] <= mid - width, df["close"] >= mid + width)


def _wavetrend_signals(df: pd.DataFrame, config: StrategyConfig) -> SignalPair:
    wt1, wt2 = _wavetrend(df, config.wavetrend_n1, config.wavetrend_n2)
    buy = (wt1 < config.wavetrend_oversold) & (wt1 > wt2)
    sell = (wt1 > config.wavetrend_overbought) & (wt1 < wt2)
    return _as_pair(buy, sell)


def _obv_signals(df: pd.DataFrame, config: StrategyConfig) -> SignalPair:
    trend = _obv_trend(df["close"], df["volume"])
    threshold = config.obv_trend_threshold
    return _as_pair(trend > threshold, trend < -threshold)


def _stochrsi_signals(df: pd.DataFrame, config: StrategyConfig) -> SignalPair:
    value = _stoch_rsi(df["close"], config.stochrsi_period)
    return _as_pair(value < config.stochrsi_oversold, value > config.stochrsi_overbought)


SIGNAL_BUILDERS: Dict[str, Callable[[pd.DataFrame, StrategyConfig], SignalPair]] = {
    "rsi": _rsi_signals,
    "macd": _macd_signals,
    "bb": _bb_signals,
    "ema": _ema_signals,
    "hullma": _hullma_signals,
    "supertrend": _supertrend_signals,
    "mfi": _mfi_signals,
    "keltner": _keltner_signals,
    "wavetrend": _wavetrend_signals,
    "obv": _obv_signals,
    "stochrsi": _stochrsi_signals,
}


def compute_signals(df: pd.DataFrame, config: StrategyConfig) -> Dict[str, SignalPair]:
    """Precompute per-indicator buy/sell votes for every bar of *df*."""

    signals: Dict[str, SignalPair] = {}
    for name in config.indicators:
        builder = SIGNAL_BUILDERS.get(name)
        if builder is None:
            raise ValueError(f"Unsupported indicator: {name}")
        signals[name] = builder(df, config)
    return signals


__all__ = ["SIGNAL_BUILDERS", "compute_signals"]
