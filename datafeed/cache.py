"""Caching loader for historical OHLCV candle files."""
from __future__ import annotations

import logging
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple, Union

import pandas as pd

LOGGER = logging.getLogger(__name__)

OHLCV_COLUMNS = ["open", "high", "low", "close", "volume"]
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_DAYS_PATTERN = re.compile(r"^\s*(\d+)\s*(d|day|days)\s*$", re.IGNORECASE)


class ReadWriteLock:
    """Many concurrent readers or one exclusive writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def _parse_timestamps(values: pd.Series) -> pd.DatetimeIndex:
    parsed = pd.to_datetime(values, format=TIMESTAMP_FORMAT, errors="coerce", utc=True)
    if parsed.isna().any():
        # ISO-8601 나 epoch 문자열 등 다른 포맷은 pandas 추론에 맡긴다.
        fallback = pd.to_datetime(values[parsed.isna()], errors="coerce", utc=True)
        parsed = parsed.fillna(fallback)
    return pd.DatetimeIndex(parsed)


def load_candles(path: Union[str, Path]) -> pd.DataFrame:
    """Load a ``timestamp,open,high,low,close,volume`` CSV into a UTC-indexed frame.

    Rows with unparseable timestamps, non-positive prices or inconsistent
    high/low values are dropped; the result is sorted and de-duplicated.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"데이터 파일을 찾을 수 없습니다: {path}")

    raw = pd.read_csv(path)
    raw.columns = [str(column).strip().lower() for column in raw.columns]
    missing = [column for column in ["timestamp", *OHLCV_COLUMNS] if column not in raw.columns]
    if missing:
        raise ValueError(f"{path} is missing columns: {', '.join(missing)}")

    frame = raw.loc[:, OHLCV_COLUMNS].apply(pd.to_numeric, errors="coerce")
    frame.index = _parse_timestamps(raw["timestamp"])
    frame.index.name = "timestamp"

    prices = frame[["open", "high", "low", "close"]]
    valid = frame.index.notna() & prices.notna().all(axis=1).to_numpy()
    valid &= (prices > 0).all(axis=1).to_numpy()
    valid &= (frame["high"] >= prices.max(axis=1)).to_numpy()
    valid &= (frame["low"] <= prices.min(axis=1)).to_numpy()
    dropped = int((~valid).sum())
    if dropped:
        LOGGER.warning("Skipped %d invalid rows in %s", dropped, path)
    frame = frame[valid].copy()
    frame["volume"] = frame["volume"].fillna(0.0)

    frame = frame.sort_index(kind="mergesort")
    frame = frame[~frame.index.duplicated(keep="last")]
    return frame


def parse_trailing_period(text: str) -> pd.Timedelta:
    """Parse ``"30d"``, ``"7days"`` or a raw duration such as ``"168h"``."""

    value = str(text or "").strip()
    if not value:
        raise ValueError("empty trailing period")
    match = _DAYS_PATTERN.match(value)
    if match:
        period = pd.Timedelta(days=int(match.group(1)))
    else:
        try:
            period = pd.Timedelta(value)
        except ValueError as exc:
            raise ValueError(f"invalid trailing period: {text!r}") from exc
    if period <= pd.Timedelta(0):
        raise ValueError(f"trailing period must be positive: {text!r}")
    return period


def filter_trailing(frame: pd.DataFrame, period: Union[str, pd.Timedelta]) -> pd.DataFrame:
    """Keep the suffix of *frame* whose timestamps are within *period* of the last candle."""

    if frame.empty:
        return frame
    if not isinstance(period, pd.Timedelta):
        period = parse_trailing_period(period)
    cutoff = frame.index[-1] - period
    start = int(frame.index.searchsorted(cutoff, side="left"))
    return frame.iloc[start:]


@dataclass
class CandleCache:
    """Per-path candle cache shared by concurrent readers.

    Hits take the shared read lock; a miss takes the exclusive lock and loads
    the file once.
    """

    _frames: Dict[Path, pd.DataFrame] = field(default_factory=dict)
    _lock: ReadWriteLock = field(default_factory=ReadWriteLock)

    @staticmethod
    def _key(path: Union[str, Path]) -> Path:
        return Path(path).expanduser().resolve()

    def get(self, path: Union[str, Path]) -> pd.DataFrame:
        key = self._key(path)
        with self._lock.read():
            frame = self._frames.get(key)
        if frame is not None:
            return frame

        with self._lock.write():
            frame = self._frames.get(key)
            if frame is None:
                LOGGER.info("Loading candle data from %s", key)
                frame = load_candles(key)
                self._frames[key] = frame
                LOGGER.info("Loaded %s rows from %s", len(frame), key)
        return frame

    def clear(self) -> None:
        with self._lock.write():
            self._frames.clear()

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, Path)):
            return False
        with self._lock.read():
            return self._key(path) in self._frames


DEFAULT_CACHE = CandleCache()


def load_cached(path: Union[str, Path]) -> pd.DataFrame:
    return DEFAULT_CACHE.get(path)


CANDLES_FILE_NAME = "candles.csv"


def _interval_sort_key(interval: str) -> Tuple[int, float, str]:
    try:
        return (0, pd.Timedelta(interval.lower()).total_seconds(), interval)
    except ValueError:
        return (1, 0.0, interval)


def discover_interval_files(
    data_root: Union[str, Path],
    symbol: str,
    exchange: Optional[str] = None,
) -> Dict[str, Path]:
    """Find every ``<interval>/candles.csv`` stored under *data_root* for *symbol*.

    `<root>/<EXCHANGE>[/<CATEGORY>]/<SYMBOL>/<INTERVAL>/candles.csv` 구조를 탐색하며,
    같은 인터벌이 여러 카테고리에 있으면 경로 정렬상 먼저 나온 파일을 사용합니다.
    결과는 인터벌 길이 순으로 정렬됩니다.
    """

    root = Path(data_root)
    if not root.is_dir():
        raise FileNotFoundError(f"data root not found: {root}")
    wanted = symbol.upper()
    found: Dict[str, Path] = {}
    for path in sorted(root.rglob(CANDLES_FILE_NAME)):
        relative = path.relative_to(root).parts
        if len(relative) < 3 or relative[-3].upper() != wanted:
            continue
        if exchange and relative[0].lower() != exchange.lower():
            continue
        found.setdefault(relative[-2], path)
    return {interval: found[interval] for interval in sorted(found, key=_interval_sort_key)}


__all__ = [
    "CANDLES_FILE_NAME",
    "CandleCache",
    "ReadWriteLock",
    "DEFAULT_CACHE",
    "discover_interval_files",
    "filter_trailing",
    "load_cached",
    "load_candles",
    "parse_trailing_period",
]
