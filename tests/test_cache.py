from __future__ import annotations

import threading
from pathlib import Path

import pandas as pd
import pytest

from datafeed import cache as cache_module
from datafeed.cache import (
    CandleCache,
    discover_interval_files,
    filter_trailing,
    load_candles,
    parse_trailing_period,
)


def _write_csv(path: Path, periods: int = 48) -> Path:
    index = pd.date_range("2024-01-01", periods=periods, freq="1h", tz="UTC")
    frame = pd.DataFrame(
        {
            "timestamp": index.strftime("%Y-%m-%d %H:%M:%S"),
            "open": 100.0,
            "high": 101.0,
            "low": 99.0,
            "close": 100.5,
            "volume": 3.0,
        }
    )
    frame.to_csv(path, index=False)
    return path


def test_load_candles_parses_and_indexes(tmp_path):
    df = load_candles(_write_csv(tmp_path / "candles.csv"))
    assert list(df.columns) == ["open", "high", "low", "close", "volume"]
    assert len(df) == 48
    assert str(df.index.tz) == "UTC"
    assert df.index.is_monotonic_increasing


def test_load_candles_drops_invalid_rows(tmp_path):
    path = tmp_path / "candles.csv"
    path.write_text(
        "timestamp,open,high,low,close,volume\n"
        "2024-01-01 02:00:00,10,11,9,10.5,1\n"
        "2024-01-01 00:00:00,10,11,9,10.5,1\n"
        "not-a-date,10,11,9,10.5,1\n"
        "2024-01-01 01:00:00,-1,11,9,10.5,1\n"
        "2024-01-01 03:00:00,10,9,9.5,10.5,1\n"
        "2024-01-01 00:00:00,12,13,11,12.5,2\n"
    )
    df = load_candles(path)
    assert len(df) == 2
    assert df.index[0] == pd.Timestamp("2024-01-01 00:00:00", tz="UTC")
    assert df["close"].iloc[0] == pytest.approx(12.5)


def test_load_candles_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_candles(tmp_path / "missing.csv")
    broken = tmp_path / "broken.csv"
    broken.write_text("timestamp,open,close\n2024-01-01 00:00:00,1,1\n")
    with pytest.raises(ValueError):
        load_candles(broken)


def test_parse_trailing_period():
    assert parse_trailing_period("30d") == pd.Timedelta(days=30)
    assert parse_trailing_period("7days") == pd.Timedelta(days=7)
    assert parse_trailing_period("168h") == pd.Timedelta(hours=168)
    for value in ("", "soon", "-2d"):
        with pytest.raises(ValueError):
            parse_trailing_period(value)


def test_filter_trailing_keeps_suffix(tmp_path):
    df = load_candles(_write_csv(tmp_path / "candles.csv"))
    recent = filter_trailing(df, "1d")
    assert recent.index[-1] == df.index[-1]
    assert recent.index[0] == df.index[-1] - pd.Timedelta(days=1)
    assert len(recent) == 25
    assert filter_trailing(df, "30d").equals(df)


def test_cache_loads_each_path_once(tmp_path, monkeypatch):
    path = _write_csv(tmp_path / "candles.csv")
    calls = []
    original = cache_module.load_candles

    def counting(target):
        calls.append(target)
        return original(target)

    monkeypatch.setattr(cache_module, "load_candles", counting)
    cache = CandleCache()
    frames = []

    def worker():
        frames.append(cache.get(path))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(calls) == 1
    assert len(frames) == 8
    assert all(frame is frames[0] for frame in frames)
    assert path in cache
    cache.clear()
    assert path not in cache


def test_discover_interval_files(tmp_path):
    for relative in (
        "bybit/spot/BTCUSDT/1h",
        "bybit/linear/BTCUSDT/1h",
        "bybit/linear/BTCUSDT/5m",
        "binance/BTCUSDT/1d",
        "bybit/linear/ETHUSDT/15m",
    ):
        folder = tmp_path / relative
        folder.mkdir(parents=True)
        _write_csv(folder / "candles.csv", periods=4)
    (tmp_path / "bybit" / "linear" / "BTCUSDT" / "4h").mkdir()

    found = discover_interval_files(tmp_path, "btcusdt")

    assert list(found) == ["5m", "1h", "1d"]
    assert found["1h"] == tmp_path / "bybit" / "linear" / "BTCUSDT" / "1h" / "candles.csv"
    assert list(discover_interval_files(tmp_path, "BTCUSDT", exchange="binance")) == ["1d"]
    assert discover_interval_files(tmp_path, "SOLUSDT") == {}
    with pytest.raises(FileNotFoundError):
        discover_interval_files(tmp_path / "missing", "BTCUSDT")
