from __future__ import annotations

import pytest

from market_data import CandleWindow, aggregate_candles, load_candles_csv, timeframe_to_ms
from shared.models.models import Candle

MINUTE = 60_000


@pytest.mark.parametrize("tf, ms", [("1m", 60_000), ("15m", 900_000), ("4h", 14_400_000), ("1d", 86_400_000)])
def test_timeframe_to_ms(tf, ms):
    assert timeframe_to_ms(tf) == ms


@pytest.mark.parametrize("tf", ["", "m", "0m", "5x", "1.5h"])
def test_timeframe_to_ms_rejects_invalid(tf):
    with pytest.raises(ValueError):
        timeframe_to_ms(tf)


def test_aggregate_candles_to_larger_timeframe():
    candles = [
        Candle(ts=i * MINUTE, open=10.0 + i, high=11.0 + i, low=9.0 + i, close=10.5 + i, volume=1.0)
        for i in range(10)
    ]
    out = aggregate_candles(candles, "5m")
    assert len(out) == 2
    first = out[0]
    assert first.ts == 0
    assert first.open == 10.0
    assert first.high == 15.0
    assert first.low == 9.0
    assert first.close == 14.5
    assert first.volume == 5.0
    assert out[1].ts == 5 * MINUTE


def test_load_candles_csv_sorts_dedupes_and_scales_seconds(tmp_path):
    path = tmp_path / "btc.csv"
    path.write_text(
        "timestamp,open,high,low,close,volume\n"
        "120,3,3,3,3,1\n"
        "60,2,2,2,2,1\n"
        "60,2.5,2.5,2.5,2.5,1\n"
        "0,1,1,1,1,1\n",
        encoding="utf-8",
    )
    candles = load_candles_csv(path)
    assert [c.ts for c in candles] == [0, 60_000, 120_000]
    assert candles[1].close == 2.5


def test_load_candles_csv_parses_iso_and_defaults_volume(tmp_path):
    path = tmp_path / "eth.csv"
    path.write_text(
        "ts,open,high,low,close\n"
        "2024-01-01T00:00:00Z,1,2,0.5,1.5\n"
        "2024-01-01T00:01:00Z,1.5,2,1,1.8\n",
        encoding="utf-8",
    )
    candles = load_candles_csv(path)
    assert candles[0].ts == 1_704_067_200_000
    assert candles[1].ts - candles[0].ts == MINUTE
    assert candles[0].volume == 0.0


def test_load_candles_csv_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_candles_csv(tmp_path / "missing.csv")
    bad = tmp_path / "bad.csv"
    bad.write_text("ts,open,close\n0,1,1\n", encoding="utf-8")
    with pytest.raises(ValueError, match="missing columns"):
        load_candles_csv(bad)


def test_candle_window_is_a_bounded_view():
    candles = [Candle(ts=i, open=i, high=i, low=i, close=i) for i in range(10)]
    view = CandleWindow(candles, 6)
    assert len(view) == 6
    assert view[-1].ts == 5
    assert [c.ts for c in view[-3:]] == [3, 4, 5]
    assert [c.ts for c in view.tail(2)] == [4, 5]
    assert [c.ts for c in view] == list(range(6))
    with pytest.raises(IndexError):
        view[6]
