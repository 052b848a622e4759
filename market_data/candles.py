"""K 线工具：周期换算、聚合、CSV 读取与只读窗口。"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Iterable, Iterator, overload

import pandas as pd

from shared.models.models import Candle

_UNIT_MS = {
    "s": 1_000,
    "m": 60_000,
    "h": 3_600_000,
    "d": 86_400_000,
    "w": 604_800_000,
}

_TS_COLUMNS = ("ts", "timestamp", "open_time", "start_ts", "time")


def timeframe_to_ms(timeframe: str) -> int:
    """'15m' -> 900000。

    Raises
    ------
    ValueError
        周期格式非法（单位仅支持 s/m/h/d/w）。
    """
    tf = str(timeframe).strip()
    if len(tf) < 2 or tf[-1] not in _UNIT_MS or not tf[:-1].isdigit():
        raise ValueError(f"invalid timeframe: {timeframe!r}")
    n = int(tf[:-1])
    if n <= 0:
        raise ValueError(f"invalid timeframe: {timeframe!r}")
    return n * _UNIT_MS[tf[-1]]


def aggregate_candles(candles: Iterable[Candle], timeframe: str) -> list[Candle]:
    """把细周期 K 线聚合到更大周期（按开盘时间对齐到周期边界）。

    最后一个桶可能尚未走完，调用方按需丢弃。
    """
    bucket_ms = timeframe_to_ms(timeframe)
    out: list[Candle] = []
    cur: dict | None = None
    for c in candles:
        start = (c.ts // bucket_ms) * bucket_ms
        if cur is None or cur["ts"] != start:
            if cur is not None:
                out.append(Candle(**cur))
            cur = {"ts": start, "open": c.open, "high": c.high, "low": c.low, "close": c.close, "volume": c.volume}
            continue
        cur["high"] = max(cur["high"], c.high)
        cur["low"] = min(cur["low"], c.low)
        cur["close"] = c.close
        cur["volume"] += c.volume
    if cur is not None:
        out.append(Candle(**cur))
    return out


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """转成因子计算用的 DataFrame（列：ts/open/high/low/close/volume）。"""
    return pd.DataFrame(
        {
            "ts": [c.ts for c in candles],
            "open": [c.open for c in candles],
            "high": [c.high for c in candles],
            "low": [c.low for c in candles],
            "close": [c.close for c in candles],
            "volume": [c.volume for c in candles],
        }
    )


def _to_epoch_ms(col: pd.Series) -> pd.Series:
    if pd.api.types.is_numeric_dtype(col):
        values = col.astype("int64")
        # 秒级时间戳统一放大到毫秒
        if len(values) and values.abs().max() < 10**11:
            values = values * 1000
        return values
    parsed = pd.to_datetime(col, utc=True)
    return (parsed - pd.Timestamp(0, tz="UTC")) // pd.Timedelta(milliseconds=1)


def load_candles_csv(path: str | Path) -> list[Candle]:
    """读取 CSV K 线。

    时间列可以是 ts/timestamp/open_time/start_ts/time 之一，支持 ISO 字符串或秒/毫秒时间戳。
    结果按时间升序、时间戳去重。

    Raises
    ------
    FileNotFoundError
        文件不存在。
    ValueError
        缺少时间列或 OHLC 列。
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Candle file not found: {p}")
    df = pd.read_csv(p)
    df.columns = [str(c).strip().lower() for c in df.columns]

    ts_col = next((c for c in _TS_COLUMNS if c in df.columns), None)
    if ts_col is None:
        raise ValueError(f"{p}: missing timestamp column (one of {', '.join(_TS_COLUMNS)})")
    missing = [c for c in ("open", "high", "low", "close") if c not in df.columns]
    if missing:
        raise ValueError(f"{p}: missing columns: {', '.join(missing)}")
    if "volume" not in df.columns:
        df["volume"] = 0.0

    df["ts"] = _to_epoch_ms(df[ts_col])
    df = df.sort_values("ts", kind="mergesort").drop_duplicates(subset="ts", keep="last")
    return [
        Candle(
            ts=int(row.ts),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in df.itertuples(index=False)
    ]


class CandleWindow(Sequence):
    """`candles[:end]` 的只读视图，不复制底层列表。

    回测逐根推进时每根 K 线都要把“截至当前的历史”交给策略，
    直接切片会让整体复杂度退化成 O(n^2) 的拷贝。
    """

    __slots__ = ("_candles", "_end")

    def __init__(self, candles: Sequence[Candle], end: int | None = None):
        self._candles = candles
        n = len(candles)
        self._end = n if end is None else max(0, min(int(end), n))

    def __len__(self) -> int:
        return self._end

    @overload
    def __getitem__(self, index: int) -> Candle: ...

    @overload
    def __getitem__(self, index: slice) -> list[Candle]: ...

    def __getitem__(self, index):
        if isinstance(index, slice):
            start, stop, step = index.indices(self._end)
            return [self._candles[i] for i in range(start, stop, step)]
        i = int(index)
        if i < 0:
            i += self._end
        if i < 0 or i >= self._end:
            raise IndexError("CandleWindow index out of range")
        return self._candles[i]

    def __iter__(self) -> Iterator[Candle]:
        for i in range(self._end):
            yield self._candles[i]

    def tail(self, n: int) -> list[Candle]:
        """最近 n 根（不足则全部）。"""
        return self[max(0, self._end - int(n)):]
