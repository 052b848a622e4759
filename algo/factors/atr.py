"""ATR 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from algo.factors.base import require_columns


def true_range(df: pd.DataFrame, high_col: str = "high", low_col: str = "low", close_col: str = "close") -> pd.Series:
    prev_close = df[close_col].shift(1)
    tr1 = df[high_col] - df[low_col]
    tr2 = (df[high_col] - prev_close).abs()
    tr3 = (df[low_col] - prev_close).abs()
    return pd.concat([tr1, tr2, tr3], axis=1).max(axis=1)


@dataclass(frozen=True)
class ATRFactor:
    """平均真实波幅（ATR，Wilder 平滑，首个值为前 period 根 TR 的均值）。"""

    period: int = 14
    high_col: str = "high"
    low_col: str = "low"
    close_col: str = "close"
    out_col: str | None = None
    name: str = "atr"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("ATR period must be > 0")
        object.__setattr__(
            self,
            "params",
            {
                "period": self.period,
                "high_col": self.high_col,
                "low_col": self.low_col,
                "close_col": self.close_col,
                "out_col": self.out_col,
            },
        )

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_columns(df, (self.high_col, self.low_col, self.close_col), "ATRFactor")
        out = self.out_col or f"atr_{self.period}"

        tr = true_range(df, self.high_col, self.low_col, self.close_col).astype(float)
        values = tr.to_list()
        atr: list[float] = [float("nan")] * len(values)
        if len(values) >= self.period:
            seed = sum(values[: self.period]) / self.period
            atr[self.period - 1] = seed
            prev = seed
            for i in range(self.period, len(values)):
                prev = (prev * (self.period - 1) + values[i]) / self.period
                atr[i] = prev
        df[out] = pd.Series(atr, index=df.index)
        return df
