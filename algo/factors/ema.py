"""EMA 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from algo.factors.base import require_columns


def ema_series(values: pd.Series, period: int) -> pd.Series:
    """递推 EMA（alpha = 2 / (period + 1)），前 period-1 个值为 NaN。"""
    return values.astype(float).ewm(span=period, adjust=False, min_periods=period).mean()


@dataclass(frozen=True)
class EMAFactor:
    """指数移动平均（EMA）。"""

    period: int = 14
    price_col: str = "close"
    out_col: str | None = None
    name: str = "ema"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("EMA period must be > 0")
        object.__setattr__(
            self,
            "params",
            {"period": self.period, "price_col": self.price_col, "out_col": self.out_col},
        )

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_columns(df, (self.price_col,), "EMAFactor")
        out = self.out_col or f"ema_{self.period}"
        df[out] = ema_series(df[self.price_col], self.period)
        return df
