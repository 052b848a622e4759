"""StochRSI 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from algo.factors.base import require_columns
from algo.factors.rsi import RSIFactor


@dataclass(frozen=True)
class StochRSIFactor:
    """RSI 在最近 stoch_period 根内的相对位置（0-100），再做 K/D 平滑。

    输出 `{prefix}`（原始 StochRSI）、`{prefix}_k`、`{prefix}_d`。
    区间内 RSI 完全走平时取 50。
    """

    rsi_period: int = 14
    stoch_period: int = 14
    k_period: int = 3
    d_period: int = 3
    price_col: str = "close"
    prefix: str = "stoch_rsi"
    name: str = "stoch_rsi"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if min(self.rsi_period, self.stoch_period, self.k_period, self.d_period) <= 0:
            raise ValueError("StochRSI periods must be > 0")
        object.__setattr__(
            self,
            "params",
            {
                "rsi_period": self.rsi_period,
                "stoch_period": self.stoch_period,
                "k_period": self.k_period,
                "d_period": self.d_period,
                "price_col": self.price_col,
                "prefix": self.prefix,
            },
        )

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_columns(df, (self.price_col,), "StochRSIFactor")
        rsi_col = f"{self.prefix}_rsi"
        df = RSIFactor(period=self.rsi_period, price_col=self.price_col, out_col=rsi_col).compute(df)
        rsi = df[rsi_col]

        lowest = rsi.rolling(self.stoch_period, min_periods=self.stoch_period).min()
        highest = rsi.rolling(self.stoch_period, min_periods=self.stoch_period).max()
        span = highest - lowest
        stoch = (100.0 * (rsi - lowest) / span.where(span != 0)).where(span != 0, 50.0).where(span.notna())

        k = stoch.rolling(self.k_period, min_periods=self.k_period).mean()
        df[self.prefix] = stoch
        df[f"{self.prefix}_k"] = k
        df[f"{self.prefix}_d"] = k.rolling(self.d_period, min_periods=self.d_period).mean()
        return df
