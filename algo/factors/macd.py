"""MACD 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from algo.factors.base import require_columns
from algo.factors.ema import ema_series


@dataclass(frozen=True)
class MACDFactor:
    """MACD：快慢 EMA 差值 + 信号线 + 柱。

    输出列：`{prefix}`、`{prefix}_signal`、`{prefix}_hist`。
    """

    fast_period: int = 12
    slow_period: int = 26
    signal_period: int = 9
    price_col: str = "close"
    prefix: str = "macd"
    name: str = "macd"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if min(self.fast_period, self.slow_period, self.signal_period) <= 0:
            raise ValueError("MACD periods must be > 0")
        if self.fast_period >= self.slow_period:
            raise ValueError("MACD fast_period must be < slow_period")
        object.__setattr__(
            self,
            "params",
            {
                "fast_period": self.fast_period,
                "slow_period": self.slow_period,
                "signal_period": self.signal_period,
                "price_col": self.price_col,
                "prefix": self.prefix,
            },
        )

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_columns(df, (self.price_col,), "MACDFactor")
        line = ema_series(df[self.price_col], self.fast_period) - ema_series(df[self.price_col], self.slow_period)
        # 信号线只从 MACD 有值处开始递推
        signal = line.ewm(span=self.signal_period, adjust=False, min_periods=self.signal_period).mean()
        df[self.prefix] = line
        df[f"{self.prefix}_signal"] = signal
        df[f"{self.prefix}_hist"] = line - signal
        return df
