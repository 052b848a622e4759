"""ADX / DMI 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from algo.factors.atr import true_range
from algo.factors.base import require_columns


@dataclass(frozen=True)
class ADXFactor:
    """平均趋向指数（Wilder 平滑）。

    输出 `{prefix}`（ADX）、`{prefix}_pdi`（+DI）、`{prefix}_mdi`（-DI）。
    """

    period: int = 14
    prefix: str = "adx"
    name: str = "adx"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ValueError("ADX period must be > 0")
        object.__setattr__(self, "params", {"period": self.period, "prefix": self.prefix})

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_columns(df, ("high", "low", "close"), "ADXFactor")
        high = df["high"].astype(float)
        low = df["low"].astype(float)

        up_move = high.diff()
        down_move = -low.diff()
        plus_dm = up_move.where((up_move > down_move) & (up_move > 0), 0.0).fillna(0.0)
        minus_dm = down_move.where((down_move > up_move) & (down_move > 0), 0.0).fillna(0.0)

        alpha = 1.0 / self.period
        smooth = dict(alpha=alpha, adjust=False, min_periods=self.period)
        atr = true_range(df).astype(float).ewm(**smooth).mean()

        with np.errstate(divide="ignore", invalid="ignore"):
            pdi = 100.0 * plus_dm.ewm(**smooth).mean() / atr
            mdi = 100.0 * minus_dm.ewm(**smooth).mean() / atr
            dx = 100.0 * (pdi - mdi).abs() / (pdi + mdi)
        dx = dx.where((pdi + mdi) != 0, 0.0).where(atr.notna())

        df[self.prefix] = dx.ewm(**smooth).mean()
        df[f"{self.prefix}_pdi"] = pdi
        df[f"{self.prefix}_mdi"] = mdi
        return df
