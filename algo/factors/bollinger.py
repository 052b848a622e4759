"""布林带因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from algo.factors.base import require_columns


@dataclass(frozen=True)
class BollingerFactor:
    """布林带（总体标准差）。输出 `{prefix}_mid/_upper/_lower`。"""

    window: int = 20
    num_std: float = 2.0
    price_col: str = "close"
    prefix: str = "bb"
    name: str = "bollinger"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.window <= 1:
            raise ValueError("Bollinger window must be > 1")
        object.__setattr__(
            self,
            "params",
            {"window": self.window, "num_std": self.num_std, "price_col": self.price_col, "prefix": self.prefix},
        )

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_columns(df, (self.price_col,), "BollingerFactor")
        roll = df[self.price_col].astype(float).rolling(self.window, min_periods=self.window)
        mid = roll.mean()
        std = roll.std(ddof=0)
        df[f"{self.prefix}_mid"] = mid
        df[f"{self.prefix}_upper"] = mid + self.num_std * std
        df[f"{self.prefix}_lower"] = mid - self.num_std * std
        return df
