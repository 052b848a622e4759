"""抛物线 SAR 因子。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from algo.factors.base import require_columns


@dataclass(frozen=True)
class PSARFactor:
    """Parabolic SAR（Wilder）。

    从多头假设起步；加速因子每创一次新极值加 step，上限 max_step；
    价格穿越 SAR 时反转，SAR 跳到上一段的极值点。首根 K 线输出 NaN。
    """

    step: float = 0.02
    max_step: float = 0.2
    out_col: str = "psar"
    name: str = "psar"
    params: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.step <= 0 or self.max_step < self.step:
            raise ValueError("PSAR requires 0 < step <= max_step")
        object.__setattr__(
            self,
            "params",
            {"step": self.step, "max_step": self.max_step, "out_col": self.out_col},
        )

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        require_columns(df, ("high", "low"), "PSARFactor")
        highs = df["high"].astype(float).to_list()
        lows = df["low"].astype(float).to_list()
        n = len(highs)
        sar_values: list[float] = [float("nan")] * n
        if n >= 2:
            is_long = True
            sar = lows[0]
            extreme = highs[0]
            af = self.step
            for i in range(1, n):
                sar = sar + af * (extreme - sar)
                if is_long:
                    # SAR 不得高于前两根的最低价
                    sar = min(sar, lows[i - 1], lows[max(i - 2, 0)])
                    if lows[i] < sar:
                        is_long, sar, extreme, af = False, extreme, lows[i], self.step
                    elif highs[i] > extreme:
                        extreme = highs[i]
                        af = min(af + self.step, self.max_step)
                else:
                    sar = max(sar, highs[i - 1], highs[max(i - 2, 0)])
                    if highs[i] > sar:
                        is_long, sar, extreme, af = True, extreme, highs[i], self.step
                    elif lows[i] < extreme:
                        extreme = lows[i]
                        af = min(af + self.step, self.max_step)
                sar_values[i] = sar
        df[self.out_col] = pd.Series(sar_values, index=df.index)
        return df
