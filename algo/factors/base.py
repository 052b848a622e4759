"""因子（Factors/Features）抽象协议。"""

from __future__ import annotations

from typing import Any, Mapping, Protocol

import pandas as pd


class Factor(Protocol):
    """因子协议：`compute(df) -> df`。

    输入 df 至少包含 open/high/low/close/volume 列；因子只追加/覆盖自己的输出列。
    """

    name: str
    params: Mapping[str, Any]

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        ...


def require_columns(df: pd.DataFrame, cols: tuple[str, ...], owner: str) -> None:
    for col in cols:
        if col not in df.columns:
            raise ValueError(f"{owner} requires column: {col}")
