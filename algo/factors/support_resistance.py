"""支撑/阻力位识别（摆动高低点 + 价格聚类 + 成交量加权打分）。"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence

from shared.models.models import Candle


@dataclass
class _Level:
    price: float
    score: float
    kind: str


@dataclass(frozen=True)
class SupportResistance:
    """按重要性（score）降序排列的价位。"""

    supports: list[float] = field(default_factory=list)
    resistances: list[float] = field(default_factory=list)


def find_support_resistance(
    candles: Sequence[Candle],
    lookback: int = 10,
    threshold_pct: float = 0.0075,
) -> SupportResistance:
    """识别支撑/阻力位。

    Parameters
    ----------
    candles:
        K 线序列（时间升序）。
    lookback:
        摆动点左右各比较的 K 线数量；找到一个摆动点后跳过 lookback 根，避免重复计数。
    threshold_pct:
        同类价位相对距离小于该比例时合并为一个价位（价格按分数加权平均）。

    Returns
    -------
    SupportResistance
        数据不足 `2 * lookback + 1` 根时返回空结果。
    """
    n = len(candles)
    if lookback <= 0 or n < lookback * 2 + 1:
        return SupportResistance()

    pivots: list[tuple[float, str, int]] = []
    i = lookback
    while i < n - lookback:
        window = [candles[j] for j in range(i - lookback, i + lookback + 1)]
        cur = candles[i]
        if cur.high == max(c.high for c in window):
            pivots.append((cur.high, "resistance", i))
            i += lookback
        elif cur.low == min(c.low for c in window):
            pivots.append((cur.low, "support", i))
            i += lookback
        i += 1

    levels: list[_Level] = []
    for price, kind, idx in pivots:
        weight = 1.0 + math.log((candles[idx].volume or 0.0) + 1.0)
        for level in levels:
            if level.kind == kind and abs(level.price - price) / price < threshold_pct:
                level.price = (level.price * level.score + price) / (level.score + 1)
                level.score += weight
                break
        else:
            levels.append(_Level(price=price, score=weight, kind=kind))

    ranked = sorted(levels, key=lambda lv: lv.score, reverse=True)
    return SupportResistance(
        supports=[lv.price for lv in ranked if lv.kind == "support"],
        resistances=[lv.price for lv in ranked if lv.kind == "resistance"],
    )
