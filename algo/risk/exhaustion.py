"""趋势衰竭检查（冷却期内同向再入场的否决依据）。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

from algo.factors.atr import ATRFactor
from algo.factors.ema import EMAFactor
from algo.factors.registry import apply_factors
from algo.factors.rsi import RSIFactor
from market_data.candles import candles_to_frame
from shared.models.models import Candle, Direction


@dataclass(frozen=True)
class ExhaustionVerdict:
    veto: bool
    reasons: tuple[str, ...] = ()


ExhaustionCheck = Callable[[Sequence[Candle], Direction], ExhaustionVerdict]


def analyze_trend_exhaustion(
    history: Sequence[Candle],
    direction: Direction,
    *,
    rsi_period: int = 14,
    ema_period: int = 20,
    atr_period: int = 14,
    rsi_upper: float = 70.0,
    rsi_lower: float = 30.0,
    max_atr_extension: float = 2.5,
) -> ExhaustionVerdict:
    """判断 direction 方向的趋势是否已经衰竭。

    任一条件成立即否决：
    - RSI 已处于该方向的极值区（LONG > rsi_upper，SHORT < rsi_lower）；
    - 收盘价偏离 EMA 超过 max_atr_extension 倍 ATR（追涨/追跌过远）。

    数据不足时不否决。
    """
    need = max(rsi_period, ema_period, atr_period) + 1
    if len(history) < need:
        return ExhaustionVerdict(False, ("insufficient data for exhaustion check",))

    df = apply_factors(
        candles_to_frame(history[-need * 5:]),
        [
            RSIFactor(period=rsi_period, out_col="rsi"),
            EMAFactor(period=ema_period, out_col="ema"),
            ATRFactor(period=atr_period, out_col="atr"),
        ],
    )
    last = df.iloc[-1]
    rsi, ema, atr, close = float(last["rsi"]), float(last["ema"]), float(last["atr"]), float(last["close"])

    reasons: list[str] = []
    if direction is Direction.LONG and rsi > rsi_upper:
        reasons.append(f"RSI overbought ({rsi:.1f} > {rsi_upper:g})")
    if direction is Direction.SHORT and rsi < rsi_lower:
        reasons.append(f"RSI oversold ({rsi:.1f} < {rsi_lower:g})")
    if atr > 0:
        extension = (close - ema) * direction.sign / atr
        if extension > max_atr_extension:
            reasons.append(f"price extended {extension:.2f} ATR from EMA{ema_period}")
    return ExhaustionVerdict(bool(reasons), tuple(reasons))
