"""初始止损/止盈推导（ATR 基线 + 支撑阻力位止盈 + 最小止损距离）。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from algo.factors.atr import ATRFactor
from algo.factors.support_resistance import find_support_resistance
from market_data.candles import candles_to_frame
from shared.models.models import AgentTargets, Candle, Direction

# 止损至少离入场价 0.5%
MIN_STOP_LOSS_PERCENT = 0.5
# 计算 ATR / 支撑阻力时只看最近这么多根
TARGET_LOOKBACK_BARS = 300


@dataclass(frozen=True)
class TimeframeRisk:
    atr_multiplier: float
    risk_reward_ratio: float


TIMEFRAME_ATR_CONFIG: dict[str, TimeframeRisk] = {
    "1m": TimeframeRisk(1.5, 1.5),
    "3m": TimeframeRisk(1.5, 1.5),
    "5m": TimeframeRisk(1.8, 1.8),
    "15m": TimeframeRisk(2.0, 2.0),
    "30m": TimeframeRisk(2.0, 2.0),
    "1h": TimeframeRisk(2.2, 2.0),
    "2h": TimeframeRisk(2.5, 2.2),
    "4h": TimeframeRisk(2.5, 2.5),
    "1d": TimeframeRisk(3.0, 3.0),
}


def timeframe_risk(timeframe: str) -> TimeframeRisk:
    return TIMEFRAME_ATR_CONFIG.get(timeframe, TIMEFRAME_ATR_CONFIG["5m"])


def latest_atr(history: Sequence[Candle], period: int) -> float | None:
    if len(history) < period:
        return None
    tail = history[-TARGET_LOOKBACK_BARS:]
    df = ATRFactor(period=period, out_col="atr").compute(candles_to_frame(tail))
    value = df["atr"].iloc[-1]
    return None if value != value else float(value)


def compute_initial_targets(
    history: Sequence[Candle],
    entry_price: float,
    direction: Direction,
    timeframe: str,
    *,
    atr_period: int = 14,
    sr_lookback: int = 15,
) -> AgentTargets:
    """推导入场时的止损/止盈。

    Notes
    -----
    - 数据不足 atr_period 根：固定 2% 止损 / 4% 止盈；
    - 止损 = 入场价 ∓ ATR × 周期倍数；止盈默认按周期 R:R 放大；
    - 若入场价外侧存在阻力（LONG）/支撑（SHORT），止盈改挂在该价位内侧 0.1%；
    - 止损距离不足 0.5% 时放宽到 0.5%。
    """
    sign = direction.sign
    if len(history) < atr_period:
        return AgentTargets(
            stop_loss=entry_price - sign * entry_price * 0.02,
            take_profit=entry_price + sign * entry_price * 0.04,
        )

    cfg = timeframe_risk(timeframe)
    atr = latest_atr(history, atr_period) or entry_price * 0.01
    stop_offset = atr * cfg.atr_multiplier
    stop_loss = entry_price - sign * stop_offset
    take_profit = entry_price + sign * stop_offset * cfg.risk_reward_ratio

    levels = find_support_resistance(history[-TARGET_LOOKBACK_BARS:], sr_lookback)
    if direction is Direction.LONG:
        above = sorted(r for r in levels.resistances if r > entry_price)
        if above and above[0] * 0.999 > entry_price:
            take_profit = above[0] * 0.999
    else:
        below = sorted((s for s in levels.supports if s < entry_price), reverse=True)
        if below and below[0] * 1.001 < entry_price:
            take_profit = below[0] * 1.001

    min_offset = entry_price * MIN_STOP_LOSS_PERCENT / 100.0
    min_safe_stop = entry_price - sign * min_offset
    if direction is Direction.LONG:
        stop_loss = min(stop_loss, min_safe_stop)
    else:
        stop_loss = max(stop_loss, min_safe_stop)

    if (take_profit - entry_price) * sign <= 0:
        take_profit = entry_price + sign * abs(entry_price - stop_loss) * cfg.risk_reward_ratio
    return AgentTargets(stop_loss=stop_loss, take_profit=take_profit)
