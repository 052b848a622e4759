"""入场前的收益性校验：最小 R:R 与手续费区间。"""

from __future__ import annotations

from dataclasses import dataclass

from shared.config.schema import BotConfig
from shared.models.models import Direction

MIN_RISK_REWARD_RATIO = 1.5
# 止盈距离至少是往返手续费（折算成价格）的 3 倍
MIN_PROFIT_BUFFER_MULTIPLIER = 3.0


@dataclass(frozen=True)
class ProfitabilityCheck:
    is_valid: bool
    reason: str = ""


def round_trip_fee_in_price(entry_price: float, config: BotConfig) -> float:
    """往返手续费折算到每单位价格上的距离。"""
    if entry_price <= 0 or config.position_value <= 0:
        return 0.0
    size = config.position_value / entry_price
    return config.position_value * config.fee_rate * 2 / size


def validate_trade_profitability(
    entry_price: float,
    stop_loss: float,
    take_profit: float,
    direction: Direction,
    config: BotConfig,
) -> ProfitabilityCheck:
    risk = abs(entry_price - stop_loss)
    reward = (take_profit - entry_price) * direction.sign

    if config.is_min_rr_enabled:
        if risk <= 0:
            return ProfitabilityCheck(False, "VETO: risk distance is zero")
        rr = reward / risk
        if rr < MIN_RISK_REWARD_RATIO:
            return ProfitabilityCheck(
                False, f"VETO: R:R {rr:.2f}:1 below minimum {MIN_RISK_REWARD_RATIO}:1"
            )

    min_distance = round_trip_fee_in_price(entry_price, config) * MIN_PROFIT_BUFFER_MULTIPLIER
    if reward < min_distance:
        return ProfitabilityCheck(
            False,
            f"VETO: take-profit within fee zone (target {reward:.{config.price_precision}f}, "
            f"min {min_distance:.{config.price_precision}f})",
        )
    return ProfitabilityCheck(True, "profitability checks passed")
