"""通用利润保护（按手续费倍数分级上移止损）。

1. 浮盈达到往返手续费的 3 倍：止损移到“保本 + 1 倍手续费”；
2. 之后浮盈每达到新的整数倍 N（N >= 4）：止损锁定 N-2 倍手续费的利润。
止损只会朝有利方向移动。
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from shared.models.models import Position

BREAKEVEN_FEE_MULTIPLE = 3
TIER_START_FEE_MULTIPLE = 4


@dataclass(frozen=True)
class ProfitSecureUpdate:
    new_stop_loss: float
    is_breakeven_set: bool
    profit_lock_tier: int
    reason: str


def profit_secure_signal(position: Position, current_price: float, fee_rate: float) -> ProfitSecureUpdate | None:
    """计算利润保护止损；无需调整时返回 None。"""
    if position.size <= 0 or fee_rate <= 0:
        return None
    # 往返手续费 / 数量 = 每单位价格上的手续费
    fee_in_price = position.entry_price * fee_rate * 2
    gross = (current_price - position.entry_price) * position.direction.sign
    if gross <= 0:
        return None
    multiple = gross / fee_in_price

    if not position.is_breakeven_set:
        if multiple < BREAKEVEN_FEE_MULTIPLE:
            return None
        breakeven = position.entry_price + position.direction.sign * fee_in_price
        if position.is_more_favorable_stop(breakeven):
            return ProfitSecureUpdate(
                new_stop_loss=breakeven,
                is_breakeven_set=True,
                profit_lock_tier=BREAKEVEN_FEE_MULTIPLE,
                reason="Profit Secure: breakeven set at 3x fee gain",
            )

    if multiple >= TIER_START_FEE_MULTIPLE:
        trigger = math.floor(multiple)
        if trigger > position.profit_lock_tier:
            lock = trigger - 2
            stop = position.entry_price + position.direction.sign * fee_in_price * lock
            if position.is_more_favorable_stop(stop):
                return ProfitSecureUpdate(
                    new_stop_loss=stop,
                    is_breakeven_set=True,
                    profit_lock_tier=trigger,
                    reason=f"Profit Secure: tier {lock} locked at {trigger}x fee gain",
                )
    return None
