"""风险上限层：在策略止损、用户锁定止损与硬性亏损上限之间仲裁。

规则：
- 硬性止损：单笔最大亏损 = 投入资金 × max_stop_loss_percent%，按参考数量换算成价格；
- 主止损：用户锁定时取锁定值，否则取策略建议值；
- 最终止损取两者中更紧的一个（LONG 取高，SHORT 取低）；
- 硬性止损生效且止盈未锁定时，按策略原始 R:R 重新推算止盈。
"""

from __future__ import annotations

from dataclasses import dataclass

from shared.config.schema import BotConfig, RiskMode
from shared.models.models import Direction, StopLossReason
from shared.utils.formatting import fmt_price
from shared.utils.logging import setup_logger

logger = setup_logger("risk-cap")


@dataclass(frozen=True)
class RiskCapResult:
    stop_loss: float
    take_profit: float
    reason: StopLossReason
    hard_cap_stop_loss: float


def reference_size(entry_price: float, config: BotConfig) -> float:
    """仲裁用的参考数量（未做步进裁剪）。"""
    if entry_price <= 0:
        return 0.0
    return config.position_value / entry_price


def _money_to_price_offset(amount: float, entry_price: float, config: BotConfig) -> float:
    size = reference_size(entry_price, config)
    return amount / size if size > 0 else 0.0


def _risk_amount(mode: RiskMode, value: float, config: BotConfig) -> float:
    if mode is RiskMode.PERCENT:
        return config.investment_amount * value / 100.0
    return value


def hard_cap_stop_loss(entry_price: float, direction: Direction, config: BotConfig) -> float:
    max_loss = config.investment_amount * config.max_stop_loss_percent / 100.0
    return entry_price - direction.sign * _money_to_price_offset(max_loss, entry_price, config)


def locked_stop_loss(entry_price: float, direction: Direction, config: BotConfig) -> float:
    loss = _risk_amount(config.stop_loss_mode, config.stop_loss_value, config)
    return entry_price - direction.sign * _money_to_price_offset(loss, entry_price, config)


def locked_take_profit(entry_price: float, direction: Direction, config: BotConfig) -> float:
    profit = _risk_amount(config.take_profit_mode, config.take_profit_value, config)
    return entry_price + direction.sign * _money_to_price_offset(profit, entry_price, config)


def apply_risk_cap(
    entry_price: float,
    direction: Direction,
    proposed_stop_loss: float,
    proposed_take_profit: float,
    config: BotConfig,
) -> RiskCapResult:
    """仲裁最终止损/止盈。

    Parameters
    ----------
    entry_price:
        实际入场价。
    direction:
        持仓方向。
    proposed_stop_loss / proposed_take_profit:
        策略建议的止损/止盈（用于推导原始 R:R）。
    config:
        运行配置（锁定标志、硬性上限百分比、资金与杠杆）。

    Returns
    -------
    RiskCapResult
        最终止损/止盈与止损来源标签（HardCap / AgentLogic）。
    """
    cap = hard_cap_stop_loss(entry_price, direction, config)
    primary = locked_stop_loss(entry_price, direction, config) if config.is_stop_loss_locked else proposed_stop_loss
    take_profit = (
        locked_take_profit(entry_price, direction, config) if config.is_take_profit_locked else proposed_take_profit
    )

    if direction is Direction.LONG:
        overridden = cap > primary
    else:
        overridden = cap < primary

    if not overridden:
        return RiskCapResult(primary, take_profit, StopLossReason.AGENT_LOGIC, cap)

    if not config.is_take_profit_locked:
        original_risk = abs(entry_price - proposed_stop_loss)
        if original_risk > 0:
            rr = abs(proposed_take_profit - entry_price) / original_risk
            take_profit = entry_price + direction.sign * abs(entry_price - cap) * rr

    logger.debug(
        "Hard cap override: %s entry=%s sl %s -> %s tp=%s",
        direction.value,
        fmt_price(entry_price),
        fmt_price(primary),
        fmt_price(cap),
        fmt_price(take_profit),
    )
    return RiskCapResult(cap, take_profit, StopLossReason.HARD_CAP, cap)
