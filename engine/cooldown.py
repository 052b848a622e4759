"""盈利平仓后的冷却/否决（post-profit cooldown）。

流程：
- 盈利平仓（净 PnL > 0）且开启冷却：记录该笔方向，进入单次冷却；
- 下一次评估的信号：
  - HOLD 或反向：直接清除冷却，不做检查；
  - 同向：跑一次趋势衰竭检查，否决则本根 K 线视为 HOLD；无论结果都清除冷却。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from algo.risk.exhaustion import ExhaustionCheck, analyze_trend_exhaustion
from shared.models.models import Candle, Direction, Signal, Trade, TradeSignal
from shared.utils.logging import setup_logger

logger = setup_logger("cooldown")


@dataclass(frozen=True)
class CooldownDecision:
    allow: bool
    reasons: tuple[str, ...] = ()


class CooldownGate:
    """单次冷却状态机（归属于单个生命周期引擎）。"""

    def __init__(self, enabled: bool, exhaustion_check: ExhaustionCheck | None = None):
        self.enabled = bool(enabled)
        self._check = exhaustion_check or analyze_trend_exhaustion
        self._direction: Direction | None = None

    @property
    def armed_direction(self) -> Direction | None:
        return self._direction

    def on_trade_closed(self, trade: Trade) -> None:
        if self.enabled and trade.pnl > 0:
            self._direction = trade.direction
            logger.debug("Post-profit cooldown armed: %s", trade.direction.value)

    def review(self, signal: TradeSignal, history: Sequence[Candle]) -> CooldownDecision:
        """评估本根信号是否允许入场；调用即消耗冷却。"""
        armed = self._direction
        if armed is None:
            return CooldownDecision(True)
        self._direction = None

        if signal.signal is Signal.HOLD or signal.signal.direction is not armed:
            return CooldownDecision(True)

        verdict = self._check(history, armed)
        if verdict.veto:
            logger.info("Cooldown veto: %s re-entry blocked (%s)", armed.value, "; ".join(verdict.reasons))
            return CooldownDecision(False, ("Cooldown veto: trend exhaustion", *verdict.reasons))
        return CooldownDecision(True, ("Cooldown check passed",))
