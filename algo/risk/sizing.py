"""按名义价值计算下单数量。"""

from __future__ import annotations

from dataclasses import dataclass

from shared.config.schema import BotConfig
from shared.utils.precision import floor_to_step, round_to_precision


@dataclass(frozen=True)
class NotionalSizer:
    """数量 = notional / price，先按 step_size 向下取整，再按 quantity_precision 定精度。"""

    notional: float
    step_size: float | None = None
    quantity_precision: int | None = None

    @classmethod
    def from_config(cls, config: BotConfig) -> "NotionalSizer":
        return cls(
            notional=config.position_value,
            step_size=config.step_size,
            quantity_precision=config.quantity_precision,
        )

    def size_for(self, price: float) -> float:
        """返回可下单数量；价格或名义非正时为 0（调用方据此放弃入场）。"""
        if self.notional <= 0 or price <= 0:
            return 0.0
        qty = floor_to_step(self.notional / price, self.step_size)
        return round_to_precision(qty, self.quantity_precision)
