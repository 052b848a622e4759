"""策略（Signal Generator）抽象基类。

契约：
- `generate(history, timeframe, config, htf_history)` -> TradeSignal
- `manage(position, history, current_price, config)` -> ManagementSignal
- `initial_targets(history, entry_price, direction, config)` -> AgentTargets

三个方法对输入都是纯函数：策略实例只持有参数，不在调用之间保存状态，
因此同一实例可以在回测与实盘会话间复用。
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Sequence

import pandas as pd

from algo.factors.ema import ema_series
from algo.risk.targets import compute_initial_targets
from market_data.candles import candles_to_frame
from shared.config.schema import BotConfig
from shared.models.models import (
    AgentTargets,
    Candle,
    Direction,
    ManagementSignal,
    Position,
    Signal,
    TradeSignal,
)


def is_nan(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def confirm_with_htf(
    signal: TradeSignal,
    history: Sequence[Candle],
    htf_history: Sequence[Candle] | None,
    ema_period: int,
) -> TradeSignal:
    """大周期趋势确认：当前价与大周期 EMA 方向相反的信号改为 HOLD。

    大周期数据不足（<= ema_period 根）时不做判断，原样放行。
    """
    direction = signal.signal.direction
    if direction is None or not htf_history or len(htf_history) <= ema_period or not history:
        return signal
    closes = pd.Series([c.close for c in htf_history[-ema_period * 4:]], dtype=float)
    htf_ema = ema_series(closes, ema_period).iloc[-1]
    if is_nan(htf_ema):
        return signal

    price = history[-1].close
    bullish, bearish = price > htf_ema, price < htf_ema
    if bearish and direction is Direction.LONG:
        return TradeSignal.hold(*signal.reasons, f"[HTF VETO] LONG against bearish HTF trend (price < EMA{ema_period})")
    if bullish and direction is Direction.SHORT:
        return TradeSignal.hold(*signal.reasons, f"[HTF VETO] SHORT against bullish HTF trend (price > EMA{ema_period})")
    trend = "bullish" if bullish else "bearish"
    return TradeSignal(
        signal=signal.signal,
        reasons=(*signal.reasons, f"[HTF CONFIRMED] aligned with {trend} HTF trend"),
        entry_price_hint=signal.entry_price_hint,
        stop_loss=signal.stop_loss,
        take_profit=signal.take_profit,
    )


class Strategy(ABC):
    """策略基类。

    子类需要声明：
    - `strategy_id` / `name`：注册用的数字 id 与展示名；
    - `optimization_ranges`：可扫参数的默认离散取值（为空表示不支持扫参）；
    - `min_bars()`：产生信号所需的最少 K 线数；
    - `_evaluate()`：核心信号逻辑（HTF 过滤由基类统一处理）。
    """

    strategy_id: ClassVar[int] = 0
    name: ClassVar[str] = "base"
    optimization_ranges: ClassVar[dict[str, list[Any]]] = {}

    atr_period: int = 14
    sr_lookback: int = 15

    @property
    def params(self) -> dict[str, Any]:
        return {k: v for k, v in vars(self).items() if not k.startswith("_")}

    def min_bars(self) -> int:
        return 2

    def window_size(self) -> int:
        """指标计算只取最近这么多根，避免每根 K 线都对全量历史重算。"""
        return max(3 * self.min_bars(), 250)

    def frame(self, history: Sequence[Candle]) -> pd.DataFrame:
        return candles_to_frame(history[-self.window_size():])

    def generate(
        self,
        history: Sequence[Candle],
        timeframe: str,
        config: BotConfig,
        htf_history: Sequence[Candle] | None = None,
    ) -> TradeSignal:
        if len(history) < self.min_bars():
            return TradeSignal.hold("Insufficient data")
        signal = self._evaluate(history, timeframe, config)
        if signal.signal is Signal.HOLD or not config.is_htf_confirmation_enabled:
            return signal
        return confirm_with_htf(signal, history, htf_history, config.htf_ema_period)

    @abstractmethod
    def _evaluate(self, history: Sequence[Candle], timeframe: str, config: BotConfig) -> TradeSignal:
        raise NotImplementedError

    def manage(
        self,
        position: Position,
        history: Sequence[Candle],
        current_price: float,
        config: BotConfig,
    ) -> ManagementSignal:
        return ManagementSignal()

    def initial_targets(
        self,
        history: Sequence[Candle],
        entry_price: float,
        direction: Direction,
        config: BotConfig,
    ) -> AgentTargets:
        return compute_initial_targets(
            history,
            entry_price,
            direction,
            config.timeframe,
            atr_period=self.atr_period,
            sr_lookback=self.sr_lookback,
        )
