"""The Sentinel：MACD 交叉 + RSI 方向 + 放量确认的动量策略。"""

from __future__ import annotations

from typing import Sequence

from algo.factors.ma import MAFactor
from algo.factors.macd import MACDFactor
from algo.factors.registry import apply_factors
from algo.factors.rsi import RSIFactor
from shared.config.schema import BotConfig
from shared.models.models import Candle, ManagementSignal, Position, Signal, TradeSignal
from .base import Strategy, is_nan

# 评分权重：MACD 交叉为必要条件，其余两项加分
_CROSS_SCORE = 40.0
_RSI_SCORE = 30.0
_VOLUME_SCORE = 30.0


class SentinelStrategy(Strategy):
    """MACD-RSI 动量策略。

    入场：MACD 在最近一根上穿（下穿）信号线，且总分达到 `score_threshold`。
    总分 = 交叉 40 + RSI 在 50 同侧 30 + 成交量 > volume_spike × 均量 30。
    默认阈值 100 即三项全部满足。

    持仓管理：MACD 反向交叉，或 RSI 进入超买（多单）/超卖（空单）区时平仓。
    """

    strategy_id = 14
    name = "The Sentinel"
    optimization_ranges = {
        "score_threshold": [65, 70, 75],
        "volume_period": [10, 14, 20],
    }

    def __init__(
        self,
        macd_fast_period: int = 12,
        macd_slow_period: int = 26,
        macd_signal_period: int = 9,
        rsi_period: int = 14,
        volume_period: int = 20,
        volume_spike: float = 1.5,
        score_threshold: float = 100.0,
        exit_rsi_upper: float = 70.0,
        exit_rsi_lower: float = 30.0,
        atr_period: int = 14,
    ):
        self.macd_fast_period = int(macd_fast_period)
        self.macd_slow_period = int(macd_slow_period)
        self.macd_signal_period = int(macd_signal_period)
        self.rsi_period = int(rsi_period)
        self.volume_period = int(volume_period)
        self.volume_spike = float(volume_spike)
        self.score_threshold = float(score_threshold)
        self.exit_rsi_upper = float(exit_rsi_upper)
        self.exit_rsi_lower = float(exit_rsi_lower)
        self.atr_period = int(atr_period)

    def min_bars(self) -> int:
        return max(self.macd_slow_period + self.macd_signal_period, self.rsi_period, self.volume_period) + 1

    def _indicators(self, history: Sequence[Candle]):
        return apply_factors(
            self.frame(history),
            [
                MACDFactor(
                    fast_period=self.macd_fast_period,
                    slow_period=self.macd_slow_period,
                    signal_period=self.macd_signal_period,
                ),
                RSIFactor(period=self.rsi_period, out_col="rsi"),
                MAFactor(window=self.volume_period, price_col="volume", out_col="volume_ma"),
            ],
        )

    def _evaluate(self, history: Sequence[Candle], timeframe: str, config: BotConfig) -> TradeSignal:
        df = self._indicators(history)
        last, prev = df.iloc[-1], df.iloc[-2]
        if any(is_nan(float(v)) for v in (last["macd"], last["macd_signal"], prev["macd"], prev["macd_signal"], last["rsi"])):
            return TradeSignal.hold("Awaiting MACD calculation")

        rsi = float(last["rsi"])
        volume_ma = float(last["volume_ma"])
        volume_spike = not is_nan(volume_ma) and float(last["volume"]) > volume_ma * self.volume_spike
        bullish_cross = last["macd"] > last["macd_signal"] and prev["macd"] <= prev["macd_signal"]
        bearish_cross = last["macd"] < last["macd_signal"] and prev["macd"] >= prev["macd_signal"]

        if bullish_cross:
            score = _CROSS_SCORE + (_RSI_SCORE if rsi > 50 else 0.0) + (_VOLUME_SCORE if volume_spike else 0.0)
            reasons = ("MACD bullish crossover", f"RSI {rsi:.1f}", f"volume spike: {volume_spike}", f"score {score:g}")
            if score >= self.score_threshold:
                return TradeSignal(Signal.BUY, reasons)
            return TradeSignal(Signal.HOLD, reasons)
        if bearish_cross:
            score = _CROSS_SCORE + (_RSI_SCORE if rsi < 50 else 0.0) + (_VOLUME_SCORE if volume_spike else 0.0)
            reasons = ("MACD bearish crossover", f"RSI {rsi:.1f}", f"volume spike: {volume_spike}", f"score {score:g}")
            if score >= self.score_threshold:
                return TradeSignal(Signal.SELL, reasons)
            return TradeSignal(Signal.HOLD, reasons)
        return TradeSignal.hold("No MACD crossover")

    def manage(
        self,
        position: Position,
        history: Sequence[Candle],
        current_price: float,
        config: BotConfig,
    ) -> ManagementSignal:
        if len(history) < self.min_bars():
            return ManagementSignal()
        df = self._indicators(history)
        last, prev = df.iloc[-1], df.iloc[-2]
        if any(is_nan(float(v)) for v in (last["macd"], last["macd_signal"], prev["macd"], prev["macd_signal"], last["rsi"])):
            return ManagementSignal()

        rsi = float(last["rsi"])
        reasons: list[str] = []
        if position.is_long:
            if last["macd"] < last["macd_signal"] and prev["macd"] >= prev["macd_signal"]:
                reasons.append("Momentum fading: MACD bearish crossover")
            if rsi > self.exit_rsi_upper:
                reasons.append(f"Market overbought: RSI > {self.exit_rsi_upper:g}")
        else:
            if last["macd"] > last["macd_signal"] and prev["macd"] <= prev["macd_signal"]:
                reasons.append("Momentum fading: MACD bullish crossover")
            if rsi < self.exit_rsi_lower:
                reasons.append(f"Market oversold: RSI < {self.exit_rsi_lower:g}")
        return ManagementSignal(close_position=bool(reasons), reasons=tuple(reasons))
