"""Historic Expert：SMA 趋势 + EMA 交叉触发 + RSI 中线确认。"""

from __future__ import annotations

from typing import Sequence

from algo.factors.ema import EMAFactor
from algo.factors.ma import MAFactor
from algo.factors.registry import apply_factors
from algo.factors.rsi import RSIFactor
from shared.config.schema import BotConfig
from shared.models.models import Candle, Signal, TradeSignal
from .base import Strategy, is_nan


class HistoricExpertStrategy(Strategy):
    """趋势跟随型策略。

    Parameters
    ----------
    trend_sma_period:
        趋势判定 SMA 周期（收盘价在 SMA 上方为多头趋势）。
    fast_ema_period / slow_ema_period:
        触发用的快慢 EMA，需在最近一根发生交叉。
    rsi_period / rsi_midline:
        动量确认：做多要求 RSI 高于中线，做空要求低于中线。
    """

    strategy_id = 11
    name = "Historic Expert"
    optimization_ranges = {
        "trend_sma_period": [20, 30, 40],
        "fast_ema_period": [7, 9, 12],
        "slow_ema_period": [20, 25],
        "rsi_period": [10, 14],
        "rsi_midline": [48, 50, 52],
    }

    def __init__(
        self,
        trend_sma_period: int = 30,
        fast_ema_period: int = 9,
        slow_ema_period: int = 21,
        rsi_period: int = 14,
        rsi_midline: float = 50.0,
        atr_period: int = 14,
    ):
        if fast_ema_period >= slow_ema_period:
            raise ValueError("fast_ema_period must be < slow_ema_period")
        self.trend_sma_period = int(trend_sma_period)
        self.fast_ema_period = int(fast_ema_period)
        self.slow_ema_period = int(slow_ema_period)
        self.rsi_period = int(rsi_period)
        self.rsi_midline = float(rsi_midline)
        self.atr_period = int(atr_period)

    def min_bars(self) -> int:
        # +1：交叉判断需要上一根的 EMA
        return max(self.trend_sma_period, self.slow_ema_period, self.rsi_period) + 1

    def _evaluate(self, history: Sequence[Candle], timeframe: str, config: BotConfig) -> TradeSignal:
        df = apply_factors(
            self.frame(history),
            [
                MAFactor(window=self.trend_sma_period, out_col="trend_sma"),
                EMAFactor(period=self.fast_ema_period, out_col="ema_fast"),
                EMAFactor(period=self.slow_ema_period, out_col="ema_slow"),
                RSIFactor(period=self.rsi_period, out_col="rsi"),
            ],
        )
        last, prev = df.iloc[-1], df.iloc[-2]
        values = (last["trend_sma"], last["ema_fast"], last["ema_slow"], prev["ema_fast"], prev["ema_slow"], last["rsi"])
        if any(is_nan(float(v)) for v in values):
            return TradeSignal.hold("Indicators warming up")

        price = float(last["close"])
        rsi = float(last["rsi"])
        bullish_trend = price > last["trend_sma"]
        bearish_trend = price < last["trend_sma"]
        bullish_cross = last["ema_fast"] > last["ema_slow"] and prev["ema_fast"] <= prev["ema_slow"]
        bearish_cross = last["ema_fast"] < last["ema_slow"] and prev["ema_fast"] >= prev["ema_slow"]

        reasons = [
            f"Trend: {'bullish' if bullish_trend else 'bearish'} vs SMA{self.trend_sma_period}",
            "Trigger: bullish EMA crossover" if bullish_cross
            else "Trigger: bearish EMA crossover" if bearish_cross
            else "Trigger: no EMA crossover",
            f"Momentum: RSI {rsi:.1f}",
        ]
        if bullish_trend and bullish_cross and rsi > self.rsi_midline:
            return TradeSignal(Signal.BUY, tuple(reasons + [f"RSI > {self.rsi_midline:g}"]))
        if bearish_trend and bearish_cross and rsi < self.rsi_midline:
            return TradeSignal(Signal.SELL, tuple(reasons + [f"RSI < {self.rsi_midline:g}"]))
        return TradeSignal(Signal.HOLD, tuple(reasons))
