"""Market Structure Maven：EMA 趋势偏向 + 关键支撑/阻力位回踩 + 可选 K 线形态确认。"""

from __future__ import annotations

from typing import Sequence

from algo.factors.atr import ATRFactor
from algo.factors.ema import EMAFactor
from algo.factors.registry import apply_factors
from algo.factors.support_resistance import find_support_resistance
from shared.config.schema import BotConfig
from shared.models.models import Candle, Signal, TradeSignal
from .base import Strategy, is_nan


def recognize_candle_pattern(candle: Candle, prev: Candle | None = None) -> tuple[str, str] | None:
    """识别反转形态，返回 (名称, "bullish"/"bearish")。

    支持：锤子线、射击之星（小实体 + 长影线），以及看涨/看跌吞没。
    """
    body = abs(candle.close - candle.open)
    upper_wick = candle.high - max(candle.open, candle.close)
    lower_wick = min(candle.open, candle.close) - candle.low
    total = candle.high - candle.low
    if total == 0:
        return None

    if body / total < 0.33:
        if lower_wick > body * 2 and upper_wick < body:
            return "Hammer", "bullish"
        if upper_wick > body * 2 and lower_wick < body:
            return "Shooting Star", "bearish"

    if prev is not None and body > abs(prev.close - prev.open):
        if candle.close > candle.open and prev.close < prev.open and candle.close > prev.open and candle.open < prev.close:
            return "Bullish Engulfing", "bullish"
        if candle.close < candle.open and prev.close > prev.open and candle.open > prev.close and candle.close < prev.open:
            return "Bearish Engulfing", "bearish"
    return None


class MarketStructureStrategy(Strategy):
    """结构位策略。

    Parameters
    ----------
    bias_ema_period:
        趋势偏向 EMA 周期；收盘价在其上方只找做多机会，下方只找做空机会。
    swing_lookback:
        摆动高低点识别窗口（同时用于止盈的支撑阻力计算）。
    candle_confirmation:
        是否要求最近一根 K 线出现同向反转形态。
    proximity_atr:
        价格距离最重要的支撑/阻力位不超过 proximity_atr × ATR 才算“到位”。
    """

    strategy_id = 7
    name = "Market Structure Maven"
    optimization_ranges = {
        "bias_ema_period": [50, 80, 120],
        "swing_lookback": [5, 10, 15],
        "candle_confirmation": [False, True],
    }

    def __init__(
        self,
        bias_ema_period: int = 200,
        swing_lookback: int = 5,
        candle_confirmation: bool = False,
        proximity_atr: float = 0.5,
        atr_period: int = 14,
    ):
        self.bias_ema_period = int(bias_ema_period)
        self.swing_lookback = int(swing_lookback)
        self.candle_confirmation = bool(candle_confirmation)
        self.proximity_atr = float(proximity_atr)
        self.atr_period = int(atr_period)
        self.sr_lookback = self.swing_lookback

    def min_bars(self) -> int:
        return max(self.bias_ema_period, self.atr_period)

    def _evaluate(self, history: Sequence[Candle], timeframe: str, config: BotConfig) -> TradeSignal:
        df = apply_factors(
            self.frame(history),
            [
                EMAFactor(period=self.bias_ema_period, out_col="ema_bias"),
                ATRFactor(period=self.atr_period, out_col="atr"),
            ],
        )
        last = df.iloc[-1]
        if is_nan(float(last["ema_bias"])) or is_nan(float(last["atr"])):
            return TradeSignal.hold("Indicators warming up")

        price = float(last["close"])
        bullish = price > float(last["ema_bias"])
        zone = float(last["atr"]) * self.proximity_atr
        levels = find_support_resistance(history[-self.window_size():], self.swing_lookback)
        pattern = recognize_candle_pattern(history[-1], history[-2]) if self.candle_confirmation else None

        reasons = [f"Trend bias: {'bullish' if bullish else 'bearish'}"]
        if bullish and levels.supports:
            near = abs(price - levels.supports[0]) <= zone
            reasons.append("Price in support zone" if near else "Price not near key support")
            if near:
                if not self.candle_confirmation:
                    return TradeSignal(Signal.BUY, tuple(reasons))
                if pattern is not None and pattern[1] == "bullish":
                    return TradeSignal(Signal.BUY, tuple(reasons + [f"Confirmed by {pattern[0]}"]))
                reasons.append("Awaiting bullish candle confirmation")
        elif not bullish and levels.resistances:
            near = abs(price - levels.resistances[0]) <= zone
            reasons.append("Price in resistance zone" if near else "Price not near key resistance")
            if near:
                if not self.candle_confirmation:
                    return TradeSignal(Signal.SELL, tuple(reasons))
                if pattern is not None and pattern[1] == "bearish":
                    return TradeSignal(Signal.SELL, tuple(reasons + [f"Confirmed by {pattern[0]}"]))
                reasons.append("Awaiting bearish candle confirmation")
        return TradeSignal(Signal.HOLD, tuple(reasons))
