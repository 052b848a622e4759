"""Quantum Scalper：先判行情状态（趋势/震荡），再按各自的评分入场；持仓用 PSAR 跟踪止损。"""

from __future__ import annotations

from typing import Sequence

from algo.factors.adx import ADXFactor
from algo.factors.bollinger import BollingerFactor
from algo.factors.ema import EMAFactor
from algo.factors.psar import PSARFactor
from algo.factors.registry import apply_factors
from algo.factors.stoch_rsi import StochRSIFactor
from shared.config.schema import BotConfig
from shared.models.models import Candle, ManagementSignal, Position, Signal, TradeSignal
from .base import Strategy, is_nan

_MIN_BARS = 50


class QuantumScalperStrategy(Strategy):
    """自适应剥头皮策略。

    - ADX 落在 `adx_threshold ± adx_chop_buffer` 的震荡区：不交易；
    - ADX > adx_threshold（趋势）：EMA 快慢线方向、StochRSI K/D、+DI/-DI 三项计分，
      达到 `trend_score_threshold` 入场；
    - 否则（震荡）：价格越过布林带外轨、StochRSI 超买/超卖两项计分，
      达到 `range_score_threshold` 做反转。

    持仓管理：最新 PSAR 比当前止损更有利、且仍在现价的止损一侧时，上移（下移）止损。
    """

    strategy_id = 9
    name = "Quantum Scalper"
    optimization_ranges = {
        "adx_threshold": [22, 25, 28],
        "stoch_rsi_period": [10, 14, 20],
    }

    def __init__(
        self,
        fast_ema_period: int = 9,
        slow_ema_period: int = 21,
        adx_period: int = 10,
        adx_threshold: float = 20.0,
        adx_chop_buffer: float = 0.0,
        bb_period: int = 20,
        bb_std_dev: float = 2.0,
        stoch_rsi_period: int = 14,
        stoch_rsi_oversold: float = 25.0,
        stoch_rsi_overbought: float = 75.0,
        psar_step: float = 0.02,
        psar_max: float = 0.2,
        trend_score_threshold: int = 3,
        range_score_threshold: int = 2,
        atr_period: int = 14,
    ):
        if fast_ema_period >= slow_ema_period:
            raise ValueError("fast_ema_period must be < slow_ema_period")
        self.fast_ema_period = int(fast_ema_period)
        self.slow_ema_period = int(slow_ema_period)
        self.adx_period = int(adx_period)
        self.adx_threshold = float(adx_threshold)
        self.adx_chop_buffer = float(adx_chop_buffer)
        self.bb_period = int(bb_period)
        self.bb_std_dev = float(bb_std_dev)
        self.stoch_rsi_period = int(stoch_rsi_period)
        self.stoch_rsi_oversold = float(stoch_rsi_oversold)
        self.stoch_rsi_overbought = float(stoch_rsi_overbought)
        self.psar_step = float(psar_step)
        self.psar_max = float(psar_max)
        self.trend_score_threshold = int(trend_score_threshold)
        self.range_score_threshold = int(range_score_threshold)
        self.atr_period = int(atr_period)

    def min_bars(self) -> int:
        return max(_MIN_BARS, self.slow_ema_period, self.bb_period, 2 * self.adx_period, 2 * self.stoch_rsi_period + 6)

    def _evaluate(self, history: Sequence[Candle], timeframe: str, config: BotConfig) -> TradeSignal:
        df = apply_factors(
            self.frame(history),
            [
                EMAFactor(period=self.fast_ema_period, out_col="ema_fast"),
                EMAFactor(period=self.slow_ema_period, out_col="ema_slow"),
                ADXFactor(period=self.adx_period),
                StochRSIFactor(rsi_period=self.stoch_rsi_period, stoch_period=self.stoch_rsi_period),
                BollingerFactor(window=self.bb_period, num_std=self.bb_std_dev),
            ],
        )
        last = df.iloc[-1]
        cols = ("ema_fast", "ema_slow", "adx", "adx_pdi", "adx_mdi", "stoch_rsi", "stoch_rsi_k", "stoch_rsi_d", "bb_lower")
        if any(is_nan(float(last[c])) for c in cols):
            return TradeSignal.hold("Awaiting indicator warm-up")

        adx = float(last["adx"])
        lower_chop = self.adx_threshold - self.adx_chop_buffer
        upper_chop = self.adx_threshold + self.adx_chop_buffer
        if lower_chop < adx < upper_chop:
            return TradeSignal.hold(f"VETO: market is choppy (ADX {adx:.1f} in {lower_chop:g}-{upper_chop:g})")

        if adx > self.adx_threshold:
            return self._trend_signal(last, adx)
        return self._range_signal(last, adx)

    def _trend_signal(self, last, adx: float) -> TradeSignal:
        reasons = [f"Regime: trending (ADX {adx:.1f})"]
        bullish = sum(
            (
                last["ema_fast"] > last["ema_slow"],
                last["stoch_rsi_k"] > last["stoch_rsi_d"],
                last["adx_pdi"] > last["adx_mdi"],
            )
        )
        bearish = sum(
            (
                last["ema_fast"] < last["ema_slow"],
                last["stoch_rsi_k"] < last["stoch_rsi_d"],
                last["adx_mdi"] > last["adx_pdi"],
            )
        )
        reasons.append(f"Bullish score: {bullish}/{self.trend_score_threshold}")
        if bullish >= self.trend_score_threshold:
            return TradeSignal(Signal.BUY, tuple(reasons))
        reasons.append(f"Bearish score: {bearish}/{self.trend_score_threshold}")
        if bearish >= self.trend_score_threshold:
            return TradeSignal(Signal.SELL, tuple(reasons))
        return TradeSignal(Signal.HOLD, tuple(reasons))

    def _range_signal(self, last, adx: float) -> TradeSignal:
        reasons = [f"Regime: ranging (ADX {adx:.1f})"]
        price = float(last["close"])
        stoch = float(last["stoch_rsi"])

        bullish = int(price < last["bb_lower"]) + int(stoch < self.stoch_rsi_oversold)
        reasons.append(f"Reversal buy score: {bullish}/{self.range_score_threshold}")
        if bullish >= self.range_score_threshold:
            return TradeSignal(Signal.BUY, tuple(reasons))

        bearish = int(price > last["bb_upper"]) + int(stoch > self.stoch_rsi_overbought)
        reasons.append(f"Reversal sell score: {bearish}/{self.range_score_threshold}")
        if bearish >= self.range_score_threshold:
            return TradeSignal(Signal.SELL, tuple(reasons))
        return TradeSignal(Signal.HOLD, tuple(reasons))

    def manage(
        self,
        position: Position,
        history: Sequence[Candle],
        current_price: float,
        config: BotConfig,
    ) -> ManagementSignal:
        if len(history) < 2:
            return ManagementSignal()
        df = PSARFactor(step=self.psar_step, max_step=self.psar_max).compute(self.frame(history))
        psar = float(df["psar"].iloc[-1])
        if is_nan(psar):
            return ManagementSignal()
        if position.is_long and position.stop_loss < psar < current_price:
            return ManagementSignal(new_stop_loss=psar, reasons=("Agent PSAR Trail",))
        if not position.is_long and current_price < psar < position.stop_loss:
            return ManagementSignal(new_stop_loss=psar, reasons=("Agent PSAR Trail",))
        return ManagementSignal()
