from __future__ import annotations

from typing import Any

import pytest

from algo.factors.psar import PSARFactor
from algo.risk.profit_secure import profit_secure_signal
from algo.risk.targets import MIN_STOP_LOSS_PERCENT, compute_initial_targets
from algo.strategy.base import confirm_with_htf
from algo.strategy.historic_expert import HistoricExpertStrategy
from algo.strategy.market_structure import MarketStructureStrategy, recognize_candle_pattern
from algo.strategy.quantum_scalper import QuantumScalperStrategy
from algo.strategy.registry import build_strategy, get_strategy_cls, registered_strategies
from algo.strategy.sentinel import SentinelStrategy
from engine.lifecycle import PositionLifecycleEngine
from market_data.candles import candles_to_frame
from shared.config.schema import BotConfig, StrategyConfig
from shared.models.models import Candle, Direction, Position, Signal, StopLossReason, TradeSignal


def _cfg(**overrides: Any) -> BotConfig:
    base: dict[str, Any] = {"strategy": StrategyConfig(id=11), "timeframe": "5m"}
    base.update(overrides)
    return BotConfig(**base)


def _series(closes: list[float], volume: float = 1.0) -> list[Candle]:
    return [
        Candle(ts=i * 300_000, open=c, high=c + 0.5, low=c - 0.5, close=c, volume=volume)
        for i, c in enumerate(closes)
    ]


def test_registry_has_builtin_strategies():
    ids = set(registered_strategies())
    assert {7, 9, 11, 14} <= ids
    assert get_strategy_cls(14) is SentinelStrategy
    with pytest.raises(ValueError, match="Unknown strategy id"):
        get_strategy_cls(12345)


def test_build_strategy_filters_unknown_params():
    strat = build_strategy(StrategyConfig(id=11, params={"fast_ema_period": 5, "not_a_param": 1}))
    assert isinstance(strat, HistoricExpertStrategy)
    assert strat.fast_ema_period == 5
    assert "not_a_param" not in strat.params
    assert isinstance(build_strategy({"id": 7, "swing_lookback": 10}), MarketStructureStrategy)
    with pytest.raises(ValueError):
        build_strategy({"fast_ema_period": 5})
    with pytest.raises(ValueError):
        build_strategy({"id": 11, "fast_ema_period": 30, "slow_ema_period": 20})


def test_short_history_holds():
    strat = HistoricExpertStrategy()
    sig = strat.generate(_series([100.0] * 5), "5m", _cfg())
    assert sig.signal is Signal.HOLD
    assert sig.reasons == ("Insufficient data",)


def test_historic_expert_buys_on_bullish_cross_in_uptrend():
    # 先下跌让快线压在慢线下方，再急拉形成金叉
    closes = [100.0 - 0.3 * i for i in range(40)] + [88.0 + 2.0 * i for i in range(1, 30)]
    strat = HistoricExpertStrategy(trend_sma_period=20, fast_ema_period=5, slow_ema_period=15)
    signals = []
    for end in range(strat.min_bars(), len(closes) + 1):
        signals.append(strat.generate(_series(closes[:end]), "5m", _cfg()).signal)
    assert Signal.BUY in signals
    assert Signal.SELL not in signals


def test_sentinel_requires_full_score_by_default():
    closes = [100.0 - 0.2 * i for i in range(60)] + [93.0 + 1.5 * i for i in range(9)]
    quiet = _series(closes, volume=1.0)
    strat = SentinelStrategy()
    quiet_signals = [strat.generate(quiet[:end], "5m", _cfg()).signal for end in range(strat.min_bars(), len(quiet) + 1)]
    assert Signal.BUY not in quiet_signals

    lenient = SentinelStrategy(score_threshold=70)
    lenient_signals = [
        lenient.generate(quiet[:end], "5m", _cfg()).signal for end in range(lenient.min_bars(), len(quiet) + 1)
    ]
    assert Signal.BUY in lenient_signals


def test_sentinel_manage_exits_long_when_overbought():
    closes = [100.0 + 0.5 * i for i in range(80)]
    history = _series(closes)
    pos = Position(
        id=1, pair="BTCUSDT", direction=Direction.LONG, entry_price=100.0, entry_time=0, size=1.0,
        initial_size=1.0, leverage=1.0, invested_amount=100.0, stop_loss=95.0, take_profit=150.0,
        initial_stop_loss=95.0, initial_take_profit=150.0,
    )
    advice = SentinelStrategy().manage(pos, history, closes[-1], _cfg())
    assert advice.close_position
    assert any("overbought" in r for r in advice.reasons)


@pytest.mark.parametrize(
    "candle, prev, expected",
    [
        (Candle(0, open=10.0, high=10.15, low=8.0, close=10.1), None, ("Hammer", "bullish")),
        (Candle(0, open=10.0, high=12.0, low=9.9, close=9.9), None, ("Shooting Star", "bearish")),
        (Candle(1, open=9.0, high=11.5, low=8.9, close=11.0), Candle(0, open=10.5, high=10.6, low=9.4, close=9.5),
         ("Bullish Engulfing", "bullish")),
        (Candle(1, open=11.0, high=11.1, low=8.5, close=9.0), Candle(0, open=9.5, high=10.6, low=9.4, close=10.5),
         ("Bearish Engulfing", "bearish")),
        (Candle(0, open=10.0, high=10.0, low=10.0, close=10.0), None, None),
    ],
)
def test_candle_patterns(candle, prev, expected):
    assert recognize_candle_pattern(candle, prev) == expected


def test_htf_filter_vetoes_counter_trend_signal():
    htf = _series([200.0 - i for i in range(60)])
    history = _series([120.0])
    vetoed = confirm_with_htf(TradeSignal(Signal.BUY, ("entry",)), history, htf, ema_period=20)
    assert vetoed.signal is Signal.HOLD
    assert any("[HTF VETO]" in r for r in vetoed.reasons)

    confirmed = confirm_with_htf(TradeSignal(Signal.SELL, ("entry",)), history, htf, ema_period=20)
    assert confirmed.signal is Signal.SELL
    assert any("[HTF CONFIRMED]" in r for r in confirmed.reasons)


def test_htf_filter_passes_through_with_short_htf_history():
    sig = TradeSignal(Signal.BUY)
    assert confirm_with_htf(sig, _series([100.0]), _series([1.0] * 10), ema_period=20) is sig


def test_initial_targets_fallback_and_minimum_stop():
    fallback = compute_initial_targets(_series([100.0] * 5), 100.0, Direction.LONG, "5m")
    assert fallback.stop_loss == pytest.approx(98.0)
    assert fallback.take_profit == pytest.approx(104.0)

    # 波动极小：ATR 止损距离不足 0.5%，放宽到最小止损
    quiet = [Candle(ts=i, open=100.0, high=100.01, low=99.99, close=100.0) for i in range(60)]
    targets = compute_initial_targets(quiet, 100.0, Direction.SHORT, "5m")
    assert targets.stop_loss == pytest.approx(100.0 * (1 + MIN_STOP_LOSS_PERCENT / 100))
    assert targets.take_profit < 100.0


def test_profit_secure_ignores_losing_position():
    pos = Position(
        id=1, pair="BTCUSDT", direction=Direction.SHORT, entry_price=100.0, entry_time=0, size=1.0,
        initial_size=1.0, leverage=1.0, invested_amount=100.0, stop_loss=105.0, take_profit=90.0,
        initial_stop_loss=105.0, initial_take_profit=90.0,
    )
    assert profit_secure_signal(pos, 101.0, 0.001) is None
    update = profit_secure_signal(pos, 99.3, 0.001)
    assert update is not None
    assert update.new_stop_loss == pytest.approx(99.8)


def _long(entry: float = 120.0, stop: float = 100.0, take: float = 200.0) -> Position:
    return Position(
        id=1, pair="BTCUSDT", direction=Direction.LONG, entry_price=entry, entry_time=0, size=1.0,
        initial_size=1.0, leverage=1.0, invested_amount=100.0, stop_loss=stop, take_profit=take,
        initial_stop_loss=stop, initial_take_profit=take,
    )


def test_quantum_scalper_trend_score():
    history = _series([100.0 + 0.5 * i for i in range(80)])
    # 单边上涨时 StochRSI 的 K/D 持平，只得 2 分
    assert QuantumScalperStrategy().generate(history, "5m", _cfg()).signal is Signal.HOLD
    lenient = QuantumScalperStrategy(trend_score_threshold=2).generate(history, "5m", _cfg())
    assert lenient.signal is Signal.BUY
    assert lenient.reasons[0].startswith("Regime: trending")

    choppy = QuantumScalperStrategy(adx_threshold=100, adx_chop_buffer=5).generate(history, "5m", _cfg())
    assert choppy.signal is Signal.HOLD
    assert "choppy" in choppy.reasons[0]


def test_quantum_scalper_psar_trail_only_moves_forward():
    history = _series([100.0 + 0.5 * i for i in range(80)])
    strat = QuantumScalperStrategy()
    psar = PSARFactor().compute(candles_to_frame(history))["psar"].iloc[-1]

    advice = strat.manage(_long(stop=100.0), history, history[-1].close, _cfg())
    assert advice.new_stop_loss == pytest.approx(psar)
    assert advice.reasons == ("Agent PSAR Trail",)
    assert strat.manage(_long(stop=psar + 1.0), history, history[-1].close, _cfg()).new_stop_loss is None
    # PSAR 在现价之上时不跟随
    assert strat.manage(_long(stop=100.0), history, psar - 1.0, _cfg()).new_stop_loss is None


def test_psar_trail_drives_engine_stop_and_exit():
    history = _series([100.0 + 0.5 * i for i in range(80)])
    engine = PositionLifecycleEngine(_cfg(), QuantumScalperStrategy())
    pos = _long(stop=100.0)
    engine.position = pos
    price = history[-1].close
    ts = 80 * 300_000

    assert engine.on_management_bar(Candle(ts, open=price, high=price + 0.5, low=price - 0.5, close=price), history) is None
    assert pos.active_sl_reason is StopLossReason.AGENT_TRAIL
    assert pos.stop_loss > 100.0

    trade = engine.on_management_bar(
        Candle(ts + 300_000, open=price, high=price, low=pos.stop_loss - 1.0, close=pos.stop_loss - 0.5), history
    )
    assert trade is not None
    assert trade.exit_reason == "Trailing Stop Hit"
    assert trade.stop_loss_reason is StopLossReason.AGENT_TRAIL
