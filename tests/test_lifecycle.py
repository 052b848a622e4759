from __future__ import annotations

from typing import Any, Callable, Sequence

import numpy as np
import pytest

from algo.risk.exhaustion import ExhaustionVerdict
from algo.strategy.base import Strategy
from engine.backtest_engine import run_backtest
from engine.lifecycle import END_OF_BACKTEST, EntryDecision, PositionLifecycleEngine
from shared.config.schema import BotConfig, StrategyConfig
from shared.models.models import (
    AgentTargets,
    Candle,
    Direction,
    ManagementSignal,
    Position,
    Signal,
    StopLossReason,
    TradeSignal,
)

MINUTE = 60_000


class _ScriptedStrategy(Strategy):
    """按信号 K 线的 ts 给出预设信号；目标价固定为入场价的 -5% / +10%。"""

    strategy_id = 900
    name = "scripted"

    def __init__(
        self,
        signals: dict[int, Signal] | None = None,
        *,
        stop_pct: float = 0.05,
        take_pct: float = 0.10,
        partials: tuple[tuple[float, float], ...] = (),
        manage_fn: Callable[[Position, float], ManagementSignal] | None = None,
        every_bar: Signal | None = None,
    ):
        self.signals = signals or {}
        self.stop_pct = stop_pct
        self.take_pct = take_pct
        self.partials = partials
        self.manage_fn = manage_fn
        self.every_bar = every_bar

    def min_bars(self) -> int:
        return 1

    def _evaluate(self, history: Sequence[Candle], timeframe: str, config: BotConfig) -> TradeSignal:
        sig = self.every_bar or self.signals.get(history[-1].ts, Signal.HOLD)
        return TradeSignal(sig, ("scripted",))

    def manage(self, position, history, current_price, config) -> ManagementSignal:
        if self.manage_fn is None:
            return ManagementSignal()
        return self.manage_fn(position, current_price)

    def initial_targets(self, history, entry_price, direction, config) -> AgentTargets:
        sign = direction.sign
        return AgentTargets(
            stop_loss=entry_price * (1 - sign * self.stop_pct),
            take_profit=entry_price * (1 + sign * self.take_pct),
            partial_take_profits=self.partials,
        )


def _config(**overrides: Any) -> BotConfig:
    base: dict[str, Any] = {
        "pair": "BTCUSDT",
        "timeframe": "1m",
        "management_timeframe": None,
        "strategy": StrategyConfig(id=11),
        "investment_amount": 1000,
        "max_stop_loss_percent": 10,
        "min_bars": 5,
        "fee_rate": 0.001,
        "step_size": 0.001,
        "quantity_precision": 3,
    }
    base.update(overrides)
    return BotConfig(**base)


def _flat(n: int, price: float = 100.0) -> list[Candle]:
    return [Candle(ts=i * MINUTE, open=price, high=price, low=price, close=price, volume=1.0) for i in range(n)]


def _with_bar(candles: list[Candle], idx: int, *, high: float | None = None, low: float | None = None,
              close: float | None = None) -> list[Candle]:
    c = candles[idx]
    candles[idx] = Candle(
        ts=c.ts,
        open=c.open,
        high=high if high is not None else c.high,
        low=low if low is not None else c.low,
        close=close if close is not None else c.close,
        volume=c.volume,
    )
    return candles


def test_take_profit_hit_nets_fees():
    primary = _with_bar(_flat(10), 7, high=111.0)
    strat = _ScriptedStrategy({5 * MINUTE: Signal.BUY})
    report = run_backtest(_config(), primary, strategy=strat)

    assert report.total_trades == 1
    t = report.trades[0]
    assert t.direction is Direction.LONG
    assert t.entry_price == pytest.approx(100.0)
    assert t.entry_time == 6 * MINUTE
    assert t.size == pytest.approx(10.0)
    assert t.exit_price == pytest.approx(110.0)
    assert t.exit_time == 7 * MINUTE
    assert t.exit_reason == "Take Profit Hit"
    assert t.fees == pytest.approx(2.1)
    assert t.pnl == pytest.approx(97.9)
    assert report.wins == 1
    assert report.profit_factor == float("inf")


def test_stop_loss_hit():
    primary = _with_bar(_flat(10), 7, low=94.0)
    strat = _ScriptedStrategy({5 * MINUTE: Signal.BUY})
    report = run_backtest(_config(), primary, strategy=strat)

    t = report.trades[0]
    assert t.exit_reason == "Stop Loss Hit"
    assert t.exit_price == pytest.approx(95.0)
    assert t.stop_loss_reason is StopLossReason.AGENT_LOGIC
    assert t.pnl == pytest.approx(-50.0 - 1.0 - 0.95)
    assert report.losses == 1
    assert report.profit_factor == 0.0


def test_stop_loss_wins_when_both_levels_touched_in_one_bar():
    primary = _with_bar(_flat(10), 7, high=111.0, low=94.0)
    strat = _ScriptedStrategy({5 * MINUTE: Signal.BUY})
    report = run_backtest(_config(), primary, strategy=strat)

    assert [t.exit_reason for t in report.trades] == ["Stop Loss Hit"]
    assert report.trades[0].exit_price == pytest.approx(95.0)


def test_short_take_profit():
    primary = _with_bar(_flat(10), 7, low=89.0)
    strat = _ScriptedStrategy({5 * MINUTE: Signal.SELL})
    report = run_backtest(_config(), primary, strategy=strat)

    t = report.trades[0]
    assert t.direction is Direction.SHORT
    assert t.exit_price == pytest.approx(90.0)
    assert t.pnl == pytest.approx(100.0 - 1.0 - 0.9)


def test_history_shorter_than_min_bars_yields_empty_report():
    strat = _ScriptedStrategy(every_bar=Signal.BUY)
    report = run_backtest(_config(min_bars=5), _flat(4), strategy=strat)

    assert report.total_trades == 0
    assert report.trades == []
    assert report.equity_curve == []
    assert report.average_trade_duration == "N/A"


def test_open_position_closed_at_end_of_backtest():
    primary = _flat(10)
    primary[-1] = Candle(ts=9 * MINUTE, open=100.0, high=103.0, low=100.0, close=102.0)
    strat = _ScriptedStrategy({5 * MINUTE: Signal.BUY})
    report = run_backtest(_config(), primary, strategy=strat)

    t = report.trades[-1]
    assert t.exit_reason == END_OF_BACKTEST
    assert t.exit_price == pytest.approx(102.0)
    assert t.exit_time == 9 * MINUTE


def test_equity_curve_has_one_sample_per_processed_bar():
    primary = _flat(12)
    report = run_backtest(_config(min_bars=5), primary, strategy=_ScriptedStrategy())

    assert len(report.equity_curve) == 12 - 5 + 1
    assert [s.ts for s in report.equity_curve] == [i * MINUTE for i in range(4, 12)]
    assert all(s.equity == pytest.approx(10000.0) for s in report.equity_curve)


def test_no_entry_on_bar_that_closed_a_position():
    primary = _with_bar(_flat(12), 7, high=111.0)
    strat = _ScriptedStrategy({5 * MINUTE: Signal.BUY, 7 * MINUTE: Signal.BUY, 8 * MINUTE: Signal.BUY})
    report = run_backtest(_config(), primary, strategy=strat)

    assert len(report.trades) == 2
    first, second = report.trades
    assert first.exit_time == 7 * MINUTE
    assert second.entry_time == 9 * MINUTE
    assert second.exit_reason == END_OF_BACKTEST


def test_at_most_one_position_at_a_time():
    rng = np.random.RandomState(7)
    closes = 100 + np.cumsum(rng.normal(0, 0.8, size=120))
    primary = [
        Candle(ts=i * MINUTE, open=float(c), high=float(c) + 1.0, low=float(c) - 1.0, close=float(c))
        for i, c in enumerate(closes)
    ]
    report = run_backtest(_config(), primary, strategy=_ScriptedStrategy(every_bar=Signal.BUY, stop_pct=0.01,
                                                                          take_pct=0.02))
    assert report.total_trades > 1
    for prev, nxt in zip(report.trades, report.trades[1:]):
        assert nxt.entry_time > prev.exit_time


def test_zero_quantity_skips_entry():
    primary = _flat(10)
    report = run_backtest(_config(investment_amount=0.01), primary, strategy=_ScriptedStrategy(every_bar=Signal.BUY))
    assert report.total_trades == 0


def test_partial_take_profit_then_full_exit():
    primary = _with_bar(_with_bar(_flat(10), 7, high=106.0), 8, high=111.0)
    strat = _ScriptedStrategy({5 * MINUTE: Signal.BUY}, partials=((105.0, 0.5),))
    report = run_backtest(_config(), primary, strategy=strat)

    t = report.trades[0]
    assert t.exit_reason == "Take Profit Hit"
    assert t.size == pytest.approx(10.0)
    assert t.fees == pytest.approx(1.0 + 0.525 + 0.55)
    assert t.pnl == pytest.approx(25.0 + 50.0 - 2.075)


def test_agent_exit_closes_at_management_close():
    primary = _with_bar(_flat(10), 7, high=104.0, close=104.0)

    def _exit_above(position: Position, price: float) -> ManagementSignal:
        if price >= 103.0:
            return ManagementSignal(close_position=True, reasons=("target zone reached",))
        return ManagementSignal()

    strat = _ScriptedStrategy({5 * MINUTE: Signal.BUY}, manage_fn=_exit_above)
    report = run_backtest(_config(), primary, strategy=strat)

    t = report.trades[0]
    assert t.exit_reason == "Agent Exit: target zone reached"
    assert t.exit_price == pytest.approx(104.0)


def test_management_series_drives_exits_inside_primary_bar():
    primary = _flat(10)
    # 5 根 1m 管理 K 线 / 主周期 K 线；主周期本身平盘，止盈只在管理周期出现
    management = [
        Candle(ts=i * MINUTE // 5, open=100.0, high=100.0, low=100.0, close=100.0) for i in range(50)
    ]
    spike = 7 * 5 + 2
    management[spike] = Candle(ts=spike * MINUTE // 5, open=100.0, high=111.0, low=100.0, close=108.0)
    strat = _ScriptedStrategy({5 * MINUTE: Signal.BUY})
    report = run_backtest(_config(), primary, management, strategy=strat)

    t = report.trades[0]
    assert t.exit_reason == "Take Profit Hit"
    assert t.exit_time == spike * MINUTE // 5


def _engine_with_open_long(**cfg: Any) -> tuple[PositionLifecycleEngine, Position]:
    strat = _ScriptedStrategy(
        manage_fn=lambda pos, price: ManagementSignal(new_stop_loss=price - 2.0, reasons=("trail",))
    )
    engine = PositionLifecycleEngine(_config(**cfg), strat)
    decision = EntryDecision(direction=Direction.LONG, signal=TradeSignal(Signal.BUY, ("test",)))
    pos = engine.open_position(decision, 100.0, 0, _flat(10))
    assert pos is not None
    return engine, pos


def test_agent_trailing_stop_only_moves_favorably():
    engine, pos = _engine_with_open_long()
    seen = []
    for i, price in enumerate([101.0, 104.0, 103.0, 106.0, 105.0]):
        engine.on_management_bar(Candle(ts=i, open=price, high=price, low=price, close=price), [])
        seen.append(pos.stop_loss)

    assert seen == [99.0, 102.0, 102.0, 104.0, 104.0]
    assert pos.active_sl_reason is StopLossReason.AGENT_TRAIL


def test_trailing_stop_exit_reason():
    engine, pos = _engine_with_open_long()
    engine.on_management_bar(Candle(ts=1, open=104.0, high=104.0, low=104.0, close=104.0), [])
    trade = engine.on_management_bar(Candle(ts=2, open=103.0, high=103.0, low=101.0, close=101.5), [])

    assert trade is not None
    assert trade.exit_reason == "Trailing Stop Hit"
    assert trade.exit_price == pytest.approx(102.0)
    assert trade.stop_loss_reason is StopLossReason.AGENT_TRAIL


def test_universal_profit_trail_breakeven_then_tier():
    engine = PositionLifecycleEngine(_config(is_universal_profit_trail_enabled=True), _ScriptedStrategy())
    decision = EntryDecision(direction=Direction.LONG, signal=TradeSignal(Signal.BUY))
    pos = engine.open_position(decision, 100.0, 0, _flat(10))

    engine.on_management_bar(Candle(ts=1, open=100.7, high=100.7, low=100.7, close=100.7), [])
    assert pos.is_breakeven_set
    assert pos.stop_loss == pytest.approx(100.2)
    assert pos.active_sl_reason is StopLossReason.UNIVERSAL_TRAIL

    engine.on_management_bar(Candle(ts=2, open=101.1, high=101.1, low=101.1, close=101.1), [])
    assert pos.profit_lock_tier == 5
    assert pos.stop_loss == pytest.approx(100.6)


def test_backtest_is_deterministic():
    from algo.strategy.historic_expert import HistoricExpertStrategy

    rng = np.random.RandomState(42)
    closes = 100 + np.cumsum(rng.normal(0, 1.0, size=500))
    primary = [
        Candle(ts=i * MINUTE, open=float(c), high=float(c) + 0.8, low=float(c) - 0.8, close=float(c),
               volume=float(rng.uniform(1, 10)))
        for i, c in enumerate(closes)
    ]
    cfg = _config(min_bars=50)
    first = run_backtest(cfg, primary, strategy=HistoricExpertStrategy())
    second = run_backtest(cfg, primary, strategy=HistoricExpertStrategy())

    assert first.trades == second.trades
    assert first.to_dict() == second.to_dict()


def test_cooldown_vetoes_first_same_direction_entry_after_profit():
    primary = _with_bar(_flat(16), 7, high=111.0)
    signals = {5 * MINUTE: Signal.BUY, 8 * MINUTE: Signal.BUY, 10 * MINUTE: Signal.BUY}
    checked: list[tuple[int, Direction]] = []

    def _exhausted(history, direction):
        checked.append((history[-1].ts, direction))
        return ExhaustionVerdict(True, ("RSI overbought",))

    report = run_backtest(
        _config(is_cooldown_enabled=True),
        primary,
        strategy=_ScriptedStrategy(signals),
        exhaustion_check=_exhausted,
    )

    assert [t.entry_time for t in report.trades] == [6 * MINUTE, 11 * MINUTE]
    assert report.trades[0].exit_reason == "Take Profit Hit"
    assert report.trades[0].pnl > 0
    # 仅被否决的那一次同向信号触发了衰竭检查
    assert checked == [(8 * MINUTE, Direction.LONG)]
    assert report.trades[1].exit_reason == END_OF_BACKTEST


def test_without_cooldown_same_direction_reentry_is_immediate():
    primary = _with_bar(_flat(16), 7, high=111.0)
    signals = {5 * MINUTE: Signal.BUY, 8 * MINUTE: Signal.BUY}
    report = run_backtest(
        _config(is_cooldown_enabled=False),
        primary,
        strategy=_ScriptedStrategy(signals),
        exhaustion_check=lambda history, direction: ExhaustionVerdict(True),
    )
    assert [t.entry_time for t in report.trades] == [6 * MINUTE, 9 * MINUTE]
