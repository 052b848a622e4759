from __future__ import annotations

from typing import Sequence

from algo.risk.exhaustion import ExhaustionVerdict, analyze_trend_exhaustion
from engine.cooldown import CooldownGate
from shared.models.models import Candle, Direction, Signal, StopLossReason, Trade, TradeSignal


def _trade(pnl: float, direction: Direction = Direction.LONG) -> Trade:
    return Trade(
        id=1,
        pair="BTCUSDT",
        direction=direction,
        entry_price=100.0,
        exit_price=100.0 + pnl / 10,
        entry_time=0,
        exit_time=60_000,
        size=10.0,
        leverage=1.0,
        invested_amount=1000.0,
        stop_loss=95.0,
        take_profit=110.0,
        stop_loss_reason=StopLossReason.AGENT_LOGIC,
        pnl=pnl,
        fees=2.0,
        exit_reason="Take Profit Hit",
    )


class _Recorder:
    def __init__(self, veto: bool):
        self.veto = veto
        self.calls: list[Direction] = []

    def __call__(self, history: Sequence[Candle], direction: Direction) -> ExhaustionVerdict:
        self.calls.append(direction)
        return ExhaustionVerdict(self.veto, ("exhausted",) if self.veto else ())


def test_profitable_close_arms_and_same_direction_veto_consumes_state():
    check = _Recorder(veto=True)
    gate = CooldownGate(True, check)
    gate.on_trade_closed(_trade(50.0))
    assert gate.armed_direction is Direction.LONG

    decision = gate.review(TradeSignal(Signal.BUY), [])
    assert not decision.allow
    assert "Cooldown veto: trend exhaustion" in decision.reasons
    assert gate.armed_direction is None

    # 冷却只生效一次
    assert gate.review(TradeSignal(Signal.BUY), []).allow
    assert check.calls == [Direction.LONG]


def test_same_direction_passes_when_not_exhausted():
    check = _Recorder(veto=False)
    gate = CooldownGate(True, check)
    gate.on_trade_closed(_trade(10.0))
    assert gate.review(TradeSignal(Signal.BUY), []).allow
    assert check.calls == [Direction.LONG]


def test_hold_or_opposite_signal_clears_without_check():
    check = _Recorder(veto=True)
    gate = CooldownGate(True, check)
    gate.on_trade_closed(_trade(10.0))
    assert gate.review(TradeSignal.hold(), []).allow
    assert gate.armed_direction is None

    gate.on_trade_closed(_trade(10.0))
    assert gate.review(TradeSignal(Signal.SELL), []).allow
    assert check.calls == []


def test_losing_trade_or_disabled_gate_does_not_arm():
    gate = CooldownGate(True, _Recorder(veto=True))
    gate.on_trade_closed(_trade(-5.0))
    assert gate.armed_direction is None

    disabled = CooldownGate(False, _Recorder(veto=True))
    disabled.on_trade_closed(_trade(50.0))
    assert disabled.armed_direction is None


def _ramp(n: int, step: float) -> list[Candle]:
    out = []
    for i in range(n):
        c = 100.0 + step * i
        out.append(Candle(ts=i * 60_000, open=c - step, high=c + 0.1, low=c - step - 0.1, close=c))
    return out


def test_exhaustion_vetoes_overextended_rally():
    verdict = analyze_trend_exhaustion(_ramp(60, 1.0), Direction.LONG)
    assert verdict.veto
    assert any("RSI overbought" in r for r in verdict.reasons)


def test_exhaustion_allows_with_insufficient_data():
    verdict = analyze_trend_exhaustion(_ramp(5, 1.0), Direction.LONG)
    assert not verdict.veto
