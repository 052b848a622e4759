"""持仓生命周期引擎（FLAT <-> OPEN 状态机）。

职责：
- 主周期收盘评估信号、冷却/否决，下一根开盘价入场；
- 管理周期（更细的 K 线）逐根检查止损/分批止盈/止盈，再做主动管理（利润保护、策略 manage）；
- 计算手续费与净 PnL，输出 Trade 列表与权益曲线。

同一套方法既被 `run()` 批量驱动（回测），也被 `LiveSession` 逐根推送驱动（实盘/模拟盘）。

撮合约定（单一口径）：
- 同一根管理 K 线内止损与止盈/分批止盈同时触及：按止损先成交；
- 止损按止损价成交，不模拟滑点；
- 分批止盈只减仓，不改变止损，也不触发硬性止损重算；
- 同一根主周期 K 线内已发生平仓，则该根收盘不再开新仓。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Sequence

from algo.risk.exhaustion import ExhaustionCheck
from algo.risk.profit_secure import profit_secure_signal
from algo.risk.profitability import validate_trade_profitability
from algo.risk.risk_cap import RiskCapResult, apply_risk_cap
from algo.risk.sizing import NotionalSizer
from algo.strategy.base import Strategy
from engine.cooldown import CooldownGate
from market_data.candles import CandleWindow, timeframe_to_ms
from shared.config.schema import BotConfig
from shared.models.models import (
    Candle,
    Direction,
    EquitySample,
    PartialTakeProfit,
    Position,
    Signal,
    StopLossReason,
    Trade,
    TradeSignal,
)
from shared.utils.formatting import fmt_price
from shared.utils.logging import setup_logger
from shared.utils.precision import round_to_precision

logger = setup_logger("lifecycle")

END_OF_BACKTEST = "End of backtest"

# (side, quantity, reference_price) -> 实际成交均价；抛异常即放弃本次操作
FillExecutor = Callable[[Signal, float, float], float]


@dataclass(frozen=True)
class EntryDecision:
    direction: Direction
    signal: TradeSignal
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class _EntryPlan:
    proposed_stop_loss: float
    proposed_take_profit: float
    partial_take_profits: tuple[tuple[float, float], ...]
    capped: RiskCapResult


@dataclass
class LifecycleResult:
    trades: list[Trade] = field(default_factory=list)
    equity_curve: list[EquitySample] = field(default_factory=list)


def _side_for(direction: Direction, closing: bool) -> Signal:
    opening = Signal.BUY if direction is Direction.LONG else Signal.SELL
    if not closing:
        return opening
    return Signal.SELL if opening is Signal.BUY else Signal.BUY


class PositionLifecycleEngine:
    """单次运行的生命周期引擎；持仓对象只由本引擎修改。

    Parameters
    ----------
    config:
        运行配置（运行期间不可变）。
    strategy:
        信号生成器。
    exhaustion_check:
        冷却期同向再入场的衰竭检查，缺省使用 `analyze_trend_exhaustion`。
    executor:
        实盘下单回调；为空时按理论价成交（回测）。
    """

    def __init__(
        self,
        config: BotConfig,
        strategy: Strategy,
        *,
        exhaustion_check: ExhaustionCheck | None = None,
        executor: FillExecutor | None = None,
    ):
        self.config = config
        self.strategy = strategy
        self.cooldown = CooldownGate(config.is_cooldown_enabled, exhaustion_check)
        self.sizer = NotionalSizer.from_config(config)
        self._executor = executor

        self.position: Position | None = None
        self.trades: list[Trade] = []
        self.equity_curve: list[EquitySample] = []
        self.realized_equity = float(config.starting_capital)
        self._next_id = 1
        self._closed_this_bar = False

    @property
    def is_open(self) -> bool:
        return self.position is not None

    # ------------------------------------------------------------------
    # 增量接口
    # ------------------------------------------------------------------
    def begin_bar(self) -> None:
        """新的主周期 K 线开始：重置“本根已平仓”标记。"""
        self._closed_this_bar = False

    def on_management_bar(self, candle: Candle, history: Sequence[Candle]) -> Trade | None:
        """处理一根管理周期 K 线；若平仓返回 Trade。

        history 为截至当前主周期 K 线之前的已收盘主周期历史（不含当前未走完的一根）。
        """
        pos = self.position
        if pos is None:
            return None

        if self._touched(pos, pos.stop_loss, candle, against=True):
            reason = "Trailing Stop Hit" if pos.active_sl_reason.is_trail else "Stop Loss Hit"
            return self.close_position(pos.stop_loss, candle.ts, reason)

        for rung in pos.partial_take_profits:
            if rung.hit or not self._touched(pos, rung.price, candle, against=False):
                continue
            self._fill_partial(pos, rung)
            rung.hit = True
            if pos.size <= 0:
                return self._finalize(pos, rung.price, candle.ts, "Take Profit Hit")

        if self._touched(pos, pos.take_profit, candle, against=False):
            return self.close_position(pos.take_profit, candle.ts, "Take Profit Hit")

        return self._manage(pos, candle, history)

    def evaluate_entry(
        self,
        history: Sequence[Candle],
        htf_history: Sequence[Candle] | None = None,
    ) -> EntryDecision | None:
        """主周期收盘时评估入场；返回 None 表示本根不开仓。"""
        if self.position is not None or self._closed_this_bar:
            return None
        signal = self.strategy.generate(history, self.config.timeframe, self.config, htf_history)
        verdict = self.cooldown.review(signal, history)
        direction = signal.signal.direction
        if direction is None or not verdict.allow:
            return None
        return EntryDecision(direction=direction, signal=signal, reasons=signal.reasons + verdict.reasons)

    def open_position(
        self,
        decision: EntryDecision,
        fill_price: float,
        fill_ts: int,
        history: Sequence[Candle],
    ) -> Position | None:
        """按 fill_price 开仓；数量为 0、目标价无效或收益性校验不通过时放弃（返回 None）。

        实盘模式下先按参考价 fill_price 完成全部校验，通过后才下单；
        实际成交价与参考价不同时，止损/止盈/分批止盈整体平移到成交价后再过一次风险上限。
        """
        if self.position is not None:
            return None
        size = self.sizer.size_for(fill_price)
        if size <= 0:
            logger.debug("Skip entry: size <= 0 at price %s", fmt_price(fill_price))
            return None

        direction = decision.direction
        plan = self._plan_entry(decision, fill_price, history)
        if plan is None:
            return None

        if self._executor is not None:
            reference = fill_price
            fill_price = self._executor(_side_for(direction, closing=False), size, reference)
            if fill_price != reference:
                plan = self._rebase_plan(plan, reference, fill_price, direction)
        capped = plan.capped

        self.position = Position(
            id=self._next_id,
            pair=self.config.pair,
            direction=direction,
            entry_price=fill_price,
            entry_time=fill_ts,
            size=size,
            initial_size=size,
            leverage=self.config.leverage if self.config.is_futures else 1.0,
            invested_amount=self.config.investment_amount,
            stop_loss=capped.stop_loss,
            take_profit=capped.take_profit,
            initial_stop_loss=capped.stop_loss,
            initial_take_profit=capped.take_profit,
            active_sl_reason=capped.reason,
            hard_cap_stop_loss=capped.hard_cap_stop_loss,
            partial_take_profits=[PartialTakeProfit(price=p, fraction=f) for p, f in plan.partial_take_profits],
            entry_reason="; ".join(decision.reasons),
            fees_paid=fill_price * size * self.config.fee_rate,
        )
        self._next_id += 1
        logger.debug(
            "Open %s #%d entry=%s size=%s sl=%s (%s) tp=%s",
            direction.value,
            self.position.id,
            fmt_price(fill_price),
            size,
            fmt_price(capped.stop_loss),
            capped.reason.value,
            fmt_price(capped.take_profit),
        )
        return self.position

    def close_position(self, price: float, ts: int, reason: str) -> Trade | None:
        pos = self.position
        if pos is None:
            return None
        if self._executor is not None:
            price = self._executor(_side_for(pos.direction, closing=True), pos.size, price)
        pos.realized_pnl += pos.unrealized_pnl(price)
        pos.fees_paid += price * pos.size * self.config.fee_rate
        pos.size = 0.0
        return self._finalize(pos, price, ts, reason)

    def mark_to_market(self, ts: int, price: float) -> EquitySample:
        equity = self.realized_equity
        pos = self.position
        if pos is not None:
            equity += pos.realized_pnl - pos.fees_paid + pos.unrealized_pnl(price)
        sample = EquitySample(ts=ts, equity=equity)
        self.equity_curve.append(sample)
        return sample

    # ------------------------------------------------------------------
    # 批量回测
    # ------------------------------------------------------------------
    def run(
        self,
        primary: Sequence[Candle],
        management: Sequence[Candle] | None = None,
        htf: Sequence[Candle] | None = None,
    ) -> LifecycleResult:
        """逐根推进整段历史。

        第 i 轮（i 从 min_bars 到 n）：
        1. 信号 K 线为 primary[i-1]，先消费落在该 K 线内的管理周期 K 线；
        2. 以 primary[i-1] 收盘价记录一个权益点；
        3. i < n 时评估入场，以 primary[i] 开盘价成交。
        结束时仍持仓则按最后一根收盘价强平（"End of backtest"）。
        """
        n = len(primary)
        if n < self.config.min_bars:
            logger.info("History too short: %d < min_bars=%d, nothing to simulate", n, self.config.min_bars)
            return LifecycleResult()

        ticks = management if management else primary
        htf = htf or []
        htf_ms = self._htf_interval_ms(htf)

        m_idx = 0
        h_idx = 0
        for i in range(self.config.min_bars, n + 1):
            self.begin_bar()
            signal_bar = primary[i - 1]
            bar_end = primary[i].ts if i < n else None
            closed_history = CandleWindow(primary, i - 1)

            while m_idx < len(ticks) and (bar_end is None or ticks[m_idx].ts < bar_end):
                tick = ticks[m_idx]
                m_idx += 1
                if tick.ts >= signal_bar.ts and self.position is not None:
                    self.on_management_bar(tick, closed_history)

            self.mark_to_market(signal_bar.ts, signal_bar.close)
            if bar_end is None or self.position is not None:
                continue

            while h_idx < len(htf) and htf[h_idx].ts + htf_ms <= bar_end:
                h_idx += 1
            history = CandleWindow(primary, i)
            decision = self.evaluate_entry(history, CandleWindow(htf, h_idx) if htf else None)
            if decision is not None:
                self.open_position(decision, primary[i].open, primary[i].ts, history)

        if self.position is not None:
            self.close_position(primary[-1].close, primary[-1].ts, END_OF_BACKTEST)
        return LifecycleResult(trades=list(self.trades), equity_curve=list(self.equity_curve))

    # ------------------------------------------------------------------
    # 内部
    # ------------------------------------------------------------------
    def _plan_entry(self, decision: EntryDecision, price: float, history: Sequence[Candle]) -> _EntryPlan | None:
        direction = decision.direction
        targets = self.strategy.initial_targets(history, price, direction, self.config)
        proposed_sl = decision.signal.stop_loss if decision.signal.stop_loss is not None else targets.stop_loss
        proposed_tp = decision.signal.take_profit if decision.signal.take_profit is not None else targets.take_profit
        capped = apply_risk_cap(price, direction, proposed_sl, proposed_tp, self.config)

        sign = direction.sign
        if (price - capped.stop_loss) * sign <= 0 or (capped.take_profit - price) * sign <= 0:
            logger.debug(
                "Skip entry: targets on wrong side of fill (entry=%s sl=%s tp=%s)",
                fmt_price(price),
                fmt_price(capped.stop_loss),
                fmt_price(capped.take_profit),
            )
            return None
        check = validate_trade_profitability(price, capped.stop_loss, capped.take_profit, direction, self.config)
        if not check.is_valid:
            logger.debug("Skip entry: %s", check.reason)
            return None
        return _EntryPlan(proposed_sl, proposed_tp, targets.partial_take_profits, capped)

    def _rebase_plan(self, plan: _EntryPlan, reference: float, fill: float, direction: Direction) -> _EntryPlan:
        # 订单已成交，只平移价位，不再放弃
        shift = fill - reference
        proposed_sl = plan.proposed_stop_loss + shift
        proposed_tp = plan.proposed_take_profit + shift
        logger.debug("Rebase targets by %s (reference=%s fill=%s)", fmt_price(shift), fmt_price(reference), fmt_price(fill))
        return _EntryPlan(
            proposed_stop_loss=proposed_sl,
            proposed_take_profit=proposed_tp,
            partial_take_profits=tuple((p + shift, f) for p, f in plan.partial_take_profits),
            capped=apply_risk_cap(fill, direction, proposed_sl, proposed_tp, self.config),
        )

    def _htf_interval_ms(self, htf: Sequence[Candle]) -> int:
        if self.config.htf_timeframe:
            return timeframe_to_ms(self.config.htf_timeframe)
        if len(htf) >= 2:
            return htf[1].ts - htf[0].ts
        return 0

    @staticmethod
    def _touched(pos: Position, level: float, candle: Candle, *, against: bool) -> bool:
        """against=True 判断亏损方向（止损）是否触及，否则判断盈利方向。"""
        if pos.is_long != against:
            return candle.high >= level
        return candle.low <= level

    def _fill_partial(self, pos: Position, rung: PartialTakeProfit) -> None:
        qty = min(pos.size, rung.fraction * pos.initial_size)
        price = rung.price
        if self._executor is not None:
            price = self._executor(_side_for(pos.direction, closing=True), qty, price)
        pos.realized_pnl += (price - pos.entry_price) * qty * pos.direction.sign
        pos.fees_paid += price * qty * self.config.fee_rate
        pos.size = max(0.0, round_to_precision(pos.size - qty, self.config.quantity_precision))
        logger.debug("Partial TP #%d: %s @ %s, remaining %s", pos.id, qty, fmt_price(price), pos.size)

    def _tighten_stop(self, pos: Position, new_stop: float, reason: StopLossReason, why: str) -> None:
        if not pos.is_more_favorable_stop(new_stop):
            return
        logger.debug("Stop #%d: %s -> %s (%s)", pos.id, fmt_price(pos.stop_loss), fmt_price(new_stop), why)
        pos.stop_loss = new_stop
        pos.active_sl_reason = reason

    def _manage(self, pos: Position, candle: Candle, history: Sequence[Candle]) -> Trade | None:
        price = candle.close
        if self.config.is_universal_profit_trail_enabled:
            update = profit_secure_signal(pos, price, self.config.fee_rate)
            if update is not None:
                self._tighten_stop(pos, update.new_stop_loss, StopLossReason.UNIVERSAL_TRAIL, update.reason)
                pos.is_breakeven_set = update.is_breakeven_set
                pos.profit_lock_tier = update.profit_lock_tier

        advice = self.strategy.manage(pos, history, price, self.config)
        if advice.new_stop_loss is not None:
            self._tighten_stop(pos, advice.new_stop_loss, StopLossReason.AGENT_TRAIL, "; ".join(advice.reasons))
        if advice.new_take_profit is not None and not self.config.is_take_profit_locked:
            pos.take_profit = advice.new_take_profit
        if advice.close_position:
            detail = "; ".join(advice.reasons) or "management signal"
            return self.close_position(price, candle.ts, f"Agent Exit: {detail}")
        return None

    def _finalize(self, pos: Position, exit_price: float, ts: int, reason: str) -> Trade:
        pnl = pos.realized_pnl - pos.fees_paid
        trade = Trade(
            id=pos.id,
            pair=pos.pair,
            direction=pos.direction,
            entry_price=pos.entry_price,
            exit_price=exit_price,
            entry_time=pos.entry_time,
            exit_time=ts,
            size=pos.initial_size,
            leverage=pos.leverage,
            invested_amount=pos.invested_amount,
            stop_loss=pos.stop_loss,
            take_profit=pos.take_profit,
            stop_loss_reason=pos.active_sl_reason,
            pnl=pnl,
            fees=pos.fees_paid,
            exit_reason=reason,
            entry_reason=pos.entry_reason,
        )
        self.trades.append(trade)
        self.realized_equity += pnl
        self.position = None
        self._closed_this_bar = True
        self.cooldown.on_trade_closed(trade)
        logger.debug(
            "Close %s #%d exit=%s pnl=%.4f (%s)", pos.direction.value, pos.id, fmt_price(exit_price), pnl, reason
        )
        return trade
