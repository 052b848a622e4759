"""实盘/模拟盘会话：逐根推送 K 线驱动与回测完全相同的生命周期引擎。

与回测的差异只在成交：开平仓通过 `OrderGateway` 下单，以网关回报的成交均价为准。
网关异常直接向上抛出（不重试），本次开/平仓放弃，持仓状态保持不变。
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Protocol

from algo.risk.exhaustion import ExhaustionCheck
from algo.strategy.base import Strategy
from algo.strategy.registry import build_strategy
from analysis.metrics.metrics import compute_report
from engine.lifecycle import EntryDecision, PositionLifecycleEngine
from market_data.candles import timeframe_to_ms
from shared.config.schema import BotConfig
from shared.models.models import BacktestReport, Candle, Position, Signal, Trade
from shared.utils.logging import setup_logger

logger = setup_logger("live")

SESSION_STOPPED = "Session stopped"


class OrderRejectedError(RuntimeError):
    """网关拒单或回报无效（成交量为 0、无法得到成交价）。"""


@dataclass(frozen=True)
class OrderFill:
    """市价单成交回报。avg_price 缺失时用 cumulative_quote / executed_quantity。"""

    executed_quantity: float
    order_id: str
    avg_price: float | None = None
    cumulative_quote: float | None = None

    def resolve_price(self) -> float:
        if self.executed_quantity <= 0:
            raise OrderRejectedError(f"order {self.order_id} executed nothing")
        if self.avg_price is not None and self.avg_price > 0:
            return float(self.avg_price)
        if self.cumulative_quote is not None and self.cumulative_quote > 0:
            return float(self.cumulative_quote) / float(self.executed_quantity)
        raise OrderRejectedError(f"order {self.order_id} has no usable fill price")


class OrderGateway(Protocol):
    def place_order(self, pair: str, side: Signal, quantity: float) -> OrderFill: ...


class PaperGateway:
    """模拟盘网关：按会话给出的参考价全量成交，记录全部订单。"""

    def __init__(self) -> None:
        self.reference_price: float | None = None
        self.orders: list[tuple[str, Signal, float, OrderFill]] = []
        self._ids = itertools.count(1)

    def place_order(self, pair: str, side: Signal, quantity: float) -> OrderFill:
        if quantity <= 0:
            raise OrderRejectedError(f"invalid quantity {quantity}")
        if self.reference_price is None:
            raise OrderRejectedError("no reference price for paper fill")
        fill = OrderFill(
            executed_quantity=quantity,
            order_id=f"paper-{next(self._ids)}",
            avg_price=self.reference_price,
        )
        self.orders.append((pair, side, quantity, fill))
        return fill


class LiveSession:
    """增量驱动的交易会话。

    调用顺序（与回测一致）：
    - 主周期 K 线进行中：`push_management_bar()` 推送已收盘的管理周期 K 线；
    - 主周期 K 线收盘：`push_primary_bar()` 记录权益、评估入场并立即下单；
    - 更高周期 K 线收盘：`push_htf_bar()`。

    Parameters
    ----------
    config:
        会话配置（运行期间不可变）。
    gateway:
        下单网关；`PaperGateway` 为模拟盘。
    max_history:
        内存中保留的主周期/HTF K 线上限（不小于策略所需窗口）。
    """

    def __init__(
        self,
        config: BotConfig,
        gateway: OrderGateway,
        *,
        strategy: Strategy | None = None,
        exhaustion_check: ExhaustionCheck | None = None,
        max_history: int = 1000,
    ):
        self.config = config
        self.gateway = gateway
        self.strategy = strategy if strategy is not None else build_strategy(config.strategy)
        self.engine = PositionLifecycleEngine(
            config,
            self.strategy,
            exhaustion_check=exhaustion_check,
            executor=self._execute,
        )
        self.max_history = max(int(max_history), config.min_bars, self.strategy.window_size())
        self.primary: list[Candle] = []
        self.htf: list[Candle] = []
        self._interval_ms = timeframe_to_ms(config.timeframe)

    @property
    def position(self) -> Position | None:
        return self.engine.position

    @property
    def trades(self) -> list[Trade]:
        return list(self.engine.trades)

    def push_management_bar(self, candle: Candle) -> Trade | None:
        """处理一根已收盘的管理周期 K 线；平仓时返回 Trade。"""
        return self.engine.on_management_bar(candle, self.primary)

    def push_htf_bar(self, candle: Candle) -> None:
        self._append(self.htf, candle)

    def push_primary_bar(self, candle: Candle) -> Position | None:
        """主周期 K 线收盘：记录权益点并评估入场；开仓时返回新持仓。

        入场按本根收盘价作为参考价市价成交，时间记为下一根开盘时间。
        """
        self._append(self.primary, candle)
        self.engine.mark_to_market(candle.ts, candle.close)
        try:
            if len(self.primary) < self.config.min_bars:
                return None
            decision = self.engine.evaluate_entry(self.primary, self.htf or None)
            if decision is None:
                return None
            return self._enter(decision, candle)
        finally:
            self.engine.begin_bar()

    def stop(self, price: float, ts: int) -> Trade | None:
        """停止会话：若仍持仓则按 price 平仓。"""
        trade = self.engine.close_position(price, ts, SESSION_STOPPED)
        if trade is not None:
            logger.info("Session stopped with open position, closed #%d pnl=%.4f", trade.id, trade.pnl)
        return trade

    def report(self) -> BacktestReport:
        return compute_report(self.engine.trades, self.engine.equity_curve)

    # ------------------------------------------------------------------
    def _enter(self, decision: EntryDecision, candle: Candle) -> Position | None:
        position = self.engine.open_position(decision, candle.close, candle.ts + self._interval_ms, self.primary)
        if position is not None:
            logger.info(
                "Opened %s %s size=%s entry=%s sl=%s tp=%s",
                position.direction.value,
                position.pair,
                position.size,
                position.entry_price,
                position.stop_loss,
                position.take_profit,
            )
        return position

    def _execute(self, side: Signal, quantity: float, reference_price: float) -> float:
        if isinstance(self.gateway, PaperGateway):
            self.gateway.reference_price = reference_price
        fill = self.gateway.place_order(self.config.pair, side, quantity)
        price = fill.resolve_price()
        logger.debug(
            "Order %s %s %s qty=%s filled @ %s (ref %s)",
            fill.order_id,
            side.value,
            self.config.pair,
            fill.executed_quantity,
            price,
            reference_price,
        )
        return price

    def _append(self, series: list[Candle], candle: Candle) -> None:
        if series and candle.ts <= series[-1].ts:
            raise ValueError(f"candle ts {candle.ts} is not after previous {series[-1].ts}")
        series.append(candle)
        if len(series) > self.max_history:
            del series[: len(series) - self.max_history]
