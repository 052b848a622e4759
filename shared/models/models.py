"""核心数据结构：Candle / 信号 / Position / Trade / 报告。

约定：
- 时间戳统一为 epoch 毫秒（int），K 线 ts 为开盘时间；
- Position 是引擎独占的可变对象，平仓后即丢弃，只留下不可变的 Trade。
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.LONG else -1


class Signal(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"

    @property
    def direction(self) -> Direction | None:
        if self is Signal.BUY:
            return Direction.LONG
        if self is Signal.SELL:
            return Direction.SHORT
        return None


class StopLossReason(str, Enum):
    """当前生效止损的来源。"""

    AGENT_LOGIC = "AgentLogic"
    HARD_CAP = "HardCap"
    UNIVERSAL_TRAIL = "UniversalTrail"
    AGENT_TRAIL = "AgentTrail"

    @property
    def is_trail(self) -> bool:
        return self in (StopLossReason.UNIVERSAL_TRAIL, StopLossReason.AGENT_TRAIL)


@dataclass(frozen=True)
class Candle:
    """K 线（ts 为开盘时间，毫秒）。"""

    ts: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class TradeSignal:
    """策略入场信号。stop_loss/take_profit 为策略建议值，可为空。"""

    signal: Signal
    reasons: tuple[str, ...] = ()
    entry_price_hint: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None

    @classmethod
    def hold(cls, *reasons: str) -> "TradeSignal":
        return cls(signal=Signal.HOLD, reasons=tuple(reasons))


@dataclass(frozen=True)
class ManagementSignal:
    """持仓管理建议：新止损/新止盈/立即平仓。"""

    new_stop_loss: float | None = None
    new_take_profit: float | None = None
    close_position: bool = False
    reasons: tuple[str, ...] = ()


@dataclass
class PartialTakeProfit:
    """分批止盈梯级：到价后按初始仓位的 fraction 减仓，只触发一次。"""

    price: float
    fraction: float
    hit: bool = False


@dataclass(frozen=True)
class AgentTargets:
    stop_loss: float
    take_profit: float
    partial_take_profits: tuple[tuple[float, float], ...] = ()


@dataclass
class Position:
    """持仓（单次运行内至多一个）。"""

    id: int
    pair: str
    direction: Direction
    entry_price: float
    entry_time: int
    size: float
    initial_size: float
    leverage: float
    invested_amount: float
    stop_loss: float
    take_profit: float
    initial_stop_loss: float
    initial_take_profit: float
    active_sl_reason: StopLossReason = StopLossReason.AGENT_LOGIC
    hard_cap_stop_loss: float | None = None
    partial_take_profits: list[PartialTakeProfit] = field(default_factory=list)
    entry_reason: str = ""
    realized_pnl: float = 0.0
    fees_paid: float = 0.0
    is_breakeven_set: bool = False
    profit_lock_tier: int = 0

    @property
    def is_long(self) -> bool:
        return self.direction is Direction.LONG

    def unrealized_pnl(self, price: float) -> float:
        return (price - self.entry_price) * self.size * self.direction.sign

    def is_more_favorable_stop(self, candidate: float) -> bool:
        """候选止损是否严格优于当前止损（LONG 更高 / SHORT 更低）。"""
        if self.is_long:
            return candidate > self.stop_loss
        return candidate < self.stop_loss


@dataclass(frozen=True)
class Trade:
    """已平仓交易（不可变）。size 为初始仓位。"""

    id: int
    pair: str
    direction: Direction
    entry_price: float
    exit_price: float
    entry_time: int
    exit_time: int
    size: float
    leverage: float
    invested_amount: float
    stop_loss: float
    take_profit: float
    stop_loss_reason: StopLossReason
    pnl: float
    fees: float
    exit_reason: str
    entry_reason: str = ""

    @property
    def duration_ms(self) -> int:
        return self.exit_time - self.entry_time


@dataclass(frozen=True)
class EquitySample:
    ts: int
    equity: float


@dataclass
class BacktestReport:
    """绩效报告（字段语义见 analysis.metrics.metrics.compute_report）。"""

    total_pnl: float = 0.0
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    break_evens: int = 0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    max_drawdown: float = 0.0
    sharpe_ratio: float = 0.0
    average_trade_duration: str = "N/A"
    trades: list[Trade] = field(default_factory=list)
    equity_curve: list[EquitySample] = field(default_factory=list)

    def to_dict(self, *, include_trades: bool = False) -> dict[str, Any]:
        out = asdict(self)
        out.pop("equity_curve")
        if not include_trades:
            out.pop("trades")
        return out


@dataclass(frozen=True)
class OptimizationResultItem:
    params: dict[str, Any]
    report: BacktestReport
