"""回测绩效汇总（纯函数）：trades + 权益曲线 -> BacktestReport。"""

from __future__ import annotations

from statistics import mean, pstdev
from typing import Sequence

from shared.models.models import BacktestReport, EquitySample, Trade
from shared.utils.formatting import format_duration


def profit_factor(trades: Sequence[Trade]) -> float:
    """总盈利 / |总亏损|；无亏损有盈利为 +inf，都没有为 0。"""
    gross_profit = sum(t.pnl for t in trades if t.pnl > 0)
    gross_loss = abs(sum(t.pnl for t in trades if t.pnl < 0))
    if gross_loss > 0:
        return gross_profit / gross_loss
    return float("inf") if gross_profit > 0 else 0.0


def max_drawdown(equity_curve: Sequence[EquitySample]) -> float:
    """最大回撤（金额）：max(历史峰值 - 当前权益)。"""
    peak = float("-inf")
    worst = 0.0
    for sample in equity_curve:
        peak = max(peak, sample.equity)
        worst = max(worst, peak - sample.equity)
    return worst


def sharpe_ratio(trades: Sequence[Trade]) -> float:
    """逐笔收益率（pnl / 投入资金）的均值 / 总体标准差，不做年化。"""
    returns = [t.pnl / t.invested_amount for t in trades if t.invested_amount > 0]
    if not returns:
        return 0.0
    sigma = pstdev(returns)
    return mean(returns) / sigma if sigma > 0 else 0.0


def average_trade_duration(trades: Sequence[Trade]) -> str:
    if not trades:
        return "N/A"
    return format_duration(mean(t.duration_ms for t in trades))


def compute_report(
    trades: Sequence[Trade],
    equity_curve: Sequence[EquitySample] = (),
) -> BacktestReport:
    """汇总绩效报告。

    Parameters
    ----------
    trades:
        已平仓交易（顺序即报告中的顺序）。
    equity_curve:
        每根已处理 K 线一个权益点。

    Returns
    -------
    BacktestReport
        无交易时除回撤外全部为 0，平均持仓时长为 "N/A"。
    """
    trades = list(trades)
    total = len(trades)
    wins = sum(1 for t in trades if t.pnl > 0)
    losses = sum(1 for t in trades if t.pnl < 0)
    if total == 0:
        return BacktestReport(max_drawdown=max_drawdown(equity_curve), equity_curve=list(equity_curve))

    return BacktestReport(
        total_pnl=sum(t.pnl for t in trades),
        total_trades=total,
        wins=wins,
        losses=losses,
        break_evens=total - wins - losses,
        win_rate=wins / total * 100.0,
        profit_factor=profit_factor(trades),
        max_drawdown=max_drawdown(equity_curve),
        sharpe_ratio=sharpe_ratio(trades),
        average_trade_duration=average_trade_duration(trades),
        trades=trades,
        equity_curve=list(equity_curve),
    )
