"""单次回测引擎（BacktestEngine）。

配置 → 行情 → 生命周期引擎 → 绩效汇总。
"""

from __future__ import annotations

from typing import Sequence

from algo.risk.exhaustion import ExhaustionCheck
from algo.strategy.base import Strategy
from algo.strategy.registry import build_strategy
from engine.base_engine import BaseEngine, EngineResult
from engine.lifecycle import PositionLifecycleEngine
from analysis.metrics.metrics import compute_report
from market_data.candles import aggregate_candles, timeframe_to_ms
from shared.config.schema import BotConfig
from shared.models.models import BacktestReport, Candle
from shared.utils.logging import setup_logger

logger = setup_logger("backtest")


def resolve_htf_candles(
    config: BotConfig,
    primary: Sequence[Candle],
    htf: Sequence[Candle] | None,
) -> Sequence[Candle] | None:
    """HTF 确认开启但未提供 HTF 行情时，由主周期聚合得到。"""
    if htf or not config.is_htf_confirmation_enabled or not config.htf_timeframe:
        return htf
    if timeframe_to_ms(config.htf_timeframe) <= timeframe_to_ms(config.timeframe):
        raise ValueError(f"htf_timeframe {config.htf_timeframe} must be larger than timeframe {config.timeframe}")
    return aggregate_candles(primary, config.htf_timeframe)


def run_backtest(
    config: BotConfig,
    primary: Sequence[Candle],
    management: Sequence[Candle] | None = None,
    htf: Sequence[Candle] | None = None,
    *,
    strategy: Strategy | None = None,
    exhaustion_check: ExhaustionCheck | None = None,
) -> BacktestReport:
    """跑一次完整回测并返回报告（含交易列表与权益曲线）。

    历史不足 `config.min_bars` 根时直接返回全 0 报告。
    """
    strat = strategy if strategy is not None else build_strategy(config.strategy)
    engine = PositionLifecycleEngine(config, strat, exhaustion_check=exhaustion_check)
    result = engine.run(primary, management, resolve_htf_candles(config, primary, htf))
    return compute_report(result.trades, result.equity_curve)


class BacktestEngine(BaseEngine):
    """单次回测引擎（Engine 风格入口）。"""

    def __init__(
        self,
        *,
        config: BotConfig,
        primary: Sequence[Candle],
        management: Sequence[Candle] | None = None,
        htf: Sequence[Candle] | None = None,
        strategy: Strategy | None = None,
        exhaustion_check: ExhaustionCheck | None = None,
    ):
        self.config = config
        self.primary = primary
        self.management = management
        self.htf = htf
        self.strategy = strategy
        self.exhaustion_check = exhaustion_check

    def run(self) -> EngineResult:
        logger.info(
            "Backtest start: pair=%s strategy=%s tf=%s bars=%d mgmt_bars=%d",
            self.config.pair,
            self.config.strategy.id,
            self.config.timeframe,
            len(self.primary),
            len(self.management or []),
        )
        report = run_backtest(
            self.config,
            self.primary,
            self.management,
            self.htf,
            strategy=self.strategy,
            exhaustion_check=self.exhaustion_check,
        )
        summary = report.to_dict()
        logger.info("Backtest summary: %s", summary)
        return EngineResult(summary=summary, artifacts={"report": report})
