"""参数优化引擎（网格搜索）。

流程：解析参数范围 → 组合数检查（超上限直接报错，不跑任何回测）→ 逐组合派生配置并回测 →
每完成一组回调一次进度 → 过滤无交易组合后按 profit_factor、total_pnl 降序排名。

并行时结果按提交顺序收集，排名与完成顺序无关；取消在组合之间检查，已收集的结果保持不变。
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

from algo.risk.exhaustion import ExhaustionCheck
from algo.strategy.registry import accepted_params, get_strategy_cls
from engine.backtest_engine import resolve_htf_candles, run_backtest
from engine.base_engine import BaseEngine, EngineResult
from shared.config.schema import BotConfig, OptimizationConfig, StrategyConfig
from shared.models.models import Candle, OptimizationResultItem
from shared.utils.logging import setup_logger
from utils.param_search import count_combinations, count_range_combinations, expand_ranges, iter_param_grid

logger = setup_logger("optimize")

DEFAULT_MAX_COMBINATIONS = 200


class TooManyCombinationsError(ValueError):
    """组合数超过安全上限。"""


class UnsupportedStrategyError(ValueError):
    """策略 id 未注册或不支持扫参。"""


@dataclass(frozen=True)
class OptimizationProgress:
    completed: int
    total: int
    percent: float
    latest: OptimizationResultItem


ProgressCallback = Callable[[OptimizationProgress], None]


@dataclass
class OptimizationOutcome:
    ranked: list[OptimizationResultItem] = field(default_factory=list)
    results: list[OptimizationResultItem] = field(default_factory=list)
    total: int = 0
    cancelled: bool = False


def rank_results(items: Sequence[OptimizationResultItem]) -> list[OptimizationResultItem]:
    """只保留有交易的组合；profit_factor 降序，相同时 total_pnl 降序（稳定排序）。"""
    traded = [r for r in items if r.report.total_trades >= 1]
    return sorted(traded, key=lambda r: (r.report.profit_factor, r.report.total_pnl), reverse=True)


def resolve_param_grid(
    strategy_id: int,
    ranges: Mapping[str, Any] | None = None,
    max_combinations: int | None = None,
) -> dict[str, list[Any]]:
    """确定扫参网格：显式 ranges 优先，否则使用策略声明的默认范围。

    Raises
    ------
    UnsupportedStrategyError
        策略未注册，或既无显式范围也无默认范围。
    ValueError
        参数名不被策略接受，或范围格式非法。
    TooManyCombinationsError
        组合数超过 max_combinations（在展开任何取值之前判断）。
    """
    try:
        cls = get_strategy_cls(strategy_id)
    except ValueError as exc:
        raise UnsupportedStrategyError(f"Optimization not supported for strategy id {strategy_id}") from exc

    spec = dict(ranges) if ranges else dict(cls.optimization_ranges)
    if not spec:
        raise UnsupportedStrategyError(f"Strategy {strategy_id} ({cls.name}) declares no optimizable params")
    unknown = sorted(set(spec) - accepted_params(cls))
    if unknown:
        raise ValueError(f"Unknown params for strategy {strategy_id} ({cls.name}): {', '.join(unknown)}")
    if max_combinations is not None:
        total = count_range_combinations(spec)
        if total > max_combinations:
            raise TooManyCombinationsError(
                f"{total} parameter combinations exceed the limit of {max_combinations}; narrow the ranges"
            )
    return expand_ranges(spec)


def optimize(
    base_config: BotConfig,
    primary: Sequence[Candle],
    management: Sequence[Candle] | None = None,
    htf: Sequence[Candle] | None = None,
    *,
    strategy_id: int | None = None,
    ranges: Mapping[str, Any] | None = None,
    max_combinations: int = DEFAULT_MAX_COMBINATIONS,
    max_workers: int = 1,
    progress: ProgressCallback | None = None,
    cancel_event: threading.Event | None = None,
    exhaustion_check: ExhaustionCheck | None = None,
) -> OptimizationOutcome:
    """网格搜索。

    Parameters
    ----------
    base_config:
        基础配置；每个组合在其策略参数之上覆盖组合参数。
    primary / management / htf:
        行情（所有组合共享、只读）。
    strategy_id:
        要优化的策略；缺省取 base_config.strategy.id。
    ranges:
        参数范围（显式列表或 {start, end, step}）；缺省用策略默认范围。
    max_combinations:
        组合数上限，超出时在运行任何回测之前抛 TooManyCombinationsError。
    max_workers:
        >1 时使用线程池并行。
    progress:
        每完成一个组合调用一次（按提交顺序）。
    cancel_event:
        置位后在下一个组合之前停止，返回已完成部分（cancelled=True）。
    """
    sid = int(strategy_id if strategy_id is not None else base_config.strategy.id)
    grid = resolve_param_grid(sid, ranges, max_combinations)
    total = count_combinations(grid)

    base = base_config
    if sid != base_config.strategy.id:
        base = base_config.model_copy(update={"strategy": StrategyConfig(id=sid, params={})})
    htf_candles = resolve_htf_candles(base, primary, htf)
    cancel = cancel_event or threading.Event()
    logger.info("Optimization start: strategy=%s combinations=%d workers=%d", sid, total, max_workers)

    def _run_one(params: dict[str, Any]) -> OptimizationResultItem | None:
        if cancel.is_set():
            return None
        cfg = base.with_strategy_params(params)
        report = run_backtest(cfg, primary, management, htf_candles, exhaustion_check=exhaustion_check)
        return OptimizationResultItem(params=params, report=report)

    outcome = OptimizationOutcome(total=total)

    def _collect(item: OptimizationResultItem) -> None:
        outcome.results.append(item)
        done = len(outcome.results)
        logger.debug(
            "Combination %d/%d %s -> trades=%d pf=%.3f pnl=%.4f",
            done,
            total,
            item.params,
            item.report.total_trades,
            item.report.profit_factor,
            item.report.total_pnl,
        )
        if progress is not None:
            progress(OptimizationProgress(completed=done, total=total, percent=done / total * 100.0, latest=item))

    if max_workers <= 1:
        for params in iter_param_grid(grid):
            if cancel.is_set():
                outcome.cancelled = True
                break
            item = _run_one(params)
            if item is not None:
                _collect(item)
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures: list[Future] = [pool.submit(_run_one, params) for params in iter_param_grid(grid)]
            for fut in futures:
                if cancel.is_set():
                    outcome.cancelled = True
                    for pending in futures:
                        pending.cancel()
                    break
                item = fut.result()
                if item is None:
                    outcome.cancelled = True
                    break
                _collect(item)

    if cancel.is_set() and len(outcome.results) < total:
        outcome.cancelled = True
    outcome.ranked = rank_results(outcome.results)
    logger.info(
        "Optimization done: %d/%d combinations, %d ranked%s",
        len(outcome.results),
        total,
        len(outcome.ranked),
        " (cancelled)" if outcome.cancelled else "",
    )
    return outcome


class OptimizationEngine(BaseEngine):
    """参数优化引擎（Engine 风格入口），summary 中只保留前 top_n 名。"""

    def __init__(
        self,
        *,
        config: BotConfig,
        primary: Sequence[Candle],
        management: Sequence[Candle] | None = None,
        htf: Sequence[Candle] | None = None,
        optimization: OptimizationConfig | None = None,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.config = config
        self.primary = primary
        self.management = management
        self.htf = htf
        self.optimization = optimization or OptimizationConfig()
        self.progress = progress
        self.cancel_event = cancel_event

    def run(self) -> EngineResult:
        opt = self.optimization
        outcome = optimize(
            self.config,
            self.primary,
            self.management,
            self.htf,
            ranges=opt.ranges or None,
            max_combinations=opt.max_combinations,
            max_workers=opt.max_workers,
            progress=self.progress,
            cancel_event=self.cancel_event,
        )
        top = [{"params": r.params, "report": r.report.to_dict()} for r in outcome.ranked[: opt.top_n]]
        summary = {
            "strategy_id": self.config.strategy.id,
            "total": outcome.total,
            "completed": len(outcome.results),
            "cancelled": outcome.cancelled,
            "results": top,
        }
        return EngineResult(summary=summary, artifacts={"outcome": outcome})
