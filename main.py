"""Agent Backtester 统一命令行入口。

子命令：

- `backtest`：单次回测，输出绩效报告。
- `optimize`：对策略参数做网格搜索，输出排名前 N 的组合。

行情文件路径来自配置的 `data` 段（CSV，列见 `market_data.candles.load_candles_csv`）。
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from typing import Any

from engine.backtest_engine import BacktestEngine
from engine.optimization_engine import OptimizationEngine, OptimizationProgress
from market_data.candles import load_candles_csv
from shared.config.config_loader import load_config
from shared.config.schema import AppConfig, OptimizationConfig
from shared.utils.logging import setup_logger

logger = setup_logger("cli")


@dataclass
class CliArgs:
    """命令行参数。

    config: 配置文件路径
    task: 子命令 (backtest/optimize)
    """

    config: str
    task: str
    top_n: int | None = None
    max_workers: int | None = None
    include_trades: bool = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agentbt", description="Agent Backtester 统一入口")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument(
            "--config",
            default=default,
            help="配置文件路径 (默认: config/config.yml)",
        )

    # 允许 `python main.py --config ... backtest` 与 `python main.py backtest --config ...`
    _add_config_arg(parser, default="config/config.yml")

    sub = parser.add_subparsers(dest="task")

    p_backtest = sub.add_parser("backtest", help="单次回测")
    _add_config_arg(p_backtest, default=argparse.SUPPRESS)
    p_backtest.add_argument("--include-trades", action="store_true", help="输出中包含逐笔交易")

    p_opt = sub.add_parser("optimize", help="参数网格搜索")
    _add_config_arg(p_opt, default=argparse.SUPPRESS)
    p_opt.add_argument("--top-n", type=int, default=None, help="输出前 N 组（覆盖配置）")
    p_opt.add_argument("--max-workers", type=int, default=None, help="并行线程数（覆盖配置）")

    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    ns = build_parser().parse_args(argv)
    return CliArgs(
        config=str(getattr(ns, "config", "config/config.yml")),
        task=ns.task or "backtest",
        top_n=getattr(ns, "top_n", None),
        max_workers=getattr(ns, "max_workers", None),
        include_trades=bool(getattr(ns, "include_trades", False)),
    )


def _load_market_data(cfg: AppConfig):
    if cfg.data is None:
        raise ValueError("Config has no 'data' section; set data.primary to a candle CSV")
    primary = load_candles_csv(cfg.data.primary)
    management = load_candles_csv(cfg.data.management) if cfg.data.management else None
    htf = load_candles_csv(cfg.data.htf) if cfg.data.htf else None
    return primary, management, htf


def _log_progress(p: OptimizationProgress) -> None:
    logger.info("Optimization progress: %d/%d (%.1f%%) %s", p.completed, p.total, p.percent, p.latest.params)


def run_backtest_task(args: CliArgs) -> dict[str, Any]:
    cfg = load_config(args.config)
    primary, management, htf = _load_market_data(cfg)
    result = BacktestEngine(config=cfg.bot, primary=primary, management=management, htf=htf).run()
    if args.include_trades:
        return result.artifacts["report"].to_dict(include_trades=True)
    return result.summary


def run_optimize_task(args: CliArgs) -> dict[str, Any]:
    cfg = load_config(args.config)
    primary, management, htf = _load_market_data(cfg)
    opt = cfg.optimization or OptimizationConfig()
    overrides: dict[str, Any] = {}
    if args.top_n is not None:
        overrides["top_n"] = args.top_n
    if args.max_workers is not None:
        overrides["max_workers"] = args.max_workers
    if overrides:
        opt = opt.model_copy(update=overrides)
    engine = OptimizationEngine(
        config=cfg.bot,
        primary=primary,
        management=management,
        htf=htf,
        optimization=opt,
        progress=_log_progress,
    )
    return engine.run().summary


def main(argv: list[str] | None = None) -> Any:
    """程序主入口；返回对应子命令的 summary dict（同时以 JSON 打印）。"""
    args = parse_args(argv)

    if args.task == "backtest":
        summary = run_backtest_task(args)
    elif args.task == "optimize":
        summary = run_optimize_task(args)
    else:
        raise ValueError(f"Unknown task: {args.task}")

    print(json.dumps(summary, indent=2, ensure_ascii=False, default=str))
    return summary


if __name__ == "__main__":
    main()
