"""策略注册表：数字 id -> Strategy 实现。"""

from __future__ import annotations

import inspect
from typing import Any, Mapping

from algo.strategy.base import Strategy
from algo.strategy.historic_expert import HistoricExpertStrategy
from algo.strategy.market_structure import MarketStructureStrategy
from algo.strategy.quantum_scalper import QuantumScalperStrategy
from algo.strategy.sentinel import SentinelStrategy
from shared.config.schema import StrategyConfig

_REGISTRY: dict[int, type[Strategy]] = {}


def register_strategy(strategy_id: int, cls: type[Strategy]) -> None:
    _REGISTRY[int(strategy_id)] = cls


def get_strategy_cls(strategy_id: int) -> type[Strategy]:
    if int(strategy_id) not in _REGISTRY:
        raise ValueError(f"Unknown strategy id: {strategy_id}")
    return _REGISTRY[int(strategy_id)]


def registered_strategies() -> dict[int, type[Strategy]]:
    return dict(_REGISTRY)


def accepted_params(cls: type) -> set[str]:
    sig = inspect.signature(cls.__init__)
    return {name for name in sig.parameters.keys() if name != "self"}


def _filter_init_kwargs(cls: type, params: Mapping[str, Any]) -> dict[str, Any]:
    """过滤出 __init__ 支持的参数，避免配置里多字段导致报错。"""
    allowed = accepted_params(cls)
    return {k: v for k, v in params.items() if k in allowed}


def build_strategy(cfg: StrategyConfig | Mapping[str, Any]) -> Strategy:
    """从配置构建策略实例。

    支持：
    - StrategyConfig（id + params）
    - dict（含 id + 参数字段）
    """
    if isinstance(cfg, StrategyConfig):
        strategy_id = cfg.id
        params = dict(cfg.params)
    elif isinstance(cfg, Mapping):
        params = dict(cfg)
        strategy_id = params.pop("id", None)
        if strategy_id is None:
            raise ValueError("strategy cfg missing id")
    else:
        raise ValueError("strategy cfg must be StrategyConfig or dict")

    cls = get_strategy_cls(int(strategy_id))
    try:
        return cls(**_filter_init_kwargs(cls, params))
    except TypeError as exc:
        raise ValueError(f"Invalid params for strategy {strategy_id}: {params}") from exc


# 默认注册
register_strategy(MarketStructureStrategy.strategy_id, MarketStructureStrategy)
register_strategy(QuantumScalperStrategy.strategy_id, QuantumScalperStrategy)
register_strategy(HistoricExpertStrategy.strategy_id, HistoricExpertStrategy)
register_strategy(SentinelStrategy.strategy_id, SentinelStrategy)
