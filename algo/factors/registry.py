"""因子注册表：字符串 -> 因子实现。"""

from __future__ import annotations

import inspect
from typing import Any, Mapping

import pandas as pd

from algo.factors.adx import ADXFactor
from algo.factors.atr import ATRFactor
from algo.factors.base import Factor
from algo.factors.bollinger import BollingerFactor
from algo.factors.ema import EMAFactor
from algo.factors.ma import MAFactor
from algo.factors.macd import MACDFactor
from algo.factors.psar import PSARFactor
from algo.factors.rsi import RSIFactor
from algo.factors.stoch_rsi import StochRSIFactor

_REGISTRY: dict[str, type] = {}


def register_factor(name: str, cls: type) -> None:
    _REGISTRY[name] = cls


def get_factor_cls(name: str) -> type:
    if name not in _REGISTRY:
        raise ValueError(f"Unknown factor: {name}")
    return _REGISTRY[name]


def _filter_init_kwargs(cls: type, params: Mapping[str, Any]) -> dict[str, Any]:
    """过滤出 __init__ 支持的参数，避免配置里多字段导致报错。"""
    sig = inspect.signature(cls.__init__)
    if any(p.kind == inspect.Parameter.VAR_KEYWORD for p in sig.parameters.values()):
        return dict(params)
    allowed = {name for name in sig.parameters.keys() if name != "self"}
    return {k: v for k, v in params.items() if k in allowed}


def build_factor(name: str, **params: Any) -> Factor:
    cls = get_factor_cls(name)
    try:
        return cls(**_filter_init_kwargs(cls, params))
    except TypeError as exc:
        raise ValueError(f"Invalid params for factor '{name}': {params}") from exc


def build_factors(items: list[Mapping[str, Any]] | None) -> list[Factor]:
    """从 `[{name: "ema", period: 20}, ...]` 构建因子列表（参数平铺或放在 params 下均可）。"""
    if not items:
        return []
    factors: list[Factor] = []
    for item in items:
        if not isinstance(item, Mapping):
            raise ValueError("factor item must be a dict")
        name = str(item.get("name") or item.get("type") or "")
        if not name:
            raise ValueError("factor item missing name")
        params = {k: v for k, v in item.items() if k not in {"name", "type", "params"}}
        nested = item.get("params")
        if isinstance(nested, Mapping):
            params.update(nested)
        factors.append(build_factor(name, **params))
    return factors


def apply_factors(df: pd.DataFrame, factors: list[Factor]) -> pd.DataFrame:
    for f in factors:
        df = f.compute(df)
    return df


# 默认注册
register_factor("ma", MAFactor)
register_factor("ema", EMAFactor)
register_factor("rsi", RSIFactor)
register_factor("atr", ATRFactor)
register_factor("macd", MACDFactor)
register_factor("bollinger", BollingerFactor)
register_factor("adx", ADXFactor)
register_factor("stoch_rsi", StochRSIFactor)
register_factor("psar", PSARFactor)
