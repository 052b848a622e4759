"""配置键名预检。

pydantic 的 `extra="forbid"` 能拒绝未知字段，但报错里没有“你是不是想写 X”。
这里在交给 schema 之前先做一遍键名检查，给出拼写建议。
"""

from __future__ import annotations

import difflib
from typing import Any, Iterable

from pydantic import BaseModel

from shared.config.schema import AppConfig, BotConfig, DataConfig, OptimizationConfig


def _suggest_key(key: str, allowed: Iterable[str]) -> str | None:
    matches = difflib.get_close_matches(key, list(allowed), n=1, cutoff=0.75)
    return matches[0] if matches else None


def _ensure_allowed_keys(block: dict[str, Any], *, model: type[BaseModel], ctx: str) -> None:
    allowed = set(model.model_fields.keys())
    unknown = sorted(k for k in block.keys() if k not in allowed)
    if not unknown:
        return
    parts = []
    for k in unknown:
        suggestion = _suggest_key(k, allowed)
        parts.append(f"{k} (did you mean '{suggestion}'?)" if suggestion else k)
    raise ValueError(f"{ctx} contains unknown keys: {', '.join(parts)}")


def validate_raw_config(raw: dict[str, Any]) -> None:
    """检查顶层与各子块的键名。

    Raises
    ------
    ValueError
        出现未知键，或缺少 `bot` 块。
    """
    if not isinstance(raw, dict):
        raise ValueError("config root must be a mapping")
    _ensure_allowed_keys(raw, model=AppConfig, ctx="config")
    bot = raw.get("bot")
    if not isinstance(bot, dict):
        raise ValueError("Missing required config key: bot")
    _ensure_allowed_keys(bot, model=BotConfig, ctx="bot")
    for key, model in (("data", DataConfig), ("optimization", OptimizationConfig)):
        block = raw.get(key)
        if isinstance(block, dict):
            _ensure_allowed_keys(block, model=model, ctx=key)
