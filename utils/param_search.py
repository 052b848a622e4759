"""参数网格：范围展开、组合计数、惰性笛卡尔积。"""

from __future__ import annotations

import itertools
import math
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Mapping, Tuple

_RANGE_KEYS = ("start", "end", "step")


def _parse_stepped(name: str, spec: Mapping[str, Any]) -> Tuple[Decimal, Decimal, int]:
    missing = [k for k in _RANGE_KEYS if k not in spec]
    if missing:
        raise ValueError(f"param range '{name}' missing keys: {', '.join(missing)}")
    start, end, step = (Decimal(str(spec[k])) for k in _RANGE_KEYS)
    if step <= 0:
        raise ValueError(f"param range '{name}' step must be > 0")
    if end < start:
        raise ValueError(f"param range '{name}' end < start")
    return start, step, int((end - start) / step) + 1


def range_length(name: str, spec: Any) -> int:
    """单个参数范围的取值个数；区间按算术计算，不展开取值。"""
    if isinstance(spec, (list, tuple)):
        if not spec:
            raise ValueError(f"param range '{name}' is empty")
        return len(spec)
    if isinstance(spec, Mapping):
        return _parse_stepped(name, spec)[2]
    raise ValueError(f"param range '{name}' must be a list or a {{start, end, step}} mapping")


def count_range_combinations(ranges: Mapping[str, Any]) -> int:
    if not ranges:
        return 0
    return math.prod(range_length(name, spec) for name, spec in ranges.items())


def expand_range(name: str, spec: Any) -> List[Any]:
    """把单个参数的范围定义展开成离散取值列表。

    支持：
    - 显式列表：`[5, 10, 15]`（原样使用，不去重）；
    - 区间：`{start, end, step}`，包含 end（按 Decimal 计算避免浮点累积误差）。

    Raises
    ------
    ValueError
        列表为空、区间缺字段、step <= 0 或 end < start。
    """
    if isinstance(spec, (list, tuple)):
        if not spec:
            raise ValueError(f"param range '{name}' is empty")
        return list(spec)
    if isinstance(spec, Mapping):
        start, step, count = _parse_stepped(name, spec)
        as_int = all(isinstance(spec[k], int) and not isinstance(spec[k], bool) for k in _RANGE_KEYS)
        values = [start + step * i for i in range(count)]
        return [int(v) if as_int else float(v) for v in values]
    raise ValueError(f"param range '{name}' must be a list or a {{start, end, step}} mapping")


def expand_ranges(ranges: Mapping[str, Any]) -> Dict[str, List[Any]]:
    return {name: expand_range(name, spec) for name, spec in ranges.items()}


def count_combinations(grid: Mapping[str, List[Any]]) -> int:
    if not grid:
        return 0
    return math.prod(len(v) for v in grid.values())


def iter_param_grid(grid: Mapping[str, List[Any]]) -> Iterator[Dict[str, Any]]:
    """按键的声明顺序惰性产出组合（最后一个键变化最快）。"""
    keys = list(grid.keys())
    for vals in itertools.product(*(grid[k] for k in keys)):
        yield dict(zip(keys, vals))
