"""引擎统一出口。

回测与参数优化都以 `XxxEngine(...).run() -> EngineResult` 的形式对外提供能力：
`summary` 是可直接 JSON 序列化的摘要，`artifacts` 存放报告/优化结果等完整对象。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class EngineResult:
    summary: dict[str, Any]
    artifacts: dict[str, Any] | None = None


class BaseEngine(ABC):
    """引擎基类：构造时接收全部输入，`run()` 执行一次并返回结果。"""

    @abstractmethod
    def run(self) -> EngineResult:
        raise NotImplementedError
