"""
日志封装。

Notes
-----
- 同名 logger 只挂一个 StreamHandler，重复调用不会刷屏；
- 环境变量 `AGENTBT_LOG_LEVEL` 可整体覆盖级别（如 DEBUG），便于排查回测细节。
"""

from __future__ import annotations

import logging
import os

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


def _env_level(default: int) -> int:
    raw = os.environ.get("AGENTBT_LOG_LEVEL")
    if not raw:
        return default
    level = logging.getLevelName(raw.strip().upper())
    return level if isinstance(level, int) else default


def setup_logger(name: str = "agentbt", level: int = logging.INFO) -> logging.Logger:
    """
    获取命名 logger（幂等）。

    Parameters
    ----------
    name:
        Logger 名称，按关注点命名（如 "lifecycle" / "optimize"）。
    level:
        默认级别；可被 `AGENTBT_LOG_LEVEL` 覆盖。

    Returns
    -------
    logging.Logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(_env_level(level))
    logger.propagate = False

    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(handler)
    return logger
