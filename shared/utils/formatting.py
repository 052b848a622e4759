"""格式化工具（日志/报表友好，不参与交易计算）。"""

from __future__ import annotations

_SECOND_MS = 1000
_MINUTE_MS = 60 * _SECOND_MS
_HOUR_MS = 60 * _MINUTE_MS
_DAY_MS = 24 * _HOUR_MS


def fmt_price(price: float | None, *, min_decimals: int = 2, max_decimals: int = 8) -> str:
    """价格越小保留的小数位越多，并去掉尾部 0。"""
    if price is None:
        return "NA"
    p = float(price)
    ap = abs(p)
    if ap == 0:
        return "0"
    if ap == float("inf"):
        return "inf" if p > 0 else "-inf"

    if ap >= 1000:
        decimals = 2
    elif ap >= 1:
        decimals = 4
    elif ap >= 0.01:
        decimals = 6
    else:
        decimals = 8
    decimals = max(min_decimals, min(max_decimals, decimals))
    return f"{p:.{decimals}f}".rstrip("0").rstrip(".")


def format_duration(duration_ms: float) -> str:
    """把毫秒时长格式化为“最大单位 + 次级单位”。

    Examples
    --------
    >>> format_duration(2 * 86_400_000 + 3 * 3_600_000)
    '2d 3h'
    >>> format_duration(12_000)
    '12s'
    """
    ms = max(0, int(duration_ms))
    days, rem = divmod(ms, _DAY_MS)
    hours, rem = divmod(rem, _HOUR_MS)
    minutes, rem = divmod(rem, _MINUTE_MS)
    seconds = rem // _SECOND_MS

    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"
