"""精度与步进工具（下单数量裁剪、价格展示稳定）。"""

from __future__ import annotations

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation


def decimals_from_step(step: float) -> int:
    """由步进（如 0.001）推导小数位数；非法输入视为 0 位。"""
    try:
        d = Decimal(str(step))
    except InvalidOperation:
        return 0
    if d <= 0:
        return 0
    return max(0, -int(d.normalize().as_tuple().exponent))


def floor_to_step(value: float, step: float | None) -> float:
    """把 value 向下裁剪到 step 的整数倍。

    step 为空或 <= 0 时原样返回；用 Decimal 计算以避免 0.1 + 0.2 类噪声。
    """
    if step is None or float(step) <= 0:
        return float(value)
    sd = Decimal(str(step))
    units = (Decimal(str(value)) / sd).to_integral_value(rounding=ROUND_FLOOR)
    out = units * sd
    return float(out.quantize(Decimal(1).scaleb(-decimals_from_step(step))))


def round_to_precision(value: float, decimals: int | None) -> float:
    """四舍五入到指定小数位（交易所 quantity/price precision 语义）。"""
    if decimals is None or int(decimals) < 0:
        return float(value)
    q = Decimal(1).scaleb(-int(decimals))
    return float(Decimal(str(value)).quantize(q, rounding=ROUND_HALF_UP))
