"""行情数据模块（market_data）。

该包只处理“已经拿到手”的 K 线：周期换算、聚合、CSV 读取、DataFrame 转换。
行情下载与实时推送不在本仓库范围内，由调用方把收盘 K 线喂给引擎。
"""

from market_data.candles import (
    CandleWindow,
    aggregate_candles,
    candles_to_frame,
    load_candles_csv,
    timeframe_to_ms,
)

__all__ = [
    "CandleWindow",
    "aggregate_candles",
    "candles_to_frame",
    "load_candles_csv",
    "timeframe_to_ms",
]
