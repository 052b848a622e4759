"""执行引擎层（engine）。

- `lifecycle`：持仓生命周期状态机（回测与实盘共用）；
- `backtest_engine` / `optimization_engine`：单次回测与网格搜索；
- `live_session`：逐根推送 K 线的实盘/模拟盘会话。

命令行入口由仓库根目录 `main.py` 统一承载。
"""
