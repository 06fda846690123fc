"""执行引擎层（engine）。

- `margin`：保证金 / PnL / 强平价纯函数；
- `tick_processor`：逐 tick 状态机；
- `futures_engine`：对外的命令/查询 API 与持久化；
- `replay`：CSV 价格回放（`ReplayRunner.run() -> ReplayResult`）。

命令行入口由仓库根目录 `main.py` 统一承载。
"""
