"""行情数据模块（market_data）。

引擎只消费单一品种的最新价；这里负责把外部价格源（CSV 回放）转换为 `Tick` 流。
"""

from market_data.loader import iter_ticks, load_ticks_from_csv

__all__ = [
    "iter_ticks",
    "load_ticks_from_csv",
]
