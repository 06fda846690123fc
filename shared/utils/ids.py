"""持仓/订单/成交的不透明 ID 生成。

- 只要求进程内唯一且可序列化；不需要可重建（与交易所 client id 不同）。
- 带前缀便于在日志里一眼区分对象类型。
"""

from __future__ import annotations

import uuid

POSITION_PREFIX = "pos"
ORDER_PREFIX = "ord"
TPSL_PREFIX = "tpsl"
TRADE_PREFIX = "trd"


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"
