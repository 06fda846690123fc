"""平仓历史账本（append-only）。

- 只追加，不修改、不删除；Trade 本身是 frozen dataclass。
- 下游（排行榜/个人统计）只读取 realized_pnl / roe / closed_at。
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterator

from engine import margin
from shared.models.models import Position, Trade, utc_now
from shared.utils.ids import TRADE_PREFIX, new_id
from shared.utils.precision import HUNDRED
from utils.trade_logger import TradeLogger


class TradeHistoryLedger:
    def __init__(self, trades: list[Trade] | None = None, *, trade_logger: TradeLogger | None = None):
        self._trades: list[Trade] = list(trades or [])
        self.trade_logger = trade_logger

    def __len__(self) -> int:
        return len(self._trades)

    def __iter__(self) -> Iterator[Trade]:
        return iter(self._trades)

    @property
    def trades(self) -> tuple[Trade, ...]:
        """按平仓时间先后排列。"""
        return tuple(self._trades)

    def latest(self, n: int = 20) -> list[Trade]:
        """最新在前。"""
        return list(reversed(self._trades[-n:])) if n > 0 else []

    def append(self, trade: Trade) -> Trade:
        self._trades.append(trade)
        if self.trade_logger:
            self.trade_logger.log(trade)
        return trade

    def record_close(
        self,
        position: Position,
        *,
        exit_price: Decimal,
        size: Decimal,
        realized_pnl: Decimal,
        margin_released: Decimal,
    ) -> Trade:
        """由一次（部分或全部）平仓生成并追加 Trade。"""
        trade = Trade(
            id=new_id(TRADE_PREFIX),
            order_id=position.id,
            symbol=position.symbol,
            side=position.side,
            entry_price=position.entry_price,
            exit_price=exit_price,
            size=size,
            leverage=position.leverage,
            realized_pnl=realized_pnl,
            roe=margin.roe(realized_pnl, margin_released),
            margin_mode=position.margin_mode,
            closed_percentage=size / position.size * HUNDRED,
            opened_at=position.timestamp,
            closed_at=utc_now(),
        )
        return self.append(trade)
