"""逐 tick 状态机：盯市 → 强平 → TP/SL → 提交 → 挂单触发。

顺序有意义：后一步依赖前一步在同一 tick 内的结果。
整个 tick 在持仓副本上计算，最后一次性提交到 PositionBook，外部读者看不到“半更新”的状态。

已知简化：
- 强平没收全部保证金，不入账、不写历史；
- TP/SL 部分成交时，保证金按创建时固定的 percentage 扣减，而余额入账按实时比例计算，
  持仓在 TP/SL 创建之后发生过变化时两者会不一致。
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from broker.order_router import OrderRouter
from broker.position_book import PositionBook
from engine import margin
from shared.models.models import (
    Account,
    OrderStatus,
    OrderType,
    Position,
    Side,
    TPSLOrder,
    TPSLStatus,
    TPSLType,
)
from shared.utils.logging import setup_logger
from shared.utils.precision import HUNDRED, ZERO, to_decimal


@dataclass(frozen=True)
class TPSLFill:
    position_id: str
    order_id: str
    type: TPSLType
    size: Decimal
    pnl: Decimal
    balance_credit: Decimal
    closed_position: bool


@dataclass
class TickReport:
    """单个 tick 的处理摘要。"""
    price: Decimal
    liquidated: list[Position] = field(default_factory=list)
    tpsl_fills: list[TPSLFill] = field(default_factory=list)
    filled_orders: list[str] = field(default_factory=list)
    canceled_orders: list[str] = field(default_factory=list)
    balance_delta: Decimal = ZERO


def is_liquidated(pos: Position, price: Decimal) -> bool:
    if pos.side is Side.LONG:
        return price <= pos.liquidation_price
    return price >= pos.liquidation_price


def tpsl_triggered(pos: Position, order: TPSLOrder, price: Decimal) -> bool:
    take_profit = order.type is TPSLType.TAKE_PROFIT
    if (pos.side is Side.LONG) == take_profit:
        return price >= order.trigger_price
    return price <= order.trigger_price


class TickProcessor:
    def __init__(self, account: Account, book: PositionBook, router: OrderRouter):
        self.account = account
        self.book = book
        self.router = router
        self.logger = setup_logger("tick-processor")

    def process(self, current_price: Any) -> TickReport:
        price = to_decimal(current_price, field="current_price")
        if price < 0:
            raise ValueError("price must be non-negative")
        report = TickReport(price=price)

        working = [copy.deepcopy(p) for p in self.book.positions]
        for pos in working:
            self._mark_to_market(pos, price)

        survivors: list[Position] = []
        for pos in working:
            if is_liquidated(pos, price):
                report.liquidated.append(pos)
                self.logger.warning(
                    "[LIQUIDATED] %s %s %s size=%s entry=%s liq=%s price=%s margin_lost=%s",
                    pos.id, pos.side.value, pos.symbol, pos.size, pos.entry_price, pos.liquidation_price,
                    price, pos.initial_margin,
                )
            else:
                survivors.append(pos)

        remaining: list[Position] = []
        for pos in survivors:
            if self._apply_tpsl(pos, price, report):
                remaining.append(pos)

        self.book.replace_all(remaining)
        self.account.balance += report.balance_delta

        self._scan_limit_orders(price, report)
        return report

    def _mark_to_market(self, pos: Position, price: Decimal) -> None:
        pos.unrealized_pnl = margin.pnl(pos.entry_price, price, pos.size, pos.side)
        pos.roe = margin.roe(pos.unrealized_pnl, pos.initial_margin)
        pos.margin_ratio = margin.margin_ratio(pos.maintenance_margin, pos.initial_margin + pos.unrealized_pnl)

    def _apply_tpsl(self, pos: Position, price: Decimal, report: TickReport) -> bool:
        """依次处理 TP 再 SL；返回持仓是否仍然存活。"""
        for order in [*pos.take_profit_orders, *pos.stop_loss_orders]:
            if not order.active or not tpsl_triggered(pos, order, price):
                continue

            close_size = min(order.size, pos.size)
            result = margin.partial_close_pnl(pos, close_size, price)
            full_close = order.size >= pos.size
            if self.book.record_all_closes:
                self.book.ledger.record_close(
                    pos, exit_price=price, size=close_size, realized_pnl=result.pnl,
                    margin_released=result.returned_margin,
                )
            report.balance_delta += result.balance_credit
            order.status = TPSLStatus.FILLED
            report.tpsl_fills.append(
                TPSLFill(
                    position_id=pos.id,
                    order_id=order.id,
                    type=order.type,
                    size=close_size,
                    pnl=result.pnl,
                    balance_credit=result.balance_credit,
                    closed_position=full_close,
                )
            )
            self.logger.info(
                "[%s] %s %s size=%s trigger=%s price=%s pnl=%s",
                order.type.value, pos.id, pos.side.value, close_size, order.trigger_price, price, result.pnl,
            )
            if full_close:
                return False

            pos.size -= order.size
            pos.initial_margin -= pos.initial_margin * order.percentage / HUNDRED
            pos.maintenance_margin = margin.maintenance_margin(pos.entry_price * pos.size, self.book.mmr)
            self._mark_to_market(pos, price)
        return True

    def _scan_limit_orders(self, price: Decimal, report: TickReport) -> None:
        # 0 价无法成交（保证金为 0），挂单保持 PENDING 等待后续 tick
        if price <= 0:
            return
        for order in self.router.pending_orders():
            if order.type is not OrderType.LIMIT or order.price is None:
                continue
            if order.side is Side.LONG:
                fire = price <= order.price
            else:
                fire = price >= order.price
            if not fire:
                continue

            result = self.router.submit_order(order.to_request(as_type=OrderType.MARKET), price, originating_order_id=order.id)
            if result.status == "filled":
                order.status = OrderStatus.FILLED
                report.filled_orders.append(order.id)
            else:
                order.status = OrderStatus.CANCELED
                report.canceled_orders.append(order.id)
