"""下单路由（纸面永续合约）。

- MARKET：按当前价立即成交；
- LIMIT：若已“可成交”（多单限价 >= 现价 / 空单限价 <= 现价）则按现价立即成交（价格改善归交易者），
  否则进入挂单队列，由 TickProcessor 在后续 tick 中触发；
- 成交后按持仓模式决定开仓 / 加仓 / 减仓 / 平仓并反向开仓。

只支持整单成交：不做部分成交、maker/taker 区分，TIF/postOnly/reduceOnly 仅作为配置字段保存。
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from broker.position_book import PositionBook
from engine import margin
from shared.models.models import (
    Account,
    Order,
    OrderRequest,
    OrderResult,
    OrderStatus,
    OrderType,
    PositionMode,
    Side,
)
from shared.utils.ids import ORDER_PREFIX, new_id
from shared.utils.logging import setup_logger
from shared.utils.precision import ONE, ZERO, to_decimal


class OrderValidationError(ValueError):
    """下单参数非法（数量/价格/杠杆），在任何状态变更之前抛出。"""


INSUFFICIENT_BALANCE = "insufficient_balance"


class OrderRouter:
    def __init__(
        self,
        account: Account,
        book: PositionBook,
        *,
        symbol: str,
        orders: list[Order] | None = None,
    ):
        self.account = account
        self.book = book
        self.symbol = symbol
        self._orders: list[Order] = list(orders or [])
        self.logger = setup_logger("order-router")

    @property
    def orders(self) -> list[Order]:
        return list(self._orders)

    def pending_orders(self) -> list[Order]:
        return [o for o in self._orders if o.status is OrderStatus.PENDING]

    def get_order(self, order_id: str) -> Order | None:
        for o in self._orders:
            if o.id == order_id:
                return o
        return None

    def cancel_order(self, order_id: str) -> bool:
        """撤单：标记 CANCELED 后立即从队列剔除（不保留已撤订单）。"""
        order = self.get_order(order_id)
        if order is None:
            return False
        order.status = OrderStatus.CANCELED
        self._orders = [o for o in self._orders if o.status is not OrderStatus.CANCELED]
        self.logger.info("[CANCEL] %s %s %s @ %s", order.id, order.side.value, order.size, order.price)
        return True

    @staticmethod
    def _validate(request: OrderRequest, price: Decimal) -> None:
        if price <= 0:
            raise OrderValidationError("current price must be positive")
        if request.size <= 0:
            raise OrderValidationError("size must be positive")
        if request.leverage < ONE:
            raise OrderValidationError("leverage must be >= 1")
        if request.type is OrderType.LIMIT and (request.price is None or request.price <= 0):
            raise OrderValidationError("limit order requires a positive price")

    @staticmethod
    def is_marketable(request: OrderRequest, current_price: Decimal) -> bool:
        if request.type is OrderType.MARKET:
            return True
        assert request.price is not None
        if request.side is Side.LONG:
            return request.price >= current_price
        return request.price <= current_price

    def submit_order(
        self,
        request: OrderRequest,
        current_price: Any,
        originating_order_id: str | None = None,
    ) -> OrderResult:
        """提交订单。

        Parameters
        ----------
        request:
            下单参数。
        current_price:
            当前市场价（成交价）。
        originating_order_id:
            由挂单触发的系统成交时传入原挂单 id：成交后从队列移除；余额不足时直接撤掉该挂单，
            避免余额恢复后“幽灵成交”反复重试。

        Raises
        ------
        OrderValidationError
            参数非法。
        """
        price = to_decimal(current_price, field="current_price")
        self._validate(request, price)
        symbol = request.symbol or self.symbol

        if not self.is_marketable(request, price):
            return self._enqueue(request, symbol)

        required = margin.initial_margin(price, request.size, request.leverage)
        if self.account.balance < required:
            if originating_order_id:
                self._orders = [o for o in self._orders if o.id != originating_order_id]
                self.logger.warning(
                    "[AUTO-CANCEL] order %s canceled: insufficient balance (need %s, have %s)",
                    originating_order_id, required, self.account.balance,
                )
            else:
                self.logger.warning(
                    "[BLOCKED] %s %s size=%s: insufficient balance (need %s, have %s)",
                    request.side.value, symbol, request.size, required, self.account.balance,
                )
            return OrderResult(status="blocked", reason=INSUFFICIENT_BALANCE, order_id=originating_order_id)

        result = self._execute(request, symbol=symbol, price=price, required=required)
        if originating_order_id:
            self._orders = [o for o in self._orders if o.id != originating_order_id]
            result = OrderResult(
                status=result.status,
                reason=result.reason,
                order_id=originating_order_id,
                position_id=result.position_id,
                exec_price=result.exec_price,
                realized_pnl=result.realized_pnl,
            )
        return result

    def _enqueue(self, request: OrderRequest, symbol: str) -> OrderResult:
        order = Order(
            id=new_id(ORDER_PREFIX),
            symbol=symbol,
            type=request.type,
            side=request.side,
            size=request.size,
            leverage=request.leverage,
            price=request.price,
            trigger_type=request.trigger_type,
            time_in_force=request.time_in_force,
            post_only=request.post_only,
            reduce_only=request.reduce_only,
            close_position=request.close_position,
        )
        self._orders.append(order)
        self.logger.info("[PENDING] %s %s %s size=%s @ %s", order.id, order.type.value, order.side.value, order.size, order.price)
        return OrderResult(status="pending", order_id=order.id)

    def _execute(self, request: OrderRequest, *, symbol: str, price: Decimal, required: Decimal) -> OrderResult:
        one_way = self.account.settings.position_mode is PositionMode.ONE_WAY
        existing = self.book.find_counterpart(symbol, request.side, one_way=one_way)

        if existing is None:
            pos = self.book.open_position(
                symbol=symbol, side=request.side, size=request.size, price=price, leverage=request.leverage
            )
            return OrderResult(status="filled", position_id=pos.id, exec_price=price)

        if existing.side is request.side:
            self.book.merge_position(existing, size=request.size, price=price, required_margin=required)
            return OrderResult(status="filled", position_id=existing.id, exec_price=price)

        # 单向持仓下的反方向订单：减仓，或平仓后用剩余数量反向开仓
        if request.size < existing.size:
            reduced = self.book.reduce_position(existing, size=request.size, price=price)
            return OrderResult(status="filled", position_id=existing.id, exec_price=price, realized_pnl=reduced.pnl)

        realized, _ = self.book.settle_full_close(existing, price=price, record=self.book.record_all_closes)
        remainder = request.size - existing.size
        if remainder > ZERO:
            pos = self.book.open_position(
                symbol=symbol, side=request.side, size=remainder, price=price, leverage=request.leverage
            )
            return OrderResult(status="filled", position_id=pos.id, exec_price=price, realized_pnl=realized)
        return OrderResult(status="filled", position_id=None, exec_price=price, realized_pnl=realized)
