"""持仓簿：持仓的唯一权威来源（按开仓顺序保存）。

所有会改变余额的持仓操作都在这里完成；OrderRouter 只负责决定“开/加/减/反”，
TickProcessor 负责强平与 TP/SL，两者最终都通过本模块落地。

历史记录的不对称是刻意保留的行为：
- close_position（手动全平）总是写入一条 Trade；
- 部分平仓、一键全平、反手、下单导致的减仓/平仓、TP/SL 成交默认不写入，
  除非 `record_all_closes=True`；
- 强平永远不写入。
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from broker.trade_ledger import TradeHistoryLedger
from engine import margin
from shared.models.models import (
    Account,
    OrderType,
    Position,
    Side,
    TPSLOrder,
    TPSLType,
    Trade,
    TriggerType,
    utc_now,
)
from shared.utils.ids import POSITION_PREFIX, TPSL_PREFIX, new_id
from shared.utils.logging import setup_logger
from shared.utils.precision import HUNDRED, ZERO, optional_decimal, to_decimal


class PositionBook:
    def __init__(
        self,
        account: Account,
        ledger: TradeHistoryLedger,
        *,
        maintenance_margin_rate: Decimal = margin.DEFAULT_MMR,
        record_all_closes: bool = False,
        positions: list[Position] | None = None,
    ):
        self.account = account
        self.ledger = ledger
        self.mmr = to_decimal(maintenance_margin_rate, field="maintenance_margin_rate")
        self.record_all_closes = record_all_closes
        self._positions: list[Position] = list(positions or [])
        self.logger = setup_logger("position-book")

    # ------------------------------------------------------------------ queries
    @property
    def positions(self) -> list[Position]:
        return list(self._positions)

    def __len__(self) -> int:
        return len(self._positions)

    def get(self, position_id: str) -> Position | None:
        for pos in self._positions:
            if pos.id == position_id:
                return pos
        return None

    def find_counterpart(self, symbol: str, side: Side, *, one_way: bool) -> Position | None:
        """单向持仓：同品种任意方向；双向持仓：只看同方向。"""
        for pos in self._positions:
            if pos.symbol != symbol:
                continue
            if one_way or pos.side is side:
                return pos
        return None

    # --------------------------------------------------------- router primitives
    def open_position(self, *, symbol: str, side: Side, size: Decimal, price: Decimal, leverage: Decimal) -> Position:
        required = margin.initial_margin(price, size, leverage)
        pos = Position(
            id=new_id(POSITION_PREFIX),
            symbol=symbol,
            side=side,
            size=size,
            entry_price=price,
            leverage=leverage,
            initial_margin=required,
            liquidation_price=margin.liquidation_price(
                price, leverage, side, self.account.balance - required, self.mmr
            ),
            margin_mode=self.account.settings.default_margin_mode,
            maintenance_margin=margin.maintenance_margin(price * size, self.mmr),
        )
        self.account.balance -= required
        self._positions.append(pos)
        self.logger.info(
            "[OPEN] %s %s size=%s entry=%s lev=%s margin=%s liq=%s",
            pos.side.value, pos.symbol, size, price, leverage, required, pos.liquidation_price,
        )
        return pos

    def merge_position(self, pos: Position, *, size: Decimal, price: Decimal, required_margin: Decimal) -> Position:
        """同方向加仓：均价按数量加权，杠杆按 名义价值/总保证金 重算。"""
        new_size = pos.size + size
        new_entry = (pos.entry_price * pos.size + price * size) / new_size
        new_margin = pos.initial_margin + required_margin
        new_leverage = new_entry * new_size / new_margin

        self.account.balance -= required_margin
        pos.size = new_size
        pos.entry_price = new_entry
        pos.initial_margin = new_margin
        pos.leverage = new_leverage
        pos.liquidation_price = margin.liquidation_price(new_entry, new_leverage, pos.side, self.account.balance, self.mmr)
        pos.maintenance_margin = margin.maintenance_margin(new_entry * new_size, self.mmr)
        self.logger.info(
            "[MERGE] %s %s size=%s entry=%s lev=%s margin=%s",
            pos.side.value, pos.symbol, new_size, new_entry, new_leverage, new_margin,
        )
        return pos

    def reduce_position(self, pos: Position, *, size: Decimal, price: Decimal, record: bool | None = None) -> margin.PartialClose:
        """按比例减仓：释放对应保证金并结算该部分盈亏。调用方保证 size < pos.size。"""
        result = margin.partial_close_pnl(pos, size, price)
        if record is None:
            record = self.record_all_closes
        if record:
            self.ledger.record_close(
                pos, exit_price=price, size=size, realized_pnl=result.pnl, margin_released=result.returned_margin
            )
        self.account.balance += result.balance_credit
        pos.size = result.remaining_size
        pos.initial_margin = pos.initial_margin - result.returned_margin
        pos.maintenance_margin = margin.maintenance_margin(pos.entry_price * pos.size, self.mmr)
        self.logger.info(
            "[REDUCE] %s %s closed=%s remaining=%s pnl=%s credit=%s",
            pos.side.value, pos.symbol, size, pos.size, result.pnl, result.balance_credit,
        )
        return result

    def settle_full_close(self, pos: Position, *, price: Decimal, record: bool) -> tuple[Decimal, Trade | None]:
        """全平：余额返还 初始保证金 + pnl，移出持仓簿。"""
        realized = margin.pnl(pos.entry_price, price, pos.size, pos.side)
        trade = None
        if record:
            trade = self.ledger.record_close(
                pos, exit_price=price, size=pos.size, realized_pnl=realized, margin_released=pos.initial_margin
            )
        self.account.balance += pos.initial_margin + realized
        self._remove(pos.id)
        self.logger.info("[CLOSE] %s %s size=%s exit=%s pnl=%s", pos.side.value, pos.symbol, pos.size, price, realized)
        return realized, trade

    def replace_all(self, positions: list[Position]) -> None:
        """TickProcessor 提交一次 tick 的处理结果。"""
        self._positions = list(positions)

    def _remove(self, position_id: str) -> None:
        self._positions = [p for p in self._positions if p.id != position_id]

    # -------------------------------------------------------------- user commands
    def close_position(self, position_id: str, current_price: Any) -> Trade | None:
        price = to_decimal(current_price, field="current_price")
        pos = self.get(position_id)
        if pos is None:
            self.logger.warning("close_position: unknown position %s", position_id)
            return None
        _, trade = self.settle_full_close(pos, price=price, record=True)
        return trade

    def partial_close_position(self, position_id: str, amount: Any, current_price: Any) -> margin.PartialClose | None:
        qty = to_decimal(amount, field="amount")
        if qty <= 0:
            raise ValueError("partial close amount must be positive")
        price = to_decimal(current_price, field="current_price")
        pos = self.get(position_id)
        if pos is None:
            self.logger.warning("partial_close_position: unknown position %s", position_id)
            return None
        if qty >= pos.size:
            realized, _ = self.settle_full_close(pos, price=price, record=True)
            return margin.PartialClose(pnl=realized, returned_margin=pos.initial_margin, remaining_size=ZERO)
        return self.reduce_position(pos, size=qty, price=price)

    def reverse_position(self, position_id: str, current_price: Any) -> Position | None:
        """反手：平掉原仓位，按相同数量/杠杆在反方向开新仓；TP/SL 不继承。"""
        price = to_decimal(current_price, field="current_price")
        pos = self.get(position_id)
        if pos is None:
            self.logger.warning("reverse_position: unknown position %s", position_id)
            return None

        econ = margin.reverse_position_economics(pos, price)
        returned = pos.initial_margin + econ.close_pnl
        new_margin = margin.initial_margin(price, econ.new_size, pos.leverage)
        if self.account.balance + returned < new_margin:
            self.logger.warning(
                "reverse_position: insufficient balance for %s (need %s, have %s)",
                position_id, new_margin, self.account.balance + returned,
            )
            return None

        if self.record_all_closes:
            self.ledger.record_close(
                pos, exit_price=price, size=pos.size, realized_pnl=econ.close_pnl, margin_released=pos.initial_margin
            )
        self.account.balance += returned - new_margin
        reversed_pos = Position(
            id=new_id(POSITION_PREFIX),
            symbol=pos.symbol,
            side=econ.new_side,
            size=econ.new_size,
            entry_price=price,
            leverage=pos.leverage,
            initial_margin=new_margin,
            liquidation_price=margin.liquidation_price(price, pos.leverage, econ.new_side, self.account.balance, self.mmr),
            margin_mode=pos.margin_mode,
            maintenance_margin=margin.maintenance_margin(price * econ.new_size, self.mmr),
        )
        self._positions = [reversed_pos if p.id == pos.id else p for p in self._positions]
        self.logger.info(
            "[REVERSE] %s -> %s %s size=%s entry=%s pnl=%s",
            pos.side.value, reversed_pos.side.value, pos.symbol, reversed_pos.size, price, econ.close_pnl,
        )
        return reversed_pos

    def close_all_positions(self, current_price: Any) -> Decimal:
        """一键全平：所有仓位的 保证金+pnl 合并为一次余额入账。"""
        price = to_decimal(current_price, field="current_price")
        total_return = ZERO
        for pos in self._positions:
            realized = margin.pnl(pos.entry_price, price, pos.size, pos.side)
            if self.record_all_closes:
                self.ledger.record_close(
                    pos, exit_price=price, size=pos.size, realized_pnl=realized, margin_released=pos.initial_margin
                )
            total_return += pos.initial_margin + realized
        closed = len(self._positions)
        self.account.balance += total_return
        self._positions = []
        if closed:
            self.logger.info("[CLOSE ALL] closed=%s total_return=%s", closed, total_return)
        return total_return

    def adjust_margin(self, position_id: str, amount: Any) -> Position | None:
        """追加（正数）或减少（负数）仓位保证金，重算杠杆与强平价。"""
        delta = to_decimal(amount, field="amount")
        if delta == 0:
            raise ValueError("margin adjustment must be non-zero")
        pos = self.get(position_id)
        if pos is None:
            self.logger.warning("adjust_margin: unknown position %s", position_id)
            return None
        if delta > 0 and self.account.balance < delta:
            self.logger.warning("adjust_margin: insufficient balance (need %s, have %s)", delta, self.account.balance)
            return None
        new_margin = pos.initial_margin + delta
        if new_margin <= pos.maintenance_margin:
            raise ValueError("margin after adjustment must stay above maintenance margin")

        new_leverage = margin.leverage_after_margin_adjust(pos, delta)
        pos.liquidation_price = margin.liquidation_after_margin_adjust(pos, delta, self.mmr)
        pos.leverage = new_leverage
        pos.initial_margin = new_margin
        self.account.balance -= delta
        self.logger.info("[MARGIN] %s %s delta=%s lev=%s liq=%s", pos.side.value, pos.symbol, delta, new_leverage, pos.liquidation_price)
        return pos

    # ------------------------------------------------------------------- TP / SL
    def add_take_profit_order(self, position_id: str, **params: Any) -> TPSLOrder | None:
        return self._add_tpsl(position_id, TPSLType.TAKE_PROFIT, **params)

    def add_stop_loss_order(self, position_id: str, **params: Any) -> TPSLOrder | None:
        return self._add_tpsl(position_id, TPSLType.STOP_LOSS, **params)

    def _add_tpsl(
        self,
        position_id: str,
        tpsl_type: TPSLType,
        *,
        trigger_price: Any,
        size: Any = None,
        percentage: Any = None,
        order_type: OrderType | str = OrderType.MARKET,
        limit_price: Any = None,
        trigger_type: TriggerType | str = TriggerType.LAST_PRICE,
    ) -> TPSLOrder | None:
        trigger = to_decimal(trigger_price, field="trigger_price")
        if trigger <= 0:
            raise ValueError("trigger_price must be positive")
        qty = optional_decimal(size, field="size")
        pct = optional_decimal(percentage, field="percentage")

        pos = self.get(position_id)
        if pos is None:
            self.logger.warning("add %s: unknown position %s", tpsl_type.value, position_id)
            return None

        # size / percentage 以创建时的持仓规模互相换算，之后不再重算
        if qty is None and pct is None:
            qty, pct = pos.size, HUNDRED
        elif qty is None:
            qty = pos.size * pct / HUNDRED
        elif pct is None:
            pct = qty / pos.size * HUNDRED
        if qty <= 0 or pct <= 0:
            raise ValueError("TP/SL size and percentage must be positive")

        order = TPSLOrder(
            id=new_id(TPSL_PREFIX),
            type=tpsl_type,
            trigger_price=trigger,
            size=qty,
            percentage=pct,
            order_type=OrderType(order_type),
            limit_price=optional_decimal(limit_price, field="limit_price"),
            trigger_type=TriggerType(trigger_type),
            timestamp=utc_now(),
        )
        if tpsl_type is TPSLType.TAKE_PROFIT:
            pos.take_profit_orders.append(order)
        else:
            pos.stop_loss_orders.append(order)
        self.logger.info("[%s] %s trigger=%s size=%s (%s%%)", tpsl_type.value, position_id, trigger, qty, pct)
        return order

    def cancel_tpsl(self, position_id: str, tpsl_id: str) -> bool:
        pos = self.get(position_id)
        if pos is None:
            return False
        before = len(pos.take_profit_orders) + len(pos.stop_loss_orders)
        pos.take_profit_orders = [o for o in pos.take_profit_orders if o.id != tpsl_id]
        pos.stop_loss_orders = [o for o in pos.stop_loss_orders if o.id != tpsl_id]
        return len(pos.take_profit_orders) + len(pos.stop_loss_orders) < before
