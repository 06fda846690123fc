"""保证金 / PnL / 强平价计算（纯函数，无状态）。

全部使用 Decimal：高杠杆会把浮点误差按倍数放大。

强平价采用简化的逐仓模型：
    LONG : entry * (1 - 1/leverage + mmr)
    SHORT: entry * (1 + 1/leverage - mmr)
不考虑资金费率与多仓位之间的相互影响，`wallet_balance` 参数仅为签名兼容而保留。
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from shared.models.models import Position, Side
from shared.utils.precision import HUNDRED, ONE, ZERO, to_decimal

DEFAULT_MMR = Decimal("0.005")


@dataclass(frozen=True)
class PartialClose:
    pnl: Decimal
    returned_margin: Decimal
    remaining_size: Decimal

    @property
    def balance_credit(self) -> Decimal:
        """实际回到余额的金额：按比例释放的保证金 + 已实现盈亏（可能为负）。"""
        return self.returned_margin + self.pnl


@dataclass(frozen=True)
class ReverseEconomics:
    close_pnl: Decimal
    new_side: Side
    new_size: Decimal


def pnl(entry_price: Any, current_price: Any, size: Any, side: Side) -> Decimal:
    entry = to_decimal(entry_price, field="entry_price")
    current = to_decimal(current_price, field="current_price")
    qty = to_decimal(size, field="size")
    if side is Side.LONG:
        return (current - entry) * qty
    return (entry - current) * qty


def roe(pnl_value: Any, initial_margin: Any) -> Decimal:
    """ROE（%）= pnl / 初始保证金 * 100，保证金为 0 时返回 0。"""
    margin = to_decimal(initial_margin, field="initial_margin")
    if margin == 0:
        return ZERO
    return to_decimal(pnl_value, field="pnl") / margin * HUNDRED


def initial_margin(price: Any, size: Any, leverage: Any) -> Decimal:
    return to_decimal(price, field="price") * to_decimal(size, field="size") / to_decimal(leverage, field="leverage")


def maintenance_margin(position_value: Any, maintenance_margin_rate: Any = DEFAULT_MMR) -> Decimal:
    return to_decimal(position_value, field="position_value") * to_decimal(maintenance_margin_rate)


def margin_ratio(maintenance: Any, margin_balance: Any) -> Decimal:
    """风险率（%）；保证金余额为 0 视为 100%。"""
    balance = to_decimal(margin_balance, field="margin_balance")
    if balance == 0:
        return HUNDRED
    return to_decimal(maintenance, field="maintenance_margin") / balance * HUNDRED


def liquidation_price(
    entry_price: Any,
    leverage: Any,
    side: Side,
    wallet_balance: Any = None,
    maintenance_margin_rate: Any = DEFAULT_MMR,
) -> Decimal:
    entry = to_decimal(entry_price, field="entry_price")
    lev = to_decimal(leverage, field="leverage")
    mmr = to_decimal(maintenance_margin_rate)
    if side is Side.LONG:
        return entry * (ONE - ONE / lev + mmr)
    return entry * (ONE + ONE / lev - mmr)


def partial_close_pnl(position: Position, close_size: Any, current_price: Any) -> PartialClose:
    qty = to_decimal(close_size, field="close_size")
    realized = pnl(position.entry_price, current_price, qty, position.side)
    returned = position.initial_margin * (qty / position.size)
    return PartialClose(pnl=realized, returned_margin=returned, remaining_size=position.size - qty)


def reverse_position_economics(position: Position, current_price: Any) -> ReverseEconomics:
    return ReverseEconomics(
        close_pnl=pnl(position.entry_price, current_price, position.size, position.side),
        new_side=position.side.opposite,
        new_size=position.size,
    )


def estimate_tpsl_profit(
    position: Position,
    tp_price: Any | None,
    sl_price: Any | None,
    size: Any,
) -> tuple[Decimal | None, Decimal | None]:
    """估算 TP/SL 触发时的盈亏（下单弹窗预览用）。"""
    tp_profit = pnl(position.entry_price, tp_price, size, position.side) if tp_price is not None else None
    sl_loss = pnl(position.entry_price, sl_price, size, position.side) if sl_price is not None else None
    return tp_profit, sl_loss


def leverage_after_margin_adjust(position: Position, additional_margin: Any) -> Decimal:
    new_margin = position.initial_margin + to_decimal(additional_margin, field="additional_margin")
    if new_margin <= 0:
        raise ValueError("margin after adjustment must be positive")
    return position.entry_price * position.size / new_margin


def liquidation_after_margin_adjust(
    position: Position,
    additional_margin: Any,
    maintenance_margin_rate: Any = DEFAULT_MMR,
) -> Decimal:
    new_leverage = leverage_after_margin_adjust(position, additional_margin)
    return liquidation_price(position.entry_price, new_leverage, position.side, ZERO, maintenance_margin_rate)


def cross_margin_liquidation(positions: Iterable[Position]) -> Decimal:
    """全仓强平价的粗略估计：取各仓位强平价的最小值。"""
    prices = [p.liquidation_price for p in positions]
    if not prices:
        return ZERO
    return min(prices)
