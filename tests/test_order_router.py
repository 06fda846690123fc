from decimal import Decimal

import pytest

from broker.order_router import INSUFFICIENT_BALANCE, OrderValidationError
from shared.models.models import OrderRequest, OrderStatus, PositionMode, Side


def test_market_open_debits_margin(desk):
    res = desk.market("LONG", 1, 10, 50000)
    assert res.status == "filled"
    assert res.exec_price == Decimal("50000")
    assert desk.account.balance == Decimal("5000")

    pos = desk.book.get(res.position_id)
    assert pos is not None
    assert pos.side is Side.LONG
    assert pos.initial_margin == Decimal("5000")
    assert pos.liquidation_price == Decimal("45250")


def test_merge_rejected_when_margin_exceeds_balance(desk):
    first = desk.market("LONG", 1, 10, 50000)
    res = desk.market("LONG", 1, 10, 52000)

    assert res.status == "blocked"
    assert res.reason == INSUFFICIENT_BALANCE
    assert desk.account.balance == Decimal("5000")
    pos = desk.book.get(first.position_id)
    assert pos.size == Decimal("1")
    assert pos.entry_price == Decimal("50000")


def test_merge_uses_volume_weighted_entry(desk):
    desk.market("LONG", "0.1", 10, 50000)
    res = desk.market("LONG", "0.1", 10, 52000)

    assert len(desk.book) == 1
    pos = desk.book.get(res.position_id)
    assert pos.size == Decimal("0.2")
    assert pos.entry_price == Decimal("51000")
    assert pos.initial_margin == Decimal("1020")
    # 杠杆按 名义价值/总保证金 重算
    assert pos.leverage == Decimal("10")
    assert desk.account.balance == Decimal("8980")


def test_opposite_smaller_order_reduces_position(desk):
    desk.market("LONG", 1, 10, 50000)
    res = desk.market("SHORT", "0.4", 10, 51000)

    assert res.realized_pnl == Decimal("400")
    pos = desk.book.get(res.position_id)
    assert pos.side is Side.LONG
    assert pos.size == Decimal("0.6")
    assert pos.initial_margin == Decimal("3000")
    assert desk.account.balance == Decimal("7400")
    # 下单导致的减仓默认不写历史
    assert len(desk.ledger) == 0


def test_opposite_larger_order_closes_and_flips_remainder(desk):
    desk.market("LONG", 1, 10, 50000)
    res = desk.market("SHORT", "1.5", 20, 49000)

    assert res.realized_pnl == Decimal("-1000")
    positions = desk.book.positions
    assert len(positions) == 1
    assert positions[0].side is Side.SHORT
    assert positions[0].size == Decimal("0.5")
    assert positions[0].entry_price == Decimal("49000")
    assert desk.account.balance == Decimal("7775")


def test_opposite_equal_order_flattens(desk):
    desk.market("LONG", 1, 10, 50000)
    res = desk.market("SHORT", 1, 10, 50000)

    assert res.status == "filled"
    assert res.position_id is None
    assert desk.book.positions == []
    assert desk.account.balance == Decimal("10000")


def test_marketable_limit_fills_at_current_price(desk):
    res = desk.limit("LONG", "0.1", 10, 51000, 50000)
    assert res.status == "filled"
    assert res.exec_price == Decimal("50000")
    assert desk.router.orders == []


def test_non_marketable_limit_is_queued_without_reserving_margin(desk):
    res = desk.limit("LONG", "0.1", 10, 49000, 50000)
    assert res.status == "pending"
    assert desk.account.balance == Decimal("10000")

    order = desk.router.get_order(res.order_id)
    assert order.status is OrderStatus.PENDING
    assert order.price == Decimal("49000")


def test_short_limit_marketability(desk):
    assert desk.limit("SHORT", "0.1", 10, 51000, 50000).status == "pending"
    assert desk.limit("SHORT", "0.1", 10, 49000, 50000).status == "filled"


@pytest.mark.parametrize(
    "kwargs, price",
    [
        ({"type": "MARKET", "side": "LONG", "size": 0, "leverage": 10}, 50000),
        ({"type": "MARKET", "side": "LONG", "size": -1, "leverage": 10}, 50000),
        ({"type": "MARKET", "side": "LONG", "size": 1, "leverage": "0.5"}, 50000),
        ({"type": "LIMIT", "side": "LONG", "size": 1, "leverage": 10}, 50000),
        ({"type": "MARKET", "side": "LONG", "size": 1, "leverage": 10}, 0),
    ],
)
def test_invalid_orders_raise_before_mutation(desk, kwargs, price):
    with pytest.raises(OrderValidationError):
        desk.router.submit_order(OrderRequest.create(**kwargs), price)
    assert desk.account.balance == Decimal("10000")
    assert desk.book.positions == []
    assert desk.router.orders == []


def test_blocked_order_leaves_state_untouched(desk):
    res = desk.market("LONG", 10, 10, 50000)
    assert res.status == "blocked"
    assert not res.ok
    assert desk.account.balance == Decimal("10000")
    assert desk.book.positions == []


def test_hedge_mode_keeps_both_sides(make_desk):
    desk = make_desk(position_mode=PositionMode.HEDGE)
    desk.market("LONG", 1, 10, 50000)
    desk.market("SHORT", "0.5", 10, 50000)

    sides = sorted(p.side.value for p in desk.book.positions)
    assert sides == ["LONG", "SHORT"]
    assert desk.account.balance == Decimal("2500")


def test_hedge_mode_merges_same_side(make_desk):
    desk = make_desk(position_mode=PositionMode.HEDGE)
    desk.market("SHORT", "0.1", 10, 50000)
    desk.market("SHORT", "0.1", 10, 50000)
    assert len(desk.book) == 1
    assert desk.book.positions[0].size == Decimal("0.2")


def test_cancel_order_removes_it(desk):
    res = desk.limit("LONG", "0.1", 10, 49000, 50000)
    assert desk.router.cancel_order(res.order_id) is True
    assert desk.router.orders == []
    assert desk.router.cancel_order(res.order_id) is False
