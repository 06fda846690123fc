from decimal import Decimal

import pytest

from engine import margin
from shared.models.models import Position, Side


def _pos(side=Side.LONG, size="1", entry="50000", lev="10", im="5000") -> Position:
    return Position(
        id="pos_test",
        symbol="BTCUSDT",
        side=side,
        size=Decimal(size),
        entry_price=Decimal(entry),
        leverage=Decimal(lev),
        initial_margin=Decimal(im),
        liquidation_price=margin.liquidation_price(entry, lev, side),
    )


def test_pnl_sign_by_side():
    assert margin.pnl(50000, 51000, "0.1", Side.LONG) == Decimal("100")
    assert margin.pnl(50000, 51000, "0.1", Side.SHORT) == Decimal("-100")


def test_pnl_keeps_decimal_precision():
    # 0.1 + 0.2 类浮点误差不能出现在结果里
    assert margin.pnl("0.3", "0.1", 3, Side.SHORT) == Decimal("0.6")


def test_roe_zero_margin_returns_zero():
    assert margin.roe(100, 0) == 0
    assert margin.roe(100, 500) == Decimal("20")


def test_initial_and_maintenance_margin():
    assert margin.initial_margin(50000, 1, 10) == Decimal("5000")
    assert margin.maintenance_margin(50000) == Decimal("250")


def test_margin_ratio_empty_balance_is_full_risk():
    assert margin.margin_ratio(250, 0) == Decimal("100")
    assert margin.margin_ratio(250, 5000) == Decimal("5")


def test_liquidation_price_both_sides():
    assert margin.liquidation_price(50000, 20, Side.LONG) == Decimal("47750")
    assert margin.liquidation_price(50000, 20, Side.SHORT) == Decimal("52250")
    assert margin.liquidation_price(50000, 10, Side.LONG) == Decimal("45250")


def test_partial_close_returns_proportional_margin():
    res = margin.partial_close_pnl(_pos(), Decimal("0.5"), 55000)
    assert res.pnl == Decimal("2500")
    assert res.returned_margin == Decimal("2500")
    assert res.remaining_size == Decimal("0.5")
    assert res.balance_credit == Decimal("5000")


def test_reverse_economics_flips_side():
    econ = margin.reverse_position_economics(_pos(), 53000)
    assert econ.close_pnl == Decimal("3000")
    assert econ.new_side is Side.SHORT
    assert econ.new_size == Decimal("1")


def test_estimate_tpsl_profit():
    tp, sl = margin.estimate_tpsl_profit(_pos(), 55000, 48000, Decimal("0.5"))
    assert tp == Decimal("2500")
    assert sl == Decimal("-1000")
    assert margin.estimate_tpsl_profit(_pos(), None, None, 1) == (None, None)


def test_margin_adjust_recomputes_leverage_and_liquidation():
    pos = _pos()
    assert margin.leverage_after_margin_adjust(pos, 5000) == Decimal("5")
    assert margin.liquidation_after_margin_adjust(pos, 5000) == Decimal("40250")
    with pytest.raises(ValueError):
        margin.leverage_after_margin_adjust(pos, -5000)


def test_cross_margin_liquidation_takes_minimum():
    assert margin.cross_margin_liquidation([]) == 0
    a = _pos(lev="10")
    b = _pos(lev="20", im="2500")
    assert margin.cross_margin_liquidation([a, b]) == Decimal("45250")
