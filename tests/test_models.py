from decimal import Decimal

import pytest

from shared.models.models import OrderRequest, OrderType, Side, TimeInForce, Trade
from shared.utils.ids import new_id
from shared.utils.precision import decimal_str, snap_to_decimals, to_decimal


def test_to_decimal_goes_through_str():
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal(" 5 ") == Decimal("5")
    for bad in (True, None, "abc", float("nan"), "inf"):
        with pytest.raises(ValueError):
            to_decimal(bad)


def test_decimal_str_trims_trailing_zeros():
    assert decimal_str(Decimal("5000.000")) == "5000"
    assert decimal_str(Decimal("0.50")) == "0.5"
    assert decimal_str(Decimal("1E+2")) == "100"
    assert decimal_str(None) is None


def test_snap_to_decimals():
    assert snap_to_decimals(Decimal("1.005"), 2) == Decimal("1.01")
    assert snap_to_decimals(Decimal("1.005"), -1) == Decimal("1.005")


def test_order_request_create_accepts_loose_input():
    req = OrderRequest.create(type="LIMIT", side="SHORT", size=0.3, leverage="25", price=49000, time_in_force="IOC")
    assert req.type is OrderType.LIMIT
    assert req.side is Side.SHORT
    assert req.size == Decimal("0.3")
    assert req.price == Decimal("49000")
    assert req.time_in_force is TimeInForce.IOC
    with pytest.raises(ValueError):
        OrderRequest.create(type="STOP", side="LONG", size=1, leverage=1)


def test_trade_from_dict_tolerates_missing_optional_fields():
    trade = Trade.from_dict(
        {
            "id": "trd_1",
            "order_id": "pos_1",
            "symbol": "BTCUSDT",
            "side": "SHORT",
            "entry_price": "50000",
            "exit_price": "49000",
            "size": "0.1",
            "leverage": "10",
            "realized_pnl": "100",
            "closed_at": "2024-05-01T12:00:00Z",
        }
    )
    assert trade.closed_percentage == Decimal("100")
    assert trade.fee == 0
    assert trade.closed_at.tzinfo is not None
    assert trade.to_dict()["closed_at"] == "2024-05-01T12:00:00Z"


def test_new_id_prefix():
    a, b = new_id("pos"), new_id("pos")
    assert a.startswith("pos_") and a != b
