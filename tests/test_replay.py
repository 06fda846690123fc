from decimal import Decimal

import pytest

from engine.futures_engine import FuturesEngine
from engine.replay import ReplayRunner
from market_data import iter_ticks, load_ticks_from_csv
from shared.config.schema import EngineConfig


def _write(path, text):
    path.write_text(text, encoding="utf-8")
    return path


def test_load_ticks_supports_tick_and_kline_rows(tmp_path):
    ticks = list(load_ticks_from_csv(_write(tmp_path / "t.csv", "ts,price\n1700000000000,50000.5\n2024-01-01T00:00:00Z,51000\n")))
    assert [t.price for t in ticks] == [Decimal("50000.5"), Decimal("51000")]
    assert ticks[0].ts.year == 2023
    assert ticks[0].symbol == "BTCUSDT"

    bars = list(load_ticks_from_csv(_write(tmp_path / "k.csv", "start_ts,end_ts,close,symbol\n1,1700000000,42000,ethusdt\n")))
    assert bars[0].symbol == "ETHUSDT"
    assert bars[0].price == Decimal("42000")


def test_iter_ticks_filters_symbol(tmp_path):
    path = _write(tmp_path / "t.csv", "ts,price,symbol\n1,1,BTCUSDT\n2,2,ETHUSDT\n")
    assert [t.price for t in iter_ticks(load_ticks_from_csv(path), symbol="ETHUSDT")] == [Decimal("2")]


def test_bad_rows_raise(tmp_path):
    with pytest.raises(ValueError):
        list(load_ticks_from_csv(_write(tmp_path / "a.csv", "ts,volume\n1,5\n")))
    with pytest.raises(ValueError):
        list(load_ticks_from_csv(_write(tmp_path / "b.csv", "ts,price\nyesterday,5\n")))


def test_replay_drives_liquidation_and_limit_fill(tmp_path):
    engine = FuturesEngine(EngineConfig())
    engine.submit_order({"type": "MARKET", "side": "LONG", "size": 1, "leverage": 20}, 50000)
    engine.submit_order({"type": "LIMIT", "side": "LONG", "size": "0.1", "leverage": 10, "price": 46000}, 50000)
    path = _write(tmp_path / "ticks.csv", "ts,price\n1,49000\n2,47000\n3,45900\n4,46500\n")

    result = ReplayRunner(engine, path).run()

    s = result.summary
    assert s["ticks"] == 4
    assert s["last_price"] == Decimal("46500")
    assert s["liquidations"] == 1
    assert s["order_fills"] == 1
    assert s["open_positions"] == 1
    assert s["pending_orders"] == 0
    assert s["start_balance"] == Decimal("7500")
    assert s["end_balance"] == Decimal("7041")


def test_replay_respects_max_ticks(tmp_path):
    engine = FuturesEngine(EngineConfig())
    path = _write(tmp_path / "ticks.csv", "ts,price\n1,1\n2,2\n3,3\n")
    assert ReplayRunner(engine, path, max_ticks=2).run().summary["ticks"] == 2

    with pytest.raises(FileNotFoundError):
        ReplayRunner(engine, tmp_path / "missing.csv").run()
