import csv
from decimal import Decimal

from broker.trade_ledger import TradeHistoryLedger
from utils.metrics import compute_balance_watermarks, compute_trade_stats
from utils.trade_logger import TradeLogger


def _close(desk, entry, exit_, side="LONG"):
    opened = desk.market(side, "0.1", 10, entry)
    return desk.book.close_position(opened.position_id, exit_)


def test_latest_is_newest_first(desk):
    first = _close(desk, 50000, 51000)
    second = _close(desk, 50000, 49000)

    assert desk.ledger.trades == (first, second)
    assert desk.ledger.latest(1) == [second]
    assert desk.ledger.latest(5) == [second, first]
    assert desk.ledger.latest(0) == []


def test_trade_stats(desk):
    _close(desk, 50000, 51000)
    _close(desk, 50000, 49500)
    _close(desk, 50000, 52000, side="SHORT")

    stats = compute_trade_stats(desk.ledger)
    assert stats["total_trades"] == 3
    assert stats["winning_trades"] == 1
    assert stats["losing_trades"] == 2
    assert stats["total_pnl"] == Decimal("-150")
    assert stats["best_trade"] == Decimal("100")
    assert stats["worst_trade"] == Decimal("-200")
    assert stats["last_trade_at"] == desk.ledger.trades[-1].closed_at


def test_empty_stats():
    stats = compute_trade_stats([])
    assert stats["total_trades"] == 0
    assert stats["win_rate"] == 0
    assert stats["last_trade_at"] is None


def test_balance_watermarks():
    wm = compute_balance_watermarks([Decimal(x) for x in ("100", "120", "90", "130", "125")])
    assert wm["all_time_high_balance"] == Decimal("130")
    assert wm["max_drawdown"] == Decimal("25")


def test_trade_logger_writes_daily_csv(tmp_path, make_desk):
    desk = make_desk()
    logger = TradeLogger(tmp_path)
    desk.book.ledger = desk.ledger = TradeHistoryLedger(trade_logger=logger)
    trade = _close(desk, 50000, 51000)
    logger.close()

    (csv_file,) = tmp_path.glob("trades_*.csv")
    with csv_file.open(newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 1
    assert rows[0]["trade_id"] == trade.id
    assert rows[0]["side"] == "LONG"
    assert rows[0]["realized_pnl"] == "100.0000"
