"""平仓记录落盘（CSV，按 UTC 日期切文件）。"""

import csv
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional, TextIO

from shared.models.models import Trade

FIELDS = (
    "closed_at",
    "trade_id",
    "position_id",
    "symbol",
    "side",
    "size",
    "entry_price",
    "exit_price",
    "leverage",
    "realized_pnl",
    "roe",
    "closed_percentage",
    "margin_mode",
)


def trade_row(trade: Trade) -> dict[str, Any]:
    return {
        "closed_at": trade.closed_at.strftime("%Y-%m-%d %H:%M:%S"),
        "trade_id": trade.id,
        "position_id": trade.order_id,
        "symbol": trade.symbol,
        "side": trade.side.value,
        "size": f"{trade.size:f}",
        "entry_price": f"{trade.entry_price:.2f}",
        "exit_price": f"{trade.exit_price:.2f}",
        "leverage": f"{trade.leverage:.2f}",
        "realized_pnl": f"{trade.realized_pnl:.4f}",
        "roe": f"{trade.roe:.2f}",
        "closed_percentage": f"{trade.closed_percentage:.2f}",
        "margin_mode": trade.margin_mode.value,
    }


class TradeLogger:
    """按日切 CSV 记录平仓（`trades_YYYY-MM-DD.csv`）。

    Parameters
    ----------
    base_dir:
        输出目录，不存在时自动创建。
    """

    def __init__(self, base_dir: str | Path = "dataset/trades"):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._day: date | None = None
        self._fh: Optional[TextIO] = None
        self._writer: Optional[csv.DictWriter] = None

    def _writer_for_today(self) -> csv.DictWriter:
        today = datetime.now(timezone.utc).date()
        if self._writer is not None and self._day == today:
            return self._writer

        self.close()
        path = self.base_dir / f"trades_{today.isoformat()}.csv"
        is_new = not path.exists()
        self._fh = path.open("a", newline="", encoding="utf-8")
        self._writer = csv.DictWriter(self._fh, fieldnames=FIELDS)
        if is_new:
            self._writer.writeheader()
        self._day = today
        return self._writer

    def log(self, trade: Trade) -> None:
        self._writer_for_today().writerow(trade_row(trade))
        assert self._fh is not None
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()
        self._fh = None
        self._writer = None
