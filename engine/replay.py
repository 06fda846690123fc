"""价格回放：把 CSV 中的价格逐条喂给 FuturesEngine.on_tick。

用于离线验证 TP/SL、强平与限价单触发，不下新单（下单属于 UI 层）。
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from engine.futures_engine import FuturesEngine
from market_data.loader import iter_ticks, load_ticks_from_csv
from shared.utils.logging import setup_logger


@dataclass(frozen=True)
class ReplayResult:
    summary: dict[str, Any]


class ReplayRunner:
    def __init__(self, engine: FuturesEngine, ticks_path: str | Path, *, max_ticks: int | None = None):
        self.engine = engine
        self.ticks_path = Path(ticks_path)
        self.max_ticks = max_ticks
        self.logger = setup_logger("replay")

    def run(self) -> ReplayResult:
        if not self.ticks_path.exists():
            raise FileNotFoundError(f"Tick file not found: {self.ticks_path}")

        start_balance = self.engine.balance
        n_ticks = 0
        liquidations = 0
        tpsl_fills = 0
        order_fills = 0
        order_cancels = 0
        last_price = None
        source = load_ticks_from_csv(self.ticks_path, symbol=self.engine.cfg.symbol)
        for tick in iter_ticks(source, symbol=self.engine.cfg.symbol):
            if self.max_ticks is not None and n_ticks >= self.max_ticks:
                break
            report = self.engine.on_tick(tick)
            n_ticks += 1
            last_price = report.price
            liquidations += len(report.liquidated)
            tpsl_fills += len(report.tpsl_fills)
            order_fills += len(report.filled_orders)
            order_cancels += len(report.canceled_orders)

        self.logger.info("Replayed %s ticks from %s", n_ticks, self.ticks_path)
        return ReplayResult(
            summary={
                "ticks": n_ticks,
                "last_price": last_price,
                "start_balance": start_balance,
                "end_balance": self.engine.balance,
                "open_positions": len(self.engine.positions),
                "pending_orders": len(self.engine.orders),
                "liquidations": liquidations,
                "tpsl_fills": tpsl_fills,
                "order_fills": order_fills,
                "order_cancels": order_cancels,
            }
        )
