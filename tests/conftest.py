import sys
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

import pytest

# 确保项目根目录在 sys.path，便于测试内直接以顶层包名导入
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from broker.order_router import OrderRouter  # noqa: E402
from broker.position_book import PositionBook  # noqa: E402
from broker.trade_ledger import TradeHistoryLedger  # noqa: E402
from engine.tick_processor import TickProcessor  # noqa: E402
from shared.models.models import Account, AccountSettings, OrderRequest, PositionMode  # noqa: E402


@dataclass
class Desk:
    account: Account
    ledger: TradeHistoryLedger
    book: PositionBook
    router: OrderRouter
    ticks: TickProcessor

    def market(self, side: str, size, leverage, price):
        req = OrderRequest.create(type="MARKET", side=side, size=size, leverage=leverage)
        return self.router.submit_order(req, price)

    def limit(self, side: str, size, leverage, limit_price, current_price):
        req = OrderRequest.create(type="LIMIT", side=side, size=size, leverage=leverage, price=limit_price)
        return self.router.submit_order(req, current_price)


def build_desk(
    balance="10000",
    *,
    position_mode: PositionMode = PositionMode.ONE_WAY,
    record_all_closes: bool = False,
) -> Desk:
    account = Account(balance=Decimal(balance), settings=AccountSettings(position_mode=position_mode))
    ledger = TradeHistoryLedger()
    book = PositionBook(account, ledger, record_all_closes=record_all_closes)
    router = OrderRouter(account, book, symbol="BTCUSDT")
    return Desk(account, ledger, book, router, TickProcessor(account, book, router))


@pytest.fixture
def desk() -> Desk:
    return build_desk()


@pytest.fixture
def make_desk():
    return build_desk
