"""纸面永续合约引擎（FuturesEngine）。

单一、显式持有的状态容器：余额 + 持仓簿 + 挂单队列 + 平仓历史 + 账户设置。
UI/服务层只通过命令/查询 API 与订阅回调交互，不直接修改字段。

- 单线程、单写者：命令与 tick 都是同步执行完毕后才返回；
- 持久化通过 SqliteStateStore，按 account_id 保存整份快照并附 schema_version；
  加载时版本不一致即丢弃并重置为初始状态（刻意的“重置”，不是迁移）。
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable

from broker.order_router import OrderRouter
from broker.position_book import PositionBook
from broker.trade_ledger import TradeHistoryLedger
from engine import margin
from engine.tick_processor import TickProcessor, TickReport
from shared.config.config_loader import load_config
from shared.config.schema import EngineConfig
from shared.models.models import (
    Account,
    AccountSettings,
    MarginMode,
    Order,
    OrderRequest,
    OrderResult,
    Position,
    PositionMode,
    Tick,
    TPSLOrder,
    Trade,
)
from shared.state.sqlite_state_store import SqliteStateStore
from shared.utils.logging import setup_logger
from shared.utils.precision import ONE, decimal_str, to_decimal
from utils.metrics import compute_balance_watermarks, compute_trade_stats
from utils.trade_logger import TradeLogger

# 持久化结构版本；不一致时丢弃本地状态
SCHEMA_VERSION = 3


@dataclass(frozen=True)
class EngineEvent:
    kind: str
    payload: dict[str, Any]


Listener = Callable[[EngineEvent], None]


class FuturesEngine:
    def __init__(
        self,
        cfg: EngineConfig | None = None,
        *,
        store: SqliteStateStore | None = None,
        account_id: str | None = None,
        trade_logger: TradeLogger | None = None,
    ):
        self.cfg = cfg or EngineConfig()
        self.logger = setup_logger("futures-engine", self.cfg.logging.level)
        self.account_id = account_id or self.cfg.account.id
        self.store = store
        self.trade_logger = trade_logger
        self._listeners: list[Listener] = []
        self._build(
            balance=self.cfg.account.initial_balance,
            settings=self._default_settings(),
            positions=[],
            orders=[],
            trades=[],
        )

    @classmethod
    def from_config(cls, path: str, *, load_state: bool = True) -> "FuturesEngine":
        cfg = load_config(path)
        store = SqliteStateStore(cfg.state.path) if cfg.state.enabled else None
        trade_logger = TradeLogger(cfg.history.csv_dir) if cfg.history.csv_dir else None
        engine = cls(cfg, store=store, trade_logger=trade_logger)
        if load_state and store is not None:
            engine.load_state()
        return engine

    def _default_settings(self) -> AccountSettings:
        t = self.cfg.trading
        return AccountSettings(
            position_mode=PositionMode(t.position_mode),
            default_margin_mode=MarginMode(t.default_margin_mode),
            default_leverage=t.default_leverage,
            confirmations_enabled=t.confirmations_enabled,
        )

    def _build(
        self,
        *,
        balance: Decimal,
        settings: AccountSettings,
        positions: list[Position],
        orders: list[Order],
        trades: list[Trade],
    ) -> None:
        self.account = Account(balance=balance, settings=settings)
        self.ledger = TradeHistoryLedger(trades, trade_logger=self.trade_logger)
        self.book = PositionBook(
            self.account,
            self.ledger,
            maintenance_margin_rate=self.cfg.trading.maintenance_margin_rate,
            record_all_closes=self.cfg.history.record_all_closes,
            positions=positions,
        )
        self.router = OrderRouter(self.account, self.book, symbol=self.cfg.symbol, orders=orders)
        self.ticks = TickProcessor(self.account, self.book, self.router)
        self._balance_samples: list[Decimal] = [balance]

    # ------------------------------------------------------------------ queries
    @property
    def balance(self) -> Decimal:
        return self.account.balance

    @property
    def settings(self) -> AccountSettings:
        return self.account.settings

    @property
    def positions(self) -> list[Position]:
        return self.book.positions

    @property
    def orders(self) -> list[Order]:
        return self.router.orders

    @property
    def trade_history(self) -> list[Trade]:
        return list(self.ledger.trades)

    def get_position(self, position_id: str) -> Position | None:
        return self.book.get(position_id)

    def statistics(self) -> dict[str, Any]:
        stats = compute_trade_stats(self.ledger)
        stats.update(compute_balance_watermarks([*self._balance_samples, self.account.balance]))
        stats["balance"] = self.account.balance
        stats["locked_margin"] = sum((p.initial_margin for p in self.book.positions), Decimal("0"))
        stats["cross_liquidation_price"] = margin.cross_margin_liquidation(self.book.positions)
        return stats

    # ------------------------------------------------------------ subscriptions
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """注册状态变更回调，返回取消订阅函数。"""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self, kind: str, **payload: Any) -> None:
        event = EngineEvent(kind=kind, payload=payload)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                self.logger.exception("Listener failed on %s event", kind)

    def _committed(self, *, sample_balance: bool = False) -> None:
        if sample_balance:
            self._balance_samples.append(self.account.balance)
        if self.store is not None and self.cfg.state.autosave:
            self.save_state()

    # ------------------------------------------------------------------ orders
    def submit_order(self, request: OrderRequest | dict[str, Any], current_price: Any) -> OrderResult:
        """提交订单；参数非法时抛出 OrderValidationError，余额不足返回 status="blocked"。"""
        if isinstance(request, dict):
            params = dict(request)
            params.setdefault("leverage", self.account.settings.default_leverage)
            request = OrderRequest.create(**params)
        result = self.router.submit_order(request, current_price)
        payload = {"result": result, "request": request}
        if result.status == "filled":
            self._publish("order_filled", **payload)
        elif result.status == "pending":
            self._publish("order_pending", **payload)
        else:
            self._publish("order_blocked", **payload)
            return result
        self._committed(sample_balance=result.realized_pnl != 0)
        return result

    def cancel_order(self, order_id: str) -> bool:
        ok = self.router.cancel_order(order_id)
        if ok:
            self._publish("order_canceled", order_id=order_id)
            self._committed()
        return ok

    # --------------------------------------------------------------- positions
    def close_position(self, position_id: str, current_price: Any) -> Trade | None:
        trade = self.book.close_position(position_id, current_price)
        if trade is not None:
            self._publish("position_closed", position_id=position_id, trade=trade)
            self._committed(sample_balance=True)
        return trade

    def partial_close_position(self, position_id: str, amount: Any, current_price: Any) -> margin.PartialClose | None:
        result = self.book.partial_close_position(position_id, amount, current_price)
        if result is not None:
            self._publish("position_closed", position_id=position_id, partial=result)
            self._committed(sample_balance=True)
        return result

    def reverse_position(self, position_id: str, current_price: Any) -> Position | None:
        pos = self.book.reverse_position(position_id, current_price)
        if pos is not None:
            self._publish("position_reversed", previous_id=position_id, position=pos)
            self._committed(sample_balance=True)
        return pos

    def close_all_positions(self, current_price: Any) -> Decimal:
        had_positions = len(self.book) > 0
        total = self.book.close_all_positions(current_price)
        if had_positions:
            self._publish("position_closed", all=True, total_return=total)
            self._committed(sample_balance=True)
        return total

    def adjust_margin(self, position_id: str, amount: Any) -> Position | None:
        pos = self.book.adjust_margin(position_id, amount)
        if pos is not None:
            self._publish("margin_adjusted", position_id=position_id, initial_margin=pos.initial_margin)
            self._committed()
        return pos

    def add_take_profit_order(self, position_id: str, **params: Any) -> TPSLOrder | None:
        order = self.book.add_take_profit_order(position_id, **params)
        if order is not None:
            self._publish("tpsl_added", position_id=position_id, order=order)
            self._committed()
        return order

    def add_stop_loss_order(self, position_id: str, **params: Any) -> TPSLOrder | None:
        order = self.book.add_stop_loss_order(position_id, **params)
        if order is not None:
            self._publish("tpsl_added", position_id=position_id, order=order)
            self._committed()
        return order

    def cancel_tpsl(self, position_id: str, tpsl_id: str) -> bool:
        ok = self.book.cancel_tpsl(position_id, tpsl_id)
        if ok:
            self._publish("tpsl_canceled", position_id=position_id, tpsl_id=tpsl_id)
            self._committed()
        return ok

    # ------------------------------------------------------------------ config
    def set_position_mode(self, mode: PositionMode | str) -> None:
        if len(self.book) > 0:
            raise ValueError("Please close all positions before changing position mode")
        self.account.settings.position_mode = PositionMode(mode)
        self._publish("config_changed", position_mode=self.account.settings.position_mode)
        self._committed()

    def set_default_margin_mode(self, mode: MarginMode | str) -> None:
        self.account.settings.default_margin_mode = MarginMode(mode)
        self._publish("config_changed", default_margin_mode=self.account.settings.default_margin_mode)
        self._committed()

    def set_default_leverage(self, leverage: Any) -> None:
        lev = to_decimal(leverage, field="leverage")
        if lev < ONE:
            raise ValueError("leverage must be >= 1")
        self.account.settings.default_leverage = lev
        self._publish("config_changed", default_leverage=lev)
        self._committed()

    # -------------------------------------------------------------------- ticks
    def on_tick(self, tick: Tick | Any) -> TickReport:
        """行情推送入口：接受 Tick 或裸价格。"""
        price = tick.price if isinstance(tick, Tick) else tick
        report = self.ticks.process(price)

        for pos in report.liquidated:
            self._publish("position_liquidated", position=pos, price=report.price)
        for fill in report.tpsl_fills:
            self._publish("tpsl_filled", fill=fill)
        for order_id in report.filled_orders:
            self._publish("order_filled", order_id=order_id, price=report.price)
        for order_id in report.canceled_orders:
            self._publish("order_canceled", order_id=order_id, reason="insufficient_balance")
        self._publish("tick", price=report.price, balance=self.account.balance)

        changed = bool(report.liquidated or report.tpsl_fills or report.filled_orders or report.canceled_orders)
        if changed:
            self._committed(sample_balance=True)
        return report

    # -------------------------------------------------------------- persistence
    def snapshot(self) -> dict[str, Any]:
        return {
            "balance": decimal_str(self.account.balance),
            "config": self.account.settings.to_dict(),
            "positions": [p.to_dict() for p in self.book.positions],
            "orders": [o.to_dict() for o in self.router.orders],
            "trade_history": [t.to_dict() for t in self.ledger.trades],
            "schema_version": SCHEMA_VERSION,
        }

    def restore(self, payload: dict[str, Any]) -> None:
        """从快照恢复；版本不一致时重置为初始状态。"""
        version = payload.get("schema_version")
        if version != SCHEMA_VERSION:
            self.logger.info("Clearing stale trading state (schema v%s -> v%s)", version, SCHEMA_VERSION)
            self.reset()
            return
        self._build(
            balance=to_decimal(payload.get("balance", self.cfg.account.initial_balance), field="balance"),
            settings=AccountSettings.from_dict(payload.get("config") or {}),
            positions=[Position.from_dict(p) for p in payload.get("positions") or []],
            orders=[Order.from_dict(o) for o in payload.get("orders") or []],
            trades=[Trade.from_dict(t) for t in payload.get("trade_history") or []],
        )
        self.logger.info("Trading state restored (%s positions, %s orders)", len(self.book), len(self.router.orders))

    def load_state(self) -> bool:
        """从 store 读取快照；返回是否恢复了已有状态。"""
        if self.store is None:
            return False
        stored = self.store.load(self.account_id)
        if stored is None:
            return False
        if stored.schema_version != SCHEMA_VERSION:
            self.logger.info(
                "Clearing stale trading state for %s (schema v%s -> v%s)",
                self.account_id, stored.schema_version, SCHEMA_VERSION,
            )
            self.reset()
            return False
        self.restore(stored.payload)
        return True

    def save_state(self) -> None:
        if self.store is None:
            return
        self.store.save(self.account_id, SCHEMA_VERSION, self.snapshot())

    def reset(self) -> None:
        """丢弃全部持仓/挂单/历史，余额回到初始值。"""
        self._build(
            balance=self.cfg.account.initial_balance,
            settings=self._default_settings(),
            positions=[],
            orders=[],
            trades=[],
        )
        self._publish("state_reset", balance=self.account.balance)
        if self.store is not None:
            self.save_state()
