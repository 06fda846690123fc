"""核心数据结构：Tick / OrderRequest / Order / TPSLOrder / Position / Trade / Account。

所有金额与数量字段均为 Decimal；`to_dict()` 输出可 JSON 化的字典（Decimal -> str），
`from_dict()` 反向还原，供状态持久化使用。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from shared.utils.precision import ZERO, decimal_str, optional_decimal, to_decimal


class Side(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def opposite(self) -> "Side":
        return Side.SHORT if self is Side.LONG else Side.LONG


class OrderType(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    FILLED = "FILLED"
    CANCELED = "CANCELED"


class TPSLType(str, Enum):
    TAKE_PROFIT = "TAKE_PROFIT"
    STOP_LOSS = "STOP_LOSS"


class TPSLStatus(str, Enum):
    ACTIVE = "ACTIVE"
    FILLED = "FILLED"


class TriggerType(str, Enum):
    LAST_PRICE = "LAST_PRICE"
    MARK_PRICE = "MARK_PRICE"


class TimeInForce(str, Enum):
    GTC = "GTC"
    IOC = "IOC"
    FOK = "FOK"


class MarginMode(str, Enum):
    ISOLATED = "ISOLATED"
    CROSS = "CROSS"


class PositionMode(str, Enum):
    ONE_WAY = "ONE_WAY"
    HEDGE = "HEDGE"


class TradeAction(str, Enum):
    CLOSE = "CLOSE"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _ts_str(ts: datetime | None) -> str | None:
    if ts is None:
        return None
    return ts.isoformat().replace("+00:00", "Z")


def _parse_ts(val: Any) -> datetime | None:
    if val is None or val == "":
        return None
    if isinstance(val, datetime):
        return val
    if isinstance(val, (int, float)):
        # 兼容毫秒时间戳
        return datetime.fromtimestamp(val / 1000 if val > 1e12 else val, tz=timezone.utc)
    return datetime.fromisoformat(str(val).replace("Z", "+00:00"))


@dataclass
class Tick:
    """行情 Tick（单品种最新价）。"""
    symbol: str
    price: Decimal
    ts: datetime


@dataclass
class OrderRequest:
    """用户/系统提交的下单参数。"""
    type: OrderType
    side: Side
    size: Decimal
    leverage: Decimal
    price: Decimal | None = None  # LIMIT 必填
    symbol: str | None = None     # 为空时使用引擎配置的 symbol
    trigger_type: TriggerType = TriggerType.LAST_PRICE
    time_in_force: TimeInForce = TimeInForce.GTC
    post_only: bool = False
    reduce_only: bool = False
    close_position: bool = False

    @classmethod
    def create(
        cls,
        *,
        type: OrderType | str,
        side: Side | str,
        size: Any,
        leverage: Any,
        price: Any = None,
        symbol: str | None = None,
        trigger_type: TriggerType | str = TriggerType.LAST_PRICE,
        time_in_force: TimeInForce | str = TimeInForce.GTC,
        post_only: bool = False,
        reduce_only: bool = False,
        close_position: bool = False,
    ) -> "OrderRequest":
        """从宽松输入（字符串枚举、float）构造请求。"""
        return cls(
            type=OrderType(type),
            side=Side(side),
            size=to_decimal(size, field="size"),
            leverage=to_decimal(leverage, field="leverage"),
            price=optional_decimal(price, field="price"),
            symbol=symbol,
            trigger_type=TriggerType(trigger_type),
            time_in_force=TimeInForce(time_in_force),
            post_only=bool(post_only),
            reduce_only=bool(reduce_only),
            close_position=bool(close_position),
        )


@dataclass
class Order:
    """挂单（未成交的限价单）。"""
    id: str
    symbol: str
    type: OrderType
    side: Side
    size: Decimal
    leverage: Decimal
    price: Decimal | None
    status: OrderStatus = OrderStatus.PENDING
    trigger_type: TriggerType = TriggerType.LAST_PRICE
    time_in_force: TimeInForce = TimeInForce.GTC
    post_only: bool = False
    reduce_only: bool = False
    close_position: bool = False
    filled_size: Decimal = ZERO
    average_fill_price: Decimal = ZERO
    timestamp: datetime = field(default_factory=utc_now)

    def to_request(self, *, as_type: OrderType | None = None) -> OrderRequest:
        return OrderRequest(
            type=as_type or self.type,
            side=self.side,
            size=self.size,
            leverage=self.leverage,
            price=self.price,
            symbol=self.symbol,
            trigger_type=self.trigger_type,
            time_in_force=self.time_in_force,
            post_only=self.post_only,
            reduce_only=self.reduce_only,
            close_position=self.close_position,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "type": self.type.value,
            "side": self.side.value,
            "size": decimal_str(self.size),
            "leverage": decimal_str(self.leverage),
            "price": decimal_str(self.price),
            "status": self.status.value,
            "trigger_type": self.trigger_type.value,
            "time_in_force": self.time_in_force.value,
            "post_only": self.post_only,
            "reduce_only": self.reduce_only,
            "close_position": self.close_position,
            "filled_size": decimal_str(self.filled_size),
            "average_fill_price": decimal_str(self.average_fill_price),
            "timestamp": _ts_str(self.timestamp),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Order":
        return cls(
            id=str(d["id"]),
            symbol=str(d["symbol"]),
            type=OrderType(d["type"]),
            side=Side(d["side"]),
            size=to_decimal(d["size"], field="size"),
            leverage=to_decimal(d["leverage"], field="leverage"),
            price=optional_decimal(d.get("price"), field="price"),
            status=OrderStatus(d.get("status", OrderStatus.PENDING.value)),
            trigger_type=TriggerType(d.get("trigger_type", TriggerType.LAST_PRICE.value)),
            time_in_force=TimeInForce(d.get("time_in_force", TimeInForce.GTC.value)),
            post_only=bool(d.get("post_only", False)),
            reduce_only=bool(d.get("reduce_only", False)),
            close_position=bool(d.get("close_position", False)),
            filled_size=to_decimal(d.get("filled_size") or 0),
            average_fill_price=to_decimal(d.get("average_fill_price") or 0),
            timestamp=_parse_ts(d.get("timestamp")) or utc_now(),
        )


@dataclass
class TPSLOrder:
    """挂在某个持仓上的止盈/止损单。

    `size` 与 `percentage` 在创建时固定，之后持仓规模变化也不会重新计算。
    """
    id: str
    type: TPSLType
    trigger_price: Decimal
    size: Decimal
    percentage: Decimal
    order_type: OrderType = OrderType.MARKET
    limit_price: Decimal | None = None
    trigger_type: TriggerType = TriggerType.LAST_PRICE
    status: TPSLStatus = TPSLStatus.ACTIVE
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def active(self) -> bool:
        return self.status is TPSLStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "order_type": self.order_type.value,
            "trigger_price": decimal_str(self.trigger_price),
            "limit_price": decimal_str(self.limit_price),
            "size": decimal_str(self.size),
            "percentage": decimal_str(self.percentage),
            "trigger_type": self.trigger_type.value,
            "status": self.status.value,
            "timestamp": _ts_str(self.timestamp),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "TPSLOrder":
        return cls(
            id=str(d["id"]),
            type=TPSLType(d["type"]),
            trigger_price=to_decimal(d["trigger_price"], field="trigger_price"),
            size=to_decimal(d["size"], field="size"),
            percentage=to_decimal(d["percentage"], field="percentage"),
            order_type=OrderType(d.get("order_type", OrderType.MARKET.value)),
            limit_price=optional_decimal(d.get("limit_price"), field="limit_price"),
            trigger_type=TriggerType(d.get("trigger_type", TriggerType.LAST_PRICE.value)),
            status=TPSLStatus(d.get("status", TPSLStatus.ACTIVE.value)),
            timestamp=_parse_ts(d.get("timestamp")) or utc_now(),
        )


@dataclass
class Position:
    """持仓。`unrealized_pnl` / `roe` / `margin_ratio` 为派生字段，每个 tick 重算。"""
    id: str
    symbol: str
    side: Side
    size: Decimal
    entry_price: Decimal
    leverage: Decimal
    initial_margin: Decimal
    liquidation_price: Decimal
    margin_mode: MarginMode = MarginMode.ISOLATED
    maintenance_margin: Decimal = ZERO
    unrealized_pnl: Decimal = ZERO
    roe: Decimal = ZERO
    margin_ratio: Decimal = ZERO
    take_profit_orders: list[TPSLOrder] = field(default_factory=list)
    stop_loss_orders: list[TPSLOrder] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def notional(self) -> Decimal:
        return self.entry_price * self.size

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side.value,
            "size": decimal_str(self.size),
            "entry_price": decimal_str(self.entry_price),
            "leverage": decimal_str(self.leverage),
            "initial_margin": decimal_str(self.initial_margin),
            "liquidation_price": decimal_str(self.liquidation_price),
            "margin_mode": self.margin_mode.value,
            "maintenance_margin": decimal_str(self.maintenance_margin),
            "unrealized_pnl": decimal_str(self.unrealized_pnl),
            "roe": decimal_str(self.roe),
            "margin_ratio": decimal_str(self.margin_ratio),
            "take_profit_orders": [o.to_dict() for o in self.take_profit_orders],
            "stop_loss_orders": [o.to_dict() for o in self.stop_loss_orders],
            "timestamp": _ts_str(self.timestamp),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Position":
        return cls(
            id=str(d["id"]),
            symbol=str(d["symbol"]),
            side=Side(d["side"]),
            size=to_decimal(d["size"], field="size"),
            entry_price=to_decimal(d["entry_price"], field="entry_price"),
            leverage=to_decimal(d["leverage"], field="leverage"),
            initial_margin=to_decimal(d["initial_margin"], field="initial_margin"),
            liquidation_price=to_decimal(d["liquidation_price"], field="liquidation_price"),
            margin_mode=MarginMode(d.get("margin_mode", MarginMode.ISOLATED.value)),
            maintenance_margin=to_decimal(d.get("maintenance_margin") or 0),
            unrealized_pnl=to_decimal(d.get("unrealized_pnl") or 0),
            roe=to_decimal(d.get("roe") or 0),
            margin_ratio=to_decimal(d.get("margin_ratio") or 0),
            take_profit_orders=[TPSLOrder.from_dict(o) for o in d.get("take_profit_orders") or []],
            stop_loss_orders=[TPSLOrder.from_dict(o) for o in d.get("stop_loss_orders") or []],
            timestamp=_parse_ts(d.get("timestamp")) or utc_now(),
        )


@dataclass(frozen=True)
class Trade:
    """平仓成交记录（写入后不可变）。"""
    id: str
    order_id: str  # 来源持仓 id
    symbol: str
    side: Side
    entry_price: Decimal
    exit_price: Decimal
    size: Decimal
    leverage: Decimal
    realized_pnl: Decimal
    roe: Decimal
    margin_mode: MarginMode
    closed_percentage: Decimal
    opened_at: datetime
    closed_at: datetime
    action: TradeAction = TradeAction.CLOSE
    fee: Decimal = ZERO

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "symbol": self.symbol,
            "side": self.side.value,
            "action": self.action.value,
            "entry_price": decimal_str(self.entry_price),
            "exit_price": decimal_str(self.exit_price),
            "size": decimal_str(self.size),
            "leverage": decimal_str(self.leverage),
            "realized_pnl": decimal_str(self.realized_pnl),
            "roe": decimal_str(self.roe),
            "fee": decimal_str(self.fee),
            "margin_mode": self.margin_mode.value,
            "closed_percentage": decimal_str(self.closed_percentage),
            "opened_at": _ts_str(self.opened_at),
            "closed_at": _ts_str(self.closed_at),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Trade":
        return cls(
            id=str(d["id"]),
            order_id=str(d["order_id"]),
            symbol=str(d["symbol"]),
            side=Side(d["side"]),
            action=TradeAction(d.get("action", TradeAction.CLOSE.value)),
            entry_price=to_decimal(d["entry_price"], field="entry_price"),
            exit_price=to_decimal(d["exit_price"], field="exit_price"),
            size=to_decimal(d["size"], field="size"),
            leverage=to_decimal(d["leverage"], field="leverage"),
            realized_pnl=to_decimal(d["realized_pnl"], field="realized_pnl"),
            roe=to_decimal(d.get("roe") or 0),
            fee=to_decimal(d.get("fee") or 0),
            margin_mode=MarginMode(d.get("margin_mode", MarginMode.ISOLATED.value)),
            closed_percentage=to_decimal(d.get("closed_percentage") or 100),
            opened_at=_parse_ts(d.get("opened_at")) or utc_now(),
            closed_at=_parse_ts(d.get("closed_at")) or utc_now(),
        )


@dataclass
class AccountSettings:
    """账户级交易偏好。"""
    position_mode: PositionMode = PositionMode.ONE_WAY
    default_margin_mode: MarginMode = MarginMode.ISOLATED
    default_leverage: Decimal = Decimal("20")
    confirmations_enabled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "position_mode": self.position_mode.value,
            "default_margin_mode": self.default_margin_mode.value,
            "default_leverage": decimal_str(self.default_leverage),
            "confirmations_enabled": self.confirmations_enabled,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "AccountSettings":
        return cls(
            position_mode=PositionMode(d.get("position_mode", PositionMode.ONE_WAY.value)),
            default_margin_mode=MarginMode(d.get("default_margin_mode", MarginMode.ISOLATED.value)),
            default_leverage=to_decimal(d.get("default_leverage", 20), field="default_leverage"),
            confirmations_enabled=bool(d.get("confirmations_enabled", False)),
        )


@dataclass
class Account:
    """可用余额（未锁定保证金）+ 账户设置；所有持仓共享同一个余额。"""
    balance: Decimal
    settings: AccountSettings = field(default_factory=AccountSettings)


@dataclass(frozen=True)
class OrderResult:
    """下单结果：filled / pending / blocked。"""
    status: str
    reason: str | None = None
    order_id: str | None = None
    position_id: str | None = None
    exec_price: Decimal | None = None
    realized_pnl: Decimal = ZERO

    @property
    def ok(self) -> bool:
        return self.status in {"filled", "pending"}
