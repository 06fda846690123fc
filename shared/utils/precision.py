"""精度工具：所有保证金/PnL/强平价计算统一使用 Decimal。

杠杆会放大浮点误差（100x 时 1e-16 的噪声在 ROE 上已可见），
因此入口处一律用 `Decimal(str(x))` 转换，避免 0.1 变成 0.1000000000000000055...
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def to_decimal(value: Any, *, field: str = "value") -> Decimal:
    """把 int/float/str/Decimal 转为 Decimal（float 先转 str，保留人类可读的精度）。"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{field} must be a number, got {value!r}")
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{field} must be a number, got {value!r}") from exc
    if not d.is_finite():
        raise ValueError(f"{field} must be finite, got {value!r}")
    return d


def optional_decimal(value: Any, *, field: str = "value") -> Decimal | None:
    if value is None or value == "":
        return None
    return to_decimal(value, field=field)


def decimal_str(value: Decimal | None) -> str | None:
    """序列化用：去掉无意义的尾随 0（`5000.000` -> `5000`）。"""
    if value is None:
        return None
    if value == value.to_integral_value():
        return str(value.quantize(ONE))
    return format(value.normalize(), "f")


def snap_to_decimals(value: Decimal, decimals: int) -> Decimal:
    """按指定小数位四舍五入，仅用于展示。"""
    if decimals < 0:
        return value
    return value.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)
