"""历史价格加载（用于回放）。

支持两种 CSV：
- Tick：`ts,price[,symbol]`
- K 线：`start_ts/end_ts,...,close[,symbol]`，以收盘价作为该时刻的最新价
"""

from __future__ import annotations

import csv
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Iterator

from shared.models.models import Tick
from shared.utils.precision import to_decimal


def _parse_dt(val: str) -> datetime:
    try:
        if val.isdigit():
            ts_int = int(val)
            if ts_int > 1e12:
                return datetime.fromtimestamp(ts_int / 1000, tz=timezone.utc)
            return datetime.fromtimestamp(ts_int, tz=timezone.utc)
        return datetime.fromisoformat(val.replace("Z", "+00:00")).astimezone(timezone.utc)
    except Exception as exc:
        raise ValueError(f"Invalid datetime value: {val}") from exc


def _row_to_tick(row: dict[str, str], *, symbol: str, tz: timezone) -> Tick:
    raw_price = row.get("price") or row.get("close")
    if raw_price in (None, ""):
        raise ValueError(f"Row has neither price nor close: {row}")
    raw_ts = row.get("ts") or row.get("end_ts") or row.get("start_ts")
    if not raw_ts:
        raise ValueError(f"Row has no timestamp: {row}")
    return Tick(
        symbol=(row.get("symbol") or symbol).upper(),
        price=to_decimal(raw_price, field="price"),
        ts=_parse_dt(raw_ts).astimezone(tz),
    )


def load_ticks_from_csv(
    path: str | Path,
    *,
    symbol: str = "BTCUSDT",
    tz: timezone = timezone.utc,
    parser: Callable[[dict[str, str]], Tick] | None = None,
) -> Iterator[Tick]:
    """从 CSV 读取 Tick 流（按文件顺序）。"""
    with Path(path).open("r", newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        for row in reader:
            if parser:
                yield parser(row)
                continue
            yield _row_to_tick(row, symbol=symbol, tz=tz)


def iter_ticks(source: Iterable[Tick], *, symbol: str | None = None) -> Iterator[Tick]:
    """按品种过滤；symbol 为空时原样透传。"""
    for tick in source:
        if symbol is None or tick.symbol == symbol:
            yield tick
