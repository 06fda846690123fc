"""账户统计：胜率 / 累计盈亏 / 余额高水位与最大回撤。

排行榜与个人主页只读取 Trade 的 realized_pnl / roe / closed_at。
"""

from __future__ import annotations

from decimal import Decimal
from statistics import mean
from typing import Iterable

from shared.models.models import Trade
from shared.utils.precision import HUNDRED, ZERO


def compute_trade_stats(trades: Iterable[Trade]) -> dict:
    """计算交易维度指标（交易数、胜率、累计盈亏、平均 ROE）。"""
    pnls: list[Decimal] = []
    roes: list[Decimal] = []
    last_trade_at = None
    for t in trades:
        pnls.append(t.realized_pnl)
        roes.append(t.roe)
        if last_trade_at is None or t.closed_at > last_trade_at:
            last_trade_at = t.closed_at

    total = len(pnls)
    wins = sum(1 for p in pnls if p > 0)
    losses = sum(1 for p in pnls if p < 0)
    return {
        "total_trades": total,
        "winning_trades": wins,
        "losing_trades": losses,
        "win_rate": (Decimal(wins) / Decimal(total) * HUNDRED) if total else ZERO,
        "total_pnl": sum(pnls, ZERO),
        "avg_roe": mean(roes) if roes else ZERO,
        "best_trade": max(pnls) if pnls else ZERO,
        "worst_trade": min(pnls) if pnls else ZERO,
        "last_trade_at": last_trade_at,
    }


def compute_balance_watermarks(balances: Iterable[Decimal]) -> dict:
    """余额历史高点与最大回撤（%，正数）。"""
    peak: Decimal | None = None
    max_dd = ZERO
    for bal in balances:
        if peak is None or bal > peak:
            peak = bal
        if peak and peak > 0:
            dd = (peak - bal) / peak * HUNDRED
            max_dd = max(max_dd, dd)
    return {"all_time_high_balance": peak if peak is not None else ZERO, "max_drawdown": max_dd}
