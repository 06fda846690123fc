"""SubMarine 纸面合约统一命令行入口。

通过子命令驱动不同任务：

- `status`：读取本地状态，打印余额 / 持仓 / 挂单 / 统计。
- `replay`：把 CSV 价格逐条回放进引擎（触发强平、TP/SL、限价单）。
- `history`：打印平仓历史，可导出 CSV。
- `reset`：丢弃本地状态，余额回到初始值。
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import pandas as pd
from rich import box
from rich.console import Console
from rich.table import Table

from engine.futures_engine import FuturesEngine
from engine.replay import ReplayRunner
from shared.models.models import Position
from shared.utils.precision import snap_to_decimals

console = Console()


@dataclass
class CliArgs:
    """命令行参数结构。"""
    config: str
    task: str
    ticks: str | None = None
    max_ticks: int | None = None
    export: str | None = None
    limit: int = 20


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="submarine", description="SubMarine 纸面永续合约引擎")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument(
            "--config",
            default=default,
            help="配置文件路径 (默认: config/config.yml)",
        )

    # 允许 `main.py --config ... status` 与 `main.py status --config ...`
    _add_config_arg(parser, default="config/config.yml")
    sub = parser.add_subparsers(dest="task")

    p_status = sub.add_parser("status", help="打印余额/持仓/挂单")
    _add_config_arg(p_status, default=argparse.SUPPRESS)

    p_replay = sub.add_parser("replay", help="CSV 价格回放")
    _add_config_arg(p_replay, default=argparse.SUPPRESS)
    p_replay.add_argument("--ticks", required=True, help="价格 CSV（ts,price 列）")
    p_replay.add_argument("--max-ticks", type=int, default=None, help="最多回放多少条")

    p_history = sub.add_parser("history", help="平仓历史")
    _add_config_arg(p_history, default=argparse.SUPPRESS)
    p_history.add_argument("--export", default=None, help="导出 CSV 路径")
    p_history.add_argument("--limit", type=int, default=20, help="打印最近 N 条")

    p_reset = sub.add_parser("reset", help="丢弃本地状态")
    _add_config_arg(p_reset, default=argparse.SUPPRESS)

    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    ns = build_parser().parse_args(argv)
    return CliArgs(
        config=str(getattr(ns, "config", "config/config.yml")),
        task=ns.task or "status",
        ticks=getattr(ns, "ticks", None),
        max_ticks=getattr(ns, "max_ticks", None),
        export=getattr(ns, "export", None),
        limit=int(getattr(ns, "limit", 20)),
    )


POSITION_COLUMNS = ("id", "side", "size", "entry", "notional", "lev", "margin", "liq", "uPnL", "ROE%", "TP/SL")


def position_row(p: Position) -> list[str]:
    """持仓表格的一行；金额统一保留 2 位小数。"""
    def money(v: Decimal) -> str:
        return f"{snap_to_decimals(v, 2):f}"

    return [
        p.id,
        p.side.value,
        f"{p.size:f}",
        money(p.entry_price),
        money(p.notional),
        f"{money(p.leverage)}x",
        money(p.initial_margin),
        money(p.liquidation_price),
        money(p.unrealized_pnl),
        money(p.roe),
        f"{len(p.take_profit_orders)}/{len(p.stop_loss_orders)}",
    ]


def _positions_table(engine: FuturesEngine) -> Table:
    table = Table(title=f"Positions ({engine.cfg.symbol})", box=box.SIMPLE)
    for col in POSITION_COLUMNS:
        table.add_column(col)
    for p in engine.positions:
        table.add_row(*position_row(p))
    return table


def _orders_table(engine: FuturesEngine) -> Table:
    table = Table(title="Pending orders", box=box.SIMPLE)
    for col in ("id", "type", "side", "size", "price", "lev"):
        table.add_column(col)
    for o in engine.orders:
        table.add_row(o.id, o.type.value, o.side.value, f"{o.size:f}", f"{o.price:.2f}" if o.price else "-", f"{o.leverage:f}x")
    return table


def history_frame(engine: FuturesEngine) -> pd.DataFrame:
    rows = [t.to_dict() for t in engine.trade_history]
    df = pd.DataFrame(rows)
    if df.empty:
        return df
    for col in ("entry_price", "exit_price", "size", "leverage", "realized_pnl", "roe", "closed_percentage"):
        df[col] = pd.to_numeric(df[col])
    return df


def run_status(engine: FuturesEngine) -> dict[str, Any]:
    stats = engine.statistics()
    console.print(f"[bold]Balance[/bold]: {engine.balance:.2f} USDT  (locked margin {stats['locked_margin']:.2f})")
    console.print(_positions_table(engine))
    console.print(_orders_table(engine))
    console.print(
        f"trades={stats['total_trades']} win_rate={stats['win_rate']:.2f}% "
        f"total_pnl={stats['total_pnl']:.2f} max_dd={stats['max_drawdown']:.2f}%"
    )
    return stats


def run_history(engine: FuturesEngine, *, limit: int, export: str | None) -> dict[str, Any]:
    df = history_frame(engine)
    if export:
        df.to_csv(export, index=False)
        console.print(f"Exported {len(df)} trades to {export}")
    table = Table(title="Trade history", box=box.SIMPLE)
    for col in ("closed_at", "side", "size", "entry", "exit", "PnL", "ROE%"):
        table.add_column(col)
    for t in engine.ledger.latest(limit):
        table.add_row(
            t.closed_at.strftime("%Y-%m-%d %H:%M:%S"),
            t.side.value,
            f"{t.size:f}",
            f"{t.entry_price:.2f}",
            f"{t.exit_price:.2f}",
            f"{t.realized_pnl:.2f}",
            f"{t.roe:.2f}",
        )
    console.print(table)
    return {"trades": len(df), "export": export}


def main(argv: list[str] | None = None) -> Any:
    args = parse_args(argv)
    engine = FuturesEngine.from_config(args.config)

    if args.task == "status":
        return run_status(engine)
    if args.task == "replay":
        assert args.ticks is not None
        result = ReplayRunner(engine, args.ticks, max_ticks=args.max_ticks).run()
        engine.save_state()
        run_status(engine)
        return result.summary
    if args.task == "history":
        return run_history(engine, limit=args.limit, export=args.export)
    if args.task == "reset":
        engine.reset()
        console.print(f"State reset, balance={engine.balance:.2f}")
        return {"balance": engine.balance}
    raise ValueError(f"Unknown task: {args.task}")


if __name__ == "__main__":
    main()
