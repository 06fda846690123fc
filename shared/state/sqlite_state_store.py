"""SQLite 本地状态存储。

目标
----
- 进程重启后恢复余额 / 持仓 / 挂单 / 平仓历史。
- 每个账户一行，附带 schema_version；版本不一致时由引擎决定丢弃（不做迁移）。

设计
----
- SQLite，按 account_id upsert 整份 JSON 快照。
- autocommit + WAL，写入即落盘（持久性以宿主存储为准）。
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from shared.utils.logging import setup_logger


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, default=str, allow_nan=False)


@dataclass(frozen=True)
class StoredState:
    account_id: str
    schema_version: int
    payload: dict[str, Any]
    updated_at: str


class SqliteStateStore:
    def __init__(self, path: str | Path):
        self.path = Path(path)
        if str(path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(path), isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._ensure_schema()
        self.logger = setup_logger("state-store")

    def close(self) -> None:
        self._conn.close()

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS engine_state (
              account_id TEXT PRIMARY KEY,
              schema_version INTEGER NOT NULL,
              payload_json TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );
            """
        )

    def load(self, account_id: str) -> StoredState | None:
        row = self._conn.execute(
            "SELECT account_id, schema_version, payload_json, updated_at FROM engine_state WHERE account_id = ?;",
            (account_id,),
        ).fetchone()
        if row is None:
            return None
        try:
            payload = json.loads(row[2])
        except json.JSONDecodeError:
            self.logger.warning("Stored state for %s is not valid JSON, ignoring it", account_id)
            return None
        return StoredState(account_id=str(row[0]), schema_version=int(row[1]), payload=payload, updated_at=str(row[3]))

    def save(self, account_id: str, schema_version: int, payload: dict[str, Any]) -> None:
        self._conn.execute(
            """
            INSERT INTO engine_state (account_id, schema_version, payload_json, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(account_id) DO UPDATE SET
              schema_version = excluded.schema_version,
              payload_json = excluded.payload_json,
              updated_at = excluded.updated_at;
            """,
            (account_id, int(schema_version), _json_dumps(payload), _utc_now_iso()),
        )

    def delete(self, account_id: str) -> bool:
        cur = self._conn.execute("DELETE FROM engine_state WHERE account_id = ?;", (account_id,))
        return cur.rowcount > 0

    def account_ids(self) -> list[str]:
        rows = self._conn.execute("SELECT account_id FROM engine_state ORDER BY account_id;").fetchall()
        return [str(r[0]) for r in rows]
