"""Per-user history of plans, tool calls and messages.

SQLite-backed (WAL) ring buffer: each user keeps only the newest
``history_max_items`` entries. Items are returned newest first.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from contextlib import closing
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from actionpilot.config import settings
from actionpilot.domain.history import HistoryItem, HistoryItemType
from actionpilot.domain.run import utc_now_iso
from actionpilot.infrastructure.logging_setup import get_logger


class HistoryService:
    """SQLite-backed user history with per-user compaction."""

    def __init__(
        self,
        db_path: Optional[Path] = None,
        *,
        max_items: Optional[int] = None,
        logger: Any = None,
    ) -> None:
        self._lock = threading.RLock()
        self._db_path = Path(db_path or settings.history_db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._max_items = int(max_items or settings.history_max_items)
        self._logger = logger or get_logger("history_service")
        self._init_db()
        self._logger.info("history_service_initialized", db_path=str(self._db_path), max_items=self._max_items)

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def max_items(self) -> int:
        return self._max_items

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0, isolation_level=None)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    def _init_db(self) -> None:
        with self._lock, closing(self._connect()) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS history_items (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    user_id TEXT NOT NULL,
                    session_id TEXT NOT NULL,
                    item_type TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    data_json TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_history_user_seq ON history_items(user_id, seq DESC)"
            )

    @staticmethod
    def _row_to_item(row: Sequence[Any]) -> HistoryItem:
        try:
            data = json.loads(str(row[5]))
        except ValueError:
            data = {}
        return HistoryItem(
            id=str(row[0]),
            item_type=HistoryItemType(str(row[3])),
            timestamp=str(row[4]),
            user_id=str(row[1]),
            session_id=str(row[2]),
            data=data if isinstance(data, dict) else {},
        )

    def _compact_user(self, conn: sqlite3.Connection, user_id: str) -> None:
        """Keep only the latest items for a user."""
        conn.execute(
            """
            DELETE FROM history_items
            WHERE user_id = ?
              AND seq NOT IN (
                  SELECT seq FROM history_items
                  WHERE user_id = ?
                  ORDER BY seq DESC
                  LIMIT ?
              )
            """,
            (user_id, user_id, self._max_items),
        )

    def add_item(
        self,
        user_id: str,
        item_type: HistoryItemType,
        data: Dict[str, Any],
        session_id: str,
    ) -> str:
        history_id = f"hist_{uuid.uuid4()}"
        payload_json = json.dumps(data, ensure_ascii=False, separators=(",", ":"), default=str)

        with self._lock, closing(self._connect()) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(
                    "INSERT INTO history_items(id, user_id, session_id, item_type, timestamp, data_json) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (history_id, user_id, session_id, item_type.value, utc_now_iso(), payload_json),
                )
                self._compact_user(conn, user_id)
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                self._logger.error("history_add_failed", user_id=user_id, item_type=item_type.value)
                raise

        self._logger.info("history_item_added", user_id=user_id, history_id=history_id, item_type=item_type.value)
        return history_id

    def get_user_history(self, user_id: str, limit: int = 50, offset: int = 0) -> List[HistoryItem]:
        """Get history for a user (newest first)."""
        with self._lock, closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT id, user_id, session_id, item_type, timestamp, data_json FROM history_items "
                "WHERE user_id = ? ORDER BY seq DESC LIMIT ? OFFSET ?",
                (user_id, max(0, int(limit)), max(0, int(offset))),
            ).fetchall()
        return [self._row_to_item(row) for row in rows]

    def get_item(self, user_id: str, history_id: str) -> Optional[HistoryItem]:
        with self._lock, closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT id, user_id, session_id, item_type, timestamp, data_json FROM history_items "
                "WHERE user_id = ? AND id = ?",
                (user_id, history_id),
            ).fetchone()
        return self._row_to_item(row) if row else None

    def update_item(self, user_id: str, history_id: str, updates: Dict[str, Any]) -> bool:
        """Merge ``updates`` into an item's data; position and timestamp are kept."""
        with self._lock, closing(self._connect()) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    "SELECT data_json FROM history_items WHERE user_id = ? AND id = ?",
                    (user_id, history_id),
                ).fetchone()
                if row is None:
                    conn.execute("ROLLBACK")
                    self._logger.warning("history_item_not_found", user_id=user_id, history_id=history_id)
                    return False
                data = json.loads(str(row[0]))
                merged = {**(data if isinstance(data, dict) else {}), **updates}
                conn.execute(
                    "UPDATE history_items SET data_json = ? WHERE user_id = ? AND id = ?",
                    (json.dumps(merged, ensure_ascii=False, separators=(",", ":"), default=str), user_id, history_id),
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

        self._logger.info("history_item_updated", user_id=user_id, history_id=history_id)
        return True

    def delete_user_history(self, user_id: str) -> int:
        with self._lock, closing(self._connect()) as conn:
            cursor = conn.execute("DELETE FROM history_items WHERE user_id = ?", (user_id,))
            deleted = cursor.rowcount
        self._logger.info("user_history_deleted", user_id=user_id, deleted=deleted)
        return deleted

    # Convenience recorders

    def record_user_message(self, user_id: str, session_id: str, text: str) -> str:
        return self.add_item(user_id, HistoryItemType.MESSAGE, {"text": text, "role": "user"}, session_id)

    def record_assistant_message(self, user_id: str, session_id: str, text: str) -> str:
        return self.add_item(user_id, HistoryItemType.MESSAGE, {"text": text, "role": "assistant"}, session_id)

    def record_plan_creation(
        self,
        user_id: str,
        session_id: str,
        plan_id: str,
        plan_title: str,
        actions: List[Dict[str, Any]],
    ) -> str:
        return self.add_item(
            user_id,
            HistoryItemType.PLAN,
            {
                "plan_title": plan_title,
                "status": "pending",
                "action_count": len(actions),
                "plan_id": plan_id,
                "actions": actions,
            },
            session_id,
        )

    def record_tool_call(
        self,
        user_id: str,
        session_id: str,
        tool_name: str,
        summary: str,
        arguments: Optional[Dict[str, Any]] = None,
        result: Any = None,
        status: str = "success",
        *,
        step_id: Optional[str] = None,
        plan_id: Optional[str] = None,
    ) -> str:
        return self.add_item(
            user_id,
            HistoryItemType.TOOL_CALL,
            {
                "tool_name": tool_name,
                "status": status,
                "summary": summary,
                "step_id": step_id,
                "plan_id": plan_id,
                "arguments": arguments,
                "result": result,
            },
            session_id,
        )
