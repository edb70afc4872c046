"""
Transition History Repository

Architectural Intent:
- Append-only SQLite log of every StageTransitionEvent (stdlib, zero external deps)
- Subscribed to the event bus; never read by the orchestrator, so history can
  be lost or disabled without affecting resume behavior
- Uses WAL mode for concurrent read/write support

Design Decisions:
- Single database file at configurable path (default: .stagecoach/history.db)
- Auto-creates tables on first use
- Thread-safe via sqlite3's check_same_thread=False
- Timestamps stored as ISO 8601 strings
"""

from __future__ import annotations
import sqlite3
import json
import logging
from pathlib import Path
from typing import Optional

from stagecoach.domain.events.transition import StageTransitionEvent

logger = logging.getLogger(__name__)


class TransitionHistoryRepository:
    """Persistent transition history using SQLite."""

    def __init__(self, db_path: str = ".stagecoach/history.db"):
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    def connect(self) -> None:
        """Open database connection and create tables."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            self._db_path,
            check_same_thread=False,
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.row_factory = sqlite3.Row
        self._create_tables()
        logger.info("History repository connected: %s", self._db_path)

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _create_tables(self) -> None:
        assert self._conn is not None
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS stage_transitions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                plan_id TEXT NOT NULL,
                stage_id TEXT,
                from_state TEXT NOT NULL,
                to_state TEXT NOT NULL,
                reason TEXT DEFAULT '',
                per_node_summary TEXT DEFAULT '{}',
                occurred_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_transitions_plan ON stage_transitions(plan_id);
        """)

    def record(self, event: StageTransitionEvent) -> int:
        """Record a transition. Returns the row ID."""
        assert self._conn is not None
        cursor = self._conn.execute(
            """INSERT INTO stage_transitions
               (plan_id, stage_id, from_state, to_state, reason, per_node_summary, occurred_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (event.plan_id, event.stage_id, event.from_state, event.to_state,
             event.reason, json.dumps(dict(event.per_node_summary)), event.occurred_at),
        )
        self._conn.commit()
        return cursor.lastrowid

    async def handle(self, event: StageTransitionEvent) -> None:
        """Event bus subscriber."""
        self.record(event)

    def get_history(self, plan_id: Optional[str] = None, limit: int = 100) -> list[dict]:
        """The newest `limit` transitions, oldest first, optionally for one plan."""
        assert self._conn is not None
        if plan_id:
            rows = self._conn.execute(
                "SELECT * FROM stage_transitions WHERE plan_id = ? ORDER BY id DESC LIMIT ?",
                (plan_id, limit),
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM stage_transitions ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        history = []
        for row in reversed(rows):
            entry = dict(row)
            entry["per_node_summary"] = json.loads(entry["per_node_summary"] or "{}")
            history.append(entry)
        return history

    def get_transition_count(self, plan_id: Optional[str] = None) -> int:
        assert self._conn is not None
        if plan_id:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM stage_transitions WHERE plan_id = ?",
                (plan_id,),
            ).fetchone()
        else:
            row = self._conn.execute("SELECT COUNT(*) FROM stage_transitions").fetchone()
        return row[0]
