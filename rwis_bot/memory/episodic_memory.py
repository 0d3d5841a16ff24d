"""Episodic memory: the bot's event log, stored in SQLite."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Protocol


class EventRecorder(Protocol):
    def record(self, event_type: str, payload: dict[str, Any], *, decision: str | None = None) -> Any: ...


def record_quietly(
    recorder: EventRecorder | None,
    event_type: str,
    payload: dict[str, Any],
    *,
    decision: str | None = None,
) -> Any:
    """Record an event, returning 0 instead of raising when the recorder fails."""
    if recorder is None:
        return 0
    try:
        return recorder.record(event_type, payload, decision=decision)
    except Exception:
        return 0


class EpisodicMemoryStore:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def record(
        self,
        event_type: str,
        payload: dict[str, Any],
        *,
        decision: str | None = None,
    ) -> int:
        cursor = self._conn.execute(
            """
            INSERT INTO episodic_memory (event_type, decision, payload)
            VALUES (?, ?, ?)
            """,
            (event_type, decision, json.dumps(payload, ensure_ascii=True, default=str)),
        )
        self._conn.commit()
        return int(cursor.lastrowid)

    def latest(self, limit: int = 50) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            """
            SELECT id, event_type, decision, payload, created_at
            FROM episodic_memory
            ORDER BY id DESC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()

        events: list[dict[str, Any]] = []
        for row in rows:
            event = dict(row)
            event["payload"] = json.loads(event["payload"])
            events.append(event)
        return events


class EpisodicEventLog:
    """Thread-safe recorder: every call uses its own short-lived connection.

    Handlers run on the bot's event loop, in worker threads and in HTTP server
    threads, so no connection is shared between them.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def record(
        self,
        event_type: str,
        payload: dict[str, Any],
        *,
        decision: str | None = None,
    ) -> int:
        """Insert one event. Returns 0 when the database is busy or unavailable."""
        try:
            conn = self._open()
        except sqlite3.Error:
            return 0
        try:
            return EpisodicMemoryStore(conn).record(event_type, payload, decision=decision)
        except sqlite3.Error:
            return 0
        finally:
            conn.close()

    def latest(self, limit: int = 50) -> list[dict[str, Any]]:
        conn = self._open()
        try:
            return EpisodicMemoryStore(conn).latest(limit=limit)
        finally:
            conn.close()
