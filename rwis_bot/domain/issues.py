"""Issue reports filed by residents through the chat."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from rwis_bot.domain.residents import HandlerError

STATUS_TODO = "To do"
APPROVAL_PENDING = "Pending"


class IssueTracker:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path

    def report(self, sender_id: str, title: str, description: str, acknowledgement: str = "") -> str:
        """File an issue for the sender's resident record and return the acknowledgement to send."""
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                row = conn.execute(
                    "SELECT resident_id FROM resident WHERE contact_id = ?",
                    (sender_id,),
                ).fetchone()
                if row is None:
                    raise HandlerError(f"no resident registered for {sender_id}")
                conn.execute(
                    """
                    INSERT INTO issue_report (resident_id, title, description, status, approval_status)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (int(row["resident_id"]), title, description, STATUS_TODO, APPROVAL_PENDING),
                )
        except sqlite3.Error as exc:
            raise HandlerError(f"failed to file issue report: {exc}") from exc
        finally:
            conn.close()
        return acknowledgement

    def latest(self, limit: int = 20) -> list[dict[str, object]]:
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        try:
            rows = conn.execute(
                """
                SELECT issue_id, resident_id, title, description, status, approval_status, created_at
                FROM issue_report
                ORDER BY issue_id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        finally:
            conn.close()
        return [dict(row) for row in rows]
