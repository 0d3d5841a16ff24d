"""SQLite engine and schema management."""

from __future__ import annotations

import sqlite3
from pathlib import Path


class MemoryEngine:
    """Owns the SQLite connection and table lifecycle."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def db_path(self) -> Path:
        return self._db_path

    def connect(self) -> sqlite3.Connection:
        if self._conn is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def initialize(self) -> None:
        conn = self.connect()
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS episodic_memory (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                decision TEXT,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS household (
                household_id INTEGER PRIMARY KEY AUTOINCREMENT,
                number_kk TEXT NOT NULL,
                address TEXT NOT NULL DEFAULT '',
                rt TEXT NOT NULL DEFAULT '',
                rw TEXT NOT NULL DEFAULT '',
                sub_district TEXT NOT NULL DEFAULT '',
                city TEXT NOT NULL DEFAULT '',
                province TEXT NOT NULL DEFAULT '',
                postal_code TEXT NOT NULL DEFAULT ''
            );

            CREATE TABLE IF NOT EXISTS resident (
                resident_id INTEGER PRIMARY KEY AUTOINCREMENT,
                household_id INTEGER REFERENCES household(household_id),
                contact_id TEXT UNIQUE,
                nik TEXT NOT NULL,
                full_name TEXT NOT NULL,
                place_of_birth TEXT NOT NULL DEFAULT '',
                date_of_birth TEXT NOT NULL DEFAULT '',
                gender TEXT NOT NULL DEFAULT '',
                blood_type TEXT NOT NULL DEFAULT '',
                religion TEXT NOT NULL DEFAULT '',
                marriage_status TEXT NOT NULL DEFAULT '',
                nationality TEXT NOT NULL DEFAULT '',
                range_income TEXT NOT NULL DEFAULT '',
                job TEXT NOT NULL DEFAULT '',
                whatsapp_number TEXT NOT NULL DEFAULT ''
            );

            CREATE INDEX IF NOT EXISTS idx_resident_household_id
            ON resident(household_id);

            CREATE TABLE IF NOT EXISTS issue_report (
                issue_id INTEGER PRIMARY KEY AUTOINCREMENT,
                resident_id INTEGER NOT NULL REFERENCES resident(resident_id),
                title TEXT NOT NULL,
                description TEXT NOT NULL,
                status TEXT NOT NULL,
                approval_status TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        conn.commit()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
