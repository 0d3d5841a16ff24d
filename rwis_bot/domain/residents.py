"""Resident and household lookups, formatted as chat replies."""

from __future__ import annotations

import sqlite3
from datetime import date
from pathlib import Path
from typing import Any


class HandlerError(RuntimeError):
    """Raised when a domain handler cannot serve a request."""


_RESIDENT_COLUMNS = """
    nik,
    full_name,
    place_of_birth,
    date_of_birth,
    gender,
    blood_type,
    religion,
    marriage_status,
    nationality,
    range_income,
    job,
    whatsapp_number
"""


def format_birth_date(raw: str) -> str:
    try:
        return date.fromisoformat(raw).strftime("%d %B %Y")
    except ValueError:
        return raw


def format_resident(row: dict[str, Any], heading: str) -> str:
    return (
        f"*{heading}*:\n"
        f"*NIK*: {row['nik']}\n"
        f"*Nama Lengkap*: {row['full_name']}\n"
        f"*Tempat Lahir*: {row['place_of_birth']}\n"
        f"*Tanggal Lahir*: {format_birth_date(row['date_of_birth'])}\n"
        f"*Jenis Kelamin*: {row['gender']}\n"
        f"*Golongan Darah*: {row['blood_type']}\n"
        f"*Agama*: {row['religion']}\n"
        f"*Status Pernikahan*: {row['marriage_status']}\n"
        f"*Kewarganegaraan*: {row['nationality']}\n"
        f"*Rentang Penghasilan*: {row['range_income']}\n"
        f"*Pekerjaan*: {row['job']}\n"
        f"*Nomor WhatsApp*: {row['whatsapp_number']}"
    )


def format_household(row: dict[str, Any]) -> str:
    return (
        "*Data rumah tangga Anda*:\n"
        f"*Nomor KK*: {row['number_kk']}\n"
        f"*Alamat*: {row['address']}\n"
        f"*RT*: {row['rt']}\n"
        f"*RW*: {row['rw']}\n"
        f"*Kelurahan*: {row['sub_district']}\n"
        f"*Kota*: {row['city']}\n"
        f"*Provinsi*: {row['province']}\n"
        f"*Kode Pos*: {row['postal_code']}"
    )


class ResidentDirectory:
    """Read-only queries keyed by the sender's messenger identity."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path

    def _open_db(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _fetch(self, query: str, sender_id: str) -> list[dict[str, Any]]:
        conn = self._open_db()
        try:
            rows = conn.execute(query, (sender_id,)).fetchall()
        except sqlite3.Error as exc:
            raise HandlerError(f"resident query failed: {exc}") from exc
        finally:
            conn.close()
        return [dict(row) for row in rows]

    def personal_data(self, sender_id: str) -> str:
        rows = self._fetch(
            f"SELECT {_RESIDENT_COLUMNS} FROM resident WHERE contact_id = ?",
            sender_id,
        )
        if not rows:
            raise HandlerError(f"no resident registered for {sender_id}")
        return format_resident(rows[0], "Data kependudukan Anda")

    def household_data(self, sender_id: str) -> str:
        rows = self._fetch(
            """
            SELECT h.number_kk, h.address, h.rt, h.rw, h.sub_district, h.city, h.province, h.postal_code
            FROM household h
            JOIN resident r ON r.household_id = h.household_id
            WHERE r.contact_id = ?
            """,
            sender_id,
        )
        if not rows:
            raise HandlerError(f"no household registered for {sender_id}")
        return format_household(rows[0])

    def household_members(self, sender_id: str) -> str:
        rows = self._fetch(
            f"""
            SELECT {_RESIDENT_COLUMNS}
            FROM resident
            WHERE household_id IN (
                SELECT household_id FROM resident WHERE contact_id = ?
            )
            ORDER BY resident_id ASC
            """,
            sender_id,
        )
        if not rows:
            raise HandlerError(f"no household members registered for {sender_id}")
        return "\n\n".join(format_resident(row, "Data kependudukan") for row in rows)
