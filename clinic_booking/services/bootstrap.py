"""Bootstrap helper to ensure critical tables exist for first-time runs."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterable

SCHEMA: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS appointments (
        id TEXT PRIMARY KEY,
        doctor_id TEXT NOT NULL,
        patient_name TEXT NOT NULL,
        pin TEXT NOT NULL,
        concern TEXT,
        reason TEXT NOT NULL,
        contact TEXT,
        serial INTEGER NOT NULL,
        time TEXT NOT NULL,
        appointment_date TEXT NOT NULL,
        is_absent INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        updated_at TEXT NOT NULL DEFAULT (datetime('now')),
        CHECK(is_absent IN (0, 1))
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_appointments_doctor_day
    ON appointments(doctor_id, appointment_date)
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_pin
    ON appointments(doctor_id, appointment_date, pin) WHERE is_absent = 0
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_serial
    ON appointments(doctor_id, appointment_date, serial) WHERE is_absent = 0
    """,
    """
    CREATE TABLE IF NOT EXISTS doctor_timings (
        doctor_id TEXT PRIMARY KEY,
        start_time TEXT NOT NULL,
        break_start TEXT NOT NULL,
        break_end TEXT NOT NULL,
        end_time TEXT NOT NULL,
        updated_at TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS doctor_open_dates (
        doctor_id TEXT PRIMARY KEY,
        open_date TEXT NOT NULL,
        updated_at TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        actor_id TEXT,
        action TEXT NOT NULL,
        entity TEXT,
        entity_id TEXT,
        ts TEXT NOT NULL,
        result TEXT NOT NULL DEFAULT 'ok',
        meta_json_redacted TEXT NOT NULL DEFAULT '{}'
    )
    """,
)


def _execute_statements(conn: sqlite3.Connection, statements: Iterable[str]) -> None:
    for stmt in statements:
        conn.execute(stmt)


def ensure_base_tables(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        _execute_statements(conn, SCHEMA)
        conn.commit()
    finally:
        conn.close()
