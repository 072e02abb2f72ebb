import sqlite3

import pytest

from clinic_booking.services.database import db, immediate_transaction

_INSERT = """
    INSERT INTO appointments(id, doctor_id, patient_name, pin, reason, serial, time, appointment_date, is_absent)
    VALUES (?, 'dr-lina', 'Test', ?, 'Follow-up', ?, '11:00', '2030-01-15', ?)
"""


def test_sqlite_pragmas_active(app):
    with app.app_context():
        conn = db()
        try:
            mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
            timeout = conn.execute("PRAGMA busy_timeout").fetchone()[0]
            foreign = conn.execute("PRAGMA foreign_keys").fetchone()[0]
        finally:
            conn.close()
    assert mode.lower() == "wal"
    assert timeout == 5000
    assert foreign == 1


def test_active_serial_is_unique_per_doctor_day(app):
    with app.app_context():
        with immediate_transaction() as conn:
            conn.execute(_INSERT, ("a1", "1111", 1, 0))
            # Absent rows may keep a serial that an active row now holds.
            conn.execute(_INSERT, ("a2", "2222", 1, 1))
        with pytest.raises(sqlite3.IntegrityError):
            with immediate_transaction() as conn:
                conn.execute(_INSERT, ("a3", "3333", 1, 0))


def test_failed_transaction_rolls_back(app):
    with app.app_context():
        with pytest.raises(sqlite3.IntegrityError):
            with immediate_transaction() as conn:
                conn.execute(_INSERT, ("b1", "1111", 1, 0))
                conn.execute(_INSERT, ("b2", "1111", 2, 0))
        conn = db()
        try:
            count = conn.execute("SELECT COUNT(*) FROM appointments").fetchone()[0]
        finally:
            conn.close()
    assert count == 0
