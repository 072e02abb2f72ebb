"""Database helpers backed by SQLAlchemy."""

from __future__ import annotations

from contextlib import contextmanager

from clinic_booking.extensions import store


def db():
    """Return a raw sqlite3 connection with PRAGMAs applied."""

    return store.connect()


@contextmanager
def immediate_transaction():
    """Yield a connection holding SQLite's write lock until commit or rollback.

    Every read-decide-write sequence on a doctor's day runs inside one of
    these so concurrent bookings serialise instead of racing.
    """

    conn = db()
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextmanager
def session_scope():
    """Provide a transactional scope for ORM usage."""

    session = store.session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
