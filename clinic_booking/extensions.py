"""Flask extensions shared by the booking app: storage, CSRF and rate limiting."""

from __future__ import annotations

import os
import sqlite3
from typing import Any, Callable

from flask import Flask, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf import CSRFProtect
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import scoped_session, sessionmaker


class BookingStore:
    """SQLite engine for the booking tables.

    Day reads and re-packs use pooled sqlite3 connections from ``connect``;
    audit writes go through the scoped ORM ``session``. Both come from the
    same engine, so every connection carries the same PRAGMAs.
    """

    def __init__(self) -> None:
        self._engine: Engine | None = None
        self._sessions: Callable[[], Any] | None = None
        self.busy_timeout_ms = 5000

    def init_app(self, app: Flask) -> None:
        self.busy_timeout_ms = int(app.config.get("BOOKING_BUSY_TIMEOUT_MS", self.busy_timeout_ms))
        self._engine = create_engine(
            app.config["SQLALCHEMY_DATABASE_URI"],
            future=True,
            **app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}),
        )
        event.listen(self._engine, "connect", self._configure_connection)
        self._sessions = scoped_session(sessionmaker(bind=self._engine, autoflush=False, future=True))
        app.extensions["booking_store"] = self
        app.teardown_appcontext(self._remove_session)

    def _configure_connection(self, dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        # WAL keeps day listings readable while a booking holds the write lock.
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={self.busy_timeout_ms}")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    def _remove_session(self, exception: BaseException | None = None) -> None:
        if self._sessions is not None:
            self._sessions.remove()

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("booking store is not initialised")
        return self._engine

    def session(self):
        if self._sessions is None:
            raise RuntimeError("booking store is not initialised")
        return self._sessions()

    def connect(self):
        """Pooled sqlite3 connection whose rows can be read by column name."""

        raw = self.engine.raw_connection()
        raw.driver_connection.row_factory = sqlite3.Row
        return raw


def booking_rate_key() -> str:
    """One rate-limit bucket per client address and doctor."""

    doctor = (request.form.get("doctor_id") or "-").strip()
    return f"{get_remote_address()}:{doctor}"


store = BookingStore()
csrf = CSRFProtect()
limiter = Limiter(get_remote_address, storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"))


def init_extensions(app: Flask) -> None:
    store.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)
