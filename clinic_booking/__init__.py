"""Clinic serial-booking package exposing the Flask application factory."""

from __future__ import annotations

import os
from pathlib import Path

from flask import Flask, jsonify
from flask_wtf.csrf import CSRFError

from .blueprints import register_blueprints
from .cli import register_cli
from .extensions import init_extensions
from .services.bootstrap import ensure_base_tables
from .services.migrations import auto_upgrade

APP_HOST = "127.0.0.1"
APP_PORT = 8080


def _data_root(base_dir: Path, override: Path | None = None) -> Path:
    root = override if override else base_dir / "data"
    (root / "logs").mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def create_app() -> Flask:
    base_dir = Path(__file__).resolve().parent.parent
    db_override = os.getenv("CLINIC_DB_PATH")
    data_root = _data_root(base_dir, Path(db_override).parent if db_override else None)
    db_path = Path(db_override) if db_override else data_root / "app.db"

    app = Flask(__name__)

    secret_key = os.getenv("CLINIC_SECRET_KEY") or os.urandom(32)

    doctor_list = [
        doc.strip()
        for doc in os.getenv("CLINIC_DOCTORS", "Dr. Lina,Dr. Omar").split(",")
        if doc.strip()
    ]
    if not doctor_list:
        doctor_list = ["On Call"]

    app.config.update(
        SECRET_KEY=secret_key,
        SESSION_COOKIE_NAME="clinic_session",
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{db_path}",
        SQLALCHEMY_ENGINE_OPTIONS={"connect_args": {"check_same_thread": False}},
        RATELIMIT_STORAGE_URI=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
        BOOKING_BUSY_TIMEOUT_MS=int(os.getenv("BOOKING_BUSY_TIMEOUT_MS", "5000")),
        DATA_ROOT=str(data_root),
        BOOKING_DB=str(db_path),
        BOOKING_DOCTORS=doctor_list,
        BOOKING_DAILY_LIMIT=int(os.getenv("BOOKING_DAILY_LIMIT", "17")),
        BOOKING_EMERGENCY_CONTACT=os.getenv("BOOKING_EMERGENCY_CONTACT", "01708166012"),
        BOOKING_DEFAULT_TIMINGS=os.getenv("BOOKING_DEFAULT_TIMINGS", "11:00,13:15,14:30,16:30"),
        BOOKING_STRICT_BREAK=_env_flag("BOOKING_STRICT_BREAK", "1"),
        BOOKING_RATE_LIMIT=os.getenv("BOOKING_RATE_LIMIT", "20 per minute"),
    )

    init_extensions(app)
    register_blueprints(app)
    auto_upgrade(app)
    ensure_base_tables(db_path)
    register_cli(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning("CSRF validation failed: %s", e.description)
        return jsonify({"success": False, "errors": [f"CSRF validation failed: {e.description}"]}), 400

    @app.errorhandler(400)
    def handle_bad_request(e):
        app.logger.warning("Bad request: %s", e)
        return jsonify({"success": False, "errors": ["Bad request - check request format and CSRF token"]}), 400

    @app.errorhandler(429)
    def handle_rate_limited(e):
        app.logger.warning("Rate limit hit: %s", e.description)
        return jsonify({"success": False, "error": "Too many booking attempts, slow down."}), 429

    return app


__all__ = ["create_app", "APP_HOST", "APP_PORT"]
