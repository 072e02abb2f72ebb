"""Blueprint registration."""

from __future__ import annotations

from flask import Flask


def register_blueprints(app: Flask) -> None:
    from clinic_booking.blueprints.booking import bp as booking_bp

    app.register_blueprint(booking_bp)
