"""Booking API blueprint."""

from __future__ import annotations

from clinic_booking.blueprints.booking import routes

bp = routes.bp

__all__ = ["bp"]
