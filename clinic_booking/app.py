"""WSGI entry for the booking API (``gunicorn clinic_booking.app:app``)."""

from __future__ import annotations

import os

from . import APP_HOST, APP_PORT, create_app

app = create_app()


if __name__ == "__main__":
    app.run(
        host=os.getenv("CLINIC_HOST", APP_HOST),
        port=int(os.getenv("CLINIC_PORT", APP_PORT)),
        debug=False,
    )
