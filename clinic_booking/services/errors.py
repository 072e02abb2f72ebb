"""Unexpected-failure reporting for booking routes."""

from __future__ import annotations

import traceback
from datetime import datetime, timezone
from pathlib import Path

from flask import current_app, has_request_context, request


def _request_line() -> str:
    if not has_request_context():
        return "-"
    actor = request.headers.get("X-Actor-Id") or "anonymous"
    return f"{request.method} {request.path} actor={actor}"


def record_exception(context: str, exc: BaseException) -> None:
    """Log ``exc`` and keep a copy of the traceback in ``logs/app_errors.log``.

    ``context`` names the failing operation, e.g. ``"booking.book"``.
    """

    where = _request_line()
    current_app.logger.error("%s failed (%s): %s", context, where, exc, exc_info=exc)
    log_path = Path(current_app.config["DATA_ROOT"]) / "logs" / "app_errors.log"
    entry = [
        f"[{datetime.now(timezone.utc).isoformat()}] {context} {where}\n",
        *traceback.format_exception(type(exc), exc, exc.__traceback__),
        "\n",
    ]
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("a", encoding="utf-8") as handle:
            handle.writelines(entry)
    except OSError as log_exc:
        current_app.logger.warning("Could not write %s: %s", log_path, log_exc)
