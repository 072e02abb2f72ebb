"""Append-only audit logging for booking changes."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Mapping

import sqlalchemy as sa

from clinic_booking.services.database import session_scope

SENSITIVE_KEYS = {"pin", "contact", "phone"}

_INSERT = """
    INSERT INTO audit_log(actor_id, action, entity, entity_id, ts, result, meta_json_redacted)
    VALUES (:actor_id, :action, :entity, :entity_id, :ts, :result, :meta)
"""


def _sanitize_meta(meta: Mapping[str, Any] | None) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    if not meta:
        return cleaned
    for key, value in meta.items():
        cleaned[key] = "[redacted]" if key.lower() in SENSITIVE_KEYS else value
    return cleaned


def write_event(
    actor_id: str | None,
    action: str,
    *,
    entity: str | None = None,
    entity_id: str | None = None,
    result: str = "ok",
    meta: Mapping[str, Any] | None = None,
    conn: sqlite3.Connection | None = None,
) -> None:
    """Record one audit row.

    Pass ``conn`` to write inside a transaction the caller already holds, so
    the change and its audit row commit or roll back together.
    """

    params = {
        "actor_id": actor_id,
        "action": action,
        "entity": entity,
        "entity_id": entity_id,
        "ts": datetime.now(timezone.utc).isoformat(),
        "result": result,
        "meta": json.dumps(_sanitize_meta(meta), ensure_ascii=False),
    }
    if conn is not None:
        conn.execute(_INSERT, params)
        return
    with session_scope() as session:
        session.execute(sa.text(_INSERT), params)


def recent_events(limit: int = 50) -> list[dict[str, Any]]:
    with session_scope() as session:
        rows = session.execute(
            sa.text(
                "SELECT actor_id, action, entity, entity_id, ts, result, meta_json_redacted "
                "FROM audit_log ORDER BY id DESC LIMIT :limit"
            ),
            {"limit": limit},
        ).mappings().all()
    return [
        {**dict(row), "meta": json.loads(row["meta_json_redacted"] or "{}")}
        for row in rows
    ]
