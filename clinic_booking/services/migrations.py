"""Alembic migration helpers."""

from __future__ import annotations

import os
from pathlib import Path

from alembic import command
from alembic.config import Config
from flask import Flask

REPO_ROOT = Path(__file__).resolve().parents[2]


def alembic_config(app: Flask) -> Config | None:
    alembic_ini = REPO_ROOT / "alembic.ini"
    migrations_dir = REPO_ROOT / "migrations"
    if not alembic_ini.exists() or not migrations_dir.exists():
        return None
    cfg = Config(str(alembic_ini))
    cfg.set_main_option("script_location", str(migrations_dir))
    cfg.set_main_option("sqlalchemy.url", app.config["SQLALCHEMY_DATABASE_URI"])
    cfg.attributes["configure_logger"] = False
    return cfg


def run_migrations(app: Flask) -> None:
    """Upgrade the database to the latest revision."""

    cfg = alembic_config(app)
    if cfg is None:
        raise RuntimeError("alembic.ini or migrations/ not found next to the package")
    command.upgrade(cfg, "head")


def auto_upgrade(app: Flask) -> None:
    """Run `alembic upgrade head` on start unless CLINIC_AUTO_MIGRATE=0."""

    if os.getenv("CLINIC_AUTO_MIGRATE", "1") != "1":
        return
    cfg = alembic_config(app)
    if cfg is None:
        return
    try:
        command.upgrade(cfg, "head")
    except Exception as exc:  # pragma: no cover - bootstrap tables still get created
        app.logger.warning("Auto migration skipped: %s", exc)
