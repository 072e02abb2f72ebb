import os
import pathlib
import shutil
import sys

import pytest

root = pathlib.Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

from clinic_booking import create_app

DAY = "2030-01-15"

_ENV = {
    "CLINIC_SECRET_KEY": "test-secret",
    "CLINIC_DOCTORS": "Dr. Lina,Dr. Omar",
    "BOOKING_RATE_LIMIT": "1000 per minute",
}


@pytest.fixture(scope="session")
def _template_db(tmp_path_factory):
    """Migrate one database per session; each test works on a copy."""
    db_path = tmp_path_factory.mktemp("template") / "app.db"
    saved = {key: os.environ.get(key) for key in ("CLINIC_DB_PATH", "CLINIC_AUTO_MIGRATE", *_ENV)}
    os.environ.update(_ENV, CLINIC_DB_PATH=str(db_path), CLINIC_AUTO_MIGRATE="1")
    try:
        _app = create_app()
        with _app.app_context():
            pass
    finally:
        for key, value in saved.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
    return db_path


@pytest.fixture
def app(tmp_path, monkeypatch, _template_db):
    db_path = tmp_path / "app.db"
    shutil.copy2(_template_db, db_path)
    monkeypatch.setenv("CLINIC_DB_PATH", str(db_path))
    monkeypatch.setenv("CLINIC_AUTO_MIGRATE", "0")
    for key, value in _ENV.items():
        monkeypatch.setenv(key, value)
    app = create_app()
    app.config.update(TESTING=True, WTF_CSRF_ENABLED=True)
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def csrf_token(client):
    return client.get("/api/csrf").get_json()["csrf_token"]


@pytest.fixture
def book(client, csrf_token):
    """POST a booking; keyword arguments override the default form."""

    counter = {"n": 0}

    def _book(**overrides):
        counter["n"] += 1
        data = {
            "csrf_token": csrf_token,
            "doctor_id": "dr-lina",
            "day": DAY,
            "name": f"Patient {counter['n']}",
            "pin": f"{1000 + counter['n']}",
            "concern": "OG",
            "reason": "New Patient",
            "contact": "01700000000",
        }
        data.update(overrides)
        return client.post("/api/appointments", data=data)

    return _book
