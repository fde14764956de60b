"""Shared pytest fixtures.

Provides:
- ``app``: application on in-memory SQLite, seeded with the demo data
- ``client``: anonymous test client
- ``admin_client`` / ``assessor_client`` / ``student_client``: logged-in clients
- ``storage``: the app's ``Storage``, used inside an app context
"""

from __future__ import annotations

import pytest

from feedback_platform import create_app, db


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "PDF_DIRECTORY": str(tmp_path / "pdfs"),
        "SEED_DEMO_DATA": True,
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, username, password):
    resp = client.post("/api/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.get_json()
    return client


@pytest.fixture
def admin_client(app):
    return login(app.test_client(), "admin", "admin123")


@pytest.fixture
def assessor_client(app):
    return login(app.test_client(), "assessor", "assessor123")


@pytest.fixture
def student_client(app):
    return login(app.test_client(), "student1", "student123")


@pytest.fixture
def storage(app):
    with app.app_context():
        yield app.extensions["storage"]
