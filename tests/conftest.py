import os
import tempfile

# must be set before config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["MEDIA_DIR"] = tempfile.mkdtemp(prefix="freestuff-media-")
os.environ["ADMIN_EMAILS"] = "admin@edu.nielsbrock.dk"
os.environ["SMTP_HOST"] = ""
os.environ["GOOGLE_CLIENT_ID"] = ""

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session  # noqa: E402

from db import create_db_and_tables, drop_db_and_tables, engine  # noqa: E402
from main import app  # noqa: E402

PASSWORD = "secret123"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64

OWNER_EMAIL = "owner@edu.nielsbrock.dk"
STUDENT_EMAIL = "student@edu.nielsbrock.dk"
ADMIN_EMAIL = "admin@edu.nielsbrock.dk"


def register(client: TestClient, email: str, password: str = PASSWORD, **fields) -> dict:
    payload = {"email": email, "password": password, "full_name": email.split("@")[0].title()}
    payload.update(fields)
    resp = client.post("/register", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


def post_item(client: TestClient, **fields):
    data = {
        "name": "Desk lamp",
        "description": "Works fine, bulb included.",
        "price": "0",
        "category": "Furniture",
        "condition": "Good",
        "location": "Room 2.14",
        "whatsapp_number": "+45 12345678",
    }
    data.update(fields)
    return client.post(
        "/items/",
        data=data,
        files={"image": ("lamp.png", PNG_BYTES, "image/png")},
    )


@pytest.fixture(autouse=True)
def fresh_db():
    drop_db_and_tables()
    create_db_and_tables()
    yield


@pytest.fixture
def db_session():
    with Session(engine) as session:
        yield session


@pytest.fixture
def make_client():
    """One TestClient per user, so each keeps its own session cookie."""
    clients = []

    def factory(email=None, **fields) -> TestClient:
        client = TestClient(app)
        clients.append(client)
        if email:
            register(client, email, **fields)
        return client

    yield factory
    for client in clients:
        client.close()


@pytest.fixture
def owner(make_client):
    return make_client(OWNER_EMAIL)


@pytest.fixture
def student(make_client):
    return make_client(STUDENT_EMAIL)


@pytest.fixture
def admin(make_client):
    return make_client(ADMIN_EMAIL)


@pytest.fixture
def item(owner):
    resp = post_item(owner)
    assert resp.status_code == 201, resp.text
    return resp.json()
