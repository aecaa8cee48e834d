import pytest
from fastapi import HTTPException

import config
import mailer
from conftest import ADMIN_EMAIL, PASSWORD, STUDENT_EMAIL, register
from routers.auth import _check_domain


def test_register_sets_session_and_role(make_client):
    client = make_client()
    body = register(client, STUDENT_EMAIL)
    assert body["role"] == "student"

    me = client.get("/me")
    assert me.status_code == 200
    assert me.json()["email"] == STUDENT_EMAIL
    assert me.json()["is_onboarded"] is False


def test_register_rejects_other_domains(make_client):
    client = make_client()
    resp = client.post("/register", json={"email": "someone@gmail.com", "password": PASSWORD})
    assert resp.status_code == 400
    assert "@edu.nielsbrock.dk" in resp.json()["detail"]


def test_register_rejects_short_password(make_client):
    client = make_client()
    resp = client.post("/register", json={"email": STUDENT_EMAIL, "password": "abc"})
    assert resp.status_code == 400


def test_register_twice_fails(make_client):
    client = make_client(STUDENT_EMAIL)
    resp = client.post("/register", json={"email": STUDENT_EMAIL, "password": PASSWORD})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Email already registered"


def test_admin_email_gets_admin_role(make_client):
    client = make_client()
    assert register(client, ADMIN_EMAIL)["role"] == "admin"


def test_login_and_logout(make_client):
    make_client(STUDENT_EMAIL)
    client = make_client()

    bad = client.post("/login", json={"email": STUDENT_EMAIL, "password": "wrong-password"})
    assert bad.status_code == 400

    resp = client.post("/login", json={"email": STUDENT_EMAIL, "password": PASSWORD})
    assert resp.status_code == 200
    assert client.get("/me").status_code == 200

    out = client.post("/logout", follow_redirects=False)
    assert out.status_code == 303
    client.cookies.clear()
    assert client.get("/me").status_code == 401


def test_protected_routes_need_a_session(make_client):
    client = make_client()
    assert client.get("/users/me").status_code == 401
    assert client.get("/notifications/").status_code == 401


def _request_link(client, monkeypatch, email=STUDENT_EMAIL) -> str:
    sent = {}

    def fake_send(to_email, link):
        sent["to"] = to_email
        sent["link"] = link
        return True

    monkeypatch.setattr(mailer, "send_magic_link", fake_send)
    resp = client.post("/auth/magic-link", json={"email": email})
    assert resp.status_code == 202
    assert sent["to"] == email
    return sent["link"].replace(config.PUBLIC_BASE_URL, "")


def test_magic_link_creates_account_and_signs_in(make_client, monkeypatch):
    client = make_client()
    path = _request_link(client, monkeypatch)

    resp = client.get(path, follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/onboarding"
    assert client.get("/me").json()["email"] == STUDENT_EMAIL


def test_magic_link_works_once(make_client, monkeypatch):
    client = make_client()
    path = _request_link(client, monkeypatch)

    assert client.get(path, follow_redirects=False).status_code == 303
    again = client.get(path, follow_redirects=False)
    assert again.status_code == 400
    assert again.json()["detail"] == "This sign-in link has already been used."


def test_magic_link_rejects_tampered_token(make_client):
    client = make_client()
    resp = client.get("/auth/callback", params={"token": "not-a-real-token"})
    assert resp.status_code == 400


def test_magic_link_user_cannot_use_password_login(make_client, monkeypatch):
    client = make_client()
    client.get(_request_link(client, monkeypatch), follow_redirects=False)

    other = make_client()
    resp = other.post("/login", json={"email": STUDENT_EMAIL, "password": PASSWORD})
    assert resp.status_code == 400
    assert "magic link" in resp.json()["detail"]


def test_google_sign_in_is_off_without_credentials(make_client):
    client = make_client()
    assert client.get("/auth/google", follow_redirects=False).status_code == 404


def test_domain_check_rejects_malformed_provider_email():
    with pytest.raises(HTTPException) as exc_info:
        _check_domain("student at edu.nielsbrock.dk")
    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "Please enter a valid email address"

    _check_domain(STUDENT_EMAIL)
