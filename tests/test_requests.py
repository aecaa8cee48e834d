from datetime import timedelta

from conftest import post_item
from models import Item, utcnow
from workflow import ALREADY_REQUESTED


def _request(client, item_id):
    return client.post("/requests/", json={"item_id": item_id})


def test_request_starts_pending(student, item):
    resp = _request(student, item["id"])
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "pending"
    assert body["read_by_poster"] is False
    assert body["requester_name"] == "Student"


def test_duplicate_request_conflicts(student, item):
    assert _request(student, item["id"]).status_code == 201
    again = _request(student, item["id"])
    assert again.status_code == 409
    assert again.json()["detail"] == ALREADY_REQUESTED


def test_cannot_request_own_item(owner, item):
    assert _request(owner, item["id"]).status_code == 400


def test_cannot_request_expired_item(student, item, db_session):
    row = db_session.get(Item, item["id"])
    row.expiry_date = utcnow() - timedelta(hours=1)
    db_session.add(row)
    db_session.commit()

    resp = _request(student, item["id"])
    assert resp.status_code == 400
    assert resp.json()["detail"] == "This item has expired."


def test_cannot_request_donated_item(owner, student, item):
    owner.post(f"/items/{item['id']}/donate")
    assert _request(student, item["id"]).status_code == 400


def test_unknown_item_is_404(student):
    assert _request(student, 9999).status_code == 404


def test_only_owner_changes_status(owner, student, item):
    req = _request(student, item["id"]).json()
    assert student.patch(f"/requests/{req['id']}", json={"status": "approved"}).status_code == 403

    resp = owner.patch(f"/requests/{req['id']}", json={"status": "approved"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "approved"
    assert resp.json()["read_by_requester"] is False


def test_status_transitions(owner, student, item):
    req = _request(student, item["id"]).json()
    url = f"/requests/{req['id']}"

    assert owner.patch(url, json={"status": "pending"}).status_code == 422
    assert owner.patch(url, json={"status": "rejected"}).json()["status"] == "rejected"
    assert owner.patch(url, json={"status": "rejected"}).status_code == 400
    assert owner.patch(url, json={"status": "approved"}).json()["status"] == "approved"
    assert owner.patch(url, json={"status": "approved"}).status_code == 400


def test_contact_requires_approval(owner, student, item):
    req = _request(student, item["id"]).json()
    assert student.get(f"/items/{item['id']}/contact").status_code == 403

    owner.patch(f"/requests/{req['id']}", json={"status": "approved"})
    resp = student.get(f"/items/{item['id']}/contact")
    assert resp.status_code == 200
    assert resp.json()["contact_url"].startswith("https://wa.me/4512345678?text=")

    owner.patch(f"/requests/{req['id']}", json={"status": "rejected"})
    assert student.get(f"/items/{item['id']}/contact").status_code == 403


def test_owner_can_always_contact_link(owner, item):
    assert owner.get(f"/items/{item['id']}/contact").status_code == 200


def test_my_requests_include_contact_once_approved(owner, student, item):
    req = _request(student, item["id"]).json()
    mine = student.get("/requests/mine").json()
    assert mine[0]["item"]["id"] == item["id"]
    assert mine[0]["contact_url"] is None

    owner.patch(f"/requests/{req['id']}", json={"status": "approved"})
    mine = student.get("/requests/mine").json()
    assert mine[0]["contact_url"].startswith("https://wa.me/")


def test_incoming_counts_by_status(owner, student, make_client, item):
    third = make_client("third@edu.nielsbrock.dk")
    first = _request(student, item["id"]).json()
    _request(third, item["id"])
    owner.patch(f"/requests/{first['id']}", json={"status": "approved"})

    body = owner.get("/requests/incoming").json()
    assert body["counts"] == {"all": 2, "pending": 1, "approved": 1, "rejected": 0}

    pending = owner.get("/requests/incoming", params={"status": "pending"}).json()
    assert [r["requester_email"] for r in pending["requests"]] == ["third@edu.nielsbrock.dk"]


def test_requester_can_withdraw(student, item):
    _request(student, item["id"])
    assert student.delete(f"/requests/item/{item['id']}").status_code == 204
    assert student.get("/requests/mine").json() == []
    assert _request(student, item["id"]).status_code == 201


def test_strangers_cannot_delete_request(student, make_client, item):
    req = _request(student, item["id"]).json()
    stranger = make_client("stranger@edu.nielsbrock.dk")
    assert stranger.delete(f"/requests/{req['id']}").status_code == 403
    assert stranger.get(f"/requests/{req['id']}").status_code == 403


def test_full_flow_post_request_approve_contact(owner, student, make_client):
    item = post_item(owner, name="Office chair").json()
    req = _request(student, item["id"]).json()

    incoming = owner.get("/notifications/").json()
    assert incoming["incoming_count"] == 1
    assert incoming["incoming"][0]["item_name"] == "Office chair"

    owner.patch(f"/requests/{req['id']}", json={"status": "approved"})

    updates = student.get("/notifications/").json()
    assert updates["updates_count"] == 1
    assert updates["updates"][0]["status"] == "approved"
    assert student.get(f"/items/{item['id']}/contact").status_code == 200

    stranger = make_client("stranger@edu.nielsbrock.dk")
    assert stranger.get(f"/items/{item['id']}/contact").status_code == 403

    assert student.delete(f"/requests/item/{item['id']}").status_code == 204
    assert owner.get("/notifications/").json()["incoming_count"] == 0
    assert student.get("/notifications/").json()["updates_count"] == 0
