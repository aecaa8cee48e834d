from datetime import timedelta
from pathlib import Path

import config
from conftest import post_item
from models import Item, utcnow


def test_create_item_stores_image_and_expiry(owner):
    resp = post_item(owner, price="25")
    assert resp.status_code == 201, resp.text
    body = resp.json()

    assert body["image"].startswith(config.MEDIA_URL + "/")
    assert (Path(config.MEDIA_DIR) / body["image"].rsplit("/", 1)[1]).is_file()
    assert body["is_free"] is False
    assert body["is_expired"] is False
    assert body["days_until_expiry"] == config.ITEM_LIFETIME_DAYS
    assert body["status"] == "active"


def test_free_item_and_default_location(owner):
    body = post_item(owner, price="0", location="").json()
    assert body["is_free"] is True
    assert body["location"] == config.DEFAULT_LOCATION


def test_image_is_required(owner):
    resp = owner.post("/items/", data={"name": "Chair", "description": "Sturdy"})
    assert resp.status_code == 400
    assert "image is required" in resp.json()["detail"]


def test_rejects_non_image_upload(owner):
    resp = owner.post(
        "/items/",
        data={"name": "Chair", "description": "Sturdy"},
        files={"image": ("notes.txt", b"hello", "text/plain")},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid file type. Only images are allowed."


def test_rejects_script_in_title(owner):
    resp = post_item(owner, name="<script>alert(1)</script>")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid characters in title"


def test_rejects_negative_price(owner):
    resp = post_item(owner, price="-5")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Price cannot be negative"


def test_rejects_unknown_category(owner):
    resp = post_item(owner, category="Cars")
    assert resp.status_code == 400


def test_list_filters_by_search_and_category(owner):
    post_item(owner, name="Desk lamp", category="Furniture")
    post_item(owner, name="Python textbook", category="Books")

    all_items = owner.get("/items/").json()
    assert len(all_items) == 2

    books = owner.get("/items/", params={"category": "Books"}).json()
    assert [i["name"] for i in books] == ["Python textbook"]

    lamps = owner.get("/items/", params={"search": "lamp"}).json()
    assert [i["name"] for i in lamps] == ["Desk lamp"]


def test_list_sorts_by_price(owner):
    post_item(owner, name="Cheap", price="5")
    post_item(owner, name="Pricey", price="50")
    post_item(owner, name="Free", price="0")

    names = [i["name"] for i in owner.get("/items/", params={"sort": "price_high"}).json()]
    assert names == ["Pricey", "Cheap", "Free"]


def test_only_owner_can_edit(owner, student, item):
    assert student.patch(f"/items/{item['id']}", data={"name": "Mine now"}).status_code == 403

    resp = owner.patch(f"/items/{item['id']}", data={"name": "Desk lamp (white)"})
    assert resp.status_code == 200
    assert resp.json()["name"] == "Desk lamp (white)"
    assert resp.json()["description"] == item["description"]


def test_donate_is_idempotent(owner, item):
    first = owner.post(f"/items/{item['id']}/donate")
    assert first.status_code == 200
    assert first.json()["is_donated"] is True

    second = owner.post(f"/items/{item['id']}/donate")
    assert second.status_code == 200
    assert second.json()["donated_at"] == first.json()["donated_at"]

    stats = owner.get("/users/me/stats").json()
    assert stats["items_posted"] == 1
    assert stats["items_donated"] == 1
    assert stats["active_items"] == 0


def test_hide_donated_items(owner, item):
    post_item(owner, name="Kettle")
    owner.post(f"/items/{item['id']}/donate")

    visible = owner.get("/items/", params={"include_donated": False}).json()
    assert [i["name"] for i in visible] == ["Kettle"]


def test_expired_item_reports_zero_days(owner, item, db_session):
    row = db_session.get(Item, item["id"])
    row.expiry_date = utcnow() - timedelta(days=1)
    db_session.add(row)
    db_session.commit()

    body = owner.get(f"/items/{item['id']}").json()
    assert body["is_expired"] is True
    assert body["days_until_expiry"] == 0


def test_delete_removes_item_and_image(owner, student, item):
    image_file = Path(config.MEDIA_DIR) / item["image"].rsplit("/", 1)[1]
    assert student.delete(f"/items/{item['id']}").status_code == 403

    assert owner.delete(f"/items/{item['id']}").status_code == 204
    assert owner.get(f"/items/{item['id']}").status_code == 404
    assert not image_file.exists()


def test_my_items(owner, student, item):
    post_item(student, name="Bike helmet")
    assert [i["id"] for i in owner.get("/items/mine").json()] == [item["id"]]


def test_upload_extension_follows_content_type(owner, make_client):
    resp = owner.post(
        "/items/",
        data={"name": "Chair", "description": "Sturdy"},
        files={"image": ("evil.html", b"<script>alert(document.cookie)</script>", "image/png")},
    )
    assert resp.status_code == 201
    image_url = resp.json()["image"]
    assert image_url.endswith(".png")

    served = make_client().get(image_url)
    assert served.status_code == 200
    assert not served.headers["content-type"].startswith("text/html")
