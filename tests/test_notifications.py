from datetime import datetime, timedelta

from backend import db
from backend.services import notifications


def _notify(client, session, **overrides):
    body = {"title": "Irrigation reminder", "message": "Water the paddy tonight", "type": "reminder"}
    body.update(overrides)
    resp = client.post("/api/notifications", headers=session["headers"], json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["notification"]


def test_create_and_list(client, farmer):
    first = _notify(client, farmer)
    _notify(client, farmer, title="Market update", type="general")
    assert first["isRead"] is False

    data = client.get("/api/notifications", headers=farmer["headers"]).json()["data"]
    assert data["unreadCount"] == 2
    assert data["pagination"]["total"] == 2
    assert data["notifications"][0]["title"] == "Market update"


def test_create_requires_title_and_message(client, farmer):
    resp = client.post("/api/notifications", headers=farmer["headers"], json={"title": "x"})
    assert resp.status_code == 400


def test_expired_are_hidden(client, farmer):
    user_id = db.parse_object_id(farmer["user"]["_id"])
    notifications.create_notification(
        user_id, {"title": "old", "message": "gone", "expiresAt": datetime.utcnow() - timedelta(days=1)}
    )
    _notify(client, farmer)
    data = client.get("/api/notifications", headers=farmer["headers"]).json()["data"]
    assert [n["title"] for n in data["notifications"]] == ["Irrigation reminder"]
    assert data["unreadCount"] == 1


def test_mark_read_and_mark_all(client, farmer, other_farmer):
    first = _notify(client, farmer)
    _notify(client, farmer)

    resp = client.put(f"/api/notifications/{first['_id']}/read", headers=other_farmer["headers"])
    assert resp.status_code == 404
    assert resp.json()["message"] == "Notification not found"

    client.put(f"/api/notifications/{first['_id']}/read", headers=farmer["headers"])
    data = client.get("/api/notifications?unreadOnly=true", headers=farmer["headers"]).json()["data"]
    assert data["pagination"]["total"] == 1

    resp = client.put("/api/notifications/mark-all-read", headers=farmer["headers"])
    assert resp.json()["data"]["modifiedCount"] == 1
    assert notifications.unread_count(db.parse_object_id(farmer["user"]["_id"])) == 0


def test_delete(client, farmer):
    note = _notify(client, farmer)
    assert client.delete(f"/api/notifications/{note['_id']}", headers=farmer["headers"]).status_code == 200
    assert client.delete(f"/api/notifications/{note['_id']}", headers=farmer["headers"]).status_code == 404


def test_push_subscription(client, farmer):
    resp = client.post("/api/notifications/subscribe", headers=farmer["headers"], json={"subscription": {}})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid subscription data"

    sub = {"endpoint": "https://push.example.com/abc", "keys": {"p256dh": "k", "auth": "a"}}
    client.post("/api/notifications/subscribe", headers=farmer["headers"], json={"subscription": sub})
    stored = db.collection(db.USERS).find_one({"email": "farmer@example.com"})
    assert stored["pushSubscription"]["endpoint"] == sub["endpoint"]

    client.post("/api/notifications/unsubscribe", headers=farmer["headers"])
    stored = db.collection(db.USERS).find_one({"email": "farmer@example.com"})
    assert stored["pushSubscription"] is None


def test_preferences(client, farmer):
    prefs = client.get("/api/notifications/preferences", headers=farmer["headers"]).json()["data"]
    assert prefs["preferences"]["marketing"] is False

    resp = client.put("/api/notifications/preferences", headers=farmer["headers"], json={"marketing": True})
    assert resp.json()["data"]["preferences"] == {
        "weather": True, "community": True, "alerts": True, "marketing": True,
    }


def test_bulk_cleanup_and_analytics(client, farmer, other_farmer):
    ids = [db.parse_object_id(s["user"]["_id"]) for s in (farmer, other_farmer)]
    assert notifications.create_bulk(ids, {"title": "Storm", "message": "Secure sheds", "type": "weather"}) == 2
    assert notifications.create_bulk([], {"title": "x", "message": "y"}) == 0

    db.collection(db.NOTIFICATIONS).insert_one(
        {"user": ids[0], "title": "ancient", "message": "m", "isRead": True, "isDeleted": False,
         "createdAt": datetime.utcnow() - timedelta(days=120)}
    )
    assert notifications.cleanup_old() == 1

    _notify(client, farmer)
    data = client.get("/api/notifications/analytics", headers=farmer["headers"]).json()["data"]
    assert data["summary"]["totalNotifications"] == 2
    assert data["summary"]["notificationTypes"] == ["reminder", "weather"]
    assert data["monthly"][0]["unread"] == 2


def test_expiry_with_utc_designator(client, farmer):
    note = _notify(client, farmer, expiresAt="2030-01-01T00:00:00.000Z")
    assert note["expiresAt"] == "2030-01-01T00:00:00"
    data = client.get("/api/notifications", headers=farmer["headers"]).json()["data"]
    assert data["unreadCount"] == 1
