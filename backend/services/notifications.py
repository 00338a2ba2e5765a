import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from bson import ObjectId

from backend import db

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 30
PREFERENCE_KEYS = ("weather", "community", "alerts", "marketing")


def _document(user_id: ObjectId, data: Dict[str, Any]) -> Dict[str, Any]:
    now = datetime.utcnow()
    return {
        "user": user_id,
        "title": data["title"],
        "message": data["message"],
        "type": data.get("type") or "general",
        "priority": data.get("priority") or "medium",
        "data": data.get("data") or {},
        "isRead": False,
        "readAt": None,
        "isDeleted": False,
        "expiresAt": db.naive_utc(data.get("expiresAt")) or now + timedelta(days=DEFAULT_TTL_DAYS),
        "scheduledFor": data.get("scheduledFor"),
        "metadata": data.get("metadata") or {"source": "user"},
        "actions": data.get("actions") or [],
        "createdAt": now,
        "updatedAt": now,
    }


def create_notification(user_id: ObjectId, data: Dict[str, Any]) -> Dict[str, Any]:
    doc = _document(user_id, data)
    doc["_id"] = db.collection(db.NOTIFICATIONS).insert_one(doc).inserted_id
    return doc


def create_bulk(user_ids: List[ObjectId], data: Dict[str, Any]) -> int:
    if not user_ids:
        return 0
    docs = [_document(uid, data) for uid in user_ids]
    result = db.collection(db.NOTIFICATIONS).insert_many(docs)
    return len(result.inserted_ids)


def _visible(user_id: ObjectId, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.utcnow()
    return {
        "user": user_id,
        "isDeleted": {"$ne": True},
        "$or": [{"expiresAt": None}, {"expiresAt": {"$gt": now}}],
    }


def list_notifications(user_id: ObjectId, page: int, limit: int, unread_only: bool):
    query = _visible(user_id)
    if unread_only:
        query["isRead"] = False
    coll = db.collection(db.NOTIFICATIONS)
    total = coll.count_documents(query)
    items = list(coll.find(query).sort("createdAt", -1).skip((page - 1) * limit).limit(limit))
    return items, total


def unread_count(user_id: ObjectId) -> int:
    query = _visible(user_id)
    query["isRead"] = False
    return db.collection(db.NOTIFICATIONS).count_documents(query)


def find_owned(notification_id: ObjectId, user_id: ObjectId) -> Optional[Dict[str, Any]]:
    return db.collection(db.NOTIFICATIONS).find_one({"_id": notification_id, "user": user_id})


def mark_read(notification: Dict[str, Any]) -> None:
    now = datetime.utcnow()
    db.collection(db.NOTIFICATIONS).update_one(
        {"_id": notification["_id"]},
        {"$set": {"isRead": True, "readAt": now, "updatedAt": now}},
    )


def mark_all_read(user_id: ObjectId) -> int:
    now = datetime.utcnow()
    result = db.collection(db.NOTIFICATIONS).update_many(
        {"user": user_id, "isRead": False},
        {"$set": {"isRead": True, "readAt": now, "updatedAt": now}},
    )
    return result.modified_count


def delete(notification: Dict[str, Any]) -> None:
    db.collection(db.NOTIFICATIONS).delete_one({"_id": notification["_id"]})


def cleanup_old(days: int = 90) -> int:
    cutoff = datetime.utcnow() - timedelta(days=days)
    result = db.collection(db.NOTIFICATIONS).delete_many(
        {"$or": [{"createdAt": {"$lt": cutoff}}, {"isDeleted": True}]}
    )
    if result.deleted_count:
        logger.info("[cleanup_old] removed %d notification(s)", result.deleted_count)
    return result.deleted_count


def save_push_subscription(user_id: ObjectId, subscription: Optional[Dict[str, Any]]) -> None:
    db.collection(db.USERS).update_one(
        {"_id": user_id},
        {"$set": {"pushSubscription": subscription, "updatedAt": datetime.utcnow()}},
    )


def get_preferences(user: Dict[str, Any]) -> Dict[str, Any]:
    return ((user.get("preferences") or {}).get("notifications")) or {}


def update_preferences(user: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    prefs = dict(get_preferences(user))
    for key in PREFERENCE_KEYS:
        if changes.get(key) is not None:
            prefs[key] = bool(changes[key])
    db.collection(db.USERS).update_one(
        {"_id": user["_id"]},
        {"$set": {"preferences.notifications": prefs, "updatedAt": datetime.utcnow()}},
    )
    return prefs


def analytics(user_id: ObjectId, start: datetime) -> Dict[str, Any]:
    items = list(db.collection(db.NOTIFICATIONS).find({"user": user_id, "createdAt": {"$gte": start}}))
    read = sum(1 for n in items if n.get("isRead"))
    summary = {
        "totalNotifications": len(items),
        "readNotifications": read,
        "unreadNotifications": len(items) - read,
        "notificationTypes": sorted({n.get("type", "general") for n in items}),
    }
    counts = Counter(n.get("type", "general") for n in items)
    read_counts = Counter(n.get("type", "general") for n in items if n.get("isRead"))
    by_type = [
        {"_id": t, "count": c, "readCount": read_counts.get(t, 0)} for t, c in counts.most_common()
    ]
    months: Dict[str, Dict[str, int]] = {}
    for n in items:
        bucket = months.setdefault(db.month_key(n["createdAt"]), {"total": 0, "read": 0, "unread": 0})
        bucket["total"] += 1
        bucket["read" if n.get("isRead") else "unread"] += 1
    monthly = [{"month": k, **v} for k, v in sorted(months.items())]
    return {"summary": summary, "types": by_type, "monthly": monthly}
