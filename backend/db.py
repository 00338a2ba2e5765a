"""MongoDB access helpers.

One MongoClient is created lazily per process. Tests swap it for a
mongomock client through ``set_client``.
"""
import logging
import math
import re
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pymongo import ASCENDING, DESCENDING, MongoClient

from backend.config import Config

logger = logging.getLogger(__name__)

USERS = "users"
IMAGE_ANALYSES = "image_analyses"
CHAT_SESSIONS = "chat_sessions"
WEATHER_DATA = "weather_data"
WEATHER_ALERTS = "weather_alerts"
COMMUNITY_POSTS = "community_posts"
NOTIFICATIONS = "notifications"

_client: Optional[MongoClient] = None
_client_lock = threading.Lock()


def get_client():
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                logger.info("[get_client] connecting to %s", Config.mongodb_uri.split("@")[-1])
                _client = MongoClient(Config.mongodb_uri, serverSelectionTimeoutMS=7000)
    return _client


def set_client(client) -> None:
    global _client
    _client = client


def get_db():
    return get_client()[Config.mongodb_db]


def collection(name: str):
    return get_db()[name]


def is_connected() -> bool:
    try:
        get_client().admin.command("ping")
        return True
    except Exception as e:
        logger.warning("[is_connected] ping failed: %s", e)
        return False


def ensure_indexes() -> None:
    db = get_db()
    db[USERS].create_index("email", unique=True)
    db[USERS].create_index("refreshToken")
    db[IMAGE_ANALYSES].create_index([("user", ASCENDING), ("createdAt", DESCENDING)])
    db[IMAGE_ANALYSES].create_index("status")
    db[CHAT_SESSIONS].create_index([("user", ASCENDING), ("lastActivity", DESCENDING)])
    db[WEATHER_DATA].create_index(
        [("latitude", ASCENDING), ("longitude", ASCENDING), ("timestamp", DESCENDING)]
    )
    db[WEATHER_ALERTS].create_index("expiresAt", expireAfterSeconds=0)
    db[COMMUNITY_POSTS].create_index([("category", ASCENDING), ("createdAt", DESCENDING)])
    db[COMMUNITY_POSTS].create_index("expiresAt", expireAfterSeconds=0)
    db[NOTIFICATIONS].create_index([("user", ASCENDING), ("createdAt", DESCENDING)])
    db[NOTIFICATIONS].create_index("expiresAt", expireAfterSeconds=0)
    logger.info("[ensure_indexes] indexes ready on %s", Config.mongodb_db)


def parse_object_id(value: Any, not_found_message: str = "Resource not found") -> ObjectId:
    """Turn a path parameter into an ObjectId. Malformed ids read as missing."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise HTTPException(status_code=404, detail=not_found_message)


def is_object_id(value: Any) -> bool:
    return isinstance(value, str) and ObjectId.is_valid(value) and len(value) == 24


def serialize(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    return value


def paginate(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }


_PERIOD_RE = re.compile(r"^(\d+)([dwmy])$")
_PERIOD_DAYS = {"d": 1, "w": 7, "m": 30, "y": 365}


def period_start(period: Optional[str], now: Optional[datetime] = None) -> datetime:
    now = now or datetime.utcnow()
    match = _PERIOD_RE.match((period or "").strip().lower())
    if not match:
        return now - timedelta(days=30)
    return now - timedelta(days=int(match.group(1)) * _PERIOD_DAYS[match.group(2)])


def month_key(dt: datetime) -> str:
    return f"{dt.year:04d}-{dt.month:02d}"


def naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; aware inputs are converted."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)
