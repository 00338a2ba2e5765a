import binascii
import hashlib
import hmac
import logging
import os
import re
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Header, HTTPException
from pymongo.errors import DuplicateKeyError

from backend import db
from backend.config import Config

logger = logging.getLogger(__name__)

JWT_ALG = "HS256"
RESET_TOKEN_MINUTES = 10
SUBSCRIPTION_LEVELS = {"free": 0, "premium": 1, "enterprise": 2}

EMAIL_RE = re.compile(r"^\w+([.\-+]?\w+)*@\w+([.\-]?\w+)*(\.\w{2,})+$")
PASSWORD_RE = re.compile(r"^(?=.*[A-Z])(?=.*[^A-Za-z0-9]).{6,}$")
PASSWORD_RULE = (
    "Password must be at least 6 characters long and include at least one "
    "uppercase letter and one symbol"
)


class TokenExpired(Exception):
    pass


class TokenInvalid(Exception):
    pass


def _hash_password(password: str, salt: Optional[bytes] = None) -> Dict[str, str]:
    if salt is None:
        salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, 100_000)
    return {"hash": binascii.hexlify(dk).decode("ascii"), "salt": binascii.hexlify(salt).decode("ascii")}


def _verify_password(password: str, salt_hex: str, hash_hex: str) -> bool:
    salt = binascii.unhexlify(salt_hex)
    expected = binascii.unhexlify(hash_hex)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, 100_000)
    return hmac.compare_digest(dk, expected)


def check_password_strength(password: str) -> None:
    if not PASSWORD_RE.match(password or ""):
        raise ValueError(PASSWORD_RULE)


def create_access_token(user_id: Any, expires_days: Optional[int] = None) -> str:
    days = Config.jwt_expires_days if expires_days is None else expires_days
    payload = {
        "id": str(user_id),
        "exp": datetime.utcnow() + timedelta(days=days),
    }
    return jwt.encode(payload, Config.jwt_secret, algorithm=JWT_ALG)


def decode_access_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, Config.jwt_secret, algorithms=[JWT_ALG])
    except jwt.ExpiredSignatureError:
        raise TokenExpired()
    except jwt.InvalidTokenError:
        raise TokenInvalid()


def generate_refresh_token() -> str:
    return secrets.token_hex(40)


def _hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _default_user(name: str, email: str) -> Dict[str, Any]:
    now = datetime.utcnow()
    return {
        "name": name,
        "email": email,
        "phone": None,
        "location": {"type": "Point", "coordinates": [0, 0]},
        "role": "farmer",
        "profile": {"avatar": None, "farmSize": None, "crops": [], "experience": None, "language": "en"},
        "preferences": {
            "notifications": {"weather": True, "community": True, "alerts": True, "marketing": False},
            "units": {"temperature": "celsius", "area": "hectares"},
        },
        "subscription": {"type": "free", "startDate": now, "endDate": None, "isActive": True},
        "isActive": True,
        "lastLogin": None,
        "loginCount": 0,
        "refreshToken": None,
        "passwordResetToken": None,
        "passwordResetExpires": None,
        "createdAt": now,
        "updatedAt": now,
    }


def create_user(
    name: str,
    email: str,
    password: str,
    phone: Optional[str] = None,
    location: Optional[Dict[str, Any]] = None,
    role: str = "farmer",
) -> Dict[str, Any]:
    email = email.strip().lower()
    if not EMAIL_RE.match(email):
        raise ValueError("Please enter a valid email")
    check_password_strength(password)
    users = db.collection(db.USERS)
    if users.find_one({"email": email}):
        raise ValueError("user_exists")
    parts = _hash_password(password)
    doc = _default_user(name.strip(), email)
    doc["password"] = parts
    doc["phone"] = phone
    doc["role"] = role
    if location:
        doc["location"] = merge_location(doc["location"], location)
    try:
        result = users.insert_one(doc)
    except DuplicateKeyError:
        raise ValueError("user_exists")
    doc["_id"] = result.inserted_id
    logger.info("[create_user] registered %s", email)
    return doc


def merge_location(current: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(current or {"type": "Point", "coordinates": [0, 0]})
    for key in ("address", "city", "state", "country", "zipCode"):
        if update.get(key) is not None:
            merged[key] = update[key]
    coords = update.get("coordinates")
    if isinstance(coords, (list, tuple)) and len(coords) == 2:
        merged["coordinates"] = [float(coords[0]), float(coords[1])]
    lat, lng = update.get("latitude"), update.get("longitude")
    if lat is not None and lng is not None:
        merged["coordinates"] = [float(lng), float(lat)]
    merged["type"] = "Point"
    return merged


def get_user_by_id(user_id: Any) -> Optional[Dict[str, Any]]:
    if not db.is_object_id(str(user_id)):
        return None
    return db.collection(db.USERS).find_one({"_id": db.parse_object_id(user_id)})


def get_user_by_email(email: str) -> Optional[Dict[str, Any]]:
    return db.collection(db.USERS).find_one({"email": (email or "").strip().lower()})


def authenticate_user(email: str, password: str) -> Optional[Dict[str, Any]]:
    user = get_user_by_email(email)
    if not user:
        return None
    parts = user.get("password") or {}
    if not _verify_password(password, parts.get("salt", ""), parts.get("hash", "")):
        return None
    return user


def check_password(user: Dict[str, Any], password: str) -> bool:
    parts = user.get("password") or {}
    return _verify_password(password, parts.get("salt", ""), parts.get("hash", ""))


def set_password(user_id, password: str) -> None:
    check_password_strength(password)
    db.collection(db.USERS).update_one(
        {"_id": user_id},
        {"$set": {"password": _hash_password(password), "updatedAt": datetime.utcnow()}},
    )


def record_login(user: Dict[str, Any]) -> str:
    """Bump login stats and rotate the stored refresh token."""
    refresh_token = generate_refresh_token()
    now = datetime.utcnow()
    db.collection(db.USERS).update_one(
        {"_id": user["_id"]},
        {
            "$set": {"lastLogin": now, "refreshToken": refresh_token, "updatedAt": now},
            "$inc": {"loginCount": 1},
        },
    )
    user["lastLogin"] = now
    user["refreshToken"] = refresh_token
    user["loginCount"] = user.get("loginCount", 0) + 1
    return refresh_token


def issue_reset_token(user: Dict[str, Any]) -> str:
    token = secrets.token_hex(20)
    db.collection(db.USERS).update_one(
        {"_id": user["_id"]},
        {
            "$set": {
                "passwordResetToken": _hash_reset_token(token),
                "passwordResetExpires": datetime.utcnow() + timedelta(minutes=RESET_TOKEN_MINUTES),
            }
        },
    )
    return token


def consume_reset_token(token: str, new_password: str) -> Optional[Dict[str, Any]]:
    users = db.collection(db.USERS)
    user = users.find_one(
        {
            "passwordResetToken": _hash_reset_token(token),
            "passwordResetExpires": {"$gt": datetime.utcnow()},
        }
    )
    if not user:
        return None
    set_password(user["_id"], new_password)
    users.update_one(
        {"_id": user["_id"]},
        {"$set": {"passwordResetToken": None, "passwordResetExpires": None}},
    )
    return user


def is_subscription_active(user: Dict[str, Any]) -> bool:
    sub = user.get("subscription") or {}
    if sub.get("type", "free") == "free":
        return True
    end = sub.get("endDate")
    return bool(sub.get("isActive")) and end is not None and end > datetime.utcnow()


def public_profile(user: Dict[str, Any]) -> Dict[str, Any]:
    return db.serialize(
        {
            "_id": user["_id"],
            "name": user.get("name"),
            "email": user.get("email"),
            "phone": user.get("phone"),
            "location": user.get("location"),
            "role": user.get("role"),
            "profile": user.get("profile"),
            "preferences": user.get("preferences"),
            "subscription": user.get("subscription"),
            "isActive": user.get("isActive"),
            "lastLogin": user.get("lastLogin"),
            "createdAt": user.get("createdAt"),
        }
    )


def profile_coordinates(user: Optional[Dict[str, Any]]):
    """Return (lat, lng) from a user's stored location, or None when unset."""
    if not user:
        return None
    coords = ((user.get("location") or {}).get("coordinates")) or [0, 0]
    if len(coords) != 2 or (coords[0] == 0 and coords[1] == 0):
        return None
    return coords[1], coords[0]


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    if authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
    else:
        token = authorization.strip()
    return token or None


def get_current_user(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    token = _bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Access denied. No token provided.")
    try:
        data = decode_access_token(token)
    except TokenExpired:
        raise HTTPException(status_code=401, detail="Token expired.")
    except TokenInvalid:
        raise HTTPException(status_code=401, detail="Invalid token.")
    user = get_user_by_id(data.get("id"))
    if not user:
        raise HTTPException(status_code=401, detail="Invalid token. User not found.")
    if not user.get("isActive", True):
        raise HTTPException(status_code=401, detail="Account is deactivated. Please contact support.")
    return user


def get_optional_user(authorization: Optional[str] = Header(None)) -> Optional[Dict[str, Any]]:
    token = _bearer_token(authorization)
    if not token:
        return None
    try:
        data = decode_access_token(token)
    except (TokenExpired, TokenInvalid):
        return None
    user = get_user_by_id(data.get("id"))
    if user and user.get("isActive", True):
        return user
    return None


def require_role(*roles: str):
    def dependency(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user.get("role") not in roles:
            raise HTTPException(status_code=403, detail="Access denied. Insufficient permissions.")
        return user

    return dependency


def require_subscription(level: str = "premium"):
    required = SUBSCRIPTION_LEVELS.get(level, 0)

    def dependency(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        current = SUBSCRIPTION_LEVELS.get((user.get("subscription") or {}).get("type", "free"), 0)
        if current < required or not is_subscription_active(user):
            raise HTTPException(
                status_code=403,
                detail=f"This feature requires {level} subscription or higher.",
            )
        return user

    return dependency
