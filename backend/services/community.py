import logging
import re
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from fastapi import HTTPException

from backend import db
from backend.services import geo

logger = logging.getLogger(__name__)

CATEGORIES = [
    {"id": "general", "name": "General", "description": "General farming discussions"},
    {"id": "pest_alert", "name": "Pest Alert", "description": "Pest and disease warnings"},
    {"id": "disease_warning", "name": "Disease Warning", "description": "Plant disease alerts"},
    {"id": "weather_update", "name": "Weather Update", "description": "Local weather information"},
    {"id": "market_info", "name": "Market Info", "description": "Market prices and trends"},
    {"id": "crop_advice", "name": "Crop Advice", "description": "Planting and growing tips"},
    {"id": "success_story", "name": "Success Story", "description": "Share your achievements"},
    {"id": "question", "name": "Question", "description": "Ask the community"},
]

SORTABLE_FIELDS = {"createdAt", "updatedAt", "engagement.views", "priority", "category"}


def as_tag_list(tags: Any) -> List[str]:
    if tags is None:
        return []
    if isinstance(tags, (list, tuple)):
        return [str(t) for t in tags]
    return [str(tags)]


def location_from_user(user: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    loc = user.get("location") or {}
    coords = loc.get("coordinates") or [0, 0]
    if len(coords) != 2 or (coords[0] == 0 and coords[1] == 0):
        return None
    return {
        "latitude": coords[1],
        "longitude": coords[0],
        "address": loc.get("address"),
        "city": loc.get("city"),
        "state": loc.get("state"),
        "country": loc.get("country"),
    }


def create_post(author: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    now = datetime.utcnow()
    doc = {
        "author": author["_id"],
        "content": {
            "title": data["title"],
            "body": data["body"],
            "images": data.get("images") or [],
            "location": data.get("location") or location_from_user(author),
        },
        "category": data.get("category") or "general",
        "tags": as_tag_list(data.get("tags")),
        "priority": data.get("priority") or "medium",
        "targetAudience": data.get("targetAudience") or "local",
        "engagement": {"views": 0, "likes": [], "comments": [], "shares": 0},
        "status": "published",
        "isVerified": False,
        "expiresAt": db.naive_utc(data.get("expiresAt")),
        "createdAt": now,
        "updatedAt": now,
    }
    if doc["expiresAt"] is None:
        del doc["expiresAt"]
    doc["_id"] = db.collection(db.COMMUNITY_POSTS).insert_one(doc).inserted_id
    logger.info("[create_post] %s posted in %s", author["_id"], doc["category"])
    return doc


def get_post(post_id: ObjectId) -> Dict[str, Any]:
    post = db.collection(db.COMMUNITY_POSTS).find_one({"_id": post_id})
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


def get_own_post(post_id: ObjectId, user_id: ObjectId) -> Dict[str, Any]:
    post = db.collection(db.COMMUNITY_POSTS).find_one({"_id": post_id, "author": user_id})
    if not post:
        raise HTTPException(status_code=404, detail="Post not found or not authorized")
    return post


def _update_post(query: Dict[str, Any], update: Dict[str, Any]):
    update.setdefault("$set", {})["updatedAt"] = datetime.utcnow()
    return db.collection(db.COMMUNITY_POSTS).update_one(query, update)


def increment_views(post: Dict[str, Any]) -> None:
    db.collection(db.COMMUNITY_POSTS).update_one({"_id": post["_id"]}, {"$inc": {"engagement.views": 1}})
    post["engagement"]["views"] = post["engagement"].get("views", 0) + 1


def toggle_like(post: Dict[str, Any], user_id: ObjectId) -> Tuple[int, bool]:
    """Like or unlike in one atomic write; returns the stored like count."""
    pulled = _update_post(
        {"_id": post["_id"], "engagement.likes.user": user_id},
        {"$pull": {"engagement.likes": {"user": user_id}}},
    )
    liked = pulled.modified_count == 0
    if liked:
        _update_post(
            {"_id": post["_id"], "engagement.likes.user": {"$ne": user_id}},
            {"$push": {"engagement.likes": {"user": user_id, "createdAt": datetime.utcnow()}}},
        )
    stored = db.collection(db.COMMUNITY_POSTS).find_one({"_id": post["_id"]}, {"engagement.likes": 1})
    likes = ((stored or {}).get("engagement") or {}).get("likes") or []
    post["engagement"]["likes"] = likes
    return len(likes), liked


def add_comment(post: Dict[str, Any], user_id: ObjectId, content: str) -> Dict[str, Any]:
    comment = {
        "_id": ObjectId(),
        "user": user_id,
        "content": content,
        "likes": [],
        "replies": [],
        "createdAt": datetime.utcnow(),
    }
    _update_post({"_id": post["_id"]}, {"$push": {"engagement.comments": comment}})
    post["engagement"].setdefault("comments", []).append(comment)
    return comment


def _find_comment(post: Dict[str, Any], comment_id: ObjectId) -> Dict[str, Any]:
    for comment in post["engagement"].get("comments") or []:
        if comment.get("_id") == comment_id:
            return comment
    raise HTTPException(status_code=404, detail="Comment not found")


def add_reply(post: Dict[str, Any], comment_id: ObjectId, user_id: ObjectId, content: str) -> Dict[str, Any]:
    reply = {"_id": ObjectId(), "user": user_id, "content": content, "createdAt": datetime.utcnow()}
    result = _update_post(
        {"_id": post["_id"], "engagement.comments._id": comment_id},
        {"$push": {"engagement.comments.$.replies": reply}},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Comment not found")
    return reply


def delete_comment(post: Dict[str, Any], comment_id: ObjectId, user_id: ObjectId) -> None:
    comment = _find_comment(post, comment_id)
    if comment.get("user") != user_id and post.get("author") != user_id:
        raise HTTPException(status_code=403, detail="Not authorized to delete this comment")
    _update_post({"_id": post["_id"]}, {"$pull": {"engagement.comments": {"_id": comment_id}}})


def engagement_stats(post: Dict[str, Any]) -> Dict[str, int]:
    eng = post.get("engagement") or {}
    return {
        "views": eng.get("views", 0),
        "likes": len(eng.get("likes") or []),
        "comments": len(eng.get("comments") or []),
        "shares": eng.get("shares", 0),
    }


def _author_summary(user_id, cache: Dict[Any, Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if user_id is None:
        return None
    if user_id not in cache:
        user = db.collection(db.USERS).find_one({"_id": user_id}, {"name": 1, "profile": 1})
        if user:
            profile = user.get("profile") or {}
            cache[user_id] = {
                "_id": user["_id"],
                "name": user.get("name"),
                "profile": {"avatar": profile.get("avatar"), "experience": profile.get("experience")},
            }
        else:
            cache[user_id] = {"_id": user_id}
    return cache[user_id]


def author_summary(user_id) -> Optional[Dict[str, Any]]:
    return _author_summary(user_id, {})


def populate(posts: List[Dict[str, Any]], with_comments: bool = False) -> List[Dict[str, Any]]:
    """Replace author ids with name/avatar summaries, optionally in comments too."""
    cache: Dict[Any, Dict[str, Any]] = {}
    for post in posts:
        post["author"] = _author_summary(post.get("author"), cache)
        post["engagementStats"] = engagement_stats(post)
        if with_comments:
            for comment in (post.get("engagement") or {}).get("comments") or []:
                comment["user"] = _author_summary(comment.get("user"), cache)
                for reply in comment.get("replies") or []:
                    reply["user"] = _author_summary(reply.get("user"), cache)
    return posts


def _post_lat_lng(post: Dict[str, Any]):
    loc = (post.get("content") or {}).get("location") or {}
    if loc.get("latitude") is None or loc.get("longitude") is None:
        return None
    return float(loc["latitude"]), float(loc["longitude"])


def list_posts(
    page: int = 1,
    limit: int = 20,
    category: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius: float = 50000,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
) -> Tuple[List[Dict[str, Any]], int]:
    query: Dict[str, Any] = {"status": "published"}
    if category:
        query["category"] = category
    field = sort_by if sort_by in SORTABLE_FIELDS else "createdAt"
    direction = -1 if sort_order == "desc" else 1
    posts_coll = db.collection(db.COMMUNITY_POSTS)
    skip = (page - 1) * limit
    if latitude is not None and longitude is not None:
        candidates = list(posts_coll.find(query).sort(field, direction))
        near = geo.within_radius(candidates, (latitude, longitude), radius, _post_lat_lng)
        return near[skip:skip + limit], len(near)
    total = posts_coll.count_documents(query)
    posts = list(posts_coll.find(query).sort(field, direction).skip(skip).limit(limit))
    return posts, total


def update_post(post: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    if data.get("title"):
        fields["content.title"] = data["title"]
    if data.get("body"):
        fields["content.body"] = data["body"]
    for key in ("category", "priority", "targetAudience"):
        if data.get(key):
            fields[key] = data[key]
    if data.get("tags"):
        fields["tags"] = as_tag_list(data["tags"])
    fields["updatedAt"] = datetime.utcnow()
    coll = db.collection(db.COMMUNITY_POSTS)
    coll.update_one({"_id": post["_id"]}, {"$set": fields})
    return coll.find_one({"_id": post["_id"]})


def trending(limit: int = 10) -> List[Dict[str, Any]]:
    posts = list(db.collection(db.COMMUNITY_POSTS).find({"status": "published"}))
    posts.sort(key=lambda p: p.get("createdAt") or datetime.min, reverse=True)
    posts.sort(
        key=lambda p: (
            len((p.get("engagement") or {}).get("likes") or []),
            len((p.get("engagement") or {}).get("comments") or []),
        ),
        reverse=True,
    )
    return posts[:limit]


def search_filter(q: str, category: Optional[str] = None) -> Dict[str, Any]:
    pattern = re.escape(q.strip())
    query: Dict[str, Any] = {
        "status": "published",
        "$or": [
            {"content.title": {"$regex": pattern, "$options": "i"}},
            {"content.body": {"$regex": pattern, "$options": "i"}},
            {"tags": {"$regex": pattern, "$options": "i"}},
        ],
    }
    if category:
        query["category"] = category
    return query


def analytics(start: datetime) -> Dict[str, Any]:
    posts = list(
        db.collection(db.COMMUNITY_POSTS).find({"status": "published", "createdAt": {"$gte": start}})
    )
    if not posts:
        return {
            "summary": {
                "totalPosts": 0,
                "totalViews": 0,
                "totalLikes": 0,
                "totalComments": 0,
                "totalShares": 0,
                "categories": [],
                "popularTags": [],
            },
            "categories": [],
        }
    stats = [engagement_stats(p) for p in posts]
    tag_counts = Counter(tag for p in posts for tag in p.get("tags") or [])
    per_category: Dict[str, List[Dict[str, int]]] = {}
    for post, s in zip(posts, stats):
        per_category.setdefault(post.get("category", "general"), []).append(s)
    categories = [
        {
            "_id": name,
            "count": len(items),
            "avgLikes": sum(i["likes"] for i in items) / len(items),
            "avgComments": sum(i["comments"] for i in items) / len(items),
        }
        for name, items in per_category.items()
    ]
    categories.sort(key=lambda c: c["count"], reverse=True)
    return {
        "summary": {
            "totalPosts": len(posts),
            "totalViews": sum(s["views"] for s in stats),
            "totalLikes": sum(s["likes"] for s in stats),
            "totalComments": sum(s["comments"] for s in stats),
            "totalShares": sum(s["shares"] for s in stats),
            "categories": sorted(per_category),
            "popularTags": [tag for tag, _ in tag_counts.most_common(10)],
        },
        "categories": categories,
    }
