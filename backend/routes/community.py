import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from backend import auth as auth_module
from backend import db
from backend.routes import ok
from backend.schemas import CommentRequest, CreatePostRequest, ReplyRequest, UpdatePostRequest
from backend.services import community

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/community", tags=["community"])


@router.get("/posts")
def list_posts(
    page: int = 1,
    limit: int = 20,
    category: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius: float = 50000,
    sortBy: str = "createdAt",
    sortOrder: str = "desc",
    user=Depends(auth_module.get_optional_user),
):
    page, limit = max(page, 1), max(limit, 1)
    posts, total = community.list_posts(
        page, limit, category, latitude, longitude, radius, sortBy, sortOrder
    )
    return ok({"posts": community.populate(posts), "pagination": db.paginate(page, limit, total)})


@router.post("/posts", status_code=201)
def create_post(req: CreatePostRequest, user=Depends(auth_module.get_current_user)):
    data = req.model_dump(exclude_none=True)
    post = community.create_post(user, data)
    community.populate([post])
    return ok({"post": post}, "Post created successfully")


@router.get("/posts/{post_id}")
def get_post(post_id: str, user=Depends(auth_module.get_optional_user)):
    post = community.get_post(db.parse_object_id(post_id, "Post not found"))
    community.increment_views(post)
    community.populate([post], with_comments=True)
    return ok({"post": post})


@router.put("/posts/{post_id}")
def update_post(post_id: str, req: UpdatePostRequest, user=Depends(auth_module.get_current_user)):
    oid = db.parse_object_id(post_id, "Post not found or not authorized")
    post = community.get_own_post(oid, user["_id"])
    updated = community.update_post(post, req.model_dump(exclude_none=True))
    community.populate([updated])
    return ok({"post": updated}, "Post updated successfully")


@router.delete("/posts/{post_id}")
def delete_post(post_id: str, user=Depends(auth_module.get_current_user)):
    oid = db.parse_object_id(post_id, "Post not found or not authorized")
    post = community.get_own_post(oid, user["_id"])
    db.collection(db.COMMUNITY_POSTS).delete_one({"_id": post["_id"]})
    logger.info("[delete_post] %s removed by author", post_id)
    return ok(message="Post deleted successfully")


@router.post("/posts/{post_id}/like")
def like_post(post_id: str, user=Depends(auth_module.get_current_user)):
    post = community.get_post(db.parse_object_id(post_id, "Post not found"))
    likes, liked = community.toggle_like(post, user["_id"])
    return ok({"likes": likes, "isLiked": liked}, "Post liked" if liked else "Post unliked")


@router.post("/posts/{post_id}/comments", status_code=201)
def add_comment(post_id: str, req: CommentRequest, user=Depends(auth_module.get_current_user)):
    content = (req.content or "").strip()
    if not content:
        raise HTTPException(status_code=400, detail="Comment content is required")
    post = community.get_post(db.parse_object_id(post_id, "Post not found"))
    comment = community.add_comment(post, user["_id"], content)
    comment["user"] = community.author_summary(user["_id"])
    return ok({"comment": comment}, "Comment added successfully")


@router.post("/posts/{post_id}/comments/{comment_id}/reply", status_code=201)
def add_reply(post_id: str, comment_id: str, req: ReplyRequest, user=Depends(auth_module.get_current_user)):
    content = (req.content or "").strip()
    if not content:
        raise HTTPException(status_code=400, detail="Reply content is required")
    post = community.get_post(db.parse_object_id(post_id, "Post not found"))
    reply = community.add_reply(post, db.parse_object_id(comment_id, "Comment not found"), user["_id"], content)
    return ok({"reply": reply}, "Reply added successfully")


@router.delete("/posts/{post_id}/comments/{comment_id}")
def delete_comment(post_id: str, comment_id: str, user=Depends(auth_module.get_current_user)):
    post = community.get_post(db.parse_object_id(post_id, "Post not found"))
    community.delete_comment(post, db.parse_object_id(comment_id, "Comment not found"), user["_id"])
    return ok(message="Comment deleted successfully")


@router.get("/categories")
def categories():
    return ok({"categories": community.CATEGORIES})


@router.get("/trending")
def trending(limit: int = 10):
    return ok({"posts": community.populate(community.trending(max(limit, 1)))})


@router.get("/search")
def search(
    q: Optional[str] = None,
    category: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
):
    if not q or not q.strip():
        raise HTTPException(status_code=400, detail="Search query is required")
    page, limit = max(page, 1), max(limit, 1)
    query = community.search_filter(q, category)
    coll = db.collection(db.COMMUNITY_POSTS)
    total = coll.count_documents(query)
    posts = list(coll.find(query).sort("createdAt", -1).skip((page - 1) * limit).limit(limit))
    return ok({"posts": community.populate(posts), "pagination": db.paginate(page, limit, total)})


@router.get("/my-posts")
def my_posts(
    page: int = 1,
    limit: int = 20,
    status: str = "published",
    user=Depends(auth_module.get_current_user),
):
    page, limit = max(page, 1), max(limit, 1)
    query = {"author": user["_id"]}
    if status != "all":
        query["status"] = status
    coll = db.collection(db.COMMUNITY_POSTS)
    total = coll.count_documents(query)
    posts = list(coll.find(query).sort("createdAt", -1).skip((page - 1) * limit).limit(limit))
    return ok({"posts": community.populate(posts), "pagination": db.paginate(page, limit, total)})


@router.get("/analytics")
def community_analytics(period: str = "30d", user=Depends(auth_module.get_current_user)):
    return ok(community.analytics(db.period_start(period)))
