import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from backend import auth as auth_module
from backend import db
from backend.routes import ok
from backend.schemas import ChatMessageRequest, SessionSettingsRequest, SessionTitleRequest
from backend.services import chatbot

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chatbot", tags=["chatbot"])


def _owned_session(session_id: str, user):
    session = chatbot.find_session(session_id, user["_id"])
    if not session:
        raise HTTPException(status_code=404, detail="Chat session not found")
    return session


@router.get("/test")
def test():
    return ok(
        {"status": "ok", "geminiEnabled": chatbot.gemini_enabled(), "timestamp": datetime.utcnow()},
        "Chatbot service is running",
    )


@router.post("/chat")
def chat(req: ChatMessageRequest, user=Depends(auth_module.get_current_user)):
    message = req.message.strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message is required")
    result = chatbot.chat(user, message, req.sessionId, req.language, req.tone)
    logger.info("[chat] session %s now has %s messages", result["sessionId"], result["messageCount"])
    return ok(result)


@router.post("/query")
def query(req: ChatMessageRequest, user=Depends(auth_module.get_current_user)):
    return chat(req, user)


@router.get("/sessions")
def list_sessions(page: int = 1, limit: int = 20, user=Depends(auth_module.get_current_user)):
    page, limit = max(page, 1), max(limit, 1)
    coll = db.collection(db.CHAT_SESSIONS)
    query = {"user": user["_id"]}
    total = coll.count_documents(query)
    cursor = (
        coll.find(query, {"title": 1, "createdAt": 1, "updatedAt": 1, "messageCount": 1, "lastActivity": 1})
        .sort("lastActivity", -1)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return ok({"sessions": list(cursor), "pagination": db.paginate(page, limit, total)})


@router.get("/sessions/{session_id}")
def get_session(session_id: str, user=Depends(auth_module.get_current_user)):
    return ok({"session": _owned_session(session_id, user)})


@router.delete("/sessions/{session_id}")
def delete_session(session_id: str, user=Depends(auth_module.get_current_user)):
    session = _owned_session(session_id, user)
    db.collection(db.CHAT_SESSIONS).delete_one({"_id": session["_id"]})
    return ok(message="Chat session deleted successfully")


@router.put("/sessions/{session_id}/title")
def update_title(session_id: str, req: SessionTitleRequest, user=Depends(auth_module.get_current_user)):
    title = (req.title or "").strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title is required")
    session = _owned_session(session_id, user)
    db.collection(db.CHAT_SESSIONS).update_one(
        {"_id": session["_id"]}, {"$set": {"title": title, "updatedAt": datetime.utcnow()}}
    )
    return ok({"title": title}, "Session title updated successfully")


@router.put("/sessions/{session_id}/settings")
def update_settings(session_id: str, req: SessionSettingsRequest, user=Depends(auth_module.get_current_user)):
    session = _owned_session(session_id, user)
    settings = dict(session.get("settings") or {})
    settings.update(req.model_dump(exclude_none=True))
    db.collection(db.CHAT_SESSIONS).update_one(
        {"_id": session["_id"]}, {"$set": {"settings": settings, "updatedAt": datetime.utcnow()}}
    )
    return ok({"settings": settings}, "Session settings updated successfully")


@router.get("/sessions/{session_id}/search")
def search_session(session_id: str, q: str = "", user=Depends(auth_module.get_current_user)):
    if not q.strip():
        raise HTTPException(status_code=400, detail="Search query is required")
    session = _owned_session(session_id, user)
    matches = chatbot.search_messages(session, q)
    return ok({"messages": matches, "total": len(matches)})


@router.get("/sessions/{session_id}/export")
def export_session(session_id: str, format: str = "json", user=Depends(auth_module.get_current_user)):
    session = _owned_session(session_id, user)
    fmt = "csv" if format == "csv" else "json"
    body = chatbot.export_session(session, fmt)
    media = "text/csv" if fmt == "csv" else "application/json"
    filename = f"chat-session-{session['_id']}.{fmt}"
    return Response(
        content=body,
        media_type=media,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/quick-responses")
def quick_responses(user=Depends(auth_module.get_current_user)):
    return ok({"quickResponses": chatbot.QUICK_RESPONSES})


@router.get("/analytics")
def chat_analytics(period: str = "30d", user=Depends(auth_module.get_current_user)):
    return ok(chatbot.analytics(user["_id"], db.period_start(period)))
