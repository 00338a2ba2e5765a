import logging

from fastapi import APIRouter, Depends, HTTPException

from backend import auth as auth_module
from backend import db
from backend.routes import ok
from backend.schemas import NotificationCreate, NotificationPreferencesUpdate, PushSubscriptionRequest
from backend.services import notifications

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


def _owned(notification_id: str, user):
    oid = db.parse_object_id(notification_id, "Notification not found")
    found = notifications.find_owned(oid, user["_id"])
    if not found:
        raise HTTPException(status_code=404, detail="Notification not found")
    return found


@router.get("")
@router.get("/")
def list_notifications(
    page: int = 1,
    limit: int = 20,
    unreadOnly: bool = False,
    user=Depends(auth_module.get_current_user),
):
    page, limit = max(page, 1), max(limit, 1)
    items, total = notifications.list_notifications(user["_id"], page, limit, unreadOnly)
    return ok(
        {
            "notifications": items,
            "pagination": db.paginate(page, limit, total),
            "unreadCount": notifications.unread_count(user["_id"]),
        }
    )


@router.post("", status_code=201)
@router.post("/", status_code=201)
def create_notification(req: NotificationCreate, user=Depends(auth_module.get_current_user)):
    doc = notifications.create_notification(user["_id"], req.model_dump(exclude_none=True))
    return ok({"notification": doc}, "Notification created successfully")


@router.put("/mark-all-read")
def mark_all_read(user=Depends(auth_module.get_current_user)):
    count = notifications.mark_all_read(user["_id"])
    return ok({"modifiedCount": count}, "All notifications marked as read")


@router.put("/{notification_id}/read")
def mark_read(notification_id: str, user=Depends(auth_module.get_current_user)):
    notifications.mark_read(_owned(notification_id, user))
    return ok(message="Notification marked as read")


@router.delete("/{notification_id}")
def delete_notification(notification_id: str, user=Depends(auth_module.get_current_user)):
    notifications.delete(_owned(notification_id, user))
    return ok(message="Notification deleted successfully")


@router.post("/subscribe")
def subscribe(req: PushSubscriptionRequest, user=Depends(auth_module.get_current_user)):
    sub = req.subscription or {}
    if not sub.get("endpoint") or not sub.get("keys"):
        raise HTTPException(status_code=400, detail="Invalid subscription data")
    notifications.save_push_subscription(user["_id"], sub)
    logger.info("[subscribe] push subscription stored for %s", user["_id"])
    return ok(message="Push notification subscription successful")


@router.post("/unsubscribe")
def unsubscribe(user=Depends(auth_module.get_current_user)):
    notifications.save_push_subscription(user["_id"], None)
    return ok(message="Push notification unsubscription successful")


@router.get("/preferences")
def get_preferences(user=Depends(auth_module.get_current_user)):
    return ok({"preferences": notifications.get_preferences(user)})


@router.put("/preferences")
def update_preferences(req: NotificationPreferencesUpdate, user=Depends(auth_module.get_current_user)):
    prefs = notifications.update_preferences(user, req.model_dump(exclude_none=True))
    return ok({"preferences": prefs}, "Notification preferences updated successfully")


@router.get("/analytics")
def notification_analytics(period: str = "30d", user=Depends(auth_module.get_current_user)):
    return ok(notifications.analytics(user["_id"], db.period_start(period)))
