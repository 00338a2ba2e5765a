import logging
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request

from backend import auth as auth_module
from backend import db
from backend.config import Config
from backend.routes import ok
from backend.schemas import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LocationUpdateRequest,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UpdateProfileRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _session_payload(user: Dict[str, Any], refresh_token: str) -> Dict[str, Any]:
    return {
        "user": auth_module.public_profile(user),
        "token": auth_module.create_access_token(user["_id"]),
        "refreshToken": refresh_token,
    }


@router.post("/register", status_code=201)
def register(req: RegisterRequest):
    try:
        user = auth_module.create_user(
            req.name,
            req.email,
            req.password,
            phone=req.phone,
            location=req.location.model_dump(exclude_none=True) if req.location else None,
        )
    except ValueError as e:
        if str(e) == "user_exists":
            raise HTTPException(status_code=400, detail="User already exists with this email")
        raise HTTPException(status_code=400, detail=str(e))
    refresh_token = auth_module.record_login(user)
    return ok(_session_payload(user, refresh_token), "User registered successfully")


@router.post("/login")
def login(req: LoginRequest):
    user = auth_module.get_user_by_email(req.email)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.get("isActive", True):
        raise HTTPException(status_code=401, detail="Account is deactivated")
    if not auth_module.check_password(user, req.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    refresh_token = auth_module.record_login(user)
    logger.info("[login] %s signed in", user["email"])
    return ok(_session_payload(user, refresh_token), "Login successful")


@router.post("/refresh")
def refresh(req: RefreshRequest):
    if not req.refreshToken:
        raise HTTPException(status_code=401, detail="Refresh token required")
    user = db.collection(db.USERS).find_one({"refreshToken": req.refreshToken})
    if not user:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    return ok(
        {"token": auth_module.create_access_token(user["_id"]), "user": auth_module.public_profile(user)},
        "Token refreshed successfully",
    )


@router.post("/logout")
def logout(user=Depends(auth_module.get_current_user)):
    db.collection(db.USERS).update_one({"_id": user["_id"]}, {"$set": {"refreshToken": None}})
    return ok(message="Logged out successfully")


@router.get("/profile")
def get_profile(user=Depends(auth_module.get_current_user)):
    return ok({"user": auth_module.public_profile(user)})


@router.put("/profile")
def update_profile(req: UpdateProfileRequest, user=Depends(auth_module.get_current_user)):
    fields: Dict[str, Any] = {}
    if req.name:
        fields["name"] = req.name
    if req.phone:
        fields["phone"] = req.phone
    if req.location:
        fields["location"] = auth_module.merge_location(
            user.get("location"), req.location.model_dump(exclude_none=True)
        )
    profile = dict(user.get("profile") or {})
    if req.profile:
        profile.update(req.profile.model_dump(exclude_none=True))
    if req.farmSize:
        profile["farmSize"] = req.farmSize
    if req.profile or req.farmSize:
        fields["profile"] = profile
    if req.preferences:
        prefs = dict(user.get("preferences") or {})
        for key, value in req.preferences.items():
            if isinstance(value, dict) and isinstance(prefs.get(key), dict):
                prefs[key] = {**prefs[key], **value}
            else:
                prefs[key] = value
        fields["preferences"] = prefs
    if fields:
        fields["updatedAt"] = datetime.utcnow()
        db.collection(db.USERS).update_one({"_id": user["_id"]}, {"$set": fields})
        user.update(fields)
    return ok({"user": auth_module.public_profile(user)}, "Profile updated successfully")


@router.put("/profile/location")
def update_location(req: LocationUpdateRequest, user=Depends(auth_module.get_current_user)):
    location = auth_module.merge_location(user.get("location"), req.model_dump(exclude_none=True))
    db.collection(db.USERS).update_one(
        {"_id": user["_id"]},
        {"$set": {"location": location, "updatedAt": datetime.utcnow()}},
    )
    return ok({"location": location}, "Location updated successfully")


@router.post("/change-password")
def change_password(req: ChangePasswordRequest, user=Depends(auth_module.get_current_user)):
    if not auth_module.check_password(user, req.currentPassword):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    try:
        auth_module.set_password(user["_id"], req.newPassword)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ok(message="Password changed successfully")


@router.post("/forgot-password")
def forgot_password(req: ForgotPasswordRequest, request: Request):
    user = auth_module.get_user_by_email(req.email)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    token = auth_module.issue_reset_token(user)
    logger.info("[forgot_password] reset token issued for %s", user["email"])
    # no mail delivery, the token is only echoed back outside production
    if Config.is_production():
        return ok(message="Password reset token sent")
    reset_url = str(request.base_url).rstrip("/") + f"/api/auth/reset-password/{token}"
    return ok({"resetToken": token, "resetUrl": reset_url}, "Password reset token sent")


@router.post("/reset-password/{token}")
def reset_password(token: str, req: ResetPasswordRequest):
    try:
        user = auth_module.consume_reset_token(token, req.password)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not user:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")
    return ok(message="Password reset successful")


@router.delete("/account")
def delete_account(user=Depends(auth_module.get_current_user)):
    db.collection(db.USERS).delete_one({"_id": user["_id"]})
    logger.info("[delete_account] removed %s", user.get("email"))
    return ok(message="Account deleted successfully")
