"""Image analysis records: creation, background classification and queries."""
import logging
import os
import random
import time
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId

from backend import db
from backend.config import Config
from backend.services import geo, vision

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif", ".webp"}
ALLOWED_TYPES = ("jpeg", "jpg", "png", "gif", "webp")


def is_allowed_image(filename: str, content_type: Optional[str]) -> bool:
    ext = os.path.splitext(filename or "")[1].lower()
    mimetype = (content_type or "").lower()
    return ext in ALLOWED_EXTENSIONS and any(t in mimetype for t in ALLOWED_TYPES)


def images_dir() -> str:
    path = os.path.join(Config.upload_dir, "images")
    os.makedirs(path, exist_ok=True)
    return path


def make_filename(original: str) -> str:
    ext = os.path.splitext(original or "")[1].lower()
    return f"image-{int(time.time() * 1000)}-{random.randint(0, 10**9)}{ext}"


def save_upload(data: bytes, original_name: str, content_type: str) -> Dict[str, Any]:
    filename = make_filename(original_name)
    path = os.path.join(images_dir(), filename)
    with open(path, "wb") as f:
        f.write(data)
    return {
        "filename": filename,
        "url": f"/uploads/images/{filename}",
        "path": path,
        "size": len(data),
        "mimetype": content_type,
        "uploadedAt": datetime.utcnow(),
    }


def resolve_location(
    user: Dict[str, Any],
    latitude: Optional[str],
    longitude: Optional[str],
    address: Optional[str],
    use_profile_location: bool = True,
) -> Dict[str, Any]:
    """Pick the location to attach to an upload: manual first, then profile."""
    if latitude not in (None, "") and longitude not in (None, ""):
        try:
            return {"latitude": float(latitude), "longitude": float(longitude), "address": address or None}
        except (TypeError, ValueError):
            logger.warning("[resolve_location] ignoring malformed coordinates %r,%r", latitude, longitude)
    if use_profile_location:
        location = user.get("location") or {}
        coords = location.get("coordinates") or [0, 0]
        if len(coords) == 2 and coords[0] != 0:
            fallback = f"{location.get('city') or ''}, {location.get('country') or ''}".strip()
            return {
                "latitude": coords[1],
                "longitude": coords[0],
                "address": location.get("address") or fallback,
            }
    return {"latitude": None, "longitude": None, "address": None}


def create_analysis(
    user_id: ObjectId,
    original_image: Dict[str, Any],
    location: Dict[str, Any],
    user_agent: Optional[str] = None,
    crop_type: Optional[str] = None,
) -> Dict[str, Any]:
    now = datetime.utcnow()
    doc = {
        "user": user_id,
        "originalImage": original_image,
        "cropType": crop_type,
        "analysis": None,
        "metadata": {
            "location": location,
            "deviceInfo": {"userAgent": user_agent, "timestamp": now},
        },
        "isPublic": False,
        "sharedWith": [],
        "feedback": None,
        "status": "pending",
        "processingTime": None,
        "errorMessage": None,
        "createdAt": now,
        "updatedAt": now,
    }
    result = db.collection(db.IMAGE_ANALYSES).insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def _set(analysis_id: ObjectId, fields: Dict[str, Any]) -> None:
    fields["updatedAt"] = datetime.utcnow()
    db.collection(db.IMAGE_ANALYSES).update_one({"_id": analysis_id}, {"$set": fields})


def analyze_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Run the classifier for a record and persist the outcome. Raises on failure."""
    analysis_id = record["_id"]
    _set(analysis_id, {"status": "processing"})
    start = time.time()
    try:
        analysis = vision.analyze_image(record["originalImage"]["path"])
    except Exception as e:
        _set(analysis_id, {"status": "failed", "errorMessage": str(e)})
        raise
    processing_time = round(time.time() - start, 3)
    _set(
        analysis_id,
        {
            "analysis": analysis,
            "processingTime": processing_time,
            "status": "completed",
            "errorMessage": None,
        },
    )
    return db.collection(db.IMAGE_ANALYSES).find_one({"_id": analysis_id})


def run_analysis(analysis_id: ObjectId) -> None:
    """Background job for an uploaded image. Never raises."""
    record = db.collection(db.IMAGE_ANALYSES).find_one({"_id": analysis_id})
    if not record:
        logger.warning("[run_analysis] record %s disappeared before processing", analysis_id)
        return
    logger.info("[run_analysis] starting analysis for %s", analysis_id)
    try:
        analyze_record(record)
        logger.info("[run_analysis] completed %s", analysis_id)
    except Exception as e:
        logger.exception("[run_analysis] failed for %s: %s", analysis_id, e)


def readable_filter(analysis_id: ObjectId, user_id: ObjectId) -> Dict[str, Any]:
    return {
        "_id": analysis_id,
        "$or": [{"user": user_id}, {"sharedWith": user_id}, {"isPublic": True}],
    }


def remove_files(record: Dict[str, Any]) -> None:
    for key in ("originalImage", "processedImage"):
        path = (record.get(key) or {}).get("path")
        if path and os.path.exists(path):
            try:
                os.remove(path)
            except OSError as e:
                logger.warning("[remove_files] could not remove %s: %s", path, e)


def add_feedback(analysis_id: ObjectId, rating: Optional[int], comments: Optional[str], corrected: Any) -> None:
    _set(
        analysis_id,
        {
            "feedback": {
                "rating": rating,
                "comments": comments,
                "correctedAnalysis": corrected,
                "submittedAt": datetime.utcnow(),
            }
        },
    )


def share(record: Dict[str, Any], user_ids: List[ObjectId], make_public: bool) -> None:
    fields: Dict[str, Any] = {}
    if make_public:
        fields["isPublic"] = True
    if user_ids:
        merged = list(record.get("sharedWith") or [])
        for uid in user_ids:
            if uid not in merged:
                merged.append(uid)
        fields["sharedWith"] = merged
    if fields:
        _set(record["_id"], fields)


def public_view(record: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a record safe to return: the server-side file path is dropped."""
    view = dict(record)
    if isinstance(view.get("originalImage"), dict):
        view["originalImage"] = {k: v for k, v in view["originalImage"].items() if k != "path"}
    return view


def summary(record: Dict[str, Any]) -> Dict[str, Any]:
    crop = ((record.get("analysis") or {}).get("cropAnalysis")) or {}
    return {
        "id": record["_id"],
        "crop": crop.get("detectedCrop"),
        "healthScore": crop.get("healthScore"),
        "condition": crop.get("condition"),
        "issues": crop.get("issues"),
        "recommendations": crop.get("recommendations"),
        "createdAt": record.get("createdAt"),
        "imageUrl": (record.get("originalImage") or {}).get("url"),
    }


def _record_lat_lng(record: Dict[str, Any]):
    loc = (record.get("metadata") or {}).get("location") or {}
    if loc.get("latitude") is None or loc.get("longitude") is None:
        return None
    return float(loc["latitude"]), float(loc["longitude"])


def nearby(latitude: float, longitude: float, radius_m: float = 10000, limit: int = 20) -> List[Dict[str, Any]]:
    candidates = db.collection(db.IMAGE_ANALYSES).find(
        {"metadata.location.latitude": {"$ne": None}}
    ).sort("createdAt", -1)
    hits = geo.within_radius(list(candidates), (latitude, longitude), radius_m, _record_lat_lng)
    return [public_view(r) for r in hits[:limit]]


def _health_scores(records: List[Dict[str, Any]]) -> List[float]:
    scores = []
    for r in records:
        score = (((r.get("analysis") or {}).get("cropAnalysis")) or {}).get("healthScore")
        if score is not None:
            scores.append(score)
    return scores


def stats(user_id: ObjectId) -> Dict[str, Any]:
    records = list(db.collection(db.IMAGE_ANALYSES).find({"user": user_id}))
    scores = _health_scores(records)
    crops = []
    for r in records:
        crop = (((r.get("analysis") or {}).get("cropAnalysis")) or {}).get("detectedCrop")
        if crop and crop not in crops:
            crops.append(crop)
    overall = {
        "totalAnalyses": len(records),
        "completedAnalyses": sum(1 for r in records if r.get("status") == "completed"),
        "averageHealthScore": round(sum(scores) / len(scores), 2) if scores else 0,
        "mostCommonCrop": crops,
    }
    per_month = Counter(db.month_key(r["createdAt"]) for r in records if r.get("createdAt"))
    monthly = [{"month": m, "count": c} for m, c in sorted(per_month.items(), reverse=True)][:12]
    return {"overall": overall, "monthly": monthly}


def analytics(user_id: ObjectId, start: datetime) -> Dict[str, Any]:
    records = list(
        db.collection(db.IMAGE_ANALYSES).find(
            {"user": user_id, "status": "completed", "createdAt": {"$gte": start}}
        )
    )
    if not records:
        summary_block = {"totalAnalyses": 0, "averageHealthScore": 0, "commonCrops": [], "commonIssues": []}
    else:
        scores = _health_scores(records)
        crops: List[str] = []
        issues: List[str] = []
        for r in records:
            crop_analysis = ((r.get("analysis") or {}).get("cropAnalysis")) or {}
            crop = crop_analysis.get("detectedCrop")
            if crop and crop not in crops:
                crops.append(crop)
            for issue in crop_analysis.get("issues") or []:
                if issue not in issues:
                    issues.append(issue)
        summary_block = {
            "totalAnalyses": len(records),
            "averageHealthScore": round(sum(scores) / len(scores), 2) if scores else 0,
            "commonCrops": crops,
            "commonIssues": issues,
        }
    months: Dict[str, List[float]] = {}
    for r in records:
        key = db.month_key(r["createdAt"])
        months.setdefault(key, [])
        months[key].extend(_health_scores([r]))
    monthly = []
    for key in sorted(months):
        scores = months[key]
        monthly.append(
            {
                "month": key,
                "analyses": sum(1 for r in records if db.month_key(r["createdAt"]) == key),
                "avgHealthScore": round(sum(scores) / len(scores), 2) if scores else None,
            }
        )
    return {"summary": summary_block, "monthly": monthly}
