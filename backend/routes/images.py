import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Request, UploadFile

from backend import auth as auth_module
from backend import db
from backend.config import Config
from backend.routes import ok
from backend.schemas import FeedbackRequest, ShareRequest
from backend.services import image_analysis

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/images", tags=["images"])


def _truthy(value: Optional[str]) -> bool:
    return str(value).strip().lower() in ("true", "1", "yes", "on")


UPLOAD_CHUNK = 1 << 20


async def _read_limited(image: UploadFile, limit: int) -> bytes:
    chunks, total = [], 0
    while True:
        chunk = await image.read(UPLOAD_CHUNK)
        if not chunk:
            return b"".join(chunks)
        total += len(chunk)
        if total > limit:
            raise HTTPException(status_code=400, detail=f"File too large. Maximum size is {Config.max_upload_mb}MB")
        chunks.append(chunk)


@router.post("/upload")
async def upload_image(
    request: Request,
    background_tasks: BackgroundTasks,
    image: Optional[UploadFile] = File(None),
    cropType: Optional[str] = Form(None),
    latitude: Optional[str] = Form(None),
    longitude: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    useProfileLocation: Optional[str] = Form("true"),
    user=Depends(auth_module.get_current_user),
):
    if image is None or not image.filename:
        raise HTTPException(status_code=400, detail="No image file provided")
    if not image_analysis.is_allowed_image(image.filename, image.content_type):
        raise HTTPException(status_code=400, detail="Only image files are allowed (jpeg, jpg, png, gif, webp)")
    data = await _read_limited(image, Config.max_upload_bytes())
    if not data:
        raise HTTPException(status_code=400, detail="No image file provided")

    final_location = image_analysis.resolve_location(
        user, latitude, longitude, location, _truthy(useProfileLocation)
    )
    stored = image_analysis.save_upload(data, image.filename, image.content_type)
    try:
        record = image_analysis.create_analysis(
            user["_id"],
            stored,
            final_location,
            user_agent=request.headers.get("user-agent"),
            crop_type=cropType,
        )
    except Exception:
        image_analysis.remove_files({"originalImage": stored})
        raise

    background_tasks.add_task(image_analysis.run_analysis, record["_id"])
    logger.info("[upload_image] queued analysis %s for user %s", record["_id"], user["_id"])
    return ok(
        {
            "analysis": image_analysis.public_view(record),
            "analysisId": record["_id"],
            "imageUrl": stored["url"],
            "status": "processing",
            "locationUsed": "provided" if final_location.get("latitude") is not None else "not_available",
        },
        "Image uploaded successfully, analysis in progress",
    )


@router.get("/analyses")
def list_analyses(
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    user=Depends(auth_module.get_current_user),
):
    page, limit = max(page, 1), max(limit, 1)
    query = {"user": user["_id"]}
    if status:
        query["status"] = status
    coll = db.collection(db.IMAGE_ANALYSES)
    total = coll.count_documents(query)
    items = list(coll.find(query).sort("createdAt", -1).skip((page - 1) * limit).limit(limit))
    analyses = [image_analysis.public_view(r) for r in items]
    return ok({"analyses": analyses, "pagination": db.paginate(page, limit, total)})


@router.get("/nearby")
def nearby_analyses(
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius: float = 10000,
    limit: int = 20,
    user=Depends(auth_module.get_current_user),
):
    if latitude is None or longitude is None:
        raise HTTPException(status_code=400, detail="Latitude and longitude are required")
    analyses = image_analysis.nearby(latitude, longitude, radius, limit)
    return ok({"analyses": analyses})


@router.get("/stats")
def analysis_stats(user=Depends(auth_module.get_current_user)):
    return ok(image_analysis.stats(user["_id"]))


@router.get("/analyses/{analysis_id}")
def get_analysis(analysis_id: str, user=Depends(auth_module.get_current_user)):
    oid = db.parse_object_id(analysis_id, "Analysis not found")
    record = db.collection(db.IMAGE_ANALYSES).find_one(image_analysis.readable_filter(oid, user["_id"]))
    if not record:
        raise HTTPException(status_code=404, detail="Analysis not found")
    return ok({"analysis": image_analysis.public_view(record), "summary": image_analysis.summary(record)})


@router.delete("/analyses/{analysis_id}")
def delete_analysis(analysis_id: str, user=Depends(auth_module.get_current_user)):
    oid = db.parse_object_id(analysis_id, "Analysis not found")
    coll = db.collection(db.IMAGE_ANALYSES)
    record = coll.find_one({"_id": oid, "user": user["_id"]})
    if not record:
        raise HTTPException(status_code=404, detail="Analysis not found")
    image_analysis.remove_files(record)
    coll.delete_one({"_id": oid})
    return ok(message="Analysis deleted successfully")


@router.post("/analyses/{analysis_id}/feedback")
def add_feedback(analysis_id: str, req: FeedbackRequest, user=Depends(auth_module.get_current_user)):
    oid = db.parse_object_id(analysis_id, "Analysis not found")
    record = db.collection(db.IMAGE_ANALYSES).find_one(
        {"_id": oid, "$or": [{"user": user["_id"]}, {"sharedWith": user["_id"]}]}
    )
    if not record:
        raise HTTPException(status_code=404, detail="Analysis not found")
    image_analysis.add_feedback(oid, req.rating, req.comments, req.correctedAnalysis)
    return ok(message="Feedback submitted successfully")


@router.post("/analyses/{analysis_id}/share")
def share_analysis(analysis_id: str, req: ShareRequest, user=Depends(auth_module.get_current_user)):
    oid = db.parse_object_id(analysis_id, "Analysis not found")
    record = db.collection(db.IMAGE_ANALYSES).find_one({"_id": oid, "user": user["_id"]})
    if not record:
        raise HTTPException(status_code=404, detail="Analysis not found")
    user_ids = [db.parse_object_id(uid, "User not found") for uid in req.userIds]
    image_analysis.share(record, user_ids, req.makePublic)
    return ok(message="Analysis shared successfully")
