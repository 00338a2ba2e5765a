import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from backend import auth as auth_module
from backend import db
from backend.routes import ok
from backend.schemas import BatchAnalyzeRequest
from backend.services import image_analysis

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai", tags=["ai"])

MODELS = [
    {
        "id": "mobilenet-v2",
        "name": "MobileNet V2",
        "description": "Lightweight model for mobile and edge devices",
        "categories": ["crop_classification", "health_assessment"],
        "accuracy": 0.75,
        "speed": "fast",
        "size": "14MB",
    },
    {
        "id": "agricultural-net",
        "name": "AgriculturalNet",
        "description": "Specialized model for agricultural applications",
        "categories": ["crop_classification", "disease_detection", "pest_identification"],
        "accuracy": 0.85,
        "speed": "medium",
        "size": "45MB",
    },
]

CROP_SUGGESTIONS = [
    {
        "crop": "Rice",
        "suitability": 85,
        "reasons": ["Suitable for tropical climate", "High water availability", "Good soil conditions"],
        "growingSeason": "Kharif",
        "expectedYield": "4-5 tons/hectare",
        "marketPrice": "₹18-22/kg",
        "investment": "Medium",
        "risks": ["Water logging", "Pest attacks"],
        "recommendations": ["Use quality seeds", "Proper water management", "Regular pest monitoring"],
    },
    {
        "crop": "Wheat",
        "suitability": 75,
        "reasons": ["Suitable for temperate climate", "Good soil drainage", "Moderate water requirement"],
        "growingSeason": "Rabi",
        "expectedYield": "3-4 tons/hectare",
        "marketPrice": "₹20-25/kg",
        "investment": "Low",
        "risks": ["Frost damage", "Rust diseases"],
        "recommendations": ["Timely sowing", "Disease resistant varieties", "Proper fertilization"],
    },
    {
        "crop": "Cotton",
        "suitability": 70,
        "reasons": ["Warm climate suitable", "Well-drained soil", "Long growing season"],
        "growingSeason": "Kharif",
        "expectedYield": "2-3 tons/hectare",
        "marketPrice": "₹45-55/kg",
        "investment": "High",
        "risks": ["Pest attacks", "Weather fluctuations"],
        "recommendations": ["BT cotton varieties", "Integrated pest management", "Proper spacing"],
    },
]


@router.post("/analyze/{analysis_id}")
def analyze(analysis_id: str, user=Depends(auth_module.get_current_user)):
    oid = db.parse_object_id(analysis_id, "Image analysis not found")
    record = db.collection(db.IMAGE_ANALYSES).find_one({"_id": oid, "user": user["_id"]})
    if not record:
        raise HTTPException(status_code=404, detail="Image analysis not found")
    if record.get("status") == "completed":
        return ok({"analysis": image_analysis.public_view(record)}, "Analysis already completed")
    try:
        updated = image_analysis.analyze_record(record)
    except Exception as e:
        logger.exception("[analyze] analysis %s failed", analysis_id)
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "AI analysis failed", "error": str(e)},
        )
    return ok({"analysis": image_analysis.public_view(updated)}, "Image analyzed successfully")


@router.get("/models")
def list_models(user=Depends(auth_module.get_current_user)):
    return ok({"models": MODELS})


@router.get("/crop-suggestions")
def crop_suggestions(
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    soilType: Optional[str] = None,
    season: Optional[str] = None,
    user=Depends(auth_module.get_current_user),
):
    return ok(
        {
            "suggestions": CROP_SUGGESTIONS,
            "criteria": {"latitude": latitude, "longitude": longitude, "soilType": soilType, "season": season},
        }
    )


@router.post("/batch-analyze")
def batch_analyze(req: BatchAnalyzeRequest, user=Depends(auth_module.get_current_user)):
    if not isinstance(req.analysisIds, list):
        raise HTTPException(status_code=400, detail="Analysis IDs array is required")
    coll = db.collection(db.IMAGE_ANALYSES)
    results = []
    for raw_id in req.analysisIds:
        analysis_id = str(raw_id)
        if not db.is_object_id(analysis_id):
            results.append({"id": analysis_id, "success": False, "error": "Image analysis not found"})
            continue
        record = coll.find_one({"_id": db.parse_object_id(analysis_id), "user": user["_id"]})
        if not record:
            results.append({"id": analysis_id, "success": False, "error": "Image analysis not found"})
            continue
        try:
            updated = image_analysis.analyze_record(record)
            results.append({"id": analysis_id, "success": True, "analysis": updated.get("analysis")})
        except Exception as e:
            logger.warning("[batch_analyze] %s failed: %s", analysis_id, e)
            results.append({"id": analysis_id, "success": False, "error": str(e)})
    successful = sum(1 for r in results if r["success"])
    return ok({"successful": successful, "failed": len(results) - successful, "results": results})


@router.get("/analytics")
def ai_analytics(period: str = "30d", user=Depends(auth_module.get_current_user)):
    return ok(image_analysis.analytics(user["_id"], db.period_start(period)))
