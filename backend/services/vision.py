"""
Vision Diagnostic Service
Classifies crop photos with a pretrained MobileNetV2 (ImageNet) and maps the
generic ImageNet labels onto a crop-health report.
"""
import logging
import math
import threading
from typing import Any, Dict, List

import torch
from PIL import Image
from torchvision.models import MobileNet_V2_Weights, mobilenet_v2

logger = logging.getLogger(__name__)

MODEL_ID = "mobilenet-v2"

_model = None
_weights = None
_model_lock = threading.Lock()

# ImageNet labels that hint at a crop or a condition
AGRICULTURAL_CLASSES = {
    "corn": ["maize", "corn", "ear", "spike", "cob"],
    "wheat": ["wheat", "grain", "cereal", "spike"],
    "rice": ["rice", "grain", "cereal", "paddy"],
    "soybean": ["soybean", "bean", "legume"],
    "potato": ["potato", "tuber", "vegetable"],
    "tomato": ["tomato", "fruit", "vegetable"],
    "cotton": ["cotton", "plant", "fiber"],
    "sugarcane": ["sugarcane", "sugar", "cane"],
    "diseased": ["diseased", "disease", "infected", "blight", "rot"],
    "healthy": ["healthy", "fresh", "green", "vibrant"],
    "dry": ["dry", "withered", "wilted", "dead"],
    "wet": ["wet", "waterlogged", "flooded", "moist"],
}

PLANT_KEYWORDS = ["plant", "leaf", "flower", "vegetable", "fruit", "crop", "tree", "grass", "bush", "vine", "seed", "root"]
HEALTH_KEYWORDS = ["healthy", "fresh", "green", "vibrant"]
DISEASE_KEYWORDS = ["diseased", "infected", "blight", "rot", "dead", "withered", "wilted", "rust", "mold"]

DISEASE_SYMPTOMS = [
    "Visual stress indicators present",
    "Unusual coloration detected",
    "Possible health decline",
]
DISEASE_TREATMENT = [
    "Consult agricultural expert for proper diagnosis",
    "Isolate affected plants if possible",
    "Check environmental conditions (water, light, nutrients)",
    "Consider appropriate treatment based on expert diagnosis",
    "Monitor surrounding plants for similar symptoms",
]
DISEASE_ISSUES = ["Disease or stress indicators detected", "Requires attention"]

RECOMMENDATIONS = {
    "excellent": [
        "Excellent condition - maintain current practices",
        "Document successful methods for future reference",
        "Monitor regularly to catch early issues",
        "Consider this as a baseline for comparison",
    ],
    "good": [
        "Good overall health detected",
        "Continue regular monitoring",
        "Ensure consistent care schedule",
        "Check soil moisture and nutrients periodically",
    ],
    "fair": [
        "Fair condition - increased monitoring recommended",
        "Check for environmental stressors",
        "Consider soil testing",
        "Verify irrigation and drainage systems",
        "Inspect for pest activity",
    ],
    "poor": [
        "Poor condition - immediate attention needed",
        "Consult agricultural expert urgently",
        "Isolate plant if disease suspected",
        "Review and adjust care practices immediately",
        "Document symptoms for expert consultation",
    ],
}


def load_model():
    """Load MobileNetV2 once per process. Returns (model, weights)."""
    global _model, _weights
    if _model is not None:
        return _model, _weights
    with _model_lock:
        if _model is None:
            try:
                logger.info("[load_model] loading MobileNetV2 ImageNet weights")
                weights = MobileNet_V2_Weights.IMAGENET1K_V1
                model = mobilenet_v2(weights=weights)
                model.eval()
                _weights = weights
                _model = model
            except Exception as e:
                logger.exception("[load_model] failed: %s", e)
                raise RuntimeError("AI model not available") from e
    return _model, _weights


def classify_image(path: str, top_k: int = 3) -> List[Dict[str, Any]]:
    model, weights = load_model()
    categories = weights.meta["categories"]
    preprocess = weights.transforms()
    with Image.open(path) as img:
        batch = preprocess(img.convert("RGB")).unsqueeze(0)
    with torch.no_grad():
        probs = torch.nn.functional.softmax(model(batch)[0], dim=0)
    values, indices = torch.topk(probs, k=min(top_k, probs.shape[0]))
    predictions = [
        {"className": categories[int(i)], "probability": float(p), "classId": int(i)}
        for p, i in zip(values.tolist(), indices.tolist())
    ]
    logger.debug("[classify_image] %s -> %s", path, predictions)
    return predictions


def health_band(score: int) -> str:
    if score > 85:
        return "excellent"
    if score > 70:
        return "good"
    if score > 50:
        return "fair"
    return "poor"


def detect_crop(class_name: str) -> str:
    for crop, keywords in AGRICULTURAL_CLASSES.items():
        if any(k in class_name for k in keywords):
            return crop.capitalize()
    if any(k in class_name for k in PLANT_KEYWORDS):
        return class_name.split(",")[0].strip()
    return "Unknown Crop"


def health_score(class_name: str, probability: float) -> int:
    if any(k in class_name for k in HEALTH_KEYWORDS):
        return int(math.floor(85 + probability * 15))
    if any(k in class_name for k in DISEASE_KEYWORDS):
        return int(math.floor(30 + probability * 30))
    return int(math.floor(60 + probability * 30))


def convert_to_agricultural_analysis(predictions: List[Dict[str, Any]]) -> Dict[str, Any]:
    if not predictions:
        raise ValueError("No predictions returned from model")

    top = predictions[0]
    class_name = str(top["className"]).lower()
    probability = float(top["probability"])

    crop = detect_crop(class_name)
    score = health_score(class_name, probability)
    disease_detected = any(k in class_name for k in DISEASE_KEYWORDS) or score < 60
    band = health_band(score)

    return {
        "cropAnalysis": {
            "detectedCrop": crop,
            "healthScore": score,
            "condition": band,
            "issues": list(DISEASE_ISSUES) if disease_detected else [],
            "recommendations": list(RECOMMENDATIONS[band]),
            "confidence": round(probability, 2),
            "rawPredictions": [
                {"class": p["className"], "probability": f"{float(p['probability']) * 100:.2f}%"}
                for p in predictions[:3]
            ],
        },
        "soilAnalysis": {
            "type": "Visual analysis not available",
            "moistureLevel": "Cannot determine from image",
            "nutrientDeficiencies": [],
            "phEstimate": None,
            "texture": "Not detectable from image",
            "color": "Requires physical soil sample",
            "organicMatter": "Not detectable from image",
            "note": "Soil analysis requires physical sample testing",
        },
        "pestAnalysis": {
            "detected": disease_detected,
            "pests": [],
            "disease": {
                "detected": disease_detected,
                "name": "Potential stress or disease detected" if disease_detected else "",
                "symptoms": list(DISEASE_SYMPTOMS) if disease_detected else [],
                "treatment": list(DISEASE_TREATMENT) if disease_detected else [],
            },
            "note": "Detailed pest identification requires expert examination",
        },
        "environmentalFactors": {
            "lighting": "Visible in image",
            "season": "Cannot determine from single image",
            "weatherConditions": "Cannot determine from image",
            "irrigationStatus": "Not detectable from image",
            "note": "Environmental factors require additional context",
        },
    }


def analyze_image(path: str) -> Dict[str, Any]:
    predictions = classify_image(path)
    analysis = convert_to_agricultural_analysis(predictions)
    logger.info(
        "[analyze_image] crop=%s health=%s",
        analysis["cropAnalysis"]["detectedCrop"],
        analysis["cropAnalysis"]["healthScore"],
    )
    analysis["modelUsed"] = MODEL_ID
    analysis["predictions"] = predictions
    return analysis
