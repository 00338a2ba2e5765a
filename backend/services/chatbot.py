"""
Farming chatbot.
Answers through Google Gemini with the stored session as history, falling
back to a small local knowledge base when Gemini is unavailable.
"""
import json
import logging
import random
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import google.generativeai as genai

from backend import db
from backend.config import Config

logger = logging.getLogger(__name__)

LANGUAGES = ["en", "hi", "es", "fr", "ar", "zh"]
TONES = ["professional", "friendly", "technical", "simple"]
CONTEXTS = ["general", "crop-specific", "soil-focused", "pest-focused", "weather-focused"]

DEFAULT_TITLE = "New Chat"
HISTORY_LIMIT = 10
MAX_CONTENT = 2000
LOCAL_MODEL = "local-knowledge"

DEFAULT_FALLBACK = (
    "I'm here to help with farming questions! You can ask me about soil health, pest control, "
    "water management, crop selection, or weather conditions. What would you like to know?"
)
APOLOGY = (
    "I apologize, but I'm having trouble generating a response right now. "
    "Please try asking your question again."
)

AGRICULTURAL_KNOWLEDGE = {
    "soil_health": {
        "keywords": ["soil", "fertilizer", "nutrients", "ph", "compost", "manure"],
        "responses": [
            "Healthy soil should have a pH between 6.0-7.0 for most crops. Test your soil annually and add organic matter regularly.",
            "For nutrient deficiencies, consider balanced NPK fertilizers. Nitrogen for leaf growth, Phosphorus for roots, Potassium for overall health.",
            "Compost improves soil structure, water retention, and microbial activity. Apply 2-4 inches of compost annually.",
            "Crop rotation helps maintain soil health and reduces pest buildup. Rotate between different plant families each season.",
        ],
    },
    "pest_control": {
        "keywords": ["pest", "insect", "bug", "worm", "disease", "fungus", "bacteria"],
        "responses": [
            "Integrated Pest Management (IPM) combines cultural, biological, and chemical controls. Start with prevention and monitoring.",
            "Beneficial insects like ladybugs, lacewings, and parasitic wasps help control pests naturally. Plant flowers to attract them.",
            "For fungal diseases, ensure proper air circulation, avoid overhead watering, and apply copper-based fungicides if needed.",
            "Neem oil is effective against many pests and diseases. Mix 2 tablespoons per gallon of water and spray weekly.",
        ],
    },
    "water_management": {
        "keywords": ["water", "irrigation", "drainage", "moisture", "drought", "flood"],
        "responses": [
            "Water deeply but infrequently to encourage deep root growth. Most crops need 1-2 inches of water per week.",
            "Drip irrigation saves water and reduces disease risk by keeping foliage dry. Install during dry periods.",
            "Mulching conserves moisture, suppresses weeds, and regulates soil temperature. Apply 2-4 inches around plants.",
            "Good drainage is crucial. Raised beds or contour planting can help prevent waterlogging in heavy soils.",
        ],
    },
    "crop_selection": {
        "keywords": ["crop", "plant", "variety", "seed", "sowing", "planting", "harvest"],
        "responses": [
            "Choose crop varieties suited to your climate, soil type, and market demand. Check local growing calendars.",
            "Heirloom varieties offer unique flavors and genetic diversity, while hybrids provide uniformity and disease resistance.",
            "Direct seeding works for crops like beans, carrots, and lettuce. Transplants give a head start for tomatoes and peppers.",
            "Succession planting every 2-3 weeks ensures continuous harvest of crops like lettuce, radishes, and beans.",
        ],
    },
    "weather_climate": {
        "keywords": ["weather", "climate", "season", "temperature", "rain", "frost"],
        "responses": [
            "Monitor weather forecasts regularly. Prepare for extreme conditions with protective covers or irrigation.",
            "Frost-sensitive crops need protection when temperatures drop below 32°F (0°C). Use row covers or cold frames.",
            "High temperatures above 90°F (32°C) can stress plants. Provide shade and increase watering frequency.",
            "Season extension techniques like greenhouses, cold frames, and row covers allow year-round production.",
        ],
    },
}

QUICK_RESPONSES = [
    {
        "category": "Soil Health",
        "questions": [
            "How can I improve my soil quality?",
            "What is the ideal pH for vegetables?",
            "How often should I test my soil?",
        ],
    },
    {
        "category": "Pest Control",
        "questions": [
            "How do I identify common garden pests?",
            "What are organic pest control methods?",
            "How can I prevent fungal diseases?",
        ],
    },
    {
        "category": "Water Management",
        "questions": [
            "How much should I water my plants?",
            "What is the best irrigation method?",
            "How can I conserve water in farming?",
        ],
    },
    {
        "category": "Crop Selection",
        "questions": [
            "What crops grow best in my area?",
            "When should I plant vegetables?",
            "How do I choose the right seeds?",
        ],
    },
    {
        "category": "Weather & Climate",
        "questions": [
            "How does weather affect crop growth?",
            "What crops are drought resistant?",
            "How can I protect crops from frost?",
        ],
    },
]

TONE_HINTS = {
    "professional": "Keep a professional tone.",
    "friendly": "Keep a warm, friendly tone.",
    "technical": "Use precise technical terms where useful.",
    "simple": "Use simple words a first-time farmer understands.",
}


def gemini_enabled() -> bool:
    return bool(Config.gemini_api_key)


def get_fallback_response(query: str) -> str:
    lower = (query or "").lower()
    for data in AGRICULTURAL_KNOWLEDGE.values():
        if any(k in lower for k in data["keywords"]):
            return random.choice(data["responses"])
    return DEFAULT_FALLBACK


def build_system_prompt(language: str = "en", tone: str = "professional") -> str:
    return (
        "You are an agricultural expert assistant. Provide helpful, accurate farming advice in "
        f"{language}. Be concise but informative (max 200 words). Focus on practical solutions "
        f"that farmers can implement. {TONE_HINTS.get(tone, '')}"
    ).strip()


def build_history(messages: List[Dict[str, Any]], limit: int = HISTORY_LIMIT) -> List[Dict[str, Any]]:
    history = []
    for msg in messages[-limit:] if limit else []:
        role = "model" if msg.get("role") == "assistant" else "user"
        history.append({"role": role, "parts": [msg.get("content", "")]})
    return history


def _ask_gemini(message: str, history: List[Dict[str, Any]], language: str, tone: str) -> str:
    genai.configure(api_key=Config.gemini_api_key)
    model = genai.GenerativeModel(Config.gemini_model)
    chat = model.start_chat(
        history=[
            {"role": "user", "parts": [build_system_prompt(language, tone)]},
            {"role": "model", "parts": ["Understood. I will provide practical farming advice."]},
            *history,
        ]
    )
    response = chat.send_message(
        message,
        generation_config=genai.types.GenerationConfig(max_output_tokens=300, temperature=0.7),
    )
    return (response.text or "").strip()


def generate_reply(
    message: str,
    history: List[Dict[str, Any]],
    language: str = "en",
    tone: str = "professional",
) -> Tuple[str, str, str]:
    """Return (text, source, model) for a user message."""
    text = ""
    source = "gemini"
    if gemini_enabled():
        try:
            text = _ask_gemini(message, history, language, tone)
            if not text:
                logger.warning("[generate_reply] Gemini returned an empty response, using fallback")
        except Exception as e:
            logger.error("[generate_reply] Gemini error: %s", e)
            text = ""
    else:
        logger.info("[generate_reply] no Gemini API key, using local knowledge")
    if not text:
        text = get_fallback_response(message)
        source = "local"
    if not text.strip():
        text = APOLOGY
        source = "local"
    model = Config.gemini_model if source == "gemini" else LOCAL_MODEL
    return text.strip(), source, model


def auto_title(messages: List[Dict[str, Any]]) -> Optional[str]:
    first = next((m for m in messages if m.get("role") == "user"), None)
    if not first:
        return None
    words = " ".join(first.get("content", "").split(" ")[:5])
    return words[:20] + "..." if len(words) > 20 else words


def new_session(user_id, language: str = "en", tone: str = "professional") -> Dict[str, Any]:
    now = datetime.utcnow()
    doc = {
        "user": user_id,
        "title": DEFAULT_TITLE,
        "messages": [],
        "settings": {"language": language, "tone": tone, "context": "general"},
        "status": "active",
        "messageCount": 0,
        "lastActivity": now,
        "tags": [],
        "createdAt": now,
        "updatedAt": now,
    }
    result = db.collection(db.CHAT_SESSIONS).insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def find_session(session_id: Optional[str], user_id) -> Optional[Dict[str, Any]]:
    if not db.is_object_id(session_id):
        return None
    return db.collection(db.CHAT_SESSIONS).find_one({"_id": db.parse_object_id(session_id), "user": user_id})


def make_message(role: str, content: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "role": role,
        "content": content[:MAX_CONTENT],
        "timestamp": datetime.utcnow(),
        "metadata": metadata or {"source": "system"},
    }


def append_messages(session: Dict[str, Any], new_messages: List[Dict[str, Any]]) -> Dict[str, Any]:
    messages = list(session.get("messages") or []) + new_messages
    now = datetime.utcnow()
    fields = {
        "messages": messages,
        "messageCount": len(messages),
        "lastActivity": now,
        "updatedAt": now,
    }
    if session.get("title", DEFAULT_TITLE) == DEFAULT_TITLE:
        title = auto_title(messages)
        if title:
            fields["title"] = title
    db.collection(db.CHAT_SESSIONS).update_one({"_id": session["_id"]}, {"$set": fields})
    session.update(fields)
    return session


def chat(user: Dict[str, Any], message: str, session_id: Optional[str], language: str, tone: Optional[str]) -> Dict[str, Any]:
    session = find_session(session_id, user["_id"])
    if session is None:
        if session_id:
            logger.info("[chat] session %s not usable, starting a new one", session_id)
        session = new_session(user["_id"], language=language, tone=tone or "professional")
    settings = session.get("settings") or {}
    history = build_history(session.get("messages") or [])
    text, source, model = generate_reply(
        message,
        history,
        language=language or settings.get("language", "en"),
        tone=tone or settings.get("tone", "professional"),
    )
    append_messages(
        session,
        [
            make_message("user", message),
            make_message("assistant", text, {"source": source, "model": model}),
        ],
    )
    return {
        "response": text,
        "sessionId": session["_id"],
        "messageCount": session["messageCount"],
        "responseSource": source,
    }


def search_messages(session: Dict[str, Any], term: str) -> List[Dict[str, Any]]:
    needle = (term or "").lower()
    return [m for m in session.get("messages") or [] if needle in m.get("content", "").lower()]


def export_session(session: Dict[str, Any], fmt: str = "json") -> str:
    if fmt == "csv":
        rows = ["Timestamp,Role,Content"]
        for msg in session.get("messages") or []:
            ts = msg.get("timestamp")
            stamp = ts.isoformat() if isinstance(ts, datetime) else str(ts or "")
            content = msg.get("content", "").replace('"', '""')
            rows.append(f'{stamp},{msg.get("role")},"{content}"')
        return "\n".join(rows)
    data = {
        "id": session["_id"],
        "title": session.get("title"),
        "createdAt": session.get("createdAt"),
        "updatedAt": session.get("updatedAt"),
        "messages": [
            {"role": m.get("role"), "content": m.get("content"), "timestamp": m.get("timestamp")}
            for m in session.get("messages") or []
        ],
        "settings": session.get("settings"),
        "messageCount": session.get("messageCount", 0),
    }
    return json.dumps(db.serialize(data), indent=2)


def analytics(user_id, start: datetime) -> Dict[str, Any]:
    sessions = list(db.collection(db.CHAT_SESSIONS).find({"user": user_id, "createdAt": {"$gte": start}}))
    if sessions:
        total_messages = sum(s.get("messageCount", 0) for s in sessions)
        summary = {
            "totalSessions": len(sessions),
            "totalMessages": total_messages,
            "averageMessagesPerSession": round(total_messages / len(sessions), 2),
            "languages": sorted({(s.get("settings") or {}).get("language", "en") for s in sessions}),
        }
    else:
        summary = {"totalSessions": 0, "totalMessages": 0, "averageMessagesPerSession": 0, "languages": []}
    months: Dict[str, Dict[str, int]] = {}
    for s in sessions:
        bucket = months.setdefault(db.month_key(s["createdAt"]), {"sessions": 0, "messages": 0})
        bucket["sessions"] += 1
        bucket["messages"] += s.get("messageCount", 0)
    monthly = [{"month": k, **v} for k, v in sorted(months.items())]
    return {"summary": summary, "monthly": monthly}
