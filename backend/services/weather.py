import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx

from backend import db
from backend.config import Config
from backend.services import geo

logger = logging.getLogger(__name__)

ALERT_RADIUS_M = 50_000
SEVERITY_RANK = {"critical": 3, "high": 2, "medium": 1, "low": 0}


class WeatherServiceUnavailable(Exception):
    """Upstream weather API cannot be used (missing or rejected key)."""


def _get(endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
    if not Config.openweather_api_key:
        raise WeatherServiceUnavailable("OPENWEATHER_API_KEY not configured")
    query = dict(params)
    query.update({"appid": Config.openweather_api_key, "units": "metric"})
    try:
        resp = httpx.get(f"{Config.openweather_base}/{endpoint}", params=query, timeout=20)
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        if e.response.status_code == 401:
            logger.error("[weather] OpenWeatherMap rejected the API key")
            raise WeatherServiceUnavailable("invalid API key") from e
        raise
    return resp.json()


def fetch_current(lat: float, lon: float) -> Dict[str, Any]:
    return _get("weather", {"lat": lat, "lon": lon})


def fetch_forecast(lat: float, lon: float, days: int = 5) -> Dict[str, Any]:
    return _get("forecast", {"lat": lat, "lon": lon, "cnt": days * 8})


def current_to_record(
    payload: Dict[str, Any],
    lat: float,
    lon: float,
    location: Optional[str] = None,
    user_id=None,
) -> Dict[str, Any]:
    main = payload.get("main") or {}
    wind = payload.get("wind") or {}
    sys_info = payload.get("sys") or {}
    cond = (payload.get("weather") or [{}])[0]
    now = datetime.utcnow()
    sunrise = sys_info.get("sunrise")
    sunset = sys_info.get("sunset")
    return {
        "user": user_id,
        "latitude": lat,
        "longitude": lon,
        "location": location or f"{payload.get('name', '')}, {sys_info.get('country', '')}",
        "temperature": main.get("temp"),
        "feelsLike": main.get("feels_like"),
        "humidity": main.get("humidity"),
        "pressure": main.get("pressure"),
        "windSpeed": wind.get("speed"),
        "windDirection": wind.get("deg"),
        "visibility": payload.get("visibility"),
        "uvIndex": payload.get("uvi"),
        "conditions": cond.get("main"),
        "description": cond.get("description"),
        "icon": cond.get("icon"),
        "precipitation": {
            "rain": (payload.get("rain") or {}).get("1h", 0),
            "snow": (payload.get("snow") or {}).get("1h", 0),
        },
        "clouds": (payload.get("clouds") or {}).get("all"),
        "sunrise": datetime.utcfromtimestamp(sunrise) if sunrise else None,
        "sunset": datetime.utcfromtimestamp(sunset) if sunset else None,
        "source": "api",
        "timestamp": now,
        "createdAt": now,
        "updatedAt": now,
    }


def get_cached_current(lat: float, lon: float, minutes: Optional[int] = None) -> Optional[Dict[str, Any]]:
    window = Config.weather_cache_minutes if minutes is None else minutes
    cutoff = datetime.utcnow() - timedelta(minutes=window)
    return db.collection(db.WEATHER_DATA).find_one(
        {"latitude": lat, "longitude": lon, "timestamp": {"$gte": cutoff}},
        sort=[("timestamp", -1)],
    )


def current_weather(lat: float, lon: float, location: Optional[str] = None, user_id=None):
    """Return (record, source) honouring the cache window."""
    cached = get_cached_current(lat, lon)
    if cached:
        return cached, "cache"
    payload = fetch_current(lat, lon)
    record = current_to_record(payload, lat, lon, location, user_id)
    record["_id"] = db.collection(db.WEATHER_DATA).insert_one(record).inserted_id
    try:
        create_automatic_alerts(record)
    except Exception as e:
        logger.warning("[current_weather] automatic alert creation failed: %s", e)
    return record, "api"


def forecast_items(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    items = []
    for item in payload.get("list") or []:
        main = item.get("main") or {}
        wind = item.get("wind") or {}
        cond = (item.get("weather") or [{}])[0]
        items.append(
            {
                "timestamp": datetime.utcfromtimestamp(item["dt"]),
                "temperature": main.get("temp"),
                "feelsLike": main.get("feels_like"),
                "humidity": main.get("humidity"),
                "pressure": main.get("pressure"),
                "windSpeed": wind.get("speed"),
                "windDirection": wind.get("deg"),
                "conditions": cond.get("main"),
                "description": cond.get("description"),
                "icon": cond.get("icon"),
                "precipitation": (item.get("rain") or {}).get("3h", 0) or 0,
                "probability": item.get("pop", 0) or 0,
            }
        )
    return items


def summarize_forecast(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    days: Dict[Any, List[Dict[str, Any]]] = {}
    for item in items:
        days.setdefault(item["timestamp"].date(), []).append(item)
    out = []
    for day, entries in days.items():
        temps = [e["temperature"] for e in entries if e.get("temperature") is not None]
        first = entries[0]
        out.append(
            {
                "date": first["timestamp"],
                "minTemp": min(temps) if temps else None,
                "maxTemp": max(temps) if temps else None,
                "avgTemp": sum(temps) / len(temps) if temps else None,
                "humidity": first.get("humidity"),
                "conditions": first.get("conditions"),
                "description": first.get("description"),
                "icon": first.get("icon"),
                "precipitation": sum(e.get("precipitation", 0) for e in entries),
                "hourly": entries,
            }
        )
    return out


def calculate_trend(values: List[float]) -> str:
    if len(values) < 2:
        return "stable"
    half = len(values) // 2
    first, second = values[:half], values[half:]
    first_avg = sum(first) / len(first)
    second_avg = sum(second) / len(second)
    if first_avg == 0:
        return "stable"
    change = (second_avg - first_avg) / first_avg * 100
    if change > 5:
        return "increasing"
    if change < -5:
        return "decreasing"
    return "stable"


def _series_stats(values: List[float]) -> Dict[str, Any]:
    if not values:
        return {"min": None, "max": None, "avg": None, "trend": "stable"}
    return {
        "min": min(values),
        "max": max(values),
        "avg": sum(values) / len(values),
        "trend": calculate_trend(values),
    }


def history(lat: float, lon: float, days: int = 30) -> List[Dict[str, Any]]:
    start = datetime.utcnow() - timedelta(days=days)
    cursor = db.collection(db.WEATHER_DATA).find(
        {"latitude": lat, "longitude": lon, "timestamp": {"$gte": start}},
        {"timestamp": 1, "temperature": 1, "humidity": 1, "pressure": 1, "windSpeed": 1, "conditions": 1},
    ).sort("timestamp", 1)
    return list(cursor)


def history_statistics(records: List[Dict[str, Any]]) -> Dict[str, Any]:
    temps = [r["temperature"] for r in records if r.get("temperature") is not None]
    hums = [r["humidity"] for r in records if r.get("humidity") is not None]
    return {
        "temperature": _series_stats(temps),
        "humidity": _series_stats(hums),
        "totalRecords": len(records),
    }


def generate_agricultural_alerts() -> List[Dict[str, Any]]:
    now = datetime.utcnow()
    return [
        {
            "type": "temperature",
            "severity": "medium",
            "title": "Temperature Monitoring",
            "description": "Monitor crop temperature stress. Consider shade nets for sensitive crops during peak heat hours.",
            "recommendations": [
                "Increase watering frequency during hot periods",
                "Use mulch to retain soil moisture",
                "Provide shade for heat-sensitive crops",
            ],
            "affectedCrops": ["tomatoes", "peppers", "lettuce", "spinach"],
            "expiresAt": now + timedelta(hours=24),
        },
        {
            "type": "wind",
            "severity": "low",
            "title": "Wind Advisory",
            "description": "Moderate winds expected. Secure tall plants and lightweight materials.",
            "recommendations": [
                "Stake tall plants properly",
                "Secure greenhouse covers",
                "Harvest ripe fruits to prevent wind damage",
            ],
            "affectedCrops": ["corn", "sunflowers", "tomatoes"],
            "expiresAt": now + timedelta(hours=12),
        },
        {
            "type": "humidity",
            "severity": "medium",
            "title": "Humidity Levels",
            "description": "High humidity may increase fungal disease risk. Ensure proper air circulation.",
            "recommendations": [
                "Increase spacing between plants",
                "Water at soil level, not on leaves",
                "Apply preventive fungicide if needed",
            ],
            "affectedCrops": ["cucumbers", "squash", "beans"],
            "expiresAt": now + timedelta(hours=48),
        },
    ]


def generate_agricultural_insights(weather: Dict[str, Any]) -> List[Dict[str, Any]]:
    insights = []
    temp = weather.get("temperature")
    humidity = weather.get("humidity")
    wind = weather.get("windSpeed")

    if temp is not None and temp > 35:
        insights.append({
            "type": "temperature",
            "level": "high",
            "title": "High Temperature Alert",
            "description": f"Current temperature of {temp}°C is high for many crops.",
            "recommendations": [
                "Increase watering frequency during hot periods",
                "Provide shade for heat-sensitive crops",
                "Mulch around plants to retain soil moisture",
                "Harvest ripe fruits to prevent heat damage",
            ],
            "affectedCrops": ["tomatoes", "peppers", "lettuce", "spinach", "cabbage"],
        })
    elif temp is not None and temp < 5:
        insights.append({
            "type": "temperature",
            "level": "low",
            "title": "Low Temperature Alert",
            "description": f"Current temperature of {temp}°C may affect crop growth.",
            "recommendations": [
                "Protect sensitive crops with row covers",
                "Water plants before freeze to protect roots",
                "Harvest frost-sensitive crops before cold snap",
                "Use cold frames or greenhouses for protection",
            ],
            "affectedCrops": ["tomatoes", "peppers", "beans", "squash"],
        })

    if humidity is not None and humidity > 80:
        insights.append({
            "type": "humidity",
            "level": "high",
            "title": "High Humidity Conditions",
            "description": f"Humidity at {humidity}% increases disease risk.",
            "recommendations": [
                "Improve air circulation around plants",
                "Avoid overhead watering",
                "Apply preventive fungicide treatments",
                "Remove infected plant material promptly",
            ],
            "affectedCrops": ["cucumbers", "tomatoes", "beans", "leafy greens"],
        })
    elif humidity is not None and humidity < 30:
        insights.append({
            "type": "humidity",
            "level": "low",
            "title": "Low Humidity Conditions",
            "description": f"Low humidity ({humidity}%) may stress plants.",
            "recommendations": [
                "Increase watering frequency",
                "Use mulch to retain soil moisture",
                "Group plants to create humidity microclimate",
                "Avoid watering during hot, windy periods",
            ],
            "affectedCrops": ["all crops", "especially leafy greens"],
        })

    if wind is not None and wind > 10:
        insights.append({
            "type": "wind",
            "level": "medium",
            "title": "Windy Conditions",
            "description": f"Wind speed of {wind} m/s may cause damage.",
            "recommendations": [
                "Stake tall plants securely",
                "Secure greenhouse covers and materials",
                "Harvest ripe fruits to prevent wind damage",
                "Provide windbreaks for sensitive crops",
            ],
            "affectedCrops": ["tall crops", "corn", "sunflowers", "tomatoes"],
        })

    return insights


def automatic_alerts(weather: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Build (not persist) alerts for extreme readings."""
    now = datetime.utcnow()
    point = {"type": "Point", "coordinates": [weather.get("longitude"), weather.get("latitude")]}
    alerts = []
    temp = weather.get("temperature")
    wind = weather.get("windSpeed")
    if temp is not None and temp > 40:
        alerts.append({
            "title": "Extreme Heat Warning",
            "description": f"Temperature of {temp}°C poses risk to crops and livestock.",
            "severity": "high",
            "type": "temperature",
            "affectedAreas": point,
            "recommendations": [
                "Provide shade for livestock and crops",
                "Increase water availability",
                "Avoid working during peak heat hours",
                "Monitor heat-sensitive crops closely",
            ],
            "affectedCrops": ["tomatoes", "peppers", "lettuce", "spinach"],
            "expiresAt": now + timedelta(hours=6),
        })
    if wind is not None and wind > 15:
        alerts.append({
            "title": "Strong Wind Advisory",
            "description": f"Wind speeds of {wind} m/s may cause crop damage.",
            "severity": "medium",
            "type": "wind",
            "affectedAreas": point,
            "recommendations": [
                "Secure tall crops and structures",
                "Harvest ripe fruits to prevent wind damage",
                "Check greenhouse and tunnel integrity",
                "Avoid spraying operations",
            ],
            "affectedCrops": ["corn", "sunflowers", "tomatoes", "fruit trees"],
            "expiresAt": now + timedelta(hours=12),
        })
    for alert in alerts:
        alert["metadata"] = {"source": "automatic", "confidence": 0.8, "externalId": weather.get("_id")}
    return alerts


def create_alert(data: Dict[str, Any], created_by=None) -> Dict[str, Any]:
    now = datetime.utcnow()
    doc = {
        "title": data["title"],
        "description": data["description"],
        "severity": data["severity"],
        "type": data["type"],
        "affectedAreas": data.get("affectedAreas") or {"type": "Point", "coordinates": [0, 0]},
        "recommendations": data.get("recommendations") or [],
        "affectedCrops": data.get("affectedCrops") or [],
        "startTime": now,
        "expiresAt": db.naive_utc(data.get("expiresAt")) or now + timedelta(hours=24),
        "isGlobal": bool(data.get("isGlobal", False)),
        "createdBy": created_by,
        "acknowledgedBy": [],
        "metadata": data.get("metadata") or {"source": "manual"},
        "createdAt": now,
        "updatedAt": now,
    }
    doc["isActive"] = doc["expiresAt"] > now
    doc["_id"] = db.collection(db.WEATHER_ALERTS).insert_one(doc).inserted_id
    return doc


def create_automatic_alerts(weather: Dict[str, Any]) -> List[Dict[str, Any]]:
    created = [create_alert(alert) for alert in automatic_alerts(weather)]
    if created:
        logger.info("[create_automatic_alerts] %d alert(s) raised for %s,%s",
                    len(created), weather.get("latitude"), weather.get("longitude"))
    return created


def _alert_covers(alert: Dict[str, Any], lat: float, lon: float) -> bool:
    if alert.get("isGlobal"):
        return True
    area = alert.get("affectedAreas") or {}
    if area.get("type") == "Polygon":
        rings = area.get("coordinates") or []
        return bool(rings) and geo.point_in_polygon(lat, lon, rings[0])
    pos = geo.point_lat_lng(area)
    return pos is not None and geo.distance_m((lat, lon), pos) <= ALERT_RADIUS_M


def alerts_for_location(lat: float, lon: float) -> List[Dict[str, Any]]:
    active = db.collection(db.WEATHER_ALERTS).find({"expiresAt": {"$gt": datetime.utcnow()}})
    matched = [a for a in active if _alert_covers(a, lat, lon)]
    matched.sort(key=lambda a: a.get("createdAt") or datetime.min, reverse=True)
    matched.sort(key=lambda a: SEVERITY_RANK.get(a.get("severity"), 0), reverse=True)
    return matched


def acknowledge_alert(alert: Dict[str, Any], user_id) -> Dict[str, Any]:
    acks = alert.get("acknowledgedBy") or []
    if any(a.get("user") == user_id for a in acks):
        return alert
    acks.append({"user": user_id, "acknowledgedAt": datetime.utcnow()})
    db.collection(db.WEATHER_ALERTS).update_one(
        {"_id": alert["_id"]},
        {"$set": {"acknowledgedBy": acks, "updatedAt": datetime.utcnow()}},
    )
    alert["acknowledgedBy"] = acks
    return alert


def latest_record(lat: float, lon: float) -> Optional[Dict[str, Any]]:
    return db.collection(db.WEATHER_DATA).find_one(
        {"latitude": lat, "longitude": lon}, sort=[("timestamp", -1)]
    )
