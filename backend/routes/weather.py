import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException

from backend import auth as auth_module
from backend import db
from backend.routes import ok
from backend.schemas import WeatherAlertCreate
from backend.services import weather

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/weather", tags=["weather"])


def _require_coords(latitude: Optional[float], longitude: Optional[float]) -> None:
    if latitude is None or longitude is None:
        raise HTTPException(status_code=400, detail="Latitude and longitude are required")


def _upstream(call, *args):
    """Run an OpenWeatherMap call and map upstream failures to HTTP errors."""
    try:
        return call(*args)
    except weather.WeatherServiceUnavailable as e:
        logger.error("[weather] service unavailable: %s", e)
        raise HTTPException(status_code=503, detail="Weather service temporarily unavailable")
    except httpx.HTTPError as e:
        logger.error("[weather] upstream error: %s", e)
        raise HTTPException(status_code=502, detail="Failed to fetch weather data")


@router.get("/current")
def current(
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    location: Optional[str] = None,
    user=Depends(auth_module.get_current_user),
):
    _require_coords(latitude, longitude)
    record, source = _upstream(weather.current_weather, latitude, longitude, location, user["_id"])
    return ok({"weather": record, "source": source})


@router.get("/forecast")
def forecast(
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    days: int = 5,
    user=Depends(auth_module.get_current_user),
):
    _require_coords(latitude, longitude)
    days = min(max(days, 1), 5)
    payload = _upstream(weather.fetch_forecast, latitude, longitude, days)
    city = payload.get("city") or {}
    items = weather.forecast_items(payload)
    return ok(
        {
            "location": {"name": city.get("name"), "country": city.get("country"),
                         "latitude": latitude, "longitude": longitude},
            "forecast": weather.summarize_forecast(items),
        }
    )


@router.get("/alerts")
def alerts(
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    user=Depends(auth_module.get_current_user),
):
    _require_coords(latitude, longitude)
    return ok(
        {
            "weatherAlerts": weather.alerts_for_location(latitude, longitude),
            "agriculturalAlerts": weather.generate_agricultural_alerts(),
        }
    )


@router.post("/alerts", status_code=201)
def create_alert(req: WeatherAlertCreate, user=Depends(auth_module.require_role("expert", "admin"))):
    data = req.model_dump(exclude_none=True)
    alert = weather.create_alert(data, created_by=user["_id"])
    logger.info("[create_alert] %s alert '%s' created by %s", alert["severity"], alert["title"], user["_id"])
    return ok({"alert": alert}, "Weather alert created successfully")


@router.post("/alerts/{alert_id}/acknowledge")
def acknowledge(alert_id: str, user=Depends(auth_module.get_current_user)):
    oid = db.parse_object_id(alert_id, "Weather alert not found")
    alert = db.collection(db.WEATHER_ALERTS).find_one({"_id": oid})
    if not alert:
        raise HTTPException(status_code=404, detail="Weather alert not found")
    weather.acknowledge_alert(alert, user["_id"])
    return ok(message="Alert acknowledged successfully")


@router.get("/history")
def weather_history(
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    days: int = 30,
    user=Depends(auth_module.get_current_user),
):
    _require_coords(latitude, longitude)
    records = weather.history(latitude, longitude, max(days, 1))
    return ok({"history": records, "statistics": weather.history_statistics(records)})


@router.get("/agricultural-insights")
def agricultural_insights(
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    user=Depends(auth_module.get_current_user),
):
    _require_coords(latitude, longitude)
    record = weather.latest_record(latitude, longitude)
    if not record:
        raise HTTPException(status_code=404, detail="Weather data not found")
    return ok({"insights": weather.generate_agricultural_insights(record), "weather": record})
