import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

ENV_VARS = [
    "MONGODB_URI",
    "JWT_SECRET",
    "OPENWEATHER_API_KEY",
    "GEMINI_API_KEY",
    "FRONTEND_URL",
]


class Config:
    app_env = os.getenv("APP_ENV", os.getenv("NODE_ENV", "development"))
    port = int(os.getenv("PORT", "5000"))
    version = "1.0.0"

    mongodb_uri = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
    mongodb_db = os.getenv("MONGODB_DB", "agriai")

    jwt_secret = os.getenv("JWT_SECRET", "please_change_this_secret")
    jwt_expires_days = int(os.getenv("JWT_EXPIRES_DAYS", "7"))

    openweather_api_key = os.getenv("OPENWEATHER_API_KEY", "")
    openweather_base = os.getenv("OPENWEATHER_BASE", "https://api.openweathermap.org/data/2.5")
    weather_cache_minutes = int(os.getenv("WEATHER_CACHE_MINUTES", "10"))

    gemini_api_key = os.getenv("GEMINI_API_KEY", "") or os.getenv("GOOGLE_GEMINI_API_KEY", "")
    gemini_model = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

    frontend_url = os.getenv("FRONTEND_URL", "http://localhost:3000")

    _base_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    _upload_dir_env = os.getenv("UPLOAD_DIR")
    if _upload_dir_env:
        upload_dir = (
            _upload_dir_env
            if os.path.isabs(_upload_dir_env)
            else os.path.join(_base_dir, _upload_dir_env)
        )
    else:
        upload_dir = os.path.join(_base_dir, "uploads")
    max_upload_mb = int(os.getenv("MAX_UPLOAD_MB", "10"))

    rate_limit_window_seconds = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", str(15 * 60)))
    _rate_limit_env = os.getenv("RATE_LIMIT_MAX")
    if _rate_limit_env:
        rate_limit_max = int(_rate_limit_env)
    else:
        rate_limit_max = 100 if app_env == "production" else 1000

    log_level = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def is_production(cls) -> bool:
        return cls.app_env == "production"

    @classmethod
    def max_upload_bytes(cls) -> int:
        return cls.max_upload_mb * 1024 * 1024

    @staticmethod
    def check_env_variables():
        missing = [var for var in ENV_VARS if not os.getenv(var)]
        # the legacy key name also enables the chatbot
        if "GEMINI_API_KEY" in missing and os.getenv("GOOGLE_GEMINI_API_KEY"):
            missing.remove("GEMINI_API_KEY")
        for var in missing:
            logger.warning("[config] environment variable %s is not set", var)
        return missing
