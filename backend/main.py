import logging
import os
import time
import traceback
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend import db
from backend.config import Config
from backend.routes import ai, auth, chatbot, community, images, notifications, weather
from backend.services.guardrails import RateLimiter, client_ip

logging.basicConfig(
    level=getattr(logging, Config.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

STARTED_AT = time.time()

app = FastAPI(title="AgriAI API", version=Config.version)

ALLOWED_ORIGINS = ["http://localhost:3000", "http://localhost:3001", Config.frontend_url]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS if Config.is_production() else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

rate_limiter = RateLimiter(Config.rate_limit_max, Config.rate_limit_window_seconds)


@app.middleware("http")
async def limit_requests(request: Request, call_next):
    if request.url.path.startswith("/api/"):
        peer = request.client.host if request.client else None
        ip = client_ip(request.headers.get("x-forwarded-for"), peer)
        if not rate_limiter.allow(ip):
            logger.warning("[rate_limit] %s exceeded %d requests", ip, rate_limiter.max_requests)
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "message": "Too many requests from this IP, please try again later.",
                },
                headers={"Retry-After": str(rate_limiter.retry_after(ip))},
            )
    return await call_next(request)


@app.middleware("http")
async def access_log(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    elapsed_ms = (time.time() - start) * 1000
    logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, elapsed_ms)
    return response


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    body = {"success": False, "message": message}
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        return _error(404, "Route not found", path=request.url.path)
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form"))
        msg = err.get("msg", "Invalid value")
        messages.append(f"{field}: {msg}" if field else msg)
    return _error(400, ", ".join(messages) or "Validation error")


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_error(request: Request, exc: DuplicateKeyError):
    key_value = (exc.details or {}).get("keyValue") or {}
    field = next(iter(key_value), "Field")
    return _error(400, f"{field[:1].upper()}{field[1:]} already exists")


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("[unhandled] %s %s", request.method, request.url.path)
    if Config.is_production():
        return _error(500, "Internal Server Error")
    return _error(500, "Internal Server Error", stack=traceback.format_exc())


for module in (auth, images, ai, chatbot, weather, community, notifications):
    app.include_router(module.router)

os.makedirs(Config.upload_dir, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=Config.upload_dir), name="uploads")


@app.on_event("startup")
def on_startup():
    os.makedirs(os.path.join(Config.upload_dir, "images"), exist_ok=True)
    Config.check_env_variables()
    try:
        db.ensure_indexes()
    except Exception as e:
        logger.error("[startup] could not create indexes: %s", e)
    logger.info("[startup] AgriAI API %s running in %s mode", Config.version, Config.app_env)


ENDPOINTS = {
    "auth": "/api/auth",
    "images": "/api/images",
    "ai": "/api/ai",
    "chatbot": "/api/chatbot",
    "weather": "/api/weather",
    "community": "/api/community",
    "notifications": "/api/notifications",
}


@app.get("/api/health")
def health():
    return {
        "status": "OK",
        "timestamp": datetime.utcnow().isoformat(),
        "version": Config.version,
        "environment": Config.app_env,
        "uptime": round(time.time() - STARTED_AT, 3),
        "mongodb": "connected" if db.is_connected() else "disconnected",
    }


@app.get("/api/docs")
def api_docs():
    return {
        "success": True,
        "data": {
            "title": "AgriAI API",
            "version": Config.version,
            "endpoints": {
                "auth": ["POST /register", "POST /login", "POST /refresh", "POST /logout",
                         "GET /profile", "PUT /profile", "PUT /profile/location",
                         "POST /change-password", "POST /forgot-password",
                         "POST /reset-password/{token}", "DELETE /account"],
                "images": ["POST /upload", "GET /analyses", "GET /analyses/{id}",
                           "DELETE /analyses/{id}", "POST /analyses/{id}/feedback",
                           "POST /analyses/{id}/share", "GET /nearby", "GET /stats"],
                "ai": ["POST /analyze/{analysisId}", "GET /models", "GET /crop-suggestions",
                       "POST /batch-analyze", "GET /analytics"],
                "chatbot": ["GET /test", "POST /chat", "POST /query", "GET /sessions",
                            "GET /sessions/{id}", "DELETE /sessions/{id}",
                            "PUT /sessions/{id}/title", "PUT /sessions/{id}/settings",
                            "GET /sessions/{id}/search", "GET /sessions/{id}/export",
                            "GET /quick-responses", "GET /analytics"],
                "weather": ["GET /current", "GET /forecast", "GET /alerts", "POST /alerts",
                            "POST /alerts/{id}/acknowledge", "GET /history",
                            "GET /agricultural-insights"],
                "community": ["GET /posts", "POST /posts", "GET /posts/{id}", "PUT /posts/{id}",
                              "DELETE /posts/{id}", "POST /posts/{id}/like",
                              "POST /posts/{id}/comments",
                              "POST /posts/{id}/comments/{commentId}/reply",
                              "DELETE /posts/{id}/comments/{commentId}", "GET /categories",
                              "GET /trending", "GET /search", "GET /my-posts", "GET /analytics"],
                "notifications": ["GET /", "POST /", "PUT /{id}/read", "PUT /mark-all-read",
                                  "DELETE /{id}", "POST /subscribe", "POST /unsubscribe",
                                  "GET /preferences", "PUT /preferences", "GET /analytics"],
            },
            "basePaths": ENDPOINTS,
        },
    }


@app.get("/")
def root():
    return {
        "message": "AgriAI Backend API",
        "version": Config.version,
        "status": "running",
        "endpoints": {"health": "/api/health", "docs": "/api/docs", **ENDPOINTS},
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("backend.main:app", host="0.0.0.0", port=Config.port)
