"""
Remote Signing Workflow — FastAPI Application Entry Point

Aggregates all routers, configures middleware, maps engine errors to HTTP
responses and initializes the database on startup.
"""
import time
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.config import get_settings
from app.database import SessionLocal, init_db
from app.routes import admin_router, envelopes_router, signing_router
from app.schemas.schemas import ErrorResponse
from app.utils.exceptions import SessionNotFound, SigningEngineError
from app.utils.logging import get_logger

settings = get_settings()
logger = get_logger(__name__)

# ─── Application Instance ───────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "API for remote signing of envelopes over a one-time link. "
        "Covers identity verification (manual, ID scan, trusted eID), contact "
        "re-verification, document review, OTP signing authorisation and sealing "
        "with a hash-chained evidence trail."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# ─── Startup ─────────────────────────────────────────────────────────
BOOT_TIME = time.time()


@app.on_event("startup")
def on_startup():
    """Initialize database tables and log boot info."""
    init_db()

    boot_msg = (
        f"\n{'='*60}\n"
        f"  {settings.APP_NAME} v{settings.APP_VERSION}\n"
        f"  TIME: {datetime.now().isoformat()}\n"
        f"  GEMINI KEY: {'[OK] Loaded' if settings.GEMINI_API_KEY else '[!] Missing'}\n"
        f"  EID ASSERTIONS: {'[OK] Configured' if settings.ASSERTION_SECRET or settings.ASSERTION_PUBLIC_KEY else '[!] Disabled'}\n"
        f"  DATABASE: {settings.DATABASE_URL}\n"
        f"  DEBUG: {settings.DEBUG}\n"
        f"{'='*60}"
    )
    logger.info(boot_msg)


# ─── Middleware ──────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every API request with timing."""
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 1)

    if request.url.path.startswith("/api"):
        # The path carries the signing token; log the route prefix only
        path = request.url.path
        if path.startswith("/api/signing/"):
            path = "/api/signing/..."
        logger.info("-> %s %s -> %s (%sms)", request.method, path, response.status_code, duration)

    return response


# ─── Error Mapping ───────────────────────────────────────────────────

@app.exception_handler(SigningEngineError)
async def engine_error_handler(request: Request, exc: SigningEngineError):
    """Render engine errors as {detail, error_code} with their HTTP status."""
    if isinstance(exc, SessionNotFound):
        # Unknown and expired links are indistinguishable to the caller
        return JSONResponse(
            status_code=404,
            content={"detail": "Invalid or expired signing link", "error_code": "EXPIRED"},
        )

    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.error_code, request.method, request.url.path, exc.message)

    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error_code": exc.error_code},
        headers=headers,
    )


# ─── API Routers ─────────────────────────────────────────────────────
ERROR_RESPONSES = {
    status: {"model": ErrorResponse} for status in (401, 404, 409, 429, 502, 503, 504)
}

app.include_router(signing_router, responses=ERROR_RESPONSES)
app.include_router(envelopes_router, responses=ERROR_RESPONSES)
app.include_router(admin_router, responses=ERROR_RESPONSES)


@app.get("/health", tags=["Health"])
def deep_health():
    """Detailed health check including dependency statuses."""
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as e:
        logger.warning("Health check database probe failed: %s", e)
    finally:
        db.close()

    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "connected" if db_ok else "disconnected",
        "ai_ocr": "available" if settings.GEMINI_API_KEY else "unavailable",
        "uptime_seconds": round(time.time() - BOOT_TIME, 1),
        "version": settings.APP_VERSION,
    }
