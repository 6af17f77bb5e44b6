"""
Application Configuration — Environment & Settings
Centralizes all config from .env with Pydantic Settings for validation.
"""
from pathlib import Path
from functools import lru_cache
from pydantic_settings import BaseSettings

# Resolve paths relative to backend/ directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- Core ---
    APP_NAME: str = "Remote Signing Workflow API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # --- Database ---
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'signing.db'}"

    # --- Session lifecycle ---
    SESSION_TTL_HOURS: int = 72
    AUDIT_GRACE_DAYS: int = 30

    # --- Identity verification ---
    VERIFICATION_MAX_ATTEMPTS: int = 5
    FACE_MATCH_THRESHOLD: float = 0.80

    # --- One-time codes ---
    OTP_LENGTH: int = 6
    OTP_VALIDITY_MINUTES: int = 5
    OTP_MAX_ATTEMPTS: int = 3
    OTP_MAX_ISSUES: int = 5

    # --- Collaborator timeouts ---
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0
    SEALING_TIMEOUT_SECONDS: float = 30.0
    FINALIZATION_LEASE_SECONDS: int = 120

    # --- Trusted identity assertions (eID) ---
    ASSERTION_ISSUER: str = ""
    ASSERTION_AUDIENCE: str = "remote-signing"
    ASSERTION_SECRET: str = ""
    ASSERTION_PUBLIC_KEY: str = ""
    ASSERTION_ALGORITHMS: list[str] = ["HS256", "RS256"]

    # --- AI / OCR ---
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-1.5-flash-latest"
    OCR_CONFIDENCE_THRESHOLD: int = 85

    # --- Security ---
    SECRET_KEY: str = "signing-engine-secret-key-change-in-production"
    INTERNAL_API_KEY: str = "internal-dev-key"
    CORS_ORIGINS: list[str] = ["*"]

    # --- Logging ---
    LOG_DIR: str = str(BASE_DIR / "logs")

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
