"""
Service Wiring — builds the signing engine from settings and exposes it as a
FastAPI dependency (tests replace it through `app.dependency_overrides`).
"""
from datetime import timedelta
from functools import lru_cache
from typing import Callable, Optional

from fastapi import Header, HTTPException, Request
from sqlalchemy.orm import sessionmaker

from app.config import Settings, get_settings
from app.database import SessionLocal
from app.schemas.records import ClientInfo
from app.services.assertion_service import AssertionVerifier
from app.services.audit_service import AuditService
from app.services.customer_directory import CustomerDirectory, DatabaseCustomerDirectory
from app.services.notification_service import NotificationService
from app.services.ocr_service import OCRService
from app.services.otp_service import OtpService
from app.services.review_service import ReviewService
from app.services.sealing_service import SealingService
from app.services.session_store import SessionStore
from app.services.signing_orchestrator import SigningOrchestrator
from app.services.verification_service import VerificationService
from app.utils.timeouts import utcnow


def build_orchestrator(
    session_factory: sessionmaker,
    settings: Settings,
    clock=utcnow,
    directory: Optional[CustomerDirectory] = None,
    notifier: Optional[NotificationService] = None,
    sealer: Optional[SealingService] = None,
    scanner: Optional[OCRService] = None,
    code_generator: Optional[Callable[[], str]] = None,
) -> SigningOrchestrator:
    """Assemble the orchestrator and its collaborators."""
    directory = directory or DatabaseCustomerDirectory(session_factory)
    store = SessionStore(session_factory, clock=clock, audit_grace=timedelta(days=settings.AUDIT_GRACE_DAYS))
    verification = VerificationService(
        directory,
        AssertionVerifier(
            issuer=settings.ASSERTION_ISSUER,
            audience=settings.ASSERTION_AUDIENCE,
            secret=settings.ASSERTION_SECRET,
            public_key=settings.ASSERTION_PUBLIC_KEY,
            algorithms=settings.ASSERTION_ALGORITHMS,
        ),
        max_attempts=settings.VERIFICATION_MAX_ATTEMPTS,
        face_match_threshold=settings.FACE_MATCH_THRESHOLD,
        min_scan_confidence=settings.OCR_CONFIDENCE_THRESHOLD,
    )
    otp = OtpService(
        notifier or NotificationService(validity_minutes=settings.OTP_VALIDITY_MINUTES),
        secret_key=settings.SECRET_KEY,
        code_length=settings.OTP_LENGTH,
        validity_minutes=settings.OTP_VALIDITY_MINUTES,
        max_attempts=settings.OTP_MAX_ATTEMPTS,
        max_issues=settings.OTP_MAX_ISSUES,
        dispatch_timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
        code_generator=code_generator,
    )
    return SigningOrchestrator(
        store=store,
        directory=directory,
        verification=verification,
        otp=otp,
        review=ReviewService(),
        sealer=sealer or SealingService(settings.SECRET_KEY),
        audit=AuditService(session_factory),
        scanner=scanner if scanner is not None else OCRService(),
        session_ttl=timedelta(hours=settings.SESSION_TTL_HOURS),
        sealing_timeout=settings.SEALING_TIMEOUT_SECONDS,
        finalization_lease=timedelta(seconds=settings.FINALIZATION_LEASE_SECONDS),
    )


@lru_cache()
def get_orchestrator() -> SigningOrchestrator:
    """FastAPI dependency: process-wide orchestrator."""
    return build_orchestrator(SessionLocal, get_settings())


def client_info(request: Request) -> ClientInfo:
    """FastAPI dependency: caller IP (first X-Forwarded-For hop) and user agent."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.client.host if request.client else None
    return ClientInfo(ip_address=ip, user_agent=request.headers.get("user-agent", "")[:256] or None)


def require_internal_key(x_api_key: str = Header(..., alias="x-api-key")) -> bool:
    """FastAPI dependency guarding dispatch and admin endpoints."""
    if x_api_key != get_settings().INTERNAL_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return True
