from app.services.session_store import SessionStore
from app.services.verification_service import VerificationService
from app.services.otp_service import OtpService
from app.services.review_service import ReviewService
from app.services.sealing_service import SealingService
from app.services.audit_service import AuditService
from app.services.signing_orchestrator import SigningOrchestrator

__all__ = [
    "SessionStore", "VerificationService", "OtpService", "ReviewService",
    "SealingService", "AuditService", "SigningOrchestrator",
]
