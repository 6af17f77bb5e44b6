"""
Envelope Routes — dispatch of envelopes for signing (internal) and public
verification of signed documents by verification code.
"""
from datetime import timezone

from fastapi import APIRouter, Depends

from app.config import get_settings
from app.dependencies import get_orchestrator, require_internal_key
from app.schemas.records import ReviewConsent, ReviewDocument
from app.schemas.schemas import DispatchRequest, DispatchResponse, VerificationLookupResponse
from app.services.signing_orchestrator import SigningOrchestrator

settings = get_settings()
router = APIRouter(prefix="/api", tags=["Envelopes"])


@router.post("/envelopes/dispatch", response_model=DispatchResponse, status_code=201)
def dispatch_envelope(
    payload: DispatchRequest,
    _auth: bool = Depends(require_internal_key),
    engine: SigningOrchestrator = Depends(get_orchestrator),
):
    """Issue a signing link for an envelope (called by the agent back office)."""
    expires_at = payload.expires_at
    if expires_at is not None and expires_at.tzinfo is not None:
        # Stored as naive UTC
        expires_at = expires_at.astimezone(timezone.utc).replace(tzinfo=None)

    session = engine.open_session(
        envelope_ref=payload.envelope_ref,
        customer_ref=payload.customer_ref,
        documents=[ReviewDocument(document_id=d.document_id, title=d.title, url=d.url) for d in payload.documents],
        consents=[ReviewConsent(consent_id=c.consent_id, text=c.text, required=c.required) for c in payload.consents],
        expires_at=expires_at,
    )
    return DispatchResponse(
        token=session.token,
        short_code=session.short_code,
        signing_url=f"{settings.PUBLIC_BASE_URL}/sign/{session.token}",
        expires_at=session.expires_at,
        state=session.state,
    )


@router.get("/verify/{short_code}", response_model=VerificationLookupResponse)
def verify_signed_document(short_code: str, engine: SigningOrchestrator = Depends(get_orchestrator)):
    """Public check of a signed document by its verification code."""
    return VerificationLookupResponse(**engine.lookup(short_code))
