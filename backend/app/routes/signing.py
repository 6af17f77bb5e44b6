"""
Signing Routes — Customer signing workflow driven by a one-time signing link.
No login: the token in the path is the sole credential.
"""
from fastapi import APIRouter, Depends, File, UploadFile

from app.config import get_settings
from app.dependencies import client_info, get_orchestrator
from app.schemas.records import ClientInfo, SigningSession
from app.schemas.schemas import (
    CompleteSignatureResponse, ConsentUpdateRequest, ConsentView, ContactPrefill,
    DocumentView, ReadinessResponse, RequestOtpRequest, RequestOtpResponse,
    ReviewStateResponse, SessionView, SignatureRequest, SignatureResponse,
    VerifyIdentityRequest, VerifyIdentityResponse, VerifyOtpRequest, VerifyOtpResponse,
)
from app.services.signing_orchestrator import ChallengeIssued, CodeCheck, IdentityCheck, SigningOrchestrator
from app.utils.rate_limiter import rate_limit

settings = get_settings()
router = APIRouter(prefix="/api/signing", tags=["Signing"])


def _documents(session: SigningSession) -> list[DocumentView]:
    return [
        DocumentView(document_id=d.document_id, title=d.title, url=d.url, confirmed=d.confirmed)
        for d in session.review.documents
    ]


def _consents(session: SigningSession) -> list[ConsentView]:
    return [
        ConsentView(consent_id=c.consent_id, text=c.text, required=c.required, accepted=c.accepted)
        for c in session.review.consents
    ]


def _review_state(session: SigningSession) -> ReviewStateResponse:
    return ReviewStateResponse(
        state=session.state,
        documents=_documents(session),
        consents=_consents(session),
        ready_for_signature=session.review.is_ready,
    )


def _identity_response(check: IdentityCheck) -> VerifyIdentityResponse:
    return VerifyIdentityResponse(
        success=check.result.outcome.value == "PASSED",
        outcome=check.result.outcome.value,
        attempts_remaining=check.result.attempts_remaining,
        state=check.session.state,
        message=check.result.message,
    )


def _otp_issued(issued: ChallengeIssued) -> RequestOtpResponse:
    return RequestOtpResponse(
        delivered=issued.delivered,
        channel=issued.challenge.channel,
        masked_destination=issued.challenge.masked_destination,
        expires_at=issued.challenge.expires_at,
        remaining_attempts=issued.challenge.remaining_attempts,
        state=issued.session.state,
    )


def _otp_checked(check: CodeCheck) -> VerifyOtpResponse:
    return VerifyOtpResponse(
        success=check.verification.verified,
        status=check.verification.status,
        remaining_attempts=check.verification.remaining_attempts,
        state=check.session.state,
        message=check.verification.message,
    )


@router.get("/{token}", response_model=SessionView)
def get_signing_session(
    token: str,
    client: ClientInfo = Depends(client_info),
    engine: SigningOrchestrator = Depends(get_orchestrator),
):
    """Resolve a signing link into the signer's view of the session."""
    session = engine.resolve(token, client)
    return SessionView(
        envelope_ref=session.envelope_ref,
        signer_kind=session.signer_kind,
        state=session.state,
        expires_at=session.expires_at,
        contact=ContactPrefill(**engine.prefilled_contact(session)),
        documents=_documents(session),
        consents=_consents(session),
        signature_captured=session.signature is not None,
        ready_for_signature=session.review.is_ready,
    )


# ─── Identity ────────────────────────────────────────────────────────

@router.post("/{token}/verify-identity", response_model=VerifyIdentityResponse)
def verify_identity(
    token: str,
    payload: VerifyIdentityRequest,
    client: ClientInfo = Depends(client_info),
    engine: SigningOrchestrator = Depends(get_orchestrator),
    _throttle: bool = Depends(rate_limit(requests=10, window=60)),
):
    """Verify identity by manual details or a trusted eID assertion."""
    check = engine.verify_identity(
        token, payload.method,
        claimed=payload.claimed_attributes(),
        assertion=payload.assertion,
        client=client,
    )
    return _identity_response(check)


@router.post("/{token}/verify-identity/scan", response_model=VerifyIdentityResponse)
async def verify_identity_scan(
    token: str,
    document: UploadFile = File(...),
    selfie: UploadFile | None = File(None),
    client: ClientInfo = Depends(client_info),
    engine: SigningOrchestrator = Depends(get_orchestrator),
    _throttle: bool = Depends(rate_limit(requests=5, window=60)),
):
    """Verify identity with an ID document scan and a selfie."""
    document_bytes = await document.read()
    selfie_bytes = await selfie.read() if selfie is not None else None
    check = engine.verify_identity_scan(
        token,
        document_bytes, document.content_type or "image/jpeg",
        selfie_bytes, selfie.content_type if selfie is not None else None,
        client=client,
    )
    return _identity_response(check)


# ─── Contact re-verification ─────────────────────────────────────────

@router.post("/{token}/contact/otp", response_model=RequestOtpResponse)
def request_contact_otp(
    token: str,
    payload: RequestOtpRequest,
    client: ClientInfo = Depends(client_info),
    engine: SigningOrchestrator = Depends(get_orchestrator),
    _throttle: bool = Depends(rate_limit(requests=10, window=60)),
):
    """Send a code to confirm the signer's email or mobile number."""
    return _otp_issued(engine.issue_contact_challenge(token, payload.channel, payload.destination, client))


@router.post("/{token}/contact/otp/verify", response_model=VerifyOtpResponse)
def verify_contact_otp(
    token: str,
    payload: VerifyOtpRequest,
    client: ClientInfo = Depends(client_info),
    engine: SigningOrchestrator = Depends(get_orchestrator),
):
    return _otp_checked(engine.verify_contact_code(token, payload.code, client))


# ─── Envelope review ─────────────────────────────────────────────────

@router.post("/{token}/documents/{document_id}/confirm", response_model=ReviewStateResponse)
def confirm_document(
    token: str,
    document_id: str,
    client: ClientInfo = Depends(client_info),
    engine: SigningOrchestrator = Depends(get_orchestrator),
):
    """Confirm a document has been read. Safe to repeat."""
    return _review_state(engine.confirm_document(token, document_id, client))


@router.put("/{token}/consents/{consent_id}", response_model=ReviewStateResponse)
def update_consent(
    token: str,
    consent_id: str,
    payload: ConsentUpdateRequest,
    client: ClientInfo = Depends(client_info),
    engine: SigningOrchestrator = Depends(get_orchestrator),
):
    return _review_state(engine.set_consent(token, consent_id, payload.accepted, client))


@router.post("/{token}/signature", response_model=SignatureResponse)
def capture_signature(
    token: str,
    payload: SignatureRequest,
    client: ClientInfo = Depends(client_info),
    engine: SigningOrchestrator = Depends(get_orchestrator),
):
    session = engine.capture_signature(token, payload.method, payload.artifact_ref, client)
    return SignatureResponse(
        method=session.signature.method,
        captured_at=session.signature.captured_at,
        state=session.state,
    )


@router.get("/{token}/readiness", response_model=ReadinessResponse)
def get_readiness(token: str, engine: SigningOrchestrator = Depends(get_orchestrator)):
    return ReadinessResponse(**engine.readiness(token))


@router.post("/{token}/submit", response_model=ReviewStateResponse)
def submit_for_signing(
    token: str,
    client: ClientInfo = Depends(client_info),
    engine: SigningOrchestrator = Depends(get_orchestrator),
):
    """Finish review; the signer then confirms the signature with a code."""
    return _review_state(engine.submit_for_signing(token, client))


# ─── Signing authorisation ───────────────────────────────────────────

@router.post("/{token}/signing/otp", response_model=RequestOtpResponse)
def request_signing_otp(
    token: str,
    payload: RequestOtpRequest,
    client: ClientInfo = Depends(client_info),
    engine: SigningOrchestrator = Depends(get_orchestrator),
    _throttle: bool = Depends(rate_limit(requests=10, window=60)),
):
    return _otp_issued(engine.issue_signing_challenge(token, payload.channel, client))


@router.post("/{token}/signing/otp/verify", response_model=VerifyOtpResponse)
def verify_signing_otp(
    token: str,
    payload: VerifyOtpRequest,
    client: ClientInfo = Depends(client_info),
    engine: SigningOrchestrator = Depends(get_orchestrator),
):
    return _otp_checked(engine.verify_signing_code(token, payload.code, client))


@router.post("/{token}/complete", response_model=CompleteSignatureResponse)
def complete_signature(
    token: str,
    client: ClientInfo = Depends(client_info),
    engine: SigningOrchestrator = Depends(get_orchestrator),
):
    """Seal the signed envelope. Repeating the call returns the same result."""
    result = engine.complete_signing(token, client)
    session = engine.store.get(token)
    return CompleteSignatureResponse(
        success=True,
        signed_document_ref=result.signed_document_ref,
        audit_trail_ref=result.audit_trail_ref,
        document_hash=result.document_hash,
        sealed_at=result.sealed_at,
        verification_url=f"{settings.PUBLIC_BASE_URL}/api/verify/{session.short_code}",
    )
