"""
Pydantic Schemas — Request & Response models for API validation.
"""
from datetime import datetime
from typing import Optional, Dict, List
from pydantic import BaseModel, Field

from app.schemas.records import (
    Channel, SessionState, SignatureMethod, SignerKind, VerificationMethod,
)


# ──────────────── Envelope dispatch ────────────────

class DocumentIn(BaseModel):
    document_id: str = Field(..., min_length=1, max_length=64)
    title: str = ""
    url: Optional[str] = None


class ConsentIn(BaseModel):
    consent_id: str = Field(..., min_length=1, max_length=64)
    text: str = ""
    required: bool = True


class DispatchRequest(BaseModel):
    envelope_ref: str = Field(..., min_length=1, max_length=64)
    customer_ref: str = Field(..., min_length=1, max_length=64)
    documents: List[DocumentIn] = Field(..., min_length=1)
    consents: List[ConsentIn] = []
    expires_at: Optional[datetime] = None


class DispatchResponse(BaseModel):
    token: str
    short_code: str
    signing_url: str
    expires_at: datetime
    state: SessionState


# ──────────────── Session ────────────────

class DocumentView(BaseModel):
    document_id: str
    title: str
    url: Optional[str] = None
    confirmed: bool


class ConsentView(BaseModel):
    consent_id: str
    text: str
    required: bool
    accepted: bool


class ContactPrefill(BaseModel):
    display_name: str
    email: Optional[str] = None
    phone: Optional[str] = None


class SessionView(BaseModel):
    envelope_ref: str
    signer_kind: SignerKind
    state: SessionState
    expires_at: datetime
    contact: ContactPrefill
    documents: List[DocumentView]
    consents: List[ConsentView]
    signature_captured: bool = False
    ready_for_signature: bool = False


class ReviewStateResponse(BaseModel):
    state: SessionState
    documents: List[DocumentView]
    consents: List[ConsentView]
    ready_for_signature: bool


class ReadinessResponse(BaseModel):
    state: SessionState
    ready_for_signature: bool
    documents_confirmed: bool
    consents_accepted: bool
    signature_captured: bool
    missing: List[str] = []


# ──────────────── Identity ────────────────

class VerifyIdentityRequest(BaseModel):
    method: VerificationMethod = VerificationMethod.MANUAL
    # Individual
    date_of_birth: Optional[str] = None
    national_id: Optional[str] = None
    # Business
    registration_date: Optional[str] = None
    registration_number: Optional[str] = None
    tin: Optional[str] = None
    # Trusted assertion (eID)
    assertion: Optional[str] = None

    def claimed_attributes(self) -> Dict[str, str]:
        fields = ("date_of_birth", "national_id", "registration_date", "registration_number", "tin")
        return {f: getattr(self, f) for f in fields if getattr(self, f)}


class VerifyIdentityResponse(BaseModel):
    success: bool
    outcome: str
    attempts_remaining: int
    state: SessionState
    message: str = ""


# ──────────────── One-time codes ────────────────

class RequestOtpRequest(BaseModel):
    channel: Channel = Channel.EMAIL
    destination: Optional[str] = Field(None, max_length=128)


class RequestOtpResponse(BaseModel):
    success: bool = True
    delivered: bool
    channel: Channel
    masked_destination: str
    expires_at: datetime
    remaining_attempts: int
    state: SessionState


class VerifyOtpRequest(BaseModel):
    code: str = Field(..., max_length=12)


class VerifyOtpResponse(BaseModel):
    success: bool
    status: str     # VERIFIED | INVALID | EXPIRED | EXHAUSTED
    remaining_attempts: int
    state: SessionState
    message: str = ""


# ──────────────── Review & signature ────────────────

class ConsentUpdateRequest(BaseModel):
    accepted: bool


class SignatureRequest(BaseModel):
    method: SignatureMethod = SignatureMethod.DRAWN
    artifact_ref: str = Field(..., min_length=1)


class SignatureResponse(BaseModel):
    success: bool = True
    method: SignatureMethod
    captured_at: datetime
    state: SessionState


# ──────────────── Completion ────────────────

class CompleteSignatureResponse(BaseModel):
    success: bool
    signed_document_ref: str
    audit_trail_ref: str
    document_hash: str
    sealed_at: datetime
    verification_url: str
    state: SessionState = SessionState.COMPLETED


class VerificationLookupResponse(BaseModel):
    verification_code: str
    envelope_ref: str
    document_hash: str
    sealed_at: datetime
    signer_name: Optional[str] = None
    verification_method: Optional[str] = None
    signature_method: Optional[str] = None
    otp_verified: bool


# ──────────────── Admin / Evidence ────────────────

class EvidenceEventEntry(BaseModel):
    id: int
    action: str
    description: Optional[str] = None
    payload_hash: Optional[str] = None
    previous_hash: Optional[str] = None
    ip_address: Optional[str] = None
    identity_verified: bool = False
    otp_verified: bool = False
    timestamp: datetime
    event_metadata: Optional[Dict] = None

    class Config:
        from_attributes = True


class EvidenceResponse(BaseModel):
    token: str
    chain: Dict
    events: List[EvidenceEventEntry]
    evidence_record: Optional[Dict] = None


class SweepResponse(BaseModel):
    expired: int
    purged: int


# ──────────────── Generic ────────────────

class ErrorResponse(BaseModel):
    detail: str
    error_code: Optional[str] = None
