"""
Domain Records — the SigningSession aggregate and its sub-records.

These are what the Session Store hands to mutators; the ORM row stores them
as JSON. ``state`` is recomputed by the store after every mutation and is
never assigned by workflow code.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class SessionState(str, Enum):
    UNVERIFIED = "UNVERIFIED"
    CONTACT_PENDING = "CONTACT_PENDING"
    CONTACT_CHALLENGED = "CONTACT_CHALLENGED"
    REVIEW_PENDING = "REVIEW_PENDING"
    SIGNING_PENDING = "SIGNING_PENDING"
    SIGNING_CHALLENGED = "SIGNING_CHALLENGED"
    FINALIZING = "FINALIZING"
    COMPLETED = "COMPLETED"
    BLOCKED = "BLOCKED"
    EXPIRED = "EXPIRED"


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.BLOCKED, SessionState.EXPIRED})


class SignerKind(str, Enum):
    INDIVIDUAL = "INDIVIDUAL"
    BUSINESS = "BUSINESS"


class VerificationMethod(str, Enum):
    MANUAL = "MANUAL"
    DOCUMENT_SCAN = "DOCUMENT_SCAN"
    TRUSTED_ASSERTION = "TRUSTED_ASSERTION"


class VerificationOutcome(str, Enum):
    PENDING = "PENDING"
    PASSED = "PASSED"
    FAILED = "FAILED"


class ChallengePurpose(str, Enum):
    CONTACT = "CONTACT"
    SIGNING = "SIGNING"


class Channel(str, Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"


class ChallengeOutcome(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    EXHAUSTED = "EXHAUSTED"
    EXPIRED = "EXPIRED"


class SignatureMethod(str, Enum):
    DRAWN = "DRAWN"
    TYPED = "TYPED"
    UPLOADED = "UPLOADED"


# ──────────────── Sub-records ────────────────

class VerificationRecord(BaseModel):
    method: VerificationMethod
    claimed_attributes: Dict[str, str] = {}
    outcome: VerificationOutcome = VerificationOutcome.PENDING
    attempts: int = 0
    face_match_score: Optional[float] = None
    verified_at: Optional[datetime] = None


class OtpChallenge(BaseModel):
    challenge_id: str
    purpose: ChallengePurpose
    channel: Channel
    destination: str
    masked_destination: str
    code_hash: str
    issued_at: datetime
    expires_at: datetime
    remaining_attempts: int
    outcome: ChallengeOutcome = ChallengeOutcome.PENDING
    issue_count: int = 1
    verified_at: Optional[datetime] = None

    @property
    def is_live(self) -> bool:
        return self.outcome == ChallengeOutcome.PENDING


class ReviewDocument(BaseModel):
    document_id: str
    title: str = ""
    url: Optional[str] = None
    confirmed: bool = False
    confirmed_at: Optional[datetime] = None


class ReviewConsent(BaseModel):
    consent_id: str
    text: str = ""
    required: bool = True
    accepted: bool = False
    updated_at: Optional[datetime] = None


class EnvelopeReviewState(BaseModel):
    documents: List[ReviewDocument] = []
    consents: List[ReviewConsent] = []
    submitted_at: Optional[datetime] = None

    @property
    def all_documents_confirmed(self) -> bool:
        return all(doc.confirmed for doc in self.documents)

    @property
    def all_required_consents_accepted(self) -> bool:
        return all(c.accepted for c in self.consents if c.required)

    @property
    def is_ready(self) -> bool:
        return self.all_documents_confirmed and self.all_required_consents_accepted


class SignatureCapture(BaseModel):
    method: SignatureMethod
    artifact_ref: str
    captured_at: datetime


class FinalizationLease(BaseModel):
    attempt_id: str
    started_at: datetime


class SigningResult(BaseModel):
    signed_document_ref: str
    audit_trail_ref: str
    document_hash: str
    sealed_at: datetime
    evidence_id: Optional[int] = None


class ClientInfo(BaseModel):
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


# ──────────────── Aggregate ────────────────

class SigningSession(BaseModel):
    token: str
    short_code: str
    envelope_ref: str
    customer_ref: str
    signer_kind: SignerKind
    state: SessionState = SessionState.UNVERIFIED

    verification: Optional[VerificationRecord] = None
    contact_challenge: Optional[OtpChallenge] = None
    signing_challenge: Optional[OtpChallenge] = None
    review: EnvelopeReviewState = Field(default_factory=EnvelopeReviewState)
    signature: Optional[SignatureCapture] = None
    finalization: Optional[FinalizationLease] = None
    result: Optional[SigningResult] = None
    client: ClientInfo = Field(default_factory=ClientInfo)

    expires_at: datetime
    created_at: datetime
    last_transition_at: datetime

    def challenge_for(self, purpose: ChallengePurpose) -> Optional[OtpChallenge]:
        if purpose == ChallengePurpose.CONTACT:
            return self.contact_challenge
        return self.signing_challenge

    def set_challenge(self, purpose: ChallengePurpose, challenge: Optional[OtpChallenge]) -> None:
        if purpose == ChallengePurpose.CONTACT:
            self.contact_challenge = challenge
        else:
            self.signing_challenge = challenge

    @property
    def identity_verified(self) -> bool:
        return self.verification is not None and self.verification.outcome == VerificationOutcome.PASSED

    @property
    def signing_otp_verified(self) -> bool:
        return self.signing_challenge is not None and self.signing_challenge.outcome == ChallengeOutcome.VERIFIED
