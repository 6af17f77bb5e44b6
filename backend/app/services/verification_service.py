"""
Verification Engine — decides whether claimed identity attributes belong to
the envelope's intended signer.

Three strategies share one attempt budget:
- MANUAL: date of birth + national ID (individual) or registration date +
  registration number / TIN (business), normalised before comparison.
- DOCUMENT_SCAN: fields extracted from an ID document plus a selfie face-match
  score, which must clear the configured threshold.
- TRUSTED_ASSERTION: a signed IdP assertion; its attributes are trusted once
  the signature is verified, but must still identify this envelope's signer.

`evaluate` does the collaborator work and never changes the session;
`record_attempt` is the Session Store mutator that counts the attempt.
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Optional

from app.schemas.records import (
    SignerKind, SigningSession, VerificationMethod, VerificationOutcome,
    VerificationRecord,
)
from app.services.assertion_service import AssertionVerifier
from app.services.customer_directory import CustomerDirectory, IdentityRecord
from app.services.ocr_service import ScanResult
from app.utils.exceptions import AssertionInvalid, ValidationFailed
from app.utils.logging import get_logger
from app.utils.validators import mask_identifier, normalize_identifier, parse_date

LOGGER = get_logger(__name__)


@dataclass
class VerificationDecision:
    """Outcome of evaluating one verification attempt."""

    matched: bool
    method: VerificationMethod
    attributes: Dict[str, str] = field(default_factory=dict)
    face_match_score: Optional[float] = None
    reason: str = ""


@dataclass
class VerificationResult:
    outcome: VerificationOutcome
    attempts_remaining: int
    message: str = ""


class VerificationService:
    def __init__(
        self,
        directory: CustomerDirectory,
        assertion_verifier: AssertionVerifier,
        max_attempts: int = 5,
        face_match_threshold: float = 0.80,
        min_scan_confidence: int = 85,
    ):
        self.directory = directory
        self.assertion_verifier = assertion_verifier
        self.max_attempts = max_attempts
        self.face_match_threshold = face_match_threshold
        self.min_scan_confidence = min_scan_confidence

    # ─── Evaluation ──────────────────────────────────────────────────

    def evaluate_manual(self, session: SigningSession, claimed: Dict[str, str]) -> VerificationDecision:
        """Compare manually entered attributes with the directory record.

        Raises:
            ValidationFailed: If required attributes are missing or malformed.
        """
        expected = self.directory.get_identity(session.customer_ref)
        if session.signer_kind == SignerKind.INDIVIDUAL:
            attributes = self._parse_individual(claimed)
        else:
            attributes = self._parse_business(claimed)
        matched = self._matches(session.signer_kind, attributes, expected)
        return VerificationDecision(
            matched=matched,
            method=VerificationMethod.MANUAL,
            attributes=self._redact(attributes),
            reason="" if matched else "details_mismatch",
        )

    def evaluate_scan(self, session: SigningSession, scan: ScanResult) -> VerificationDecision:
        """Apply the face-match policy and field matching to a document scan."""
        expected = self.directory.get_identity(session.customer_ref)
        fields = scan.extracted_fields
        try:
            if scan.confidence < self.min_scan_confidence:
                raise ValidationFailed("Extraction confidence below threshold")
            if session.signer_kind == SignerKind.INDIVIDUAL:
                attributes = self._parse_individual(fields)
            else:
                attributes = self._parse_business(fields)
        except ValidationFailed:
            # An unreadable document is a failed attempt, not a client error
            return VerificationDecision(
                matched=False,
                method=VerificationMethod.DOCUMENT_SCAN,
                face_match_score=scan.face_match_score,
                reason="fields_unreadable",
            )

        face_ok = session.signer_kind == SignerKind.BUSINESS or scan.face_match_score >= self.face_match_threshold
        fields_ok = self._matches(session.signer_kind, attributes, expected)
        reason = ""
        if not face_ok:
            reason = "face_mismatch"
        elif not fields_ok:
            reason = "details_mismatch"
        return VerificationDecision(
            matched=face_ok and fields_ok,
            method=VerificationMethod.DOCUMENT_SCAN,
            attributes=self._redact(attributes),
            face_match_score=scan.face_match_score,
            reason=reason,
        )

    def evaluate_assertion(self, session: SigningSession, assertion: str) -> VerificationDecision:
        """Verify an IdP assertion and bind it to this envelope's signer."""
        try:
            asserted = self.assertion_verifier.verify(assertion)
        except AssertionInvalid as e:
            LOGGER.info("Assertion rejected for envelope %s: %s", session.envelope_ref, e)
            return VerificationDecision(
                matched=False,
                method=VerificationMethod.TRUSTED_ASSERTION,
                reason="assertion_invalid",
            )

        expected = self.directory.get_identity(session.customer_ref)
        if session.signer_kind == SignerKind.INDIVIDUAL:
            bound = _same_id(asserted.get("national_id"), expected.national_id)
        else:
            bound = (
                _same_id(asserted.get("registration_number"), expected.registration_number)
                or _same_id(asserted.get("tin"), expected.tin)
            )
        return VerificationDecision(
            matched=bound,
            method=VerificationMethod.TRUSTED_ASSERTION,
            attributes=self._redact(asserted),
            reason="" if bound else "subject_mismatch",
        )

    # ─── Mutation ────────────────────────────────────────────────────

    def record_attempt(self, session: SigningSession, decision: VerificationDecision, now) -> None:
        """Store-transition mutator: count the attempt and set the outcome."""
        record = session.verification or VerificationRecord(method=decision.method)
        if record.outcome != VerificationOutcome.PENDING:
            raise ValidationFailed("Identity verification is already settled for this session")

        record.method = decision.method
        record.attempts += 1
        record.claimed_attributes = decision.attributes
        record.face_match_score = decision.face_match_score

        if decision.matched:
            record.outcome = VerificationOutcome.PASSED
            record.verified_at = now
        elif record.attempts >= self.max_attempts:
            record.outcome = VerificationOutcome.FAILED
        session.verification = record

    def result_for(self, session: SigningSession) -> VerificationResult:
        record = session.verification
        if record is None:
            return VerificationResult(VerificationOutcome.PENDING, self.max_attempts)
        remaining = max(0, self.max_attempts - record.attempts)
        if record.outcome == VerificationOutcome.PASSED:
            return VerificationResult(VerificationOutcome.PASSED, remaining, "Identity verified")
        if record.outcome == VerificationOutcome.FAILED:
            return VerificationResult(
                VerificationOutcome.FAILED, 0,
                "Too many failed attempts. Please contact your agent to unlock this signing request.",
            )
        return VerificationResult(
            VerificationOutcome.FAILED, remaining,
            "The provided details do not match our records. Please check and try again.",
        )

    # ─── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _parse_individual(claimed: Dict[str, str]) -> Dict:
        dob = parse_date(claimed.get("date_of_birth"))
        national_id = normalize_identifier(claimed.get("national_id"))
        missing = []
        if dob is None:
            missing.append("date_of_birth")
        if not national_id:
            missing.append("national_id")
        if missing:
            raise ValidationFailed(f"Missing or malformed fields: {', '.join(missing)}")
        return {"date_of_birth": dob, "national_id": national_id}

    @staticmethod
    def _parse_business(claimed: Dict[str, str]) -> Dict:
        reg_date = parse_date(claimed.get("registration_date"))
        identifier = normalize_identifier(claimed.get("registration_number") or claimed.get("tin"))
        missing = []
        if reg_date is None:
            missing.append("registration_date")
        if not identifier:
            missing.append("registration_number")
        if missing:
            raise ValidationFailed(f"Missing or malformed fields: {', '.join(missing)}")
        return {"registration_date": reg_date, "registration_number": identifier}

    @staticmethod
    def _matches(kind: SignerKind, attributes: Dict, expected: IdentityRecord) -> bool:
        if kind == SignerKind.INDIVIDUAL:
            return (
                expected.date_of_birth is not None
                and attributes["date_of_birth"] == expected.date_of_birth
                and _same_id(attributes["national_id"], expected.national_id)
            )
        identifier = attributes["registration_number"]
        return (
            expected.registration_date is not None
            and attributes["registration_date"] == expected.registration_date
            and (_same_id(identifier, expected.registration_number) or _same_id(identifier, expected.tin))
        )

    @staticmethod
    def _redact(attributes: Dict) -> Dict[str, str]:
        """Keep claimed values for the record, masking identity numbers."""
        redacted = {}
        for key, value in attributes.items():
            if isinstance(value, date):
                redacted[key] = value.isoformat()
            elif key in ("national_id", "registration_number", "tin", "subject"):
                redacted[key] = mask_identifier(value)
            else:
                redacted[key] = str(value)
        return redacted


def _same_id(claimed: Optional[str], expected: Optional[str]) -> bool:
    if not claimed or not expected:
        return False
    return normalize_identifier(claimed) == normalize_identifier(expected)
