"""
Signing Orchestrator — sequences verification, contact challenge, envelope
review, signing challenge and sealing into the remote signing workflow.

Every step re-reads the session, checks the gate for the step, and then goes
through `SessionStore.transition` with the state it just read. Slow
collaborator calls (notification dispatch, sealing) run outside the
transition and are bounded by a timeout, so a timeout leaves the session in a
state the signer can retry from.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from app.schemas.records import (
    Channel, ChallengePurpose, ClientInfo, FinalizationLease, OtpChallenge,
    ReviewConsent, ReviewDocument, SessionState, SignatureCapture,
    SignatureMethod, SigningResult, SigningSession, VerificationMethod,
    VerificationOutcome,
)
from app.services.audit_service import AuditService
from app.services.customer_directory import CustomerDirectory
from app.services.ocr_service import OCRService, ScanResult
from app.services.otp_service import OtpService, OtpVerification
from app.services.review_service import ReviewService
from app.services.sealing_service import SealingService, SealResult
from app.services.session_store import SessionStore
from app.services.verification_service import VerificationResult, VerificationService
from app.utils.exceptions import (
    CollaboratorTimeout, InvalidStateError, SealingError, SessionExpired,
    SessionNotFound, TransitionConflict, ValidationFailed,
)
from app.utils.logging import get_logger
from app.utils.timeouts import call_with_timeout
from app.utils.validators import mask_email, mask_identifier, mask_phone

LOGGER = get_logger(__name__)

MAX_SIGNATURE_REF_LENGTH = 2048

# What the signer has to do next, per state
_GATES = {
    SessionState.UNVERIFIED: ("identity", "Please verify your identity first"),
    SessionState.BLOCKED: ("identity_locked", "This signing request is locked after too many failed identity checks"),
    SessionState.CONTACT_PENDING: ("contact", "Please confirm your contact details first"),
    SessionState.CONTACT_CHALLENGED: ("contact", "Please enter the code sent to confirm your contact details"),
    SessionState.REVIEW_PENDING: ("review", "Please review the documents, accept the consents and sign first"),
    SessionState.SIGNING_PENDING: ("signing_otp", "Please request a code to confirm your signature"),
    SessionState.SIGNING_CHALLENGED: ("signing_otp", "Please enter the code sent to confirm your signature"),
    SessionState.FINALIZING: ("finalizing", "Your signature is being finalised"),
    SessionState.COMPLETED: ("completed", "This envelope has already been signed"),
}


@dataclass
class ChallengeIssued:
    session: SigningSession
    challenge: OtpChallenge
    delivered: bool


@dataclass
class CodeCheck:
    session: SigningSession
    verification: OtpVerification


@dataclass
class IdentityCheck:
    session: SigningSession
    result: VerificationResult


class SigningOrchestrator:
    def __init__(
        self,
        store: SessionStore,
        directory: CustomerDirectory,
        verification: VerificationService,
        otp: OtpService,
        review: ReviewService,
        sealer: SealingService,
        audit: AuditService,
        scanner: Optional[OCRService] = None,
        session_ttl: timedelta = timedelta(hours=72),
        sealing_timeout: float = 30.0,
        finalization_lease: timedelta = timedelta(seconds=120),
    ):
        self.store = store
        self.directory = directory
        self.verification = verification
        self.otp = otp
        self.review = review
        self.sealer = sealer
        self.audit = audit
        self.scanner = scanner
        self.session_ttl = session_ttl
        self.sealing_timeout = sealing_timeout
        self.finalization_lease = finalization_lease

    # ─── Dispatch & resolution ───────────────────────────────────────

    def open_session(
        self,
        envelope_ref: str,
        customer_ref: str,
        documents: Iterable[ReviewDocument],
        consents: Iterable[ReviewConsent] = (),
        expires_at: Optional[datetime] = None,
    ) -> SigningSession:
        """Create the signing session for a dispatched envelope."""
        documents = list(documents)
        consents = list(consents)
        if not documents:
            raise ValidationFailed("An envelope needs at least one document")
        if len({d.document_id for d in documents}) != len(documents):
            raise ValidationFailed("Document ids must be unique within an envelope")
        if len({c.consent_id for c in consents}) != len(consents):
            raise ValidationFailed("Consent ids must be unique within an envelope")

        identity = self.directory.get_identity(customer_ref)
        now = self.store.now()
        expires_at = expires_at or now + self.session_ttl
        if expires_at <= now:
            raise ValidationFailed("Expiry must be in the future")

        session = self.store.create(
            envelope_ref=envelope_ref,
            customer_ref=customer_ref,
            signer_kind=identity.kind,
            documents=documents,
            consents=consents,
            expires_at=expires_at,
        )
        self.audit.log(
            session, "SESSION_CREATED", f"Envelope {envelope_ref} dispatched for signing",
            payload={"envelope_ref": envelope_ref, "documents": [d.document_id for d in documents]},
        )
        return session

    def resolve(self, token: str, client: Optional[ClientInfo] = None) -> SigningSession:
        """Resolve a signing link. The token is the sole credential."""
        session = self.store.get(token)
        self.audit.log(
            session, "SESSION_ACCESSED", "Signer opened the signing link",
            payload={"state": session.state.value}, client=client,
        )
        return session

    def prefilled_contact(self, session: SigningSession) -> Dict[str, Optional[str]]:
        """Masked contact details on file, shown for re-verification."""
        identity = self.directory.get_identity(session.customer_ref)
        return {
            "display_name": identity.display_name,
            "email": mask_email(identity.email) if identity.email else None,
            "phone": mask_phone(identity.phone) if identity.phone else None,
        }

    # ─── Identity verification ───────────────────────────────────────

    def verify_identity(
        self,
        token: str,
        method: VerificationMethod,
        claimed: Optional[Dict[str, str]] = None,
        assertion: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> IdentityCheck:
        session = self.store.get(token)
        self._require(session, SessionState.UNVERIFIED)

        if method == VerificationMethod.MANUAL:
            decision = self.verification.evaluate_manual(session, claimed or {})
        elif method == VerificationMethod.TRUSTED_ASSERTION:
            decision = self.verification.evaluate_assertion(session, assertion or "")
        else:
            raise ValidationFailed("Document scans must be uploaded to the scan endpoint")
        return self._record_identity_attempt(token, decision, client)

    def verify_identity_scan(
        self,
        token: str,
        document: bytes,
        document_type: str,
        selfie: Optional[bytes] = None,
        selfie_type: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> IdentityCheck:
        session = self.store.get(token)
        self._require(session, SessionState.UNVERIFIED)
        if not document:
            raise ValidationFailed("Empty document uploaded")
        if self.scanner is None:
            raise ValidationFailed("Document scanning is not enabled", error_code="SCAN_UNAVAILABLE")

        scan: ScanResult = self.scanner.scan(document, document_type, selfie, selfie_type)
        decision = self.verification.evaluate_scan(session, scan)
        return self._record_identity_attempt(token, decision, client)

    def _record_identity_attempt(self, token, decision, client) -> IdentityCheck:
        now = self.store.now()
        updated = self._advance(
            token, SessionState.UNVERIFIED,
            lambda s: self.verification.record_attempt(s, decision, now),
            client,
        )
        result = self.verification.result_for(updated)
        record = updated.verification

        if record.outcome == VerificationOutcome.PASSED:
            action, description = "IDENTITY_VERIFIED", f"Identity verified using {decision.method.value}"
        elif record.outcome == VerificationOutcome.FAILED:
            action, description = "IDENTITY_BLOCKED", "Identity verification attempts exhausted"
            LOGGER.warning("Session %s… blocked after %d identity attempts", token[:8], record.attempts)
        else:
            action, description = "IDENTITY_REJECTED", "Identity verification failed - details do not match"

        payload = {"method": decision.method.value, "attempt": record.attempts, "reason": decision.reason}
        if decision.face_match_score is not None:
            payload["face_match_score"] = decision.face_match_score
        self.audit.log(updated, action, description, payload=payload, client=client)
        return IdentityCheck(updated, result)

    # ─── Contact re-verification ─────────────────────────────────────

    def issue_contact_challenge(
        self, token: str, channel: Channel, destination: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> ChallengeIssued:
        session = self.store.get(token)
        self._require(session, SessionState.CONTACT_PENDING, SessionState.CONTACT_CHALLENGED)
        if not destination:
            destination = self._directory_destination(session, channel)
        destination = self.otp.normalize_destination(channel, destination)
        return self._issue(token, session.state, ChallengePurpose.CONTACT, channel, destination, client)

    def verify_contact_code(self, token: str, code: str, client: Optional[ClientInfo] = None) -> CodeCheck:
        return self._verify_code(
            token, ChallengePurpose.CONTACT, code,
            pending=SessionState.CONTACT_PENDING, challenged=SessionState.CONTACT_CHALLENGED,
            client=client,
        )

    # ─── Envelope review ─────────────────────────────────────────────

    def confirm_document(self, token: str, document_id: str, client: Optional[ClientInfo] = None) -> SigningSession:
        session = self.store.get(token)
        self._require(session, SessionState.REVIEW_PENDING)
        if self.review.find_document(session, document_id).confirmed:
            return session

        now = self.store.now()
        updated = self._advance(
            token, SessionState.REVIEW_PENDING,
            lambda s: self.review.confirm_document(s, document_id, now),
            client,
        )
        self.audit.log(
            updated, "DOCUMENT_CONFIRMED", f"Document {document_id} confirmed as read",
            payload={"document_id": document_id}, client=client,
        )
        return updated

    def set_consent(
        self, token: str, consent_id: str, accepted: bool, client: Optional[ClientInfo] = None,
    ) -> SigningSession:
        session = self.store.get(token)
        self._require(session, SessionState.REVIEW_PENDING)
        if self.review.find_consent(session, consent_id).accepted == bool(accepted):
            return session

        now = self.store.now()
        updated = self._advance(
            token, SessionState.REVIEW_PENDING,
            lambda s: self.review.set_consent(s, consent_id, accepted, now),
            client,
        )
        self.audit.log(
            updated, "CONSENT_UPDATED",
            f"Consent {consent_id} {'accepted' if accepted else 'withdrawn'}",
            payload={"consent_id": consent_id, "accepted": bool(accepted)}, client=client,
        )
        return updated

    def capture_signature(
        self, token: str, method: SignatureMethod, artifact_ref: str, client: Optional[ClientInfo] = None,
    ) -> SigningSession:
        artifact_ref = (artifact_ref or "").strip()
        if not artifact_ref:
            raise ValidationFailed("Signature is empty")
        if len(artifact_ref) > MAX_SIGNATURE_REF_LENGTH:
            raise ValidationFailed("Signature reference is too long; upload the image and send its reference")

        session = self.store.get(token)
        self._require(session, SessionState.REVIEW_PENDING)
        now = self.store.now()

        def capture(s: SigningSession) -> None:
            s.signature = SignatureCapture(method=method, artifact_ref=artifact_ref, captured_at=now)

        updated = self._advance(token, SessionState.REVIEW_PENDING, capture, client)
        self.audit.log(
            updated, "SIGNATURE_CAPTURED", f"Signature captured ({method.value.lower()})",
            payload={"method": method.value}, client=client,
        )
        return updated

    def readiness(self, token: str) -> Dict:
        session = self.store.get(token)
        missing = self.review.missing_gates(session)
        return {
            "state": session.state,
            "ready_for_signature": self.review.is_ready_for_signature(session),
            "documents_confirmed": session.review.all_documents_confirmed,
            "consents_accepted": session.review.all_required_consents_accepted,
            "signature_captured": session.signature is not None,
            "missing": missing,
        }

    def submit_for_signing(self, token: str, client: Optional[ClientInfo] = None) -> SigningSession:
        """REVIEW_PENDING → SIGNING_PENDING once documents, consents and signature are in."""
        session = self.store.get(token)
        self._require(session, SessionState.REVIEW_PENDING)
        self._check_review_complete(session)
        now = self.store.now()

        def submit(s: SigningSession) -> None:
            self._check_review_complete(s)
            s.review.submitted_at = now

        updated = self._advance(token, SessionState.REVIEW_PENDING, submit, client)
        self.audit.log(
            updated, "REVIEW_SUBMITTED", "Documents reviewed, consents accepted and signature captured",
            payload={
                "documents": [d.document_id for d in updated.review.documents],
                "consents": [c.consent_id for c in updated.review.consents if c.accepted],
            },
            client=client,
        )
        return updated

    def _check_review_complete(self, session: SigningSession) -> None:
        missing = self.review.missing_gates(session)
        if not missing:
            return
        labels = {
            "documents": "confirm every document",
            "consents": "accept all required consents",
            "signature": "provide your signature",
        }
        raise InvalidStateError(
            f"Please {', '.join(labels[g] for g in missing)} before signing",
            error_code="REVIEW_INCOMPLETE",
            gate=missing[0],
        )

    # ─── Signing authorisation ───────────────────────────────────────

    def issue_signing_challenge(
        self, token: str, channel: Channel, client: Optional[ClientInfo] = None,
    ) -> ChallengeIssued:
        session = self.store.get(token)
        self._require(session, SessionState.SIGNING_PENDING, SessionState.SIGNING_CHALLENGED)

        contact = session.contact_challenge
        if contact is not None and contact.channel == channel:
            destination = contact.destination
        else:
            destination = self.otp.normalize_destination(channel, self._directory_destination(session, channel))
        return self._issue(token, session.state, ChallengePurpose.SIGNING, channel, destination, client)

    def verify_signing_code(self, token: str, code: str, client: Optional[ClientInfo] = None) -> CodeCheck:
        return self._verify_code(
            token, ChallengePurpose.SIGNING, code,
            pending=SessionState.SIGNING_PENDING, challenged=SessionState.SIGNING_CHALLENGED,
            client=client,
        )

    # ─── Finalisation ────────────────────────────────────────────────

    def complete_signing(self, token: str, client: Optional[ClientInfo] = None) -> SigningResult:
        """Seal the envelope and persist the evidence record.

        Re-entering on a COMPLETED session returns the stored result without
        sealing again.
        """
        session = self.store.get(token)
        if session.state == SessionState.COMPLETED:
            LOGGER.info("Completion replay for session %s…, returning stored result", token[:8])
            return session.result
        self._require(session, SessionState.FINALIZING)

        if session.result is None:
            session = self._seal(session, client)

        evidence = self._build_evidence(session)
        evidence_id = self.audit.record_evidence(evidence)

        def complete(s: SigningSession) -> None:
            s.result.evidence_id = evidence_id
            s.finalization = None

        try:
            session = self._advance(token, SessionState.FINALIZING, complete, client)
        except TransitionConflict:
            current = self.store.get(token)
            if current.state == SessionState.COMPLETED:
                return current.result
            raise

        self.audit.log(
            session, "SIGNING_COMPLETED", "Document signed and sealed",
            payload={
                "document_hash": session.result.document_hash,
                "signed_document_ref": session.result.signed_document_ref,
                "evidence_id": evidence_id,
            },
            client=client,
        )
        LOGGER.info("Envelope %s signed (session %s…)", session.envelope_ref, token[:8])
        return session.result

    def _seal(self, session: SigningSession, client: Optional[ClientInfo]) -> SigningSession:
        token = session.token
        now = self.store.now()
        attempt_id = uuid.uuid4().hex
        already_sealed: List[bool] = []

        def claim(s: SigningSession) -> None:
            if s.result is not None:
                already_sealed.append(True)
                return
            lease = s.finalization
            if lease is not None and now < lease.started_at + self.finalization_lease:
                raise TransitionConflict("Your signature is already being finalised. Please wait.")
            s.finalization = FinalizationLease(attempt_id=attempt_id, started_at=now)

        session = self._advance(token, SessionState.FINALIZING, claim, client)
        if already_sealed:
            return session
        facts = self._evidence_facts(session)

        try:
            sealed: SealResult = call_with_timeout(
                self.sealer.seal, self.sealing_timeout,
                session.envelope_ref, session.signature.artifact_ref, facts,
            )
        except CollaboratorTimeout as e:
            # The seal may still land; the lease stays held until it goes stale
            LOGGER.error("Sealing timed out for envelope %s: %s", session.envelope_ref, e)
            self.audit.log(
                session, "SEALING_FAILED", "Signing service did not answer in time",
                payload={"attempt_id": attempt_id, "timeout": True},
                client=client,
            )
            raise
        except Exception as e:
            LOGGER.error("Sealing failed for envelope %s: %s", session.envelope_ref, e)

            def release(s: SigningSession) -> None:
                # The signer re-enters the signing gate with a fresh code
                s.signing_challenge = None
                s.finalization = None

            reverted = self._advance(token, SessionState.FINALIZING, release, client)
            self.audit.log(
                reverted, "SEALING_FAILED", "Signing service did not seal the document",
                payload={"attempt_id": attempt_id, "timeout": False},
                client=client,
            )
            raise SealingError(
                "An error occurred while sealing your signature. Please request a new code and try again."
            ) from e

        def store_result(s: SigningSession) -> None:
            if s.finalization is None or s.finalization.attempt_id != attempt_id:
                raise TransitionConflict("Finalisation was taken over by another request")
            s.result = SigningResult(
                signed_document_ref=sealed.signed_document_ref,
                audit_trail_ref=sealed.audit_trail_ref,
                document_hash=sealed.document_hash,
                sealed_at=sealed.sealed_at,
            )

        return self._advance(token, SessionState.FINALIZING, store_result, client)

    def _evidence_facts(self, session: SigningSession) -> Dict:
        identity = self.directory.get_identity(session.customer_ref)
        record = session.verification
        signing = session.signing_challenge
        if identity.national_id:
            identifier = identity.national_id
        else:
            identifier = identity.registration_number or identity.tin
        return {
            "token": session.token,
            "short_code": session.short_code,
            "envelope_ref": session.envelope_ref,
            "documents": [
                {
                    "document_id": d.document_id,
                    "title": d.title,
                    "confirmed_at": d.confirmed_at.isoformat() if d.confirmed_at else None,
                }
                for d in session.review.documents
            ],
            "consents": [
                {"consent_id": c.consent_id, "required": c.required, "accepted": c.accepted}
                for c in session.review.consents
            ],
            "signer": {
                "kind": session.signer_kind.value,
                "display_name": identity.display_name,
                "identifier": mask_identifier(identifier),
                "verification_method": record.method.value if record else None,
                "verified_at": record.verified_at.isoformat() if record and record.verified_at else None,
            },
            "otp_channel": signing.channel.value if signing else None,
            "otp_destination": signing.masked_destination if signing else None,
            "otp_verified": session.signing_otp_verified,
            "signature_method": session.signature.method.value if session.signature else None,
            "ip_address": session.client.ip_address,
            "user_agent": session.client.user_agent,
        }

    def _build_evidence(self, session: SigningSession) -> Dict:
        evidence = self._evidence_facts(session)
        result = session.result
        evidence.update({
            "document_hash": result.document_hash,
            "signed_document_ref": result.signed_document_ref,
            "audit_trail_ref": result.audit_trail_ref,
            "sealed_at": result.sealed_at.isoformat(),
        })
        return evidence

    # ─── Public verification & housekeeping ──────────────────────────

    def lookup(self, short_code: str) -> Dict:
        """Public facts about a completed signing, by verification code."""
        record = self.audit.find_by_short_code(short_code or "")
        if record is None:
            raise ValidationFailed("Document not found", error_code="UNKNOWN_CODE")
        return {
            "verification_code": record.short_code,
            "envelope_ref": record.envelope_ref,
            "document_hash": record.document_hash,
            "sealed_at": record.sealed_at,
            "signer_name": (record.signer or {}).get("display_name"),
            "verification_method": (record.signer or {}).get("verification_method"),
            "signature_method": record.signature_method,
            "otp_verified": record.otp_verified,
        }

    def evidence(self, token: str) -> Dict:
        """Evidence trail of a signing link with its chain integrity check.

        Works after the session row has been purged; the trail is kept.
        """
        events = self.audit.get_trail(token)
        if not events:
            raise SessionNotFound("No evidence recorded for this signing link")
        return {
            "events": events,
            "chain": self.audit.verify_chain(token),
            "record": self.audit.get_evidence(token),
        }

    def sweep(self) -> Dict[str, int]:
        """Label lapsed sessions EXPIRED and purge archived ones."""
        return {"expired": self.store.mark_expired(), "purged": self.store.purge()}

    # ─── Internals ───────────────────────────────────────────────────

    def _advance(
        self,
        token: str,
        expected: SessionState,
        mutator: Callable[[SigningSession], None],
        client: Optional[ClientInfo] = None,
    ) -> SigningSession:
        def apply(session: SigningSession) -> None:
            mutator(session)
            if client is not None and (client.ip_address or client.user_agent):
                session.client = client

        return self.store.transition(token, expected, apply)

    @staticmethod
    def _require(session: SigningSession, *states: SessionState) -> None:
        if session.state in states:
            return
        if session.state == SessionState.EXPIRED:
            raise SessionExpired()
        gate, message = _GATES[session.state]
        error_code = "BLOCKED" if session.state == SessionState.BLOCKED else "INVALID_STATE"
        raise InvalidStateError(message, error_code=error_code, gate=gate)

    def _directory_destination(self, session: SigningSession, channel: Channel) -> str:
        identity = self.directory.get_identity(session.customer_ref)
        destination = identity.phone if channel == Channel.SMS else identity.email
        if not destination:
            raise ValidationFailed(f"No {channel.value.lower()} contact on file; please provide one")
        return destination

    def _issue(
        self,
        token: str,
        expected: SessionState,
        purpose: ChallengePurpose,
        channel: Channel,
        destination: str,
        client: Optional[ClientInfo],
    ) -> ChallengeIssued:
        code = self.otp.new_code()
        now = self.store.now()
        issued: List[OtpChallenge] = []

        def issue(s: SigningSession) -> None:
            issued.append(self.otp.issue(s, purpose, channel, destination, code, now))

        updated = self._advance(token, expected, issue, client)
        challenge = issued[-1]

        # Delivery outcome is informational: the stored challenge stays valid
        delivered = self.otp.deliver(challenge, code)
        self.audit.log(
            updated, "OTP_ISSUED",
            f"{purpose.value.title()} code requested via {channel.value} to {challenge.masked_destination}",
            payload={
                "purpose": purpose.value,
                "channel": channel.value,
                "destination": challenge.masked_destination,
                "issue_count": challenge.issue_count,
                "delivered": delivered,
            },
            client=client,
        )
        return ChallengeIssued(updated, challenge, delivered)

    def _verify_code(
        self,
        token: str,
        purpose: ChallengePurpose,
        code: str,
        pending: SessionState,
        challenged: SessionState,
        client: Optional[ClientInfo],
    ) -> CodeCheck:
        session = self.store.get(token)
        challenge = session.challenge_for(purpose)
        if session.state == pending and challenge is not None:
            settled = self.otp.settled_result(challenge)
            if settled is not None and not settled.verified:
                return CodeCheck(session, settled)
        self._require(session, challenged)
        code = self.otp.check_format(code)

        now = self.store.now()
        outcome: List[OtpVerification] = []

        def verify(s: SigningSession) -> None:
            outcome.append(self.otp.verify(s, purpose, code, now))

        updated = self._advance(token, challenged, verify, client)
        result = outcome[-1]

        if result.verified:
            action, description = "OTP_VERIFIED", f"{purpose.value.title()} code verified"
        else:
            action, description = "OTP_REJECTED", f"{purpose.value.title()} code rejected ({result.status.lower()})"
        self.audit.log(
            updated, action, description,
            payload={"purpose": purpose.value, "status": result.status, "remaining_attempts": result.remaining_attempts},
            client=client,
        )
        return CodeCheck(updated, result)
