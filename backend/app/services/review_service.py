"""
Envelope Review Tracker — per-document confirmation and per-consent acceptance.

Readiness is recomputed from the full document and consent lists on every
call; there is no cached "ready" flag to go stale.
"""
from datetime import datetime

from app.schemas.records import EnvelopeReviewState, ReviewConsent, ReviewDocument, SigningSession
from app.utils.exceptions import ValidationFailed


class ReviewService:
    """Mutators and checks over a session's EnvelopeReviewState."""

    @staticmethod
    def find_document(session: SigningSession, document_id: str) -> ReviewDocument:
        for document in session.review.documents:
            if document.document_id == document_id:
                return document
        raise ValidationFailed(f"Document {document_id} is not part of this envelope", error_code="UNKNOWN_DOCUMENT")

    @staticmethod
    def find_consent(session: SigningSession, consent_id: str) -> ReviewConsent:
        for consent in session.review.consents:
            if consent.consent_id == consent_id:
                return consent
        raise ValidationFailed(f"Consent {consent_id} is not part of this envelope", error_code="UNKNOWN_CONSENT")

    def confirm_document(self, session: SigningSession, document_id: str, now: datetime) -> EnvelopeReviewState:
        """Mark a document confirmed. Re-confirming is a no-op."""
        document = self.find_document(session, document_id)
        if not document.confirmed:
            document.confirmed = True
            document.confirmed_at = now
        return session.review

    def set_consent(self, session: SigningSession, consent_id: str, accepted: bool, now: datetime) -> EnvelopeReviewState:
        consent = self.find_consent(session, consent_id)
        consent.accepted = bool(accepted)
        consent.updated_at = now
        return session.review

    @staticmethod
    def is_ready_for_signature(session: SigningSession) -> bool:
        """All documents confirmed AND all required consents accepted."""
        return session.review.is_ready

    @staticmethod
    def missing_gates(session: SigningSession) -> list[str]:
        """Names of the review gates still open, in display order."""
        gates = []
        review = session.review
        if not review.all_documents_confirmed:
            gates.append("documents")
        if not review.all_required_consents_accepted:
            gates.append("consents")
        if session.signature is None:
            gates.append("signature")
        return gates
