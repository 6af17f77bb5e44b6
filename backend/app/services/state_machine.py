"""
Workflow State Derivation — computes a session's state from its sub-records.

The stored state label is always the output of `derive_state`; workflow code
changes sub-records and the label follows, so the two cannot drift apart.
"""
from datetime import datetime

from app.schemas.records import (
    ChallengeOutcome, SessionState, SigningSession, VerificationOutcome,
)

_RESTARTABLE = (ChallengeOutcome.EXHAUSTED, ChallengeOutcome.EXPIRED)


def is_expired(session: SigningSession, now: datetime) -> bool:
    """Expired at or after `expires_at` (the boundary instant counts as expired)."""
    return now >= session.expires_at


def derive_state(session: SigningSession, now: datetime) -> SessionState:
    """Derive the workflow state from the session's sub-records."""
    completed = session.result is not None and session.result.evidence_id is not None
    verification = session.verification
    blocked = verification is not None and verification.outcome == VerificationOutcome.FAILED

    if completed:
        return SessionState.COMPLETED
    if blocked:
        return SessionState.BLOCKED
    if is_expired(session, now):
        return SessionState.EXPIRED

    if verification is None or verification.outcome != VerificationOutcome.PASSED:
        return SessionState.UNVERIFIED

    contact = session.contact_challenge
    if contact is None or contact.outcome in _RESTARTABLE:
        return SessionState.CONTACT_PENDING
    if contact.outcome == ChallengeOutcome.PENDING:
        return SessionState.CONTACT_CHALLENGED

    if session.review.submitted_at is None:
        return SessionState.REVIEW_PENDING

    signing = session.signing_challenge
    if signing is None or signing.outcome in _RESTARTABLE:
        return SessionState.SIGNING_PENDING
    if signing.outcome == ChallengeOutcome.PENDING:
        return SessionState.SIGNING_CHALLENGED

    return SessionState.FINALIZING
