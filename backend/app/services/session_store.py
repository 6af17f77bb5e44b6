"""
Session Store — authoritative container for signing sessions.

`transition` is the only mutation path. It re-reads the row, checks expiry
and the caller's expected state, applies the mutator to the sub-records,
re-derives the state and commits with a version-checked UPDATE. A writer that
lost the race gets TransitionConflict and must re-fetch before retrying.
"""
import secrets
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.models.signing_session import SessionRecord
from app.schemas.records import (
    EnvelopeReviewState, ReviewConsent, ReviewDocument, SessionState,
    SignerKind, SigningSession, TERMINAL_STATES,
)
from app.services.state_machine import derive_state, is_expired
from app.utils.exceptions import SessionExpired, SessionNotFound, TransitionConflict
from app.utils.logging import get_logger
from app.utils.timeouts import utcnow

LOGGER = get_logger(__name__)

SHORT_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
_JSON_FIELDS = ("verification", "contact_challenge", "signing_challenge", "signature", "finalization", "result")

Mutator = Callable[[SigningSession], None]


def generate_token() -> str:
    return secrets.token_urlsafe(32)


def generate_short_code(length: int = 8) -> str:
    return "".join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(length))


class SessionStore:
    """SQLAlchemy-backed store with optimistic concurrency per token."""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = utcnow,
        audit_grace: timedelta = timedelta(days=30),
    ):
        self._session_factory = session_factory
        self._clock = clock
        self._audit_grace = audit_grace

    def now(self) -> datetime:
        return self._clock()

    # ─── Creation ────────────────────────────────────────────────────

    def create(
        self,
        envelope_ref: str,
        customer_ref: str,
        signer_kind: SignerKind,
        documents: Iterable[ReviewDocument],
        consents: Iterable[ReviewConsent],
        expires_at: datetime,
    ) -> SigningSession:
        """Create a session for a freshly dispatched envelope."""
        now = self.now()
        review = EnvelopeReviewState(documents=list(documents), consents=list(consents))

        for _ in range(5):
            record = SessionRecord(
                token=generate_token(),
                short_code=generate_short_code(),
                envelope_ref=envelope_ref,
                customer_ref=customer_ref,
                signer_kind=SignerKind(signer_kind).value,
                state=SessionState.UNVERIFIED.value,
                review=review.model_dump(mode="json"),
                client={},
                expires_at=expires_at,
                created_at=now,
                last_transition_at=now,
            )
            with self._session_factory() as db:
                db.add(record)
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    LOGGER.warning("Token/short code collision for envelope %s, regenerating", envelope_ref)
                    continue
                session = self._to_domain(record, now)
            LOGGER.info("Signing session created for envelope %s (expires %s)", envelope_ref, expires_at.isoformat())
            return session

        raise RuntimeError("Could not allocate a unique signing token")

    # ─── Reads ───────────────────────────────────────────────────────

    def get(self, token: str) -> SigningSession:
        """Resolve a token. Raises SessionNotFound / SessionExpired."""
        now = self.now()
        with self._session_factory() as db:
            record = self._load(db, token, now)
            session = self._to_domain(record, now)
        if is_expired(session, now):
            raise SessionExpired()
        return session

    # ─── Mutation ────────────────────────────────────────────────────

    def transition(self, token: str, expected_state: SessionState, mutator: Mutator) -> SigningSession:
        """Apply `mutator` atomically if the session is still in `expected_state`."""
        now = self.now()
        with self._session_factory() as db:
            record = self._load(db, token, now)
            session = self._to_domain(record, now)

            if is_expired(session, now):
                raise SessionExpired()
            if session.state != expected_state:
                raise TransitionConflict(
                    f"Session moved to {session.state.value} while expecting {SessionState(expected_state).value}"
                )

            mutator(session)
            session.state = derive_state(session, now)
            session.last_transition_at = now
            self._write(record, session)

            try:
                db.commit()
            except StaleDataError:
                db.rollback()
                LOGGER.info("Concurrent transition rejected for session %s…", token[:8])
                raise TransitionConflict()

        if session.state != expected_state:
            LOGGER.info("Session %s… %s → %s", token[:8], SessionState(expected_state).value, session.state.value)
        return session

    # ─── Housekeeping ────────────────────────────────────────────────

    def mark_expired(self) -> int:
        """Label lapsed non-terminal sessions EXPIRED. Returns the count."""
        now = self.now()
        terminal = [s.value for s in TERMINAL_STATES]
        updated = 0
        with self._session_factory() as db:
            rows = (
                db.query(SessionRecord)
                .filter(SessionRecord.expires_at <= now, SessionRecord.state.notin_(terminal))
                .all()
            )
            for row in rows:
                row.state = SessionState.EXPIRED.value
                row.last_transition_at = now
                updated += 1
            try:
                db.commit()
            except StaleDataError:
                db.rollback()
                raise TransitionConflict("Sessions changed during the expiry sweep")
        return updated

    def purge(self) -> int:
        """Delete terminal sessions whose audit grace window has passed."""
        cutoff = self.now() - self._audit_grace
        terminal = [s.value for s in TERMINAL_STATES]
        with self._session_factory() as db:
            deleted = (
                db.query(SessionRecord)
                .filter(SessionRecord.expires_at <= cutoff, SessionRecord.state.in_(terminal))
                .delete(synchronize_session=False)
            )
            db.commit()
        if deleted:
            LOGGER.info("Purged %d archived signing sessions", deleted)
        return deleted

    # ─── Internals ───────────────────────────────────────────────────

    def _load(self, db: Session, token: str, now: datetime) -> SessionRecord:
        record: Optional[SessionRecord] = db.get(SessionRecord, token) if token else None
        if record is None:
            raise SessionNotFound()
        # Past the archive window a token is indistinguishable from one never issued
        if now >= record.expires_at + self._audit_grace:
            raise SessionNotFound()
        return record

    @staticmethod
    def _to_domain(record: SessionRecord, now: datetime) -> SigningSession:
        data = {
            "token": record.token,
            "short_code": record.short_code,
            "envelope_ref": record.envelope_ref,
            "customer_ref": record.customer_ref,
            "signer_kind": record.signer_kind,
            "state": record.state,
            "review": record.review or {},
            "client": record.client or {},
            "expires_at": record.expires_at,
            "created_at": record.created_at,
            "last_transition_at": record.last_transition_at,
        }
        for field in _JSON_FIELDS:
            data[field] = getattr(record, field)
        session = SigningSession.model_validate(data)
        session.state = derive_state(session, now)
        return session

    @staticmethod
    def _write(record: SessionRecord, session: SigningSession) -> None:
        for field in _JSON_FIELDS:
            value = getattr(session, field)
            setattr(record, field, value.model_dump(mode="json") if value is not None else None)
        record.review = session.review.model_dump(mode="json")
        record.client = session.client.model_dump(mode="json")
        record.state = session.state.value
        record.last_transition_at = session.last_transition_at
