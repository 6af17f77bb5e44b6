"""
Audit Service — Manages the immutable, hash-chained evidence trail and the
final evidence record of each completed signing.
"""
from datetime import datetime
from typing import Optional, Dict, List

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.models.audit import EvidenceEvent, EvidenceRecord
from app.schemas.records import ClientInfo, SigningSession
from app.utils.exceptions import EvidencePersistError
from app.utils.hashing import generate_hash, generate_chain_hash
from app.utils.logging import get_logger
from app.utils.timeouts import utcnow

LOGGER = get_logger(__name__)

APPEND_RETRIES = 5


class AuditService:
    """Append-only evidence sink with hash chaining per signing token."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def log(
        self,
        session: SigningSession,
        action: str,
        description: str = "",
        payload: Optional[Dict] = None,
        client: Optional[ClientInfo] = None,
    ) -> EvidenceEvent:
        """Create an evidence event with hash chaining.

        Args:
            session: Signing session the event belongs to.
            action: Action identifier (e.g. OTP_ISSUED, CONSENT_UPDATED).
            description: Human-readable description for the audit trail.
            payload: Data payload to hash. Must not contain secrets.
            client: Client IP / user agent of the request.

        Returns:
            The created EvidenceEvent entry.
        """
        client = client or session.client
        payload_data = payload or {}

        for _ in range(APPEND_RETRIES):
            with self._session_factory() as db:
                # Get the hash of the last entry for this session (chain linking)
                last_entry = (
                    db.query(EvidenceEvent)
                    .filter(EvidenceEvent.token == session.token)
                    .order_by(EvidenceEvent.sequence.desc())
                    .first()
                )
                previous_hash = last_entry.payload_hash if last_entry else ""
                chain_hash = generate_chain_hash(payload_data, previous_hash)

                entry = EvidenceEvent(
                    token=session.token,
                    sequence=last_entry.sequence + 1 if last_entry else 1,
                    action=action,
                    description=description[:256],
                    payload_hash=chain_hash,
                    previous_hash=previous_hash,
                    ip_address=client.ip_address,
                    user_agent=(client.user_agent or "")[:256] or None,
                    identity_verified=session.identity_verified,
                    otp_verified=session.signing_otp_verified,
                    event_metadata=payload_data,
                    timestamp=utcnow(),
                )
                db.add(entry)
                try:
                    db.commit()
                except IntegrityError:
                    # Another request appended at this position first
                    db.rollback()
                    continue
                db.refresh(entry)
                db.expunge(entry)
                return entry

        LOGGER.error("Evidence event %s for session %s… lost the chain race %d times",
                     action, session.token[:8], APPEND_RETRIES)
        raise EvidencePersistError("The evidence trail is busy. Please retry.")

    def record_evidence(self, evidence: Dict) -> int:
        """Durably store the final evidence record. Returns its id.

        Idempotent per token: a retry after a lost acknowledgement returns the
        id of the record that was already written.

        Raises:
            EvidencePersistError: If the record could not be written.
        """
        record_hash = generate_hash(evidence)
        try:
            with self._session_factory() as db:
                existing = db.query(EvidenceRecord).filter(EvidenceRecord.token == evidence["token"]).first()
                if existing is not None:
                    return existing.id

                record = EvidenceRecord(
                    token=evidence["token"],
                    short_code=evidence["short_code"],
                    envelope_ref=evidence["envelope_ref"],
                    document_hash=evidence["document_hash"],
                    signed_document_ref=evidence["signed_document_ref"],
                    audit_trail_ref=evidence["audit_trail_ref"],
                    sealed_at=datetime.fromisoformat(evidence["sealed_at"]),
                    signer=evidence.get("signer", {}),
                    otp_channel=evidence.get("otp_channel"),
                    otp_destination=evidence.get("otp_destination"),
                    otp_verified=bool(evidence.get("otp_verified")),
                    consents=evidence.get("consents", []),
                    documents=evidence.get("documents", []),
                    signature_method=evidence.get("signature_method"),
                    ip_address=evidence.get("ip_address"),
                    user_agent=(evidence.get("user_agent") or "")[:256] or None,
                    record_hash=record_hash,
                    created_at=utcnow(),
                )
                db.add(record)
                db.commit()
                return record.id
        except SQLAlchemyError as e:
            LOGGER.error("Evidence record for envelope %s could not be stored: %s", evidence.get("envelope_ref"), e)
            raise EvidencePersistError() from e

    def get_evidence(self, token: str) -> Optional[EvidenceRecord]:
        with self._session_factory() as db:
            record = db.query(EvidenceRecord).filter(EvidenceRecord.token == token).first()
            if record is not None:
                db.expunge(record)
            return record

    def find_by_short_code(self, short_code: str) -> Optional[EvidenceRecord]:
        with self._session_factory() as db:
            record = (
                db.query(EvidenceRecord)
                .filter(EvidenceRecord.short_code == short_code.strip().upper())
                .first()
            )
            if record is not None:
                db.expunge(record)
            return record

    def get_trail(self, token: str) -> List[EvidenceEvent]:
        """Get the full evidence trail for a session, ordered chronologically."""
        with self._session_factory() as db:
            entries = (
                db.query(EvidenceEvent)
                .filter(EvidenceEvent.token == token)
                .order_by(EvidenceEvent.sequence.asc())
                .all()
            )
            for entry in entries:
                db.expunge(entry)
            return entries

    def verify_chain(self, token: str) -> dict:
        """Verify the integrity of the evidence chain for a session.

        Returns:
            dict with 'valid' (bool), 'total_entries', and 'broken_at' (if invalid).
        """
        entries = self.get_trail(token)

        if not entries:
            return {"valid": True, "total_entries": 0, "broken_at": None}

        for i, entry in enumerate(entries):
            expected_prev = entries[i - 1].payload_hash if i > 0 else ""
            recomputed = generate_chain_hash(entry.event_metadata or {}, expected_prev)
            if entry.previous_hash != expected_prev or entry.payload_hash != recomputed:
                return {
                    "valid": False,
                    "total_entries": len(entries),
                    "broken_at": entry.id,
                    "message": f"Chain broken at entry {entry.id} ({entry.action})",
                }

        return {"valid": True, "total_entries": len(entries), "broken_at": None}
