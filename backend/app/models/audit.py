"""
Evidence Models — Immutable, tamper-evident signing evidence.
Every workflow event is SHA-256 hashed, chained and timestamped; the final
evidence record is written once per completed signing.

Neither table references `signing_sessions`: session rows are purged after
the audit grace window, evidence is kept.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON, Boolean, UniqueConstraint

from app.database import Base


class EvidenceEvent(Base):
    __tablename__ = "evidence_events"
    # One writer per chain position; a losing append re-reads the tail
    __table_args__ = (UniqueConstraint("token", "sequence", name="uq_evidence_events_token_sequence"),)

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    token = Column(String(64), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)  # 1-based position in the token's chain

    action = Column(String(40), nullable=False)
    # Actions: SESSION_CREATED, SESSION_ACCESSED, IDENTITY_VERIFIED, IDENTITY_REJECTED,
    #          IDENTITY_BLOCKED, OTP_ISSUED, OTP_VERIFIED, OTP_REJECTED,
    #          DOCUMENT_CONFIRMED, CONSENT_UPDATED, SIGNATURE_CAPTURED,
    #          REVIEW_SUBMITTED, SEALING_FAILED, SIGNING_COMPLETED
    description = Column(String(256))

    payload_hash = Column(String(64))       # Chain hash of the action payload
    previous_hash = Column(String(64))      # Hash chain for tamper detection

    ip_address = Column(String(45))
    user_agent = Column(String(256))

    identity_verified = Column(Boolean, default=False)
    otp_verified = Column(Boolean, default=False)

    event_metadata = Column(JSON, default=dict)
    timestamp = Column(DateTime, default=datetime.utcnow)


class EvidenceRecord(Base):
    """Final signing evidence: what was signed, when, by whom and how."""

    __tablename__ = "evidence_records"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    token = Column(String(64), nullable=False, unique=True, index=True)
    short_code = Column(String(8), nullable=False, index=True)
    envelope_ref = Column(String(64), nullable=False)

    document_hash = Column(String(64), nullable=False)
    signed_document_ref = Column(String(256), nullable=False)
    audit_trail_ref = Column(String(256), nullable=False)
    sealed_at = Column(DateTime, nullable=False)

    signer = Column(JSON, default=dict)        # kind, method, display name, masked id
    otp_channel = Column(String(8))
    otp_destination = Column(String(128))      # masked
    otp_verified = Column(Boolean, default=False)
    consents = Column(JSON, default=list)
    documents = Column(JSON, default=list)
    signature_method = Column(String(16))

    ip_address = Column(String(45))
    user_agent = Column(String(256))

    record_hash = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
