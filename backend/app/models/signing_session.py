"""
Signing Session Model — one row per issued signing token.
Maps to the 'signing_sessions' table.

Sub-records (verification, challenges, review progress, signature, result)
live in JSON columns so a workflow transition is a single-row write. The
`version` column is SQLAlchemy's version counter: every UPDATE is issued as
`... WHERE token = ? AND version = ?`, which is what makes concurrent writers
on the same token fail instead of overwriting each other.
"""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, Integer

from app.database import Base


class SessionRecord(Base):
    __tablename__ = "signing_sessions"

    token = Column(String(64), primary_key=True, index=True)
    short_code = Column(String(8), unique=True, index=True, nullable=False)

    envelope_ref = Column(String(64), nullable=False, index=True)
    customer_ref = Column(String(64), nullable=False)
    signer_kind = Column(String(16), nullable=False)   # INDIVIDUAL | BUSINESS

    state = Column(String(24), nullable=False, default="UNVERIFIED", index=True)
    # States: UNVERIFIED → CONTACT_PENDING → CONTACT_CHALLENGED → REVIEW_PENDING →
    #         SIGNING_PENDING → SIGNING_CHALLENGED → FINALIZING → COMPLETED
    #         (BLOCKED, EXPIRED are terminal side exits)

    verification = Column(JSON, nullable=True)
    contact_challenge = Column(JSON, nullable=True)
    signing_challenge = Column(JSON, nullable=True)
    review = Column(JSON, default=dict)
    signature = Column(JSON, nullable=True)
    finalization = Column(JSON, nullable=True)
    result = Column(JSON, nullable=True)
    client = Column(JSON, default=dict)

    version = Column(Integer, nullable=False)

    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    last_transition_at = Column(DateTime, default=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}
