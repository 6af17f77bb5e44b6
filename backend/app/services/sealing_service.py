"""
Sealing Service — applies the signature seal to a signed envelope.
Development implementation: computes the document hash and an HMAC seal
locally. In production this would call the certificate/timestamping service.
"""
import hashlib
import hmac
import uuid
from datetime import datetime
from typing import Dict, Any

from pydantic import BaseModel

from app.utils.hashing import generate_hash
from app.utils.timeouts import utcnow


class SealResult(BaseModel):
    signed_document_ref: str
    audit_trail_ref: str
    document_hash: str
    sealed_at: datetime
    seal: str = ""


class SealingService:
    """Seals envelopes. Only invoked from the FINALIZING step."""

    def __init__(self, secret_key: str, authority: str = "LocalDevSeal"):
        self._secret_key = secret_key.encode("utf-8")
        self.authority = authority

    def seal(self, envelope_ref: str, signature_artifact: str, evidence: Dict[str, Any]) -> SealResult:
        """Seal an envelope.

        Args:
            envelope_ref: Envelope being signed.
            signature_artifact: Opaque reference to the captured signature.
            evidence: Evidence facts collected so far (identity, channel, consents).

        Returns:
            SealResult with the signed document and audit trail references.
        """
        document_hash = generate_hash({
            "envelope_ref": envelope_ref,
            "documents": evidence.get("documents", []),
        })
        seal = hmac.new(
            self._secret_key,
            f"{document_hash}:{signature_artifact}:{generate_hash(evidence)}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

        ref = uuid.uuid4().hex[:12].upper()
        return SealResult(
            signed_document_ref=f"signed/{envelope_ref}/{ref}.pdf",
            audit_trail_ref=f"audit-trails/{envelope_ref}/{ref}.pdf",
            document_hash=document_hash,
            sealed_at=utcnow(),
            seal=seal,
        )
