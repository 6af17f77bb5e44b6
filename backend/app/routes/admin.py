"""
Admin Routes — Evidence trail access and session housekeeping.
"""
from fastapi import APIRouter, Depends

from app.dependencies import get_orchestrator, require_internal_key
from app.schemas.schemas import EvidenceEventEntry, EvidenceResponse, SweepResponse
from app.services.signing_orchestrator import SigningOrchestrator

router = APIRouter(prefix="/api/admin", tags=["Admin"], dependencies=[Depends(require_internal_key)])


@router.get("/sessions/{token}/evidence", response_model=EvidenceResponse)
def get_evidence(token: str, engine: SigningOrchestrator = Depends(get_orchestrator)):
    """Full evidence trail for a signing link, with chain integrity check."""
    evidence = engine.evidence(token)

    record = evidence["record"]
    record_data = None
    if record is not None:
        record_data = {
            "id": record.id,
            "envelope_ref": record.envelope_ref,
            "document_hash": record.document_hash,
            "signed_document_ref": record.signed_document_ref,
            "audit_trail_ref": record.audit_trail_ref,
            "sealed_at": record.sealed_at.isoformat(),
            "signer": record.signer,
            "otp_channel": record.otp_channel,
            "otp_destination": record.otp_destination,
            "otp_verified": record.otp_verified,
            "consents": record.consents,
            "signature_method": record.signature_method,
            "ip_address": record.ip_address,
            "record_hash": record.record_hash,
        }

    return EvidenceResponse(
        token=token,
        chain=evidence["chain"],
        events=[EvidenceEventEntry.model_validate(e) for e in evidence["events"]],
        evidence_record=record_data,
    )


@router.post("/purge", response_model=SweepResponse)
def purge_sessions(engine: SigningOrchestrator = Depends(get_orchestrator)):
    """Mark lapsed sessions EXPIRED and purge archived ones."""
    return SweepResponse(**engine.sweep())
