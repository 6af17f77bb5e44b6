from app.models.signing_session import SessionRecord
from app.models.audit import EvidenceEvent, EvidenceRecord
from app.models.customer import Customer

__all__ = ["SessionRecord", "EvidenceEvent", "EvidenceRecord", "Customer"]
