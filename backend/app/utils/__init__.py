from app.utils.hashing import generate_hash, generate_chain_hash, hash_code, codes_match
from app.utils.validators import (
    parse_date, normalize_identifier, validate_email, validate_phone,
    mask_email, mask_phone, mask_identifier,
)
from app.utils.timeouts import call_with_timeout, utcnow

__all__ = [
    "generate_hash", "generate_chain_hash", "hash_code", "codes_match",
    "parse_date", "normalize_identifier", "validate_email", "validate_phone",
    "mask_email", "mask_phone", "mask_identifier",
    "call_with_timeout", "utcnow",
]
