"""
Cryptographic Hashing Utilities — SHA-256 payload hashing for the evidence
trail and keyed hashing for one-time codes.
"""
import hashlib
import hmac
import json


def generate_hash(data: dict) -> str:
    """Generate a SHA-256 hash of a dictionary (deterministic, sorted keys)."""
    canonical = json.dumps(data, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(canonical).hexdigest()


def generate_chain_hash(current_data: dict, previous_hash: str = "") -> str:
    """Generate a chain hash: SHA-256(previous_hash + current_payload).
    Creates a tamper-evident linked chain for the evidence trail.
    """
    current_hash = generate_hash(current_data)
    chain_input = f"{previous_hash}{current_hash}".encode("utf-8")
    return hashlib.sha256(chain_input).hexdigest()


def hash_code(code: str, secret: str, salt: str = "") -> str:
    """HMAC-SHA256 of a one-time code, salted with the challenge id."""
    message = f"{salt}:{code.strip()}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def codes_match(submitted_hash: str, stored_hash: str) -> bool:
    """Constant-time comparison of two code hashes."""
    return hmac.compare_digest(submitted_hash, stored_hash)
