"""Trusted identity assertion verification.

A third-party identity provider (e.g. a national eID scheme) hands the signer a
signed JWT. This module checks the signature, expiry, issuer and audience with
PyJWT and returns the asserted attributes. Matching those attributes against
the envelope's signer is the verification engine's job.
"""
from typing import Dict, List, Optional

import jwt

from app.utils.exceptions import AssertionInvalid, ConfigurationError
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Claim names accepted from the identity provider, mapped to engine attribute names
CLAIM_MAP = {
    "national_id": "national_id",
    "nationalId": "national_id",
    "date_of_birth": "date_of_birth",
    "birthdate": "date_of_birth",
    "dateOfBirth": "date_of_birth",
    "registration_number": "registration_number",
    "registrationNumber": "registration_number",
    "registration_date": "registration_date",
    "tin": "tin",
    "name": "full_name",
}


class AssertionVerifier:
    """Verifies identity assertions issued by a trusted IdP."""

    def __init__(
        self,
        issuer: str,
        audience: str,
        secret: str = "",
        public_key: str = "",
        algorithms: Optional[List[str]] = None,
    ):
        self.issuer = issuer
        self.audience = audience
        self.secret = secret
        self.public_key = public_key
        self.algorithms = algorithms or ["HS256", "RS256"]

    def verify(self, assertion: str) -> Dict[str, str]:
        """Verify an assertion and return the normalised asserted attributes.

        Raises:
            AssertionInvalid: If the signature, expiry, issuer or audience is wrong.
            ConfigurationError: If no verification key is configured.
        """
        if not assertion or not assertion.strip():
            raise AssertionInvalid("Identity assertion is missing")

        try:
            header = jwt.get_unverified_header(assertion)
        except jwt.InvalidTokenError as e:
            raise AssertionInvalid("Identity assertion is malformed") from e

        alg = header.get("alg")
        if alg not in self.algorithms:
            raise AssertionInvalid(f"Unsupported assertion algorithm: {alg}")

        if alg.startswith("HS"):
            key = self.secret
        else:
            key = self.public_key
        if not key:
            raise ConfigurationError(f"No key configured for {alg} identity assertions")

        try:
            payload = jwt.decode(
                assertion,
                key,
                algorithms=[alg],
                audience=self.audience,
                issuer=self.issuer or None,
                options={
                    "verify_exp": True,
                    "verify_iss": bool(self.issuer),
                    "require": ["exp", "iat", "sub"],
                },
            )
        except jwt.ExpiredSignatureError as e:
            LOGGER.warning("Expired identity assertion")
            raise AssertionInvalid("Identity assertion has expired") from e
        except jwt.InvalidIssuerError as e:
            LOGGER.warning("Identity assertion from untrusted issuer")
            raise AssertionInvalid("Identity assertion issuer is not trusted") from e
        except jwt.InvalidSignatureError as e:
            LOGGER.warning("Identity assertion signature mismatch")
            raise AssertionInvalid("Identity assertion signature is invalid") from e
        except jwt.InvalidTokenError as e:
            LOGGER.warning("Invalid identity assertion: %s", e)
            raise AssertionInvalid("Identity assertion could not be verified") from e

        attributes = {"subject": str(payload["sub"])}
        for claim, attribute in CLAIM_MAP.items():
            value = payload.get(claim)
            if value not in (None, ""):
                attributes.setdefault(attribute, str(value))
        return attributes
