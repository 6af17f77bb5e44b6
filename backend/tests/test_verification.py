"""Tests for identity verification: manual details, document scan and eID assertions."""

import time

import jwt
import pytest

from app.schemas.records import SessionState, VerificationMethod, VerificationOutcome
from app.services.assertion_service import AssertionVerifier
from app.utils.exceptions import AssertionInvalid, InvalidStateError, ValidationFailed

from conftest import BUSINESS_REF, IDP_ISSUER, IDP_SECRET


def _assertion(secret: str = IDP_SECRET, **claims) -> str:
    now = int(time.time())
    payload = {
        "sub": "eid-subject-42",
        "iss": IDP_ISSUER,
        "aud": "remote-signing",
        "iat": now - 10,
        "exp": now + 300,
        "name": "Jane Doe",
    }
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


class TestManualVerification:
    def test_individual_details_are_normalised(self, engine, flow) -> None:
        token = flow.dispatch()
        check = engine.verify_identity(
            token, VerificationMethod.MANUAL,
            claimed={"date_of_birth": "12/04/1985", "national_id": " ab-123 456.c "},
        )

        assert check.result.outcome == VerificationOutcome.PASSED
        assert check.session.state == SessionState.CONTACT_PENDING
        record = check.session.verification
        assert record.attempts == 1
        assert record.verified_at is not None
        # Identity numbers are kept masked
        assert "AB123456C" not in record.claimed_attributes["national_id"]

    def test_business_matches_tin_or_registration_number(self, engine, flow) -> None:
        token = flow.dispatch(customer_ref=BUSINESS_REF)
        check = engine.verify_identity(
            token, VerificationMethod.MANUAL,
            claimed={"registration_date": "01.09.2012", "tin": "tin 4455"},
        )
        assert check.result.outcome == VerificationOutcome.PASSED
        assert check.session.state == SessionState.CONTACT_PENDING

    def test_mismatch_counts_attempt_and_hides_expected_values(self, engine, flow) -> None:
        token = flow.dispatch()
        check = engine.verify_identity(
            token, VerificationMethod.MANUAL,
            claimed={"date_of_birth": "1990-01-01", "national_id": "AB123456C"},
        )

        assert check.result.outcome == VerificationOutcome.FAILED
        assert check.result.attempts_remaining == 4
        assert check.session.state == SessionState.UNVERIFIED
        assert "1985" not in check.result.message

    def test_missing_fields_change_nothing(self, engine, flow) -> None:
        token = flow.dispatch()
        with pytest.raises(ValidationFailed):
            engine.verify_identity(token, VerificationMethod.MANUAL, claimed={"national_id": "AB123456C"})

        session = engine.store.get(token)
        assert session.verification is None
        assert session.state == SessionState.UNVERIFIED

    def test_attempt_cap_blocks_session(self, engine, flow) -> None:
        token = flow.dispatch()
        wrong = {"date_of_birth": "1990-01-01", "national_id": "ZZ000000Z"}
        for _ in range(4):
            engine.verify_identity(token, VerificationMethod.MANUAL, claimed=wrong)

        check = engine.verify_identity(token, VerificationMethod.MANUAL, claimed=wrong)
        assert check.session.state == SessionState.BLOCKED
        assert check.result.attempts_remaining == 0

        with pytest.raises(InvalidStateError) as exc_info:
            engine.verify_identity(
                token, VerificationMethod.MANUAL,
                claimed={"date_of_birth": "1985-04-12", "national_id": "AB123456C"},
            )
        assert exc_info.value.error_code == "BLOCKED"

    def test_verification_only_once(self, engine, flow) -> None:
        token = flow.advance_to(SessionState.CONTACT_PENDING)
        with pytest.raises(InvalidStateError):
            flow.verify_identity(token)


class TestDocumentScan:
    def test_scan_passes_above_face_threshold(self, engine, flow, scanner) -> None:
        token = flow.dispatch()
        check = engine.verify_identity_scan(token, b"id-front", "image/jpeg", b"selfie", "image/jpeg")

        assert scanner.calls == 1
        assert check.result.outcome == VerificationOutcome.PASSED
        assert check.session.verification.method == VerificationMethod.DOCUMENT_SCAN
        assert check.session.verification.face_match_score == pytest.approx(0.93)

    def test_low_face_match_fails_attempt(self, engine, flow, scanner) -> None:
        scanner.result.face_match_score = 0.42
        token = flow.dispatch()
        check = engine.verify_identity_scan(token, b"id-front", "image/jpeg", b"selfie", "image/jpeg")

        assert check.result.outcome == VerificationOutcome.FAILED
        assert check.session.state == SessionState.UNVERIFIED
        assert check.session.verification.attempts == 1

    def test_unreadable_document_is_a_failed_attempt(self, engine, flow, scanner) -> None:
        scanner.result.extracted_fields = {"full_name": "Jane Doe"}
        token = flow.dispatch()
        check = engine.verify_identity_scan(token, b"id-front", "image/jpeg", b"selfie", "image/jpeg")

        assert check.result.outcome == VerificationOutcome.FAILED
        assert check.session.verification.attempts == 1

    def test_low_confidence_extraction_fails_attempt(self, engine, flow, scanner) -> None:
        scanner.result.confidence = 40
        token = flow.dispatch()
        check = engine.verify_identity_scan(token, b"id-front", "image/jpeg", b"selfie", "image/jpeg")

        assert check.result.outcome == VerificationOutcome.FAILED
        assert check.session.verification.attempts == 1
        assert engine.audit.get_trail(token)[-1].event_metadata["reason"] == "fields_unreadable"

    def test_empty_upload_is_rejected(self, engine, flow, scanner) -> None:
        token = flow.dispatch()
        with pytest.raises(ValidationFailed):
            engine.verify_identity_scan(token, b"", "image/jpeg")
        assert scanner.calls == 0


class TestTrustedAssertion:
    def test_bound_assertion_passes(self, engine, flow) -> None:
        token = flow.dispatch()
        check = engine.verify_identity(
            token, VerificationMethod.TRUSTED_ASSERTION,
            assertion=_assertion(national_id="AB-123456-C"),
        )
        assert check.result.outcome == VerificationOutcome.PASSED
        assert check.session.verification.method == VerificationMethod.TRUSTED_ASSERTION

    def test_assertion_for_another_person_fails(self, engine, flow) -> None:
        token = flow.dispatch()
        check = engine.verify_identity(
            token, VerificationMethod.TRUSTED_ASSERTION,
            assertion=_assertion(national_id="XY987654Z"),
        )
        assert check.result.outcome == VerificationOutcome.FAILED
        assert check.session.verification.attempts == 1

    def test_forged_assertion_counts_as_failed_attempt(self, engine, flow) -> None:
        token = flow.dispatch()
        check = engine.verify_identity(
            token, VerificationMethod.TRUSTED_ASSERTION,
            assertion=_assertion(secret="not-the-idp-secret-but-long-enough", national_id="AB123456C"),
        )
        assert check.result.outcome == VerificationOutcome.FAILED
        assert check.session.verification.attempts == 1
        assert check.session.state == SessionState.UNVERIFIED


class TestAssertionVerifier:
    def _verifier(self) -> AssertionVerifier:
        return AssertionVerifier(issuer=IDP_ISSUER, audience="remote-signing", secret=IDP_SECRET, algorithms=["HS256"])

    def test_claims_are_mapped(self) -> None:
        attributes = self._verifier().verify(_assertion(nationalId="AB123456C", birthdate="1985-04-12"))
        assert attributes["subject"] == "eid-subject-42"
        assert attributes["national_id"] == "AB123456C"
        assert attributes["date_of_birth"] == "1985-04-12"
        assert attributes["full_name"] == "Jane Doe"

    @pytest.mark.parametrize("claims", [
        {"exp": int(time.time()) - 60},
        {"iss": "https://rogue.example"},
        {"aud": "someone-else"},
    ])
    def test_rejected_assertions(self, claims) -> None:
        with pytest.raises(AssertionInvalid):
            self._verifier().verify(_assertion(**claims))

    def test_garbage_is_rejected(self) -> None:
        with pytest.raises(AssertionInvalid):
            self._verifier().verify("not-a-jwt")
