"""Tests for contact and signing one-time code challenges."""

import pytest

from app.schemas.records import Channel, ChallengeOutcome, SessionState
from app.utils.exceptions import InvalidStateError, SecurityLimitReached, ValidationFailed

from conftest import DEFAULT_CODE


class TestContactChallenge:
    def test_two_misses_then_correct_code(self, engine, flow, notifier) -> None:
        token = flow.advance_to(SessionState.CONTACT_PENDING)

        issued = engine.issue_contact_challenge(token, Channel.EMAIL)
        assert issued.delivered is True
        assert issued.session.state == SessionState.CONTACT_CHALLENGED
        assert issued.challenge.remaining_attempts == 3
        assert issued.challenge.masked_destination == "jan●●●●●@example.com"
        assert notifier.sent == [(Channel.EMAIL, "jane.doe@example.com", DEFAULT_CODE)]

        first = engine.verify_contact_code(token, "000000")
        assert first.verification.status == "INVALID"
        assert first.verification.remaining_attempts == 2

        second = engine.verify_contact_code(token, "111111")
        assert second.verification.remaining_attempts == 1
        assert second.session.state == SessionState.CONTACT_CHALLENGED

        final = engine.verify_contact_code(token, DEFAULT_CODE)
        assert final.verification.verified
        assert final.session.state == SessionState.REVIEW_PENDING

    def test_code_is_stored_hashed(self, engine, flow) -> None:
        token = flow.advance_to(SessionState.CONTACT_PENDING)
        engine.issue_contact_challenge(token, Channel.SMS)

        challenge = engine.store.get(token).contact_challenge
        assert challenge.destination == "+441234567890"
        assert challenge.masked_destination == "●●●●●●7890"
        assert DEFAULT_CODE not in challenge.code_hash
        assert len(challenge.code_hash) == 64

    def test_signer_supplied_destination_is_validated(self, engine, flow) -> None:
        token = flow.advance_to(SessionState.CONTACT_PENDING)
        with pytest.raises(ValidationFailed):
            engine.issue_contact_challenge(token, Channel.EMAIL, "not-an-email")
        assert engine.store.get(token).state == SessionState.CONTACT_PENDING

        issued = engine.issue_contact_challenge(token, Channel.EMAIL, "  Jane.New@Example.com ")
        assert issued.challenge.destination == "jane.new@example.com"

    def test_exhaustion_returns_to_pending(self, engine, flow) -> None:
        token = flow.advance_to(SessionState.CONTACT_PENDING)
        engine.issue_contact_challenge(token, Channel.EMAIL)

        for _ in range(3):
            check = engine.verify_contact_code(token, "999999")
        assert check.verification.status == "EXHAUSTED"
        assert check.session.state == SessionState.CONTACT_PENDING

        # The correct code no longer helps; only a new challenge does
        retry = engine.verify_contact_code(token, DEFAULT_CODE)
        assert retry.verification.status == "EXHAUSTED"
        assert retry.session.state == SessionState.CONTACT_PENDING

        issued = engine.issue_contact_challenge(token, Channel.EMAIL)
        assert issued.challenge.remaining_attempts == 3
        assert issued.challenge.issue_count == 2

    def test_reissue_invalidates_previous_code(self, engine, flow, codes) -> None:
        token = flow.advance_to(SessionState.CONTACT_PENDING)
        codes.queue = ["111111", "222222"]

        engine.issue_contact_challenge(token, Channel.EMAIL)
        resent = engine.issue_contact_challenge(token, Channel.EMAIL)
        assert resent.session.state == SessionState.CONTACT_CHALLENGED

        stale = engine.verify_contact_code(token, "111111")
        assert stale.verification.status == "INVALID"

        fresh = engine.verify_contact_code(token, "222222")
        assert fresh.verification.verified

    def test_expired_code(self, engine, flow, clock) -> None:
        token = flow.advance_to(SessionState.CONTACT_PENDING)
        engine.issue_contact_challenge(token, Channel.EMAIL)

        clock.advance(minutes=5)
        check = engine.verify_contact_code(token, DEFAULT_CODE)
        assert check.verification.status == "EXPIRED"
        assert check.session.state == SessionState.CONTACT_PENDING
        assert check.session.contact_challenge.outcome == ChallengeOutcome.EXPIRED

    def test_code_accepted_just_before_expiry(self, engine, flow, clock) -> None:
        token = flow.advance_to(SessionState.CONTACT_PENDING)
        engine.issue_contact_challenge(token, Channel.EMAIL)

        clock.advance(minutes=4, seconds=59)
        assert engine.verify_contact_code(token, DEFAULT_CODE).verification.verified

    def test_issuance_cap(self, engine, flow) -> None:
        token = flow.advance_to(SessionState.CONTACT_PENDING)
        for _ in range(5):
            engine.issue_contact_challenge(token, Channel.EMAIL)

        with pytest.raises(SecurityLimitReached) as exc_info:
            engine.issue_contact_challenge(token, Channel.EMAIL)
        assert exc_info.value.error_code == "OTP_ISSUE_LIMIT"

        # The last issued code is still live
        assert engine.verify_contact_code(token, DEFAULT_CODE).verification.verified

    def test_delivery_failure_keeps_challenge_valid(self, engine, flow, notifier) -> None:
        token = flow.advance_to(SessionState.CONTACT_PENDING)
        notifier.fail = True

        issued = engine.issue_contact_challenge(token, Channel.EMAIL)
        assert issued.delivered is False
        assert issued.session.state == SessionState.CONTACT_CHALLENGED
        assert engine.verify_contact_code(token, DEFAULT_CODE).verification.verified

    def test_malformed_code_is_not_an_attempt(self, engine, flow) -> None:
        token = flow.advance_to(SessionState.CONTACT_PENDING)
        engine.issue_contact_challenge(token, Channel.EMAIL)

        with pytest.raises(ValidationFailed):
            engine.verify_contact_code(token, "12ab")
        assert engine.store.get(token).contact_challenge.remaining_attempts == 3


class TestSigningChallenge:
    def test_exhaustion_and_reissue(self, engine, flow) -> None:
        token = flow.advance_to(SessionState.SIGNING_PENDING)
        engine.issue_signing_challenge(token, Channel.EMAIL)

        for _ in range(3):
            check = engine.verify_signing_code(token, "000000")
        assert check.verification.status == "EXHAUSTED"
        assert check.session.state == SessionState.SIGNING_PENDING

        issued = engine.issue_signing_challenge(token, Channel.EMAIL)
        assert issued.challenge.remaining_attempts == 3
        assert issued.session.state == SessionState.SIGNING_CHALLENGED

    def test_signing_code_goes_to_verified_contact(self, engine, flow, notifier) -> None:
        token = flow.dispatch()
        flow.verify_identity(token)
        engine.issue_contact_challenge(token, Channel.EMAIL, "jane.work@example.com")
        engine.verify_contact_code(token, DEFAULT_CODE)
        flow.complete_review(token)

        engine.issue_signing_challenge(token, Channel.EMAIL)
        assert notifier.sent[-1][1] == "jane.work@example.com"

        engine.issue_signing_challenge(token, Channel.SMS)
        assert notifier.sent[-1][1] == "+441234567890"

    def test_purposes_do_not_satisfy_each_other(self, engine, flow) -> None:
        token = flow.advance_to(SessionState.REVIEW_PENDING)
        with pytest.raises(InvalidStateError):
            engine.verify_signing_code(token, DEFAULT_CODE)

        flow.complete_review(token)
        engine.issue_signing_challenge(token, Channel.EMAIL)
        with pytest.raises(InvalidStateError):
            engine.verify_contact_code(token, DEFAULT_CODE)
        assert engine.store.get(token).state == SessionState.SIGNING_CHALLENGED

    def test_signing_requires_submitted_review(self, engine, flow) -> None:
        token = flow.advance_to(SessionState.REVIEW_PENDING)
        with pytest.raises(InvalidStateError) as exc_info:
            engine.issue_signing_challenge(token, Channel.EMAIL)
        assert exc_info.value.gate == "review"
