"""
Challenge (OTP) Service — issues, delivers and validates one-time codes.

Each purpose (CONTACT, SIGNING) has its own challenge slot on the session.
Issuing replaces the slot, so only the newest code of a purpose can verify.
Only the HMAC of a code is stored; the plaintext exists for the duration of
the issuing request and is handed to the notification provider once.
"""
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from app.schemas.records import (
    Channel, ChallengeOutcome, ChallengePurpose, OtpChallenge, SigningSession,
)
from app.services.notification_service import NotificationService
from app.utils.exceptions import (
    CollaboratorError, InvalidStateError, SecurityLimitReached, ValidationFailed,
)
from app.utils.hashing import codes_match, hash_code
from app.utils.logging import get_logger
from app.utils.timeouts import call_with_timeout
from app.utils.validators import (
    mask_email, mask_phone, normalize_phone, validate_email, validate_phone,
)

LOGGER = get_logger(__name__)


@dataclass
class OtpVerification:
    status: str   # VERIFIED | INVALID | EXPIRED | EXHAUSTED
    remaining_attempts: int
    message: str = ""

    @property
    def verified(self) -> bool:
        return self.status == "VERIFIED"


class OtpService:
    def __init__(
        self,
        notifier: NotificationService,
        secret_key: str,
        code_length: int = 6,
        validity_minutes: int = 5,
        max_attempts: int = 3,
        max_issues: int = 5,
        dispatch_timeout: float = 10.0,
        code_generator: Optional[Callable[[], str]] = None,
    ):
        self.notifier = notifier
        self._secret_key = secret_key
        self.code_length = code_length
        self.validity = timedelta(minutes=validity_minutes)
        self.max_attempts = max_attempts
        self.max_issues = max_issues
        self.dispatch_timeout = dispatch_timeout
        self._code_generator = code_generator

    # ─── Issuance ────────────────────────────────────────────────────

    def new_code(self) -> str:
        if self._code_generator is not None:
            return self._code_generator()
        return f"{secrets.randbelow(10 ** self.code_length):0{self.code_length}d}"

    @staticmethod
    def normalize_destination(channel: Channel, destination: str) -> str:
        """Validate and normalise an email address or phone number."""
        destination = (destination or "").strip()
        if channel == Channel.EMAIL:
            if not validate_email(destination):
                raise ValidationFailed("Please provide a valid email address")
            return destination.lower()
        if not validate_phone(destination):
            raise ValidationFailed("Please provide a valid mobile number including country code")
        return normalize_phone(destination)

    def issue(
        self,
        session: SigningSession,
        purpose: ChallengePurpose,
        channel: Channel,
        destination: str,
        code: str,
        now: datetime,
    ) -> OtpChallenge:
        """Store-transition mutator: replace the purpose's challenge with a new one.

        Raises:
            SecurityLimitReached: If the issuance cap for this purpose is used up.
        """
        previous = session.challenge_for(purpose)
        issue_count = (previous.issue_count if previous else 0) + 1
        if issue_count > self.max_issues:
            raise SecurityLimitReached(
                "Too many verification codes requested. Please contact your agent.",
                error_code="OTP_ISSUE_LIMIT",
            )

        challenge_id = uuid.uuid4().hex
        masked = mask_phone(destination) if channel == Channel.SMS else mask_email(destination)
        challenge = OtpChallenge(
            challenge_id=challenge_id,
            purpose=purpose,
            channel=channel,
            destination=destination,
            masked_destination=masked,
            code_hash=hash_code(code, self._secret_key, salt=challenge_id),
            issued_at=now,
            expires_at=now + self.validity,
            remaining_attempts=self.max_attempts,
            issue_count=issue_count,
        )
        session.set_challenge(purpose, challenge)
        return challenge

    def deliver(self, challenge: OtpChallenge, code: str) -> bool:
        """Dispatch a code. Never raises: delivery does not decide validity."""
        try:
            receipt = call_with_timeout(
                self.notifier.dispatch, self.dispatch_timeout,
                challenge.channel, challenge.destination, code,
            )
        except CollaboratorError as e:
            LOGGER.error(
                "Failed to send %s code via %s to %s: %s",
                challenge.purpose.value, challenge.channel.value, challenge.masked_destination, e,
            )
            return False
        except Exception as e:
            LOGGER.error(
                "Notification provider error for %s: %s", challenge.masked_destination, e,
            )
            return False

        delivered = bool(receipt and receipt.get("success"))
        if delivered:
            LOGGER.info(
                "%s code sent via %s to %s",
                challenge.purpose.value, challenge.channel.value, challenge.masked_destination,
            )
        else:
            LOGGER.error("Provider refused %s code to %s", challenge.purpose.value, challenge.masked_destination)
        return delivered

    # ─── Verification ────────────────────────────────────────────────

    def check_format(self, code: str) -> str:
        code = (code or "").strip()
        if len(code) != self.code_length or not code.isdigit():
            raise ValidationFailed(f"Verification code must be {self.code_length} digits")
        return code

    def verify(self, session: SigningSession, purpose: ChallengePurpose, code: str, now: datetime) -> OtpVerification:
        """Store-transition mutator: check a submitted code against the live challenge."""
        challenge = session.challenge_for(purpose)
        if challenge is None:
            raise InvalidStateError(
                "No verification code has been requested yet", gate=f"{purpose.value.lower()}_challenge",
            )

        settled = self.settled_result(challenge)
        if settled is not None:
            return settled

        if now >= challenge.expires_at:
            challenge.outcome = ChallengeOutcome.EXPIRED
            return OtpVerification("EXPIRED", 0, "Code has expired. Please request a new one.")

        submitted = hash_code(code, self._secret_key, salt=challenge.challenge_id)
        if codes_match(submitted, challenge.code_hash):
            challenge.outcome = ChallengeOutcome.VERIFIED
            challenge.verified_at = now
            return OtpVerification("VERIFIED", challenge.remaining_attempts, "Code verified")

        challenge.remaining_attempts = max(0, challenge.remaining_attempts - 1)
        if challenge.remaining_attempts == 0:
            challenge.outcome = ChallengeOutcome.EXHAUSTED
            LOGGER.warning("%s challenge exhausted for session %s…", purpose.value, session.token[:8])
            return OtpVerification("EXHAUSTED", 0, "Too many failed attempts. Please request a new code.")

        LOGGER.info(
            "Invalid %s code for session %s…, %d attempts remaining",
            purpose.value, session.token[:8], challenge.remaining_attempts,
        )
        return OtpVerification(
            "INVALID", challenge.remaining_attempts,
            f"Invalid code. {challenge.remaining_attempts} attempts remaining.",
        )

    @staticmethod
    def settled_result(challenge: OtpChallenge) -> Optional[OtpVerification]:
        """Result for a challenge that can no longer accept codes."""
        if challenge.outcome == ChallengeOutcome.EXHAUSTED:
            return OtpVerification("EXHAUSTED", 0, "Too many failed attempts. Please request a new code.")
        if challenge.outcome == ChallengeOutcome.EXPIRED:
            return OtpVerification("EXPIRED", 0, "Code has expired. Please request a new one.")
        if challenge.outcome == ChallengeOutcome.VERIFIED:
            return OtpVerification("VERIFIED", challenge.remaining_attempts, "Code already verified")
        return None
