"""Pytest configuration and shared fixtures."""

import time
from datetime import date, datetime, timedelta
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.config import get_settings
from app.database import init_db
from app.dependencies import build_orchestrator, get_orchestrator
from app.main import app
from app.models.customer import Customer
from app.schemas.records import (
    Channel, ReviewConsent, ReviewDocument, SignatureMethod, SignerKind,
    VerificationMethod,
)
from app.services.notification_service import NotificationService
from app.services.ocr_service import ScanResult
from app.services.sealing_service import SealingService
from app.services.signing_orchestrator import SigningOrchestrator
from app.utils.exceptions import NotificationError
from app.utils.rate_limiter import reset_rate_limits

INDIVIDUAL_REF = "CUST-IND-001"
BUSINESS_REF = "CUST-BUS-001"
DEFAULT_CODE = "123456"

IDP_ISSUER = "https://eid.example.test"
IDP_SECRET = "test-idp-shared-secret-0123456789abcdef"

INDIVIDUAL_CLAIMS = {"date_of_birth": "1985-04-12", "national_id": "AB123456C"}
BUSINESS_CLAIMS = {"registration_date": "2012-09-01", "registration_number": "RC-778899"}

START = datetime(2026, 3, 2, 9, 0, 0)


class FakeClock:
    """Controllable clock handed to the session store."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class CodeBook:
    """Deterministic one-time codes: queued codes first, then the default."""

    def __init__(self):
        self.queue: List[str] = []

    def next(self) -> str:
        if self.queue:
            return self.queue.pop(0)
        return DEFAULT_CODE


class RecordingNotifier(NotificationService):
    """Notification provider that records codes instead of sending them."""

    def __init__(self):
        super().__init__(validity_minutes=5)
        self.sent: List[tuple] = []
        self.fail = False

    def dispatch(self, channel, destination, code):
        if self.fail:
            raise NotificationError("gateway unavailable")
        self.sent.append((channel, destination, code))
        return {"success": True, "provider": "Recording", "status": "sent"}


class ScriptedSealer(SealingService):
    """Development sealer with scripted failures and a call counter."""

    def __init__(self):
        super().__init__("test-seal-key")
        self.calls = 0
        self.failures: List[Exception] = []
        self.delay = 0.0

    def seal(self, envelope_ref, signature_artifact, evidence):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.failures:
            raise self.failures.pop(0)
        return super().seal(envelope_ref, signature_artifact, evidence)


class FakeScanner:
    """Document scanner returning a preset result."""

    def __init__(self):
        self.result = ScanResult(extracted_fields=dict(INDIVIDUAL_CLAIMS), face_match_score=0.93, confidence=96)
        self.calls = 0

    def scan(self, document, document_type, selfie=None, selfie_type=None) -> ScanResult:
        self.calls += 1
        return self.result


class SigningFlow:
    """Drives sessions through the workflow with valid inputs."""

    def __init__(self, engine: SigningOrchestrator):
        self.engine = engine

    def dispatch(
        self,
        customer_ref: str = INDIVIDUAL_REF,
        documents=("doc-1", "doc-2"),
        consents=(("consent-terms", True),),
        expires_at: Optional[datetime] = None,
    ) -> str:
        session = self.engine.open_session(
            envelope_ref="ENV-1001",
            customer_ref=customer_ref,
            documents=[ReviewDocument(document_id=d, title=f"Document {d}") for d in documents],
            consents=[ReviewConsent(consent_id=c, text="I agree", required=r) for c, r in consents],
            expires_at=expires_at,
        )
        return session.token

    def verify_identity(self, token: str) -> None:
        session = self.engine.store.get(token)
        claims = INDIVIDUAL_CLAIMS if session.signer_kind == SignerKind.INDIVIDUAL else BUSINESS_CLAIMS
        self.engine.verify_identity(token, VerificationMethod.MANUAL, claimed=dict(claims))

    def confirm_contact(self, token: str) -> None:
        self.engine.issue_contact_challenge(token, Channel.EMAIL)
        self.engine.verify_contact_code(token, DEFAULT_CODE)

    def complete_review(self, token: str) -> None:
        session = self.engine.store.get(token)
        for document in session.review.documents:
            self.engine.confirm_document(token, document.document_id)
        for consent in session.review.consents:
            if consent.required:
                self.engine.set_consent(token, consent.consent_id, True)
        self.engine.capture_signature(token, SignatureMethod.DRAWN, "signatures/ENV-1001/drawn.png")
        self.engine.submit_for_signing(token)

    def authorise(self, token: str) -> None:
        self.engine.issue_signing_challenge(token, Channel.EMAIL)
        self.engine.verify_signing_code(token, DEFAULT_CODE)

    def advance_to(self, state, **dispatch_kwargs) -> str:
        """Dispatch a session and run the workflow steps until `state`."""
        token = self.dispatch(**dispatch_kwargs)
        steps = [
            self.verify_identity,
            self.confirm_contact,
            self.complete_review,
            self.authorise,
            self.engine.complete_signing,
        ]
        for step in steps:
            if self.engine.store.get(token).state == state:
                break
            step(token)
        assert self.engine.store.get(token).state == state
        return token


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides and rate limits are reset between tests."""
    app.dependency_overrides = {}
    reset_rate_limits()
    yield
    app.dependency_overrides = {}
    reset_rate_limits()


@pytest.fixture
def db_engine(tmp_path):
    """File-backed SQLite so concurrent sessions see each other's commits."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'signing.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker:
    factory = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    with factory() as db:
        db.add_all([
            Customer(
                id=INDIVIDUAL_REF,
                kind="INDIVIDUAL",
                display_name="Jane Doe",
                email="jane.doe@example.com",
                phone="+441234567890",
                date_of_birth=date(1985, 4, 12),
                national_id="AB123456C",
            ),
            Customer(
                id=BUSINESS_REF,
                kind="BUSINESS",
                display_name="Acme Trading Ltd",
                email="legal@acme.example",
                phone="+15551234567",
                registration_number="RC-778899",
                registration_date=date(2012, 9, 1),
                tin="TIN-4455",
            ),
        ])
        db.commit()
    return factory


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture
def codes() -> CodeBook:
    return CodeBook()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def sealer() -> ScriptedSealer:
    return ScriptedSealer()


@pytest.fixture
def scanner() -> FakeScanner:
    return FakeScanner()


@pytest.fixture
def make_engine(session_factory, clock, codes, notifier, sealer, scanner):
    """Factory for orchestrators with optional settings overrides."""

    def _make(**overrides) -> SigningOrchestrator:
        settings = get_settings().model_copy(update={
            "ASSERTION_ISSUER": IDP_ISSUER,
            "ASSERTION_SECRET": IDP_SECRET,
            "ASSERTION_ALGORITHMS": ["HS256"],
            **overrides,
        })
        return build_orchestrator(
            session_factory,
            settings,
            clock=clock,
            notifier=notifier,
            sealer=sealer,
            scanner=scanner,
            code_generator=codes.next,
        )

    return _make


@pytest.fixture
def engine(make_engine) -> SigningOrchestrator:
    return make_engine()


@pytest.fixture
def flow(engine) -> SigningFlow:
    return SigningFlow(engine)


@pytest.fixture
def test_client(engine) -> TestClient:
    """FastAPI test client wired to the test orchestrator.

    Returns:
        TestClient: FastAPI test client instance
    """
    app.dependency_overrides[get_orchestrator] = lambda: engine
    return TestClient(app)


@pytest.fixture
def internal_headers() -> dict:
    return {"x-api-key": get_settings().INTERNAL_API_KEY}
