"""
Shared pytest fixtures for the run club payments tests.

Every test gets its own in-memory database and fake Stripe and push
collaborators, so nothing leaves the process.
"""

import json
import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import runclub.models  # noqa: F401
from runclub.config import get_settings
from runclub.database import Base, get_db, get_session_factory
from runclub.dependencies import get_processor, get_push_transport
from runclub.errors import ProcessorError, PushGone, TransportFailure
from runclub.limiter import limiter
from runclub.models.event import Event
from runclub.models.member import Member
from runclub.models.registration import EventRegistration, Attendee, PaymentStatus
from runclub.models.transaction import PaymentTransaction, TransactionStatus
from runclub.services.processor import ProcessorRefund, CheckoutSession

ADMIN_EMAIL = "admin@runclub.test"


class FakeProcessor:
    """Stands in for StripeProcessor and records every call."""

    def __init__(self):
        self.settings = get_settings()
        self.refunds = []
        self.sessions = []
        self.remote_sessions = {}
        self.fail_refunds = False

    def refund(self, processor_ref, reason=None):
        if self.fail_refunds:
            raise ProcessorError("Stripe error: card_declined")
        self.refunds.append((processor_ref, reason))
        return ProcessorRefund(id=f"re_{len(self.refunds)}", status="succeeded")

    def create_checkout_session(self, title, amount, metadata, customer_email=None, customer_id=None, cancel_url=None):
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append({"title": title, "amount": amount, "metadata": metadata, "email": customer_email})
        return CheckoutSession(id=session_id, url=f"https://checkout.stripe.test/{session_id}")

    def retrieve_checkout_session(self, session_id):
        if session_id not in self.remote_sessions:
            raise ProcessorError(f"Stripe error: No such checkout.session: '{session_id}'")
        return self.remote_sessions[session_id]

    def list_payment_history(self, customer_ref):
        return [{"id": "pi_hist_1", "customer": customer_ref, "amount": 25000}]

    def list_payment_methods(self, customer_ref):
        return [{"id": "pm_1", "type": "card"}]

    def verify_webhook_signature(self, payload, signature):
        if signature != "valid":
            raise ValueError("Invalid signature")
        return json.loads(payload)


class FakeTransport:
    """Push transport that fails for chosen endpoints."""

    def __init__(self, gone=(), failing=()):
        self.gone = set(gone)
        self.failing = set(failing)
        self.sent = []

    def send(self, endpoint, keys, payload):
        if endpoint in self.gone:
            raise PushGone("Endpoint gone (410)")
        if endpoint in self.failing:
            raise TransportFailure("Push rejected (500)")
        self.sent.append((endpoint, payload))


@pytest.fixture
def engine():
    """Fresh in-memory database for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def processor() -> FakeProcessor:
    return FakeProcessor()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def settings(monkeypatch):
    """The cached settings object with a known admin."""
    settings = get_settings()
    monkeypatch.setattr(settings, "admin_emails", [ADMIN_EMAIL])
    return settings


@pytest.fixture
def client(session_factory, processor, transport, settings):
    """Test client wired to the test database and fake collaborators."""
    from runclub.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_processor] = lambda: processor
    app.dependency_overrides[get_push_transport] = lambda: transport
    limiter.enabled = False

    yield TestClient(app)

    app.dependency_overrides.clear()
    limiter.enabled = True


def make_token(user_id: str, email: str = None) -> str:
    settings = get_settings()
    claims = {"sub": user_id, "aud": settings.jwt_audience}
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


@pytest.fixture
def admin_headers(settings) -> dict:
    return {"Authorization": f"Bearer {make_token('admin-1', ADMIN_EMAIL)}"}


@pytest.fixture
def member_headers() -> dict:
    return {"Authorization": f"Bearer {make_token('m1', 'runner@runclub.test')}"}


# =============================================================================
# Data Fixtures
# =============================================================================

@pytest.fixture
def club_event(db) -> Event:
    """Paid event e1 with room for ten runners."""
    event = Event(id="e1", slug="night-10k", title="Night 10K", date="2026-11-14", price=250.0, max_participants=10)
    db.add(event)
    db.commit()
    return event


@pytest.fixture
def member(db) -> Member:
    member = Member(id="m1", email="runner@runclub.test", first_name="Ana", last_name="Runner")
    db.add(member)
    db.commit()
    return member


@pytest.fixture
def guest(db, club_event) -> Attendee:
    attendee = Attendee(id="a1", event_id=club_event.id, name="Guest Runner", email="guest@runclub.test")
    db.add(attendee)
    db.commit()
    return attendee


@pytest.fixture
def paid_registration(db, club_event, member) -> EventRegistration:
    registration = EventRegistration(
        event_id=club_event.id,
        member_id=member.id,
        payment_status=PaymentStatus.PAID,
        stripe_payment_intent_id="pi_1",
        amount_paid=250.0,
        currency="mxn"
    )
    db.add(registration)
    db.commit()
    return registration


@pytest.fixture
def succeeded_transaction(db, paid_registration) -> PaymentTransaction:
    """tx1: member m1 paid 250 MXN for e1."""
    transaction = PaymentTransaction(
        id="tx1",
        event_id="e1",
        member_id="m1",
        stripe_session_id="cs_1",
        stripe_payment_intent_id="pi_1",
        amount=250.0,
        currency="mxn",
        status=TransactionStatus.SUCCEEDED
    )
    db.add(transaction)
    db.commit()
    return transaction


@pytest.fixture
def headers_for():
    """Build Authorization headers for an arbitrary user."""
    def build(user_id: str, email: str = None) -> dict:
        return {"Authorization": f"Bearer {make_token(user_id, email)}"}
    return build


@pytest.fixture
def make_transport():
    """Build a FakeTransport with chosen gone or failing endpoints."""
    return FakeTransport
