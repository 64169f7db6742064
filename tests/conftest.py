import os

os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["SWEEPS_AUTOSTART"] = "false"
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("ENV", "test")

import json
import uuid
from dataclasses import replace
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.api.deps import get_gateway, get_mail_transport
from app.core.errors import AuthenticityError, GatewayError
from app.core.security import hash_password, issue_staff_token
from app.db.session import Base, get_db
from app.models.setting import Setting
from app.models.ticket import Ticket
from app.models.time_slot import TimeSlot
from app.models.user import User
from app.services.booking_service import make_ticket_id
from app.services.stripe_client import CheckoutSession, PaymentIntentInfo, RefundInfo, SessionStatus

VALID_SIGNATURE = "t=1,v1=valid"


class FakeGateway:
    """In-memory Stripe: sessions are created unpaid and flipped with pay()."""

    def __init__(self):
        self.sessions: dict[str, SessionStatus] = {}
        self.intents: dict[str, PaymentIntentInfo] = {}
        self.refunds: dict[str, RefundInfo] = {}
        self.created: list[dict] = []
        self.refund_calls: list[dict] = []
        self.fail_create = False
        self.fail_retrieve = False
        self.fail_refund = False
        self._seq = 0

    def _next(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}_{self._seq}"

    def create_checkout_session(self, *, amount, currency, correlation_key, success_url, cancel_url,
                                customer_email=None, description=""):
        if self.fail_create:
            raise GatewayError("Payment provider unavailable, please try again")
        sid = self._next("cs_test")
        self.created.append({"session_id": sid, "amount": amount, "metadata": dict(correlation_key),
                             "success_url": success_url})
        self.sessions[sid] = SessionStatus(session_id=sid, payment_status="unpaid", status="open",
                                           metadata=dict(correlation_key))
        return CheckoutSession(session_id=sid, redirect_url=f"https://checkout.stripe.test/{sid}")

    def pay(self, session_id: str, intent_id: str | None = None, amount_cents: int = 2000) -> str:
        intent_id = intent_id or self._next("pi")
        s = self.sessions[session_id]
        s.payment_status = "paid"
        s.status = "complete"
        s.payment_intent_id = intent_id
        s.captured_amount = amount_cents
        self.intents[intent_id] = PaymentIntentInfo(intent_id, amount_cents, "succeeded")
        return intent_id

    def expire(self, session_id: str):
        self.sessions[session_id].status = "expired"

    def retrieve_session(self, session_id):
        if self.fail_retrieve or session_id not in self.sessions:
            raise GatewayError("Could not retrieve payment session")
        return replace(self.sessions[session_id])

    def retrieve_payment_intent(self, payment_intent_id):
        if payment_intent_id not in self.intents:
            raise GatewayError("Could not retrieve payment")
        return self.intents[payment_intent_id]

    def create_refund(self, *, payment_intent_id, amount_cents, reason, correlation_key):
        self.refund_calls.append({"payment_intent_id": payment_intent_id, "amount_cents": amount_cents,
                                  "reason": reason, "correlation_key": correlation_key})
        if self.fail_refund:
            raise GatewayError("Refund failed at payment provider")
        # same idempotency key, same refund
        if correlation_key not in self.refunds:
            self.refunds[correlation_key] = RefundInfo(self._next("re"), int(amount_cents), "succeeded")
        return self.refunds[correlation_key]

    def find_refund(self, payment_intent_id, correlation_key):
        return self.refunds.get(correlation_key)

    def construct_event(self, payload, signature):
        if signature != VALID_SIGNATURE:
            raise AuthenticityError("Webhook signature verification failed")
        return json.loads(payload)


class RecordingTransport:
    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    def send(self, to_email, subject, body, html=None, attachments=None):
        if self.fail:
            raise RuntimeError("SMTP connection refused")
        self.sent.append({"to": to_email, "subject": subject, "attachments": attachments or []})


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def client(session_factory, gateway, transport):
    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_mail_transport] = lambda: transport
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(role: str = "admin", email: str | None = None, password: str = "secret-pass"):
        u = User(id=str(uuid.uuid4()), email=email or f"{role}-{uuid.uuid4().hex[:6]}@megajump.local",
                 full_name=role.title(), role=role, password_hash=hash_password(password), is_active=True)
        db.add(u)
        db.commit()
        return u
    return _make


@pytest.fixture
def auth(make_user):
    def _headers(role: str = "admin") -> dict:
        u = make_user(role)
        return {"Authorization": f"Bearer {issue_staff_token(u.id, u.role)}"}
    return _headers


@pytest.fixture
def make_slot(db):
    def _make(max_tickets: int = 10, date: str = "2030-06-01", start: str = "10:00", end: str = "11:00",
              sold: int = 0) -> TimeSlot:
        slot = TimeSlot(id=str(uuid.uuid4()), date=date, start_time=start, end_time=end,
                        max_tickets=max_tickets, sold_count=sold)
        db.add(slot)
        db.commit()
        return slot
    return _make


@pytest.fixture
def make_ticket(db):
    """Ticket row holding admissions on ``slot``; the slot counter is debited to match."""
    def _make(slot: TimeSlot, tickets: int = 2, **fields) -> Ticket:
        t = Ticket(
            id=str(uuid.uuid4()),
            ticket_id=make_ticket_id(),
            time_slot_id=slot.id,
            date=slot.date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            tickets=tickets,
            amount=fields.pop("amount", 20.0),
            name="Sam",
            surname="Jumper",
            email=fields.pop("email", "sam@example.com"),
            **fields,
        )
        if t.cancel_ticket is not True:
            slot.sold_count = (slot.sold_count or 0) + t.admissions
        db.add(t)
        db.commit()
        return t
    return _make


@pytest.fixture
def pricing(db):
    s = Setting(id=str(uuid.uuid4()), location_name="Mega Jump Utrecht", address="Jumpstraat 1",
                start_date=datetime(2030, 1, 1).date(), end_date=datetime(2030, 12, 31).date(),
                ticket_price=12.5, socks_price=2.5, cancellation_fee=2.5,
                created_at=datetime.now(timezone.utc))
    db.add(s)
    db.commit()
    return s


@pytest.fixture
def booking():
    def _make(**overrides) -> dict:
        body = {
            "date": "2030-06-01",
            "startTime": "10:00",
            "endTime": "11:00",
            "tickets": 2,
            "socksCount": 0,
            "cancellationEnabled": False,
            "cancellationFee": 0,
            "administrationFee": 2.5,
            "amount": 27.5,
            "subtotal": 27.5,
            "name": "Sam",
            "surname": "Jumper",
            "email": "sam@example.com",
            "phone": "0612345678",
            "postalCode": "3511AA",
        }
        body.update(overrides)
        return body
    return _make


def completed_event(session_id: str, metadata: dict, payment_status: str = "paid",
                    payment_intent: str | None = None, event_type: str = "checkout.session.completed") -> bytes:
    return json.dumps({
        "id": f"evt_{uuid.uuid4().hex[:8]}",
        "type": event_type,
        "data": {"object": {
            "id": session_id,
            "object": "checkout.session",
            "payment_status": payment_status,
            "status": "complete",
            "payment_intent": payment_intent,
            "amount_total": 2750,
            "metadata": metadata,
        }},
    }).encode("utf-8")


@pytest.fixture
def post_webhook(client):
    def _post(payload: bytes, signature: str = VALID_SIGNATURE):
        return client.post("/api/v1/payment/webhook", content=payload,
                           headers={"Stripe-Signature": signature, "Content-Type": "application/json"})
    return _post


@pytest.fixture
def event():
    return completed_event
