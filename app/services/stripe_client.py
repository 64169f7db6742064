from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol

import stripe
import structlog

from app.core.config import settings
from app.core.errors import AuthenticityError, GatewayError

logger = structlog.get_logger().bind(component="stripe")


@dataclass
class StripeConfig:
    secret_key: str
    webhook_secret: str
    currency: str = "eur"
    timeout: int = 25


@dataclass
class CheckoutSession:
    session_id: str
    redirect_url: str


@dataclass
class SessionStatus:
    session_id: str
    payment_status: str            # paid | unpaid | no_payment_required
    status: str | None = None      # open | complete | expired
    payment_intent_id: str | None = None
    captured_amount: int | None = None  # cents
    metadata: dict = field(default_factory=dict)

    @property
    def is_paid(self) -> bool:
        return self.payment_status in ("paid", "no_payment_required")


@dataclass
class PaymentIntentInfo:
    payment_intent_id: str
    captured_amount: int  # cents
    status: str | None = None


@dataclass
class RefundInfo:
    refund_id: str
    amount: int  # cents
    status: str | None = None


class PaymentGateway(Protocol):
    def create_checkout_session(self, *, amount: float, currency: str, correlation_key: dict, success_url: str,
                                cancel_url: str, customer_email: str | None = None,
                                description: str = "") -> CheckoutSession: ...

    def retrieve_session(self, session_id: str) -> SessionStatus: ...

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentInfo: ...

    def create_refund(self, *, payment_intent_id: str, amount_cents: int, reason: str,
                      correlation_key: str) -> RefundInfo: ...

    def find_refund(self, payment_intent_id: str, correlation_key: str) -> RefundInfo | None: ...

    def construct_event(self, payload: bytes, signature: str | None) -> dict: ...


def _field(obj: Any, name: str, default=None):
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _plain(obj: Any) -> dict:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return dict(obj)
    to_dict = getattr(obj, "to_dict", None)
    return dict(to_dict()) if callable(to_dict) else {}


def to_cents(amount: float) -> int:
    return int(round(float(amount) * 100))


class StripeClient:
    """Thin adapter over the Stripe SDK. Every SDK failure surfaces as GatewayError."""

    def __init__(self, cfg: StripeConfig):
        self.cfg = cfg
        stripe.default_http_client = stripe.RequestsClient(timeout=cfg.timeout)

    def create_checkout_session(self, *, amount: float, currency: str, correlation_key: dict, success_url: str,
                                cancel_url: str, customer_email: str | None = None,
                                description: str = "") -> CheckoutSession:
        """correlation_key is stored as the session metadata and echoed back by the webhook."""
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [{
                "price_data": {
                    "currency": currency or self.cfg.currency,
                    "product_data": {"name": description or "Trampoline park ticket"},
                    "unit_amount": to_cents(amount),
                },
                "quantity": 1,
            }],
            "metadata": {k: str(v) for k, v in correlation_key.items()},
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if customer_email:
            params["customer_email"] = customer_email
        try:
            session = stripe.checkout.Session.create(api_key=self.cfg.secret_key, **params)
        except stripe.StripeError as e:
            logger.error("checkout_session_failed", error=str(e))
            raise GatewayError("Payment provider unavailable, please try again") from e
        return CheckoutSession(session_id=session.id, redirect_url=session.url)

    def retrieve_session(self, session_id: str) -> SessionStatus:
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.cfg.secret_key, expand=["payment_intent"])
        except stripe.StripeError as e:
            logger.warning("session_retrieve_failed", session_id=session_id, error=str(e))
            raise GatewayError("Could not retrieve payment session") from e

        payment_status = _field(session, "payment_status") or "unpaid"
        pi = _field(session, "payment_intent")
        captured = None
        if pi is None:
            pi_id = None
        elif isinstance(pi, str):
            pi_id = pi
        else:
            pi_id = _field(pi, "id")
            captured = _field(pi, "amount_received")
        if captured is None and payment_status == "paid":
            captured = _field(session, "amount_total")
        return SessionStatus(
            session_id=session_id,
            payment_status=payment_status,
            status=_field(session, "status"),
            payment_intent_id=pi_id,
            captured_amount=captured,
            metadata=_plain(_field(session, "metadata")),
        )

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentInfo:
        try:
            pi = stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.cfg.secret_key)
        except stripe.StripeError as e:
            logger.warning("payment_intent_retrieve_failed", payment_intent_id=payment_intent_id, error=str(e))
            raise GatewayError("Could not retrieve payment") from e
        return PaymentIntentInfo(
            payment_intent_id=payment_intent_id,
            captured_amount=int(_field(pi, "amount_received") or 0),
            status=_field(pi, "status"),
        )

    def create_refund(self, *, payment_intent_id: str, amount_cents: int, reason: str,
                      correlation_key: str) -> RefundInfo:
        try:
            refund = stripe.Refund.create(
                api_key=self.cfg.secret_key,
                idempotency_key=f"refund-{correlation_key}",
                payment_intent=payment_intent_id,
                amount=int(amount_cents),
                reason=reason,
                metadata={"ticketId": correlation_key},
            )
        except stripe.StripeError as e:
            logger.error("refund_create_failed", payment_intent_id=payment_intent_id, error=str(e))
            raise GatewayError("Refund failed at payment provider") from e
        return RefundInfo(refund_id=refund.id, amount=int(_field(refund, "amount") or 0), status=_field(refund, "status"))

    def find_refund(self, payment_intent_id: str, correlation_key: str) -> RefundInfo | None:
        """Look up a refund issued for ``correlation_key`` (used when the local write was lost)."""
        try:
            refunds = stripe.Refund.list(payment_intent=payment_intent_id, limit=20, api_key=self.cfg.secret_key)
        except stripe.StripeError as e:
            raise GatewayError("Could not list refunds") from e
        for r in _field(refunds, "data") or []:
            if _field(r, "status") in ("failed", "canceled"):
                continue
            meta = _plain(_field(r, "metadata"))
            if meta.get("ticketId") == correlation_key:
                return RefundInfo(refund_id=_field(r, "id"), amount=int(_field(r, "amount") or 0), status=_field(r, "status"))
        return None

    def construct_event(self, payload: bytes, signature: str | None) -> dict:
        if not signature:
            raise AuthenticityError("Missing Stripe-Signature header")
        try:
            stripe.Webhook.construct_event(payload, signature, self.cfg.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("webhook_signature_invalid", error=str(e))
            raise AuthenticityError("Webhook signature verification failed") from e
        except ValueError as e:
            raise AuthenticityError("Webhook payload is not valid JSON") from e
        return json.loads(payload)


def build_stripe_client() -> StripeClient:
    return StripeClient(StripeConfig(
        secret_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        currency=settings.STRIPE_CURRENCY,
        timeout=settings.STRIPE_TIMEOUT_SECONDS,
    ))
