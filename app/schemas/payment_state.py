"""Payment state of a ticket as a tagged variant.

The tickets table keeps flat columns; this is the typed view handed to the API.
Each variant only carries the fields that are valid for it, so a cash ticket
can never expose a Stripe session and a pending card ticket never has a refund.
"""
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from app.models.ticket import Ticket


class CashPayment(BaseModel):
    kind: Literal["cash"] = "cash"
    status: Literal["paid"] = "paid"


class CardPending(BaseModel):
    kind: Literal["card-pending"] = "card-pending"
    status: Literal["pending", "processing"] = "pending"
    sessionId: Optional[str] = None


class CardPaid(BaseModel):
    kind: Literal["card-paid"] = "card-paid"
    status: Literal["paid"] = "paid"
    sessionId: Optional[str] = None
    paymentIntentId: str
    refundRequested: bool = False


class Refunded(BaseModel):
    kind: Literal["refunded"] = "refunded"
    paymentIntentId: str
    refundId: str
    amount: float
    refundedAt: Optional[datetime] = None


PaymentState = Annotated[Union[CashPayment, CardPending, CardPaid, Refunded], Field(discriminator="kind")]
payment_state_adapter = TypeAdapter(PaymentState)


class InconsistentPaymentState(ValueError):
    pass


def payment_state_of(t: Ticket) -> CashPayment | CardPending | CardPaid | Refunded:
    if t.payment_method == "cash":
        if t.stripe_session_id or t.stripe_payment_intent_id or (t.refund_status or "none") != "none":
            raise InconsistentPaymentState(f"cash ticket {t.ticket_id} carries card payment fields")
        return payment_state_adapter.validate_python({"kind": "cash"})

    if t.refund_status == "refunded":
        if not (t.stripe_payment_intent_id and t.refund_transaction_id):
            raise InconsistentPaymentState(f"refunded ticket {t.ticket_id} has no refund reference")
        return payment_state_adapter.validate_python({
            "kind": "refunded",
            "paymentIntentId": t.stripe_payment_intent_id,
            "refundId": t.refund_transaction_id,
            "amount": t.refunded_amount or 0,
            "refundedAt": t.refund_date,
        })

    if t.payment_status == "paid":
        if not t.stripe_payment_intent_id:
            raise InconsistentPaymentState(f"paid card ticket {t.ticket_id} has no payment intent")
        return payment_state_adapter.validate_python({
            "kind": "card-paid",
            "sessionId": t.stripe_session_id,
            "paymentIntentId": t.stripe_payment_intent_id,
            "refundRequested": t.refund_status == "requested",
        })

    return payment_state_adapter.validate_python({
        "kind": "card-pending",
        "status": t.payment_status if t.payment_status in ("pending", "processing") else "pending",
        "sessionId": t.stripe_session_id,
    })
