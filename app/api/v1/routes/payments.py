from __future__ import annotations
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
import structlog

from app.db.session import get_db
from app.api.deps import get_gateway, get_mail_transport, get_payment_sync, require_roles
from app.core.errors import NotFound
from app.models.user import User
from app.schemas.booking import BookingCreate, WalkinCreate
from app.schemas.envelope import ok
from app.services.booking_service import get_ticket_by_session, ticket_to_dict
from app.services.checkout_service import start_online_checkout, start_walkin
from app.services.email_service import MailTransport
from app.services.reconciliation_service import handle_checkout_completed, verify_session
from app.services.stripe_client import PaymentGateway

router = APIRouter(tags=["payments"])
logger = structlog.get_logger().bind(component="payments_api")


async def raw_body(request: Request) -> bytes:
    # Signature is computed over the exact bytes Stripe sent
    return await request.body()


@router.post("/payment/session")
def create_payment_session(body: BookingCreate, db: Session = Depends(get_db),
                           gateway: PaymentGateway = Depends(get_gateway)):
    result = start_online_checkout(db, gateway, body.model_dump())
    return ok(result, "Checkout session created")


@router.post("/walkin")
def create_walkin(body: WalkinCreate, db: Session = Depends(get_db),
                  gateway: PaymentGateway = Depends(get_gateway),
                  transport: MailTransport = Depends(get_mail_transport),
                  me: User = Depends(require_roles("admin", "staff"))):
    result = start_walkin(db, gateway, transport, body.model_dump(), actor=me.email)
    return ok(result, "Walk-in booking created")


@router.get("/payment/session-result/{session_id}")
def session_result(session_id: str, db: Session = Depends(get_db)):
    t = get_ticket_by_session(db, session_id)
    if not t:
        raise NotFound("No ticket for this session yet")
    return ok(ticket_to_dict(t))


@router.post("/payment/webhook")
def stripe_webhook(request: Request, payload: bytes = Depends(raw_body), db: Session = Depends(get_db),
                   gateway: PaymentGateway = Depends(get_gateway),
                   transport: MailTransport = Depends(get_mail_transport)):
    event = gateway.construct_event(payload, request.headers.get("stripe-signature"))
    event_type = event.get("type")
    logger.info("webhook_received", event_type=event_type, event_id=event.get("id"))
    if event_type != "checkout.session.completed":
        return {"received": True}
    session = (event.get("data") or {}).get("object") or {}
    handle_checkout_completed(db, gateway, transport, session)
    return {"received": True}


@router.get("/payment/verify-payment")
def verify_payment(sessionId: str = Query(..., min_length=1), db: Session = Depends(get_db),
                   gateway: PaymentGateway = Depends(get_gateway),
                   transport: MailTransport = Depends(get_mail_transport)):
    t = verify_session(db, gateway, transport, sessionId)
    if t is None:
        return ok({"paymentStatus": "pending", "ticket": None}, "Payment not completed yet")
    return ok({"paymentStatus": t.payment_status, "ticket": ticket_to_dict(t)})


# Payment sync service control
@router.post("/payment-sync/start")
async def payment_sync_start(sync=Depends(get_payment_sync), me: User = Depends(require_roles("admin"))):
    started = sync.start()
    return ok(sync.status(), "Payment sync started" if started else "Payment sync already running")


@router.post("/payment-sync/stop")
async def payment_sync_stop(sync=Depends(get_payment_sync), me: User = Depends(require_roles("admin"))):
    stopped = await sync.stop()
    return ok(sync.status(), "Payment sync stopped" if stopped else "Payment sync was not running")


@router.get("/payment-sync/status")
async def payment_sync_status(sync=Depends(get_payment_sync), me: User = Depends(require_roles("admin"))):
    return ok(sync.status())


@router.post("/payment-sync/manual-sync")
async def payment_sync_manual(sync=Depends(get_payment_sync), me: User = Depends(require_roles("admin"))):
    result = await sync.trigger()
    if result.get("skipped"):
        return ok(result, "A payment sync is already in progress")
    return ok(result, "Payment sync completed")
