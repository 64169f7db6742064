from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_email_retry, get_mail_transport, require_roles
from app.core.errors import InvalidRequest
from app.models.user import User
from app.schemas.booking import TicketRef
from app.schemas.envelope import ok
from app.services.booking_service import get_ticket_or_404
from app.services.email_service import MailTransport, email_stats, send_ticket_confirmation

router = APIRouter(tags=["email"])


def _log_out(log) -> dict:
    return {"ticketId": log.ticket_id, "email": log.email, "status": log.status, "error": log.error,
            "retryCount": log.retry_count}


@router.post("/email-ticket/send-email-ticket")
def send_email_ticket(body: TicketRef, db: Session = Depends(get_db),
                      transport: MailTransport = Depends(get_mail_transport),
                      me: User = Depends(require_roles("admin", "staff"))):
    """Manual resend from the admin console; always sends."""
    t = get_ticket_or_404(db, body.ticketId)
    if not t.email:
        raise InvalidRequest("Ticket has no email address")
    log = send_ticket_confirmation(db, t, transport, force=True)
    return ok(_log_out(log), "Email sent" if log.status == "SENT" else "Email failed")


@router.post("/tickets/retry-email")
def retry_email(body: TicketRef, db: Session = Depends(get_db),
                transport: MailTransport = Depends(get_mail_transport),
                me: User = Depends(require_roles("admin"))):
    t = get_ticket_or_404(db, body.ticketId)
    if t.payment_status != "paid":
        raise InvalidRequest("Ticket is not paid", code="ticket_not_paid")
    log = send_ticket_confirmation(db, t, transport)
    if log is None:
        return ok({"ticketId": t.ticket_id, "email": t.email, "status": "SENDING"}, "Email already being sent")
    return ok(_log_out(log))


@router.get("/tickets/email-stats")
def get_email_stats(db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    return ok(email_stats(db))


@router.post("/email-retry/start")
async def email_retry_start(svc=Depends(get_email_retry), me: User = Depends(require_roles("admin"))):
    started = svc.start()
    return ok(svc.status(), "Email retry started" if started else "Email retry already running")


@router.post("/email-retry/stop")
async def email_retry_stop(svc=Depends(get_email_retry), me: User = Depends(require_roles("admin"))):
    stopped = await svc.stop()
    return ok(svc.status(), "Email retry stopped" if stopped else "Email retry was not running")


@router.get("/email-retry/status")
async def email_retry_status(svc=Depends(get_email_retry), me: User = Depends(require_roles("admin"))):
    return ok(svc.status())


@router.post("/email-retry/manual-run")
async def email_retry_run(svc=Depends(get_email_retry), me: User = Depends(require_roles("admin"))):
    result = await svc.trigger()
    return ok(result, "An email retry is already in progress" if result.get("skipped") else "Email retry completed")
