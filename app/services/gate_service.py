from datetime import datetime, timezone

import structlog
from sqlalchemy import text, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import Conflict, Forbidden, InvalidRequest, NotFound, StoreTimeout
from app.models.ticket import Ticket
from app.services.audit_service import log_audit
from app.services.booking_service import get_ticket

logger = structlog.get_logger().bind(component="gate")


def _bound_statement_time(db: Session):
    # Scoped to the current transaction; SQLite has no equivalent.
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text(f"SET LOCAL statement_timeout = {int(settings.GATE_QUERY_TIMEOUT_MS)}"))


def verify_ticket(db: Session, ticket_id: str, actor: str) -> Ticket:
    """Redeem a ticket at the entrance. A ticket can be redeemed once."""
    key = (ticket_id or "").strip()
    if not key:
        raise InvalidRequest("ticketId is required")

    try:
        _bound_statement_time(db)
        t = get_ticket(db, key)
        if not t:
            raise NotFound("Ticket not found")
        if t.cancel_ticket:
            raise Forbidden("Ticket is cancelled and cannot be used", code="ticket_cancelled")
        if t.is_used:
            raise Conflict("Ticket has already been used", code="already_used")

        now = datetime.now(timezone.utc)
        result = db.execute(
            update(Ticket)
            .where(Ticket.id == t.id, Ticket.is_used.is_(False), Ticket.cancel_ticket.is_(False))
            .values(is_used=True, used_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # another scanner got there first
            db.rollback()
            raise Conflict("Ticket has already been used", code="already_used")
        log_audit(db, actor, "ticket_scanned", "ticket", t.ticket_id, {})
        db.commit()
    except OperationalError as e:
        db.rollback()
        logger.error("gate_store_timeout", ticket_id=key, error=str(e))
        raise StoreTimeout("Ticket store did not respond in time, please scan again") from e

    db.refresh(t)
    logger.info("ticket_scanned", ticket_id=t.ticket_id, admissions=t.admissions)
    return t
