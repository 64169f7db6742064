from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError
from app.db.session import SessionLocal
from app.services.email_service import MailTransport, retry_missing_emails
from app.services.reconciliation_service import run_payment_sync
from app.services.stripe_client import PaymentGateway, build_stripe_client


def payment_sync(mode: str = "recent", gateway: PaymentGateway | None = None,
                 transport: MailTransport | None = None, session_factory=SessionLocal) -> dict:
    """One payment reconciliation sweep. Shared by Celery beat and the in-process scheduler."""
    db: Session = session_factory()
    try:
        try:
            return run_payment_sync(db, gateway or build_stripe_client(), transport or MailTransport(), mode=mode)
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
    finally:
        db.close()


def email_retry(transport: MailTransport | None = None, session_factory=SessionLocal) -> dict:
    """Resend confirmations for paid tickets without a SENT log. Run periodically."""
    db: Session = session_factory()
    try:
        try:
            return retry_missing_emails(db, transport or MailTransport())
        except ProgrammingError:
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
    finally:
        db.close()
