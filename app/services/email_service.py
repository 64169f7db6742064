from datetime import datetime, timedelta, timezone
import base64
import smtplib
from email.message import EmailMessage
import uuid

import requests
import structlog
from sqlalchemy import select, func, or_, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.email_log import EmailLog
from app.models.ticket import Ticket
from app.services.ticket_service import qr_svg_bytes, render_qr_only_pdf_bytes, render_ticket_pdf_bytes

logger = structlog.get_logger().bind(component="email")

# a claim older than this belongs to a worker that died mid-send
CLAIM_TIMEOUT = timedelta(minutes=10)

# (filename, content, mime) or (filename, content, mime, content_id) for inline parts referenced as cid:<id>
Attachment = tuple


def send_email(to_email: str, subject: str, body: str, html: str | None = None, attachments: list[Attachment] | None = None):
    """Send email via SendGrid if configured, otherwise SMTP (MailHog recommended for local)."""
    attachments = attachments or []
    if settings.SENDGRID_API_KEY:
        _send_via_sendgrid(to_email, subject, body, html, attachments)
        return

    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)
    if html:
        msg.add_alternative(html, subtype="html")

    inline = [a for a in attachments if len(a) > 3 and a[3]]
    regular = [a for a in attachments if not (len(a) > 3 and a[3])]
    if html and inline:
        html_part = msg.get_body(preferencelist=("html",))
        for filename, content, mime, cid in inline:
            maintype, subtype = (mime.split("/", 1) + ["octet-stream"])[:2]
            html_part.add_related(content, maintype=maintype, subtype=subtype, cid=f"<{cid}>", filename=filename)

    for filename, content, mime, *_ in regular:
        maintype, subtype = (mime.split("/", 1) + ["octet-stream"])[:2]
        msg.add_attachment(content, maintype=maintype, subtype=subtype, filename=filename)

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
        if settings.SMTP_STARTTLS:
            smtp.starttls()
        if settings.SMTP_USERNAME:
            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        smtp.send_message(msg)


def _send_via_sendgrid(to_email: str, subject: str, body: str, html: str | None, attachments: list[Attachment]):
    from_email = settings.SENDGRID_FROM_EMAIL or settings.SMTP_FROM
    content = [{"type": "text/plain", "value": body}]
    if html:
        content.append({"type": "text/html", "value": html})
    payload = {
        "personalizations": [{"to": [{"email": to_email}]}],
        "from": {"email": from_email},
        "subject": subject,
        "content": content,
    }

    if attachments:
        items = []
        for a in attachments:
            filename, data, mime = a[0], a[1], a[2]
            cid = a[3] if len(a) > 3 else None
            item = {
                "content": base64.b64encode(data).decode("utf-8"),
                "type": mime,
                "filename": filename,
                "disposition": "inline" if cid else "attachment",
            }
            if cid:
                item["content_id"] = cid
            items.append(item)
        payload["attachments"] = items

    r = requests.post(
        "https://api.sendgrid.com/v3/mail/send",
        json=payload,
        headers={"Authorization": f"Bearer {settings.SENDGRID_API_KEY}"},
        timeout=20,
    )
    if r.status_code >= 400:
        raise RuntimeError(f"SendGrid error {r.status_code}: {r.text}")


class MailTransport:
    """Injected into services so tests can record instead of sending."""

    def send(self, to_email: str, subject: str, body: str, html: str | None = None,
             attachments: list[Attachment] | None = None) -> None:
        send_email(to_email, subject, body, html=html, attachments=attachments)


def _aware(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def sent_log(db: Session, ticket_id: str) -> EmailLog | None:
    return db.execute(
        select(EmailLog).where(EmailLog.ticket_id == ticket_id, EmailLog.status == "SENT").limit(1)
    ).scalar_one_or_none()


def claim_confirmation(db: Session, t: Ticket, now: datetime | None = None) -> bool:
    """Take the ticket's send slot. Only one of several concurrent callers gets True."""
    now = now or datetime.now(timezone.utc)
    res = db.execute(
        update(Ticket)
        .where(Ticket.id == t.id, or_(Ticket.email_claimed_at.is_(None), Ticket.email_claimed_at < now - CLAIM_TIMEOUT))
        .values(email_claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return res.rowcount == 1


def _release_claim(db: Session, t: Ticket):
    db.execute(update(Ticket).where(Ticket.id == t.id).values(email_claimed_at=None)
               .execution_options(synchronize_session=False))


def latest_failed_log(db: Session, ticket_id: str) -> EmailLog | None:
    return db.execute(
        select(EmailLog)
        .where(EmailLog.ticket_id == ticket_id, EmailLog.status == "FAILED")
        .order_by(EmailLog.sent_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def _confirmation_message(t: Ticket) -> tuple[str, str, str]:
    subject = f"Your {settings.VENUE_NAME} tickets - {t.ticket_id}"
    lines = [
        f"Hi {t.name or 'there'},",
        "",
        f"Thank you for booking at {settings.VENUE_NAME}.",
        f"Ticket ID: {t.ticket_id}",
        f"Date: {t.date}",
        f"Time: {t.start_time} - {t.end_time}",
        f"Admissions: {t.admissions}",
    ]
    if t.socks_count:
        lines.append(f"Grip socks: {t.socks_count}")
    lines += [f"Amount: EUR {t.amount:.2f}", "", "Your ticket is attached. Show the QR code at the entrance."]
    body = "\n".join(lines)
    html = (
        f"<p>Hi {t.name or 'there'},</p>"
        f"<p>Thank you for booking at {settings.VENUE_NAME}.</p>"
        f"<p><strong>Ticket ID:</strong> {t.ticket_id}<br>"
        f"<strong>Date:</strong> {t.date}<br>"
        f"<strong>Time:</strong> {t.start_time} - {t.end_time}<br>"
        f"<strong>Admissions:</strong> {t.admissions}</p>"
        f"<p><img src=\"cid:qr-{t.ticket_id}\" alt=\"{t.ticket_id}\" width=\"200\" height=\"200\"></p>"
        "<p>Your ticket is attached. Show the QR code at the entrance.</p>"
    )
    return subject, body, html


def _reduced_message(t: Ticket) -> tuple[str, str, str]:
    subject = f"Your {settings.VENUE_NAME} ticket {t.ticket_id}"
    body = f"Ticket ID: {t.ticket_id}\nDate: {t.date} {t.start_time} - {t.end_time}\nShow the attached QR code at the entrance."
    html = (
        f"<p>Ticket ID: <strong>{t.ticket_id}</strong><br>{t.date} {t.start_time} - {t.end_time}</p>"
        f"<p><img src=\"cid:qr-{t.ticket_id}\" alt=\"{t.ticket_id}\" width=\"200\" height=\"200\"></p>"
    )
    return subject, body, html


def send_ticket_confirmation(db: Session, t: Ticket, transport: MailTransport, *,
                             force: bool = False) -> EmailLog | None:
    """Send the confirmation with the PDF ticket and log the outcome.

    Returns the existing SENT row instead of sending again, unless ``force``
    (manual resend from the admin console). Returns None when another request
    holds the send claim (webhook and success-page verify racing). A transport
    failure is recorded as a FAILED row and frees the claim so that
    ``retry_missing_emails`` can pick the ticket up.
    """
    if not force:
        existing = sent_log(db, t.ticket_id)
        if existing:
            return existing
        if not claim_confirmation(db, t):
            logger.info("confirmation_in_flight", ticket_id=t.ticket_id)
            return sent_log(db, t.ticket_id)

    subject, body, html = _confirmation_message(t)
    log = EmailLog(id=str(uuid.uuid4()), email=t.email, name=t.full_name, ticket_id=t.ticket_id,
                   retry_count=0, is_retry=False, sent_at=datetime.now(timezone.utc))
    try:
        attachments = [
            (f"{t.ticket_id}.pdf", render_ticket_pdf_bytes(t), "application/pdf"),
            (f"{t.ticket_id}.svg", qr_svg_bytes(t.ticket_id), "image/svg+xml", f"qr-{t.ticket_id}"),
        ]
        transport.send(t.email, subject, body, html=html, attachments=attachments)
        log.status = "SENT"
        logger.info("confirmation_sent", ticket_id=t.ticket_id)
    except Exception as e:
        log.status = "FAILED"
        log.error = str(e)[:2000]
        if not force:
            _release_claim(db, t)
        logger.warning("confirmation_failed", ticket_id=t.ticket_id, error=str(e))
    db.add(log)
    db.commit()
    return log


def retry_missing_emails(db: Session, transport: MailTransport, now: datetime | None = None) -> dict:
    """One retry sweep: paid tickets from the recent window that still have no SENT log."""
    now = now or datetime.now(timezone.utc)
    window_start = now - timedelta(hours=settings.EMAIL_RETRY_WINDOW_HOURS)
    cooldown = timedelta(minutes=settings.EMAIL_RETRY_COOLDOWN_MINUTES)

    sent_ids = select(EmailLog.ticket_id).where(EmailLog.status == "SENT")
    candidates = db.execute(
        select(Ticket).where(
            Ticket.created_at >= window_start,
            Ticket.cancel_ticket.is_(False),
            Ticket.payment_status == "paid",
            Ticket.email != "",
            Ticket.ticket_id.not_in(sent_ids),
        ).order_by(Ticket.created_at.asc())
    ).scalars().all()

    stats = {"checked": len(candidates), "sent": 0, "failed": 0, "skipped": 0}
    for t in candidates:
        last_failed = latest_failed_log(db, t.ticket_id)
        if last_failed and now - _aware(last_failed.sent_at) < cooldown:
            stats["skipped"] += 1
            continue
        if not claim_confirmation(db, t, now):
            stats["skipped"] += 1
            continue

        attempt = (last_failed.retry_count if last_failed else 0) + 1
        subject, body, html = _reduced_message(t)
        try:
            transport.send(t.email, subject, body, html=html, attachments=[
                (f"{t.ticket_id}-qr.pdf", render_qr_only_pdf_bytes(t), "application/pdf"),
                (f"{t.ticket_id}.svg", qr_svg_bytes(t.ticket_id), "image/svg+xml", f"qr-{t.ticket_id}"),
            ])
        except Exception as e:
            if last_failed:
                last_failed.retry_count = attempt
                last_failed.error = str(e)[:2000]
                last_failed.sent_at = now
                last_failed.is_retry = True
            else:
                db.add(EmailLog(id=str(uuid.uuid4()), email=t.email, name=t.full_name, ticket_id=t.ticket_id,
                                status="FAILED", error=str(e)[:2000], retry_count=attempt, is_retry=True, sent_at=now))
            _release_claim(db, t)
            db.commit()
            stats["failed"] += 1
            logger.warning("email_retry_failed", ticket_id=t.ticket_id, attempt=attempt, error=str(e))
            continue

        db.add(EmailLog(id=str(uuid.uuid4()), email=t.email, name=t.full_name, ticket_id=t.ticket_id,
                        status="SENT", retry_count=attempt, is_retry=True, sent_at=now))
        db.commit()
        stats["sent"] += 1
        logger.info("email_retry_sent", ticket_id=t.ticket_id, attempt=attempt)

    if candidates:
        logger.info("email_retry_sweep", **stats)
    return stats


def email_stats(db: Session, since: datetime | None = None) -> dict:
    q = select(EmailLog.status, func.count(EmailLog.id))
    if since:
        q = q.where(EmailLog.sent_at >= since)
    counts = dict(db.execute(q.group_by(EmailLog.status)).all())
    retried = db.execute(select(func.count(EmailLog.id)).where(EmailLog.is_retry.is_(True))).scalar_one()
    recent_failures = db.execute(
        select(EmailLog).where(EmailLog.status == "FAILED").order_by(EmailLog.sent_at.desc()).limit(20)
    ).scalars().all()
    sent, failed = int(counts.get("SENT", 0)), int(counts.get("FAILED", 0))
    return {
        "sent": sent,
        "failed": failed,
        "total": sent + failed,
        "retried": int(retried),
        "recentFailures": [
            {
                "ticketId": f.ticket_id,
                "email": f.email,
                "error": f.error,
                "retryCount": f.retry_count,
                "lastAttempt": _aware(f.sent_at).isoformat() if f.sent_at else None,
            }
            for f in recent_failures
        ],
    }
