from __future__ import annotations

import io
from datetime import datetime, timezone

from reportlab.graphics import renderPDF, renderSVG
from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from app.core.config import settings
from app.models.ticket import Ticket


def qr_drawing(value: str, size: float = 160) -> Drawing:
    """QR code encoding the ticket id; the gate scanner posts it to /tickets/verify."""
    widget = QrCodeWidget(value)
    x1, y1, x2, y2 = widget.getBounds()
    d = Drawing(size, size, transform=[size / (x2 - x1), 0, 0, size / (y2 - y1), 0, 0])
    d.add(widget)
    return d


def qr_svg_bytes(value: str, size: float = 200) -> bytes:
    return renderSVG.drawToString(qr_drawing(value, size)).encode("utf-8")


def render_ticket_pdf_bytes(t: Ticket) -> bytes:
    """Return an A4 PDF bytes. Pure function."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    w, h = A4

    # Header
    c.setFont("Helvetica-Bold", 18)
    c.drawString(40, h - 60, f"{settings.VENUE_NAME} Ticket")
    c.setFont("Helvetica", 11)
    c.drawString(40, h - 80, f"Ticket ID: {t.ticket_id}")

    renderPDF.draw(qr_drawing(t.ticket_id, 150), c, w - 190, h - 200)

    # Guest block
    c.setFont("Helvetica-Bold", 12)
    c.drawString(40, h - 120, "Guest")
    c.setFont("Helvetica", 11)
    c.drawString(40, h - 138, t.full_name or "(Not provided)")
    c.drawString(40, h - 154, t.email or "")

    # Visit block
    c.setFont("Helvetica-Bold", 12)
    c.drawString(40, h - 190, "Visit")
    c.setFont("Helvetica", 11)
    c.drawString(40, h - 208, f"Date: {t.date}")
    c.drawString(40, h - 224, f"Time: {t.start_time} - {t.end_time}")
    c.drawString(40, h - 240, f"Tickets: {t.tickets}")
    y = h - 256
    if t.bundle_name:
        c.drawString(40, y, f"Bundle: {t.bundle_name} ({t.bundle_tickets} admissions)")
        y -= 16
    if t.socks_count:
        c.drawString(40, y, f"Grip socks: {t.socks_count}")
        y -= 16

    # Payment
    y -= 20
    c.setFont("Helvetica-Bold", 12)
    c.drawString(40, y, "Payment")
    c.setFont("Helvetica", 11)
    c.drawString(40, y - 18, f"Amount: EUR {t.amount:.2f}")
    c.drawString(40, y - 34, f"Method: {t.payment_method}")
    if t.cancellation_enabled:
        c.drawString(40, y - 50, f"Cancellation protection (fee EUR {t.cancellation_fee:.2f})")

    # Footer
    c.setFont("Helvetica", 9)
    c.drawString(40, 40, "Show this QR code at the entrance. Each ticket can be scanned once.")
    c.drawString(40, 26, f"Generated: {datetime.now(timezone.utc).isoformat()}")

    c.showPage()
    c.save()
    return buf.getvalue()


def render_qr_only_pdf_bytes(t: Ticket) -> bytes:
    """Reduced ticket used by the email retry path: QR code and slot only."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    w, h = A4
    c.setFont("Helvetica-Bold", 16)
    c.drawString(40, h - 60, t.ticket_id)
    c.setFont("Helvetica", 11)
    c.drawString(40, h - 80, f"{t.date} {t.start_time} - {t.end_time}")
    renderPDF.draw(qr_drawing(t.ticket_id, 220), c, (w - 220) / 2, h - 340)
    c.showPage()
    c.save()
    return buf.getvalue()
