"""
Consent & Payment Authorization PDF
Generated once an enrollment is paid: patient and transaction details, the
terms snapshot the patient accepted, the acceptance evidence and signature
"""

import base64
import binascii
import io
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.lib.utils import ImageReader
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from sqlalchemy.orm import Session

from .. import config
from ..models import Enrollment
from ..utils.clock import utcnow
from ..utils.sanitization import strip_html

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "data:image/png;base64,"
SIGNATURE_MAX_WIDTH = 3 * inch


def format_money(amount_cents: int, currency: str) -> str:
    amount = f"{amount_cents / 100:,.2f}"
    if (currency or "usd").lower() == "usd":
        return f"${amount}"
    return f"{amount} {currency.upper()}"


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "N/A"
    return value.strftime("%B %d, %Y %H:%M:%S UTC")


def decode_signature(signature_data: Optional[str]) -> Optional[bytes]:
    """PNG bytes of a data:image/png;base64 signature, or None"""
    if not signature_data or not signature_data.startswith(SIGNATURE_PREFIX):
        return None
    try:
        return base64.b64decode(signature_data[len(SIGNATURE_PREFIX):], validate=True)
    except (binascii.Error, ValueError):
        return None


def consent_pdf_location(relative_path: Optional[str]) -> Optional[Path]:
    if not relative_path:
        return None
    return Path(config.CONSENT_PDF_DIR) / relative_path


class ConsentPDFGenerator:
    """Generate the consent document for a paid enrollment"""

    def __init__(self, enrollment: Enrollment, payment_date: datetime):
        self.enrollment = enrollment
        self.policy = enrollment.policy
        self.payment_date = payment_date

        # PDF settings
        self.margin = 0.75 * inch
        self.dark_gray = colors.HexColor("#1e293b")
        self.muted_gray = colors.HexColor("#64748b")

        styles = getSampleStyleSheet()
        self.title_style = ParagraphStyle(
            "ConsentTitle",
            parent=styles["Heading1"],
            fontSize=16,
            textColor=self.dark_gray,
            spaceAfter=12,
        )
        self.heading_style = ParagraphStyle(
            "ConsentHeading",
            parent=styles["Heading2"],
            fontSize=12,
            textColor=self.dark_gray,
            spaceBefore=14,
            spaceAfter=6,
        )
        self.body_style = ParagraphStyle(
            "ConsentBody",
            parent=styles["Normal"],
            fontSize=10,
            leading=14,
            textColor=self.dark_gray,
            spaceAfter=6,
        )
        self.footer_style = ParagraphStyle(
            "ConsentFooter", parent=self.body_style, fontSize=8, textColor=self.muted_gray
        )

    def _details_table(self, rows: list[tuple[str, Optional[str]]]) -> Table:
        data = [
            [label, Paragraph(escape(value or "N/A"), self.body_style)] for label, value in rows
        ]
        table = Table(data, colWidths=[1.8 * inch, 5.2 * inch])
        table.setStyle(
            TableStyle(
                [
                    ("FONT", (0, 0), (0, -1), "Helvetica-Bold", 10),
                    ("TEXTCOLOR", (0, 0), (-1, -1), self.dark_gray),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
                ]
            )
        )
        return table

    def _text_section(self, title: str, html_text: Optional[str]) -> list:
        plain = strip_html(html_text)
        if not plain:
            return []
        story = [Paragraph(title, self.heading_style)]
        for block in plain.split("\n\n"):
            story.append(Paragraph(escape(block).replace("\n", "<br/>"), self.body_style))
        return story

    def _signature(self) -> list:
        png = decode_signature(self.enrollment.signature_data)
        if png is None:
            return []

        story = [Paragraph("Signature", self.heading_style)]
        try:
            width, height = ImageReader(io.BytesIO(png)).getSize()
        except Exception as e:
            logger.warning(f"⚠️ Signature for enrollment {self.enrollment.id} not embeddable: {e}")
            story.append(Paragraph("[Signature image could not be embedded]", self.body_style))
            return story

        scale = min(SIGNATURE_MAX_WIDTH / width, 1.0) if width else 1.0
        story.append(Image(io.BytesIO(png), width=width * scale, height=height * scale))
        return story

    def generate(self) -> bytes:
        """Generate PDF and return bytes"""
        enrollment = self.enrollment
        logger.info(f"📄 Generating consent PDF for enrollment {enrollment.id}")

        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=letter,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=f"Consent - Enrollment {enrollment.id}",
        )

        story = [Paragraph("CONSENT &amp; PAYMENT AUTHORIZATION", self.title_style)]

        story.append(Paragraph("Patient Details", self.heading_style))
        story.append(
            self._details_table(
                [
                    ("Name:", enrollment.patient_name),
                    ("Email:", enrollment.patient_email),
                    ("Phone:", enrollment.patient_phone),
                ]
            )
        )

        story.append(Paragraph("Transaction Details", self.heading_style))
        story.append(
            self._details_table(
                [
                    ("Amount:", format_money(enrollment.amount_cents, enrollment.currency)),
                    ("Enrollment ID:", enrollment.id),
                    ("Payment Method:", (enrollment.payment_method_type or "card").upper()),
                    ("Payment Date:", format_timestamp(self.payment_date)),
                    ("Terms Version:", enrollment.terms_version),
                    ("Terms SHA-256:", enrollment.terms_sha256),
                ]
            )
        )

        if self.policy:
            story.extend(self._text_section("Terms of Service", self.policy.terms_text))
            story.extend(self._text_section("Privacy Policy", self.policy.privacy_text))
        else:
            story.append(Paragraph("Terms of Service", self.heading_style))
            story.append(Paragraph(escape(enrollment.terms_url), self.body_style))

        story.append(Paragraph("Consent Record", self.heading_style))
        story.append(
            self._details_table(
                [
                    ("Terms Accepted At:", format_timestamp(enrollment.terms_accepted_at)),
                    ("Payment Confirmed At:", format_timestamp(self.payment_date)),
                    ("IP Address:", enrollment.terms_accept_ip or "unknown"),
                    ("User Agent:", enrollment.terms_accept_user_agent or "unknown"),
                ]
            )
        )

        story.extend(self._signature())

        story.append(Spacer(1, 0.4 * inch))
        story.append(
            Paragraph(
                "<i>This document was generated automatically at the time of payment "
                "confirmation.</i>",
                self.footer_style,
            )
        )

        doc.build(story)
        return buffer.getvalue()


def store_consent_pdf(db: Session, enrollment: Enrollment) -> Optional[str]:
    """
    Generate and store the consent document for a paid enrollment.

    Returns the path relative to CONSENT_PDF_DIR, or None when generation or
    storage failed (logged; the payment itself is already committed).
    """
    payment_date = enrollment.paid_at or utcnow()
    relative_path = f"{enrollment.id}/{int(time.time() * 1000)}-consent.pdf"
    try:
        pdf_bytes = ConsentPDFGenerator(enrollment, payment_date).generate()
        target = consent_pdf_location(relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(pdf_bytes)
    except Exception as e:
        logger.error(f"❌ Failed to generate consent PDF for enrollment {enrollment.id}: {e}")
        return None

    enrollment.consent_pdf_path = relative_path
    db.commit()
    logger.info(f"✅ Consent PDF stored: {relative_path}")
    return relative_path
