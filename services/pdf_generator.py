# app/services/pdf_generator.py
import io
from datetime import datetime
from decimal import Decimal

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer

from core.config import settings
from models.donation import Donation


class PDFGenerator:
    """80G donation certificate rendering."""

    def __init__(self, organization_name: str = None):
        self.organization_name = organization_name or settings.ORGANIZATION_NAME

    def generate_certificate(self, donation: Donation) -> bytes:
        """Render the certificate for a settled donation; returns PDF bytes."""
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=40, leftMargin=40, topMargin=40, bottomMargin=40,
            title="80G Tax Exemption Certificate",
            author=self.organization_name,
            subject="Tax Exemption Certificate under Section 80G",
        )
        styles = getSampleStyleSheet()
        story = []

        title_style = ParagraphStyle(
            'CertificateTitle',
            parent=styles['Heading1'],
            fontName='Helvetica-Bold',
            fontSize=24,
            alignment=1,  # center
            spaceAfter=6,
            textColor=colors.HexColor('#1a1a1a'),
        )
        subtitle_style = ParagraphStyle(
            'CertificateSubtitle',
            parent=styles['Normal'],
            fontSize=12,
            alignment=1,
            textColor=colors.HexColor('#2563eb'),
            spaceAfter=20,
        )
        body_style = ParagraphStyle(
            'CertificateBody',
            parent=styles['Normal'],
            fontSize=11,
            leading=16,
        )

        story.append(Paragraph(self.organization_name.upper(), title_style))
        story.append(Paragraph("Certificate of Donation under Section 80G of the Income Tax Act", subtitle_style))
        story.append(Spacer(1, 0.2 * inch))

        donor_name = "Anonymous Donor" if donation.is_anonymous else donation.donor_name
        story.append(Paragraph(
            f"This is to certify that <b>{_escape(donor_name)}</b> has made a donation of "
            f"<b>INR {_format_amount(donation.amount)}</b> to {_escape(self.organization_name)}.",
            body_style,
        ))
        story.append(Spacer(1, 0.3 * inch))

        settled_at = donation.settled_at or donation.created_at or datetime.utcnow()
        rows = [
            ["Certificate Number", donation.certificate_number or "-"],
            ["Donation Reference", donation.uuid],
            ["Payment ID", donation.provider_payment_id or "-"],
            ["Amount", f"INR {_format_amount(donation.amount)}"],
            ["Date", settled_at.strftime("%d %B %Y")],
        ]
        if donation.donor_pan:
            rows.append(["Donor PAN", donation.donor_pan])

        table = Table(rows, colWidths=[2.2 * inch, 3.8 * inch])
        table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#666666')),
            ('BACKGROUND', (0, 0), (0, -1), colors.HexColor('#f1f5f9')),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
        ]))
        story.append(table)
        story.append(Spacer(1, 0.4 * inch))

        story.append(Paragraph(
            "This donation is eligible for deduction under Section 80G of the Income Tax Act, 1961. "
            "This is a computer-generated certificate and does not require a signature.",
            body_style,
        ))

        doc.build(story)
        return buffer.getvalue()


def _format_amount(amount) -> str:
    return f"{Decimal(str(amount)):,.2f}"


def _escape(value: str) -> str:
    return (value or "").replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
