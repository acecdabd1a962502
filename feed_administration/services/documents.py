"""
PDF documents for feed administrations.

Each builder returns the PDF as bytes; persisting and mailing them is the
outbox's job.
"""

import io

from django.utils import timezone
from django.utils.html import escape
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import HRFlowable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from feed_inventory.exceptions import format_quantity

BRAND_GREEN = colors.HexColor('#2E7D32')


def _fmt_date(value):
    return value.strftime('%Y-%m-%d') if value else '-'


def _person(user):
    return user.get_full_name() if user else '-'


def _record_rows(record):
    feed = record.feed
    rows = [
        ['Record ID', str(record.id)],
        ['Farmer', _person(record.farmer)],
        ['Farm', record.farmer.farm_name or '-'],
        ['Feed', feed.feed_name],
        ['Batch Number', feed.batch_number or '-'],
        ['Quantity Used', f"{format_quantity(record.feed_quantity_used)} {feed.unit}"],
        ['Animals', ', '.join(record.animal_ids) or '-'],
        ['Group', record.group_name or '-'],
        ['Start Date', _fmt_date(record.start_date)],
        ['Status', record.status],
    ]
    if feed.prescription_required:
        rows += [
            ['Antimicrobial', feed.antimicrobial_name],
            ['Concentration', f"{format_quantity(feed.antimicrobial_concentration)} {feed.concentration_unit}"],
            ['Total Dose', format_quantity(record.antimicrobial_dose_total or 0)],
            ['Withdrawal Period', f"{feed.withdrawal_period_days or 0} days"],
            ['Withdrawal Ends', _fmt_date(record.withdrawal_end_date)],
        ]
    return rows


def _build_pdf(title, subtitle, sections, footer_note=''):
    """
    Render a simple report.

    Args:
        title: Document title
        subtitle: Line under the title
        sections: List of (heading, rows) where rows are [label, value] pairs
        footer_note: Optional paragraph before the footer
    """
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=1.5*cm,
        leftMargin=1.5*cm,
        topMargin=1.5*cm,
        bottomMargin=1.5*cm,
        title=title,
    )

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        'DocTitle',
        parent=styles['Heading1'],
        fontSize=18,
        alignment=TA_CENTER,
        spaceAfter=12
    )
    heading_style = ParagraphStyle(
        'DocHeading',
        parent=styles['Heading2'],
        fontSize=13,
        textColor=BRAND_GREEN,
        spaceAfter=8,
        spaceBefore=12
    )

    elements = [
        Paragraph(escape(title), title_style),
        Paragraph(escape(subtitle), ParagraphStyle('Subtitle', parent=styles['Normal'], fontSize=10, alignment=TA_CENTER)),
        Spacer(1, 12),
        HRFlowable(width="100%", thickness=1, color=BRAND_GREEN),
    ]

    for heading, rows in sections:
        elements.append(Paragraph(escape(heading), heading_style))
        table = Table([[label, str(value)] for label, value in rows], colWidths=[5*cm, 12*cm])
        table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 5),
            ('TOPPADDING', (0, 0), (-1, -1), 5),
            ('GRID', (0, 0), (-1, -1), 0.25, colors.lightgrey),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ]))
        elements.append(table)

    if footer_note:
        elements.append(Spacer(1, 15))
        elements.append(Paragraph(escape(footer_note), styles['Normal']))

    elements.append(Spacer(1, 25))
    elements.append(HRFlowable(width="100%", thickness=1, color=colors.grey))
    elements.append(Paragraph(
        f"Generated by LivestockIQ | {timezone.now().strftime('%Y-%m-%d %H:%M')}",
        ParagraphStyle('Footer', parent=styles['Normal'], fontSize=8, alignment=TA_CENTER, textColor=colors.grey)
    ))

    doc.build(elements)
    return buffer.getvalue()


def build_confirmation_pdf(record):
    """Farmer-facing confirmation issued when a record is created."""
    note = (
        'This medicated feed administration is pending veterinary approval. '
        'Do not sell products from these animals until the withdrawal period has ended.'
        if record.is_medicated else
        'Non-medicated feed administration recorded.'
    )
    return _build_pdf(
        'Feed Administration Confirmation',
        f"Recorded {_fmt_date(record.created_at)}",
        [('Administration Details', _record_rows(record))],
        footer_note=note,
    )


def build_vet_approval_pdf(record):
    """Veterinarian's copy of an approval decision."""
    approval_rows = [
        ['Approved By', _person(record.approved_by)],
        ['Vet Code', record.approved_by.vet_code if record.approved_by else '-'],
        ['License Number', record.approved_by.license_number if record.approved_by else '-'],
        ['Approval Date', _fmt_date(record.vet_approval_date)],
    ]
    return _build_pdf(
        'Veterinary Approval Record',
        f"Feed administration {str(record.id)[:8]}",
        [('Approval', approval_rows), ('Administration Details', _record_rows(record))],
    )


def build_farmer_approval_pdf(record):
    """Farmer's notice that the program is approved and withdrawal applies."""
    return _build_pdf(
        'Feed Administration Approved',
        f"Approved {_fmt_date(record.vet_approval_date)} by {_person(record.approved_by)}",
        [('Administration Details', _record_rows(record))],
        footer_note=(
            f"Withdrawal period ends {_fmt_date(record.withdrawal_end_date)}. "
            'Products from these animals must not enter the food chain before that date.'
        ),
    )


def build_prescription_pdf(record, prescription):
    """Prescription attached to the farmer's approval email."""
    prescription_rows = [
        ['Prescription ID', str(prescription.id)],
        ['Issue Date', _fmt_date(prescription.issue_date)],
        ['Veterinarian', _person(prescription.vet)],
        ['Vet Code', prescription.vet.vet_code or '-'],
        ['Notes', prescription.notes or '-'],
    ]
    return _build_pdf(
        'Medicated Feed Prescription',
        f"Issued to {_person(record.farmer)}",
        [('Prescription', prescription_rows), ('Administration Details', _record_rows(record))],
    )
