"""
Printable RMA form.

One A4 page per case: company header, case box (id, created date, status),
customer block, product table, custom fields, terms and signature lines.
"""

from datetime import datetime
from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from rmadesk.schemas import STATUS_LABELS, CompanyInfo, RMACase, label_from_name


TERMS = (
    "All returns must be in original packaging with all accessories.",
    "Damaged items due to customer mishandling may not be eligible for replacement.",
    "Processing time is typically 7-10 business days from receipt.",
    "Customer is responsible for return shipping costs unless otherwise specified.",
    "This RMA form must be included with your return shipment.",
)


def _format_date(value) -> str:
    if not value:
        return "N/A"
    try:
        return datetime.fromisoformat(str(value)).strftime("%d %b %Y")
    except ValueError:
        return str(value)


def _format_value(value) -> str:
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if value is None or value == "":
        return "N/A"
    return str(value)


def render_rma_pdf(case: RMACase, company: CompanyInfo) -> bytes:
    """Render ``case`` as a PDF document and return its bytes."""
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=2 * cm,
        rightMargin=2 * cm,
        topMargin=1.5 * cm,
        bottomMargin=1.5 * cm,
        title=f"RMA {case.id}",
    )
    styles = getSampleStyleSheet()
    small = ParagraphStyle("small", parent=styles["Normal"], fontSize=8, leading=10)
    cell = ParagraphStyle("cell", parent=styles["Normal"], fontSize=9, leading=11)

    story = [
        Paragraph(escape(company.name), styles["Title"]),
        Paragraph(escape(company.address), small),
        Paragraph(escape(f"{company.email} | {company.phone}"), small),
    ]
    if company.website:
        story.append(Paragraph(escape(company.website), small))
    story += [Spacer(1, 0.5 * cm), Paragraph("Return Merchandise Authorization", styles["Heading1"])]

    info = Table(
        [[
            f"RMA ID: {case.id}",
            f"Created: {_format_date(case.created_at)}",
            STATUS_LABELS[case.status].upper(),
        ]],
        colWidths=[7 * cm, 5 * cm, 5 * cm],
    )
    info.setStyle(TableStyle([
        ("BOX", (0, 0), (-1, -1), 1, colors.black),
        ("BACKGROUND", (0, 0), (-1, -1), colors.whitesmoke),
        ("FONTNAME", (0, 0), (-1, -1), "Helvetica-Bold"),
    ]))
    story += [info, Spacer(1, 0.4 * cm)]

    story.append(Paragraph("Customer Information", styles["Heading2"]))
    customer = Table([
        ["Company:", case.contact_company or "N/A"],
        ["Contact Name:", case.contact_name or "N/A"],
        ["Email:", case.contact_email or "N/A"],
        ["Phone:", case.contact_phone or "N/A"],
    ], colWidths=[4 * cm, 13 * cm])
    customer.setStyle(TableStyle([("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold")]))
    story.append(customer)

    story.append(Paragraph("Product Details", styles["Heading2"]))
    rows = [["#", "Brand", "Model", "Serial", "Status", "Problems Reported"]]
    for index, product in enumerate(case.products, start=1):
        rows.append([
            str(index),
            Paragraph(escape(product.brand or "N/A"), cell),
            Paragraph(escape(product.model_number or "N/A"), cell),
            Paragraph(escape(product.serial_number or "N/A"), cell),
            STATUS_LABELS[product.status],
            Paragraph(escape(product.problems_reported or "N/A"), cell),
        ])
    products = Table(rows, colWidths=[0.8 * cm, 2.8 * cm, 2.8 * cm, 3 * cm, 3 * cm, 4.6 * cm], repeatRows=1)
    products.setStyle(TableStyle([
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]))
    story.append(products)

    if case.comments:
        story += [Paragraph("Additional Comments", styles["Heading2"]), Paragraph(escape(case.comments), styles["Normal"])]

    extra = [
        [f"{product.label or index}: {label_from_name(name)}", _format_value(value)]
        for index, product in enumerate(case.products, start=1)
        for name, value in product.custom_fields.items()
    ]
    if extra:
        story.append(Paragraph("Additional Information", styles["Heading2"]))
        story.append(Table(extra, colWidths=[7 * cm, 10 * cm]))

    story += [Spacer(1, 0.5 * cm), Paragraph("<b>Terms and Conditions:</b>", small)]
    story += [Paragraph(f"{number}. {term}", small) for number, term in enumerate(TERMS, start=1)]

    signatures = Table(
        [["", "", ""], ["Customer Signature", "", "Authorized by"]],
        colWidths=[7 * cm, 3 * cm, 7 * cm],
        rowHeights=[1.5 * cm, None],
    )
    signatures.setStyle(TableStyle([
        ("LINEBELOW", (0, 0), (0, 0), 0.5, colors.black),
        ("LINEBELOW", (2, 0), (2, 0), 0.5, colors.black),
        ("ALIGN", (0, 1), (-1, 1), "CENTER"),
    ]))
    story += [Spacer(1, 0.8 * cm), signatures, Spacer(1, 0.5 * cm)]
    story += [
        Paragraph("This is an automatically generated document. Thank you for your business.", small),
        Paragraph(escape(f"For any queries, please contact {company.email} or call {company.phone}"), small),
    ]

    doc.build(story)
    return buffer.getvalue()
