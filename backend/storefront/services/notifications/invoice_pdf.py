"""
PDF invoice rendering with reportlab.
"""

from datetime import datetime, timezone
from io import BytesIO
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from storefront.database.models.order import Order
from storefront.database.models.store import StoreSettings
from storefront.services.notifications.templates import format_money

COLORS = {
    "primary_text": colors.HexColor("#1F2937"),
    "secondary_text": colors.HexColor("#6B7280"),
    "background": colors.HexColor("#F3F4F6"),
    "border": colors.HexColor("#D1D5DB"),
}


def _styles():
    styles = getSampleStyleSheet()
    styles.add(
        ParagraphStyle(
            name="InvoiceTitle",
            parent=styles["Heading1"],
            fontSize=20,
            textColor=COLORS["primary_text"],
            spaceAfter=6,
            fontName="Helvetica-Bold",
        )
    )
    styles.add(
        ParagraphStyle(
            name="InvoiceMeta",
            parent=styles["Normal"],
            fontSize=9,
            textColor=COLORS["secondary_text"],
        )
    )
    return styles


def render_invoice_pdf(
    order: Order,
    store: StoreSettings,
    invoice_number: str,
    issued_at: Optional[datetime] = None,
) -> bytes:
    """
    Render an invoice for an order.

    Args:
        order: Order with lines loaded
        store: Settings of the issuing store
        invoice_number: Invoice number printed on the document
        issued_at: Issue date, defaults to now

    Returns:
        PDF document bytes
    """
    issued_at = issued_at or datetime.now(timezone.utc)
    currency = order.currency
    styles = _styles()
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        title=f"Invoice {invoice_number}",
        leftMargin=0.75 * inch,
        rightMargin=0.75 * inch,
    )

    story = [
        Paragraph(store.name or "Invoice", styles["InvoiceTitle"]),
        Paragraph(f"Invoice {invoice_number}", styles["Heading2"]),
        Paragraph(
            f"Order {order.order_number} &middot; Issued {issued_at.strftime('%B %d, %Y')}",
            styles["InvoiceMeta"],
        ),
        Paragraph(f"Billed to {order.customer_email}", styles["InvoiceMeta"]),
        Spacer(1, 0.3 * inch),
    ]

    rows = [["Item", "SKU", "Qty", "Unit price", "Total"]]
    for item in order.items:
        rows.append(
            [
                item.product_name,
                item.product_sku or "",
                str(item.quantity),
                format_money(item.unit_price, currency),
                format_money(item.line_total, currency),
            ]
        )

    summary = [
        ("Subtotal", order.subtotal),
        ("Shipping", order.shipping_amount),
        ("Tax", order.tax_amount),
        ("Payment fee", order.payment_fee_amount),
    ]
    for label, amount in summary:
        if amount:
            rows.append(["", "", "", label, format_money(amount, currency)])
    if order.discount_amount:
        rows.append(["", "", "", "Discount", f"-{format_money(order.discount_amount, currency)}"])
    rows.append(["", "", "", "Total", format_money(order.total_amount, currency)])

    table = Table(rows, colWidths=[2.6 * inch, 1.1 * inch, 0.5 * inch, 1.2 * inch, 1.2 * inch])
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), COLORS["background"]),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTNAME", (3, -1), (-1, -1), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("ALIGN", (2, 0), (-1, -1), "RIGHT"),
                ("LINEBELOW", (0, 0), (-1, 0), 0.5, COLORS["border"]),
                ("LINEABOVE", (3, -1), (-1, -1), 0.5, COLORS["border"]),
                ("TOPPADDING", (0, 0), (-1, -1), 4),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
            ]
        )
    )
    story.append(table)

    doc.build(story)
    return buffer.getvalue()
