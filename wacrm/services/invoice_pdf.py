"""
Invoice PDF Generator
Renders an A4 invoice for an order, optionally over the agent's background template
"""

import io
import logging
from datetime import datetime
from typing import Optional

from PIL import Image, UnidentifiedImageError
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from ..config import INVOICE_CURRENCY

logger = logging.getLogger(__name__)

# Background templates are rasterised at this resolution before embedding
TEMPLATE_DPI = 150

REGULAR_FONT = "Helvetica"
BOLD_FONT = "Helvetica-Bold"


def line_total(item: dict) -> float:
    """Stored line total, or quantity x price when it is missing"""
    total = item.get("total")
    if total:
        return float(total)
    return float(item.get("quantity") or 0) * float(item.get("price") or 0)


def calculate_totals(items: list[dict], discount_percentage: float = 0) -> tuple[float, float, float]:
    """(subtotal, discount amount, total) for a list of order items"""
    subtotal = sum(line_total(item) for item in items)
    discount_amount = subtotal * (float(discount_percentage or 0) / 100)
    return subtotal, discount_amount, subtotal - discount_amount


def format_order_number(order_id) -> str:
    return f"#{int(order_id):04d}"


def compose_background(image_bytes: bytes, dpi: int = TEMPLATE_DPI) -> io.BytesIO:
    """
    Composite a template image onto a white A4 canvas.

    The image is scaled to fit inside the page, keeping its aspect ratio,
    and centred. Returns a JPEG buffer.
    """
    width_pt, height_pt = A4
    canvas_width = int(round(width_pt * dpi / 72))
    canvas_height = int(round(height_pt * dpi / 72))

    img = Image.open(io.BytesIO(image_bytes))
    img = img.convert("RGBA")

    scale = min(canvas_width / img.width, canvas_height / img.height)
    scaled_width = max(1, int(img.width * scale))
    scaled_height = max(1, int(img.height * scale))
    img = img.resize((scaled_width, scaled_height), Image.LANCZOS)

    background = Image.new("RGB", (canvas_width, canvas_height), color=(255, 255, 255))
    offset = ((canvas_width - scaled_width) // 2, (canvas_height - scaled_height) // 2)
    background.paste(img, offset, img)

    buffer = io.BytesIO()
    background.save(buffer, format="JPEG", quality=95)
    buffer.seek(0)
    return buffer


class InvoicePDFGenerator:
    """Lay out one invoice. Coordinates below are millimetres from the top-left."""

    left = 20
    right = 190
    columns = {"desc": 20, "qty": 95, "price": 120}
    desc_width = 55
    row_height = 10
    line_spacing = 6
    bottom_limit = 270

    def __init__(
        self,
        invoice_name: str,
        order: dict,
        items: list[dict],
        customer_name: str,
        agent_details: dict,
        discount_percentage: float = 0,
        notes: Optional[str] = None,
        template_image: Optional[bytes] = None,
        currency: str = INVOICE_CURRENCY,
    ):
        self.invoice_name = invoice_name
        self.order = order
        self.items = items
        self.customer_name = customer_name or "Valued Customer"
        self.agent_details = agent_details or {}
        self.discount_percentage = float(discount_percentage or 0)
        self.notes = notes if notes is not None else order.get("notes")
        self.currency = currency

        self.page_width, self.page_height = A4
        self.background = self._load_background(template_image)

    def _load_background(self, template_image: Optional[bytes]) -> Optional[ImageReader]:
        if not template_image:
            return None
        try:
            return ImageReader(compose_background(template_image))
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.warning(f"Invoice template image could not be used: {e}")
            return None

    def _y(self, y_mm: float) -> float:
        return self.page_height - y_mm * mm

    def _money(self, amount: float) -> str:
        return f"{self.currency} {amount:.2f}"

    def _draw_background(self, pdf: canvas.Canvas):
        if self.background is not None:
            pdf.drawImage(self.background, 0, 0, width=self.page_width, height=self.page_height)

    def _text(self, pdf, x, y, value, font=REGULAR_FONT, size=10, align="left"):
        pdf.setFont(font, size)
        if align == "right":
            pdf.drawRightString(x * mm, self._y(y), value)
        elif align == "center":
            pdf.drawCentredString(x * mm, self._y(y), value)
        else:
            pdf.drawString(x * mm, self._y(y), value)

    def _draw_table_header(self, pdf, y):
        self._text(pdf, self.columns["desc"], y, "Item Description", BOLD_FONT, 9)
        self._text(pdf, self.columns["qty"], y, "Qty", BOLD_FONT, 9)
        self._text(pdf, self.columns["price"], y, "Unit Price", BOLD_FONT, 9)
        self._text(pdf, self.right, y, "Total", BOLD_FONT, 9, align="right")

    def _order_date(self) -> str:
        created_at = self.order.get("created_at")
        if isinstance(created_at, str):
            try:
                created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
            except ValueError:
                return created_at
        created_at = created_at or datetime.utcnow()
        return f"{created_at.month}/{created_at.day}/{created_at.year}"

    def generate(self) -> bytes:
        """Generate PDF and return bytes"""
        logger.info(f"Generating invoice PDF for order {self.order.get('id')}")

        buffer = io.BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=A4)
        pdf.setTitle(self.invoice_name)

        self._draw_background(pdf)
        self._text(pdf, self.page_width / mm / 2, 20, self.invoice_name, BOLD_FONT, 16, align="center")

        # Agent block
        current_y = 60
        agent_lines = [
            (self.agent_details.get("name"), "{}", BOLD_FONT),
            (self.agent_details.get("address"), "{}", REGULAR_FONT),
            (self.agent_details.get("business_email"), "Email: {}", REGULAR_FONT),
            (self.agent_details.get("contact_number"), "Phone: {}", REGULAR_FONT),
            (self.agent_details.get("website"), "Website: {}", REGULAR_FONT),
        ]
        for value, fmt, font in agent_lines:
            if value and str(value).strip():
                self._text(pdf, self.left, current_y, fmt.format(value), font, 10)
                current_y += 10

        # Invoice details
        self._text(pdf, self.right, 60, "Invoice Details", BOLD_FONT, 10, align="right")
        self._text(pdf, self.right, 80, f"Date: {self._order_date()}", align="right")
        self._text(pdf, self.right, 90, f"Order #: {format_order_number(self.order['id'])}", align="right")
        self._text(pdf, self.right, 100, f"Status: {self.order.get('status', '')}", align="right")

        self._text(pdf, self.left, 120, "Bill To:", BOLD_FONT, 10)
        self._text(pdf, self.left, 130, self.customer_name)

        # Items
        y = 145
        self._draw_table_header(pdf, y)
        y += self.row_height + 2

        for item in self.items:
            if y > self.bottom_limit:
                pdf.showPage()
                self._draw_background(pdf)
                y = 35
                self._draw_table_header(pdf, y)
                y += self.row_height + 2

            desc_lines = simpleSplit(str(item.get("name", "")), REGULAR_FONT, 10, self.desc_width * mm) or [""]
            line_y = y
            for line in desc_lines:
                self._text(pdf, self.columns["desc"], line_y, line)
                line_y += self.line_spacing

            extra = (len(desc_lines) - 1) * self.line_spacing
            item_y = y + extra / 2
            quantity = item.get("quantity", 0)
            quantity_text = f"{quantity:g}" if isinstance(quantity, float) else str(quantity)
            self._text(pdf, self.columns["qty"], item_y, quantity_text)
            self._text(pdf, self.columns["price"], item_y, self._money(float(item.get("price") or 0)))
            self._text(pdf, self.right, item_y, self._money(line_total(item)), align="right")

            y += max(self.row_height, extra + self.row_height) + 2

        pdf.setLineWidth(0.1 * mm)
        pdf.line(self.left * mm, self._y(y), self.right * mm, self._y(y))
        y += 10

        # Totals
        subtotal, discount_amount, total = calculate_totals(self.items, self.discount_percentage)
        self._text(pdf, self.columns["price"], y, "Subtotal:", BOLD_FONT, 10)
        self._text(pdf, self.right, y, self._money(subtotal), BOLD_FONT, 10, align="right")
        y += 10
        self._text(pdf, self.columns["price"], y, f"Discount ({self.discount_percentage:.2f}%):", size=9)
        self._text(pdf, self.right, y, f"-{self._money(discount_amount)}", size=9, align="right")
        y += 10
        self._text(pdf, self.columns["price"], y, "Total Amount:", BOLD_FONT, 10)
        self._text(pdf, self.right, y, self._money(total), BOLD_FONT, 10, align="right")
        y += 35

        if self.notes:
            self._text(pdf, self.left, y, "Notes:", size=9)
            for line in simpleSplit(str(self.notes), REGULAR_FONT, 9, 140 * mm):
                self._text(pdf, 50, y, line, size=9)
                y += 6

        self._text(
            pdf, self.page_width / mm / 2, self.page_height / mm - 20, "Thank you for your business!", align="center"
        )

        pdf.save()
        return buffer.getvalue()
