"""
Paginating layout of billing documents onto fixed-size pages.

The engine only decides *where* things go: it produces a ``PageSet`` of
positioned text and filled rectangles (millimetres, origin at the top-left
corner). Turning that into a file is the job of ``pdf_export``.

Sections are emitted in a fixed order::

    HEADER -> RECIPIENT -> ITEMS_TABLE -> TOTALS -> EXTRAS -> SIGNATURE -> FOOTER

Before each table row, totals block, extra section and signature block the
remaining vertical space is checked; content that does not fit starts a new
page at the top margin. The table header is never repeated.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Sequence, Tuple, Union

import pydantic
from reportlab.lib.units import mm
from reportlab.lib.utils import simpleSplit
from reportlab.pdfbase.pdfmetrics import stringWidth

from bytebills.errors import LayoutError
from bytebills.models.document import BillingDocument, DeliveryNote, Invoice, Receipt, parse_document
from bytebills.models.party import PartyDetails
from bytebills.services.money import compute_subtotal, format_long_date, format_money, format_quantity

log = logging.getLogger(__name__)

RGB = Tuple[int, int, int]

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
FONT_ITALIC = "Helvetica-Oblique"

HEADER_FILL: RGB = (240, 240, 240)
STRIPE_FILL: RGB = (250, 250, 250)
TOTAL_FILL: RGB = (230, 230, 230)

ROW_HEIGHT = 8.0
CELL_PAD = 2.0
CELL_BASELINE = 5.0
TEXT_LINE = 5.0
SECTION_TITLE = 7.0
SECTION_GAP = 10.0

PAYMENT_METHODS = {
    "cash": "Cash",
    "card": "Credit/Debit Card",
    "bank": "Bank Transfer",
    "paypal": "PayPal",
    "other": "Other",
}


@dataclass(frozen=True)
class PageGeometry:
    width: float = 210.0
    height: float = 297.0
    margin: float = 20.0
    footer_band: float = 10.0  # kept free above the bottom margin for the footer

    @property
    def right(self) -> float:
        return self.width - self.margin

    @property
    def content_width(self) -> float:
        return self.width - 2 * self.margin

    @property
    def content_bottom(self) -> float:
        return self.height - self.margin - self.footer_band


A4 = PageGeometry()


@dataclass(frozen=True)
class TextOp:
    x: float
    y: float  # baseline
    text: str
    font: str = FONT
    size: float = 10
    align: str = "left"  # left | right | center
    tag: str = ""


@dataclass(frozen=True)
class RectOp:
    x: float
    y: float  # top edge
    width: float
    height: float
    fill: RGB = HEADER_FILL
    tag: str = ""


Op = Union[TextOp, RectOp]


@dataclass
class Page:
    number: int
    ops: List[Op] = field(default_factory=list)

    def tagged(self, prefix: str) -> List[Op]:
        return [op for op in self.ops if op.tag == prefix or op.tag.startswith(prefix + ":")]

    def has(self, tag: str) -> bool:
        return bool(self.tagged(tag))

    def item_rows(self) -> List[int]:
        """Indices of the line items whose row text landed on this page."""
        rows = {int(op.tag.split(":", 1)[1]) for op in self.ops if isinstance(op, TextOp) and op.tag.startswith("item:")}
        return sorted(rows)


@dataclass
class PageSet:
    width: float
    height: float
    title: str = ""
    pages: List[Page] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.pages)


@dataclass(frozen=True)
class Column:
    key: str
    label: str
    share: float


INVOICE_COLUMNS: Sequence[Column] = (
    Column("description", "Description", 0.4),
    Column("quantity", "Quantity", 0.2),
    Column("unit_price", "Unit Price", 0.2),
    Column("amount", "Amount", 0.2),
)
DELIVERY_COLUMNS: Sequence[Column] = (
    Column("description", "Description", 0.5),
    Column("quantity", "Quantity", 0.2),
    Column("notes", "Notes", 0.3),
)


# ---------- Text helpers ----------

def text_width(text: str, font: str = FONT, size: float = 10) -> float:
    """Width in millimetres using the standard font metrics."""
    return stringWidth(text, font, size) / mm


def fit_text(text: str, width: float, font: str = FONT, size: float = 10) -> str:
    text = " ".join((text or "").split())
    if text_width(text, font, size) <= width:
        return text
    ellipsis = "..."
    while text and text_width(text + ellipsis, font, size) > width:
        text = text[:-1]
    return text.rstrip() + ellipsis if text else ""


def wrap_text(text: str, width: float, font: str = FONT, size: float = 10) -> List[str]:
    lines: List[str] = []
    for para in (text or "").splitlines() or [""]:
        lines.extend(simpleSplit(para, font, size, width * mm) or [""])
    return lines


# ---------- Engine ----------

class _Cursor:
    """Vertical cursor over the page set being built."""

    def __init__(self, geometry: PageGeometry, page_set: PageSet):
        self.g = geometry
        self.page_set = page_set
        self.y = geometry.margin
        self.new_page()

    @property
    def page(self) -> Page:
        return self.page_set.pages[-1]

    def new_page(self) -> None:
        self.page_set.pages.append(Page(number=len(self.page_set.pages) + 1))
        self.y = self.g.margin

    def fits(self, height: float) -> bool:
        return self.y + height <= self.g.content_bottom

    def ensure(self, height: float) -> None:
        if not self.fits(height) and self.y > self.g.margin:
            self.new_page()

    def text(self, x: float, y: float, text: str, **kw: Any) -> None:
        self.page.ops.append(TextOp(x, y, text, **kw))

    def rect(self, x: float, y: float, w: float, h: float, fill: RGB, tag: str = "") -> None:
        self.page.ops.append(RectOp(x, y, w, h, fill, tag))


class DocumentLayout:
    """Lays one document out; create a new instance per render."""

    def __init__(self, document: BillingDocument, geometry: PageGeometry = A4, brand_name: str = "ByteBills"):
        self.doc = document
        self.g = geometry
        self.brand_name = brand_name

    # ----- Labels per kind -----

    @property
    def title(self) -> str:
        return self.doc.display_name.upper()

    def _meta_lines(self) -> List[str]:
        d = self.doc
        if isinstance(d, Invoice):
            lines = [f"Invoice #: {d.document_number}", f"Date: {format_long_date(d.issue_date)}"]
            if d.due_date:
                lines.append(f"Due Date: {format_long_date(d.due_date)}")
            return lines
        if isinstance(d, Receipt):
            lines = [f"Receipt #: {d.document_number}", f"Date: {format_long_date(d.issue_date)}"]
            if d.invoice_reference:
                lines.append(f"Invoice Reference: {d.invoice_reference}")
            lines.append(f"Payment Method: {PAYMENT_METHODS.get(d.payment_method, d.payment_method)}")
            return lines
        if isinstance(d, DeliveryNote):
            lines = [f"Delivery Note #: {d.document_number}", f"Date: {format_long_date(d.delivery_date)}"]
            if d.invoice_reference:
                lines.append(f"Invoice Reference: {d.invoice_reference}")
            if d.order_reference:
                lines.append(f"Order Reference: {d.order_reference}")
            return lines
        raise LayoutError(f"Unsupported document type: {type(d).__name__}")

    def _recipient_heading(self) -> str:
        return {"invoice": "Bill To:", "receipt": "Received From:", "delivery_note": "Deliver To:"}[self.doc.kind]  # type: ignore[attr-defined]

    def _columns(self) -> Sequence[Column]:
        return DELIVERY_COLUMNS if isinstance(self.doc, DeliveryNote) else INVOICE_COLUMNS

    # ----- Sections -----

    def _header(self, c: _Cursor) -> None:
        g = self.g
        c.text(g.margin, c.y, self.title, font=FONT_BOLD, size=20, tag="header")
        c.y += SECTION_GAP
        for line in self._meta_lines():
            c.text(g.margin, c.y, line, size=10, tag="header")
            c.y += TEXT_LINE
        c.y += SECTION_GAP
        issuer_bottom = self._issuer(c, self.doc.issuer)
        c.y = max(c.y, issuer_bottom + SECTION_GAP)

    def _issuer(self, c: _Cursor, issuer: PartyDetails) -> float:
        g = self.g
        y = g.margin
        c.text(g.right, y, issuer.name, font=FONT_BOLD, size=12, align="right", tag="issuer")
        y += 5
        lines = [
            issuer.address,
            issuer.location(),
            f"Phone: {issuer.phone}" if issuer.phone else "",
            f"Email: {issuer.email}" if issuer.email else "",
        ]
        for line in lines:
            if not line:
                continue
            c.text(g.right, y, line, size=9, align="right", tag="issuer")
            y += 4
        return y

    def _recipient(self, c: _Cursor) -> None:
        g = self.g
        r = self.doc.recipient
        c.text(g.margin, c.y, self._recipient_heading(), font=FONT_BOLD, size=12, tag="recipient")
        c.y += SECTION_TITLE
        lines = [
            r.name,
            r.address,
            r.location(),
            f"Phone: {r.phone}" if r.phone else "",
            f"Email: {r.email}" if r.email else "",
        ]
        for line in lines:
            if not line:
                continue
            c.text(g.margin, c.y, line, size=10, tag="recipient")
            c.y += TEXT_LINE

        d = self.doc
        if isinstance(d, DeliveryNote) and d.delivery_address and d.delivery_address != r.address:
            c.y += TEXT_LINE
            c.text(g.margin, c.y, "Delivery Address:", font=FONT_BOLD, size=12, tag="recipient:delivery")
            c.y += SECTION_TITLE
            for line in wrap_text(d.delivery_address, g.content_width):
                c.text(g.margin, c.y, line, size=10, tag="recipient:delivery")
                c.y += TEXT_LINE
        c.y += SECTION_GAP

    def _column_x(self) -> List[Tuple[Column, float, float]]:
        x = self.g.margin
        out = []
        for col in self._columns():
            w = self.g.content_width * col.share
            out.append((col, x, w))
            x += w
        return out

    def _cell(self, item: Any, key: str) -> str:
        if key == "description":
            return item.description
        if key == "quantity":
            return format_quantity(item.quantity)
        if key == "unit_price":
            return format_money(item.unit_price, self.doc.currency)
        if key == "amount":
            return format_money(compute_subtotal([item]), self.doc.currency)
        if key == "notes":
            return item.notes or ""
        return ""

    def _items_table(self, c: _Cursor) -> None:
        g = self.g
        cols = self._column_x()
        c.ensure(2 * ROW_HEIGHT)  # header never sits alone at the bottom of a page
        c.rect(g.margin, c.y, g.content_width, ROW_HEIGHT, HEADER_FILL, tag="table-header")
        for col, x, w in cols:
            c.text(x + CELL_PAD, c.y + CELL_BASELINE, col.label, font=FONT_BOLD, size=10, tag="table-header")
        c.y += ROW_HEIGHT

        for i, item in enumerate(self.doc.items):
            if not c.fits(ROW_HEIGHT):
                c.new_page()
            if i % 2 == 1:
                c.rect(g.margin, c.y, g.content_width, ROW_HEIGHT, STRIPE_FILL, tag=f"item:{i}")
            for col, x, w in cols:
                value = self._cell(item, col.key)
                if value:
                    c.text(x + CELL_PAD, c.y + CELL_BASELINE, fit_text(value, w - 2 * CELL_PAD), size=10, tag=f"item:{i}")
            c.y += ROW_HEIGHT

    def _totals(self, c: _Cursor) -> None:
        d = self.doc
        if isinstance(d, DeliveryNote):
            c.y += SECTION_GAP
            return
        cols = self._column_x()
        label_x = cols[2][1]
        value_x = cols[3][1]
        box_w = cols[2][2] + cols[3][2]

        rows = [
            ("Subtotal:", d.subtotal, HEADER_FILL, FONT),
            (f"Tax ({d.tax_rate_percent:g}%):", d.tax, HEADER_FILL, FONT),
            ("Total Paid:" if isinstance(d, Receipt) else "Total:", d.total, TOTAL_FILL, FONT_BOLD),
        ]
        if not c.fits(ROW_HEIGHT * len(rows)):
            c.new_page()
        for label, amount, fill, font in rows:
            c.rect(label_x, c.y, box_w, ROW_HEIGHT, fill, tag="totals")
            c.text(label_x + CELL_PAD, c.y + CELL_BASELINE, label, font=font, size=10, tag="totals")
            c.text(value_x + CELL_PAD, c.y + CELL_BASELINE, format_money(amount, d.currency), font=font, size=10, tag="totals")
            c.y += ROW_HEIGHT
        c.y += SECTION_GAP - 3
        log.debug("totals placed on page %d", c.page.number)

    def _extra_sections(self) -> List[Tuple[str, str, str]]:
        d = self.doc
        out = []
        if isinstance(d, DeliveryNote) and d.delivery_instructions:
            out.append(("instructions", "Delivery Instructions:", d.delivery_instructions))
        if d.notes:
            out.append(("notes", "Notes:", d.notes))
        if d.terms and not isinstance(d, DeliveryNote):
            out.append(("terms", "Terms & Conditions:", d.terms))
        return out

    def _extras(self, c: _Cursor) -> None:
        g = self.g
        for key, heading, body in self._extra_sections():
            lines = wrap_text(body, g.content_width)
            c.ensure(SECTION_TITLE + TEXT_LINE * len(lines))
            tag = f"extra:{key}"
            c.text(g.margin, c.y, heading, font=FONT_BOLD, size=10, tag=tag)
            c.y += SECTION_TITLE
            for line in lines:
                if not c.fits(TEXT_LINE):
                    # longer than a whole page: continue line by line
                    c.new_page()
                c.text(g.margin, c.y, line, size=10, tag=tag)
                c.y += TEXT_LINE
            c.y += SECTION_GAP

    def _signature(self, c: _Cursor) -> None:
        if not isinstance(self.doc, DeliveryNote):
            return
        g = self.g
        c.ensure(42)
        left, right = g.margin, g.width / 2 + 10
        c.text(left, c.y, "Delivered By:", font=FONT_BOLD, size=10, tag="signature")
        c.text(right, c.y, "Received By:", font=FONT_BOLD, size=10, tag="signature")
        c.y += SECTION_TITLE
        for label in ("Name: ____________________", "Signature: ________________", "Date: ____________________"):
            c.text(left, c.y, label, size=10, tag="signature")
            c.text(right, c.y, label, size=10, tag="signature")
            c.y += SECTION_GAP
        c.y += 5

    def _footer(self, c: _Cursor) -> None:
        g = self.g
        y = g.height - g.margin
        c.text(g.width / 2, y, "Thank you for your business!", font=FONT_ITALIC, size=9, align="center", tag="footer")
        c.text(g.right, y, f"Generated by {self.brand_name}", size=8, align="right", tag="footer")

    def render(self) -> PageSet:
        page_set = PageSet(width=self.g.width, height=self.g.height, title=f"{self.doc.display_name} {self.doc.document_number}")
        c = _Cursor(self.g, page_set)
        self._header(c)
        self._recipient(c)
        self._items_table(c)
        self._totals(c)
        self._extras(c)
        self._signature(c)
        self._footer(c)
        log.debug("%s laid out on %d page(s)", page_set.title, len(page_set))
        return page_set


def layout_document(
    document: BillingDocument | Mapping[str, Any],
    geometry: PageGeometry = A4,
    brand_name: str = "ByteBills",
) -> PageSet:
    """Lay a document out; malformed input raises ``LayoutError``."""
    if isinstance(document, Mapping):
        if not isinstance(document.get("items"), list):
            raise LayoutError("Document items must be a list")
        try:
            document = parse_document(document)
        except pydantic.ValidationError as e:
            raise LayoutError(f"Malformed document: {e}") from e
    if not isinstance(document, BillingDocument):
        raise LayoutError(f"Cannot lay out {type(document).__name__}")
    if not isinstance(document.items, list) or not document.items:
        raise LayoutError("Document has no line items")
    return DocumentLayout(document, geometry, brand_name).render()
