import random
from datetime import datetime, timezone

import pytest

from bytebills.errors import LayoutError
from bytebills.services.document_builder import build_document
from bytebills.services.layout import (
    A4,
    CELL_BASELINE,
    INVOICE_COLUMNS,
    ROW_HEIGHT,
    PageGeometry,
    RectOp,
    TextOp,
    layout_document,
    text_width,
)

NOW = datetime(2025, 1, 15, 9, 30, tzinfo=timezone.utc)


def _doc(kind, company, n_items=1, **values):
    if kind == "delivery_note":
        items = [{"description": f"Carton {i}", "quantity": i + 1, "notes": ""} for i in range(n_items)]
    else:
        items = [{"description": f"Item {i}", "quantity": 1, "unit_price": 10} for i in range(n_items)]
    form = {"client_name": "Globex Ltd", "issue_date": "2025-01-15", "items": items, **values}
    return build_document(kind, form, company, owner_id="alice", now=NOW, rng=random.Random(3))


def _texts(ops):
    return [op.text for op in ops if isinstance(op, TextOp)]


def _first_row_y(page_set):
    header = [op for op in page_set.pages[0].tagged("table-header") if isinstance(op, RectOp)]
    assert len(header) == 1
    return header[0].y + ROW_HEIGHT


def _rows_on_first_page(company, geometry=A4):
    probe = layout_document(_doc("invoice", company), geometry)
    return int((geometry.content_bottom - _first_row_y(probe)) // ROW_HEIGHT)


def test_single_page_invoice(company):
    pages = layout_document(_doc("invoice", company, 2))

    assert len(pages) == 1
    page = pages.pages[0]
    assert page.item_rows() == [0, 1]
    assert "INVOICE" in _texts(page.tagged("header"))
    assert _texts(page.tagged("totals")) == ["Subtotal:", "$20.00", "Tax (10%):", "$2.00", "Total:", "$22.00"]
    assert "Thank you for your business!" in _texts(page.tagged("footer"))


def test_sections_are_in_order(company):
    page = layout_document(_doc("invoice", company, 3, notes="Handle with care")).pages[0]

    def top(tag):
        return min(op.y for op in page.tagged(tag))

    assert top("recipient") < top("table-header") < top("item") < top("totals") < top("extra:notes")
    assert top("extra:notes") < top("extra:terms") < top("footer")


def test_rows_break_onto_next_page(company):
    capacity = _rows_on_first_page(company)
    n = capacity + 5
    pages = layout_document(_doc("invoice", company, n))

    assert len(pages) == 2
    first, second = pages.pages
    assert first.item_rows() == list(range(capacity))
    assert second.item_rows() == list(range(capacity, n))
    assert first.has("table-header")
    assert not second.has("table-header")
    assert first.has("header")
    assert not second.has("header")
    # continuation starts at the top margin
    first_text = min(op.y for op in second.tagged(f"item:{capacity}") if isinstance(op, TextOp))
    assert first_text == A4.margin + CELL_BASELINE


def test_no_row_crosses_the_bottom(company):
    pages = layout_document(_doc("invoice", company, 90))
    for page in pages.pages:
        for op in page.ops:
            if op.tag.startswith("item:"):
                bottom = op.y + op.height if isinstance(op, RectOp) else op.y
                assert bottom <= A4.content_bottom
    rows = [i for page in pages.pages for i in page.item_rows()]
    assert rows == list(range(90))


def test_totals_move_to_next_page_as_a_block(company):
    capacity = _rows_on_first_page(company)
    pages = layout_document(_doc("invoice", company, capacity))

    assert len(pages) == 2
    first, second = pages.pages
    assert first.item_rows()[-1] == capacity - 1
    assert not first.has("totals")
    assert len([op for op in second.tagged("totals") if isinstance(op, RectOp)]) == 3
    assert not first.has("footer")
    assert second.has("footer")


def test_smaller_page_paginates_sooner(company):
    small = PageGeometry(width=148, height=210, margin=15)
    capacity = _rows_on_first_page(company, small)
    pages = layout_document(_doc("invoice", company, capacity + 1), small)
    assert pages.pages[1].item_rows() == [capacity]


def test_blank_recipient_fields_are_omitted(company):
    page = layout_document(_doc("invoice", company)).pages[0]
    assert _texts(page.tagged("recipient")) == ["Bill To:", "Globex Ltd"]


def test_full_recipient_block(company):
    doc = _doc(
        "invoice",
        company,
        client_address="5 Lake Road",
        client_city="Entebbe",
        client_country="Uganda",
        client_phone="+256 711 111111",
        client_email="ap@globex.example.com",
    )
    page = layout_document(doc).pages[0]
    assert _texts(page.tagged("recipient")) == [
        "Bill To:",
        "Globex Ltd",
        "5 Lake Road",
        "Entebbe, Uganda",
        "Phone: +256 711 111111",
        "Email: ap@globex.example.com",
    ]


def test_issuer_block_is_right_aligned(company):
    ops = layout_document(_doc("invoice", company)).pages[0].tagged("issuer")
    assert _texts(ops)[0] == "Acme Supplies"
    assert "Kampala, Uganda" in _texts(ops)
    assert all(op.align == "right" and op.x == A4.right for op in ops)


def test_money_cells_use_document_currency(company):
    doc = _doc("invoice", company, currency="EUR")
    page = layout_document(doc).pages[0]
    assert _texts(page.tagged("item:0")) == ["Item 0", "1", "€10.00", "€10.00"]


def test_long_description_is_truncated(company):
    doc = _doc("invoice", company)
    doc.items[0].description = "Very long description " * 20
    op = [op for op in layout_document(doc).pages[0].tagged("item:0") if isinstance(op, TextOp)][0]
    assert op.text.endswith("...")
    assert text_width(op.text) <= A4.content_width * INVOICE_COLUMNS[0].share - 4


def test_receipt_labels(company):
    doc = _doc("receipt", company, payment_method="bank", invoice_reference="INV-2501-0009")
    page = layout_document(doc).pages[0]
    header = _texts(page.tagged("header"))
    assert header[0] == "RECEIPT"
    assert "Payment Method: Bank Transfer" in header
    assert "Invoice Reference: INV-2501-0009" in header
    assert "Received From:" in _texts(page.tagged("recipient"))
    assert "Total Paid:" in _texts(page.tagged("totals"))


def test_delivery_note_layout(company):
    doc = _doc(
        "delivery_note",
        company,
        2,
        delivery_address="Warehouse 4, Jinja Road",
        delivery_instructions="Ring the bell at gate B",
        terms="Not shown on delivery notes",
    )
    doc.items[0].notes = "fragile"
    page = layout_document(doc).pages[0]

    assert _texts(page.tagged("table-header")) == ["Description", "Quantity", "Notes"]
    assert _texts(page.tagged("item:0")) == ["Carton 0", "1", "fragile"]
    assert _texts(page.tagged("item:1")) == ["Carton 1", "2"]
    assert not page.has("totals")
    assert _texts(page.tagged("recipient:delivery")) == ["Delivery Address:", "Warehouse 4, Jinja Road"]
    assert page.has("extra:instructions")
    assert not page.has("extra:terms")
    assert "Delivered By:" in _texts(page.tagged("signature"))
    assert "Received By:" in _texts(page.tagged("signature"))


def test_delivery_address_same_as_recipient_is_not_repeated(company):
    doc = _doc("delivery_note", company, client_address="5 Lake Road", delivery_address="5 Lake Road")
    assert not layout_document(doc).pages[0].has("recipient:delivery")


def test_long_notes_continue_on_new_pages(company):
    notes = "\n".join(f"Note line {i}" for i in range(120))
    pages = layout_document(_doc("invoice", company, notes=notes))

    assert len(pages) >= 3
    lines = [t for page in pages.pages for t in _texts(page.tagged("extra:notes"))]
    assert lines[0] == "Notes:"
    assert lines[1:] == [f"Note line {i}" for i in range(120)]
    for page in pages.pages:
        for op in page.ops:
            if isinstance(op, TextOp) and op.tag != "footer":
                assert op.y <= A4.content_bottom


def test_footer_only_on_last_page(company):
    pages = layout_document(_doc("invoice", company, 60))
    assert [p.has("footer") for p in pages.pages] == [False] * (len(pages) - 1) + [True]
    footer = pages.pages[-1].tagged("footer")
    assert all(op.y == A4.height - A4.margin for op in footer)
    assert "Generated by ByteBills" in _texts(footer)


def test_brand_name_in_footer(company):
    pages = layout_document(_doc("invoice", company), brand_name="Acme Billing")
    assert "Generated by Acme Billing" in _texts(pages.pages[0].tagged("footer"))


def test_layout_accepts_stored_records(company):
    record = _doc("invoice", company).model_dump(mode="json")
    assert len(layout_document(record)) == 1


@pytest.mark.parametrize(
    "bad",
    [
        {"kind": "invoice", "items": "not a list"},
        {"kind": "invoice", "items": [{"description": "A"}]},
        {"kind": "invoice", "items": []},
        {"kind": "quote", "items": [{"description": "A"}]},
        42,
        None,
    ],
)
def test_malformed_documents_raise(bad):
    with pytest.raises(LayoutError):
        layout_document(bad)
