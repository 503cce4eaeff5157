import os
import random
import re
from datetime import datetime, timezone

import pytest

from bytebills.services import pdf_export
from bytebills.services.document_builder import build_document
from bytebills.services.layout import layout_document
from bytebills.services.pdf_export import document_filename, export_to_file, trigger_download

NOW = datetime(2025, 1, 15, 9, 30, tzinfo=timezone.utc)


def _invoice(company, n_items=2, **values):
    items = [{"description": f"Item {i}", "quantity": 1, "unit_price": 10} for i in range(n_items)]
    form = {"client_name": "Globex Ltd", "items": items, "document_number": "INV-2501-0042", **values}
    return build_document("invoice", form, company, owner_id="alice", now=NOW, rng=random.Random(1))


def _page_count(pdf: bytes) -> int:
    return len(re.findall(rb"/Type /Page\b", pdf))


def test_export_produces_pdf(company):
    pdf = export_to_file(layout_document(_invoice(company)))
    assert pdf.startswith(b"%PDF")
    assert _page_count(pdf) == 1


def test_export_keeps_page_count(company):
    page_set = layout_document(_invoice(company, 70))
    pdf = export_to_file(page_set)
    assert len(page_set) > 1
    assert _page_count(pdf) == len(page_set)


@pytest.mark.parametrize(
    "kind, number, expected",
    [
        ("invoice", "INV-2501-0042", "Invoice-INV-2501-0042.pdf"),
        ("receipt", "RCT-2501-0007", "Receipt-RCT-2501-0007.pdf"),
        ("delivery_note", "DN-2501-1234", "DeliveryNote-DN-2501-1234.pdf"),
    ],
)
def test_document_filename(company, kind, number, expected):
    items = [{"description": "Box", "quantity": 1}]
    doc = build_document(
        kind, {"client_name": "Globex", "items": items, "document_number": number}, company, owner_id="alice", now=NOW
    )
    assert document_filename(doc) == expected


def test_filename_strips_path_characters(company):
    doc = _invoice(company, document_number="INV/2501 0042")
    assert document_filename(doc) == "Invoice-INV_2501-0042.pdf"


def test_trigger_download_writes_file(tmp_path):
    path = trigger_download(b"%PDF-1.4 test", "Invoice-INV-1.pdf", tmp_path / "out")
    assert path == tmp_path / "out" / "Invoice-INV-1.pdf"
    assert path.read_bytes() == b"%PDF-1.4 test"
    assert os.listdir(tmp_path / "out") == ["Invoice-INV-1.pdf"]


def test_trigger_download_replaces_existing(tmp_path):
    trigger_download(b"old", "a.pdf", tmp_path)
    trigger_download(b"new", "a.pdf", tmp_path)
    assert (tmp_path / "a.pdf").read_bytes() == b"new"


def test_failed_download_leaves_nothing(tmp_path, monkeypatch):
    def boom(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(pdf_export.os, "replace", boom)
    with pytest.raises(OSError):
        trigger_download(b"%PDF", "a.pdf", tmp_path)
    assert os.listdir(tmp_path) == []


def test_empty_buffer_is_refused(tmp_path):
    with pytest.raises(ValueError):
        trigger_download(b"", "a.pdf", tmp_path)
    assert os.listdir(tmp_path) == []
