import random
from datetime import datetime, timezone

import pydantic
import pytest

from bytebills.errors import AccessDenied, CollaboratorFailure
from bytebills.services.document_builder import build_document
from bytebills.services.email_service import EMAILS, EmailService, render_invoice_email


class OfflineStore:
    def insert(self, collection, record, *, timeout=None):
        raise ConnectionError("offline")


@pytest.fixture
def invoice(company, invoice_form):
    values = {**invoice_form, "client_name": "Globex & Sons", "document_number": "INV-2501-0042"}
    doc = build_document(
        "invoice", values, company, owner_id="alice", now=datetime(2025, 1, 15, tzinfo=timezone.utc), rng=random.Random(0)
    )
    return doc.model_copy(update={"id": "inv-1"})


def test_render_invoice_email(invoice):
    html = render_invoice_email(invoice, "See you <soon>")

    assert "Invoice INV-2501-0042" in html
    assert "$137.50" in html
    assert "Acme Supplies" in html
    assert "Globex &amp; Sons" in html
    assert "See you &lt;soon&gt;" in html


def test_message_paragraph_is_optional(invoice):
    assert "<p></p>" not in render_invoice_email(invoice)


def test_send_invoice_queues_email(store, alice, invoice):
    email_id = EmailService(store, timeout=1).send_invoice(
        alice, invoice, "ap@globex.example.com", "Thanks!", attachment_url="file:///tmp/Invoice.pdf"
    )

    record = store.get(EMAILS, email_id)
    assert record["to"] == "ap@globex.example.com"
    assert record["subject"] == "Invoice INV-2501-0042 from Acme Supplies"
    assert record["status"] == "pending"
    assert record["invoice_id"] == "inv-1"
    assert record["user_id"] == "alice"
    assert record["attachment_url"] == "file:///tmp/Invoice.pdf"
    assert "$137.50" in record["html"]


def test_send_invoice_for_someone_else(store, bob, invoice):
    with pytest.raises(AccessDenied):
        EmailService(store).send_invoice(bob, invoice, "ap@globex.example.com")
    assert store.query(EMAILS) == []


def test_invalid_recipient(store, alice, invoice):
    with pytest.raises(pydantic.ValidationError):
        EmailService(store).send_invoice(alice, invoice, "not an address")


def test_store_failure(alice, invoice):
    with pytest.raises(CollaboratorFailure):
        EmailService(OfflineStore()).send_invoice(alice, invoice, "ap@globex.example.com")
