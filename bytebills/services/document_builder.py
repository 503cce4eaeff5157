"""Assemble persisted document records from form input."""
from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from bytebills.errors import ValidationError
from bytebills.models.common import utcnow
from bytebills.models.document import (
    NUMBER_PREFIXES,
    BillingDocument,
    Invoice,
    parse_document,
)
from bytebills.models.forms import DeliveryNoteForm, DocumentForm, InvoiceForm, ReceiptForm, parse_form
from bytebills.models.party import Company, PartyDetails
from bytebills.services.money import DEFAULT_CURRENCY, rounded_totals

log = logging.getLogger(__name__)

DEFAULT_TAX_RATE = 10.0


def generate_document_number(kind: str, now: Optional[datetime] = None, rng: Optional[random.Random] = None) -> str:
    """PREFIX-YYMM-NNNN, e.g. INV-2501-0042. Random suffix, not checked for uniqueness."""
    try:
        prefix = NUMBER_PREFIXES[kind]
    except KeyError:
        raise ValidationError(f"Unknown document kind: {kind!r}") from None
    now = now or utcnow()
    suffix = (rng or random).randrange(10000)
    return f"{prefix}-{now:%y%m}-{suffix:04d}"


def _kind_fields(form: DocumentForm) -> Dict[str, Any]:
    if isinstance(form, InvoiceForm):
        return {"due_date": form.due_date}
    if isinstance(form, ReceiptForm):
        return {
            "payment_method": form.payment_method,
            "invoice_reference": form.invoice_reference,
        }
    if isinstance(form, DeliveryNoteForm):
        return {
            "delivery_date": form.delivery_date,
            "delivery_address": form.delivery_address,
            "invoice_reference": form.invoice_reference,
            "order_reference": form.order_reference,
            "delivery_instructions": form.delivery_instructions,
        }
    return {}


def build_document(
    kind: str,
    form_values: Mapping[str, Any] | DocumentForm,
    company: Optional[Company],
    previous: Optional[BillingDocument | Mapping[str, Any]] = None,
    *,
    owner_id: Optional[str] = None,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
    default_currency: str = DEFAULT_CURRENCY,
    default_tax_rate: float = DEFAULT_TAX_RATE,
) -> BillingDocument:
    """
    Build an Invoice, Receipt or DeliveryNote record.

    Without ``previous`` a new record is produced (number, timestamps,
    pending status). With ``previous`` the identity fields are carried over
    and only the body, totals and ``updated_at`` change. Totals are always
    recomputed from the items; caller-supplied totals are ignored.
    """
    form = parse_form(kind, form_values)
    if company is None:
        raise ValidationError("A company must be selected")
    now = now or utcnow()

    prev: Optional[BillingDocument] = parse_document(previous) if previous is not None else None
    if prev is not None and prev.kind != kind:  # type: ignore[attr-defined]
        raise ValidationError(f"Cannot rebuild a {prev.kind} as a {kind}")  # type: ignore[attr-defined]

    currency = (form.currency or (prev.currency if prev else None) or default_currency).upper()
    if form.tax_rate_percent is not None:
        tax_rate = form.tax_rate_percent
    elif prev is not None:
        tax_rate = prev.tax_rate_percent
    else:
        tax_rate = default_tax_rate
    if kind == "delivery_note":
        tax_rate = 0.0

    items = [it.model_dump() for it in form.items]
    totals = rounded_totals(items, tax_rate, currency)

    record: Dict[str, Any] = {
        "kind": kind,
        "company_id": company.id,
        "issuer": PartyDetails.from_company(company),
        "recipient": form.recipient(),
        "issue_date": form.issue_date,
        "items": items,
        "currency": currency,
        "tax_rate_percent": tax_rate,
        "subtotal": totals.subtotal,
        "tax": totals.tax,
        "total": totals.total,
        "notes": form.notes or "",
        "terms": form.terms or "",
        "updated_at": now,
        **_kind_fields(form),
    }

    if prev is None:
        if not owner_id:
            raise ValidationError("owner_id is required to create a document")
        record.update(
            id=None,
            owner_id=owner_id,
            document_number=form.document_number or generate_document_number(kind, now, rng),
            created_at=now,
        )
        if kind == "invoice":
            record["status"] = "pending"
    else:
        record.update(
            id=prev.id,
            owner_id=prev.owner_id,
            document_number=prev.document_number,
            created_at=prev.created_at,
        )
        if isinstance(prev, Invoice):
            record["status"] = prev.status

    doc = parse_document(record)
    log.debug("Built %s %s (total=%s %s)", kind, doc.document_number, doc.total, doc.currency)
    return doc

