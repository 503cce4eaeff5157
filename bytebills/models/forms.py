from __future__ import annotations
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, model_validator
import pydantic

from bytebills.errors import ValidationError
from .common import Text
from .document import PaymentMethod
from .party import PartyDetails


class ItemInput(BaseModel):
    description: str = Field(min_length=1)
    quantity: float = Field(default=1.0, ge=1)
    unit_price: float = Field(default=0.0, ge=0)


class DeliveryItemInput(BaseModel):
    description: str = Field(min_length=1)
    quantity: float = Field(default=1.0, ge=1)
    notes: Text = ""


class DocumentForm(BaseModel):
    """Values collected by a document form, already checked field by field."""
    model_config = ConfigDict(extra="ignore")

    client_name: str = Field(min_length=1)
    client_email: Text = ""
    client_phone: Text = ""
    client_address: Text = ""
    client_city: Text = ""
    client_country: Text = ""

    document_number: Optional[str] = None
    issue_date: date = Field(default_factory=date.today)
    currency: Optional[str] = None
    tax_rate_percent: Optional[float] = Field(default=None, ge=0, le=100)
    notes: Text = ""
    terms: Text = ""

    def recipient(self) -> PartyDetails:
        return PartyDetails(
            name=self.client_name,
            address=self.client_address,
            city=self.client_city,
            country=self.client_country,
            phone=self.client_phone,
            email=self.client_email,
        )


class InvoiceForm(DocumentForm):
    items: List[ItemInput] = Field(min_length=1)
    due_date: Optional[date] = None
    terms: str = "Payment is due within 30 days"

    @model_validator(mode="after")
    def _default_due_date(self):
        if self.due_date is None:
            self.due_date = self.issue_date + timedelta(days=30)
        return self


class ReceiptForm(DocumentForm):
    items: List[ItemInput] = Field(min_length=1)
    payment_method: PaymentMethod = "cash"
    invoice_reference: Text = ""


class DeliveryNoteForm(DocumentForm):
    items: List[DeliveryItemInput] = Field(min_length=1)
    delivery_date: date = Field(default_factory=date.today)
    delivery_address: Text = ""
    invoice_reference: Text = ""
    order_reference: Text = ""
    delivery_instructions: Text = ""


FORMS: Dict[str, Type[DocumentForm]] = {
    "invoice": InvoiceForm,
    "receipt": ReceiptForm,
    "delivery_note": DeliveryNoteForm,
}


def parse_form(kind: str, values: Mapping[str, Any] | DocumentForm) -> DocumentForm:
    try:
        form_cls = FORMS[kind]
    except KeyError:
        raise ValidationError(f"Unknown document kind: {kind!r}") from None
    if isinstance(values, form_cls):
        return values
    if isinstance(values, BaseModel):
        values = values.model_dump()
    if not values.get("items"):
        raise ValidationError("At least one item is required")
    try:
        return form_cls.model_validate(dict(values))
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(f"{field}: {first.get('msg')}", details=e.errors()) from e
