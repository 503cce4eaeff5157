from __future__ import annotations
from datetime import date
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .common import Text, TimeStamped
from .party import PartyDetails

DocumentKind = Literal["invoice", "receipt", "delivery_note"]
InvoiceStatus = Literal["pending", "paid", "overdue", "cancelled"]
PaymentMethod = Literal["cash", "card", "bank", "paypal", "other"]

KINDS: tuple[str, ...] = ("invoice", "receipt", "delivery_note")
INVOICE_STATUSES: tuple[str, ...] = ("pending", "paid", "overdue", "cancelled")

# store collection per kind
COLLECTIONS: Dict[str, str] = {
    "invoice": "invoices",
    "receipt": "receipts",
    "delivery_note": "deliveryNotes",
}
NUMBER_PREFIXES: Dict[str, str] = {"invoice": "INV", "receipt": "RCT", "delivery_note": "DN"}
DISPLAY_NAMES: Dict[str, str] = {"invoice": "Invoice", "receipt": "Receipt", "delivery_note": "Delivery Note"}


class LineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: str
    quantity: float = 1.0
    unit_price: float = 0.0

    @property
    def amount(self) -> float:
        return self.quantity * self.unit_price


class DeliveryItem(BaseModel):
    """Delivery-note row: no price, optional handling notes."""
    model_config = ConfigDict(extra="ignore")

    description: str
    quantity: float = 1.0
    notes: Text = ""


class BillingDocument(TimeStamped):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    owner_id: str
    company_id: Optional[str] = None
    document_number: str
    issuer: PartyDetails
    recipient: PartyDetails
    issue_date: date = Field(default_factory=date.today)

    currency: str = "USD"
    tax_rate_percent: float = Field(default=0.0, ge=0, le=100)
    # computed by the builder, persisted as issued
    subtotal: float = 0.0
    tax: float = 0.0
    total: float = 0.0

    notes: Text = ""
    terms: Text = ""

    @property
    def display_name(self) -> str:
        return DISPLAY_NAMES[self.kind]  # type: ignore[attr-defined]

    @property
    def collection(self) -> str:
        return COLLECTIONS[self.kind]  # type: ignore[attr-defined]


class Invoice(BillingDocument):
    kind: Literal["invoice"] = "invoice"
    items: List[LineItem] = Field(min_length=1)
    due_date: Optional[date] = None
    status: InvoiceStatus = "pending"


class Receipt(BillingDocument):
    kind: Literal["receipt"] = "receipt"
    items: List[LineItem] = Field(min_length=1)
    payment_method: PaymentMethod = "cash"
    invoice_reference: Text = ""


class DeliveryNote(BillingDocument):
    kind: Literal["delivery_note"] = "delivery_note"
    items: List[DeliveryItem] = Field(min_length=1)
    delivery_date: date = Field(default_factory=date.today)
    delivery_address: Text = ""
    invoice_reference: Text = ""
    order_reference: Text = ""
    delivery_instructions: Text = ""


AnyDocument = Annotated[Union[Invoice, Receipt, DeliveryNote], Field(discriminator="kind")]
_document_adapter: TypeAdapter[Any] = TypeAdapter(AnyDocument)


def parse_document(data: Mapping[str, Any] | BillingDocument) -> BillingDocument:
    """Re-hydrate a stored record into its concrete document class."""
    if isinstance(data, BillingDocument):
        return data
    return _document_adapter.validate_python(dict(data))
