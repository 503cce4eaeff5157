from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape
from pydantic import BaseModel, EmailStr, Field

from bytebills.errors import AccessDenied, CollaboratorFailure
from bytebills.models.common import utcnow
from bytebills.models.document import Invoice
from bytebills.services.auth_service import Session
from bytebills.services.money import format_money
from bytebills.storage.document_store import DocumentStore

log = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parents[1] / "templates"
EMAILS = "emails"


class EmailMessage(BaseModel):
    to: EmailStr
    subject: str = Field(min_length=1)
    message: str = ""
    html: str = ""
    attachment_url: Optional[str] = None
    invoice_id: Optional[str] = None
    user_id: str
    status: str = "pending"
    created_at: datetime = Field(default_factory=utcnow)


def _env() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        autoescape=select_autoescape(["html", "xml"]),
    )


def render_invoice_email(invoice: Invoice, message: str = "") -> str:
    """HTML body for an invoice e-mail."""
    tpl = _env().get_template("email/invoice.html")
    return tpl.render(
        invoice_number=invoice.document_number,
        company_name=invoice.issuer.name,
        client_name=invoice.recipient.name,
        amount=format_money(invoice.total, invoice.currency),
        message=message,
    )


class EmailService:
    """
    Queues outgoing e-mails in the ``emails`` collection; a separate mailer
    picks up ``pending`` records.
    """

    def __init__(self, store: DocumentStore, *, timeout: Optional[float] = None):
        self.store = store
        self.timeout = timeout

    def send_email(self, email: EmailMessage) -> str:
        try:
            email_id = self.store.insert(EMAILS, email.model_dump(mode="json"), timeout=self.timeout)
        except Exception as e:
            log.error("Error queuing email to %s: %s", email.to, e)
            raise CollaboratorFailure("Failed to send email") from e
        log.info("Queued email %s to %s", email_id, email.to)
        return email_id

    def send_invoice(
        self,
        session: Session,
        invoice: Invoice,
        to: str,
        message: str = "",
        attachment_url: Optional[str] = None,
    ) -> str:
        if invoice.owner_id != session.user_id:
            raise AccessDenied(f"{session.user_id} does not own invoice {invoice.id}")
        email = EmailMessage(
            to=to,
            subject=f"Invoice {invoice.document_number} from {invoice.issuer.name}",
            message=message,
            html=render_invoice_email(invoice, message),
            attachment_url=attachment_url,
            invoice_id=invoice.id,
            user_id=session.user_id,
        )
        return self.send_email(email)
