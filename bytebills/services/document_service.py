"""
Document lifecycle: create, update, remove, view, status changes and PDF
downloads for invoices, receipts and delivery notes.

This is the boundary the UI talks to. Every failure is caught here, logged and
turned into a ``Notification``; callers get ``None``/``False`` back instead of
an exception.
"""
from __future__ import annotations

import functools
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Protocol, Union

import pydantic

from bytebills.errors import AccessDenied, BillingError, CollaboratorFailure, NotFound, ValidationError
from bytebills.models.common import utcnow
from bytebills.models.document import (
    COLLECTIONS,
    DISPLAY_NAMES,
    INVOICE_STATUSES,
    BillingDocument,
    parse_document,
)
from bytebills.models.forms import DocumentForm, parse_form
from bytebills.models.party import Company
from bytebills.services.auth_service import Session
from bytebills.services.document_builder import build_document, generate_document_number
from bytebills.services.layout import layout_document
from bytebills.services.pdf_export import document_filename, export_to_file, trigger_download
from bytebills.services.settings import AppSettings
from bytebills.storage.document_store import DocumentStore, Sort

log = logging.getLogger(__name__)

NUMBER_ATTEMPTS = 5


@dataclass(frozen=True)
class Notification:
    level: Literal["success", "error"]
    title: str
    message: str


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None: ...


class LogNotifier:
    def notify(self, notification: Notification) -> None:
        level = logging.INFO if notification.level == "success" else logging.WARNING
        log.log(level, "%s: %s", notification.title, notification.message)


def _guarded(action: str, default: Any = None):
    """Run a facade operation; convert any failure into an error notification."""

    def deco(fn: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(fn)
        def wrapper(self: "DocumentService", *args: Any, **kwargs: Any) -> Any:
            try:
                return fn(self, *args, **kwargs)
            except CollaboratorFailure as e:
                log.exception("Failed to %s: %s", action, e)
                self._error(action, e)
            except BillingError as e:
                log.warning("Failed to %s: %s", action, e)
                self._error(action, e)
            except pydantic.ValidationError as e:
                log.warning("Failed to %s: %s", action, e)
                self._error(action, ValidationError(str(e)))
            return default() if callable(default) else default

        return wrapper

    return deco


class DocumentService:
    def __init__(
        self,
        store: DocumentStore,
        notifier: Optional[Notifier] = None,
        settings: Optional[AppSettings] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.notifier = notifier or LogNotifier()
        self.settings = settings or AppSettings()
        self._clock = clock
        self._rng = rng

    # ----------- notifications -----------

    def _error(self, action: str, exc: BillingError) -> None:
        self.notifier.notify(Notification("error", "Error", f"Failed to {action}. {exc.user_message}"))

    def _success(self, message: str) -> None:
        self.notifier.notify(Notification("success", "Success", message))

    # ----------- store access -----------

    def _call(self, what: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Store call bounded by the configured timeout."""
        try:
            return fn(*args, timeout=self.settings.store_timeout, **kwargs)
        except BillingError:
            raise
        except Exception as e:
            raise CollaboratorFailure(f"{what} failed: {e}") from e

    @staticmethod
    def _collection(kind: str) -> str:
        try:
            return COLLECTIONS[kind]
        except KeyError:
            raise ValidationError(f"Unknown document kind: {kind!r}") from None

    def _load_owned(self, session: Session, kind: str, doc_id: str) -> BillingDocument:
        collection = self._collection(kind)
        record = self._call("get", self.store.get, collection, doc_id)
        if record is None:
            raise NotFound(f"{collection}/{doc_id} does not exist")
        if record.get("owner_id") != session.user_id:
            raise AccessDenied(f"{session.user_id} does not own {collection}/{doc_id}")
        record = {**record, "id": doc_id}
        try:
            return parse_document(record)
        except pydantic.ValidationError as e:
            raise CollaboratorFailure(f"Stored {collection}/{doc_id} is unreadable: {e}") from e

    def _with_unique_number(self, session: Session, doc: BillingDocument) -> BillingDocument:
        collection = self._collection(doc.kind)  # type: ignore[attr-defined]
        for _ in range(NUMBER_ATTEMPTS):
            clash = self._call(
                "query",
                self.store.query,
                collection,
                {"owner_id": session.user_id, "document_number": doc.document_number},
                limit=1,
            )
            if not clash:
                return doc
            log.info("Document number %s already used, drawing another", doc.document_number)
            number = generate_document_number(doc.kind, self._clock(), self._rng)  # type: ignore[attr-defined]
            doc = doc.model_copy(update={"document_number": number})
        log.warning("Keeping possibly duplicated number %s after %d attempts", doc.document_number, NUMBER_ATTEMPTS)
        return doc

    @staticmethod
    def _record(doc: BillingDocument) -> Dict[str, Any]:
        return doc.model_dump(mode="json", exclude={"id"})

    # ----------- lifecycle -----------

    @_guarded("create document")
    def create(
        self,
        session: Session,
        kind: str,
        form_values: Union[Mapping[str, Any], DocumentForm],
        company: Optional[Company],
    ) -> Optional[str]:
        form = parse_form(kind, form_values)
        if company is not None and company.owner_id != session.user_id:
            raise AccessDenied(f"{session.user_id} does not own company {company.id}")
        doc = build_document(
            kind,
            form,
            company,
            owner_id=session.user_id,
            now=self._clock(),
            rng=self._rng,
            default_currency=self.settings.default_currency,
            default_tax_rate=self.settings.default_tax_rate,
        )
        if not form.document_number:
            doc = self._with_unique_number(session, doc)
        new_id = self._call("insert", self.store.insert, self._collection(kind), self._record(doc))
        log.info("Created %s %s (%s)", kind, doc.document_number, new_id)
        self._success(f"{DISPLAY_NAMES[kind]} {doc.document_number} has been created successfully.")
        return new_id

    @_guarded("update document")
    def update(
        self,
        session: Session,
        kind: str,
        doc_id: str,
        form_values: Union[Mapping[str, Any], DocumentForm],
        company: Optional[Company],
        previous: Optional[Union[BillingDocument, Mapping[str, Any]]] = None,
    ) -> Optional[BillingDocument]:
        stored = self._load_owned(session, kind, doc_id)
        if previous is not None:
            previous = parse_document(previous)
            if previous.owner_id != session.user_id:
                raise AccessDenied(f"{session.user_id} does not own {kind} {doc_id}")
            if previous.id not in (None, doc_id) or previous.document_number != stored.document_number:
                raise ValidationError(f"Previous record {previous.id} does not belong to {kind} {doc_id}")
        if company is not None and company.owner_id != session.user_id:
            raise AccessDenied(f"{session.user_id} does not own company {company.id}")
        form = parse_form(kind, form_values)
        doc = build_document(
            kind,
            form,
            company,
            previous=stored,
            now=self._clock(),
            default_currency=self.settings.default_currency,
            default_tax_rate=self.settings.default_tax_rate,
        )
        doc = doc.model_copy(update={"id": doc_id})
        # last writer wins: no revision check against concurrent edits
        self._call("update", self.store.update, self._collection(kind), doc_id, self._record(doc))
        log.info("Updated %s %s (%s)", kind, doc.document_number, doc_id)
        self._success(f"{DISPLAY_NAMES[kind]} {doc.document_number} has been updated successfully.")
        return doc

    @_guarded("delete document", default=False)
    def remove(self, session: Session, kind: str, doc_id: str) -> bool:
        doc = self._load_owned(session, kind, doc_id)
        self._call("delete", self.store.delete, self._collection(kind), doc_id)
        log.info("Deleted %s %s (%s)", kind, doc.document_number, doc_id)
        self._success(f"{DISPLAY_NAMES[kind]} {doc.document_number} has been deleted.")
        return True

    @_guarded("load document")
    def get(self, session: Session, kind: str, doc_id: str) -> Optional[BillingDocument]:
        return self._load_owned(session, kind, doc_id)

    @_guarded("load documents", default=list)
    def list_documents(
        self,
        session: Session,
        kind: str,
        sort: Sort = "-created_at",
        limit: Optional[int] = None,
    ) -> List[BillingDocument]:
        collection = self._collection(kind)
        rows = self._call("query", self.store.query, collection, {"owner_id": session.user_id}, sort, limit)
        out: List[BillingDocument] = []
        for r in rows:
            try:
                out.append(parse_document(r))
            except pydantic.ValidationError:
                log.warning("Skipping unreadable %s record %s", collection, r.get("id"))
        return out

    @_guarded("update status", default=False)
    def change_status(self, session: Session, doc_id: str, status: str) -> bool:
        if status not in INVOICE_STATUSES:
            raise ValidationError(f"Unknown invoice status: {status!r}")
        doc = self._load_owned(session, "invoice", doc_id)
        changes = {"status": status, "updated_at": self._clock().isoformat()}
        self._call("update", self.store.update, self._collection("invoice"), doc_id, changes)
        log.info("Invoice %s marked %s", doc.document_number, status)
        self._success(f"Invoice {doc.document_number} marked as {status}.")
        return True

    @_guarded("generate PDF")
    def regenerate_and_download(
        self,
        document: Union[BillingDocument, Mapping[str, Any]],
        target_dir: Optional[Union[str, Path]] = None,
    ) -> Optional[Path]:
        if isinstance(document, Mapping):
            # layout_document reports malformed records itself
            page_set = layout_document(document, brand_name=self.settings.brand_name)
            document = parse_document(document)
        else:
            page_set = layout_document(document, brand_name=self.settings.brand_name)
        pdf = export_to_file(page_set)
        try:
            path = trigger_download(pdf, document_filename(document), target_dir or self.settings.download_dir)
        except (OSError, ValueError) as e:
            raise BillingError(f"Saving PDF failed: {e}", user_message="The PDF could not be saved. Please try again.") from e
        self._success(f"{document.display_name} {document.document_number} has been downloaded.")
        return path
