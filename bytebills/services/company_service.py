from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from bytebills.errors import AccessDenied, CollaboratorFailure, NotFound
from bytebills.models.common import utcnow
from bytebills.models.party import Company
from bytebills.services.auth_service import Session
from bytebills.storage.document_store import DocumentStore
from bytebills.storage.object_storage import ObjectStorage, UploadProgress

log = logging.getLogger(__name__)

COMPANIES = "companies"
LOGO_TYPES = {".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp"}


class CompanyService:
    """Business profiles a user issues documents from.

    Editing a company never touches existing documents: they hold their own
    copy of the issuer details.
    """

    def __init__(self, store: DocumentStore, storage: Optional[ObjectStorage] = None, *, timeout: Optional[float] = None):
        self.store = store
        self.storage = storage
        self.timeout = timeout

    # ----------- CRUD/list -----------

    def list_companies(self, session: Session) -> List[Company]:
        out: List[Company] = []
        rows = self.store.query(COMPANIES, {"owner_id": session.user_id}, sort="name", timeout=self.timeout)
        for d in rows:
            try:
                out.append(Company(**d))
            except ValidationError:
                log.warning("Skipping unreadable company %s", d.get("id"))
        return out

    def get(self, session: Session, company_id: str) -> Company:
        d = self.store.get(COMPANIES, company_id, timeout=self.timeout)
        if d is None:
            raise NotFound(f"company {company_id} does not exist")
        company = Company(**d)
        if company.owner_id != session.user_id:
            raise AccessDenied(f"{session.user_id} does not own company {company_id}")
        return company

    def default_company(self, session: Session) -> Optional[Company]:
        companies = self.list_companies(session)
        for c in companies:
            if c.is_default:
                return c
        return companies[0] if companies else None

    def add_company(self, session: Session, values: Mapping[str, Any]) -> Company:
        existing = self.list_companies(session)
        company = Company(**{**values, "owner_id": session.user_id, "id": None})
        if not existing:
            company.is_default = True
        payload = company.model_dump(mode="json", exclude={"id"})
        company.id = self.store.insert(COMPANIES, payload, timeout=self.timeout)
        if company.is_default:
            self._clear_default(existing, keep=company.id)
        log.info("Added company %s (%s)", company.name, company.id)
        return company

    def update_company(self, session: Session, company_id: str, values: Mapping[str, Any]) -> Company:
        current = self.get(session, company_id)
        changes: Dict[str, Any] = {k: v for k, v in values.items() if k not in ("id", "owner_id", "created_at")}
        updated = current.model_copy(update=changes)
        updated.touch(utcnow())
        self.store.update(COMPANIES, company_id, updated.model_dump(mode="json", exclude={"id"}), timeout=self.timeout)
        if updated.is_default and not current.is_default:
            self._clear_default(self.list_companies(session), keep=company_id)
        return updated

    def set_default(self, session: Session, company_id: str) -> Company:
        return self.update_company(session, company_id, {"is_default": True})

    def delete_company(self, session: Session, company_id: str) -> None:
        company = self.get(session, company_id)
        self.store.delete(COMPANIES, company_id, timeout=self.timeout)
        if company.logo and self.storage is not None:
            self._delete_logo(company.logo)
        log.info("Deleted company %s (%s)", company.name, company_id)

    def _clear_default(self, companies: List[Company], keep: Optional[str]) -> None:
        for c in companies:
            if c.is_default and c.id != keep:
                self.store.update(COMPANIES, c.id, {"is_default": False}, timeout=self.timeout)

    # ----------- logo -----------

    def upload_logo(
        self,
        session: Session,
        company_id: str,
        data: bytes,
        filename: str,
        on_progress: Optional[Callable[[UploadProgress], None]] = None,
    ) -> Company:
        if self.storage is None:
            raise CollaboratorFailure("No object storage configured")
        company = self.get(session, company_id)
        suffix = Path(filename).suffix.lower()
        if suffix not in LOGO_TYPES:
            guessed = mimetypes.guess_type(filename)[0] or "unknown"
            raise ValueError(f"Unsupported logo type {guessed} ({filename})")

        path = f"logos/{session.user_id}/{company_id}{suffix}"
        url: Optional[str] = None
        try:
            for event in self.storage.upload(path, data):
                if on_progress:
                    on_progress(event)
                url = event.download_url or url
        except OSError as e:
            raise CollaboratorFailure(f"Logo upload failed: {e}") from e
        if not url:
            raise CollaboratorFailure("Upload finished without a download URL")

        if company.logo and company.logo != url:
            self._delete_logo(company.logo)
        return self.update_company(session, company_id, {"logo": url})

    def _delete_logo(self, url: Union[str, None]) -> None:
        if not url or self.storage is None:
            return
        try:
            self.storage.delete(url)
        except (OSError, ValueError) as e:
            # orphaned file, the company record is already consistent
            log.warning("Could not delete logo %s: %s", url, e)
