"""Document-store collaborator: per-collection CRUD plus owner queries."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Union

from bytebills.errors import NotFound
from bytebills.storage.json_repo import JsonRepository

log = logging.getLogger(__name__)

Sort = Union[str, Sequence[str], None]


class DocumentStore(Protocol):
    def insert(self, collection: str, record: Mapping[str, Any], *, timeout: Optional[float] = None) -> str: ...

    def get(self, collection: str, obj_id: str, *, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]: ...

    def update(self, collection: str, obj_id: str, changes: Mapping[str, Any], *, timeout: Optional[float] = None) -> None: ...

    def delete(self, collection: str, obj_id: str, *, timeout: Optional[float] = None) -> None: ...

    def query(
        self,
        collection: str,
        filters: Optional[Mapping[str, Any]] = None,
        sort: Sort = None,
        limit: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
    ) -> List[Dict[str, Any]]: ...


def _sort_records(rows: List[Dict[str, Any]], sort: Sort) -> List[Dict[str, Any]]:
    if not sort:
        return rows
    keys = [sort] if isinstance(sort, str) else list(sort)
    # stable sorts, least significant key first
    for key in reversed(keys):
        desc = key.startswith("-")
        name = key.lstrip("-")
        present = [r for r in rows if r.get(name) is not None]
        missing = [r for r in rows if r.get(name) is None]
        present.sort(key=lambda r: r[name], reverse=desc)
        rows = present + missing
    return rows


class JsonDocumentStore:
    """One ``<collection>.json`` file per collection under ``data_dir``."""

    def __init__(self, data_dir: Union[str, Path], *, backup_enabled: bool = False) -> None:
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.backup_enabled = backup_enabled
        self._repos: Dict[str, JsonRepository] = {}

    def repo(self, collection: str) -> JsonRepository:
        if collection not in self._repos:
            self._repos[collection] = JsonRepository(
                self.data_dir / f"{collection}.json",
                entity_name=collection,
                backup_enabled=self.backup_enabled,
            )
        return self._repos[collection]

    def insert(self, collection: str, record: Mapping[str, Any], *, timeout: Optional[float] = None) -> str:
        saved = self.repo(collection).add(record, timeout=timeout)
        log.debug("insert %s/%s", collection, saved["id"])
        return saved["id"]

    def get(self, collection: str, obj_id: str, *, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        return self.repo(collection).get_by_id(obj_id, timeout=timeout)

    def update(self, collection: str, obj_id: str, changes: Mapping[str, Any], *, timeout: Optional[float] = None) -> None:
        try:
            self.repo(collection).update(obj_id, changes, timeout=timeout)
        except KeyError:
            raise NotFound(f"{collection}/{obj_id} does not exist") from None

    def delete(self, collection: str, obj_id: str, *, timeout: Optional[float] = None) -> None:
        if not self.repo(collection).delete(obj_id, timeout=timeout):
            raise NotFound(f"{collection}/{obj_id} does not exist")

    def query(
        self,
        collection: str,
        filters: Optional[Mapping[str, Any]] = None,
        sort: Sort = None,
        limit: Optional[int] = None,
        *,
        timeout: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        filters = dict(filters or {})
        rows = self.repo(collection).find(
            lambda r: all(r.get(k) == v for k, v in filters.items()),
            timeout=timeout,
        )
        rows = _sort_records(rows, sort)
        return rows[:limit] if limit is not None else rows
