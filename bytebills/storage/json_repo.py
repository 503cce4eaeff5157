from __future__ import annotations

import glob
import json
import logging
import os
import shutil
import threading
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Union
from uuid import uuid4

from pydantic import BaseModel

log = logging.getLogger(__name__)


def _json_default(o: Any) -> Any:
    if isinstance(o, (date, datetime)):
        return o.isoformat()
    return str(o)


class JsonRepository:
    """
    One JSON file holding a list of records, keyed by ``key``.
    - Every operation holds the file lock; ``timeout`` bounds the wait (TimeoutError)
    - Backup rotation (backup_enabled, backup_keep)
    - Skips the write when the content is unchanged
    """

    def __init__(
        self,
        filepath: Union[str, Path],
        entity_name: str = "entity",
        key: str = "id",
        *,
        backup_enabled: bool = True,
        backup_keep: int = 5,
    ) -> None:
        self.filepath = Path(filepath)
        self.entity_name = entity_name
        self.key = key
        self._lock = threading.RLock()
        self.backup_enabled = backup_enabled
        self.backup_keep = max(0, int(backup_keep))

        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        if not self.filepath.exists():
            self._write_raw([])

    # ---------------- Locking ---------------- #

    @contextmanager
    def locked(self, timeout: Optional[float] = None) -> Iterator[None]:
        acquired = self._lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise TimeoutError(f"{self.entity_name} store busy (waited {timeout}s)")
        try:
            yield
        finally:
            self._lock.release()

    # ---------------- Low-level I/O ---------------- #

    def _read_raw(self) -> List[Dict[str, Any]]:
        try:
            with self.filepath.open("r", encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, list) else []
        except FileNotFoundError:
            return []
        except json.JSONDecodeError:
            # corrupt file: keep a copy aside and start over
            backup = self.filepath.with_suffix(".corrupt.json")
            shutil.copy2(self.filepath, backup)
            log.error("Corrupt %s file %s, saved as %s", self.entity_name, self.filepath, backup)
            return []

    def _rotate_backups(self) -> None:
        if not self.backup_enabled or self.backup_keep <= 0:
            return
        pattern = str(self.filepath.with_suffix(".*.bak.json"))
        files = sorted(glob.glob(pattern))
        if len(files) > self.backup_keep:
            for old in files[: len(files) - self.backup_keep]:
                Path(old).unlink(missing_ok=True)

    def _write_raw(self, data: Iterable[Mapping[str, Any]]) -> None:
        new_dump = json.dumps(list(data), ensure_ascii=False, indent=2, default=_json_default)

        if self.filepath.exists():
            if self.filepath.read_text(encoding="utf-8") == new_dump:
                return
            if self.backup_enabled:
                ts = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
                shutil.copy2(self.filepath, self.filepath.with_suffix(f".{ts}.bak.json"))
                self._rotate_backups()

        tmp = self.filepath.with_suffix(".tmp")
        tmp.write_text(new_dump, encoding="utf-8")
        os.replace(tmp, self.filepath)

    # ---------------- Helpers ---------------- #

    @staticmethod
    def _to_dict(item: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
        if isinstance(item, BaseModel):
            return item.model_dump(mode="json")
        return json.loads(json.dumps(dict(item), default=_json_default))

    # ---------------- CRUD ---------------- #

    def list_all(self, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        with self.locked(timeout):
            return self._read_raw()

    def get_by_id(self, obj_id: Any, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        k = self.key
        for it in self.list_all(timeout):
            if str(it.get(k)) == str(obj_id):
                return it
        return None

    def add(self, item: Union[BaseModel, Mapping[str, Any]], timeout: Optional[float] = None) -> Dict[str, Any]:
        record = self._to_dict(item)
        k = self.key
        if not record.get(k):
            record[k] = uuid4().hex
        with self.locked(timeout):
            data = self._read_raw()
            if any(str(d.get(k)) == str(record[k]) for d in data):
                raise ValueError(f"{self.entity_name} with {k}={record[k]} already exists")
            data.append(record)
            self._write_raw(data)
        return record

    def update(self, obj_id: Any, changes: Union[BaseModel, Mapping[str, Any]], timeout: Optional[float] = None) -> Dict[str, Any]:
        """Merge ``changes`` into the stored record (shallow)."""
        patch = self._to_dict(changes)
        k = self.key
        patch.pop(k, None)
        with self.locked(timeout):
            data = self._read_raw()
            for idx, existing in enumerate(data):
                if str(existing.get(k)) == str(obj_id):
                    merged = {**existing, **patch}
                    data[idx] = merged
                    self._write_raw(data)
                    return merged
        raise KeyError(f"{self.entity_name} with {k}={obj_id} not found")

    def delete(self, obj_id: Any, timeout: Optional[float] = None) -> bool:
        k = self.key
        with self.locked(timeout):
            data = self._read_raw()
            new_data = [d for d in data if str(d.get(k)) != str(obj_id)]
            changed = len(new_data) != len(data)
            if changed:
                self._write_raw(new_data)
        return changed

    # ---------------- Lookups ---------------- #

    def find(self, predicate: Callable[[Dict[str, Any]], bool], timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        return [r for r in self.list_all(timeout) if predicate(r)]
