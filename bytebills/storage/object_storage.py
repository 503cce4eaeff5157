"""Object-storage collaborator used for company logos."""
from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterator, Optional, Protocol, Union
from urllib.parse import unquote, urlparse

log = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class UploadProgress:
    bytes_transferred: int
    total_bytes: int
    download_url: Optional[str] = None  # set on the final event only

    @property
    def percent(self) -> float:
        if not self.total_bytes:
            return 100.0
        return 100.0 * self.bytes_transferred / self.total_bytes


class ObjectStorage(Protocol):
    def upload(self, path: str, data: bytes) -> Iterator[UploadProgress]: ...

    def delete(self, url: str) -> None: ...


class LocalObjectStorage:
    """Stores objects under ``root`` and hands out ``file://`` URLs."""

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        rel = PurePosixPath(path.lstrip("/"))
        if ".." in rel.parts:
            raise ValueError(f"Invalid object path: {path!r}")
        return self.root.joinpath(*rel.parts)

    def upload(self, path: str, data: bytes) -> Iterator[UploadProgress]:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        total = len(data)
        sent = 0
        fd, name = tempfile.mkstemp(prefix=".upload-", suffix=".part", dir=str(target.parent))
        tmp = Path(name)
        try:
            # the object only appears once every chunk is written
            with os.fdopen(fd, "wb") as f:
                while sent < total:
                    chunk = data[sent:sent + CHUNK_SIZE]
                    f.write(chunk)
                    sent += len(chunk)
                    yield UploadProgress(sent, total)
            os.replace(tmp, target)
        finally:
            tmp.unlink(missing_ok=True)
        url = target.as_uri()
        log.info("Uploaded %s (%d bytes)", path, total)
        yield UploadProgress(total, total, download_url=url)

    def delete(self, url: str) -> None:
        parsed = urlparse(url)
        target = Path(unquote(parsed.path)).resolve()
        if self.root not in target.parents:
            raise ValueError(f"URL outside storage root: {url}")
        target.unlink(missing_ok=True)
