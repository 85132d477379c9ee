"""Blob storage for uploaded audio, converted audio and segments."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path, PurePosixPath
from typing import Protocol

from transcript_pipeline.errors import BlobNotFoundError

logger = logging.getLogger(__name__)


class BlobStorage(Protocol):
    """Key/value byte storage addressed by slash-separated keys."""

    def read(self, path: str) -> bytes:
        """Return stored bytes or raise BlobNotFoundError."""
        raise NotImplementedError

    def write(self, path: str, data: bytes) -> None:
        """Store bytes, replacing any previous value."""
        raise NotImplementedError

    def exists(self, path: str) -> bool:
        raise NotImplementedError

    def list(self, prefix: str) -> list[str]:
        """Keys under prefix, sorted."""
        raise NotImplementedError

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key under prefix and return how many were removed."""
        raise NotImplementedError


class LocalBlobStorage:
    """Filesystem-backed blob storage rooted at one directory."""

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir.resolve()

    def read(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise BlobNotFoundError(path)
        return target.read_bytes()

    def write(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_name(f"{target.name}.tmp")
        tmp_path.write_bytes(data)
        tmp_path.replace(target)

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def list(self, prefix: str) -> list[str]:
        base = self._resolve(prefix)
        if base.is_file():
            return [_normalize_key(prefix)]
        if not base.is_dir():
            return []
        return sorted(
            item.relative_to(self.root_dir).as_posix() for item in base.rglob("*") if item.is_file()
        )

    def delete_prefix(self, prefix: str) -> int:
        keys = self.list(prefix)
        base = self._resolve(prefix)
        if base.is_dir():
            shutil.rmtree(base)
        elif base.is_file():
            base.unlink()
        if keys:
            logger.info("Deleted %d blob(s) under %s", len(keys), prefix)
        return len(keys)

    def _resolve(self, path: str) -> Path:
        key = _normalize_key(path)
        target = (self.root_dir / key).resolve()
        if target != self.root_dir and self.root_dir not in target.parents:
            raise ValueError(f"Blob key escapes storage root: {path!r}")
        if target == self.root_dir:
            raise ValueError("Blob key must not be empty.")
        return target


def _normalize_key(path: str) -> str:
    key = PurePosixPath(path.strip().lstrip("/")).as_posix()
    if key in {"", "."}:
        raise ValueError("Blob key must not be empty.")
    return key
