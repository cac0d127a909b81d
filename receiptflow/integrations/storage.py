"""
File storage collaborator.

``get_readable_url`` hands the extractor something it can fetch. Local
storage inlines the file as a base64 ``data:`` URL, which the vision API
accepts directly, so the ttl is only validated.
"""
from __future__ import annotations

import base64
import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Protocol

from receiptflow.errors import StorageError

logger = logging.getLogger(__name__)


class Storage(Protocol):
    def save(self, user_id: str, file_name: str, content: bytes) -> str: ...

    def get_readable_url(self, storage_path: str, ttl_seconds: int) -> str: ...


class LocalFileStorage:
    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _resolve(self, storage_path: str) -> Path:
        path = (self.root / storage_path).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageError(f"Path escapes storage root: {storage_path}")
        return path

    def save(self, user_id: str, file_name: str, content: bytes) -> str:
        """Store an upload and return its storage path."""
        storage_path = f"{user_id}/{uuid.uuid4().hex}_{Path(file_name).name}"
        path = self._resolve(storage_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        logger.info("Stored %d bytes at %s", len(content), storage_path)
        return storage_path

    def get_readable_url(self, storage_path: str, ttl_seconds: int) -> str:
        if ttl_seconds <= 0:
            raise StorageError("ttl_seconds must be positive")
        path = self._resolve(storage_path)
        if not path.is_file():
            raise StorageError(f"Failed to generate readable URL: {storage_path} not found")
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        encoded = base64.b64encode(path.read_bytes()).decode("ascii")
        return f"data:{mime_type};base64,{encoded}"
