"""Blob storage for uploaded statements behind a narrow put/get/delete interface"""

import hashlib
import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path

from lifeadmin_gateway.domain.exceptions import NotFoundError

logger = logging.getLogger(__name__)


def content_hash(data: bytes) -> str:
    """SHA-256 of the uploaded bytes, used for duplicate detection"""
    return hashlib.sha256(data).hexdigest()


class BlobStore(ABC):
    """Minimal blob interface; the import core never sees the backing store"""

    @abstractmethod
    def put(self, data: bytes, owner_id: str, filename: str) -> str:
        """Store bytes and return an opaque key"""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Raises NotFoundError for unknown keys"""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Deleting a missing key is not an error"""


class LocalBlobStore(BlobStore):
    """Stores blobs as files under <root>/<owner_id>/"""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise NotFoundError(f"Blob {key} not found")
        return path

    def put(self, data: bytes, owner_id: str, filename: str) -> str:
        owner_dir = self.root / hashlib.sha256(owner_id.encode()).hexdigest()[:16]
        owner_dir.mkdir(parents=True, exist_ok=True)

        key = f"{owner_dir.name}/{uuid.uuid4()}{Path(filename).suffix.lower() or '.pdf'}"
        (self.root / key).write_bytes(data)
        logger.debug("Blob stored", extra={"blob_key": key, "size": len(data)})
        return key

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise NotFoundError(f"Blob {key} not found")
        return path.read_bytes()

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.is_file():
            path.unlink()
            logger.debug("Blob deleted", extra={"blob_key": key})
