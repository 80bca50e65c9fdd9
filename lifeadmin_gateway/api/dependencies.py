"""Dependency injection for FastAPI endpoints"""

from pathlib import Path
from typing import Optional

from fastapi import Header, HTTPException

from lifeadmin_gateway.config import settings
from lifeadmin_gateway.domain.models import Principal
from lifeadmin_gateway.infrastructure.clients.notifier import ReminderNotifier
from lifeadmin_gateway.infrastructure.storage.blobs import BlobStore, LocalBlobStore


def get_principal(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Principal:
    """
    Authenticated caller, as asserted by the upstream auth gateway.

    Every service operation receives this value explicitly.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return Principal(id=x_user_id.strip(), role=(x_user_role or "user").strip().lower())


def get_blob_store() -> BlobStore:
    """Provide statement blob store"""
    return LocalBlobStore(Path(settings.blob_storage_dir))


def get_notifier() -> ReminderNotifier:
    """Provide reminder webhook client instance"""
    return ReminderNotifier()
