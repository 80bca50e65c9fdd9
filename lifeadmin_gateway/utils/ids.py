"""Identifier parsing"""

import uuid
from typing import Any

from lifeadmin_gateway.domain.exceptions import NotFoundError


def parse_uuid(value: Any, label: str = "id") -> uuid.UUID:
    """Ids that are not UUIDs cannot exist"""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        raise NotFoundError(f"{label} {value} not found") from None
