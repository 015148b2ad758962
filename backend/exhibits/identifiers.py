"""UUID validation shared by every entry point that accepts a record key."""

from __future__ import annotations

import re
from uuid import UUID

from .errors import InvalidIdentifier

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_valid_uuid(value: object) -> bool:
    if isinstance(value, UUID):
        value = str(value)
    if not isinstance(value, str):
        return False
    return bool(UUID_PATTERN.match(value.strip()))


def validate_uuid(value: object, field: str = "uuid") -> UUID:
    """Return the parsed UUID or raise ``InvalidIdentifier`` before any I/O."""

    if not is_valid_uuid(value):
        raise InvalidIdentifier(value, field)
    return UUID(str(value).strip())
