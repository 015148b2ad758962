"""Exception taxonomy for the exhibit publication engine."""

from __future__ import annotations

from typing import Any

# purpose: typed failures raised by store, index, and lock collaborators and mapped to envelopes
# status: pilot


class ExhibitError(Exception):
    """Base class for engine failures carrying an envelope status."""

    status = "error"

    def __init__(self, message: str, *, data: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data or {}


class ValidationError(ExhibitError):
    status = "invalid"


class InvalidIdentifier(ValidationError):
    def __init__(self, value: object, field: str = "uuid") -> None:
        super().__init__(f"Invalid {field}: {value!r}", data={"field": field})
        self.value = value
        self.field = field


class NotFound(ExhibitError):
    status = "not_found"


class StoreError(ExhibitError):
    pass


class SearchIndexError(ExhibitError):
    pass


class LockConflict(ExhibitError):
    """Raised when a record is held by another editor."""

    status = "locked"

    def __init__(self, message: str, *, locked_by_user: str | None = None, data: dict[str, Any] | None = None) -> None:
        payload = {"locked_by_user": locked_by_user}
        payload.update(data or {})
        super().__init__(message, data=payload)
        self.locked_by_user = locked_by_user


class PartialFailure(ExhibitError):
    """Raised when some, but not all, sub-operations of a fan-out failed."""

    status = "partial_failure"

    def __init__(self, message: str, *, failed: int, total: int, data: dict[str, Any] | None = None) -> None:
        payload = {"failed_count": failed, "total": total}
        payload.update(data or {})
        super().__init__(message, data=payload)
        self.failed = failed
        self.total = total


class IndexConflict(SearchIndexError):
    """A conditional index write lost to a concurrent writer."""
