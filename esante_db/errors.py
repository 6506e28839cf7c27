"""
Error taxonomy of the persistence layer.

Repository and store operations never raise these to their callers; they
return an :class:`Outcome` carrying one of them so the caller can decide to
retry, surface or ignore the failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class PersistenceError(Exception):
    """Base exception for all persistence-layer errors."""
    reason = "persistence_error"


class StorageUnavailable(PersistenceError):
    """The underlying store could not be read or written."""
    reason = "storage_unavailable"


class EntityNotFound(PersistenceError):
    reason = "not_found"

    def __init__(self, collection: str, entity_id: str):
        self.collection = collection
        self.entity_id = entity_id
        super().__init__(f"No entry with id {entity_id!r} in {collection!r}")


class InvalidEntity(PersistenceError):
    """
    The data handed to add/update does not match the entity shape.
    Wraps the pydantic ValidationError.
    """
    reason = "invalid_entity"

    def __init__(self, collection: str, errors: Any):
        self.collection = collection
        self.errors = errors
        super().__init__(f"Invalid data for {collection!r}: {errors}")


class InvalidStatusTransition(PersistenceError):
    reason = "invalid_status_transition"

    def __init__(self, collection: str, entity_id: str, current: str, requested: str):
        self.collection = collection
        self.entity_id = entity_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"{collection} {entity_id}: cannot go from {current!r} to {requested!r}"
        )


class DuplicateEmail(PersistenceError):
    reason = "duplicate_email"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email already registered: {email}")


class InvalidCredentials(PersistenceError):
    reason = "invalid_credentials"


@dataclass
class Outcome(Generic[T]):
    """Result of a store or repository operation."""
    ok: bool
    value: Optional[T] = None
    error: Optional[PersistenceError] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Outcome[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: PersistenceError) -> "Outcome[T]":
        return cls(ok=False, error=error)

    @property
    def reason(self) -> Optional[str]:
        if self.error is None:
            return None
        return self.error.reason

    def __bool__(self) -> bool:
        return self.ok

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"ok": self.ok}
        if self.error is not None:
            result["reason"] = self.reason
            result["detail"] = str(self.error)
        return result
