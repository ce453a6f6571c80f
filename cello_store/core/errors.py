"""
Shared exception types for cello_store.
Every store operation raises a subclass of StoreError; the driver exception is chained as __cause__.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence


class StoreError(Exception):
    """Base exception for cello_store; catch this for any package-raised error."""

    def __init__(self, message: str, *, op: Optional[str] = None, identity: Optional[str] = None) -> None:
        self.op = op
        self.identity = identity
        prefix = ""
        if op:
            prefix = f"{op}"
            if identity:
                prefix += f"({identity})"
            prefix += ": "
        super().__init__(f"{prefix}{message}")


class NotFoundError(StoreError):
    """Identity does not resolve on a single-entity read or a targeted delete/update."""


class ConflictError(StoreError):
    """A plain create hit an identity that already exists."""


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class ValidationError(StoreError):
    """Entity failed one or more field-level or cross-field checks."""

    def __init__(self, errors: Sequence[FieldError], *, op: Optional[str] = None, identity: Optional[str] = None) -> None:
        self.errors: List[FieldError] = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors) or "invalid entity", op=op, identity=identity)


class MarshalError(StoreError):
    """Entity could not be converted to/from a backend's physical representation."""


class TransportError(StoreError):
    """Connection, query execution, or remote-service failure."""


class CallCancelledError(TransportError):
    """Call context was cancelled or its deadline passed before the next round trip."""


class CapacityError(StoreError):
    """Cascading delete needs more items than one backend transaction allows."""


__all__ = [
    "CallCancelledError",
    "CapacityError",
    "ConflictError",
    "FieldError",
    "MarshalError",
    "NotFoundError",
    "StoreError",
    "TransportError",
    "ValidationError",
]
