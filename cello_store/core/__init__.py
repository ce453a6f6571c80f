"""
Stable facade: entity values, call context and error taxonomy. No backend imports.
Do not add exports without updating __all__.
"""

from __future__ import annotations

from .context import CallContext
from .errors import (
    CallCancelledError,
    CapacityError,
    ConflictError,
    FieldError,
    MarshalError,
    NotFoundError,
    StoreError,
    TransportError,
    ValidationError,
)
from .types import Project, Target, TargetProperties, TargetType, Token

# Do not add exports without updating __all__.
__all__ = [
    "CallCancelledError",
    "CallContext",
    "CapacityError",
    "ConflictError",
    "FieldError",
    "MarshalError",
    "NotFoundError",
    "Project",
    "StoreError",
    "Target",
    "TargetProperties",
    "TargetType",
    "Token",
    "TransportError",
    "ValidationError",
]
