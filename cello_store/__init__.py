"""
Top-level public API surface. Stable facades only.
Canonical entrypoint: import cello_store; select a backend once with build_store/set_store,
then call the Store contract with a CallContext.
"""

from __future__ import annotations

from . import core, store, validation
from ._version import __version__
from .core import (
    CallContext,
    CapacityError,
    ConflictError,
    MarshalError,
    NotFoundError,
    Project,
    StoreError,
    Target,
    TargetProperties,
    TargetType,
    Token,
    TransportError,
    ValidationError,
)
from .store import Store, build_store, get_store, set_store

# Do not add exports without updating __all__.
__all__ = [
    "__version__",
    "CallContext",
    "CapacityError",
    "ConflictError",
    "MarshalError",
    "NotFoundError",
    "Project",
    "Store",
    "StoreError",
    "Target",
    "TargetProperties",
    "TargetType",
    "Token",
    "TransportError",
    "ValidationError",
    "build_store",
    "core",
    "get_store",
    "set_store",
    "store",
    "validation",
]
