"""
Store interface: one CRUD contract for projects, targets and tokens.
Both backends (SQLStore, DynamoDBStore) implement it; callers depend only on Store.
The process-wide instance is selected once from configuration (build_store / set_store).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable, List, Optional

from ..core.context import CallContext
from ..core.types import Project, Target, Token

if TYPE_CHECKING:
    from ..config import StoreConfig

logger = logging.getLogger(__name__)

# Process-wide store (set by set_store or lazily by get_store)
_store: Optional["Store"] = None

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def order_targets(targets: Iterable[Target]) -> List[Target]:
    """Deterministic target order shared by all backends: by name (code-point order)."""
    return sorted(targets, key=lambda t: t.name)


def order_tokens(tokens: Iterable[Token]) -> List[Token]:
    """Most recently created first; equal timestamps ordered by token_id."""
    by_id = sorted(tokens, key=lambda t: t.token_id)
    return sorted(by_id, key=lambda t: t.created_at or _EPOCH, reverse=True)


class Store(ABC):
    """
    Storage contract. Every operation takes a CallContext first.

    Single-entity reads, updates and targeted deletes raise NotFoundError when the identity
    does not resolve; list operations return an empty list instead.
    """

    # -- projects ---------------------------------------------------------

    @abstractmethod
    def create_project(self, ctx: CallContext, project: Project) -> None:
        """Write project metadata, replacing an existing entry with the same id. Children are kept."""
        ...

    @abstractmethod
    def read_project(self, ctx: CallContext, project_id: str) -> Project: ...

    @abstractmethod
    def delete_project(self, ctx: CallContext, project_id: str) -> None:
        """Delete the project and every target and token it owns, atomically."""
        ...

    # -- targets ----------------------------------------------------------

    @abstractmethod
    def create_target(self, ctx: CallContext, project_id: str, target: Target) -> None:
        """Insert a target. ConflictError if (project_id, name) exists; NotFoundError if the project does not."""
        ...

    @abstractmethod
    def create_if_missing_target(self, ctx: CallContext, project_id: str, target: Target) -> bool:
        """Insert unless present. Returns True if written; an existing target is left untouched."""
        ...

    @abstractmethod
    def upsert_target(self, ctx: CallContext, project_id: str, target: Target) -> None:
        """Insert, or update properties and updated_at of an existing target in one atomic write."""
        ...

    @abstractmethod
    def update_target(self, ctx: CallContext, project_id: str, target: Target) -> None:
        """Update properties and updated_at only."""
        ...

    @abstractmethod
    def delete_target(self, ctx: CallContext, project_id: str, name: str) -> None: ...

    @abstractmethod
    def read_target(self, ctx: CallContext, project_id: str, name: str) -> Target: ...

    @abstractmethod
    def list_targets(self, ctx: CallContext, project_id: str) -> List[Target]:
        """Targets of the project ordered by name."""
        ...

    # -- tokens -----------------------------------------------------------

    @abstractmethod
    def create_token(self, ctx: CallContext, token: Token) -> None: ...

    @abstractmethod
    def read_token(self, ctx: CallContext, project_id: str, token_id: str) -> Token: ...

    @abstractmethod
    def delete_token(self, ctx: CallContext, project_id: str, token_id: str) -> None: ...

    @abstractmethod
    def list_tokens(self, ctx: CallContext, project_id: str) -> List[Token]:
        """Tokens of the project, most recently created first (ties by token_id)."""
        ...

    # -- misc -------------------------------------------------------------

    @abstractmethod
    def health(self, ctx: CallContext) -> None:
        """Raise TransportError if the backend is unreachable. May be a no-op."""
        ...


def build_store(config: "StoreConfig") -> Store:
    """Construct the backend named by config.backend."""
    if config.backend == "sql":
        from .sql_backend import SQLStore

        store: Store = SQLStore.from_config(config)
    elif config.backend == "dynamodb":
        from .dynamodb_backend import DynamoDBStore

        store = DynamoDBStore.from_config(config)
    else:
        raise ValueError(f"Unknown store backend {config.backend!r}; expected 'sql' or 'dynamodb'")
    logger.info("Selected %s store backend", config.backend)
    return store


def get_store() -> Store:
    """Return the process-wide store, building it from get_config() on first use."""
    global _store
    if _store is None:
        from ..config import load_store_config

        _store = build_store(load_store_config())
    return _store


def set_store(store: Optional[Store]) -> None:
    """Set (or with None, reset) the process-wide store."""
    global _store
    _store = store
