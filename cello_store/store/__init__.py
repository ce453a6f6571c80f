"""
Store: the CRUD contract and its relational / key-value backends.
Backend modules are imported lazily by build_store so only the selected driver stack is loaded.
"""

from __future__ import annotations

from .backend import Store, build_store, get_store, order_targets, order_tokens, set_store

__all__ = ["Store", "build_store", "get_store", "order_targets", "order_tokens", "set_store"]
