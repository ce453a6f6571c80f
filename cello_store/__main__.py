"""Allow python -m cello_store to run the store doctor."""
from __future__ import annotations

from .doctor import main

if __name__ == "__main__":
    raise SystemExit(main())
