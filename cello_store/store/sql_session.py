"""
Relational session lifecycle: one connection per store call, always released on exit.
SQLite connections get PRAGMA foreign_keys=ON at connect so cascades fire.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Generator, Mapping, Optional

import sqlalchemy as sa
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.pool import NullPool


def build_url(
    host: str,
    database: str,
    user: str,
    password: str,
    options: Optional[Mapping[str, str]] = None,
    *,
    drivername: str = "postgresql+psycopg2",
) -> URL:
    """Assemble a connection URL from discrete settings; options become query args (e.g. sslmode)."""
    port: Optional[int] = None
    if ":" in host:
        host, raw_port = host.rsplit(":", 1)
        port = int(raw_port)
    return URL.create(
        drivername,
        username=user or None,
        password=password or None,
        host=host or None,
        port=port,
        database=database or None,
        query=dict(options or {}),
    )


def _enable_sqlite_foreign_keys(dbapi_conn: Any, _record: Any) -> None:
    cursor = dbapi_conn.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys = ON")
    finally:
        cursor.close()


def create_engine(url: Any, *, connect_args: Optional[Dict[str, Any]] = None) -> Engine:
    """
    Engine without a connection pool: every session() opens a fresh DBAPI connection
    and closes it when the session ends.
    """
    engine = sa.create_engine(url, poolclass=NullPool, connect_args=connect_args or {})
    if engine.dialect.name == "sqlite":
        sa.event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


@contextmanager
def session(engine: Engine) -> Generator[Connection, None, None]:
    """Yield a connection that is always closed on exit (success, error, or cancellation)."""
    conn = engine.connect()
    try:
        yield conn
    finally:
        conn.close()
