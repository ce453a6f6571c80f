"""
Relational backend: projects / targets / tokens tables through SQLAlchemy Core.

Each call opens its own session and releases it before returning. Writes run in a
single transaction; conditional writes use INSERT ... ON CONFLICT so create-if-missing
and upsert are one atomic statement. Cascading project delete is delegated to the
schema's ON DELETE CASCADE foreign keys.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Generator, List, Optional

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..core.context import CallContext
from ..core.errors import ConflictError, NotFoundError, StoreError, TransportError
from ..core.types import Project, Target, Token
from ..timeutils import now_utc
from ..validation import ensure_project, ensure_target, ensure_token
from . import codec
from .backend import Store, order_targets, order_tokens
from .schema import create_schema, projects, targets, tokens
from .sql_session import build_url, create_engine, session

if TYPE_CHECKING:
    from ..config import StoreConfig

logger = logging.getLogger(__name__)


@contextmanager
def _translate(op: str, identity: Optional[str]) -> Generator[None, None, None]:
    """Map driver exceptions to the store taxonomy; store errors pass through unchanged."""
    try:
        yield
    except StoreError:
        raise
    except IntegrityError as exc:
        raise ConflictError("integrity constraint violated", op=op, identity=identity) from exc
    except SQLAlchemyError as exc:
        raise TransportError(f"database call failed ({type(exc).__name__})", op=op, identity=identity) from exc


def _dialect_insert(engine: Engine, table: sa.Table) -> Any:
    name = engine.dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise ValueError(f"Unsupported SQL dialect {name!r}; expected postgresql or sqlite")
    return insert(table)


class SQLStore(Store):
    """Store backed by PostgreSQL (production) or SQLite (local/dev, tests)."""

    def __init__(self, engine: Engine, *, clock: Callable[[], datetime] = now_utc) -> None:
        self._engine = engine
        self._clock = clock

    @classmethod
    def from_url(cls, url: Any, *, create_tables: bool = False, **kwargs: Any) -> "SQLStore":
        with _translate("connect", None):
            engine = create_engine(url)
            if create_tables:
                create_schema(engine)
        return cls(engine, **kwargs)

    @classmethod
    def from_config(cls, config: "StoreConfig") -> "SQLStore":
        sql = config.sql
        url: Any = sql.url or build_url(sql.host, sql.database, sql.user, sql.password, sql.options)
        return cls.from_url(url, create_tables=sql.create_schema)

    @property
    def engine(self) -> Engine:
        return self._engine

    # -- helpers ----------------------------------------------------------

    @contextmanager
    def _tx(self, ctx: CallContext, op: str, identity: Optional[str]) -> Generator[Connection, None, None]:
        """Session + transaction. The context is re-checked before commit; failing it rolls back."""
        ctx.check(op, identity)
        with _translate(op, identity), session(self._engine) as conn:
            with conn.begin():
                yield conn
                ctx.check(op, identity)

    @contextmanager
    def _read(self, ctx: CallContext, op: str, identity: Optional[str]) -> Generator[Connection, None, None]:
        ctx.check(op, identity)
        with _translate(op, identity), session(self._engine) as conn:
            yield conn

    @staticmethod
    def _require_project(conn: Connection, op: str, project_id: str) -> None:
        found = conn.execute(sa.select(projects.c.project).where(projects.c.project == project_id)).first()
        if found is None:
            raise NotFoundError("project not found", op=op, identity=project_id)

    # -- projects ---------------------------------------------------------

    def create_project(self, ctx: CallContext, project: Project) -> None:
        op = "create_project"
        ensure_project(op, project)
        stmt = _dialect_insert(self._engine, projects).values(**codec.project_to_row(project))
        stmt = stmt.on_conflict_do_update(
            index_elements=[projects.c.project],
            set_={"repository": stmt.excluded.repository},
        )
        with self._tx(ctx, op, project.project_id) as conn:
            conn.execute(stmt)
        logger.debug("Wrote project %s", project.project_id)

    def read_project(self, ctx: CallContext, project_id: str) -> Project:
        op = "read_project"
        with self._read(ctx, op, project_id) as conn:
            row = conn.execute(sa.select(projects).where(projects.c.project == project_id)).mappings().first()
        if row is None:
            raise NotFoundError("project not found", op=op, identity=project_id)
        return codec.row_to_project(row)

    def delete_project(self, ctx: CallContext, project_id: str) -> None:
        op = "delete_project"
        with self._tx(ctx, op, project_id) as conn:
            result = conn.execute(sa.delete(projects).where(projects.c.project == project_id))
            if result.rowcount == 0:
                raise NotFoundError("project not found", op=op, identity=project_id)
        logger.debug("Deleted project %s with its targets and tokens", project_id)

    # -- targets ----------------------------------------------------------

    def create_target(self, ctx: CallContext, project_id: str, target: Target) -> None:
        op = "create_target"
        ensure_target(op, project_id, target)
        identity = f"{project_id}/{target.name}"
        now = self._clock()
        row = codec.target_to_row(project_id, target, created_at=now, updated_at=now)
        with self._tx(ctx, op, identity) as conn:
            self._require_project(conn, op, project_id)
            try:
                conn.execute(sa.insert(targets).values(**row))
            except IntegrityError as exc:
                raise ConflictError("target already exists", op=op, identity=identity) from exc

    def create_if_missing_target(self, ctx: CallContext, project_id: str, target: Target) -> bool:
        op = "create_if_missing_target"
        ensure_target(op, project_id, target)
        identity = f"{project_id}/{target.name}"
        now = self._clock()
        stmt = _dialect_insert(self._engine, targets).values(
            **codec.target_to_row(project_id, target, created_at=now, updated_at=now)
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=[targets.c.name, targets.c.project])
        with self._tx(ctx, op, identity) as conn:
            self._require_project(conn, op, project_id)
            written = conn.execute(stmt).rowcount == 1
        logger.debug("create_if_missing %s written=%s", identity, written)
        return written

    def upsert_target(self, ctx: CallContext, project_id: str, target: Target) -> None:
        op = "upsert_target"
        ensure_target(op, project_id, target)
        identity = f"{project_id}/{target.name}"
        now = self._clock()
        stmt = _dialect_insert(self._engine, targets).values(
            **codec.target_to_row(project_id, target, created_at=now, updated_at=now)
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[targets.c.name, targets.c.project],
            set_={"properties": stmt.excluded.properties, "updated_at": stmt.excluded.updated_at},
        )
        with self._tx(ctx, op, identity) as conn:
            self._require_project(conn, op, project_id)
            conn.execute(stmt)

    def update_target(self, ctx: CallContext, project_id: str, target: Target) -> None:
        op = "update_target"
        ensure_target(op, project_id, target)
        identity = f"{project_id}/{target.name}"
        stmt = (
            sa.update(targets)
            .where(targets.c.project == project_id, targets.c.name == target.name)
            .values(
                properties=codec.properties_to_document(target.properties),
                updated_at=codec.to_utc(self._clock()),
            )
        )
        with self._tx(ctx, op, identity) as conn:
            if conn.execute(stmt).rowcount == 0:
                raise NotFoundError("target not found", op=op, identity=identity)

    def delete_target(self, ctx: CallContext, project_id: str, name: str) -> None:
        op = "delete_target"
        identity = f"{project_id}/{name}"
        stmt = sa.delete(targets).where(targets.c.project == project_id, targets.c.name == name)
        with self._tx(ctx, op, identity) as conn:
            if conn.execute(stmt).rowcount == 0:
                raise NotFoundError("target not found", op=op, identity=identity)

    def read_target(self, ctx: CallContext, project_id: str, name: str) -> Target:
        op = "read_target"
        identity = f"{project_id}/{name}"
        stmt = sa.select(targets).where(targets.c.project == project_id, targets.c.name == name)
        with self._read(ctx, op, identity) as conn:
            row = conn.execute(stmt).mappings().first()
        if row is None:
            raise NotFoundError("target not found", op=op, identity=identity)
        return codec.row_to_target(row)

    def list_targets(self, ctx: CallContext, project_id: str) -> List[Target]:
        op = "list_targets"
        stmt = sa.select(targets).where(targets.c.project == project_id)
        with self._read(ctx, op, project_id) as conn:
            rows = conn.execute(stmt).mappings().all()
        return order_targets(codec.row_to_target(r) for r in rows)

    # -- tokens -----------------------------------------------------------

    def create_token(self, ctx: CallContext, token: Token) -> None:
        op = "create_token"
        ensure_token(op, token)
        with self._tx(ctx, op, token.token_id) as conn:
            self._require_project(conn, op, token.project_id)
            try:
                conn.execute(sa.insert(tokens).values(**codec.token_to_row(token)))
            except IntegrityError as exc:
                raise ConflictError("token already exists", op=op, identity=token.token_id) from exc

    def read_token(self, ctx: CallContext, project_id: str, token_id: str) -> Token:
        op = "read_token"
        stmt = sa.select(tokens).where(tokens.c.token_id == token_id, tokens.c.project == project_id)
        with self._read(ctx, op, token_id) as conn:
            row = conn.execute(stmt).mappings().first()
        if row is None:
            raise NotFoundError("token not found", op=op, identity=token_id)
        return codec.row_to_token(row)

    def delete_token(self, ctx: CallContext, project_id: str, token_id: str) -> None:
        op = "delete_token"
        stmt = sa.delete(tokens).where(tokens.c.token_id == token_id, tokens.c.project == project_id)
        with self._tx(ctx, op, token_id) as conn:
            if conn.execute(stmt).rowcount == 0:
                raise NotFoundError("token not found", op=op, identity=token_id)

    def list_tokens(self, ctx: CallContext, project_id: str) -> List[Token]:
        op = "list_tokens"
        # order_tokens also breaks created_at ties by token_id, same as the key-value backend.
        stmt = sa.select(tokens).where(tokens.c.project == project_id).order_by(tokens.c.created_at.desc())
        with self._read(ctx, op, project_id) as conn:
            rows = conn.execute(stmt).mappings().all()
        return order_tokens(codec.row_to_token(r) for r in rows)

    # -- misc -------------------------------------------------------------

    def health(self, ctx: CallContext) -> None:
        with self._read(ctx, "health", None) as conn:
            conn.execute(sa.text("SELECT 1"))
