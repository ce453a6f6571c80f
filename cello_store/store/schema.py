"""
Physical schemas for both backends.

Relational: projects / targets / tokens with ON DELETE CASCADE foreign keys,
so deleting a project row removes its children inside the same statement.
Key-value: one table keyed by string pk (HASH) and sk (RANGE).

create_schema / create_dynamodb_table provision local and test stores; production
schemas are owned by the deployment's migration tooling.
"""

from __future__ import annotations

import logging
from typing import Any

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

PROJECTS_TABLE = "projects"
TARGETS_TABLE = "targets"
TOKENS_TABLE = "tokens"

metadata = sa.MetaData()

projects = sa.Table(
    PROJECTS_TABLE,
    metadata,
    sa.Column("project", sa.String(80), primary_key=True),
    sa.Column("repository", sa.String(4096), nullable=False, server_default=""),
)

targets = sa.Table(
    TARGETS_TABLE,
    metadata,
    sa.Column("name", sa.String(80), nullable=False),
    sa.Column(
        "project",
        sa.String(80),
        sa.ForeignKey(f"{PROJECTS_TABLE}.project", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    ),
    sa.Column("properties", sa.JSON().with_variant(JSONB(), "postgresql")),
    sa.Column("type", sa.String(50), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    sa.PrimaryKeyConstraint("name", "project", name="targets_pkey"),
)

tokens = sa.Table(
    TOKENS_TABLE,
    metadata,
    sa.Column("token_id", sa.String(80), primary_key=True),
    sa.Column(
        "project",
        sa.String(80),
        sa.ForeignKey(f"{PROJECTS_TABLE}.project", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    ),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("expires_at", sa.DateTime(timezone=True)),
    sa.Index("idx_tokens_project_created", "project", "created_at"),
)


def create_schema(engine: Engine) -> None:
    """Create all tables if missing. Idempotent."""
    metadata.create_all(engine, checkfirst=True)
    logger.info("Relational schema ready on %s", engine.url.render_as_string(hide_password=True))


def create_dynamodb_table(client: Any, table_name: str) -> None:
    """Create the single pk/sk table (on-demand billing) and wait until it is active."""
    client.create_table(
        TableName=table_name,
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
        ],
        KeySchema=[
            {"AttributeName": "pk", "KeyType": "HASH"},
            {"AttributeName": "sk", "KeyType": "RANGE"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    client.get_waiter("table_exists").wait(TableName=table_name)
    logger.info("DynamoDB table %s created", table_name)
