"""
Entity codec: maps entity values to/from each backend's physical shape.

Relational rows are plain dicts keyed by column name. Key-value items are
DynamoDB attribute-value maps built with boto3's TypeSerializer. Properties are
stored as one JSON document in both backends; timestamps are datetimes in rows
and ISO-8601 UTC strings in items.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

from ..core.errors import MarshalError
from ..core.types import Project, Target, TargetProperties, Token
from ..timeutils import ensure_utc, parse_iso_utc

PROJECT_PREFIX = "PROJECT#"
META_SK = "META"
TARGET_PREFIX = "TARGET#"
TOKEN_PREFIX = "TOKEN#"
# token_id uniqueness guard, one partition per token id
TOKEN_ID_PREFIX = "TOKENID#"

KIND_PROJECT = "project"
KIND_TARGET = "target"
KIND_TOKEN = "token"

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to aware UTC. Naive values (SQLite returns these) are taken as UTC."""
    if value is None:
        return None
    if not isinstance(value, datetime):
        raise MarshalError(f"expected datetime, got {type(value).__name__}")
    return ensure_utc(value)


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return to_utc(value).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    try:
        return parse_iso_utc(str(value))
    except ValueError as exc:
        raise MarshalError(f"invalid timestamp {value!r}") from exc


# ---------------------------------------------------------------------------
# Properties document
# ---------------------------------------------------------------------------


def properties_to_document(properties: TargetProperties) -> Dict[str, Any]:
    return {
        "role_arn": properties.role_arn,
        "policy_arns": list(properties.policy_arns),
        "policy_document": properties.policy_document,
    }


def properties_from_document(doc: Any) -> TargetProperties:
    if isinstance(doc, (str, bytes)):
        try:
            doc = json.loads(doc)
        except ValueError as exc:
            raise MarshalError("properties is not valid JSON") from exc
    if doc is None:
        doc = {}
    if not isinstance(doc, Mapping):
        raise MarshalError(f"properties must be an object, got {type(doc).__name__}")
    arns = doc.get("policy_arns") or []
    if not isinstance(arns, list):
        raise MarshalError("properties.policy_arns must be a list")
    return TargetProperties(
        role_arn=str(doc.get("role_arn") or ""),
        policy_arns=tuple(str(a) for a in arns),
        policy_document=str(doc.get("policy_document") or ""),
    )


# ---------------------------------------------------------------------------
# Relational rows
# ---------------------------------------------------------------------------


def _require(row: Mapping[str, Any], column: str, kind: str) -> Any:
    if column not in row or row[column] is None:
        raise MarshalError(f"{kind} row is missing column {column!r}")
    return row[column]


def project_to_row(project: Project) -> Dict[str, Any]:
    return {"project": project.project_id, "repository": project.repository}


def row_to_project(row: Mapping[str, Any]) -> Project:
    return Project(
        project_id=str(_require(row, "project", KIND_PROJECT)),
        repository=str(row.get("repository") or ""),
    )


def target_to_row(project_id: str, target: Target, *, created_at: datetime, updated_at: datetime) -> Dict[str, Any]:
    return {
        "name": target.name,
        "project": project_id,
        "type": target.type,
        "properties": properties_to_document(target.properties),
        "created_at": to_utc(created_at),
        "updated_at": to_utc(updated_at),
    }


def row_to_target(row: Mapping[str, Any]) -> Target:
    return Target(
        name=str(_require(row, "name", KIND_TARGET)),
        project_id=str(_require(row, "project", KIND_TARGET)),
        type=str(_require(row, "type", KIND_TARGET)),
        properties=properties_from_document(row.get("properties")),
        created_at=parse_timestamp(row.get("created_at")),
        updated_at=parse_timestamp(row.get("updated_at")),
    )


def token_to_row(token: Token) -> Dict[str, Any]:
    return {
        "token_id": token.token_id,
        "project": token.project_id,
        "created_at": to_utc(token.created_at),
        "expires_at": to_utc(token.expires_at),
    }


def row_to_token(row: Mapping[str, Any]) -> Token:
    return Token(
        token_id=str(_require(row, "token_id", KIND_TOKEN)),
        project_id=str(_require(row, "project", KIND_TOKEN)),
        created_at=parse_timestamp(row.get("created_at")),
        expires_at=parse_timestamp(row.get("expires_at")),
    )


# ---------------------------------------------------------------------------
# Key-value composite keys
# ---------------------------------------------------------------------------


def project_pk(project_id: str) -> str:
    return f"{PROJECT_PREFIX}{project_id}"


def target_sk(name: str) -> str:
    return f"{TARGET_PREFIX}{name}"


def token_sk(token_id: str) -> str:
    return f"{TOKEN_PREFIX}{token_id}"


def token_guard_pk(token_id: str) -> str:
    return f"{TOKEN_ID_PREFIX}{token_id}"


def parse_partition_key(pk: str) -> str:
    if not isinstance(pk, str) or not pk.startswith(PROJECT_PREFIX) or len(pk) == len(PROJECT_PREFIX):
        raise MarshalError(f"malformed partition key {pk!r}")
    return pk[len(PROJECT_PREFIX):]


def parse_sort_key(sk: str) -> Tuple[str, str]:
    """Return (kind, identity); identity is empty for the project's META item."""
    if sk == META_SK:
        return KIND_PROJECT, ""
    for prefix, kind in ((TARGET_PREFIX, KIND_TARGET), (TOKEN_PREFIX, KIND_TOKEN)):
        if isinstance(sk, str) and sk.startswith(prefix) and len(sk) > len(prefix):
            return kind, sk[len(prefix):]
    raise MarshalError(f"malformed sort key {sk!r}")


def key(pk: str, sk: str) -> Dict[str, Dict[str, str]]:
    return {"pk": {"S": pk}, "sk": {"S": sk}}


# ---------------------------------------------------------------------------
# Key-value items
# ---------------------------------------------------------------------------


def serialize(values: Mapping[str, Any]) -> Dict[str, Any]:
    try:
        return {k: _serializer.serialize(v) for k, v in values.items()}
    except (TypeError, ValueError) as exc:
        raise MarshalError(f"cannot serialize item: {exc}") from exc


def deserialize(item: Mapping[str, Any]) -> Dict[str, Any]:
    try:
        return {k: _deserializer.deserialize(v) for k, v in item.items()}
    except (TypeError, ValueError, KeyError) as exc:
        raise MarshalError(f"cannot deserialize item: {exc}") from exc


def project_to_item(project: Project) -> Dict[str, Any]:
    return serialize(
        {
            "pk": project_pk(project.project_id),
            "sk": META_SK,
            "repository": project.repository,
        }
    )


def item_to_project(item: Mapping[str, Any]) -> Project:
    values = deserialize(item)
    kind, _ = parse_sort_key(values.get("sk", ""))
    if kind != KIND_PROJECT:
        raise MarshalError(f"item is a {kind}, not a project")
    return Project(
        project_id=parse_partition_key(values.get("pk", "")),
        repository=str(values.get("repository") or ""),
    )


def target_to_item(project_id: str, target: Target, *, created_at: datetime, updated_at: datetime) -> Dict[str, Any]:
    return serialize(
        {
            "pk": project_pk(project_id),
            "sk": target_sk(target.name),
            "name": target.name,
            "type": target.type,
            "properties": json.dumps(properties_to_document(target.properties), sort_keys=True),
            "created_at": format_timestamp(created_at),
            "updated_at": format_timestamp(updated_at),
        }
    )


def item_to_target(item: Mapping[str, Any]) -> Target:
    values = deserialize(item)
    kind, name = parse_sort_key(values.get("sk", ""))
    if kind != KIND_TARGET:
        raise MarshalError(f"item is a {kind}, not a target")
    if "type" not in values:
        raise MarshalError(f"target item {name!r} is missing attribute 'type'")
    return Target(
        name=name,
        project_id=parse_partition_key(values.get("pk", "")),
        type=str(values["type"]),
        properties=properties_from_document(values.get("properties")),
        created_at=parse_timestamp(values.get("created_at")),
        updated_at=parse_timestamp(values.get("updated_at")),
    )


def token_to_item(token: Token) -> Dict[str, Any]:
    # project_id lives in pk only
    return serialize(
        {
            "pk": project_pk(token.project_id),
            "sk": token_sk(token.token_id),
            "token_id": token.token_id,
            "created_at": format_timestamp(token.created_at),
            "expires_at": format_timestamp(token.expires_at),
        }
    )


def item_to_token(item: Mapping[str, Any]) -> Token:
    values = deserialize(item)
    kind, token_id = parse_sort_key(values.get("sk", ""))
    if kind != KIND_TOKEN:
        raise MarshalError(f"item is a {kind}, not a token")
    return Token(
        token_id=token_id,
        project_id=parse_partition_key(values.get("pk", "")),
        created_at=parse_timestamp(values.get("created_at")),
        expires_at=parse_timestamp(values.get("expires_at")),
    )


def token_guard_item(token: Token) -> Dict[str, Any]:
    """Claims token_id table-wide; records the owning project so a cascade only removes its own guards."""
    return serialize(
        {
            "pk": token_guard_pk(token.token_id),
            "sk": META_SK,
            "project": token.project_id,
        }
    )
