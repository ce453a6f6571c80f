"""
Key-value backend: every entity in one DynamoDB table keyed by (pk, sk).

    pk = PROJECT#<project_id>
    sk = META               project metadata
    sk = TARGET#<name>      target
    sk = TOKEN#<token_id>   token

    pk = TOKENID#<token_id>, sk = META   claims token_id across all projects

There is no foreign key or cascade primitive, so both are replicated explicitly:
child writes are transactions that include a ConditionCheck on the project's META
item, and project delete enumerates the partition then removes everything in one
bounded all-or-nothing transaction. Token writes and deletes carry the token_id guard
item in the same transaction.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Generator, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..core.context import CallContext
from ..core.errors import CapacityError, ConflictError, NotFoundError, StoreError, TransportError
from ..core.types import Project, Target, Token
from ..timeutils import now_utc
from ..validation import ensure_project, ensure_target, ensure_token
from . import codec
from .backend import Store, order_targets, order_tokens

if TYPE_CHECKING:
    from ..config import StoreConfig

logger = logging.getLogger(__name__)

# TransactWriteItems hard limit per request.
MAX_TRANSACTION_ITEMS = 100

_CONDITION_FAILED = "ConditionalCheckFailedException"
_TX_CANCELLED = "TransactionCanceledException"
_REASON_CONDITION_FAILED = "ConditionalCheckFailed"


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def _cancellation_codes(exc: ClientError) -> List[Optional[str]]:
    """Per-item reason codes of a cancelled transaction, in request order. Empty if not reported."""
    reasons = exc.response.get("CancellationReasons") or []
    return [r.get("Code") if isinstance(r, dict) else None for r in reasons]


def _is_conditional(write: Dict[str, Any]) -> bool:
    """True if a TransactWriteItems entry carries its own ConditionExpression."""
    return any("ConditionExpression" in body for body in write.values())


@contextmanager
def _translate(op: str, identity: Optional[str]) -> Generator[None, None, None]:
    try:
        yield
    except StoreError:
        raise
    except ClientError as exc:
        code = _error_code(exc) or "ClientError"
        raise TransportError(f"DynamoDB request failed ({code})", op=op, identity=identity) from exc
    except BotoCoreError as exc:
        raise TransportError(f"DynamoDB transport failed ({type(exc).__name__})", op=op, identity=identity) from exc


class DynamoDBStore(Store):
    """Store backed by a single DynamoDB table. The client is created once and shared by all calls."""

    def __init__(
        self,
        client: Any,
        table_name: str,
        *,
        clock: Callable[[], datetime] = now_utc,
        check_remote_health: bool = False,
        max_transaction_items: int = MAX_TRANSACTION_ITEMS,
    ) -> None:
        self._client = client
        self._table = table_name
        self._clock = clock
        self._check_remote_health = check_remote_health
        self._max_tx_items = max(1, min(int(max_transaction_items), MAX_TRANSACTION_ITEMS))

    @classmethod
    def from_config(cls, config: "StoreConfig") -> "DynamoDBStore":
        ddb = config.dynamodb
        # Retries are the caller's policy; one attempt per request here.
        boto_config = BotoConfig(
            connect_timeout=ddb.connect_timeout_s,
            read_timeout=ddb.read_timeout_s,
            retries={"mode": "standard", "total_max_attempts": 1},
        )
        client = boto3.client(
            "dynamodb",
            region_name=ddb.region or None,
            endpoint_url=ddb.endpoint_url or None,
            config=boto_config,
        )
        return cls(client, ddb.table, check_remote_health=ddb.health_check)

    @property
    def table_name(self) -> str:
        return self._table

    # -- helpers ----------------------------------------------------------

    def _meta_check(self, project_id: str) -> Dict[str, Any]:
        return {
            "ConditionCheck": {
                "TableName": self._table,
                "Key": codec.key(codec.project_pk(project_id), codec.META_SK),
                "ConditionExpression": "attribute_exists(pk)",
            }
        }

    def _guard_delete(self, project_id: str, token_id: str) -> Dict[str, Any]:
        """Remove a token_id guard unless another project holds it. A missing guard is fine."""
        return {
            "Delete": {
                "TableName": self._table,
                "Key": codec.key(codec.token_guard_pk(token_id), codec.META_SK),
                "ConditionExpression": "attribute_not_exists(pk) OR #project = :project",
                "ExpressionAttributeNames": {"#project": "project"},
                "ExpressionAttributeValues": {":project": {"S": project_id}},
            }
        }

    def _get(self, ctx: CallContext, op: str, identity: str, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        ctx.check(op, identity)
        with _translate(op, identity):
            result = self._client.get_item(TableName=self._table, Key=codec.key(pk, sk), ConsistentRead=True)
        return result.get("Item")

    def _project_exists(self, ctx: CallContext, op: str, project_id: str) -> bool:
        return self._get(ctx, op, project_id, codec.project_pk(project_id), codec.META_SK) is not None

    def _query(
        self,
        ctx: CallContext,
        op: str,
        project_id: str,
        prefix: Optional[str] = None,
        *,
        keys_only: bool = False,
    ) -> List[Dict[str, Any]]:
        """All items in the project's partition, optionally restricted to a sort-key prefix. Follows pagination."""
        params: Dict[str, Any] = {
            "TableName": self._table,
            "ConsistentRead": True,
            "ExpressionAttributeValues": {":pk": {"S": codec.project_pk(project_id)}},
        }
        if prefix:
            params["KeyConditionExpression"] = "pk = :pk AND begins_with(sk, :prefix)"
            params["ExpressionAttributeValues"][":prefix"] = {"S": prefix}
        else:
            params["KeyConditionExpression"] = "pk = :pk"
        if keys_only:
            params["ProjectionExpression"] = "pk, sk"

        items: List[Dict[str, Any]] = []
        ctx.check(op, project_id)
        with _translate(op, project_id):
            for page in self._client.get_paginator("query").paginate(**params):
                items.extend(page.get("Items", []))
                # next page is another round trip
                ctx.check(op, project_id)
        return items

    def _transact_child_write(
        self, ctx: CallContext, op: str, identity: str, project_id: str, *writes: Dict[str, Any]
    ) -> bool:
        """
        Run [ConditionCheck(project META), *writes] as one transaction.
        Returns False if only the writes' own conditions failed; raises NotFoundError if the project is absent.
        """
        ctx.check(op, identity)
        with _translate(op, identity):
            try:
                self._client.transact_write_items(TransactItems=[self._meta_check(project_id), *writes])
            except ClientError as exc:
                if _error_code(exc) != _TX_CANCELLED:
                    raise
                codes = _cancellation_codes(exc)
                if len(codes) == 1 + len(writes):
                    if codes[0] == _REASON_CONDITION_FAILED:
                        raise NotFoundError("project not found", op=op, identity=project_id) from exc
                    if _REASON_CONDITION_FAILED in codes[1:]:
                        return False
                    raise
                # Reasons not reported: resolve by looking at the parent.
                if not self._project_exists(ctx, op, project_id):
                    raise NotFoundError("project not found", op=op, identity=project_id) from exc
                if not any(_is_conditional(w) for w in writes):
                    raise
                return False
        return True

    # -- projects ---------------------------------------------------------

    def create_project(self, ctx: CallContext, project: Project) -> None:
        op = "create_project"
        ensure_project(op, project)
        item = codec.project_to_item(project)
        ctx.check(op, project.project_id)
        with _translate(op, project.project_id):
            self._client.put_item(TableName=self._table, Item=item)
        logger.debug("Wrote project %s", project.project_id)

    def read_project(self, ctx: CallContext, project_id: str) -> Project:
        op = "read_project"
        item = self._get(ctx, op, project_id, codec.project_pk(project_id), codec.META_SK)
        if item is None:
            raise NotFoundError("project not found", op=op, identity=project_id)
        return codec.item_to_project(item)

    def delete_project(self, ctx: CallContext, project_id: str) -> None:
        op = "delete_project"
        items = self._query(ctx, op, project_id, keys_only=True)
        if not items:
            raise NotFoundError("project not found", op=op, identity=project_id)
        token_ids = []
        for item in items:
            kind, identity = codec.parse_sort_key(item["sk"]["S"])
            if kind == codec.KIND_TOKEN:
                token_ids.append(identity)
        total = len(items) + len(token_ids)
        if total > self._max_tx_items:
            logger.warning(
                "Refusing cascading delete of %s: %d items exceeds transaction limit %d",
                project_id,
                total,
                self._max_tx_items,
            )
            raise CapacityError(
                f"{total} items exceed the {self._max_tx_items}-item transaction limit",
                op=op,
                identity=project_id,
            )

        transact_items = [
            {
                "Delete": {
                    "TableName": self._table,
                    "Key": {"pk": item["pk"], "sk": item["sk"]},
                    "ConditionExpression": "attribute_exists(sk)",
                }
            }
            for item in items
        ]
        transact_items.extend(self._guard_delete(project_id, token_id) for token_id in token_ids)
        ctx.check(op, project_id)
        with _translate(op, project_id):
            try:
                self._client.transact_write_items(TransactItems=transact_items)
            except ClientError as exc:
                if _error_code(exc) == _TX_CANCELLED and _REASON_CONDITION_FAILED in _cancellation_codes(exc):
                    raise ConflictError("project changed during delete; nothing was removed", op=op, identity=project_id) from exc
                raise
        logger.debug("Deleted project %s (%d items)", project_id, total)

    # -- targets ----------------------------------------------------------

    def _target_item(self, project_id: str, target: Target) -> Dict[str, Any]:
        now = self._clock()
        return codec.target_to_item(project_id, target, created_at=now, updated_at=now)

    def create_target(self, ctx: CallContext, project_id: str, target: Target) -> None:
        op = "create_target"
        ensure_target(op, project_id, target)
        identity = f"{project_id}/{target.name}"
        put = {
            "Put": {
                "TableName": self._table,
                "Item": self._target_item(project_id, target),
                "ConditionExpression": "attribute_not_exists(sk)",
            }
        }
        if not self._transact_child_write(ctx, op, identity, project_id, put):
            raise ConflictError("target already exists", op=op, identity=identity)

    def create_if_missing_target(self, ctx: CallContext, project_id: str, target: Target) -> bool:
        op = "create_if_missing_target"
        ensure_target(op, project_id, target)
        identity = f"{project_id}/{target.name}"
        put = {
            "Put": {
                "TableName": self._table,
                "Item": self._target_item(project_id, target),
                "ConditionExpression": "attribute_not_exists(sk)",
            }
        }
        written = self._transact_child_write(ctx, op, identity, project_id, put)
        logger.debug("create_if_missing %s written=%s", identity, written)
        return written

    def upsert_target(self, ctx: CallContext, project_id: str, target: Target) -> None:
        op = "upsert_target"
        ensure_target(op, project_id, target)
        identity = f"{project_id}/{target.name}"
        values = codec.deserialize(self._target_item(project_id, target))
        update = {
            "Update": {
                "TableName": self._table,
                "Key": codec.key(values["pk"], values["sk"]),
                "UpdateExpression": (
                    "SET #name = if_not_exists(#name, :name), #type = if_not_exists(#type, :type), "
                    "properties = :properties, updated_at = :now, created_at = if_not_exists(created_at, :now)"
                ),
                "ExpressionAttributeNames": {"#name": "name", "#type": "type"},
                "ExpressionAttributeValues": codec.serialize(
                    {
                        ":name": values["name"],
                        ":type": values["type"],
                        ":properties": values["properties"],
                        ":now": values["updated_at"],
                    }
                ),
            }
        }
        self._transact_child_write(ctx, op, identity, project_id, update)

    def update_target(self, ctx: CallContext, project_id: str, target: Target) -> None:
        op = "update_target"
        ensure_target(op, project_id, target)
        identity = f"{project_id}/{target.name}"
        values = codec.deserialize(self._target_item(project_id, target))
        ctx.check(op, identity)
        with _translate(op, identity):
            try:
                self._client.update_item(
                    TableName=self._table,
                    Key=codec.key(values["pk"], values["sk"]),
                    UpdateExpression="SET properties = :properties, updated_at = :now",
                    ConditionExpression="attribute_exists(sk)",
                    ExpressionAttributeValues=codec.serialize(
                        {":properties": values["properties"], ":now": values["updated_at"]}
                    ),
                )
            except ClientError as exc:
                if _error_code(exc) == _CONDITION_FAILED:
                    raise NotFoundError("target not found", op=op, identity=identity) from exc
                raise

    def _delete_child(self, ctx: CallContext, op: str, identity: str, what: str, pk: str, sk: str) -> None:
        ctx.check(op, identity)
        with _translate(op, identity):
            try:
                self._client.delete_item(
                    TableName=self._table,
                    Key=codec.key(pk, sk),
                    ConditionExpression="attribute_exists(sk)",
                )
            except ClientError as exc:
                if _error_code(exc) == _CONDITION_FAILED:
                    raise NotFoundError(f"{what} not found", op=op, identity=identity) from exc
                raise

    def delete_target(self, ctx: CallContext, project_id: str, name: str) -> None:
        self._delete_child(
            ctx, "delete_target", f"{project_id}/{name}", "target", codec.project_pk(project_id), codec.target_sk(name)
        )

    def read_target(self, ctx: CallContext, project_id: str, name: str) -> Target:
        op = "read_target"
        identity = f"{project_id}/{name}"
        item = self._get(ctx, op, identity, codec.project_pk(project_id), codec.target_sk(name))
        if item is None:
            raise NotFoundError("target not found", op=op, identity=identity)
        return codec.item_to_target(item)

    def list_targets(self, ctx: CallContext, project_id: str) -> List[Target]:
        items = self._query(ctx, "list_targets", project_id, codec.TARGET_PREFIX)
        return order_targets(codec.item_to_target(i) for i in items)

    # -- tokens -----------------------------------------------------------

    def create_token(self, ctx: CallContext, token: Token) -> None:
        op = "create_token"
        ensure_token(op, token)
        put = {
            "Put": {
                "TableName": self._table,
                "Item": codec.token_to_item(token),
                "ConditionExpression": "attribute_not_exists(sk)",
            }
        }
        # token_id is unique across projects, not only within this partition
        guard = {
            "Put": {
                "TableName": self._table,
                "Item": codec.token_guard_item(token),
                "ConditionExpression": "attribute_not_exists(pk)",
            }
        }
        if not self._transact_child_write(ctx, op, token.token_id, token.project_id, put, guard):
            raise ConflictError("token already exists", op=op, identity=token.token_id)

    def read_token(self, ctx: CallContext, project_id: str, token_id: str) -> Token:
        op = "read_token"
        item = self._get(ctx, op, token_id, codec.project_pk(project_id), codec.token_sk(token_id))
        if item is None:
            raise NotFoundError("token not found", op=op, identity=token_id)
        return codec.item_to_token(item)

    def delete_token(self, ctx: CallContext, project_id: str, token_id: str) -> None:
        op = "delete_token"
        delete = {
            "Delete": {
                "TableName": self._table,
                "Key": codec.key(codec.project_pk(project_id), codec.token_sk(token_id)),
                "ConditionExpression": "attribute_exists(sk)",
            }
        }
        ctx.check(op, token_id)
        with _translate(op, token_id):
            try:
                self._client.transact_write_items(TransactItems=[delete, self._guard_delete(project_id, token_id)])
            except ClientError as exc:
                if _error_code(exc) != _TX_CANCELLED:
                    raise
                codes = _cancellation_codes(exc)
                if codes and codes[0] == _REASON_CONDITION_FAILED:
                    raise NotFoundError("token not found", op=op, identity=token_id) from exc
                if not codes and self._get(ctx, op, token_id, codec.project_pk(project_id), codec.token_sk(token_id)) is None:
                    raise NotFoundError("token not found", op=op, identity=token_id) from exc
                if _REASON_CONDITION_FAILED in codes[1:]:
                    raise ConflictError("token id is held by another project", op=op, identity=token_id) from exc
                raise

    def list_tokens(self, ctx: CallContext, project_id: str) -> List[Token]:
        items = self._query(ctx, "list_tokens", project_id, codec.TOKEN_PREFIX)
        return order_tokens(codec.item_to_token(i) for i in items)

    # -- misc -------------------------------------------------------------

    def health(self, ctx: CallContext) -> None:
        # No-op by default: DescribeTable is a billed control-plane call.
        if not self._check_remote_health:
            return
        ctx.check("health")
        with _translate("health", self._table):
            self._client.describe_table(TableName=self._table)
