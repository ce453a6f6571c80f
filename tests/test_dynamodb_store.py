"""
Key-value backend specifics (moto): physical key layout, parent checks inside
transactions, bounded cascading delete, health behavior and error translation.
"""

from __future__ import annotations

import boto3
import pytest
from botocore.exceptions import ClientError

from cello_store.core.errors import CapacityError, ConflictError, NotFoundError, TransportError
from cello_store.core.types import Project, Target, TargetProperties, Token
from cello_store.store.dynamodb_backend import DynamoDBStore
from tests.fakes import FAKE_START, CancelOnCheck

ROLE = "arn:aws:iam::123456789012:role/infra"
TEST_TABLE = "cello-test"


def _target(name: str = "infra_role") -> Target:
    return Target(name=name, type="aws_account", properties=TargetProperties(role_arn=ROLE))


def _partition(client, project_id: str):
    resp = client.query(
        TableName=TEST_TABLE,
        KeyConditionExpression="pk = :pk",
        ExpressionAttributeValues={":pk": {"S": f"PROJECT#{project_id}"}},
    )
    return resp["Items"]


def _sort_keys(client, project_id: str):
    return sorted(i["sk"]["S"] for i in _partition(client, project_id))


class TestLayout:
    def test_one_partition_per_project(self, dynamodb_store, dynamodb_client, ctx):
        dynamodb_store.create_project(ctx, Project("demo", "github.com/acme/demo"))
        dynamodb_store.create_target(ctx, "demo", _target())
        dynamodb_store.create_token(ctx, Token("tok_1", "demo", FAKE_START))
        assert _sort_keys(dynamodb_client, "demo") == ["META", "TARGET#infra_role", "TOKEN#tok_1"]

    def test_target_item_attributes(self, dynamodb_store, dynamodb_client, ctx):
        dynamodb_store.create_project(ctx, Project("demo"))
        dynamodb_store.create_target(ctx, "demo", _target())
        item = dynamodb_client.get_item(
            TableName=TEST_TABLE, Key={"pk": {"S": "PROJECT#demo"}, "sk": {"S": "TARGET#infra_role"}}
        )["Item"]
        assert item["type"] == {"S": "aws_account"}
        assert item["created_at"] == {"S": "2026-01-01T00:00:00Z"}
        assert ROLE in item["properties"]["S"]


class TestParentChecks:
    @pytest.mark.parametrize("op", ["create_target", "create_if_missing_target", "upsert_target"])
    def test_target_write_without_project(self, dynamodb_store, dynamodb_client, ctx, op):
        with pytest.raises(NotFoundError):
            getattr(dynamodb_store, op)(ctx, "ghost", _target())
        assert _partition(dynamodb_client, "ghost") == []

    def test_token_write_without_project(self, dynamodb_store, dynamodb_client, ctx):
        with pytest.raises(NotFoundError):
            dynamodb_store.create_token(ctx, Token("tok_1", "ghost", FAKE_START))
        assert _partition(dynamodb_client, "ghost") == []

    def test_create_if_missing_reports_existing(self, dynamodb_store, ctx):
        dynamodb_store.create_project(ctx, Project("demo"))
        assert dynamodb_store.create_if_missing_target(ctx, "demo", _target()) is True
        assert dynamodb_store.create_if_missing_target(ctx, "demo", _target()) is False


class TestCascadingDelete:
    def test_removes_whole_partition(self, dynamodb_store, dynamodb_client, ctx):
        dynamodb_store.create_project(ctx, Project("demo"))
        for i in range(3):
            dynamodb_store.create_target(ctx, "demo", _target(f"target_{i}"))
            dynamodb_store.create_token(ctx, Token(f"tok_{i}", "demo", FAKE_START))
        dynamodb_store.delete_project(ctx, "demo")
        assert _partition(dynamodb_client, "demo") == []

    def test_over_limit_refuses_and_removes_nothing(self, dynamodb_client, clock, ctx):
        store = DynamoDBStore(dynamodb_client, TEST_TABLE, clock=clock, max_transaction_items=3)
        store.create_project(ctx, Project("demo"))
        for i in range(3):
            store.create_target(ctx, "demo", _target(f"target_{i}"))
        with pytest.raises(CapacityError) as info:
            store.delete_project(ctx, "demo")
        assert "4 items" in str(info.value)
        assert len(_partition(dynamodb_client, "demo")) == 4

    def test_orphaned_children_are_removed(self, dynamodb_store, dynamodb_client, ctx):
        dynamodb_client.put_item(
            TableName=TEST_TABLE,
            Item={"pk": {"S": "PROJECT#stale"}, "sk": {"S": "TOKEN#tok_9"}, "token_id": {"S": "tok_9"}},
        )
        dynamodb_store.delete_project(ctx, "stale")
        assert _partition(dynamodb_client, "stale") == []

    def test_cancelled_between_enumerate_and_delete(self, dynamodb_store, dynamodb_client, ctx):
        dynamodb_store.create_project(ctx, Project("demo"))
        dynamodb_store.create_target(ctx, "demo", _target())
        # checks: before the query, after its only page, before the transaction
        with pytest.raises(TransportError):
            dynamodb_store.delete_project(CancelOnCheck(3), "demo")
        assert len(_partition(dynamodb_client, "demo")) == 2


class TestHealth:
    def test_noop_without_flag_makes_no_request(self, aws_env, ctx):
        client = boto3.client("dynamodb", region_name="us-east-1", endpoint_url="http://127.0.0.1:9")
        DynamoDBStore(client, "unreachable").health(ctx)

    def test_describe_table_when_enabled(self, dynamodb_client, ctx):
        DynamoDBStore(dynamodb_client, TEST_TABLE, check_remote_health=True).health(ctx)

    def test_missing_table_is_transport_error(self, dynamodb_client, ctx):
        store = DynamoDBStore(dynamodb_client, "no-such-table", check_remote_health=True)
        with pytest.raises(TransportError) as info:
            store.health(ctx)
        assert isinstance(info.value.__cause__, ClientError)
        assert "ResourceNotFoundException" in str(info.value)


def test_conflict_on_duplicate_token(dynamodb_store, ctx):
    dynamodb_store.create_project(ctx, Project("demo"))
    dynamodb_store.create_token(ctx, Token("tok_1", "demo", FAKE_START))
    with pytest.raises(ConflictError):
        dynamodb_store.create_token(ctx, Token("tok_1", "demo", FAKE_START))


def test_missing_table_on_read_is_transport_error(dynamodb_client, ctx):
    store = DynamoDBStore(dynamodb_client, "no-such-table")
    with pytest.raises(TransportError):
        store.read_project(ctx, "demo")


class _CanceledWithoutReasons:
    """Client whose transactions are canceled with no per-item reasons attached."""

    def __init__(self, client):
        self._client = client

    def __getattr__(self, name):
        return getattr(self._client, name)

    def transact_write_items(self, **kwargs):
        error = {"Error": {"Code": "TransactionCanceledException", "Message": "canceled"}}
        raise ClientError(error, "TransactWriteItems")


class TestTokenIdGuard:
    def _guard(self, client, token_id: str):
        return client.get_item(
            TableName=TEST_TABLE, Key={"pk": {"S": f"TOKENID#{token_id}"}, "sk": {"S": "META"}}
        ).get("Item")

    def test_create_claims_token_id(self, dynamodb_store, dynamodb_client, ctx):
        dynamodb_store.create_project(ctx, Project("demo"))
        dynamodb_store.create_token(ctx, Token("tok_1", "demo", FAKE_START))
        assert self._guard(dynamodb_client, "tok_1")["project"] == {"S": "demo"}

    def test_delete_token_releases_claim(self, dynamodb_store, dynamodb_client, ctx):
        dynamodb_store.create_project(ctx, Project("demo"))
        dynamodb_store.create_token(ctx, Token("tok_1", "demo", FAKE_START))
        dynamodb_store.delete_token(ctx, "demo", "tok_1")
        assert self._guard(dynamodb_client, "tok_1") is None

    def test_delete_project_releases_claims(self, dynamodb_store, dynamodb_client, ctx):
        dynamodb_store.create_project(ctx, Project("demo"))
        dynamodb_store.create_token(ctx, Token("tok_1", "demo", FAKE_START))
        dynamodb_store.create_token(ctx, Token("tok_2", "demo", FAKE_START))
        dynamodb_store.delete_project(ctx, "demo")
        assert self._guard(dynamodb_client, "tok_1") is None
        assert self._guard(dynamodb_client, "tok_2") is None

    def test_claims_count_toward_cascade_limit(self, dynamodb_client, clock, ctx):
        store = DynamoDBStore(dynamodb_client, TEST_TABLE, clock=clock, max_transaction_items=4)
        store.create_project(ctx, Project("demo"))
        store.create_token(ctx, Token("tok_1", "demo", FAKE_START))
        store.create_token(ctx, Token("tok_2", "demo", FAKE_START))
        with pytest.raises(CapacityError) as info:
            store.delete_project(ctx, "demo")
        assert "5 items" in str(info.value)
        assert self._guard(dynamodb_client, "tok_1") is not None

    def test_failed_create_leaves_no_claim(self, dynamodb_store, dynamodb_client, ctx):
        with pytest.raises(NotFoundError):
            dynamodb_store.create_token(ctx, Token("tok_1", "ghost", FAKE_START))
        assert self._guard(dynamodb_client, "tok_1") is None


class TestCanceledWithoutReasons:
    def test_upsert_is_not_reported_as_success(self, dynamodb_client, clock, ctx):
        DynamoDBStore(dynamodb_client, TEST_TABLE, clock=clock).create_project(ctx, Project("demo"))
        store = DynamoDBStore(_CanceledWithoutReasons(dynamodb_client), TEST_TABLE, clock=clock)
        with pytest.raises(TransportError):
            store.upsert_target(ctx, "demo", _target())

    def test_create_if_missing_reports_existing(self, dynamodb_client, clock, ctx):
        DynamoDBStore(dynamodb_client, TEST_TABLE, clock=clock).create_project(ctx, Project("demo"))
        store = DynamoDBStore(_CanceledWithoutReasons(dynamodb_client), TEST_TABLE, clock=clock)
        assert store.create_if_missing_target(ctx, "demo", _target()) is False

    def test_missing_project_is_not_found(self, dynamodb_client, clock, ctx):
        store = DynamoDBStore(_CanceledWithoutReasons(dynamodb_client), TEST_TABLE, clock=clock)
        with pytest.raises(NotFoundError):
            store.upsert_target(ctx, "ghost", _target())
