"""
Shared store fixtures: a SQLite-backed SQLStore on a temp file and a DynamoDBStore on moto.
`store` is parametrized over both so contract tests run against each backend.
"""

from __future__ import annotations

import boto3
import pytest
from moto import mock_aws

from cello_store.core.context import CallContext
from cello_store.store import set_store
from cello_store.store.dynamodb_backend import DynamoDBStore
from cello_store.store.schema import create_dynamodb_table
from cello_store.store.sql_backend import SQLStore
from tests.fakes import FakeClock

TEST_TABLE = "cello-test"


@pytest.fixture
def ctx() -> CallContext:
    return CallContext.background()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sql_store(tmp_path, clock) -> SQLStore:
    url = f"sqlite:///{tmp_path / 'store.sqlite'}"
    store = SQLStore.from_url(url, create_tables=True, clock=clock)
    yield store
    store.engine.dispose()


@pytest.fixture
def aws_env(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def dynamodb_client(aws_env):
    with mock_aws():
        client = boto3.client("dynamodb", region_name="us-east-1")
        create_dynamodb_table(client, TEST_TABLE)
        yield client


@pytest.fixture
def dynamodb_store(dynamodb_client, clock) -> DynamoDBStore:
    return DynamoDBStore(dynamodb_client, TEST_TABLE, clock=clock)


@pytest.fixture(params=["sql", "dynamodb"])
def store(request):
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture(autouse=True)
def _reset_process_store():
    yield
    set_store(None)
