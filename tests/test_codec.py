"""Codec: row/item shapes, composite keys, timestamp normalization, and marshal failures."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from cello_store.core.errors import MarshalError
from cello_store.core.types import Project, Target, TargetProperties, Token
from cello_store.store import codec

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
PROPS = TargetProperties(
    role_arn="arn:aws:iam::123456789012:role/infra",
    policy_arns=("arn:aws:iam::aws:policy/ReadOnlyAccess",),
    policy_document='{"Version": "2012-10-17"}',
)


def _target(name: str = "infra_role") -> Target:
    return Target(name=name, type="aws_account", properties=PROPS)


def test_to_utc_naive_is_taken_as_utc():
    naive = datetime(2026, 1, 1, 12, 0, 0)
    assert codec.to_utc(naive) == T0
    assert codec.to_utc(naive).tzinfo is timezone.utc


def test_to_utc_converts_offset():
    plus_two = T0.astimezone(timezone(timedelta(hours=2)))
    assert codec.to_utc(plus_two) == T0
    assert codec.to_utc(plus_two).utcoffset() == timedelta(0)


def test_format_and_parse_timestamp():
    assert codec.format_timestamp(T0) == "2026-01-01T12:00:00Z"
    assert codec.parse_timestamp("2026-01-01T12:00:00Z") == T0
    assert codec.parse_timestamp("") is None
    assert codec.format_timestamp(None) == ""


def test_parse_timestamp_rejects_garbage():
    with pytest.raises(MarshalError):
        codec.parse_timestamp("yesterday")


def test_properties_document_accepts_json_string_and_mapping():
    doc = codec.properties_to_document(PROPS)
    assert codec.properties_from_document(doc) == PROPS
    assert codec.properties_from_document(json.dumps(doc)) == PROPS


@pytest.mark.parametrize("bad", ["{not json", "[1, 2]", '{"policy_arns": "arn:aws:s3:::x"}'])
def test_properties_document_malformed(bad):
    with pytest.raises(MarshalError):
        codec.properties_from_document(bad)


def test_target_row_shape():
    row = codec.target_to_row("demo", _target(), created_at=T0, updated_at=T0)
    assert row["project"] == "demo"
    assert row["name"] == "infra_role"
    assert row["properties"]["policy_arns"] == ["arn:aws:iam::aws:policy/ReadOnlyAccess"]
    back = codec.row_to_target(row)
    assert back.project_id == "demo"
    assert back.properties == PROPS
    assert back.created_at == T0


def test_row_missing_column_is_marshal_error():
    with pytest.raises(MarshalError):
        codec.row_to_target({"name": "infra_role", "project": "demo"})
    with pytest.raises(MarshalError):
        codec.row_to_project({"repository": "x"})


def test_token_row_keeps_project():
    token = Token("tok_1", "demo", T0, T0 + timedelta(days=1))
    assert codec.row_to_token(codec.token_to_row(token)) == token


class TestKeys:
    def test_key_layout(self):
        assert codec.project_pk("demo") == "PROJECT#demo"
        assert codec.target_sk("infra_role") == "TARGET#infra_role"
        assert codec.token_sk("tok_1") == "TOKEN#tok_1"
        assert codec.key("PROJECT#demo", "META") == {"pk": {"S": "PROJECT#demo"}, "sk": {"S": "META"}}

    def test_parse_sort_key(self):
        assert codec.parse_sort_key("META") == (codec.KIND_PROJECT, "")
        assert codec.parse_sort_key("TARGET#infra_role") == (codec.KIND_TARGET, "infra_role")
        assert codec.parse_sort_key("TOKEN#a#b") == (codec.KIND_TOKEN, "a#b")

    @pytest.mark.parametrize("sk", ["TARGET#", "OTHER#x", "", "meta"])
    def test_parse_sort_key_malformed(self, sk):
        with pytest.raises(MarshalError):
            codec.parse_sort_key(sk)

    @pytest.mark.parametrize("pk", ["PROJECT#", "demo", ""])
    def test_parse_partition_key_malformed(self, pk):
        with pytest.raises(MarshalError):
            codec.parse_partition_key(pk)


class TestItems:
    def test_project_item(self):
        item = codec.project_to_item(Project("demo", "github.com/acme/demo"))
        assert item == {
            "pk": {"S": "PROJECT#demo"},
            "sk": {"S": "META"},
            "repository": {"S": "github.com/acme/demo"},
        }
        assert codec.item_to_project(item) == Project("demo", "github.com/acme/demo")

    def test_target_item_properties_are_a_json_string(self):
        item = codec.target_to_item("demo", _target(), created_at=T0, updated_at=T0)
        assert item["sk"] == {"S": "TARGET#infra_role"}
        assert json.loads(item["properties"]["S"])["role_arn"] == PROPS.role_arn
        assert item["created_at"] == {"S": "2026-01-01T12:00:00Z"}
        back = codec.item_to_target(item)
        assert (back.name, back.project_id, back.properties) == ("infra_role", "demo", PROPS)

    def test_token_item_has_no_project_attribute(self):
        token = Token("tok_1", "demo", T0, None)
        item = codec.token_to_item(token)
        assert "project" not in item
        assert codec.item_to_token(item) == token

    def test_item_kind_mismatch(self):
        item = codec.project_to_item(Project("demo"))
        with pytest.raises(MarshalError):
            codec.item_to_target(item)
        with pytest.raises(MarshalError):
            codec.item_to_token(item)

    def test_target_item_without_type(self):
        item = codec.target_to_item("demo", _target(), created_at=T0, updated_at=T0)
        del item["type"]
        with pytest.raises(MarshalError):
            codec.item_to_target(item)

    def test_deserialize_rejects_unknown_type_descriptor(self):
        with pytest.raises(MarshalError):
            codec.deserialize({"pk": {"ZZ": "x"}})
