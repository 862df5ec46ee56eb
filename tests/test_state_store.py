"""Tests for the YAML state store."""

from dataclasses import replace
from pathlib import Path

import yaml

from tableops.lifecycle.state import TableState, TableStatus
from tableops.spec.model import AttributeDefinition, AttributeType, BillingMode, GlobalSecondaryIndex
from tableops.state.store import YamlStateStore

STATE = TableState(
    name="pantry-access",
    billing_mode=BillingMode.PROVISIONED,
    attributes=(AttributeDefinition("pantry_id", AttributeType.S), AttributeDefinition("user_id", AttributeType.S)),
    status=TableStatus.ACTIVE,
    provider_identifier="arn:aws:dynamodb:us-east-1:123:table/pantry-access",
    read_capacity=5,
    write_capacity=5,
    sort_key="user_id",
    tags={"team": "pantry"},
)


def test_read_missing_returns_none(tmp_path: Path) -> None:
    assert YamlStateStore(tmp_path).read("users") is None


def test_write_then_read(tmp_path: Path) -> None:
    store = YamlStateStore(tmp_path / "state")
    store.write(STATE)

    assert (tmp_path / "state" / "pantry-access.yaml").exists()
    assert store.read("pantry-access") == STATE


def test_written_file_is_plain_yaml(tmp_path: Path) -> None:
    YamlStateStore(tmp_path).write(STATE)
    data = yaml.safe_load((tmp_path / "pantry-access.yaml").read_text())
    assert data["billing_mode"] == "PROVISIONED"
    assert data["status"] == "ACTIVE"
    assert data["attributes"][0] == {"name": "pantry_id", "type": "S"}


def test_delete(tmp_path: Path) -> None:
    store = YamlStateStore(tmp_path)
    store.write(STATE)
    store.delete("pantry-access")
    assert store.read("pantry-access") is None
    store.delete("pantry-access")  # no error when already gone


def test_read_empty_file(tmp_path: Path) -> None:
    (tmp_path / "users.yaml").write_text("")
    assert YamlStateStore(tmp_path).read("users") is None


def test_indexes_survive_write_then_read(tmp_path: Path) -> None:
    indexed = replace(
        STATE,
        attributes=(*STATE.attributes, AttributeDefinition("access_level", AttributeType.S)),
        global_secondary_indexes=(
            GlobalSecondaryIndex("UserAccessIndex", "user_id", sort_key="pantry_id"),
            GlobalSecondaryIndex("AccessLevelIndex", "pantry_id", sort_key="access_level"),
        ),
    )
    store = YamlStateStore(tmp_path)
    store.write(indexed)
    assert store.read("pantry-access") == indexed


def test_document_index(tmp_path: Path) -> None:
    store = YamlStateStore(tmp_path / "state")
    doc = tmp_path / "table.yaml"
    assert store.managed_name(doc) is None

    store.record_document(doc, "users")
    store.record_document(tmp_path / "other.yaml", "pantries")
    assert store.managed_name(doc) == "users"
    assert YamlStateStore(tmp_path / "state").managed_name(str(doc)) == "users"

    store.forget_document(doc)
    assert store.managed_name(doc) is None
    assert store.managed_name(tmp_path / "other.yaml") == "pantries"


def test_document_index_does_not_shadow_table_state(tmp_path: Path) -> None:
    """A table named 'documents' and the index coexist."""
    store = YamlStateStore(tmp_path)
    store.record_document(tmp_path / "table.yaml", "documents")
    store.write(replace(STATE, name="documents"))
    read = store.read("documents")
    assert read is not None
    assert read.name == "documents"
    assert store.managed_name(tmp_path / "table.yaml") == "documents"
