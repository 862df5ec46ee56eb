"""Validate table documents and parse desired-state descriptions into TableSpec."""

import json
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import jsonschema

from tableops.errors import (
    DuplicateAttribute,
    InvalidIndex,
    InvalidAttributeName,
    InvalidAttributeType,
    InvalidCapacity,
    MissingField,
    UnknownBillingMode,
    ValidationError,
)
from tableops.spec.model import (
    AttributeDefinition,
    AttributeType,
    BillingMode,
    GlobalSecondaryIndex,
    ProjectionType,
    TableSpec,
)

REQUIRED_FIELDS = ("name", "billing_mode", "attributes")

# ASCII digits only; str.isdigit() also accepts superscripts that int() rejects.
_CAPACITY_PATTERN = re.compile(r"\+?[0-9]+")


def _schema_dir() -> Path:
    """Directory containing schema files (tableops/schema/)."""
    return Path(__file__).resolve().parent.parent / "schema"


def load_schema(api_version: str) -> dict:
    """Load the JSON Schema for the given apiVersion.

    apiVersion format is e.g. 'tableops.dev/v1'.
    Schema file is named from the last segment, e.g. table-spec-v1.json.
    """
    if api_version == "tableops.dev/v1":
        name = "table-spec-v1.json"
    else:
        raise ValueError(f"Unsupported apiVersion: {api_version}")
    path = _schema_dir() / name
    if not path.exists():
        raise FileNotFoundError(f"Schema not found: {path}")
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def validate_table_document(data: dict) -> None:
    """Validate a parsed table document (dict) against its apiVersion schema.

    Only the document envelope is checked here; field values are checked by
    validate() so each failure maps to a typed error.

    Raises:
        jsonschema.ValidationError: If validation fails. Message includes
            all error details. Caller may convert to SystemExit for CLI.
    """
    api_version = data.get("apiVersion")
    if not api_version:
        raise jsonschema.ValidationError("Missing required field: apiVersion")
    schema = load_schema(api_version)
    validator = jsonschema.Draft202012Validator(schema)
    errors = list(validator.iter_errors(data))
    if errors:
        lines = ["table document validation failed:"]
        for i, err in enumerate(errors[:10], 1):
            path = ".".join(str(p) for p in err.absolute_path) if err.absolute_path else "(root)"
            lines.append(f"  {i}. {path}: {err.message}")
        if len(errors) > 10:
            lines.append(f"  ... and {len(errors) - 10} more errors")
        raise jsonschema.ValidationError("\n".join(lines))


def _parse_capacity(raw: Mapping[str, Any], key: str) -> int:
    value = raw.get(key)
    if value is None:
        return 0
    if isinstance(value, bool):
        raise InvalidCapacity(f"expected a non-negative integer, got {value!r}", key)
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and _CAPACITY_PATTERN.fullmatch(value.strip()):
        parsed = int(value)
    else:
        raise InvalidCapacity(f"expected a non-negative integer, got {value!r}", key)
    if parsed < 0:
        raise InvalidCapacity(f"must not be negative, got {parsed}", key)
    return parsed


def _parse_attributes(value: Any) -> tuple[AttributeDefinition, ...]:
    if not isinstance(value, list):
        raise ValidationError("expected a list of {name, type} entries", "attributes")

    attributes: list[AttributeDefinition] = []
    seen: set[str] = set()
    for i, entry in enumerate(value):
        path = f"attributes[{i}]"
        if not isinstance(entry, Mapping):
            raise ValidationError("expected a mapping with name and type", path)
        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            raise InvalidAttributeName("attribute name must be a non-empty string", f"{path}.name")
        type_ = entry.get("type")
        try:
            attr_type = AttributeType(type_)
        except ValueError:
            allowed = ", ".join(t.value for t in AttributeType)
            raise InvalidAttributeType(
                f"unsupported type {type_!r} (allowed: {allowed})", f"{path}.type"
            ) from None
        if name in seen:
            raise DuplicateAttribute(f"attribute {name!r} declared more than once", f"{path}.name")
        seen.add(name)
        attributes.append(AttributeDefinition(name=name, type=attr_type))
    return tuple(attributes)


def _parse_indexes(value: Any) -> tuple[GlobalSecondaryIndex, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise InvalidIndex("expected a list of index entries", "global_secondary_indexes")

    indexes: list[GlobalSecondaryIndex] = []
    seen: set[str] = set()
    for i, entry in enumerate(value):
        path = f"global_secondary_indexes[{i}]"
        if not isinstance(entry, Mapping):
            raise InvalidIndex("expected a mapping with name and partition_key", path)
        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            raise InvalidIndex("index name must be a non-empty string", f"{path}.name")
        if name in seen:
            raise InvalidIndex(f"index {name!r} declared more than once", f"{path}.name")
        seen.add(name)

        partition_key = entry.get("partition_key")
        if not isinstance(partition_key, str) or not partition_key:
            raise InvalidIndex("expected an attribute name", f"{path}.partition_key")
        sort_key = entry.get("sort_key")
        if sort_key is not None and (not isinstance(sort_key, str) or not sort_key):
            raise InvalidIndex("expected an attribute name", f"{path}.sort_key")

        raw_projection = entry.get("projection", ProjectionType.ALL.value)
        try:
            projection = ProjectionType(raw_projection)
        except ValueError:
            allowed = ", ".join(p.value for p in ProjectionType)
            raise InvalidIndex(
                f"unsupported projection {raw_projection!r} (allowed: {allowed})", f"{path}.projection"
            ) from None

        non_key = entry.get("non_key_attributes") or []
        if not isinstance(non_key, list) or not all(isinstance(n, str) and n for n in non_key):
            raise InvalidIndex("expected a list of attribute names", f"{path}.non_key_attributes")

        indexes.append(
            GlobalSecondaryIndex(
                name=name,
                partition_key=partition_key,
                sort_key=sort_key,
                projection=projection,
                non_key_attributes=tuple(sorted(set(non_key))),
            )
        )
    return tuple(indexes)


def validate(raw: Mapping[str, Any]) -> TableSpec:
    """Parse an untyped description into a TableSpec.

    Pure: no side effects. Cross-field rules (billing/capacity coupling,
    key schema, index keys) are left to tableops.spec.invariants.check.
    """
    if not isinstance(raw, Mapping):
        raise ValidationError(f"expected a mapping, got {type(raw).__name__}")

    for key in REQUIRED_FIELDS:
        if raw.get(key) is None:
            raise MissingField("required field is missing", key)

    name = raw["name"]
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("table name must be a non-empty string", "name")

    try:
        billing_mode = BillingMode(raw["billing_mode"])
    except ValueError:
        raise UnknownBillingMode(
            f"unrecognized billing mode {raw['billing_mode']!r}", "billing_mode"
        ) from None

    read_capacity = _parse_capacity(raw, "read_capacity")
    write_capacity = _parse_capacity(raw, "write_capacity")
    attributes = _parse_attributes(raw["attributes"])

    partition_key = raw.get("partition_key") or ""
    if not isinstance(partition_key, str):
        raise ValidationError("expected an attribute name", "partition_key")
    sort_key = raw.get("sort_key")
    if sort_key is not None and (not isinstance(sort_key, str) or not sort_key):
        raise ValidationError("expected an attribute name", "sort_key")

    tags = raw.get("tags") or {}
    if not isinstance(tags, Mapping) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in tags.items()
    ):
        raise ValidationError("expected a mapping of string keys to string values", "tags")

    indexes = _parse_indexes(raw.get("global_secondary_indexes"))

    return TableSpec(
        name=name,
        billing_mode=billing_mode,
        attributes=attributes,
        read_capacity=read_capacity,
        write_capacity=write_capacity,
        partition_key=partition_key,
        sort_key=sort_key,
        tags=dict(tags),
        global_secondary_indexes=indexes,
    )
