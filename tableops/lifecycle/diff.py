"""Field-by-field diff between a desired TableSpec and an observed TableState."""

from dataclasses import dataclass
from typing import Any

from tableops.lifecycle.state import TableState
from tableops.spec.model import GlobalSecondaryIndex, TableSpec, find_attribute

COMPARED_FIELDS = (
    "name",
    "partition_key",
    "sort_key",
    "key_schema",
    "billing_mode",
    "read_capacity",
    "write_capacity",
    "attributes",
    "global_secondary_indexes",
    "tags",
)

# Changing any of these cannot happen in place: destroy, then create.
# key_schema is derived: the (name, type) pairs of the partition and sort key.
IMMUTABLE_FIELDS = frozenset({"name", "partition_key", "sort_key", "key_schema", "global_secondary_indexes"})


@dataclass(frozen=True)
class FieldChange:
    field: str
    old: Any
    new: Any

    @property
    def immutable(self) -> bool:
        return self.field in IMMUTABLE_FIELDS


@dataclass(frozen=True)
class ChangeSet:
    changes: tuple[FieldChange, ...] = ()

    @property
    def empty(self) -> bool:
        return not self.changes

    @property
    def requires_replacement(self) -> bool:
        return any(c.immutable for c in self.changes)

    @property
    def fields(self) -> list[str]:
        return [c.field for c in self.changes]

    @property
    def replaces(self) -> list[str]:
        return [c.field for c in self.changes if c.immutable]

    def updates(self) -> dict[str, Any]:
        """New values of the mutable fields, keyed by field name."""
        return {c.field: c.new for c in self.changes if not c.immutable}

    def get(self, field: str) -> FieldChange | None:
        for change in self.changes:
            if change.field == field:
                return change
        return None


def key_schema(table: TableSpec | TableState) -> tuple[tuple[str, str | None], ...]:
    """(name, type) of the partition key, then of the sort key if any."""
    keys = []
    for name in (table.partition_key, table.sort_key):
        if name is None:
            continue
        attr = find_attribute(table.attributes, name)
        keys.append((name, attr.type.value if attr is not None else None))
    return tuple(keys)


def _index_shape(index: GlobalSecondaryIndex, table: TableSpec | TableState) -> tuple[Any, ...]:
    # Key attribute types belong to the index: retyping one means rebuilding it.
    types = {a.name: a.type.value for a in table.attributes}
    return (
        index.name,
        index.partition_key,
        types.get(index.partition_key),
        index.sort_key,
        types.get(index.sort_key) if index.sort_key else None,
        index.projection.value,
        tuple(sorted(index.non_key_attributes)),
    )


def _value(table: TableSpec | TableState, field: str) -> Any:
    if field == "key_schema":
        return key_schema(table)
    return getattr(table, field)


def _comparable(field: str, value: Any, table: TableSpec | TableState) -> Any:
    if field == "attributes":
        return frozenset(value)
    if field == "global_secondary_indexes":
        return frozenset(_index_shape(i, table) for i in value or ())
    if field == "tags":
        return dict(value or {})
    return value


def compute_changes(desired: TableSpec, observed: TableSpec | TableState) -> ChangeSet:
    """Compare desired against observed, ignoring attribute and index order and status."""
    changes = []
    for field in COMPARED_FIELDS:
        new = _value(desired, field)
        old = _value(observed, field)
        if _comparable(field, new, desired) != _comparable(field, old, observed):
            changes.append(FieldChange(field=field, old=old, new=new))
    return ChangeSet(changes=tuple(changes))
