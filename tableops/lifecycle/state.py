"""Observed table state and lifecycle statuses."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from tableops.spec.model import (
    AttributeDefinition,
    AttributeType,
    BillingMode,
    GlobalSecondaryIndex,
    TableSpec,
)


class TableStatus(str, Enum):
    ABSENT = "ABSENT"
    CREATING = "CREATING"
    ACTIVE = "ACTIVE"
    UPDATING = "UPDATING"
    DRIFTED = "DRIFTED"
    DESTROYING = "DESTROYING"


@dataclass(frozen=True)
class TableState:
    """Actual state of a provisioned table as last observed from the provider."""

    name: str
    billing_mode: BillingMode
    attributes: tuple[AttributeDefinition, ...]
    status: TableStatus
    provider_identifier: str
    read_capacity: int = 0
    write_capacity: int = 0
    partition_key: str = ""
    sort_key: str | None = None
    tags: dict[str, str] = field(default_factory=dict)
    global_secondary_indexes: tuple[GlobalSecondaryIndex, ...] = ()

    def __post_init__(self) -> None:
        if not self.partition_key and self.attributes:
            object.__setattr__(self, "partition_key", self.attributes[0].name)

    @classmethod
    def from_spec(
        cls,
        spec: TableSpec,
        status: TableStatus,
        provider_identifier: str,
    ) -> "TableState":
        return cls(
            name=spec.name,
            billing_mode=spec.billing_mode,
            attributes=spec.attributes,
            status=status,
            provider_identifier=provider_identifier,
            read_capacity=spec.read_capacity,
            write_capacity=spec.write_capacity,
            partition_key=spec.partition_key,
            sort_key=spec.sort_key,
            tags=dict(spec.tags),
            global_secondary_indexes=spec.global_secondary_indexes,
        )

    def to_spec(self) -> TableSpec:
        return TableSpec(
            name=self.name,
            billing_mode=self.billing_mode,
            attributes=self.attributes,
            read_capacity=self.read_capacity,
            write_capacity=self.write_capacity,
            partition_key=self.partition_key,
            sort_key=self.sort_key,
            tags=dict(self.tags),
            global_secondary_indexes=self.global_secondary_indexes,
        )

    def with_status(self, status: TableStatus) -> "TableState":
        return replace(self, status=status)

    def to_dict(self) -> dict[str, Any]:
        data = self.to_spec().to_dict()
        data["status"] = self.status.value
        data["provider_identifier"] = self.provider_identifier
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TableState":
        return cls(
            name=data["name"],
            billing_mode=BillingMode(data["billing_mode"]),
            attributes=tuple(
                AttributeDefinition(name=a["name"], type=AttributeType(a["type"]))
                for a in data.get("attributes", [])
            ),
            status=TableStatus(data.get("status", TableStatus.ACTIVE.value)),
            provider_identifier=data.get("provider_identifier", ""),
            read_capacity=data.get("read_capacity", 0),
            write_capacity=data.get("write_capacity", 0),
            partition_key=data.get("partition_key", ""),
            sort_key=data.get("sort_key"),
            tags=dict(data.get("tags") or {}),
            global_secondary_indexes=tuple(
                GlobalSecondaryIndex.from_dict(i) for i in data.get("global_secondary_indexes") or []
            ),
        )
