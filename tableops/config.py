"""Table document loading and engine settings."""

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any

import jsonschema
import pulumi_aws
import yaml

from tableops.lifecycle.reconciler import RetryPolicy
from tableops.spec.invariants import check
from tableops.spec.model import TableSpec
from tableops.spec.validator import validate, validate_table_document

CONFIG_DIR = ".tableops"
CONFIG_FILENAME = "config.yaml"
DEFAULT_REGION = "us-east-1"

# camelCase document keys -> snake_case description keys consumed by validate().
_SPEC_KEYS = {
    "billingMode": "billing_mode",
    "readCapacity": "read_capacity",
    "writeCapacity": "write_capacity",
    "attributes": "attributes",
    "partitionKey": "partition_key",
    "sortKey": "sort_key",
    "tags": "tags",
    "globalSecondaryIndexes": "global_secondary_indexes",
}

_INDEX_KEYS = {
    "name": "name",
    "partitionKey": "partition_key",
    "sortKey": "sort_key",
    "projection": "projection",
    "nonKeyAttributes": "non_key_attributes",
}


@dataclass
class TableConfig:
    """Parsed table document: metadata plus the raw table description."""

    name: str
    description: str
    raw_spec: dict[str, Any]

    def description_dict(self) -> dict[str, Any]:
        """Untyped description for tableops.spec.validator.validate."""
        raw: dict[str, Any] = {"name": self.name}
        for doc_key, key in _SPEC_KEYS.items():
            if doc_key in self.raw_spec:
                raw[key] = self.raw_spec[doc_key]
        indexes = raw.get("global_secondary_indexes")
        if isinstance(indexes, list):
            raw["global_secondary_indexes"] = [
                {key: entry[doc_key] for doc_key, key in _INDEX_KEYS.items() if doc_key in entry}
                if isinstance(entry, dict)
                else entry
                for entry in indexes
            ]
        return raw

    def table_spec(self) -> TableSpec:
        """Validate and invariant-check the description.

        Raises:
            ValidationError, InvariantError: before anything reaches a provider.
        """
        spec = validate(self.description_dict())
        check(spec)
        return spec

    @classmethod
    def from_dict(cls, document: dict[str, Any]) -> "TableConfig":
        try:
            validate_table_document(document)
        except (jsonschema.ValidationError, ValueError) as e:
            raise SystemExit(str(e)) from e
        metadata = document["metadata"]
        return cls(
            name=metadata["name"],
            description=metadata.get("description", ""),
            raw_spec=document["spec"],
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "TableConfig":
        """Load and validate a table document from file path."""
        if not Path(path).exists():
            raise SystemExit(f"table document not found: {path}")

        with open(path, encoding="utf-8") as f:
            document = yaml.safe_load(f)
        if not isinstance(document, dict):
            raise SystemExit(f"table document must be a mapping: {path}")
        return cls.from_dict(document)


def load_table_config() -> TableConfig:
    """Load the table document from TABLE_YAML_PATH environment variable."""
    path = os.environ.get("TABLE_YAML_PATH")
    if not path:
        raise SystemExit("TABLE_YAML_PATH environment variable required")
    if not Path(path).exists():
        raise SystemExit("TABLE_YAML_PATH must point to a table document")
    return TableConfig.from_file(path)


@dataclass
class EngineSettings:
    region: str = DEFAULT_REGION
    endpoint_url: str | None = None
    state_dir: str = f"{CONFIG_DIR}/state"
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_file(cls, path: str | Path) -> "EngineSettings":
        """Load settings from a YAML file; missing file or keys fall back to defaults."""
        data: dict[str, Any] = {}
        if Path(path).exists():
            with open(path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
            if isinstance(loaded, dict):
                data = loaded

        retry_raw = data.get("retry") or {}
        defaults = RetryPolicy()
        settings = cls(
            region=data.get("region", DEFAULT_REGION),
            endpoint_url=data.get("endpoint_url"),
            state_dir=data.get("state_dir", f"{CONFIG_DIR}/state"),
            retry=RetryPolicy(
                max_attempts=int(retry_raw.get("max_attempts", defaults.max_attempts)),
                base_delay=float(retry_raw.get("base_delay", defaults.base_delay)),
                multiplier=float(retry_raw.get("multiplier", defaults.multiplier)),
                max_delay=float(retry_raw.get("max_delay", defaults.max_delay)),
            ),
        )
        settings.apply_env()
        return settings

    def apply_env(self) -> None:
        """Environment variables override file values."""
        self.region = os.environ.get("TABLEOPS_REGION", "").strip() or self.region
        self.endpoint_url = os.environ.get("TABLEOPS_ENDPOINT_URL", "").strip() or self.endpoint_url
        self.state_dir = os.environ.get("TABLEOPS_STATE_DIR", "").strip() or self.state_dir


def load_engine_settings(project_root: Path | None = None) -> EngineSettings:
    """Load .tableops/config.yaml under project_root (default: cwd)."""
    root = project_root or Path.cwd()
    return EngineSettings.from_file(root / CONFIG_DIR / CONFIG_FILENAME)


def create_aws_provider(table_name: str, region: str) -> pulumi_aws.Provider:
    """Create AWS provider with default resource tags."""
    return pulumi_aws.Provider(
        "aws-tagged",
        region=region,
        default_tags=pulumi_aws.ProviderDefaultTagsArgs(
            tags={
                "table": table_name,
                "managed-by": "tableops",
            }
        ),
    )
