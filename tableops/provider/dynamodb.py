"""DynamoDB implementation of the TableProvider collaborator (boto3)."""

from __future__ import annotations

from dataclasses import replace
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError, WaiterError
from loguru import logger

from tableops.errors import ProviderError
from tableops.lifecycle.diff import ChangeSet
from tableops.lifecycle.state import TableState, TableStatus
from tableops.spec.model import (
    AttributeDefinition,
    AttributeType,
    BillingMode,
    GlobalSecondaryIndex,
    ProjectionType,
    TableSpec,
)

MANAGED_TAG_KEY = "managed-by"
MANAGED_TAG_VALUE = "tableops"

TRANSIENT_ERROR_CODES = frozenset(
    {
        "ThrottlingException",
        "ProvisionedThroughputExceededException",
        "RequestLimitExceeded",
        "InternalServerError",
        "ServiceUnavailable",
    }
)

_STATUS_MAP = {
    "CREATING": TableStatus.CREATING,
    "ACTIVE": TableStatus.ACTIVE,
    "UPDATING": TableStatus.UPDATING,
    "DELETING": TableStatus.DESTROYING,
}


def _provider_error(exc: Exception, operation: str, busy_is_transient: bool = False) -> ProviderError:
    """Classify a boto3 failure into a transient or permanent ProviderError."""
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        transient = code in TRANSIENT_ERROR_CODES or status >= 500
        # A table mid-transition rejects updates and deletes until it settles.
        if code == "ResourceInUseException" and busy_is_transient:
            transient = True
        return ProviderError(f"{operation} failed: {code}: {exc}", transient=transient, response=exc.response)
    if isinstance(exc, WaiterError):
        return ProviderError(f"{operation} did not settle: {exc}", transient=False, response=exc.last_response)
    return ProviderError(f"{operation} failed: {exc}", transient=True)


def _key_schema(spec: TableSpec) -> list[dict[str, str]]:
    keys = [{"AttributeName": spec.partition_key, "KeyType": "HASH"}]
    if spec.sort_key:
        keys.append({"AttributeName": spec.sort_key, "KeyType": "RANGE"})
    return keys


def _billing_params(spec: TableSpec) -> dict[str, Any]:
    params: dict[str, Any] = {"BillingMode": spec.billing_mode.value}
    if spec.billing_mode is BillingMode.PROVISIONED:
        params["ProvisionedThroughput"] = {
            "ReadCapacityUnits": spec.read_capacity,
            "WriteCapacityUnits": spec.write_capacity,
        }
    return params


def _index_request(index: GlobalSecondaryIndex, spec: TableSpec) -> dict[str, Any]:
    keys = [{"AttributeName": index.partition_key, "KeyType": "HASH"}]
    if index.sort_key:
        keys.append({"AttributeName": index.sort_key, "KeyType": "RANGE"})
    projection: dict[str, Any] = {"ProjectionType": index.projection.value}
    if index.non_key_attributes:
        projection["NonKeyAttributes"] = list(index.non_key_attributes)
    request: dict[str, Any] = {"IndexName": index.name, "KeySchema": keys, "Projection": projection}
    if spec.billing_mode is BillingMode.PROVISIONED:
        request["ProvisionedThroughput"] = _billing_params(spec)["ProvisionedThroughput"]
    return request


def create_table_request(spec: TableSpec) -> dict[str, Any]:
    """Build CreateTable parameters for spec."""
    tags = {**spec.tags, MANAGED_TAG_KEY: MANAGED_TAG_VALUE}
    request: dict[str, Any] = {
        "TableName": spec.name,
        "AttributeDefinitions": [
            {"AttributeName": a.name, "AttributeType": a.type.value} for a in spec.attributes
        ],
        "KeySchema": _key_schema(spec),
        **_billing_params(spec),
        "Tags": [{"Key": k, "Value": v} for k, v in sorted(tags.items())],
    }
    if spec.global_secondary_indexes:
        request["GlobalSecondaryIndexes"] = [_index_request(i, spec) for i in spec.global_secondary_indexes]
    return request


def update_billing_request(spec: TableSpec) -> dict[str, Any]:
    """UpdateTable parameters moving spec's table and its indexes to spec's billing."""
    request: dict[str, Any] = {"TableName": spec.name, **_billing_params(spec)}
    if spec.billing_mode is BillingMode.PROVISIONED and spec.global_secondary_indexes:
        throughput = request["ProvisionedThroughput"]
        request["GlobalSecondaryIndexUpdates"] = [
            {"Update": {"IndexName": i.name, "ProvisionedThroughput": throughput}}
            for i in spec.global_secondary_indexes
        ]
    return request


class DynamoDBTableProvider:
    """TableProvider backed by the DynamoDB control plane.

    endpoint_url points the client at DynamoDB Local or another compatible
    endpoint. Pass client to reuse an existing boto3 client (tests use a
    Stubber-wrapped one).
    """

    def __init__(
        self,
        region: str,
        endpoint_url: str | None = None,
        client: Any = None,
        wait: bool = True,
    ) -> None:
        self._region = region
        self._endpoint_url = endpoint_url
        self._client_obj = client
        self._wait = wait

    def _client(self):
        if self._client_obj is None:
            self._client_obj = boto3.client(
                "dynamodb", region_name=self._region, endpoint_url=self._endpoint_url
            )
        return self._client_obj

    def create_table(self, spec: TableSpec) -> TableState:
        client = self._client()
        logger.debug(f"CreateTable {spec.name}")
        try:
            resp = client.create_table(**create_table_request(spec))
            if self._wait:
                client.get_waiter("table_exists").wait(TableName=spec.name)
        except (ClientError, BotoCoreError) as e:
            raise _provider_error(e, "CreateTable") from e
        arn = resp["TableDescription"].get("TableArn", "")
        return TableState.from_spec(spec, TableStatus.ACTIVE, arn)

    def update_table(self, name: str, changes: ChangeSet) -> TableState:
        if changes.requires_replacement:
            raise ProviderError(f"UpdateTable cannot change {', '.join(changes.replaces)} in place")
        if changes.get("attributes") is not None:
            raise ProviderError("UpdateTable cannot change key attribute definitions in place")

        current = self.describe_table(name)
        if current is None:
            raise ProviderError(
                f"UpdateTable failed: table {name!r} not found",
                response={"Error": {"Code": "ResourceNotFoundException"}},
            )
        target = replace(current.to_spec(), **changes.updates())
        client = self._client()

        try:
            if {"billing_mode", "read_capacity", "write_capacity"} & set(changes.fields):
                logger.debug(f"UpdateTable {name}")
                client.update_table(**update_billing_request(target))
                if self._wait:
                    client.get_waiter("table_exists").wait(TableName=name)
            tag_change = changes.get("tags")
            if tag_change is not None:
                self._sync_tags(current.provider_identifier, tag_change.old or {}, tag_change.new or {})
        except (ClientError, BotoCoreError) as e:
            raise _provider_error(e, "UpdateTable", busy_is_transient=True) from e
        return TableState.from_spec(target, TableStatus.ACTIVE, current.provider_identifier)

    def _sync_tags(self, arn: str, old: dict[str, str], new: dict[str, str]) -> None:
        client = self._client()
        removed = sorted(set(old) - set(new))
        if removed:
            client.untag_resource(ResourceArn=arn, TagKeys=removed)
        upserts = {k: v for k, v in new.items() if old.get(k) != v}
        if upserts:
            client.tag_resource(
                ResourceArn=arn,
                Tags=[{"Key": k, "Value": v} for k, v in sorted(upserts.items())],
            )

    def delete_table(self, name: str) -> None:
        client = self._client()
        logger.debug(f"DeleteTable {name}")
        try:
            client.delete_table(TableName=name)
            if self._wait:
                client.get_waiter("table_not_exists").wait(TableName=name)
        except ClientError as e:
            # Already gone is the outcome we asked for.
            if e.response.get("Error", {}).get("Code") == "ResourceNotFoundException":
                return
            raise _provider_error(e, "DeleteTable", busy_is_transient=True) from e
        except BotoCoreError as e:
            raise _provider_error(e, "DeleteTable") from e

    def describe_table(self, name: str) -> TableState | None:
        client = self._client()
        try:
            table = client.describe_table(TableName=name)["Table"]
            arn = table.get("TableArn", "")
            tags = self._list_tags(arn) if arn else {}
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ResourceNotFoundException":
                return None
            raise _provider_error(e, "DescribeTable") from e
        except BotoCoreError as e:
            raise _provider_error(e, "DescribeTable") from e
        return _state_from_description(table, tags)

    def _list_tags(self, arn: str) -> dict[str, str]:
        client = self._client()
        tags: dict[str, str] = {}
        kwargs: dict[str, Any] = {"ResourceArn": arn}
        while True:
            resp = client.list_tags_of_resource(**kwargs)
            for t in resp.get("Tags", []):
                if t["Key"] != MANAGED_TAG_KEY:
                    tags[t["Key"]] = t["Value"]
            if not resp.get("NextToken"):
                return tags
            kwargs["NextToken"] = resp["NextToken"]


def _keys_from_schema(key_schema: list[dict[str, str]]) -> tuple[str, str | None]:
    partition_key = ""
    sort_key = None
    for key in key_schema:
        if key["KeyType"] == "HASH":
            partition_key = key["AttributeName"]
        elif key["KeyType"] == "RANGE":
            sort_key = key["AttributeName"]
    return partition_key, sort_key


def _state_from_description(table: dict[str, Any], tags: dict[str, str]) -> TableState:
    """Map a DescribeTable 'Table' payload onto TableState."""
    # Tables created before on-demand existed carry no BillingModeSummary.
    billing_mode = BillingMode(table.get("BillingModeSummary", {}).get("BillingMode", "PROVISIONED"))
    throughput = table.get("ProvisionedThroughput", {})
    read_capacity = write_capacity = 0
    if billing_mode is BillingMode.PROVISIONED:
        read_capacity = throughput.get("ReadCapacityUnits", 0)
        write_capacity = throughput.get("WriteCapacityUnits", 0)

    partition_key, sort_key = _keys_from_schema(table.get("KeySchema", []))

    return TableState(
        name=table["TableName"],
        billing_mode=billing_mode,
        attributes=tuple(
            AttributeDefinition(name=a["AttributeName"], type=AttributeType(a["AttributeType"]))
            for a in table.get("AttributeDefinitions", [])
        ),
        status=_STATUS_MAP.get(table.get("TableStatus", ""), TableStatus.DRIFTED),
        provider_identifier=table.get("TableArn", ""),
        read_capacity=read_capacity,
        write_capacity=write_capacity,
        partition_key=partition_key,
        sort_key=sort_key,
        tags=tags,
        global_secondary_indexes=tuple(
            _index_from_description(i) for i in table.get("GlobalSecondaryIndexes", [])
        ),
    )


def _index_from_description(index: dict[str, Any]) -> GlobalSecondaryIndex:
    partition_key, sort_key = _keys_from_schema(index.get("KeySchema", []))
    projection = index.get("Projection", {})
    return GlobalSecondaryIndex(
        name=index["IndexName"],
        partition_key=partition_key,
        sort_key=sort_key,
        projection=ProjectionType(projection.get("ProjectionType", ProjectionType.ALL.value)),
        non_key_attributes=tuple(sorted(projection.get("NonKeyAttributes", []))),
    )
