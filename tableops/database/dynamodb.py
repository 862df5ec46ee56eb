"""Native DynamoDB Table provisioning (pulumi_aws) from a TableSpec."""

import pulumi
import pulumi_aws

from tableops.spec.model import BillingMode, TableSpec


def create_dynamodb_table(
    spec: TableSpec,
    aws_provider: pulumi_aws.Provider,
) -> pulumi_aws.dynamodb.Table:
    """Create a DynamoDB table; the Pulumi engine reconciles it instead of tableops."""
    resource_name = f"{spec.name.replace('-', '_')}_table"

    attribute_defs = [
        pulumi_aws.dynamodb.TableAttributeArgs(
            name=attr.name,
            type=attr.type.value,
        )
        for attr in spec.attributes
    ]

    capacity: dict[str, int] = {}
    if spec.billing_mode is BillingMode.PROVISIONED:
        capacity = {
            "read_capacity": spec.read_capacity,
            "write_capacity": spec.write_capacity,
        }

    index_args = [
        pulumi_aws.dynamodb.TableGlobalSecondaryIndexArgs(
            name=index.name,
            hash_key=index.partition_key,
            range_key=index.sort_key,
            projection_type=index.projection.value,
            non_key_attributes=list(index.non_key_attributes) or None,
            **capacity,
        )
        for index in spec.global_secondary_indexes
    ]

    table = pulumi_aws.dynamodb.Table(
        resource_name,
        name=spec.name,
        billing_mode=spec.billing_mode.value,
        hash_key=spec.partition_key,
        range_key=spec.sort_key,
        attributes=attribute_defs,
        global_secondary_indexes=index_args or None,
        tags={**spec.tags, "Name": spec.name, "managed-by": "tableops"},
        opts=pulumi.ResourceOptions(provider=aws_provider),
        **capacity,
    )
    return table
