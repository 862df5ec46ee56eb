"""
tableops Pulumi program: provisions one table from the document at TABLE_YAML_PATH.
TABLE_ENGINE selects who reconciles it: "reconciler" (tableops, default) or
"native" (pulumi_aws.dynamodb.Table, reconciled by the Pulumi engine).
"""
import os

import pulumi

from tableops.config import create_aws_provider, load_table_config
from tableops.database.dynamodb import create_dynamodb_table
from tableops.errors import InvariantError, ValidationError
from tableops.log import setup_logger
from tableops.resource import create_managed_table

setup_logger(os.environ.get("TABLEOPS_LOG_LEVEL", "INFO"))

table_config = load_table_config()
try:
    spec = table_config.table_spec()
except (ValidationError, InvariantError) as e:
    raise SystemExit(f"{table_config.name}: {e}") from e

aws_config = pulumi.Config("aws")
region = aws_config.require("region")
engine = os.environ.get("TABLE_ENGINE", "reconciler")

if engine == "native":
    table = create_dynamodb_table(spec, create_aws_provider(spec.name, region))
elif engine == "reconciler":
    table = create_managed_table(
        spec,
        region=region,
        endpoint_url=os.environ.get("TABLEOPS_ENDPOINT_URL") or None,
    )
else:
    raise SystemExit(f"Unknown TABLE_ENGINE: {engine} (expected reconciler or native)")

pulumi.export("table_name", spec.name)
pulumi.export("table_arn", table.arn)
