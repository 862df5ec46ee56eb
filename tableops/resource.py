"""Managed table (Pulumi dynamic resource running the tableops reconciler)."""

from __future__ import annotations

from typing import Any

import pulumi
import pulumi.dynamic

from tableops.errors import InvariantError, ValidationError
from tableops.lifecycle.diff import compute_changes
from tableops.lifecycle.reconciler import Reconciler, ReconcileResult
from tableops.lifecycle.state import TableState, TableStatus
from tableops.provider.dynamodb import DynamoDBTableProvider
from tableops.spec.invariants import check
from tableops.spec.model import TableSpec
from tableops.spec.validator import validate


def _spec_from_props(props: dict[str, Any]) -> TableSpec:
    spec = validate(props["table"])
    check(spec)
    return spec


def _state_from_props(props: dict[str, Any]) -> TableState:
    return TableState.from_dict(
        {
            **props["table"],
            "status": props.get("status") or TableStatus.ACTIVE.value,
            "provider_identifier": props.get("arn") or "",
        }
    )


def _outs(props: dict[str, Any], result: ReconcileResult) -> dict[str, Any]:
    state = result.state
    if state is None:
        return {**props, "arn": None, "status": result.status.value}
    return {
        **props,
        "table": state.to_spec().to_dict(),
        "arn": state.provider_identifier,
        "status": state.status.value,
    }


class _ManagedTableProvider(pulumi.dynamic.ResourceProvider):
    """Dynamic provider that reconciles one DynamoDB table."""

    def __init__(self, region: str, endpoint_url: str | None = None) -> None:
        super().__init__()
        self._region = region
        self._endpoint_url = endpoint_url

    def _reconciler(self) -> Reconciler:
        return Reconciler(DynamoDBTableProvider(self._region, endpoint_url=self._endpoint_url))

    def check(self, _olds: dict[str, Any], news: dict[str, Any]) -> pulumi.dynamic.CheckResult:
        try:
            _spec_from_props(news)
        except (ValidationError, InvariantError) as e:
            return pulumi.dynamic.CheckResult(
                inputs=news,
                failures=[pulumi.dynamic.CheckFailure(f"table.{e.path}", e.reason)],
            )
        return pulumi.dynamic.CheckResult(inputs=news, failures=[])

    def diff(self, _id: str, olds: dict[str, Any], news: dict[str, Any]) -> pulumi.dynamic.DiffResult:
        changes = compute_changes(_spec_from_props(news), _state_from_props(olds))
        return pulumi.dynamic.DiffResult(
            changes=not changes.empty,
            replaces=[f"table.{f}" for f in changes.replaces],
            delete_before_replace=True,
        )

    def create(self, props: dict[str, Any]) -> pulumi.dynamic.CreateResult:
        spec = _spec_from_props(props)
        result = self._reconciler().reconcile(spec, None)
        return pulumi.dynamic.CreateResult(id_=spec.name, outs=_outs(props, result))

    def update(self, _id: str, olds: dict[str, Any], news: dict[str, Any]) -> pulumi.dynamic.UpdateResult:
        result = self._reconciler().reconcile(_spec_from_props(news), _state_from_props(olds))
        return pulumi.dynamic.UpdateResult(outs=_outs(news, result))

    def read(self, id_: str, props: dict[str, Any]) -> pulumi.dynamic.ReadResult:
        result = self._reconciler().reconcile(None, _state_from_props(props), refresh=True)
        if result.state is None:
            return pulumi.dynamic.ReadResult(id_="", outs={})
        return pulumi.dynamic.ReadResult(id_=id_, outs=_outs(props, result))

    def delete(self, _id: str, props: dict[str, Any]) -> None:
        self._reconciler().reconcile(None, _state_from_props(props))


class ManagedTable(pulumi.dynamic.Resource):
    """DynamoDB table provisioned through validate -> check -> reconcile."""

    arn: pulumi.Output[str]
    status: pulumi.Output[str]

    def __init__(
        self,
        resource_name: str,
        spec: TableSpec,
        region: str,
        endpoint_url: str | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ) -> None:
        super().__init__(
            _ManagedTableProvider(region, endpoint_url),
            resource_name,
            {
                "table": spec.to_dict(),
                "arn": None,
                "status": None,
            },
            opts,
        )


def create_managed_table(
    spec: TableSpec,
    region: str,
    endpoint_url: str | None = None,
) -> ManagedTable:
    """Create a ManagedTable named after the table."""
    return ManagedTable(
        f"{spec.name.replace('-', '_')}_table",
        spec=spec,
        region=region,
        endpoint_url=endpoint_url,
    )
