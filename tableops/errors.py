"""Error taxonomy for table validation, invariant checking, and reconciliation."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from tableops.lifecycle.state import TableState


class TableOpsError(Exception):
    """Base class for every error raised by tableops."""


class ValidationError(TableOpsError):
    """Malformed desired-state input. Never reaches the provider."""

    def __init__(self, message: str, path: str = "(root)") -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.reason = message


class MissingField(ValidationError):
    pass


class UnknownBillingMode(ValidationError):
    pass


class InvalidCapacity(ValidationError):
    pass


class InvalidAttributeName(ValidationError):
    pass


class InvalidAttributeType(ValidationError):
    pass


class DuplicateAttribute(ValidationError):
    pass


class InvalidIndex(ValidationError):
    pass


class InvariantError(TableOpsError):
    """Syntactically valid but semantically inconsistent input."""

    def __init__(self, message: str, path: str = "(root)") -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.reason = message


class CapacityNotAllowedForOnDemandBilling(InvariantError):
    pass


class CapacityRequiredForProvisionedBilling(InvariantError):
    pass


class MissingKeySchema(InvariantError):
    pass


class UnsupportedAttributeType(InvariantError):
    pass


class InvalidKeySchema(InvariantError):
    pass


class InvalidIndexSchema(InvariantError):
    pass


class ProviderError(TableOpsError):
    """Raised by a TableProvider when a control-plane call fails.

    transient marks failures worth retrying (throttling, 5xx, network).
    response holds the raw provider payload, if any.
    """

    def __init__(
        self,
        message: str,
        transient: bool = False,
        response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.transient = transient
        self.response = response


class ReconcileError(TableOpsError):
    """Provider-side failure during reconciliation.

    state is the last provider-confirmed TableState (None when the resource
    is confirmed absent). Callers persist it instead of the desired state.
    """

    def __init__(
        self,
        message: str,
        last_response: dict[str, Any] | None = None,
        state: TableState | None = None,
    ) -> None:
        super().__init__(message)
        self.last_response = last_response
        self.state = state


class TransientReconcileError(ReconcileError):
    pass


class PermanentReconcileError(ReconcileError):
    pass


class ConcurrentReconcileInProgress(ReconcileError):
    pass


class ReconcileCancelled(ReconcileError):
    pass
