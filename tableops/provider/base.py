"""Provider collaborator: the cloud control-plane API the reconciler drives."""

from typing import Protocol

from tableops.lifecycle.diff import ChangeSet
from tableops.lifecycle.state import TableState
from tableops.spec.model import TableSpec


class TableProvider(Protocol):
    """Control-plane operations for one table kind.

    Implementations raise tableops.errors.ProviderError on failure, with
    transient=True for failures worth retrying. The provider owns durability
    of the underlying resource; retry policy belongs to the caller.
    """

    def create_table(self, spec: TableSpec) -> TableState:
        ...

    def update_table(self, name: str, changes: ChangeSet) -> TableState:
        ...

    def delete_table(self, name: str) -> None:
        ...

    def describe_table(self, name: str) -> TableState | None:
        """Return the live state, or None when the table does not exist."""
        ...
