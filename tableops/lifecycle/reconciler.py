"""Lifecycle reconciler: drive a table from observed toward desired state.

One call to Reconciler.reconcile is one reconciliation cycle:

    ABSENT  -> CREATING -> ACTIVE                    (create)
    ACTIVE  -> UPDATING -> ACTIVE                    (mutable fields differ)
    ACTIVE  -> DESTROYING -> ABSENT -> CREATING -> ACTIVE   (immutable field differs)
    ACTIVE  -> DESTROYING -> ABSENT                  (desired removed)

With refresh=True the cycle only describes the live table and reports
DRIFTED when it no longer matches observed. Nothing is corrected until
reconcile runs again on the drifted state.
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
import threading
import time
from typing import Any, TypeVar

from loguru import logger

from tableops.errors import (
    ConcurrentReconcileInProgress,
    PermanentReconcileError,
    ProviderError,
    ReconcileCancelled,
    TransientReconcileError,
)
from tableops.lifecycle.diff import ChangeSet, compute_changes
from tableops.lifecycle.state import TableState, TableStatus
from tableops.provider.base import TableProvider
from tableops.spec.invariants import check
from tableops.spec.model import TableSpec

T = TypeVar("T")


class Action(str, Enum):
    NOOP = "noop"
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    DRIFT = "drift"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient provider failures."""

    max_attempts: int = 5
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 8.0

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)


class CancelToken:
    """Cooperative cancellation for an in-flight reconciliation."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class ReconcileResult:
    action: Action
    status: TableStatus
    state: TableState | None
    transitions: list[TableStatus]
    changes: ChangeSet = field(default_factory=ChangeSet)
    provider_calls: list[str] = field(default_factory=list)
    drifted_fields: list[str] = field(default_factory=list)


@dataclass
class _Cycle:
    """Bookkeeping for one reconcile call."""

    name: str
    cancel: CancelToken | None
    confirmed: TableState | None
    transitions: list[TableStatus] = field(default_factory=list)
    calls: list[str] = field(default_factory=list)

    def enter(self, status: TableStatus) -> None:
        if self.transitions and self.transitions[-1] is not status:
            logger.info(f"{self.name}: {self.transitions[-1].value} -> {status.value}")
        self.transitions.append(status)


class Reconciler:
    """Reconcile one named table at a time against a TableProvider.

    A second reconcile for a name that is already in flight on this
    Reconciler is rejected with ConcurrentReconcileInProgress. Distinct
    names may be reconciled from different threads.
    """

    def __init__(
        self,
        provider: TableProvider,
        retry: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._provider = provider
        self._retry = retry or RetryPolicy()
        self._sleep = sleep
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()

    @contextmanager
    def _claim(self, names: list[str], observed: TableState | None) -> Iterator[None]:
        with self._lock:
            busy = [n for n in names if n in self._in_flight]
            if busy:
                raise ConcurrentReconcileInProgress(
                    f"reconciliation already in progress for {', '.join(busy)}",
                    state=observed,
                )
            self._in_flight.update(names)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.difference_update(names)

    def plan(self, desired: TableSpec | None, observed: TableState | None) -> ChangeSet:
        """Changes reconcile would apply; empty when nothing to do or for create/delete."""
        if desired is None or observed is None:
            return ChangeSet()
        return compute_changes(desired, observed)

    def reconcile(
        self,
        desired: TableSpec | None,
        observed: TableState | None,
        *,
        refresh: bool = False,
        cancel: CancelToken | None = None,
    ) -> ReconcileResult:
        if desired is not None:
            # Last consistency boundary before anything reaches the provider.
            check(desired)

        if observed is None:
            if desired is None or refresh:
                # Nothing to reconcile, or nothing recorded to refresh.
                return ReconcileResult(Action.NOOP, TableStatus.ABSENT, None, [TableStatus.ABSENT])
            with self._claim([desired.name], None):
                return self._create(desired, _Cycle(name=desired.name, cancel=cancel, confirmed=None))

        names = sorted({observed.name, desired.name} if desired is not None else {observed.name})
        with self._claim(names, observed):
            cycle = _Cycle(name=observed.name, cancel=cancel, confirmed=observed)
            if refresh:
                return self._refresh(observed, cycle)
            if desired is None:
                return self._destroy(observed, cycle)
            return self._converge(desired, observed, cycle)

    def _create(self, desired: TableSpec, cycle: _Cycle) -> ReconcileResult:
        cycle.name = desired.name
        cycle.enter(TableStatus.ABSENT)
        cycle.enter(TableStatus.CREATING)
        state = self._call(cycle, "create_table", self._provider.create_table, desired)
        cycle.confirmed = state
        cycle.enter(TableStatus.ACTIVE)
        return self._result(Action.CREATE, cycle, state.with_status(TableStatus.ACTIVE))

    def _destroy(self, observed: TableState, cycle: _Cycle) -> ReconcileResult:
        cycle.name = observed.name
        cycle.enter(observed.status)
        cycle.enter(TableStatus.DESTROYING)
        self._call(cycle, "delete_table", self._provider.delete_table, observed.name)
        cycle.confirmed = None
        cycle.enter(TableStatus.ABSENT)
        return self._result(Action.DELETE, cycle, None)

    def _converge(self, desired: TableSpec, observed: TableState, cycle: _Cycle) -> ReconcileResult:
        changes = compute_changes(desired, observed)
        cycle.enter(observed.status)

        if changes.empty:
            if observed.status is not TableStatus.ACTIVE:
                cycle.enter(TableStatus.ACTIVE)
            return self._result(Action.NOOP, cycle, observed.with_status(TableStatus.ACTIVE), changes)

        if changes.requires_replacement:
            logger.info(f"{observed.name}: replacing ({', '.join(changes.replaces)} changed)")
            cycle.name = observed.name
            cycle.enter(TableStatus.DESTROYING)
            self._call(cycle, "delete_table", self._provider.delete_table, observed.name)
            cycle.confirmed = None
            cycle.enter(TableStatus.ABSENT)
            cycle.name = desired.name
            cycle.enter(TableStatus.CREATING)
            state = self._call(cycle, "create_table", self._provider.create_table, desired)
            cycle.confirmed = state
            cycle.enter(TableStatus.ACTIVE)
            return self._result(Action.REPLACE, cycle, state.with_status(TableStatus.ACTIVE), changes)

        cycle.enter(TableStatus.UPDATING)
        state = self._call(cycle, "update_table", self._provider.update_table, observed.name, changes)
        cycle.confirmed = state
        cycle.enter(TableStatus.ACTIVE)
        return self._result(Action.UPDATE, cycle, state.with_status(TableStatus.ACTIVE), changes)

    def _refresh(self, observed: TableState, cycle: _Cycle) -> ReconcileResult:
        cycle.enter(observed.status)
        live = self._call(cycle, "describe_table", self._provider.describe_table, observed.name)
        if live is None:
            logger.warning(f"{observed.name}: table disappeared outside of tableops")
            cycle.enter(TableStatus.DRIFTED)
            return self._result(Action.DRIFT, cycle, None, drifted=["exists"])

        drift = compute_changes(observed.to_spec(), live)
        if drift.empty:
            if live.status is not observed.status:
                cycle.enter(live.status)
            return self._result(Action.NOOP, cycle, live)

        logger.warning(f"{observed.name}: drift detected in {', '.join(drift.fields)}")
        cycle.enter(TableStatus.DRIFTED)
        return self._result(
            Action.DRIFT, cycle, live.with_status(TableStatus.DRIFTED), drift, drifted=drift.fields
        )

    def _call(self, cycle: _Cycle, operation: str, fn: Callable[..., T], *args: Any) -> T:
        """Invoke a provider operation, retrying transient failures with backoff."""
        attempt = 0
        while True:
            attempt += 1
            if cycle.cancel is not None and cycle.cancel.cancelled:
                when = "before" if attempt == 1 else "while retrying"
                raise ReconcileCancelled(
                    f"{cycle.name}: cancelled {when} {operation}", state=cycle.confirmed
                )
            cycle.calls.append(operation)
            try:
                return self._invoke(cycle, operation, fn, *args)
            except TransientReconcileError as e:
                if attempt >= self._retry.max_attempts:
                    raise PermanentReconcileError(
                        f"{cycle.name}: {operation} still failing after {attempt} attempts: {e}",
                        last_response=e.last_response,
                        state=cycle.confirmed,
                    ) from e
                delay = self._retry.delay(attempt)
                logger.warning(
                    f"{cycle.name}: {operation} attempt {attempt}/{self._retry.max_attempts} failed ({e}); "
                    f"retrying in {delay:.1f}s"
                )
                self._sleep(delay)

    def _invoke(self, cycle: _Cycle, operation: str, fn: Callable[..., T], *args: Any) -> T:
        logger.debug(f"{cycle.name}: {operation}")
        try:
            return fn(*args)
        except ProviderError as e:
            if e.transient:
                raise TransientReconcileError(str(e), last_response=e.response, state=cycle.confirmed) from e
            raise PermanentReconcileError(
                f"{cycle.name}: {operation} failed: {e}",
                last_response=e.response,
                state=cycle.confirmed,
            ) from e

    def _result(
        self,
        action: Action,
        cycle: _Cycle,
        state: TableState | None,
        changes: ChangeSet | None = None,
        drifted: list[str] | None = None,
    ) -> ReconcileResult:
        return ReconcileResult(
            action=action,
            status=cycle.transitions[-1],
            state=state,
            transitions=list(cycle.transitions),
            changes=changes or ChangeSet(),
            provider_calls=list(cycle.calls),
            drifted_fields=drifted or [],
        )
