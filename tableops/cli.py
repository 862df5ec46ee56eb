"""
tableops CLI: validate, plan, apply, refresh, destroy one table document.
State lives under .tableops/state/ (see .tableops/config.yaml for region, endpoint, retries).
"""

from pathlib import Path
import sys

from loguru import logger

from tableops.config import EngineSettings, TableConfig, load_engine_settings
from tableops.errors import InvariantError, ReconcileError, TableOpsError, ValidationError
from tableops.lifecycle.diff import ChangeSet, compute_changes
from tableops.lifecycle.reconciler import Reconciler, ReconcileResult
from tableops.lifecycle.state import TableState
from tableops.log import setup_logger
from tableops.provider.dynamodb import DynamoDBTableProvider
from tableops.spec.model import TableSpec
from tableops.state.store import YamlStateStore


def _load_spec(path: str) -> TableSpec:
    config = TableConfig.from_file(path)
    try:
        return config.table_spec()
    except (ValidationError, InvariantError) as e:
        print(f"{path}: {type(e).__name__}: {e}", file=sys.stderr)
        sys.exit(1)


def _store(settings: EngineSettings) -> YamlStateStore:
    state_dir = Path(settings.state_dir)
    if not state_dir.is_absolute():
        state_dir = Path.cwd() / state_dir
    return YamlStateStore(state_dir)


def _provider(settings: EngineSettings) -> DynamoDBTableProvider:
    return DynamoDBTableProvider(settings.region, endpoint_url=settings.endpoint_url)


def _print_changes(changes: ChangeSet) -> None:
    for c in changes.changes:
        marker = "-/+" if c.immutable else "~"
        print(f"  {marker} {c.field}: {c.old!r} -> {c.new!r}")


def _persist(store: YamlStateStore, name: str, state: TableState | None) -> None:
    if state is None:
        store.delete(name)
    else:
        store.write(state)


def _recorded(store: YamlStateStore, path: str, spec: TableSpec) -> TableState | None:
    """State for the table this document manages, following a rename of the document."""
    previous = store.managed_name(path)
    if previous is not None and previous != spec.name:
        state = store.read(previous)
        if state is not None:
            return state
    return store.read(spec.name)


def _report(result: ReconcileResult) -> None:
    name = result.state.name if result.state else ""
    path = " -> ".join(s.value for s in result.transitions)
    print(f"{name or 'table'}: {result.action.value} ({path})")
    _print_changes(result.changes)


# --- validate ---


def _cmd_validate(path: str) -> None:
    spec = _load_spec(path)
    print(f"{path}: table '{spec.name}' is valid ({spec.billing_mode.value})")


# --- plan ---


def _cmd_plan(path: str, settings: EngineSettings) -> None:
    spec = _load_spec(path)
    observed = _recorded(_store(settings), path, spec)
    if observed is None:
        print(f"{spec.name}: create")
        return
    changes = compute_changes(spec, observed)
    if changes.empty:
        print(f"{spec.name}: no changes")
    elif changes.requires_replacement:
        print(f"{spec.name}: replace ({', '.join(changes.replaces)} changed)")
    else:
        print(f"{spec.name}: update")
    _print_changes(changes)


# --- apply ---


def _adopt(spec: TableSpec, provider: DynamoDBTableProvider) -> TableState | None:
    """Return the live table if one with this name exists and already matches spec."""
    live = provider.describe_table(spec.name)
    if live is None:
        return None
    if not compute_changes(spec, live).empty:
        print(
            f"Table '{spec.name}' already exists with a different configuration and is not "
            "managed by tableops. Remove it or align the document first.",
            file=sys.stderr,
        )
        sys.exit(1)
    logger.info(f"{spec.name}: adopting existing table {live.provider_identifier}")
    return live


def _cmd_apply(path: str, settings: EngineSettings) -> None:
    spec = _load_spec(path)
    store = _store(settings)
    provider = _provider(settings)
    observed = _recorded(store, path, spec)
    if observed is None:
        observed = _adopt(spec, provider)

    reconciler = Reconciler(provider, retry=settings.retry)
    try:
        result = reconciler.reconcile(spec, observed)
    except ReconcileError as e:
        # Record only what the provider confirmed.
        if observed is not None and (e.state is None or e.state.name != observed.name):
            store.delete(observed.name)
        if e.state is not None:
            store.write(e.state)
            store.record_document(path, e.state.name)
        else:
            store.forget_document(path)
        print(f"{spec.name}: {type(e).__name__}: {e}", file=sys.stderr)
        sys.exit(1)

    if observed is not None and observed.name != spec.name:
        store.delete(observed.name)
    _persist(store, spec.name, result.state)
    store.record_document(path, spec.name)
    _report(result)


# --- refresh ---


def _cmd_refresh(path: str, settings: EngineSettings) -> None:
    spec = _load_spec(path)
    store = _store(settings)
    observed = _recorded(store, path, spec)
    if observed is None:
        print(f"No state recorded for '{spec.name}'. Run: tableops apply {path}")
        return
    result = Reconciler(_provider(settings), retry=settings.retry).reconcile(None, observed, refresh=True)
    _persist(store, observed.name, result.state)
    if result.drifted_fields:
        print(f"{observed.name}: drifted ({', '.join(result.drifted_fields)}). Run apply to correct.")
        _print_changes(result.changes)
    else:
        print(f"{observed.name}: in sync ({result.status.value})")


# --- destroy ---


def _cmd_destroy(path: str, settings: EngineSettings, assume_yes: bool) -> None:
    spec = _load_spec(path)
    store = _store(settings)
    observed = _recorded(store, path, spec)
    if observed is None:
        print(f"No state recorded for '{spec.name}'.", file=sys.stderr)
        sys.exit(1)
    if not assume_yes:
        confirm = input(f"This will delete table '{observed.name}' and all of its data. Continue? [y/N]: ")
        if confirm.strip().lower() != "y":
            print("Cancelled.")
            sys.exit(0)
    result = Reconciler(_provider(settings), retry=settings.retry).reconcile(None, observed)
    store.delete(observed.name)
    store.forget_document(path)
    print(f"{observed.name}: {result.action.value} ({' -> '.join(s.value for s in result.transitions)})")


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        description="Provision a managed key-value table from a table document (validate, plan, apply, refresh, destroy)."
    )
    parser.add_argument("--log-level", default="INFO", help="Log level (DEBUG, INFO, WARNING, ...)")
    sub = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("validate", "Validate a table document without contacting the provider"),
        ("plan", "Show the changes apply would make against recorded state"),
        ("apply", "Create, update, or replace the table to match the document"),
        ("refresh", "Compare recorded state with the live table and report drift"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("table_yaml", help="Path to the table document")
    destroy_p = sub.add_parser("destroy", help="Delete the table described by the document")
    destroy_p.add_argument("table_yaml", help="Path to the table document")
    destroy_p.add_argument("-y", "--yes", action="store_true", help="Skip the confirmation prompt")
    args = parser.parse_args()

    setup_logger(args.log_level)

    try:
        if args.command == "validate":
            _cmd_validate(args.table_yaml)
            return
        settings = load_engine_settings()
        if args.command == "plan":
            _cmd_plan(args.table_yaml, settings)
        elif args.command == "apply":
            _cmd_apply(args.table_yaml, settings)
        elif args.command == "refresh":
            _cmd_refresh(args.table_yaml, settings)
        elif args.command == "destroy":
            _cmd_destroy(args.table_yaml, settings, args.yes)
        else:
            parser.print_help()
            sys.exit(1)
    except TableOpsError as e:
        print(f"{type(e).__name__}: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
