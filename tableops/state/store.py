"""State store collaborator: last-known TableState between reconciliation cycles."""

from pathlib import Path
from typing import Protocol

import yaml

from tableops.lifecycle.state import TableState


class StateStore(Protocol):
    def read(self, name: str) -> TableState | None:
        ...

    def write(self, state: TableState) -> None:
        ...

    def delete(self, name: str) -> None:
        ...


class YamlStateStore:
    """One YAML file per table name under directory.

    Also records, per table document path, the table name that document
    manages, so a renamed document still finds its previous state.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def _path(self, name: str) -> Path:
        return self._directory / f"{name}.yaml"

    def read(self, name: str) -> TableState | None:
        path = self._path(name)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        if not isinstance(data, dict):
            return None
        return TableState.from_dict(data)

    def write(self, state: TableState) -> None:
        path = self._path(state.name)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(state.to_dict(), f, default_flow_style=False, sort_keys=False)

    def delete(self, name: str) -> None:
        self._path(name).unlink(missing_ok=True)

    # Document index: resolved document path -> table name it last produced.
    # Top-level <name>.yaml files are table states; the index lives below them.

    def _index_path(self) -> Path:
        return self._directory / "documents" / "index.yaml"

    def _load_index(self) -> dict[str, str]:
        path = self._index_path()
        if not path.exists():
            return {}
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}

    def _save_index(self, index: dict[str, str]) -> None:
        path = self._index_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(index, f, default_flow_style=False, sort_keys=True)

    def managed_name(self, document: str | Path) -> str | None:
        """Table name last recorded for document, if any."""
        return self._load_index().get(str(Path(document).resolve()))

    def record_document(self, document: str | Path, name: str) -> None:
        index = self._load_index()
        index[str(Path(document).resolve())] = name
        self._save_index(index)

    def forget_document(self, document: str | Path) -> None:
        index = self._load_index()
        if index.pop(str(Path(document).resolve()), None) is not None:
            self._save_index(index)
