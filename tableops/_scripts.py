"""Runnable scripts for common dev tasks. Use: uv run <script-name> (see pyproject.toml)."""

from pathlib import Path
import subprocess
import sys

FIXTURES_DIR = Path(__file__).resolve().parent.parent / "fixtures"


def _run(args: list[str]) -> None:
    """Run a command; exit with its code."""
    sys.exit(subprocess.run(args).returncode)


def lint() -> None:
    """Run ruff check on tableops and tests."""
    _run([sys.executable, "-m", "ruff", "check", "tableops", "tests"])


def format() -> None:
    """Run ruff format on tableops and tests."""
    _run([sys.executable, "-m", "ruff", "format", "tableops", "tests"])


def type_check() -> None:
    """Run pyright on tableops."""
    _run([sys.executable, "-m", "pyright", "tableops"])


def test() -> None:
    """Run pytest."""
    _run([sys.executable, "-m", "pytest", "tests/", "-v"])


def test_cov() -> None:
    """Run pytest with a coverage report for tableops."""
    _run([sys.executable, "-m", "pytest", "tests/", "--cov=tableops", "--cov-report=term-missing", "-v"])


def validate_fixtures() -> None:
    """Run `tableops validate` on every fixture document; exit non-zero on the first failure."""
    paths = sorted(FIXTURES_DIR.glob("*.yaml"))
    if not paths:
        print(f"no fixtures under {FIXTURES_DIR}", file=sys.stderr)
        sys.exit(1)
    for path in paths:
        code = subprocess.run([sys.executable, "-m", "tableops.cli", "validate", str(path)]).returncode
        if code != 0:
            sys.exit(code)
    sys.exit(0)
