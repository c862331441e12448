import re
import tomllib
from pathlib import Path


def _project_root() -> Path:
    return Path(__file__).resolve().parents[1]


def test_make_test_target_runs_lint_type_and_pytest() -> None:
    makefile = (_project_root() / "Makefile").read_text(encoding="utf-8")
    start = makefile.index("test:\n")
    end = makefile.index("\n\nlint:\n")
    block = makefile[start:end]

    assert "uv run --extra dev ruff check ." in block
    assert "uv run --extra dev mypy" in block
    assert "uv run --extra dev pytest" in block


def test_check_version_target_compares_pyproject_with_package_version() -> None:
    makefile = (_project_root() / "Makefile").read_text(encoding="utf-8")
    start = makefile.index("check-version:\n")
    block = makefile[start:]

    assert "src/pdwrap/__init__.py" in block
    assert '"$$pyproject_version" != "$$package_version"' in block
    assert "exit 1" in block


def test_pyproject_version_matches_package_version() -> None:
    root = _project_root()
    pyproject = tomllib.loads((root / "pyproject.toml").read_text(encoding="utf-8"))
    init_text = (root / "src" / "pdwrap" / "__init__.py").read_text(encoding="utf-8")
    match = re.search(r'^__version__ = "(.+)"$', init_text, re.MULTILINE)

    assert match is not None
    assert pyproject["project"]["version"] == match.group(1)
