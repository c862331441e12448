from pathlib import Path


def _readme() -> str:
    root = Path(__file__).resolve().parents[1]
    return (root / "README.md").read_text(encoding="utf-8")


def test_readme_documents_exit_codes() -> None:
    readme = _readme()

    assert "## Exit codes" in readme
    assert "`128 + N`" in readme
    assert "never changes the exit code" in readme


def test_readme_lists_config_precedence() -> None:
    readme = _readme()

    assert "## Configuration files" in readme
    assert readme.index("`/etc/pdwrap.toml`") < readme.index("`~/.pdwrap.toml`") < readme.index("`./.pdwrap.toml`")


def test_readme_states_cross_stream_ordering_is_best_effort() -> None:
    assert "best-effort only" in _readme()
