from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from .execution.types import ExitWindow, RunResult

_WHITESPACE = re.compile(r"\s")


@dataclass(frozen=True, slots=True)
class Verdict:
    """Success/failure decision for one run plus a human-readable description.

    Example:
        ```python
        verdict = Verdict(ok=False, description="Command exited with unexpected code 3: false")
        ```
    """

    ok: bool
    description: str


def format_command(command: Sequence[str]) -> str:
    """Join argv for display, double-quoting arguments that contain whitespace.

    Example:
        ```python
        assert format_command(["sh", "-c", "exit 3"]) == 'sh -c "exit 3"'
        ```
    """
    return " ".join(f'"{part}"' if _WHITESPACE.search(part) else part for part in command)


def classify(result: RunResult, window: ExitWindow, command: Sequence[str]) -> Verdict:
    """Decide whether a run succeeded against the configured exit window.

    A timeout is always a failure. Otherwise the run succeeds exactly when its
    exit code lies inside `window`.

    Example:
        ```python
        verdict = classify(RunResult.exited(0), ExitWindow(0, 0), ["echo", "hello"])
        assert verdict.ok
        ```
    """
    cmdline = format_command(command)
    if result.timed_out:
        return Verdict(
            ok=False,
            description=f"Command exceeded max runtime of {result.timeout_seconds}s: {cmdline}",
        )
    if result.exit_code is None:
        raise ValueError("An exited RunResult must carry an exit code")
    if window.contains(result.exit_code):
        return Verdict(ok=True, description=f"Command exited with code {result.exit_code}: {cmdline}")
    return Verdict(
        ok=False,
        description=f"Command exited with unexpected code {result.exit_code}: {cmdline}",
    )
