import pytest

from pdwrap import ExitWindow, RunResult, classify
from pdwrap.outcome import format_command


@pytest.mark.parametrize(
    ("code", "window", "expected"),
    [
        (0, ExitWindow(0, 0), True),
        (1, ExitWindow(0, 0), False),
        (-1, ExitWindow(0, 0), False),
        (1, ExitWindow(0, 2), True),
        (2, ExitWindow(0, 2), True),
        (3, ExitWindow(0, 2), False),
        (137, ExitWindow(1, 255), True),
        (0, ExitWindow(1, 255), False),
    ],
)
def test_exit_code_inside_window_is_ok(code: int, window: ExitWindow, expected: bool) -> None:
    verdict = classify(RunResult.exited(code), window, ["job"])
    assert verdict.ok is expected
    assert verdict.ok == (window.min <= code <= window.max)


def test_out_of_window_description_cites_code_and_command() -> None:
    verdict = classify(RunResult.exited(3), ExitWindow(0, 0), ["sh", "-c", "exit 3"])

    assert verdict.ok is False
    assert verdict.description == 'Command exited with unexpected code 3: sh -c "exit 3"'


def test_timeout_is_never_ok_even_with_in_window_code() -> None:
    verdict = classify(RunResult.timed_out_after(1, exit_code=0), ExitWindow(0, 255), ["sleep", "5"])

    assert verdict.ok is False
    assert verdict.description == "Command exceeded max runtime of 1s: sleep 5"


def test_classify_is_idempotent() -> None:
    result = RunResult.exited(4)
    window = ExitWindow(0, 3)

    assert classify(result, window, ["a", "b c"]) == classify(result, window, ["a", "b c"])


def test_format_command_quotes_whitespace_arguments() -> None:
    assert format_command(["echo", "two words", "tab\there", "plain"]) == 'echo "two words" "tab\there" plain'


def test_exit_window_rejects_inverted_range() -> None:
    with pytest.raises(ValueError, match="exit_min must be less than or equal to exit_max"):
        ExitWindow(2, 1)
