from __future__ import annotations

import signal
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S %z"
TAG_WIDTH = 6
KILL_SIGNAL = signal.SIGKILL


class SpawnError(RuntimeError):
    """Raised when the child command cannot be started."""


class LogSinkError(RuntimeError):
    """Raised when the transcript log file cannot be opened or written."""


class Stream(str, Enum):
    """Origin of a captured line.

    Example:
        ```python
        tag = Stream.STDOUT.value
        ```
    """

    STDIN = "STDIN"
    STDOUT = "STDOUT"
    STDERR = "STDERR"


def local_now() -> datetime:
    """Return the current local time truncated to whole seconds.

    Example:
        ```python
        stamp = local_now().strftime(TIMESTAMP_FORMAT)
        ```
    """
    return datetime.now().astimezone().replace(microsecond=0)


def format_record(timestamp: datetime, tag: str, text: str) -> str:
    """Render one `<timestamp> <TAG> <text>` record without a line terminator.

    Example:
        ```python
        format_record(local_now(), "STATUS", "3")
        ```
    """
    return f"{timestamp.strftime(TIMESTAMP_FORMAT)} {tag:<{TAG_WIDTH}} {text}"


def normalize_status(returncode: int) -> int:
    """Map a Popen return code to a shell-style exit status.

    Negative codes (death by signal N) become ``128 + N``.

    Example:
        ```python
        assert normalize_status(-signal.SIGKILL) == 137
        ```
    """
    if returncode < 0:
        return 128 - returncode
    return returncode


@dataclass(frozen=True, slots=True)
class CapturedLine:
    """One timestamped line observed on a child or wrapper stream.

    Example:
        ```python
        line = CapturedLine(local_now(), Stream.STDOUT, "hello")
        ```
    """

    timestamp: datetime
    stream: Stream
    text: str

    @classmethod
    def from_raw(cls, stream: Stream, raw: bytes, timestamp: datetime | None = None) -> "CapturedLine":
        """Decode a raw line and strip its terminator and trailing whitespace.

        Example:
            ```python
            line = CapturedLine.from_raw(Stream.STDERR, b"oops  \\r\\n")
            assert line.text == "oops"
            ```
        """
        text = raw.decode("utf-8", errors="replace").rstrip()
        return cls(timestamp=timestamp or local_now(), stream=stream, text=text)

    def render(self) -> str:
        """Render the line in transcript/log record format.

        Example:
            ```python
            text = line.render()
            ```
        """
        return format_record(self.timestamp, self.stream.value, self.text)


@dataclass(frozen=True, slots=True)
class ExitWindow:
    """Inclusive range of exit codes considered a successful run.

    Example:
        ```python
        window = ExitWindow(0, 1)
        assert window.contains(1)
        ```
    """

    min: int = 0
    max: int = 0

    def __post_init__(self) -> None:
        """Reject inverted windows.

        Example:
            ```python
            ExitWindow(0, 0)
            ```
        """
        if self.min > self.max:
            raise ValueError("exit_min must be less than or equal to exit_max")

    def contains(self, code: int) -> bool:
        """Return True when `code` lies inside the window.

        Example:
            ```python
            ExitWindow(0, 2).contains(3)
            ```
        """
        return self.min <= code <= self.max


@dataclass(frozen=True, slots=True)
class RunResult:
    """Terminal outcome of one supervised run.

    ``exit_code`` is the normalized status of the reaped child. For a timed
    out run it is the killed-state code, or None when the child could not be
    reaped.

    Example:
        ```python
        result = RunResult.exited(0)
        ```
    """

    exit_code: int | None
    timed_out: bool = False
    timeout_seconds: int = 0

    @classmethod
    def exited(cls, code: int) -> "RunResult":
        """Build an Exited(code) result.

        Example:
            ```python
            RunResult.exited(3)
            ```
        """
        return cls(exit_code=code)

    @classmethod
    def timed_out_after(cls, seconds: int, exit_code: int | None = None) -> "RunResult":
        """Build a TimedOut(seconds) result.

        Example:
            ```python
            RunResult.timed_out_after(1, exit_code=137)
            ```
        """
        return cls(exit_code=exit_code, timed_out=True, timeout_seconds=seconds)


class ResultLatch:
    """Write-once record of the first terminal outcome of a run.

    Shared between the supervisor loop and the timeout timer thread.

    Example:
        ```python
        latch = ResultLatch()
        latch.latch_timed_out(1)
        assert not latch.latch_exited(0)
        ```
    """

    def __init__(self) -> None:
        """Create an empty latch.

        Example:
            ```python
            latch = ResultLatch()
            ```
        """
        self._lock = threading.Lock()
        self._exit_code: int | None = None
        self._timeout_seconds: int | None = None

    @property
    def settled(self) -> bool:
        """True once any terminal outcome has been latched.

        Example:
            ```python
            latch.settled
            ```
        """
        with self._lock:
            return self._exit_code is not None or self._timeout_seconds is not None

    @property
    def timed_out(self) -> bool:
        """True when the latched outcome is a timeout.

        Example:
            ```python
            latch.timed_out
            ```
        """
        with self._lock:
            return self._timeout_seconds is not None

    def latch_exited(self, code: int) -> bool:
        """Record Exited(code) unless an outcome is already latched.

        Example:
            ```python
            latch.latch_exited(0)
            ```
        """
        with self._lock:
            if self._exit_code is not None or self._timeout_seconds is not None:
                return False
            self._exit_code = code
            return True

    def latch_timed_out(self, seconds: int) -> bool:
        """Record TimedOut(seconds) unless an outcome is already latched.

        Example:
            ```python
            latch.latch_timed_out(5)
            ```
        """
        with self._lock:
            if self._exit_code is not None or self._timeout_seconds is not None:
                return False
            self._timeout_seconds = seconds
            return True

    def result(self, reaped_status: int | None) -> RunResult:
        """Freeze the latched outcome into a RunResult.

        Example:
            ```python
            result = latch.result(reaped_status=137)
            ```
        """
        with self._lock:
            if self._timeout_seconds is not None:
                return RunResult.timed_out_after(self._timeout_seconds, reaped_status)
            if self._exit_code is not None:
                return RunResult.exited(self._exit_code)
        if reaped_status is None:
            raise RuntimeError("Run finished without a latched outcome")
        return RunResult.exited(reaped_status)

