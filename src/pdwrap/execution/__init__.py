from .supervisor import ProcessSupervisor
from .timeout import TimeoutController
from .transcript import LineBuffer, LineSplitter, TranscriptLog
from .types import (
    CapturedLine,
    ExitWindow,
    LogSinkError,
    ResultLatch,
    RunResult,
    SpawnError,
    Stream,
)

__all__ = [
    "CapturedLine",
    "ExitWindow",
    "LineBuffer",
    "LineSplitter",
    "LogSinkError",
    "ProcessSupervisor",
    "ResultLatch",
    "RunResult",
    "SpawnError",
    "Stream",
    "TimeoutController",
    "TranscriptLog",
]
