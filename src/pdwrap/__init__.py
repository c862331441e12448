from .alerts import Alert, AlertChannel, DispatchResult, PagerDutyChannel, dispatch_alert
from .config import WrapperConfig, load_config
from .execution import (
    CapturedLine,
    ExitWindow,
    LineBuffer,
    LogSinkError,
    ProcessSupervisor,
    RunResult,
    SpawnError,
    Stream,
)
from .outcome import Verdict, classify
from .runner import WrapOutcome, run_command

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "Alert",
    "AlertChannel",
    "CapturedLine",
    "DispatchResult",
    "ExitWindow",
    "LineBuffer",
    "LogSinkError",
    "PagerDutyChannel",
    "ProcessSupervisor",
    "RunResult",
    "SpawnError",
    "Stream",
    "Verdict",
    "WrapOutcome",
    "WrapperConfig",
    "classify",
    "dispatch_alert",
    "load_config",
    "run_command",
]
