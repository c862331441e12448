from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import IO, BinaryIO, Sequence

from .alerts import AlertChannel, DispatchResult, PagerDutyChannel, dispatch_alert
from .config import WrapperConfig
from .execution.supervisor import ProcessSupervisor
from .execution.transcript import LineBuffer, TranscriptLog
from .execution.types import RunResult
from .outcome import Verdict, classify

logger = logging.getLogger(__name__)

INTERNAL_ERROR_EXIT_CODE = 1
ALERT_TAG = "ALERT"


@dataclass(slots=True)
class WrapOutcome:
    """Everything one invocation produced, returned by `run_command`.

    Example:
        ```python
        outcome = WrapOutcome(exit_code=0, result=RunResult.exited(0), verdict=verdict, transcript=LineBuffer())
        ```
    """

    exit_code: int
    result: RunResult
    verdict: Verdict
    transcript: LineBuffer
    dispatch: DispatchResult | None = None

    @property
    def alerted(self) -> bool:
        """True when an alert was attempted for this run.

        Example:
            ```python
            if outcome.alerted:
                print(outcome.dispatch)
            ```
        """
        return self.dispatch is not None


def _default_channel(config: WrapperConfig) -> AlertChannel:
    """Build the PagerDuty channel described by `config`.

    Example:
        ```python
        channel = _default_channel(WrapperConfig(api_key="abc123"))
        ```
    """
    return PagerDutyChannel(
        api_key=config.api_key,
        api_url=config.api_url,
        timeout_seconds=config.request_timeout_seconds,
    )


def _log_failure(log: TranscriptLog | None, result: RunResult) -> None:
    """Append the ALARM or STATUS record for a failed run.

    Example:
        ```python
        _log_failure(log, RunResult.exited(3))
        ```
    """
    if log is None:
        return
    if result.timed_out:
        log.write_event("ALARM", f"Timed-out after {result.timeout_seconds}s")
    else:
        log.write_event("STATUS", str(result.exit_code))
    log.flush()


def run_command(
    command: Sequence[str],
    config: WrapperConfig,
    *,
    channel: AlertChannel | None = None,
    stdin: IO[bytes] | None = None,
    stdout: BinaryIO | None = None,
    stderr: BinaryIO | None = None,
) -> WrapOutcome:
    """Supervise `command`, classify the run and alert on failure.

    Raises LogSinkError or SpawnError before any alert when the log cannot be
    opened or the command cannot be started. The returned exit code is the
    child's own, whether or not the run failed or the alert was delivered.

    Example:
        ```python
        outcome = run_command(["sh", "-c", "exit 3"], WrapperConfig(api_key="abc123"))
        assert outcome.exit_code == 3
        ```
    """
    argv = list(command)
    log = TranscriptLog.open(config.log_path) if config.log_path else None
    try:
        buffer = LineBuffer(log=log)
        supervisor = ProcessSupervisor(
            buffer,
            timeout_seconds=config.timeout_seconds,
            poll_interval=config.poll_interval,
            kill_grace_seconds=config.kill_grace_seconds,
            stdin=stdin,
            echo_stdout=stdout if config.echo_stdout else None,
            echo_stderr=stderr if config.echo_stderr else None,
        )
        result = supervisor.run(argv)
        verdict = classify(result, config.exit_window, argv)
        dispatch: DispatchResult | None = None
        if not verdict.ok:
            _log_failure(log, result)
            dispatch = dispatch_alert(verdict.description, buffer, channel or _default_channel(config))
            if log is not None:
                log.write_event(ALERT_TAG, "OKAY" if dispatch.ok else (dispatch.error or "unknown error"))
        else:
            logger.debug(verdict.description)
    finally:
        if log is not None:
            log.close()

    exit_code = result.exit_code if result.exit_code is not None else INTERNAL_ERROR_EXIT_CODE
    return WrapOutcome(
        exit_code=exit_code,
        result=result,
        verdict=verdict,
        transcript=buffer,
        dispatch=dispatch,
    )
