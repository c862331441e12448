from __future__ import annotations

import threading
import time
from typing import Callable

from .types import ResultLatch


class TimeoutController:
    """One-shot wall-clock deadline that force-terminates a run.

    The expiry callback runs on a timer thread. It only latches the timeout,
    signals the process group and attempts a non-blocking reap. Failures are
    kept on the controller for the supervisor loop to report; all transcript
    and log I/O stays on that loop.

    Example:
        ```python
        controller = TimeoutController(latch, kill=kill_group, reap=proc.poll)
        controller.arm(30)
        ```
    """

    def __init__(
        self,
        latch: ResultLatch,
        *,
        kill: Callable[[], None],
        reap: Callable[[], object],
        grace_seconds: float = 1.0,
    ) -> None:
        """Bind the controller to a run's latch and kill/reap actions.

        Example:
            ```python
            controller = TimeoutController(ResultLatch(), kill=lambda: None, reap=lambda: None)
            ```
        """
        self._latch = latch
        self._kill = kill
        self._reap = reap
        self._grace_seconds = grace_seconds
        self._timer: threading.Timer | None = None
        self._fired = threading.Event()
        self._seconds = 0
        self._kill_error: OSError | None = None
        self._reap_error: OSError | None = None

    @property
    def armed(self) -> bool:
        """True while a deadline is pending.

        Example:
            ```python
            controller.armed
            ```
        """
        return self._timer is not None and not self._fired.is_set()

    @property
    def fired(self) -> bool:
        """True once the deadline has expired and the run was latched as timed out.

        Example:
            ```python
            controller.fired
            ```
        """
        return self._fired.is_set()

    @property
    def finished(self) -> bool:
        """True once the deadline fired and the kill, grace wait and reap are all done.

        Example:
            ```python
            if controller.fired and not controller.finished:
                ...  # still inside the grace window
            ```
        """
        timer = self._timer
        return self.fired and timer is not None and not timer.is_alive()

    @property
    def kill_error(self) -> OSError | None:
        """Error raised while signalling the process group, if any.

        Example:
            ```python
            if controller.kill_error is not None:
                print(controller.kill_error)
            ```
        """
        return self._kill_error

    @property
    def reap_error(self) -> OSError | None:
        """Error raised by the non-blocking reap after the grace wait, if any.

        Example:
            ```python
            controller.reap_error
            ```
        """
        return self._reap_error

    def arm(self, seconds: int) -> None:
        """Schedule the deadline; `seconds <= 0` leaves the run unbounded.

        Example:
            ```python
            controller.arm(60)
            ```
        """
        if seconds <= 0:
            return
        if self._timer is not None:
            raise RuntimeError("Deadline is already armed")
        self._seconds = seconds
        self._timer = threading.Timer(seconds, self._expire)
        self._timer.daemon = True
        self._timer.start()

    def disarm(self) -> None:
        """Cancel a pending deadline; no effect after expiry.

        Example:
            ```python
            controller.disarm()
            ```
        """
        if self._timer is not None:
            self._timer.cancel()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the expiry callback has finished, or `timeout` elapses.

        Example:
            ```python
            controller.wait(2.0)
            ```
        """
        timer = self._timer
        if timer is None:
            return False
        timer.join(timeout)
        return self.fired and not timer.is_alive()

    def _expire(self) -> None:
        """Latch the timeout, kill the process group and reap best-effort.

        Example:
            ```python
            controller._expire()
            ```
        """
        if not self._latch.latch_timed_out(self._seconds):
            return
        self._fired.set()
        try:
            self._kill()
        except OSError as exc:
            self._kill_error = exc
        time.sleep(self._grace_seconds)
        try:
            self._reap()
        except OSError as exc:
            self._reap_error = exc
