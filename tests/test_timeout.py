import time

from pdwrap.execution import ResultLatch, TimeoutController
from pdwrap.execution.types import RunResult


class _Recorder:
    def __init__(self) -> None:
        self.kills = 0
        self.reaps = 0

    def kill(self) -> None:
        self.kills += 1

    def reap(self) -> None:
        self.reaps += 1


def test_latch_keeps_first_timeout_over_later_exit() -> None:
    latch = ResultLatch()

    assert latch.latch_timed_out(1) is True
    assert latch.latch_exited(0) is False
    assert latch.timed_out
    assert latch.result(reaped_status=137) == RunResult.timed_out_after(1, exit_code=137)


def test_latch_keeps_first_exit_over_later_timeout() -> None:
    latch = ResultLatch()

    assert latch.latch_exited(3) is True
    assert latch.latch_timed_out(1) is False
    assert not latch.timed_out
    assert latch.result(reaped_status=3) == RunResult.exited(3)


def test_arm_with_non_positive_seconds_is_unbounded() -> None:
    recorder = _Recorder()
    controller = TimeoutController(ResultLatch(), kill=recorder.kill, reap=recorder.reap, grace_seconds=0)

    controller.arm(0)
    controller.arm(-5)

    assert not controller.armed
    assert controller.wait(0.1) is False
    assert recorder.kills == 0


def test_expiry_latches_timeout_then_kills_and_reaps() -> None:
    latch = ResultLatch()
    recorder = _Recorder()
    controller = TimeoutController(latch, kill=recorder.kill, reap=recorder.reap, grace_seconds=0)

    controller.arm(1)
    assert controller.armed
    assert controller.wait(5) is True

    assert controller.fired
    assert controller.finished
    assert latch.timed_out
    assert recorder.kills == 1
    assert recorder.reaps == 1


def test_disarm_prevents_expiry() -> None:
    latch = ResultLatch()
    recorder = _Recorder()
    controller = TimeoutController(latch, kill=recorder.kill, reap=recorder.reap, grace_seconds=0)

    controller.arm(1)
    controller.disarm()
    time.sleep(1.3)

    assert not controller.fired
    assert not latch.settled
    assert recorder.kills == 0


def test_expiry_after_exit_does_not_kill() -> None:
    latch = ResultLatch()
    latch.latch_exited(0)
    recorder = _Recorder()
    controller = TimeoutController(latch, kill=recorder.kill, reap=recorder.reap, grace_seconds=0)

    controller.arm(1)
    time.sleep(1.3)

    assert not controller.fired
    assert recorder.kills == 0
    assert latch.result(reaped_status=0) == RunResult.exited(0)


def test_kill_failure_is_tolerated() -> None:
    latch = ResultLatch()
    reaps: list[bool] = []

    def _kill() -> None:
        raise ProcessLookupError("no such process group")

    controller = TimeoutController(latch, kill=_kill, reap=lambda: reaps.append(True), grace_seconds=0)
    controller.arm(1)

    assert controller.wait(5) is True
    assert latch.timed_out
    assert reaps == [True]
    assert isinstance(controller.kill_error, ProcessLookupError)
    assert controller.reap_error is None


def test_not_finished_while_inside_grace_window() -> None:
    latch = ResultLatch()
    recorder = _Recorder()
    controller = TimeoutController(latch, kill=recorder.kill, reap=recorder.reap, grace_seconds=1.0)

    controller.arm(1)
    deadline = time.monotonic() + 5
    while not controller.fired and time.monotonic() < deadline:
        time.sleep(0.05)

    assert controller.fired
    assert not controller.finished
    assert controller.wait(5) is True
    assert controller.finished
    assert recorder.reaps == 1
