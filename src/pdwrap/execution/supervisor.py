from __future__ import annotations

import contextlib
import io
import logging
import os
import selectors
import subprocess
from dataclasses import dataclass, field
from functools import partial
from typing import IO, BinaryIO, Sequence

from .timeout import TimeoutController
from .transcript import LineBuffer, LineSplitter
from .types import KILL_SIGNAL, ResultLatch, RunResult, SpawnError, Stream, normalize_status

logger = logging.getLogger(__name__)

READ_CHUNK_BYTES = 65536
# Bytes queued for the child before reading our own stdin pauses.
STDIN_QUEUE_LIMIT = 65536


def _kill_group(proc: subprocess.Popen[bytes]) -> None:
    """Send the kill signal to every process in the child's process group.

    Example:
        ```python
        _kill_group(proc)
        ```
    """
    os.killpg(proc.pid, KILL_SIGNAL)


def _new_selector() -> selectors.BaseSelector:
    """Return a selector that also accepts regular files (e.g. stdin redirected from a file).

    Example:
        ```python
        with _new_selector() as selector:
            selector.register(fd, selectors.EVENT_READ)
        ```
    """
    if hasattr(selectors, "PollSelector"):
        return selectors.PollSelector()
    return selectors.DefaultSelector()


def _fileno_or_none(stream: IO[bytes] | None) -> int | None:
    """Return the descriptor behind `stream`, or None if it has none.

    Example:
        ```python
        fd = _fileno_or_none(sys.stdin.buffer)
        ```
    """
    if stream is None:
        return None
    try:
        return stream.fileno()
    except (io.UnsupportedOperation, ValueError, OSError):
        return None


@dataclass(slots=True)
class _Source:
    """Readable descriptor registered with the loop's selector.

    Example:
        ```python
        source = _Source(Stream.STDOUT, proc.stdout.fileno())
        ```
    """

    stream: Stream
    fd: int
    echo: BinaryIO | None = None
    splitter: LineSplitter = field(default_factory=LineSplitter)
    paused: bool = False
    done: bool = False


class _ChildInput:
    """Non-blocking, queued writer for the child's stdin pipe.

    Example:
        ```python
        child_in = _ChildInput(proc.stdin, selector)
        child_in.send(b"yes\\n")
        ```
    """

    def __init__(self, pipe: IO[bytes] | None, selector: selectors.BaseSelector) -> None:
        """Wrap the child's stdin pipe and switch it to non-blocking mode.

        Example:
            ```python
            child_in = _ChildInput(proc.stdin, selectors.DefaultSelector())
            ```
        """
        self._pipe = pipe
        self._selector = selector
        self._pending = bytearray()
        self._finishing = False
        self._watching = False
        if pipe is not None:
            os.set_blocking(pipe.fileno(), False)

    @property
    def open(self) -> bool:
        """True while lines can still be forwarded to the child.

        Example:
            ```python
            child_in.open
            ```
        """
        return self._pipe is not None and not self._finishing

    @property
    def backlogged(self) -> bool:
        """True while the queue holds at least `STDIN_QUEUE_LIMIT` unwritten bytes.

        Example:
            ```python
            if child_in.backlogged:
                selector.unregister(stdin_fd)
            ```
        """
        return len(self._pending) >= STDIN_QUEUE_LIMIT

    def send(self, data: bytes) -> None:
        """Queue `data` for the child and write as much as the pipe accepts.

        Example:
            ```python
            child_in.send(b"input line\\n")
            ```
        """
        if not self.open:
            return
        self._pending.extend(data)
        self.drain()

    def drain(self) -> None:
        """Write queued bytes until the pipe would block.

        Example:
            ```python
            child_in.drain()
            ```
        """
        if self._pipe is None:
            return
        fd = self._pipe.fileno()
        while self._pending:
            try:
                written = os.write(fd, self._pending)
            except BlockingIOError:
                break
            except BrokenPipeError:
                logger.debug("Child closed its stdin; dropping %d queued byte(s)", len(self._pending))
                self._pending.clear()
                self.close()
                return
            del self._pending[:written]
        if not self._pending and self._finishing:
            self.close()
            return
        self._watch(bool(self._pending))

    def finish(self) -> None:
        """Close the pipe once the queue has been written out.

        Example:
            ```python
            child_in.finish()
            ```
        """
        self._finishing = True
        self.drain()

    def close(self) -> None:
        """Close the pipe immediately, discarding anything still queued.

        Example:
            ```python
            child_in.close()
            ```
        """
        if self._pipe is None:
            return
        self._watch(False)
        with contextlib.suppress(BrokenPipeError):
            self._pipe.close()
        self._pipe = None

    def _watch(self, wanted: bool) -> None:
        """Register or drop write interest for the pipe.

        Example:
            ```python
            child_in._watch(True)
            ```
        """
        if self._pipe is None or wanted == self._watching:
            return
        if wanted:
            self._selector.register(self._pipe.fileno(), selectors.EVENT_WRITE, self)
        else:
            self._selector.unregister(self._pipe.fileno())
        self._watching = wanted


def _throttle(source: _Source, selector: selectors.BaseSelector, child_in: _ChildInput) -> None:
    """Pause reading `source` while the child input queue is backlogged, resume once it drains.

    Example:
        ```python
        _throttle(stdin_source, selector, child_in)
        ```
    """
    if source.done:
        return
    if child_in.backlogged and not source.paused:
        selector.unregister(source.fd)
        source.paused = True
    elif source.paused and not child_in.backlogged:
        selector.register(source.fd, selectors.EVENT_READ, source)
        source.paused = False


class ProcessSupervisor:
    """Spawn a command and drive its I/O until it exits or times out.

    One loop thread multiplexes the wrapper's stdin, the child's stdout and
    stderr, and a bounded poll tick. Lines land in the `LineBuffer` in the
    order their sources were observed ready; ordering across streams is
    best-effort only.

    Example:
        ```python
        buffer = LineBuffer()
        result = ProcessSupervisor(buffer, timeout_seconds=10).run(["echo", "hello"])
        ```
    """

    def __init__(
        self,
        buffer: LineBuffer,
        *,
        timeout_seconds: int = 0,
        poll_interval: float = 1.0,
        kill_grace_seconds: float = 1.0,
        stdin: IO[bytes] | None = None,
        echo_stdout: BinaryIO | None = None,
        echo_stderr: BinaryIO | None = None,
    ) -> None:
        """Configure one supervised run.

        Example:
            ```python
            supervisor = ProcessSupervisor(LineBuffer(), stdin=sys.stdin.buffer, echo_stdout=sys.stdout.buffer)
            ```
        """
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self._buffer = buffer
        self._timeout_seconds = timeout_seconds
        self._poll_interval = poll_interval
        self._kill_grace_seconds = kill_grace_seconds
        self._stdin = stdin
        self._echo_stdout = echo_stdout
        self._echo_stderr = echo_stderr

    def run(self, command: Sequence[str]) -> RunResult:
        """Run `command` to completion and return its latched outcome.

        Example:
            ```python
            result = supervisor.run(["sh", "-c", "exit 3"])
            assert result.exit_code == 3
            ```
        """
        argv = [str(part) for part in command]
        if not argv:
            raise ValueError("command must not be empty")
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                process_group=0,
            )
        except OSError as exc:
            raise SpawnError(f"Failed to launch command: {exc}") from exc
        logger.debug("Spawned pid %d: %s", proc.pid, argv)

        latch = ResultLatch()
        controller = TimeoutController(
            latch,
            kill=partial(_kill_group, proc),
            reap=proc.poll,
            grace_seconds=self._kill_grace_seconds,
        )
        controller.arm(self._timeout_seconds)
        try:
            self._multiplex(proc, latch, controller)
        except BaseException:
            controller.disarm()
            with contextlib.suppress(ProcessLookupError, PermissionError):
                _kill_group(proc)
            self._reap(proc)
            raise
        finally:
            self._buffer.freeze()
            for pipe in (proc.stdin, proc.stdout, proc.stderr):
                if pipe is not None:
                    with contextlib.suppress(BrokenPipeError):
                        pipe.close()
        controller.disarm()
        if controller.kill_error is not None:
            logger.warning(
                "Failed to signal process group after %ss timeout: %s", self._timeout_seconds, controller.kill_error
            )
        if controller.reap_error is not None:
            logger.debug("Non-blocking reap after timeout failed: %s", controller.reap_error)
        return latch.result(self._reap(proc))

    def _multiplex(
        self,
        proc: subprocess.Popen[bytes],
        latch: ResultLatch,
        controller: TimeoutController,
    ) -> None:
        """Run the readiness loop until the child is gone and the pipes are quiet.

        Example:
            ```python
            supervisor._multiplex(proc, ResultLatch(), controller)
            ```
        """
        assert proc.stdout is not None and proc.stderr is not None
        with _new_selector() as selector:
            child_in = _ChildInput(proc.stdin, selector)
            sources = [
                _Source(Stream.STDOUT, proc.stdout.fileno(), self._echo_stdout),
                _Source(Stream.STDERR, proc.stderr.fileno(), self._echo_stderr),
            ]
            stdin_fd = _fileno_or_none(self._stdin)
            stdin_source: _Source | None = None
            if stdin_fd is None:
                child_in.finish()
            else:
                stdin_source = _Source(Stream.STDIN, stdin_fd)
                sources.append(stdin_source)
            for source in sources:
                selector.register(source.fd, selectors.EVENT_READ, source)

            while True:
                if not latch.settled:
                    returncode = proc.poll()
                    if returncode is not None and latch.latch_exited(normalize_status(returncode)):
                        controller.disarm()
                        logger.debug("Child %d exited with %d", proc.pid, returncode)

                active = False
                for key, _mask in selector.select(self._poll_interval):
                    if isinstance(key.data, _ChildInput):
                        key.data.drain()
                    else:
                        active = self._service(key.data, selector, latch, child_in) or active

                if stdin_source is not None:
                    _throttle(stdin_source, selector, child_in)

                # After a timeout, keep draining until the grace wait and reap are over.
                if latch.settled and not active and (not latch.timed_out or controller.finished):
                    break

            for source in sources:
                tail = source.splitter.flush()
                if tail is not None and source.stream is not Stream.STDIN:
                    self._deliver(source, tail, latch, child_in)
            child_in.close()

    def _service(
        self,
        source: _Source,
        selector: selectors.BaseSelector,
        latch: ResultLatch,
        child_in: _ChildInput,
    ) -> bool:
        """Read one ready source and deliver its complete lines.

        Returns True when the read produced data that counts as activity.

        Example:
            ```python
            active = supervisor._service(source, selector, latch, child_in)
            ```
        """
        try:
            chunk = os.read(source.fd, READ_CHUNK_BYTES)
        except BlockingIOError:
            return False
        if chunk:
            lines = source.splitter.feed(chunk)
        else:
            selector.unregister(source.fd)
            source.done = True
            tail = source.splitter.flush()
            lines = [tail] if tail is not None else []

        discarded = source.stream is Stream.STDIN and (latch.settled or not child_in.open)
        for raw in lines:
            self._deliver(source, raw, latch, child_in)
        if not chunk and source.stream is Stream.STDIN:
            child_in.finish()
        return not discarded and (bool(chunk) or bool(lines))

    def _deliver(self, source: _Source, raw: bytes, latch: ResultLatch, child_in: _ChildInput) -> None:
        """Forward, echo and record one raw line from `source`.

        Example:
            ```python
            supervisor._deliver(source, b"hello\\n", latch, child_in)
            ```
        """
        if source.stream is Stream.STDIN:
            if latch.settled or not child_in.open:
                return
            child_in.send(raw)
            self._buffer.record(Stream.STDIN, raw)
            return
        self._buffer.record(source.stream, raw)
        if source.echo is not None:
            try:
                source.echo.write(raw)
                source.echo.flush()
            except BrokenPipeError:
                logger.warning("%s passthrough closed; disabling echo", source.stream.value)
                source.echo = None

    def _reap(self, proc: subprocess.Popen[bytes]) -> int | None:
        """Wait for the child exactly once and return its normalized status.

        Example:
            ```python
            status = supervisor._reap(proc)
            ```
        """
        try:
            returncode = proc.wait(timeout=self._kill_grace_seconds + self._poll_interval)
        except subprocess.TimeoutExpired:
            logger.warning("Child %d still running after loop end; killing it", proc.pid)
            with contextlib.suppress(ProcessLookupError, PermissionError):
                _kill_group(proc)
            try:
                returncode = proc.wait(timeout=self._kill_grace_seconds)
            except subprocess.TimeoutExpired:
                logger.error("Child %d could not be reaped", proc.pid)
                return None
        return normalize_status(returncode)
