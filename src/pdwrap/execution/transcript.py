from __future__ import annotations

import logging
from pathlib import Path
from typing import TextIO

from .types import CapturedLine, LogSinkError, Stream, format_record, local_now

logger = logging.getLogger(__name__)


class LineSplitter:
    """Accumulate raw pipe chunks and hand back complete lines.

    Lines keep their ``\\n`` terminator so they can be forwarded or echoed
    verbatim. Bytes after the last terminator stay pending until more data or
    EOF arrives.

    Example:
        ```python
        splitter = LineSplitter()
        assert splitter.feed(b"a\\nb") == [b"a\\n"]
        assert splitter.flush() == b"b"
        ```
    """

    def __init__(self) -> None:
        """Create an empty splitter.

        Example:
            ```python
            splitter = LineSplitter()
            ```
        """
        self._pending = bytearray()

    @property
    def pending(self) -> bool:
        """True when a partial line is waiting for its terminator.

        Example:
            ```python
            splitter.pending
            ```
        """
        return bool(self._pending)

    def feed(self, chunk: bytes) -> list[bytes]:
        """Add a chunk and return every line it completed, in order.

        Example:
            ```python
            lines = splitter.feed(b"one\\ntwo\\n")
            ```
        """
        self._pending.extend(chunk)
        lines: list[bytes] = []
        start = 0
        while True:
            end = self._pending.find(b"\n", start)
            if end < 0:
                break
            lines.append(bytes(self._pending[start : end + 1]))
            start = end + 1
        if start:
            del self._pending[:start]
        return lines

    def flush(self) -> bytes | None:
        """Return the unterminated remainder, if any, and reset.

        Example:
            ```python
            tail = splitter.flush()
            ```
        """
        if not self._pending:
            return None
        tail = bytes(self._pending)
        self._pending.clear()
        return tail


class TranscriptLog:
    """Append-only text log of captured lines and run events.

    Example:
        ```python
        with TranscriptLog.open("/tmp/job.log") as log:
            log.write_event("STATUS", "3")
        ```
    """

    def __init__(self, handle: TextIO, path: str) -> None:
        """Wrap an already opened text handle.

        Example:
            ```python
            log = TranscriptLog(open("/tmp/job.log", "a"), "/tmp/job.log")
            ```
        """
        self._handle = handle
        self.path = path

    @classmethod
    def open(cls, path: str) -> "TranscriptLog":
        """Open `path` for appending, failing fast with LogSinkError.

        Example:
            ```python
            log = TranscriptLog.open("/var/log/backup.log")
            ```
        """
        try:
            handle = Path(path).expanduser().open("a", encoding="utf-8")
        except OSError as exc:
            raise LogSinkError(f"Failed to open log file ({path}): {exc.strerror or exc}") from exc
        return cls(handle, path)

    def write_line(self, line: CapturedLine) -> None:
        """Append one captured line.

        Example:
            ```python
            log.write_line(CapturedLine.from_raw(Stream.STDOUT, b"ok\\n"))
            ```
        """
        self._write(line.render())

    def write_event(self, tag: str, text: str) -> None:
        """Append a run event record such as ALARM, STATUS or ALERT.

        Example:
            ```python
            log.write_event("ALARM", "Timed-out after 5s")
            ```
        """
        self._write(format_record(local_now(), tag, text))

    def flush(self) -> None:
        """Flush buffered records to disk.

        Example:
            ```python
            log.flush()
            ```
        """
        if not self._handle.closed:
            self._handle.flush()

    def close(self) -> None:
        """Close the log; safe to call more than once.

        Example:
            ```python
            log.close()
            ```
        """
        if not self._handle.closed:
            self._handle.close()

    def _write(self, record: str) -> None:
        """Write one record plus terminator.

        Example:
            ```python
            log._write("2024-01-01 00:00:00 +0000 STATUS 0")
            ```
        """
        try:
            self._handle.write(record + "\n")
        except OSError as exc:
            raise LogSinkError(f"Failed to write log file ({self.path}): {exc}") from exc

    def __enter__(self) -> "TranscriptLog":
        """Return self for use in a with-block.

        Example:
            ```python
            with TranscriptLog.open("/tmp/job.log") as log:
                pass
            ```
        """
        return self

    def __exit__(self, *exc_info: object) -> None:
        """Close the log on block exit.

        Example:
            ```python
            log.__exit__(None, None, None)
            ```
        """
        self.close()


class LineBuffer:
    """Ordered, append-only transcript of one run.

    Every recorded line is also appended to the optional log sink. After
    `freeze()` the buffer rejects further writes.

    Example:
        ```python
        buffer = LineBuffer()
        buffer.record(Stream.STDOUT, b"hello\\n")
        print(buffer.render())
        ```
    """

    def __init__(self, log: TranscriptLog | None = None) -> None:
        """Create an empty transcript, optionally mirrored to `log`.

        Example:
            ```python
            buffer = LineBuffer(log=TranscriptLog.open("/tmp/job.log"))
            ```
        """
        self._lines: list[CapturedLine] = []
        self._log = log
        self._frozen = False

    @property
    def lines(self) -> tuple[CapturedLine, ...]:
        """Snapshot of the captured lines in insertion order.

        Example:
            ```python
            count = len(buffer.lines)
            ```
        """
        return tuple(self._lines)

    @property
    def frozen(self) -> bool:
        """True once the owning run has terminated.

        Example:
            ```python
            buffer.frozen
            ```
        """
        return self._frozen

    def record(self, stream: Stream, raw: bytes) -> CapturedLine:
        """Normalize a raw line, append it, and persist it to the log.

        Example:
            ```python
            line = buffer.record(Stream.STDERR, b"warning: disk low\\n")
            ```
        """
        if self._frozen:
            raise RuntimeError("Transcript is read-only after the run has terminated")
        line = CapturedLine.from_raw(stream, raw)
        self._lines.append(line)
        if self._log is not None:
            self._log.write_line(line)
        return line

    def freeze(self) -> None:
        """Make the transcript read-only.

        Example:
            ```python
            buffer.freeze()
            ```
        """
        self._frozen = True
        logger.debug("Transcript frozen with %d line(s)", len(self._lines))

    def render(self) -> str:
        """Render the transcript as text, one record per line.

        Example:
            ```python
            details = buffer.render()
            ```
        """
        return "".join(line.render() + "\n" for line in self._lines)

    def __len__(self) -> int:
        """Return the number of captured lines.

        Example:
            ```python
            len(buffer)
            ```
        """
        return len(self._lines)
