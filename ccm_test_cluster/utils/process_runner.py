"""Running of external commands with streamed and classified output."""

import dataclasses
import logging
import queue
import re
import subprocess
import threading
import typing as tp

from ccm_test_cluster.utils import errors
from ccm_test_cluster.utils import framework_log
from ccm_test_cluster.utils import output_classifier
from ccm_test_cluster.utils import types as ttypes
from ccm_test_cluster.utils.output_classifier import STDERR
from ccm_test_cluster.utils.output_classifier import STDOUT

LOGGER = logging.getLogger(__name__)

CHUNK_SIZE = 4096

# `ccm` redraws the download progress using backspaces and carriage returns
LINE_SEP_RE = re.compile(rb"[\n\r\x08]")


@dataclasses.dataclass(frozen=True)
class OutputLine:
    stream: str
    text: str


@dataclasses.dataclass(frozen=True)
class ProcessResult:
    command: str
    args: tuple[str, ...]
    returncode: int
    lines: tuple[OutputLine, ...] = ()

    @property
    def cmd_str(self) -> str:
        return " ".join((self.command, *self.args))

    @property
    def stdout(self) -> str:
        return "\n".join(rec.text for rec in self.lines if rec.stream == STDOUT)

    @property
    def stderr(self) -> str:
        return "\n".join(rec.text for rec in self.lines if rec.stream == STDERR)


class LineBuffer:
    """Re-assemble arbitrary byte chunks into complete lines.

    A chunk can contain zero, one or more lines and a line can span multiple chunks. The bytes
    are decoded only once the whole line is available, so multi-byte characters split between
    chunks are decoded correctly. Empty lines are dropped.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding
        self._buffer = b""

    def _decode(self, raw: bytes) -> str:
        return raw.decode(self.encoding, errors="replace")

    def feed(self, chunk: bytes) -> list[str]:
        """Add chunk to the buffer and return lines that are complete."""
        self._buffer += chunk
        parts = LINE_SEP_RE.split(self._buffer)
        self._buffer = parts.pop()
        return [self._decode(p) for p in parts if p]

    def flush(self) -> list[str]:
        """Return the last unterminated line, if any."""
        rest, self._buffer = self._buffer, b""
        return [self._decode(rest)] if rest else []


class ProcessInvocation:
    """Single run of an external command.

    Output of the command is available as a lazy sequence of lines (see `lines`), independent
    of the exit code resolution (see `wait`).
    """

    def __init__(
        self,
        command: str,
        args: tp.Iterable[str | int] = (),
        *,
        suppress_normal_logs: bool = False,
        workdir: ttypes.FileType = "",
    ) -> None:
        self.command = command
        self.args = tuple(str(a) for a in args)
        self.suppress_normal_logs = suppress_normal_logs
        self.workdir = workdir
        self.returncode: int | None = None

        self._proc: subprocess.Popen | None = None
        self._queue: queue.Queue[OutputLine | None] = queue.Queue()
        self._lines: list[OutputLine] = []
        self._open_streams = 0
        self._readers: list[threading.Thread] = []

    @property
    def cmd_str(self) -> str:
        return " ".join((self.command, *self.args))

    def start(self) -> "ProcessInvocation":
        """Spawn the process and start reading its output."""
        LOGGER.debug("Running `%s`", self.cmd_str)
        try:
            self._proc = subprocess.Popen(  # noqa: SIM115
                [self.command, *self.args],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.workdir or None,
            )
        except OSError as exc:
            msg = f"Failed to launch `{self.cmd_str}`: {exc}"
            raise errors.ProcessLaunchError(msg) from exc

        streams = ((STDOUT, self._proc.stdout), (STDERR, self._proc.stderr))
        self._open_streams = len(streams)
        for name, stream in streams:
            reader = threading.Thread(
                target=self._read_stream, args=(name, stream), name=f"{name}-reader", daemon=True
            )
            reader.start()
            self._readers.append(reader)

        return self

    def _read_stream(self, name: str, stream: tp.IO[bytes] | None) -> None:
        if stream is None:
            self._queue.put(None)
            return

        buffer = LineBuffer()
        try:
            for chunk in iter(lambda: stream.read1(CHUNK_SIZE), b""):  # type: ignore[attr-defined]
                for text in buffer.feed(chunk):
                    self._queue.put(OutputLine(stream=name, text=text))
            for text in buffer.flush():
                self._queue.put(OutputLine(stream=name, text=text))
        finally:
            stream.close()
            self._queue.put(None)

    def lines(self) -> tp.Iterator[OutputLine]:
        """Iterate over output lines as they arrive.

        The sequence is finite, it ends when both stdout and stderr are closed. Lines that were
        already received are replayed first, so the sequence can be iterated again.
        """
        if self._proc is None:
            msg = f"Process `{self.cmd_str}` was not started."
            raise RuntimeError(msg)

        idx = 0
        while True:
            while idx < len(self._lines):
                yield self._lines[idx]
                idx += 1

            if self._open_streams == 0:
                return

            rec = self._queue.get()
            if rec is None:
                self._open_streams -= 1
                continue
            self._lines.append(rec)

    def wait(self) -> int:
        """Wait for the process to finish and return its exit code."""
        if self._proc is None:
            msg = f"Process `{self.cmd_str}` was not started."
            raise RuntimeError(msg)

        # Drain the output so the process is not blocked on full pipes
        for __ in self.lines():
            pass

        self.returncode = self._proc.wait()
        for reader in self._readers:
            reader.join()

        return self.returncode

    def get_result(self) -> ProcessResult:
        if self.returncode is None:
            msg = f"Process `{self.cmd_str}` has not finished yet."
            raise RuntimeError(msg)
        return ProcessResult(
            command=self.command,
            args=self.args,
            returncode=self.returncode,
            lines=tuple(self._lines),
        )


class ProcessRunner:
    """Run external commands, one attempt per call, and log their classified output."""

    def __init__(
        self,
        log_sink: framework_log.LogSink | None = None,
        *,
        verbose: bool = False,
    ) -> None:
        self.log_sink = log_sink or framework_log.default_log_sink
        self.verbose = verbose

    def run(
        self,
        command: str,
        args: tp.Iterable[str | int] = (),
        *,
        suppress_normal_logs: bool = False,
    ) -> ProcessResult:
        """Run the command and return its result.

        Raises `ProcessExitError` when the exit code is not 0 and `ProcessLaunchError` when the
        command cannot be started at all.
        """
        invocation = ProcessInvocation(
            command=command, args=args, suppress_normal_logs=suppress_normal_logs
        ).start()
        classifier = output_classifier.OutputClassifier(
            log_sink=self.log_sink,
            suppress_normal_logs=suppress_normal_logs,
            verbose=self.verbose,
        )

        for rec in invocation.lines():
            classifier.classify(rec.text, stream=rec.stream)

        returncode = invocation.wait()
        result = invocation.get_result()
        if returncode != 0:
            msg = f"`{result.cmd_str}` exited with the non-zero exit code {returncode}"
            raise errors.ProcessExitError(msg, returncode=returncode, result=result)

        return result
