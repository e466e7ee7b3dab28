"""Classification of output lines produced by the `ccm` tool.

`ccm` downloads Cassandra releases on the first use of a version. The download is reported in
three phases:

* "Downloading <url> to <file> (38.123MB)"
* repeated progress lines "  39999488  [99.99%]"
* "Extracting <file> as version 3.9 ..."

The classifier turns these into a progress display that is updated in place. Everything else is
passed through as a plain log line.
"""

import dataclasses
import logging
import re

from ccm_test_cluster.utils import framework_log
from ccm_test_cluster.utils.framework_log import Severity

LOGGER = logging.getLogger(__name__)

STDOUT = "stdout"
STDERR = "stderr"

DOWNLOAD_START_RE = re.compile(
    r"^(?P<message>Downloading\s.+?)\s*\(\s*(?P<size>[0-9.]+)\s*(?P<unit>KB|MB|GB|bytes)\s*\)\s*$"
)
DOWNLOAD_PROGRESS_RE = re.compile(
    r"^\s*(?P<downloaded>[0-9]+)\s+\[\s*(?P<percent>[0-9.]+)%\s*\]\s*$"
)
DOWNLOAD_DONE_RE = re.compile(r"^(?P<message>Extracting\s.+)$")

# Printed by the JVM on macOS when two JDKs provide the `JavaLaunchHelper` class
NOISE_RE = re.compile(
    r"Class JavaLaunchHelper is implemented in both .* One of the two will be used"
)

UNIT_DIVISORS = {
    "bytes": 1,
    "KB": 1024,
    "MB": 1024**2,
    "GB": 1024**3,
}


@dataclasses.dataclass(frozen=True)
class DownloadState:
    size: str
    unit: str

    def convert(self, num_bytes: int) -> float:
        """Convert byte count to the unit of the total size."""
        return round(num_bytes / UNIT_DIVISORS[self.unit], 2)

    def format_progress(self, done: float | str, percent: float | str) -> str:
        return f"Downloading: {done}/{self.size}{self.unit} [{percent}%]"


class OutputClassifier:
    """Classify lines of a single `ccm` invocation and forward them to the log sink.

    The classifier is a three-state machine: idle -> downloading -> idle. The `DownloadState`
    exists only while a download is in progress and belongs to this classifier, so a new
    classifier is needed for every process invocation.
    """

    def __init__(
        self,
        log_sink: framework_log.LogSink | None = None,
        *,
        suppress_normal_logs: bool = False,
        verbose: bool = False,
    ) -> None:
        self.log_sink = log_sink or framework_log.default_log_sink
        self.suppress_normal_logs = suppress_normal_logs
        self.verbose = verbose
        self.download: DownloadState | None = None

    @property
    def downloading(self) -> bool:
        return self.download is not None

    def _emit(self, severity: Severity, message: str) -> None:
        if (
            self.suppress_normal_logs
            and not self.verbose
            and severity not in (Severity.ERROR, Severity.VERBOSE)
        ):
            return
        self.log_sink(severity, message)

    def _start_download(self, match: re.Match) -> None:
        self.download = DownloadState(size=match.group("size"), unit=match.group("unit"))
        self._emit(Severity.INFO, match.group("message"))
        self._emit(Severity.PROGRESS, self.download.format_progress(done=0, percent=0))

    def _update_download(self, match: re.Match) -> None:
        if self.download is None:
            LOGGER.debug(f"Ignoring download progress without download in progress: {match[0]}")
            return
        done = self.download.convert(int(match.group("downloaded")))
        percent = match.group("percent")
        self._emit(Severity.PROGRESS, self.download.format_progress(done=done, percent=percent))

    def _finish_download(self, match: re.Match) -> None:
        if self.download is not None:
            self._emit(
                Severity.PROGRESS,
                self.download.format_progress(done=self.download.size, percent=100),
            )
            self._emit(Severity.PROGRESS, "\n")
            self.download = None
        self._emit(Severity.INFO, match.group("message"))

    def classify(self, line: str, *, stream: str = STDOUT) -> None:
        """Classify single line of output and emit it to the log sink."""
        if not line.strip():
            return

        if NOISE_RE.search(line):
            if self.verbose:
                self._emit(Severity.VERBOSE, line)
            return

        if stream == STDOUT:
            match = DOWNLOAD_START_RE.match(line)
            if match:
                self._start_download(match)
                return

            match = DOWNLOAD_PROGRESS_RE.match(line)
            if match:
                self._update_download(match)
                return

            match = DOWNLOAD_DONE_RE.match(line)
            if match:
                self._finish_download(match)
                return

        self._emit(Severity.ERROR if stream == STDERR else Severity.INFO, line)
