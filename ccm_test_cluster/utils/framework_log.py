"""Log sinks used by the cluster orchestration.

Every component receives a log sink, i.e. a callable taking severity and message. The default sink
forwards messages to the `logging` loggers and writes progress updates to stdout, overwriting the
current terminal line.
"""

import enum
import functools
import logging
import pathlib as pl
import sys
import time
import typing as tp

LOGGER = logging.getLogger("ccm_test_cluster.ccm")


class Severity(enum.StrEnum):
    INFO = "info"
    ERROR = "error"
    VERBOSE = "verbose"
    PROGRESS = "progress"


LogSink = tp.Callable[[Severity, str], None]


def write_progress(message: str, *, stream: tp.TextIO | None = None) -> None:
    """Overwrite the current terminal line with the progress message."""
    out = stream or sys.stdout
    out.write(f"\r{message}")
    out.flush()


def default_log_sink(severity: Severity, message: str) -> None:
    if severity == Severity.PROGRESS:
        write_progress(message)
    elif severity == Severity.ERROR:
        LOGGER.error(message)
    elif severity == Severity.VERBOSE:
        LOGGER.debug(message)
    else:
        LOGGER.info(message)


@functools.cache
def framework_logger(log_file: pl.Path) -> logging.Logger:
    """Get logger for the given log file.

    It records the whole session, including output of the `ccm` commands, so it can be inspected
    after a failure to set up a cluster.
    """

    class UTCFormatter(logging.Formatter):
        converter = time.gmtime  # type: ignore[assignment]

    formatter = UTCFormatter("%(asctime)s %(levelname)s %(message)s")
    handler = logging.FileHandler(log_file)
    handler.setFormatter(formatter)

    logger = logging.getLogger(f"framework.{log_file.stem}")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    logger.addHandler(handler)

    return logger


def get_file_log_sink(log_file: pl.Path, *, console: LogSink | None = None) -> LogSink:
    """Return sink that writes to the log file and optionally also to another sink."""
    logger = framework_logger(log_file=log_file.expanduser().resolve())
    levels = {
        Severity.INFO: logging.INFO,
        Severity.ERROR: logging.ERROR,
        Severity.VERBOSE: logging.DEBUG,
    }

    def _sink(severity: Severity, message: str) -> None:
        # Progress updates are not recorded in the file
        if severity != Severity.PROGRESS:
            logger.log(levels[severity], message)
        if console:
            console(severity, message)

    return _sink
