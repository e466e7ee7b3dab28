import os
import pathlib as pl
import typing as tp

import pytest

# Make sure the real `ccm` config dir of the user is never touched
if not os.environ.get("CCM_CONFIG_DIR"):
    os.environ["CCM_CONFIG_DIR"] = "/nonexistent/ccm-config"

from ccm_test_cluster.utils import errors  # noqa: E402
from ccm_test_cluster.utils import process_runner  # noqa: E402
from ccm_test_cluster.utils.framework_log import Severity  # noqa: E402
from ccm_test_cluster.utils.output_classifier import STDOUT  # noqa: E402

LINUX_LO_UP = """\
1: lo: <LOOPBACK,UP,LOWER_UP> mtu 65536 qdisc noqueue state UNKNOWN group default qlen 1000
    inet 127.0.0.1/8 scope host lo
       valid_lft forever preferred_lft forever
"""

Response = str | Exception


def get_exit_error(cmd: tp.Sequence[str], returncode: int = 1, stdout: str = "") -> Exception:
    """Return error as raised by `ProcessRunner` for a failed command."""
    lines = tuple(
        process_runner.OutputLine(stream=STDOUT, text=t) for t in stdout.splitlines() if t
    )
    result = process_runner.ProcessResult(
        command=cmd[0], args=tuple(cmd[1:]), returncode=returncode, lines=lines
    )
    msg = f"`{result.cmd_str}` exited with the non-zero exit code {returncode}"
    return errors.ProcessExitError(msg, returncode=returncode, result=result)


class FakeRunner:
    """Record commands instead of running them, return canned stdout or raise canned errors."""

    def __init__(self, responses: dict[tuple[str, ...], Response] | None = None) -> None:
        self.responses: dict[tuple[str, ...], Response] = responses or {}
        self.calls: list[tuple[str, ...]] = []
        self.suppressed: list[tuple[str, ...]] = []

    def run(
        self,
        command: str,
        args: tp.Iterable[str | int] = (),
        *,
        suppress_normal_logs: bool = False,
    ) -> process_runner.ProcessResult:
        cmd = (command, *(str(a) for a in args))
        self.calls.append(cmd)
        if suppress_normal_logs:
            self.suppressed.append(cmd)

        response = self.responses.get(cmd, "")
        if isinstance(response, Exception):
            raise response

        lines = tuple(
            process_runner.OutputLine(stream=STDOUT, text=t) for t in response.splitlines() if t
        )
        return process_runner.ProcessResult(
            command=command, args=cmd[1:], returncode=0, lines=lines
        )


class SinkRecorder:
    def __init__(self) -> None:
        self.records: list[tuple[Severity, str]] = []

    def __call__(self, severity: Severity, message: str) -> None:
        self.records.append((severity, message))

    def get(self, severity: Severity) -> list[str]:
        return [m for s, m in self.records if s == severity]


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def sink() -> SinkRecorder:
    return SinkRecorder()


@pytest.fixture
def ccm_config_dir(tmp_path: pl.Path) -> pl.Path:
    config_dir = tmp_path / "ccm"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def exit_error() -> tp.Callable[..., Exception]:
    return get_exit_error


@pytest.fixture
def linux_runner(fake_runner: FakeRunner) -> FakeRunner:
    """Fake runner on Linux, with loopback interface up and without any listeners."""
    fake_runner.responses[("uname", "-s")] = "Linux"
    fake_runner.responses[("ip", "-4", "addr", "show", "dev", "lo")] = LINUX_LO_UP
    return fake_runner
