"""Errors raised while provisioning and managing ccm clusters."""

import typing as tp

if tp.TYPE_CHECKING:
    from ccm_test_cluster.cluster_management import loopback
    from ccm_test_cluster.utils import process_runner

CCM_INSTALL_URL = "https://github.com/riptano/ccm#installation"


class CCMClusterError(RuntimeError):
    """Base class for errors of the cluster orchestration.

    The optional `hint` tells the operator how to fix the problem.
    """

    def __init__(self, message: str, *, hint: str = "") -> None:
        super().__init__(message)
        self.hint = hint


class ToolNotAvailableError(CCMClusterError):
    """The `ccm` tool didn't respond to the basic probe."""


class ClusterDirectoryExistsError(CCMClusterError):
    """The cluster config directory exists and purge was not requested."""


class PortUnavailableError(CCMClusterError):
    """One or more management ports are already in use."""

    def __init__(
        self, message: str, *, occupied: tp.Iterable[tuple[str, int]] = (), hint: str = ""
    ) -> None:
        super().__init__(message, hint=hint)
        self.occupied = tuple(occupied)


class LoopbackNotConfiguredError(CCMClusterError):
    """Loopback interface reconciliation failed or was declined."""

    def __init__(
        self,
        message: str,
        *,
        report: "loopback.LoopbackReport | None" = None,
        hint: str = "",
    ) -> None:
        super().__init__(message, hint=hint)
        self.report = report


class UnsupportedPlatformError(LoopbackNotConfiguredError):
    """The OS family is neither Linux nor Darwin."""


class MalformedConfigTemplateError(CCMClusterError):
    """An expected pattern was not found in a generated config file."""


class ProcessLaunchError(CCMClusterError):
    """The external process could not be started at all."""


class ProcessExitError(CCMClusterError):
    """The external process exited with a non-zero exit code."""

    def __init__(
        self,
        message: str,
        *,
        returncode: int,
        result: "process_runner.ProcessResult | None" = None,
        hint: str = "",
    ) -> None:
        super().__init__(message, hint=hint)
        self.returncode = returncode
        self.result = result
