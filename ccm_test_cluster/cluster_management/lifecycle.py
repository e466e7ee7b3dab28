"""Lifecycle of a ccm cluster.

The `ClusterLifecycle` class is the main interface for setting up a test cluster:

    cluster = ClusterLifecycle(ClusterConfig(nodes=2, start_address="127.0.0.2", purge=True))
    cluster.initialize()
    cluster.populate_nodes()
    cluster.configure_nodes()
    cluster.start()

Every operation is a chain of steps executed one after another. The first failed step aborts the
chain and its error is re-raised. Nothing is retried.
"""

import contextlib
import logging
import pathlib as pl
import typing as tp

from ccm_test_cluster.cluster_management import cluster_nodes
from ccm_test_cluster.cluster_management import config_patcher
from ccm_test_cluster.cluster_management import listen_tools
from ccm_test_cluster.cluster_management import loopback
from ccm_test_cluster.utils import configuration
from ccm_test_cluster.utils import errors
from ccm_test_cluster.utils import framework_log
from ccm_test_cluster.utils import process_runner
from ccm_test_cluster.utils.framework_log import Severity

LOGGER = logging.getLogger(__name__)


def format_conf_value(value: tp.Any) -> str:
    """Format value for `ccm updateconf`, booleans are YAML `true` / `false`."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ClusterLifecycle:
    """Initialize, populate, configure, start, stop and remove a ccm cluster."""

    def __init__(
        self,
        cluster_config: cluster_nodes.ClusterConfig | None = None,
        *,
        log_sink: framework_log.LogSink | None = None,
        runner: process_runner.ProcessRunner | None = None,
        ccm_cmd: str = "",
        config_dir: pl.Path | None = None,
    ) -> None:
        self.config = cluster_config or cluster_nodes.ClusterConfig()
        self.log_sink = log_sink or framework_log.default_log_sink
        self.runner = runner or process_runner.ProcessRunner(
            log_sink=self.log_sink, verbose=self.config.verbose
        )
        self.ccm_cmd = ccm_cmd or configuration.CCM_CMD
        self._config_dir = config_dir

        self.loopback_manager = loopback.LoopbackNetworkManager(
            runner=self.runner, log_sink=self.log_sink
        )
        self.config_patcher = config_patcher.ConfigPatcher(log_sink=self.log_sink)

    @property
    def config_dir(self) -> pl.Path:
        if self._config_dir is None:
            self._config_dir = configuration.get_config_dir()
        return self._config_dir

    @property
    def cluster_dir(self) -> pl.Path:
        return self.config_dir / self.config.cluster_name

    @property
    def nodes(self) -> list[cluster_nodes.Node]:
        return self.config.get_nodes()

    @contextlib.contextmanager
    def _operation(self, label: str) -> tp.Iterator[None]:
        """Report the operation as a labeled success / failure event."""
        self.log_sink(Severity.VERBOSE, f"{label}: started")
        try:
            yield
        except Exception as exc:
            self.log_sink(Severity.ERROR, f"{label}: failed: {exc}")
            hint = getattr(exc, "hint", "")
            if hint:
                self.log_sink(Severity.INFO, hint)
            raise
        self.log_sink(Severity.INFO, f"{label}: done")

    def ccm(
        self, *args: str | int, suppress_normal_logs: bool = False
    ) -> process_runner.ProcessResult:
        """Run `ccm` with the given arguments."""
        return self.runner.run(self.ccm_cmd, args, suppress_normal_logs=suppress_normal_logs)

    def check_ccm_available(self) -> None:
        """Check that `ccm` is installed and responds."""
        try:
            self.ccm("list", suppress_normal_logs=True)
        except (errors.ProcessExitError, errors.ProcessLaunchError) as exc:
            msg = f"The `{self.ccm_cmd}` tool is not available: {exc}"
            hint = f"Install ccm, see {errors.CCM_INSTALL_URL}"
            raise errors.ToolNotAvailableError(msg, hint=hint) from exc

    def remove_previous_cluster(self) -> None:
        """Remove cluster with the same name created by a previous session."""
        cluster_name = self.config.cluster_name
        self.log_sink(Severity.INFO, f"Removing previous cluster '{cluster_name}'.")
        self.ccm("switch", cluster_name)
        self.ccm("remove")

    def check_cluster_dir(self) -> None:
        """Check that the cluster directory doesn't exist, or remove the cluster if purging."""
        cluster_dir = self.cluster_dir
        if not cluster_dir.exists():
            return

        if self.config.purge:
            self.remove_previous_cluster()
            return

        msg = f"Cluster directory '{cluster_dir}' already exists."
        hint = (
            f"Remove the cluster with `{self.ccm_cmd} remove {self.config.cluster_name}`, "
            f"or delete the '{cluster_dir}' directory, or enable purge."
        )
        raise errors.ClusterDirectoryExistsError(msg, hint=hint)

    def check_ports(self) -> None:
        """Check that JMX ports of all nodes are available."""
        checker = listen_tools.PortAvailabilityChecker(
            runner=self.runner, platform=self.loopback_manager.platform
        )
        occupied = checker.unavailable((n.address, n.jmx_port) for n in self.nodes)
        if occupied:
            occupied_str = ", ".join(f"{a}:{p}" for a, p in occupied)
            msg = f"Ports already in use: {occupied_str}"
            hint = "Stop the processes listening on the ports, or choose different JMX ports."
            raise errors.PortUnavailableError(msg, occupied=occupied, hint=hint)

    def reconcile_loopback(self) -> loopback.LoopbackReport:
        return self.loopback_manager.reconcile(
            required_addresses=[n.address for n in self.nodes],
            auto_configure=self.config.configure_loopback_aliases,
        )

    def initialize(self) -> None:
        """Check the environment and create the cluster."""
        with self._operation("initialize"):
            self.check_ccm_available()
            self.check_cluster_dir()
            self.check_ports()
            self.reconcile_loopback()
            self.ccm("create", self.config.cluster_name, "-v", self.config.version)

    def populate_nodes(self) -> None:
        """Create the nodes, `ccm` generates config files for each of them."""
        with self._operation("populate"):
            self.ccm("populate", "-n", self.config.nodes)

    def configure_nodes(self) -> list[config_patcher.ReplacementDefinition]:
        """Assign addresses and JMX ports to the nodes and apply cluster config overrides.

        The overrides are applied one by one, in the order they were specified.
        """
        with self._operation("configure"):
            replacements = self.config_patcher.apply_address_and_port_assignments(
                config_root=self.cluster_dir, nodes=self.nodes
            )
            for key, value in self.config.cluster_config.items():
                self.ccm("updateconf", f"{key}: {format_conf_value(value)}")
        return replacements

    def start(self) -> None:
        wait_arg = "--wait-for-binary-proto" if self.config.wait_for_binary_proto else "--no-wait"
        with self._operation("start"):
            self.ccm("start", self.config.cluster_name, wait_arg)

    def shutdown(self) -> None:
        with self._operation("stop"):
            self.ccm("stop", self.config.cluster_name)

    def remove(self) -> None:
        with self._operation("remove"):
            self.ccm("remove", self.config.cluster_name)

    def setup(self) -> None:
        """Initialize, populate, configure and start the cluster."""
        self.initialize()
        self.populate_nodes()
        self.configure_nodes()
        self.start()
