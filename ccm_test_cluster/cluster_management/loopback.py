"""Reconciliation of loopback interface aliases.

Every node of the cluster binds its own loopback address (127.0.0.2, 127.0.0.3, ...). On macOS
these addresses must be added as aliases of the `lo0` interface before the nodes can use them.

Privileged commands are executed strictly one after another, each one must succeed before the
next one is attempted. Aliases that were added before a failure are not removed.
"""

import dataclasses
import enum
import logging
import typing as tp

from ccm_test_cluster.cluster_management import platforms
from ccm_test_cluster.utils import configuration
from ccm_test_cluster.utils import errors
from ccm_test_cluster.utils import framework_log
from ccm_test_cluster.utils import process_runner
from ccm_test_cluster.utils.framework_log import Severity

LOGGER = logging.getLogger(__name__)


class StepStatus(enum.StrEnum):
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepName(enum.StrEnum):
    BRING_UP = "bring_up"
    ADD_ALIAS = "add_alias"


@dataclasses.dataclass(frozen=True)
class Step:
    name: StepName
    cmd: platforms.Command
    address: str = ""


@dataclasses.dataclass(frozen=True)
class StepRecord:
    step: Step
    status: StepStatus


@dataclasses.dataclass
class LoopbackReport:
    """Result of the reconciliation, with a record for every privileged step."""

    platform: str
    is_up: bool = True
    missing: tuple[str, ...] = ()
    records: list[StepRecord] = dataclasses.field(default_factory=list)

    def get_steps(self, status: StepStatus) -> list[Step]:
        return [r.step for r in self.records if r.status == status]

    @property
    def changed(self) -> bool:
        return bool(self.get_steps(StepStatus.APPLIED))


def get_missing(required: tp.Iterable[str], configured: tp.Iterable[str]) -> tuple[str, ...]:
    """Return required addresses that are not configured, keep the order of `required`."""
    skip = {*configured, configuration.DEFAULT_LOOPBACK_ADDR}
    missing: list[str] = []
    for addr in required:
        if addr in skip or addr in missing:
            continue
        missing.append(addr)
    return tuple(missing)


def get_manual_hint(steps: tp.Iterable[Step]) -> str:
    cmds_str = "\n".join(f"  {s.cmd}" for s in steps)
    return f"Configure the loopback interface manually by running:\n{cmds_str}"


class LoopbackNetworkManager:
    """Make sure the loopback interface is up and has all the required aliases."""

    def __init__(
        self,
        runner: process_runner.ProcessRunner,
        log_sink: framework_log.LogSink | None = None,
        platform: platforms.Platform | None = None,
    ) -> None:
        self.runner = runner
        self.log_sink = log_sink or framework_log.default_log_sink
        self._platform = platform

    @property
    def platform(self) -> platforms.Platform:
        """Return the platform, detect it on the first use."""
        if self._platform is None:
            try:
                self._platform = platforms.detect_platform(runner=self.runner)
            except (errors.ProcessExitError, errors.ProcessLaunchError) as exc:
                msg = f"Failed to detect the OS family: {exc}"
                hint = (
                    "Check that the `uname -s` command works, only Linux and Darwin "
                    "(macOS) loopback interfaces can be configured."
                )
                raise self._get_error(msg=msg, hint=hint) from exc
            LOGGER.debug(f"Detected platform '{self._platform.NAME}'.")
        return self._platform

    def _get_error(
        self, msg: str, hint: str, report: LoopbackReport | None = None
    ) -> errors.LoopbackNotConfiguredError:
        """Log the failure together with remediation hint and return the error."""
        self.log_sink(Severity.ERROR, msg)
        self.log_sink(Severity.INFO, hint)
        return errors.LoopbackNotConfiguredError(msg, report=report, hint=hint)

    def get_steps(self, state: platforms.InterfaceState, missing: tp.Sequence[str]) -> list[Step]:
        """Return privileged steps needed to reach the required state."""
        steps = [
            Step(name=StepName.ADD_ALIAS, cmd=self.platform.add_alias_cmd(a), address=a)
            for a in missing
        ]
        if not state.is_up:
            steps.append(Step(name=StepName.BRING_UP, cmd=self.platform.bring_up_cmd()))
        return steps

    def apply_steps(self, report: LoopbackReport, steps: tp.Sequence[Step]) -> None:
        """Run the steps one by one, stop at the first failure."""
        for idx, step in enumerate(steps):
            if step.name == StepName.ADD_ALIAS:
                self.log_sink(Severity.INFO, f"Adding loopback alias {step.address}.")
            else:
                self.log_sink(Severity.INFO, "Bringing the loopback interface up.")

            try:
                self.runner.run(step.cmd.command, step.cmd.args)
            except (errors.ProcessExitError, errors.ProcessLaunchError) as exc:
                report.records.append(StepRecord(step=step, status=StepStatus.FAILED))
                report.records.extend(
                    StepRecord(step=s, status=StepStatus.SKIPPED) for s in steps[idx + 1 :]
                )
                msg = f"Failed to configure the loopback interface: {exc}"
                hint = get_manual_hint(steps[idx:])
                raise self._get_error(msg=msg, hint=hint, report=report) from exc

            report.records.append(StepRecord(step=step, status=StepStatus.APPLIED))

    def reconcile(
        self, required_addresses: tp.Iterable[str], auto_configure: bool
    ) -> LoopbackReport:
        """Check the loopback interface and configure it when allowed.

        Returns report of the performed steps. Raises `LoopbackNotConfiguredError` when the
        interface is not in the required state and could not be (or was not allowed to be)
        configured.
        """
        required_addresses = list(required_addresses)
        platform = self.platform
        try:
            state = platform.inspect_loopback(runner=self.runner)
        except (errors.ProcessExitError, errors.ProcessLaunchError) as exc:
            msg = f"Failed to inspect the loopback interface: {exc}"
            manual_steps = self.get_steps(
                state=platforms.InterfaceState(is_up=True, aliases=frozenset()),
                missing=get_missing(required=required_addresses, configured=()),
            )
            hint = f"Check that `{platform.inspect_loopback_cmd()}` works."
            if manual_steps:
                hint = f"{hint}\n{get_manual_hint(manual_steps)}"
            raise self._get_error(msg=msg, hint=hint) from exc

        missing = get_missing(required=required_addresses, configured=state.aliases)
        report = LoopbackReport(platform=platform.NAME, is_up=state.is_up, missing=missing)
        steps = self.get_steps(state=state, missing=missing)

        if not steps:
            LOGGER.debug("Loopback interface is already configured.")
            return report

        if not auto_configure:
            if missing:
                msg = f"Missing loopback aliases: {', '.join(missing)}"
            else:
                msg = "The loopback interface is down."
            raise self._get_error(msg=msg, hint=get_manual_hint(steps), report=report)

        self.apply_steps(report=report, steps=steps)
        return report
