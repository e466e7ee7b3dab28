import pytest

from ccm_test_cluster.cluster_management import loopback
from ccm_test_cluster.cluster_management import platforms
from ccm_test_cluster.utils import errors
from ccm_test_cluster.utils.framework_log import Severity

INSPECT_CMD = ("ip", "-4", "addr", "show", "dev", "lo")
ADD_2 = ("sudo", "ip", "addr", "add", "127.0.0.2/8", "dev", "lo")
ADD_3 = ("sudo", "ip", "addr", "add", "127.0.0.3/8", "dev", "lo")
BRING_UP = ("sudo", "ip", "link", "set", "dev", "lo", "up")

LO_DOWN = """\
1: lo: <LOOPBACK> mtu 65536 qdisc noqueue state DOWN group default qlen 1000
    inet 127.0.0.1/8 scope host lo
"""

LO_CONFIGURED = """\
1: lo: <LOOPBACK,UP,LOWER_UP> mtu 65536 qdisc noqueue state UNKNOWN group default qlen 1000
    inet 127.0.0.1/8 scope host lo
    inet 127.0.0.2/8 scope host secondary lo
    inet 127.0.0.3/8 scope host secondary lo
"""


@pytest.fixture
def manager(linux_runner, sink) -> loopback.LoopbackNetworkManager:
    return loopback.LoopbackNetworkManager(
        runner=linux_runner, log_sink=sink, platform=platforms.LinuxPlatform(sudo_cmd="sudo")
    )


def test_get_missing():
    missing = loopback.get_missing(
        required=["127.0.0.3", "127.0.0.1", "127.0.0.2", "127.0.0.3", "127.0.0.4"],
        configured=["127.0.0.4"],
    )
    assert missing == ("127.0.0.3", "127.0.0.2")


def test_add_missing_aliases(manager, linux_runner):
    report = manager.reconcile(required_addresses=["127.0.0.2", "127.0.0.3"], auto_configure=True)

    assert linux_runner.calls == [INSPECT_CMD, ADD_2, ADD_3]
    assert report.missing == ("127.0.0.2", "127.0.0.3")
    assert [s.address for s in report.get_steps(loopback.StepStatus.APPLIED)] == [
        "127.0.0.2",
        "127.0.0.3",
    ]
    assert report.changed


def test_already_configured(manager, linux_runner):
    linux_runner.responses[INSPECT_CMD] = LO_CONFIGURED
    report = manager.reconcile(required_addresses=["127.0.0.2", "127.0.0.3"], auto_configure=True)

    assert linux_runner.calls == [INSPECT_CMD]
    assert not report.changed
    assert report.records == []


def test_default_address_only(manager, linux_runner):
    report = manager.reconcile(required_addresses=["127.0.0.1"], auto_configure=False)
    assert linux_runner.calls == [INSPECT_CMD]
    assert report.missing == ()


def test_alias_failure_aborts(manager, linux_runner, exit_error, sink):
    linux_runner.responses[ADD_2] = exit_error(ADD_2, returncode=1)

    with pytest.raises(errors.LoopbackNotConfiguredError) as excinfo:
        manager.reconcile(required_addresses=["127.0.0.2", "127.0.0.3"], auto_configure=True)

    assert linux_runner.calls == [INSPECT_CMD, ADD_2]
    report = excinfo.value.report
    assert report is not None
    assert [s.address for s in report.get_steps(loopback.StepStatus.FAILED)] == ["127.0.0.2"]
    assert [s.address for s in report.get_steps(loopback.StepStatus.SKIPPED)] == ["127.0.0.3"]
    assert isinstance(excinfo.value.__cause__, errors.ProcessExitError)
    assert "127.0.0.3/8" in excinfo.value.hint
    assert sink.get(Severity.ERROR)


def test_partial_aliases_kept(manager, linux_runner, exit_error):
    linux_runner.responses[ADD_3] = exit_error(ADD_3, returncode=2)

    with pytest.raises(errors.LoopbackNotConfiguredError) as excinfo:
        manager.reconcile(required_addresses=["127.0.0.2", "127.0.0.3"], auto_configure=True)

    report = excinfo.value.report
    assert report is not None
    assert [s.address for s in report.get_steps(loopback.StepStatus.APPLIED)] == ["127.0.0.2"]
    assert report.changed


def test_no_auto_configure(manager, linux_runner, sink):
    with pytest.raises(errors.LoopbackNotConfiguredError) as excinfo:
        manager.reconcile(required_addresses=["127.0.0.2"], auto_configure=False)

    assert linux_runner.calls == [INSPECT_CMD]
    assert "127.0.0.2" in str(excinfo.value)
    assert "sudo ip addr add 127.0.0.2/8 dev lo" in excinfo.value.hint
    assert excinfo.value.hint in sink.get(Severity.INFO)


def test_interface_down(manager, linux_runner):
    linux_runner.responses[INSPECT_CMD] = LO_DOWN
    report = manager.reconcile(required_addresses=["127.0.0.1"], auto_configure=True)

    assert linux_runner.calls == [INSPECT_CMD, BRING_UP]
    assert not report.is_up
    assert [s.name for s in report.get_steps(loopback.StepStatus.APPLIED)] == [
        loopback.StepName.BRING_UP
    ]


def test_interface_down_no_auto_configure(manager, linux_runner):
    linux_runner.responses[INSPECT_CMD] = LO_DOWN
    with pytest.raises(errors.LoopbackNotConfiguredError, match="down"):
        manager.reconcile(required_addresses=["127.0.0.1"], auto_configure=False)
    assert linux_runner.calls == [INSPECT_CMD]


def test_inspect_failure(manager, linux_runner, exit_error, sink):
    linux_runner.responses[INSPECT_CMD] = exit_error(INSPECT_CMD, returncode=1)
    with pytest.raises(errors.LoopbackNotConfiguredError) as excinfo:
        manager.reconcile(required_addresses=["127.0.0.2"], auto_configure=True)

    hint = excinfo.value.hint
    assert "ip -4 addr show dev lo" in hint
    assert "sudo ip addr add 127.0.0.2/8 dev lo" in hint
    assert hint in sink.get(Severity.INFO)
    assert sink.get(Severity.ERROR)


def test_detect_platform_failure(fake_runner, exit_error, sink):
    fake_runner.responses[("uname", "-s")] = exit_error(("uname", "-s"), returncode=127)
    manager = loopback.LoopbackNetworkManager(runner=fake_runner, log_sink=sink)

    with pytest.raises(errors.LoopbackNotConfiguredError) as excinfo:
        manager.reconcile(required_addresses=["127.0.0.2"], auto_configure=True)

    assert "uname -s" in excinfo.value.hint
    assert excinfo.value.hint in sink.get(Severity.INFO)
    assert fake_runner.calls == [("uname", "-s")]


def test_platform_detected_once(linux_runner, sink):
    manager = loopback.LoopbackNetworkManager(runner=linux_runner, log_sink=sink)
    assert isinstance(manager.platform, platforms.LinuxPlatform)
    assert manager.platform is manager.platform
    assert linux_runner.calls == [("uname", "-s")]
