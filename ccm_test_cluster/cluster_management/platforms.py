"""Platform specific commands for inspecting and changing the loopback interface.

Two OS families are supported, Linux and Darwin (macOS). The platform is detected once, using
`uname -s`, and the selected `Platform` object is then used for all the commands.
"""

import dataclasses
import re
import typing as tp

from ccm_test_cluster.utils import configuration
from ccm_test_cluster.utils import errors
from ccm_test_cluster.utils import process_runner

INET_RE = re.compile(r"\binet\s+(?:addr:)?([0-9]{1,3}(?:\.[0-9]{1,3}){3})")
FLAGS_RE = re.compile(r"<([^>]*)>")


@dataclasses.dataclass(frozen=True)
class Command:
    command: str
    args: tuple[str, ...] = ()

    def __str__(self) -> str:
        return " ".join((self.command, *self.args))


@dataclasses.dataclass(frozen=True)
class InterfaceState:
    is_up: bool
    aliases: frozenset[str]


@dataclasses.dataclass(frozen=True)
class Listener:
    address: str
    port: int


def parse_interface_state(output: str) -> InterfaceState:
    """Parse output of `ip addr show` or `ifconfig`.

    The default loopback address is always considered configured.
    """
    flags_match = FLAGS_RE.search(output)
    flags = flags_match.group(1).split(",") if flags_match else []
    aliases = set(INET_RE.findall(output))
    aliases.add(configuration.DEFAULT_LOOPBACK_ADDR)
    return InterfaceState(is_up="UP" in flags, aliases=frozenset(aliases))


def split_host_port(local_addr: str) -> Listener | None:
    """Split local address column of `ss` or `lsof` output, e.g. `127.0.0.2:7100`."""
    host, sep, port_str = local_addr.rpartition(":")
    if not sep or not port_str.isdigit():
        return None
    host = host.strip("[]")
    # Interface scope, e.g. `127.0.0.1%lo`
    host = host.split("%", maxsplit=1)[0]
    return Listener(address=host, port=int(port_str))


class Platform:
    """Generic platform."""

    NAME: tp.ClassVar[str] = "unknown"

    def __init__(self, sudo_cmd: str = "") -> None:
        self.sudo_cmd = sudo_cmd or configuration.SUDO_CMD

    def _privileged(self, *args: str) -> Command:
        return Command(command=self.sudo_cmd, args=args)

    def inspect_loopback_cmd(self) -> Command:
        """Return command that prints state of the loopback interface."""
        msg = f"Not implemented for platform '{self.NAME}'."
        raise NotImplementedError(msg)

    def bring_up_cmd(self) -> Command:
        """Return privileged command that brings the loopback interface up."""
        msg = f"Not implemented for platform '{self.NAME}'."
        raise NotImplementedError(msg)

    def add_alias_cmd(self, address: str) -> Command:
        """Return privileged command that adds alias address to the loopback interface."""
        msg = f"Not implemented for platform '{self.NAME}'."
        raise NotImplementedError(msg)

    def list_listeners_cmd(self, port: int) -> Command:
        """Return command that lists TCP listeners on the given port."""
        msg = f"Not implemented for platform '{self.NAME}'."
        raise NotImplementedError(msg)

    def parse_listeners(self, output: str) -> list[Listener]:
        msg = f"Not implemented for platform '{self.NAME}'."
        raise NotImplementedError(msg)

    def list_listeners(self, runner: process_runner.ProcessRunner, port: int) -> list[Listener]:
        """Return TCP listeners on the given port."""
        cmd = self.list_listeners_cmd(port=port)
        result = runner.run(cmd.command, cmd.args, suppress_normal_logs=True)
        return self.parse_listeners(result.stdout)

    def inspect_loopback(self, runner: process_runner.ProcessRunner) -> InterfaceState:
        cmd = self.inspect_loopback_cmd()
        result = runner.run(cmd.command, cmd.args, suppress_normal_logs=True)
        return parse_interface_state(result.stdout)


class LinuxPlatform(Platform):
    """Linux, using `ip` and `ss` from iproute2."""

    NAME: tp.ClassVar[str] = "Linux"
    INTERFACE: tp.Final[str] = "lo"

    def inspect_loopback_cmd(self) -> Command:
        return Command(command="ip", args=("-4", "addr", "show", "dev", self.INTERFACE))

    def bring_up_cmd(self) -> Command:
        return self._privileged("ip", "link", "set", "dev", self.INTERFACE, "up")

    def add_alias_cmd(self, address: str) -> Command:
        return self._privileged("ip", "addr", "add", f"{address}/8", "dev", self.INTERFACE)

    def list_listeners_cmd(self, port: int) -> Command:
        return Command(command="ss", args=("-Hltn", "sport", "=", f":{port}"))

    def parse_listeners(self, output: str) -> list[Listener]:
        # State Recv-Q Send-Q Local-Address:Port Peer-Address:Port
        listeners = []
        for line in output.splitlines():
            fields = line.split()
            if len(fields) < 4 or fields[0] != "LISTEN":
                continue
            listener = split_host_port(fields[3])
            if listener:
                listeners.append(listener)
        return listeners


class DarwinPlatform(Platform):
    """macOS, using `ifconfig` and `lsof`."""

    NAME: tp.ClassVar[str] = "Darwin"
    INTERFACE: tp.Final[str] = "lo0"

    def inspect_loopback_cmd(self) -> Command:
        return Command(command="ifconfig", args=(self.INTERFACE,))

    def bring_up_cmd(self) -> Command:
        return self._privileged("ifconfig", self.INTERFACE, "up")

    def add_alias_cmd(self, address: str) -> Command:
        return self._privileged("ifconfig", self.INTERFACE, "alias", address, "up")

    def list_listeners_cmd(self, port: int) -> Command:
        return Command(command="lsof", args=("-nP", f"-iTCP:{port}", "-sTCP:LISTEN"))

    def parse_listeners(self, output: str) -> list[Listener]:
        # COMMAND PID USER FD TYPE DEVICE SIZE/OFF NODE NAME
        # java 1234 user 45u IPv4 0x1234 0t0 TCP 127.0.0.2:7100 (LISTEN)
        listeners = []
        for line in output.splitlines():
            if "(LISTEN)" not in line:
                continue
            fields = line.split()
            listener = split_host_port(fields[-2])
            if listener:
                listeners.append(listener)
        return listeners

    def list_listeners(self, runner: process_runner.ProcessRunner, port: int) -> list[Listener]:
        try:
            return super().list_listeners(runner=runner, port=port)
        except errors.ProcessExitError as exc:
            # `lsof` exits with 1 when nothing matches
            if exc.returncode == 1 and exc.result is not None and not exc.result.stdout:
                return []
            raise


PLATFORMS: dict[str, type[Platform]] = {
    LinuxPlatform.NAME: LinuxPlatform,
    DarwinPlatform.NAME: DarwinPlatform,
}


def detect_platform(runner: process_runner.ProcessRunner, sudo_cmd: str = "") -> Platform:
    """Detect OS family and return the matching platform."""
    result = runner.run("uname", ["-s"], suppress_normal_logs=True)
    os_name = result.stdout.strip()
    platform_cls = PLATFORMS.get(os_name)
    if platform_cls is None:
        msg = f"Unsupported platform '{os_name}', only {', '.join(PLATFORMS)} are supported."
        raise errors.UnsupportedPlatformError(
            msg, hint="Configure the loopback interface manually and disable auto-configuration."
        )
    return platform_cls(sudo_cmd=sudo_cmd)
