"""Cluster configuration and the nodes derived from it."""

import dataclasses
import ipaddress
import typing as tp

from packaging import version as pversion

from ccm_test_cluster.utils import configuration

LOOPBACK_PREFIX = "127.0.0"


@dataclasses.dataclass(frozen=True, order=True)
class Node:
    index: int
    address: str
    jmx_port: int

    @property
    def name(self) -> str:
        """Name of the node directory created by `ccm populate`."""
        return f"node{self.index + 1}"


def normalize_version(value: str | float) -> str:
    """Normalize Cassandra version, e.g. `3.8` (float) -> "3.8".

    Versions prefixed by source type ("git:", "binary:", ...) are passed to `ccm` as they are.
    """
    version_str = str(value).strip()
    if not version_str:
        msg = "Cassandra version must not be empty."
        raise ValueError(msg)
    if ":" in version_str:
        return version_str

    try:
        pversion.Version(version_str)
    except pversion.InvalidVersion as exc:
        msg = f"Invalid Cassandra version: '{version_str}'"
        raise ValueError(msg) from exc

    return version_str


def split_start_address(start_address: int | str) -> tuple[str, int]:
    """Return address prefix (first three octets) and the host octet of the start address."""
    if isinstance(start_address, bool):
        msg = f"Invalid start address: {start_address!r}"
        raise ValueError(msg)

    if isinstance(start_address, int):
        return LOOPBACK_PREFIX, start_address

    try:
        addr = ipaddress.IPv4Address(start_address.strip())
    except ipaddress.AddressValueError as exc:
        msg = f"Invalid start address: '{start_address}'"
        raise ValueError(msg) from exc

    prefix, suffix = str(addr).rsplit(".", maxsplit=1)
    return prefix, int(suffix)


@dataclasses.dataclass(frozen=True)
class ClusterConfig:
    """Configuration of a single cluster session."""

    cluster_name: str = configuration.DEFAULT_CLUSTER_NAME
    version: str = configuration.DEFAULT_CASSANDRA_VERSION
    nodes: int = 1
    jmx_port: int | tp.Sequence[int] = configuration.JMX_PORT_BASE
    start_address: int | str = 1
    purge: bool = False
    verbose: bool = False
    cluster_config: tp.Mapping[str, tp.Any] = dataclasses.field(default_factory=dict)
    configure_loopback_aliases: bool = True
    wait_for_binary_proto: bool = True

    def __post_init__(self) -> None:
        if not self.cluster_name:
            msg = "Cluster name must not be empty."
            raise ValueError(msg)

        object.__setattr__(self, "version", normalize_version(self.version))

        if self.nodes < 1:
            msg = f"Invalid number of nodes '{self.nodes}': must be >= 1"
            raise ValueError(msg)

        if not isinstance(self.jmx_port, int):
            object.__setattr__(self, "jmx_port", tuple(self.jmx_port))

        # Validate addresses and ports early
        self.get_nodes()

    @property
    def addresses(self) -> list[str]:
        prefix, suffix = split_start_address(self.start_address)
        last_suffix = suffix + self.nodes - 1
        if suffix < 1 or last_suffix > 254:
            msg = (
                f"Addresses '{prefix}.{suffix}' - '{prefix}.{last_suffix}' are out of range "
                "of usable host addresses."
            )
            raise ValueError(msg)
        return [f"{prefix}.{suffix + i}" for i in range(self.nodes)]

    @property
    def jmx_ports(self) -> list[int]:
        if isinstance(self.jmx_port, int):
            ports = [self.jmx_port + i for i in range(self.nodes)]
        else:
            ports = [int(p) for p in self.jmx_port]
            if len(ports) != self.nodes:
                msg = (
                    f"Number of JMX ports ({len(ports)}) doesn't match "
                    f"the number of nodes ({self.nodes})."
                )
                raise ValueError(msg)

        invalid = [p for p in ports if not 0 < p < 65536]
        if invalid:
            msg = f"Invalid JMX ports: {invalid}"
            raise ValueError(msg)
        if len(set(ports)) != len(ports):
            msg = f"JMX ports must be unique: {ports}"
            raise ValueError(msg)

        return ports

    def get_nodes(self) -> list[Node]:
        """Return nodes with their assigned addresses and JMX ports."""
        return [
            Node(index=i, address=addr, jmx_port=port)
            for i, (addr, port) in enumerate(zip(self.addresses, self.jmx_ports, strict=True))
        ]
