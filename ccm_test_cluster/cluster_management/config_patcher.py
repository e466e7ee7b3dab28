"""Patching of config files generated by `ccm populate`.

`ccm populate` assigns the addresses 127.0.0.1, 127.0.0.2, ... and the JMX ports 7100, 7200, ...
to the nodes. The files are rewritten so the nodes use the addresses and ports assigned by us.

* `nodeK/conf/cassandra.yaml` - node settings, contains the templated `listen_address`
* `nodeK/conf/cassandra-env.sh` - contains the `JMX_PORT` declaration
* `nodeK/node.conf` - node descriptor used by `ccm`
* `cluster.conf` - cluster descriptor used by `ccm`

The old addresses and ports are first captured from all the nodes, in parallel, without modifying
any file. Only then the files are rewritten, using all the old/new pairs, as the settings files
and descriptors list addresses of the other nodes too. The address replacements are applied in
reverse node order.
"""

import concurrent.futures
import dataclasses
import functools
import logging
import pathlib as pl
import re
import typing as tp

from ccm_test_cluster.cluster_management import cluster_nodes
from ccm_test_cluster.utils import errors
from ccm_test_cluster.utils import framework_log
from ccm_test_cluster.utils import locking
from ccm_test_cluster.utils.framework_log import Severity

LOGGER = logging.getLogger(__name__)

SETTINGS_FILE = pl.Path("conf") / "cassandra.yaml"
ENV_SCRIPT = pl.Path("conf") / "cassandra-env.sh"
NODE_DESCRIPTOR = "node.conf"
CLUSTER_DESCRIPTOR = "cluster.conf"

LISTEN_ADDR_RE = re.compile(
    r"^listen_address:\s*['\"]?(?P<addr>127(?:\.[0-9]{1,3}){3})['\"]?\s*$", re.MULTILINE
)
ENV_JMX_PORT_RE = re.compile(r"^(?P<prefix>\s*JMX_PORT=['\"]?)(?P<port>[0-9]+)", re.MULTILINE)
NODE_JMX_PORT_RE = re.compile(r"^(?P<prefix>jmx_port:\s*['\"]?)(?P<port>[0-9]+)", re.MULTILINE)


@dataclasses.dataclass(frozen=True, order=True)
class ReplacementDefinition:
    node_name: str
    old_address: str
    new_address: str
    old_port: int
    new_port: int


@functools.cache
def _get_addr_re(address: str) -> re.Pattern:
    # Don't match the address as a part of a longer address, e.g. "127.0.0.1" in "127.0.0.10"
    return re.compile(rf"(?<![0-9.]){re.escape(address)}(?![0-9])")


def replace_address(content: str, old: str, new: str) -> str:
    return _get_addr_re(old).sub(new, content)


def replace_addresses(content: str, replacements: tp.Sequence[ReplacementDefinition]) -> str:
    """Replace all old addresses with the new ones, starting with the last node."""
    for rdef in reversed(replacements):
        content = replace_address(content=content, old=rdef.old_address, new=rdef.new_address)
    return content


def replace_port(content: str, port_re: re.Pattern, old: int, new: int) -> str:
    """Replace the port number in the declaration matched by `port_re`."""

    def _sub(match: re.Match) -> str:
        if int(match.group("port")) != old:
            return match.group(0)
        return f"{match.group('prefix')}{new}"

    return port_re.sub(_sub, content)


def _read(fpath: pl.Path) -> str:
    try:
        return fpath.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        msg = f"Config file '{fpath}' doesn't exist."
        raise errors.MalformedConfigTemplateError(msg) from exc


def _search(pattern: re.Pattern, content: str, fpath: pl.Path, what: str) -> re.Match:
    match = pattern.search(content)
    if not match:
        msg = f"Failed to find {what} in '{fpath}'."
        raise errors.MalformedConfigTemplateError(msg)
    return match


class ConfigPatcher:
    """Reassign addresses and JMX ports in the files generated by `ccm`."""

    def __init__(self, log_sink: framework_log.LogSink | None = None) -> None:
        self.log_sink = log_sink or framework_log.default_log_sink

    def capture_node(
        self, config_root: pl.Path, node: cluster_nodes.Node
    ) -> ReplacementDefinition:
        """Return the old and new address and port of the node, without modifying any file.

        Both the settings file and the env script must contain the templated values.
        """
        node_dir = config_root / node.name
        settings_file = node_dir / SETTINGS_FILE
        env_script = node_dir / ENV_SCRIPT

        old_address = _search(
            LISTEN_ADDR_RE, content=_read(settings_file), fpath=settings_file, what="listen address"
        ).group("addr")
        old_port = int(
            _search(
                ENV_JMX_PORT_RE, content=_read(env_script), fpath=env_script, what="JMX port"
            ).group("port")
        )

        return ReplacementDefinition(
            node_name=node.name,
            old_address=old_address,
            new_address=node.address,
            old_port=old_port,
            new_port=node.jmx_port,
        )

    def patch_node(
        self,
        config_root: pl.Path,
        rdef: ReplacementDefinition,
        replacements: tp.Sequence[ReplacementDefinition],
    ) -> None:
        """Patch node settings and env script.

        All the address pairs are applied to the settings file, as it lists also addresses of
        the other nodes (seeds).
        """
        node_dir = config_root / rdef.node_name
        settings_file = node_dir / SETTINGS_FILE
        env_script = node_dir / ENV_SCRIPT

        settings_file.write_text(
            replace_addresses(content=_read(settings_file), replacements=replacements),
            encoding="utf-8",
        )
        env_script.write_text(
            replace_port(
                content=_read(env_script),
                port_re=ENV_JMX_PORT_RE,
                old=rdef.old_port,
                new=rdef.new_port,
            ),
            encoding="utf-8",
        )

        LOGGER.debug(
            f"Patched {rdef.node_name}: {rdef.old_address} -> {rdef.new_address}, "
            f"{rdef.old_port} -> {rdef.new_port}"
        )

    def patch_node_descriptor(
        self,
        config_root: pl.Path,
        rdef: ReplacementDefinition,
        replacements: tp.Sequence[ReplacementDefinition],
    ) -> None:
        descriptor = config_root / rdef.node_name / NODE_DESCRIPTOR
        content = _read(descriptor)
        _search(NODE_JMX_PORT_RE, content=content, fpath=descriptor, what="JMX port")

        content = replace_addresses(content=content, replacements=replacements)
        content = replace_port(
            content=content, port_re=NODE_JMX_PORT_RE, old=rdef.old_port, new=rdef.new_port
        )
        descriptor.write_text(content, encoding="utf-8")

    def patch_cluster_descriptor(
        self, config_root: pl.Path, replacements: tp.Sequence[ReplacementDefinition]
    ) -> None:
        descriptor = config_root / CLUSTER_DESCRIPTOR
        content = _read(descriptor)
        descriptor.write_text(
            replace_addresses(content=content, replacements=replacements), encoding="utf-8"
        )

    def apply_address_and_port_assignments(
        self, config_root: pl.Path, nodes: tp.Sequence[cluster_nodes.Node]
    ) -> list[ReplacementDefinition]:
        """Reassign addresses and JMX ports of all nodes.

        Returns the replacements in node order. Files patched before a failure are left as they
        are.
        """
        config_root = pl.Path(config_root)
        nodes = sorted(nodes)
        if not nodes:
            return []

        with locking.cluster_tree_lock(config_root=config_root):
            num_threads = min(10, len(nodes))
            with concurrent.futures.ThreadPoolExecutor(max_workers=num_threads) as executor:
                futures = [executor.submit(self.capture_node, config_root, n) for n in nodes]
                replacements = [f.result() for f in futures]

                futures = [
                    executor.submit(self.patch_node, config_root, r, replacements)
                    for r in replacements
                ]
                for f in futures:
                    f.result()

            self.patch_cluster_descriptor(config_root=config_root, replacements=replacements)
            for rdef in replacements:
                self.patch_node_descriptor(
                    config_root=config_root, rdef=rdef, replacements=replacements
                )

        for rdef in replacements:
            self.log_sink(
                Severity.VERBOSE,
                f"{rdef.node_name}: address {rdef.old_address} -> {rdef.new_address}, "
                f"JMX port {rdef.old_port} -> {rdef.new_port}",
            )
        return replacements
