#!/usr/bin/env python3
"""Set up, start, stop and remove a local multi-node ccm cluster for testing.

For settings it uses the same env variables as the library (`CCM_CMD`, `CCM_CONFIG_DIR`, ...).
"""

import argparse
import logging
import pathlib as pl
import sys
import typing as tp

from ccm_test_cluster.cluster_management import cluster_nodes
from ccm_test_cluster.cluster_management import lifecycle
from ccm_test_cluster.utils import configuration
from ccm_test_cluster.utils import errors
from ccm_test_cluster.utils import framework_log

LOGGER = logging.getLogger(__name__)

OPERATIONS = ("setup", "initialize", "populate", "configure", "start", "stop", "remove")


def parse_conf_item(item: str) -> tuple[str, str]:
    """Parse `KEY=VALUE` command line argument."""
    key, sep, value = item.partition("=")
    if not (sep and key.strip()):
        msg = f"invalid config override '{item}', expected KEY=VALUE"
        raise argparse.ArgumentTypeError(msg)
    return key.strip(), value.strip()


def parse_start_address(value: str) -> int | str:
    return int(value) if value.isdigit() else value


def get_args(argv: tp.Sequence[str] | None = None) -> argparse.Namespace:
    """Get command line arguments."""
    parser = argparse.ArgumentParser(description=__doc__.split("\n", maxsplit=1)[0])
    parser.add_argument(
        "operation",
        choices=OPERATIONS,
        help="Operation to perform; `setup` = initialize, populate, configure and start",
    )
    parser.add_argument(
        "-n",
        "--name",
        default=configuration.DEFAULT_CLUSTER_NAME,
        help=f"Cluster name (default: {configuration.DEFAULT_CLUSTER_NAME})",
    )
    parser.add_argument(
        "-v",
        "--version",
        default=configuration.DEFAULT_CASSANDRA_VERSION,
        help=f"Cassandra version (default: {configuration.DEFAULT_CASSANDRA_VERSION})",
    )
    parser.add_argument(
        "--nodes",
        type=int,
        default=1,
        help="Number of nodes (default: 1)",
    )
    parser.add_argument(
        "-a",
        "--start-address",
        type=parse_start_address,
        default=1,
        help="Address of the first node, either the last octet or a full IPv4 address "
        "(default: 1, i.e. 127.0.0.1)",
    )
    parser.add_argument(
        "-j",
        "--jmx-port",
        type=int,
        action="append",
        default=[],
        help="JMX port of the first node, or repeat for every node "
        f"(default: {configuration.JMX_PORT_BASE})",
    )
    parser.add_argument(
        "-c",
        "--conf",
        type=parse_conf_item,
        action="append",
        default=[],
        help="Cluster config override KEY=VALUE, can be repeated",
    )
    parser.add_argument(
        "--purge",
        action="store_true",
        help="Remove existing cluster with the same name (default: false)",
    )
    parser.add_argument(
        "--no-loopback-config",
        action="store_true",
        help="Don't add missing loopback aliases (default: false)",
    )
    parser.add_argument(
        "--no-wait",
        action="store_true",
        help="Don't wait for the binary protocol when starting the cluster (default: false)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show all the output of the `ccm` commands (default: false)",
    )
    parser.add_argument(
        "-l",
        "--log-file",
        type=pl.Path,
        help="Record the session also to this file",
    )
    return parser.parse_args(argv)


def get_cluster_config(args: argparse.Namespace) -> cluster_nodes.ClusterConfig:
    jmx_port: int | list[int]
    if not args.jmx_port:
        jmx_port = configuration.JMX_PORT_BASE
    elif len(args.jmx_port) == 1:
        jmx_port = args.jmx_port[0]
    else:
        jmx_port = args.jmx_port

    return cluster_nodes.ClusterConfig(
        cluster_name=args.name,
        version=args.version,
        nodes=args.nodes,
        jmx_port=jmx_port,
        start_address=args.start_address,
        purge=args.purge,
        verbose=args.verbose,
        cluster_config=dict(args.conf),
        configure_loopback_aliases=not args.no_loopback_config,
        wait_for_binary_proto=not args.no_wait,
    )


def run_operation(cluster: lifecycle.ClusterLifecycle, operation: str) -> None:
    operations: dict[str, tp.Callable[[], tp.Any]] = {
        "setup": cluster.setup,
        "initialize": cluster.initialize,
        "populate": cluster.populate_nodes,
        "configure": cluster.configure_nodes,
        "start": cluster.start,
        "stop": cluster.shutdown,
        "remove": cluster.remove,
    }
    operations[operation]()


def main(argv: tp.Sequence[str] | None = None) -> int:
    args = get_args(argv)
    logging.basicConfig(
        format="%(levelname)s:%(message)s", level=logging.DEBUG if args.verbose else logging.INFO
    )

    try:
        cluster_config = get_cluster_config(args)
    except ValueError as exc:
        LOGGER.error(f"Invalid cluster configuration: {exc}")  # noqa: TRY400
        return 1

    log_sink = framework_log.default_log_sink
    if args.log_file:
        log_sink = framework_log.get_file_log_sink(log_file=args.log_file, console=log_sink)

    cluster = lifecycle.ClusterLifecycle(cluster_config=cluster_config, log_sink=log_sink)
    try:
        run_operation(cluster=cluster, operation=args.operation)
    except errors.CCMClusterError:
        # Already reported by the cluster lifecycle
        return 1
    except Exception:
        LOGGER.exception("Failure")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
