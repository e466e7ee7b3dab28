"""Cluster and environment configuration."""

import os
import pathlib as pl

# The external cluster manager executable
CCM_CMD = os.environ.get("CCM_CMD") or "ccm"

# Used for commands that change the loopback interface
SUDO_CMD = os.environ.get("SUDO_CMD") or "sudo"

# Same env variable is honored by `ccm` itself
CCM_CONFIG_DIR = os.environ.get("CCM_CONFIG_DIR") or ""

DEFAULT_CLUSTER_NAME = os.environ.get("CLUSTER_NAME") or "node-ccm"
DEFAULT_CASSANDRA_VERSION = os.environ.get("CASSANDRA_VERSION") or "3.9"

# `ccm populate` assigns 7100, 7200, ... to the nodes, we reassign from this base.
JMX_PORT_BASE = int(os.environ.get("JMX_PORT_BASE") or 7100)
if not 0 < JMX_PORT_BASE < 65536:
    msg = f"Invalid JMX_PORT_BASE: {JMX_PORT_BASE}"
    raise RuntimeError(msg)

DEFAULT_LOOPBACK_ADDR = "127.0.0.1"


def get_config_dir() -> pl.Path:
    """Return the directory where `ccm` keeps its clusters.

    The `HOME` env variable is required unless `CCM_CONFIG_DIR` is set.
    """
    if CCM_CONFIG_DIR:
        return pl.Path(CCM_CONFIG_DIR).expanduser().resolve()

    home = os.environ.get("HOME")
    if not home:
        msg = "The 'HOME' env variable is not set, cannot resolve the ccm config directory."
        raise RuntimeError(msg)

    return pl.Path(home) / ".ccm"
