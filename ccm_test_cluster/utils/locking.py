import logging
import pathlib as pl

from filelock import FileLock

# Suppress messages from filelock
logging.getLogger("filelock").setLevel(logging.WARNING)


def get_cluster_lock_file(config_root: pl.Path) -> pl.Path:
    """Return path to the lock file for the given cluster directory.

    The lock file is kept next to the cluster directory, so `ccm` doesn't see it.
    """
    return config_root.parent / f".{config_root.name}.lock"


def cluster_tree_lock(config_root: pl.Path) -> FileLock:
    """Return lock guarding modifications of files in the cluster directory."""
    return FileLock(get_cluster_lock_file(config_root=config_root))
