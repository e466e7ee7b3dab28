"""Functions based on listing of listening TCP sockets (`ss` on Linux, `lsof` on macOS)."""

import logging
import typing as tp

from ccm_test_cluster.cluster_management import platforms
from ccm_test_cluster.utils import process_runner

LOGGER = logging.getLogger(__name__)

# Listeners on these addresses occupy the port on every local address
WILDCARD_ADDRS = frozenset({"*", "0.0.0.0", "::", ""})


def blocks_address(listener: platforms.Listener, address: str) -> bool:
    """Check if the listener makes the port unavailable on the given address."""
    return listener.address in WILDCARD_ADDRS or listener.address in (
        address,
        f"::ffff:{address}",
    )


class PortAvailabilityChecker:
    """Check that nothing listens on the ports assigned to cluster nodes."""

    def __init__(
        self, runner: process_runner.ProcessRunner, platform: platforms.Platform
    ) -> None:
        self.runner = runner
        self.platform = platform

    def is_available(self, address: str, port: int) -> bool:
        """Check that the `address:port` is not bound by any listening process."""
        listeners = self.platform.list_listeners(runner=self.runner, port=port)
        occupied = [
            rec for rec in listeners if rec.port == port and blocks_address(rec, address=address)
        ]
        if occupied:
            LOGGER.debug(f"Port {address}:{port} is occupied by: {occupied}")
        return not occupied

    def unavailable(self, pairs: tp.Iterable[tuple[str, int]]) -> list[tuple[str, int]]:
        """Return the `(address, port)` pairs that are already in use.

        Each pair is checked independently.
        """
        return [(addr, port) for addr, port in pairs if not self.is_available(addr, port)]
