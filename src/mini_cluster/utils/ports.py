"""Ephemeral port helpers."""

import socket
import time

from .logging import LaunchError, LogContext, get_logger

logger = get_logger(__name__, LogContext.CONFIG)


def get_random_free_port(host: str = "127.0.0.1") -> int:
    """Return a port that was free at the time of the call.

    The socket is closed before returning, so another process may grab the
    port before the caller binds it.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        port = sock.getsockname()[1]
    logger.debug("Allocated ephemeral port", port=port)
    return port


def is_port_open(host: str, port: int, timeout: float = 0.5) -> bool:
    """Check whether something accepts TCP connections on host:port."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def wait_for_port(
    host: str, port: int, timeout: float = 30.0, interval: float = 0.1
) -> None:
    """Poll host:port until it accepts connections.

    Raises:
        LaunchError: If nothing is listening before the timeout elapses
    """
    deadline = time.monotonic() + timeout
    while True:
        if is_port_open(host, port):
            logger.debug("Port is accepting connections", host=host, port=port)
            return
        if time.monotonic() >= deadline:
            raise LaunchError(
                f"Nothing listening on {host}:{port} after {timeout}s",
                context={"host": host, "port": port, "timeout": timeout},
            )
        time.sleep(interval)
