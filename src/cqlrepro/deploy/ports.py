"""Ephemeral host-port allocation."""

from __future__ import annotations

import socket


def allocate_port(host: str = "") -> int:
    """Ask the OS for a free TCP port and release it for the container to bind.

    The port is free at the time of the call; another process could take it
    before the container starts, in which case ``docker start`` fails and the
    run aborts with a ``ProvisionError``.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


__all__ = ["allocate_port"]
