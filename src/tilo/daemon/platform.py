"""Runtime paths and platform support for the daemon."""

import platform
import socket
from pathlib import Path
from typing import Any, Tuple


def get_socket_path(config: Any) -> Path:
    return Path(config.get("server.socket")).expanduser()


def get_pid_file_path(config: Any) -> Path:
    """Get the PID file path, kept next to the server socket.

    A socket at ``/tmp/tilo1000/server`` gets ``/tmp/tilo1000/server.pid``.
    """
    socket_path = get_socket_path(config)
    return socket_path.with_name(f"{socket_path.name}.pid")


def is_daemon_supported() -> Tuple[bool, str]:
    """Check if the daemon can run here.

    Returns:
        Tuple of (is_supported, reason)
    """
    if not hasattr(socket, "AF_UNIX"):
        return False, f"The daemon requires Unix domain sockets ({platform.system()})"
    return True, ""
