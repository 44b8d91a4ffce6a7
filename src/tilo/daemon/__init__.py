"""
tilo daemon - long-running process owning the active task.

The daemon provides:
- A serialized request loop on a local Unix socket
- Persistence of completed tasks
- A live notification feed for connected listeners
"""

from tilo.daemon.daemon import TiloDaemon
from tilo.daemon.ipc import IPCClient, IPCServer

__all__ = ["TiloDaemon", "IPCServer", "IPCClient"]
