"""PID file recording which process serves a socket."""

import logging
import os
from pathlib import Path
from typing import Optional

import psutil  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)


class PIDFileError(Exception):
    """Raised when another live process holds the PID file."""

    pass


class PIDFile:
    """PID of the serving daemon, stored next to its socket.

    The daemon claims the file once its socket is bound and releases it
    at teardown. A file naming a dead process is stale and may be taken
    over; release never removes a file that names another process.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _recorded(self) -> Optional[int]:
        try:
            return int(self.path.read_text().strip())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable PID file {self.path}: {e}")
            return None

    def owner(self) -> Optional[int]:
        """PID of another live process recorded in the file, if any."""
        pid = self._recorded()
        if pid is None or pid == os.getpid():
            return None
        if not psutil.pid_exists(pid):
            logger.info(f"Stale PID file {self.path} (PID {pid} is gone)")
            return None
        return pid

    def claim(self) -> None:
        """Record the current process.

        Raises:
            PIDFileError: If a live process already holds the file
            OSError: If the file cannot be written
        """
        owner = self.owner()
        if owner is not None:
            raise PIDFileError(f"Daemon is already running (PID: {owner})")
        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        self.path.write_text(f"{os.getpid()}\n")
        logger.debug(f"Claimed {self.path}")

    def release(self) -> None:
        """Remove the file if it is ours (or unreadable)."""
        if not self.path.exists():
            return
        pid = self._recorded()
        if pid is not None and pid != os.getpid():
            logger.warning(f"{self.path} belongs to PID {pid}, leaving it")
            return
        try:
            self.path.unlink()
        except OSError as e:
            logger.error(f"Failed to release {self.path}: {e}")
