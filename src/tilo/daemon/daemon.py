"""Main daemon implementation."""

import logging
import os
import signal
import socket
import sys
import threading
from pathlib import Path
from typing import Any, Optional

from tilo.core.config import ConfigManager
from tilo.core.messages import Request, Response
from tilo.core.session import TaskSession
from tilo.core.storage import StorageBackend, StorageError, create_backend
from tilo.daemon.dispatcher import Dispatcher
from tilo.daemon.ipc import IPCClient, IPCError, IPCServer
from tilo.daemon.pidfile import PIDFile, PIDFileError
from tilo.daemon.platform import get_pid_file_path, get_socket_path, is_daemon_supported

logger = logging.getLogger(__name__)


class DaemonError(Exception):
    """Daemon-related error."""

    pass


class TiloDaemon:
    """tilo background daemon.

    Owns the task session and serves client requests one at a time on a
    Unix socket until a shutdown request or a termination signal.
    """

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        backend: Optional[StorageBackend] = None,
    ):
        """Initialize daemon.

        Args:
            config: Configuration manager (default: load from default location)
            backend: Storage backend (default: the one named in the config)

        Raises:
            DaemonError: If the daemon is not supported on this platform
        """
        supported, reason = is_daemon_supported()
        if not supported:
            raise DaemonError(reason)

        self.config = config or ConfigManager()
        self.socket_path = get_socket_path(self.config)
        try:
            self.backend = backend or create_backend(self.config)
        except StorageError as e:
            raise DaemonError(str(e)) from e

        self.session = TaskSession(self.backend)
        self.dispatcher = Dispatcher(
            self.session,
            recent_limit=self.config.get("server.recent_limit", 5),
            listener_timeout=self.config.get("server.listener_timeout", 2.0),
        )
        self.ipc_server = IPCServer(self.socket_path, self._handle_request)
        self.pid_file = PIDFile(get_pid_file_path(self.config))

        self.running = False
        self._log_handlers: list[logging.Handler] = []
        self._stopped = False

    @property
    def shutdown_event(self) -> threading.Event:
        return self.session.shutdown_requested

    def start(self, foreground: bool = False) -> None:
        """Start the daemon and serve until shutdown.

        Args:
            foreground: Run in foreground (don't daemonize)

        Raises:
            DaemonError: If the daemon is already running or fails to start
        """
        self._check_not_running()

        self._setup_logging(console=foreground)
        logger.info("Starting tilo daemon...")

        if not foreground:
            self._daemonize()

        try:
            self._prepare_directories()
            self.backend.init()
            self.ipc_server.start()
            self.pid_file.claim()
        except (OSError, StorageError, IPCError, PIDFileError) as e:
            logger.error(f"Failed to start daemon: {e}")
            self.stop()
            raise DaemonError(f"Failed to start daemon: {e}") from e

        self._setup_signal_handlers()
        self.running = True
        logger.info(f"Daemon started (PID: {os.getpid()})")

        try:
            self.serve_forever()
        finally:
            self.stop()

    def serve_forever(self, poll_interval: float = 0.5) -> None:
        """Serve queued connections one by one until shutdown is requested."""
        while not self.shutdown_event.is_set():
            self.ipc_server.serve_next(timeout=poll_interval)

    def stop(self) -> None:
        """Stop the daemon gracefully. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Stopping daemon...")
        self.running = False

        transition = self.session.shutdown()
        if transition.stopped is not None:
            logger.info(f"Stopped task {transition.stopped.name}")

        self.ipc_server.stop()
        self.pid_file.release()
        try:
            self.socket_path.parent.rmdir()
        except OSError:
            logger.debug(f"Leaving {self.socket_path.parent} in place")

        try:
            self.backend.close()
        except StorageError as e:
            logger.error(str(e))

        logger.info("Daemon stopped")
        self._teardown_logging()

    def _check_not_running(self) -> None:
        """Refuse to start over a live daemon.

        A socket file nobody answers on, with no live PID recorded next
        to it, is stale and gets replaced on bind.

        Raises:
            DaemonError: If another daemon owns the PID file or answers on the socket
        """
        owner = self.pid_file.owner()
        if owner is not None:
            raise DaemonError(f"Daemon is already running (PID: {owner})")
        if IPCClient(self.socket_path, timeout=1.0).is_daemon_running():
            raise DaemonError(f"Daemon is already running on {self.socket_path}")

    def _handle_request(
        self, payload: dict[str, Any], conn: socket.socket
    ) -> Optional[dict[str, Any]]:
        request = Request.from_dict(payload)
        response = self.dispatcher.dispatch(request, conn)
        return response.to_dict() if isinstance(response, Response) else None

    def _prepare_directories(self) -> None:
        """Create the socket and database directories (owner only)."""
        directories = [self.socket_path.parent]
        db_file = self.config.get("backend.sqlite3.db_file")
        if db_file and db_file != ":memory:":
            directories.append(Path(db_file).expanduser().parent)
        for directory in directories:
            directory.mkdir(mode=0o700, parents=True, exist_ok=True)

    def _setup_logging(self, console: bool = True) -> None:
        """Setup daemon logging."""
        log_level = getattr(logging, self.config.get("logging.level", "INFO"))
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)

        handlers: list[logging.Handler] = []
        log_file = self.config.get("logging.file")
        if log_file:
            log_path = Path(log_file).expanduser()
            log_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_path))
        # Console handler (for foreground mode)
        if console:
            handlers.append(logging.StreamHandler())

        for handler in handlers:
            handler.setLevel(log_level)
            handler.setFormatter(formatter)
            root_logger.addHandler(handler)
        self._log_handlers = handlers

    def _teardown_logging(self) -> None:
        root_logger = logging.getLogger()
        for handler in self._log_handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self._log_handlers = []

    def _daemonize(self) -> None:
        """Daemonize the process (Unix double-fork)."""
        try:
            # First fork
            pid = os.fork()
            if pid > 0:
                os._exit(0)

            # Decouple from parent environment
            os.chdir("/")
            os.setsid()
            os.umask(0o077)

            # Second fork
            pid = os.fork()
            if pid > 0:
                os._exit(0)

            # Redirect standard file descriptors
            sys.stdout.flush()
            sys.stderr.flush()
            with open(os.devnull, "r") as devnull:
                os.dup2(devnull.fileno(), sys.stdin.fileno())
            with open(os.devnull, "a+") as devnull:
                os.dup2(devnull.fileno(), sys.stdout.fileno())
            with open(os.devnull, "a+") as devnull:
                os.dup2(devnull.fileno(), sys.stderr.fileno())

        except OSError as e:
            logger.error(f"Failed to daemonize: {e}")
            sys.exit(1)

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        if threading.current_thread() is not threading.main_thread():
            return
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Handle shutdown signals.

        Args:
            signum: Signal number
            frame: Current stack frame
        """
        logger.info(f"Received signal {signum}, shutting down...")
        self.shutdown_event.set()
