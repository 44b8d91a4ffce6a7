"""IPC between the daemon and its clients.

Newline-delimited JSON over a Unix domain socket. A background thread
accepts connections and queues them; the daemon's main loop takes them
one at a time, so requests never run concurrently.
"""

import json
import logging
import queue
import socket
import threading
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from tilo.core.messages import Request, Response
from tilo.core.models import Notification

logger = logging.getLogger(__name__)

# Handler gets the decoded request and the connection. Returning None keeps
# the connection open for the handler's own use.
RequestHandler = Callable[[dict[str, Any], socket.socket], Optional[dict[str, Any]]]


class IPCError(Exception):
    """IPC communication error."""

    pass


def encode_message(message: dict[str, Any]) -> bytes:
    return json.dumps(message).encode("utf-8") + b"\n"


def read_message(sock: socket.socket, buffer: bytes = b"") -> tuple[Optional[bytes], bytes]:
    """Read one newline-terminated message.

    Args:
        sock: Socket to read from
        buffer: Bytes left over from a previous read

    Returns:
        Tuple of (message without newline or None on EOF, leftover bytes)
    """
    data = buffer
    while b"\n" not in data:
        chunk = sock.recv(4096)
        if not chunk:
            return (data or None), b""
        data += chunk
    line, _, rest = data.partition(b"\n")
    return line, rest


class IPCServer:
    """IPC server for handling client requests."""

    def __init__(self, socket_path: Path, handler: RequestHandler):
        """Initialize IPC server.

        Args:
            socket_path: Path of the Unix socket
            handler: Called for each decoded request
        """
        self.socket_path = Path(socket_path)
        self.handler = handler
        self.socket: Optional[socket.socket] = None
        self.running = False
        self._connections: "queue.Queue[socket.socket]" = queue.Queue()
        self._server_thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Bind the socket and start accepting connections.

        Raises:
            IPCError: If the socket cannot be bound
        """
        if self.running:
            logger.warning("IPC server already running")
            return

        try:
            self.socket_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            # Clean up any stale socket
            if self.socket_path.exists():
                self.socket_path.unlink()
            self.socket = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            self.socket.bind(str(self.socket_path))
            self.socket.listen(5)
            # Set socket permissions (owner only)
            self.socket_path.chmod(0o600)
        except OSError as e:
            if self.socket is not None:
                self.socket.close()
                self.socket = None
            raise IPCError(f"Failed to bind {self.socket_path}: {e}") from e

        self.running = True
        self._server_thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._server_thread.start()
        logger.info(f"IPC server started on {self.socket_path}")

    def _accept_loop(self) -> None:
        """Accept client connections and queue them."""
        while self.running:
            try:
                if self.socket is None:
                    break

                self.socket.settimeout(1.0)  # Allow periodic checks of self.running
                try:
                    client_socket, _ = self.socket.accept()
                except socket.timeout:
                    continue

                client_socket.settimeout(None)
                self._connections.put(client_socket)
            except OSError as e:
                if self.running:  # Only log if not shutting down
                    logger.error(f"Error in accept loop: {e}")

    def serve_next(self, timeout: Optional[float] = None) -> bool:
        """Handle one queued connection in the calling thread.

        Args:
            timeout: Seconds to wait for a connection (None blocks)

        Returns:
            True if a connection was handled
        """
        try:
            client_socket = self._connections.get(timeout=timeout)
        except queue.Empty:
            return False
        self._handle_client(client_socket)
        return True

    def _handle_client(self, client_socket: socket.socket) -> None:
        """Read one request, answer it and close unless the handler kept it."""
        keep_open = False
        try:
            data, _ = read_message(client_socket)
            if not data:
                return

            try:
                request = json.loads(data.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as e:
                logger.warning(f"Malformed request: {e}")
                client_socket.sendall(
                    encode_message(self._create_error_response(f"Malformed request: {e}"))
                )
                return

            response = self._process_request(request, client_socket)
            if response is None:
                keep_open = True
                return
            client_socket.sendall(encode_message(response))

        except OSError as e:
            logger.error(f"Error handling client: {e}")
        except Exception:
            # The client goes unanswered, the loop keeps serving
            logger.exception("Unexpected error handling client")
            keep_open = False
        finally:
            if not keep_open:
                client_socket.close()

    def _process_request(
        self, request: Any, client_socket: socket.socket
    ) -> Optional[dict[str, Any]]:
        if not isinstance(request, dict):
            return self._create_error_response("Invalid request")
        try:
            return self.handler(request, client_socket)
        except ValueError as e:
            return self._create_error_response(str(e))

    def _create_error_response(self, message: str) -> dict[str, Any]:
        return Response.failure(message).to_dict()

    def stop(self) -> None:
        """Stop the IPC server."""
        if not self.running:
            return

        logger.info("Stopping IPC server...")
        self.running = False

        # Close socket
        if self.socket:
            self.socket.close()
            self.socket = None

        # Wait for server thread
        if self._server_thread:
            self._server_thread.join(timeout=2.0)

        # Drop connections nobody will serve
        while True:
            try:
                self._connections.get_nowait().close()
            except queue.Empty:
                break

        # Clean up socket file
        if self.socket_path.exists():
            self.socket_path.unlink()

        logger.info("IPC server stopped")


class IPCClient:
    """IPC client for communicating with the daemon."""

    def __init__(self, socket_path: Path, timeout: float = 5.0):
        """Initialize IPC client.

        Args:
            socket_path: Path of the daemon socket
            timeout: Connection timeout in seconds
        """
        self.socket_path = Path(socket_path)
        self.timeout = timeout

    def _connect(self) -> socket.socket:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        try:
            sock.connect(str(self.socket_path))
        except OSError:
            sock.close()
            raise
        return sock

    def call(self, request: Request) -> Response:
        """Send a request and wait for its response.

        Raises:
            IPCError: If communication fails
        """
        try:
            sock = self._connect()
        except OSError as e:
            raise IPCError(f"Failed to connect to daemon at {self.socket_path}: {e}") from e

        try:
            sock.sendall(encode_message(request.to_dict()))
            data, _ = read_message(sock)
            if not data:
                raise IPCError("Daemon closed the connection without answering")
            return Response.from_dict(json.loads(data.decode("utf-8")))
        except (OSError, ValueError) as e:
            raise IPCError(f"Failed to communicate with daemon: {e}") from e
        finally:
            sock.close()

    def listen(self) -> Iterator[Notification]:
        """Stream notifications until the daemon shuts down or disconnects.

        Raises:
            IPCError: If connecting fails or the daemon rejects the listener
        """
        try:
            sock = self._connect()
            sock.sendall(encode_message(Request("listen").to_dict()))
            sock.settimeout(None)
        except OSError as e:
            raise IPCError(f"Failed to connect to daemon at {self.socket_path}: {e}") from e

        buffer = b""
        try:
            while True:
                try:
                    data, buffer = read_message(sock, buffer)
                except OSError as e:
                    raise IPCError(f"Lost connection to daemon: {e}") from e
                if data is None:
                    return
                try:
                    message = json.loads(data.decode("utf-8"))
                except ValueError as e:
                    raise IPCError(f"Malformed notification: {e}") from e
                if "status" in message:
                    raise IPCError(Response.from_dict(message).error or "Listen failed")
                notification = Notification.from_dict(message)
                yield notification
                if notification.is_shutdown:
                    return
        finally:
            sock.close()

    def is_daemon_running(self) -> bool:
        """Check if daemon is running.

        Returns:
            True if daemon is accessible, False otherwise
        """
        try:
            return not self.call(Request("ping")).failed
        except IPCError:
            return False
