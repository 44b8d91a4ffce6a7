"""Notification fan-out to connected listeners."""

import json
import logging
import socket
from typing import Any, Optional

from tilo.core.models import Notification

logger = logging.getLogger(__name__)


class ListenerError(Exception):
    """Raised when a listener cannot be registered."""

    pass


class Listener:
    """A connected client receiving newline-delimited notifications."""

    def __init__(self, transport: Any, name: Optional[str] = None):
        """Initialize listener.

        Args:
            transport: Connected socket (anything with ``sendall``/``close``)
            name: Label used in log messages
        """
        self.transport: Optional[Any] = transport
        self.name = name or f"listener-{id(self):x}"

    @property
    def connected(self) -> bool:
        return self.transport is not None

    def notify(self, notification: Notification) -> None:
        """Send one notification.

        Raises:
            OSError: If the transport is gone or the send fails
        """
        if self.transport is None:
            raise ConnectionError(f"{self.name} is disconnected")
        payload = json.dumps(notification.to_dict()).encode("utf-8") + b"\n"
        self.transport.sendall(payload)

    def disconnect(self) -> None:
        transport, self.transport = self.transport, None
        if transport is None:
            return
        try:
            transport.shutdown(socket.SHUT_RDWR)
        except (AttributeError, OSError):
            pass
        try:
            transport.close()
        except OSError as e:
            logger.debug(f"Error closing {self.name}: {e}")


class NotificationHub:
    """Registry of listeners and best-effort broadcast of task changes.

    A listener whose send fails is disconnected and removed. Nothing is
    retried or queued for later delivery.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    @property
    def listeners(self) -> list[Listener]:
        return list(self._listeners)

    def __len__(self) -> int:
        return len(self._listeners)

    def register(self, listener: Listener, snapshot: Notification) -> None:
        """Add a listener after sending it the current state.

        Args:
            listener: Listener to add
            snapshot: Notification describing the state at registration

        Raises:
            ListenerError: If the first send fails (listener is disconnected)
        """
        try:
            listener.notify(snapshot)
        except OSError as e:
            listener.disconnect()
            raise ListenerError(f"Failed to register {listener.name}: {e}") from e
        self._listeners.append(listener)
        logger.info(f"Registered {listener.name} ({len(self._listeners)} listening)")

    def broadcast(self, notification: Notification) -> list[Listener]:
        """Send a notification to every registered listener.

        Returns:
            Listeners whose send failed
        """
        logger.debug(f"Broadcasting {notification.to_dict()} to {len(self._listeners)}")
        failed = []
        for listener in list(self._listeners):
            try:
                listener.notify(notification)
            except OSError as e:
                logger.warning(f"Dropping {listener.name}: {e}")
                failed.append(listener)
        return failed

    def prune(self, failed: list[Listener]) -> None:
        """Disconnect and remove the given listeners."""
        for listener in failed:
            listener.disconnect()
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, notification: Notification) -> None:
        self.prune(self.broadcast(notification))

    def shutdown(self, notification: Notification) -> None:
        """Send the shutdown notification, then disconnect everyone."""
        logger.info(f"Disconnecting {len(self._listeners)} listener(s)")
        self.broadcast(notification)
        for listener in self._listeners:
            listener.disconnect()
        self._listeners.clear()
