"""Tests for notification fan-out."""

import json
import socket
from datetime import datetime
from unittest.mock import Mock

import pytest  # type: ignore[import-not-found]

from tilo.core.models import Notification
from tilo.core.notifications import Listener, ListenerError, NotificationHub

SINCE = datetime(2019, 5, 14, 9, 0, 0)


def _listener(fail: bool = False) -> Listener:
    transport = Mock()
    if fail:
        transport.sendall.side_effect = BrokenPipeError("gone")
    return Listener(transport)


class TestListener:
    """Test Listener."""

    def test_notify_sends_json_line(self) -> None:
        """Test the wire form of a notification."""
        listener = _listener()
        listener.notify(Notification("writing", SINCE))

        (payload,) = listener.transport.sendall.call_args.args
        assert payload.endswith(b"\n")
        assert json.loads(payload) == {"task": "writing", "since": "2019-05-14T09:00:00"}

    def test_disconnect(self) -> None:
        """Test disconnect closes the transport once."""
        transport = Mock()
        listener = Listener(transport)
        listener.disconnect()
        listener.disconnect()

        transport.close.assert_called_once()
        assert listener.connected is False

    def test_notify_after_disconnect(self) -> None:
        """Test a disconnected listener cannot be notified."""
        listener = _listener()
        listener.disconnect()

        with pytest.raises(OSError):
            listener.notify(Notification("writing", SINCE))

    def test_real_socket_pair(self) -> None:
        """Test delivery over a connected socket."""
        left, right = socket.socketpair()
        try:
            Listener(left).notify(Notification("", SINCE))
            assert right.recv(4096) == b'{"task": "", "since": "2019-05-14T09:00:00"}\n'
        finally:
            left.close()
            right.close()


class TestNotificationHub:
    """Test NotificationHub."""

    def test_register_sends_snapshot_first(self) -> None:
        """Test a registered listener immediately gets the current state."""
        hub = NotificationHub()
        listener = _listener()

        hub.register(listener, Notification("writing", SINCE))

        assert len(hub) == 1
        listener.transport.sendall.assert_called_once()

    def test_register_failure(self) -> None:
        """Test a failed first send rejects and disconnects the listener."""
        hub = NotificationHub()
        listener = _listener(fail=True)

        with pytest.raises(ListenerError):
            hub.register(listener, Notification("writing", SINCE))

        assert len(hub) == 0
        assert listener.connected is False

    def test_broadcast_returns_failed_listeners(self) -> None:
        """Test broadcast reports failures without removing them."""
        hub = NotificationHub()
        good = _listener()
        bad = _listener()
        hub.register(good, Notification("", SINCE))
        hub.register(bad, Notification("", SINCE))
        bad.transport.sendall.side_effect = BrokenPipeError("gone")

        failed = hub.broadcast(Notification("writing", SINCE))

        assert failed == [bad]
        assert len(hub) == 2
        assert good.transport.sendall.call_count == 2

    def test_prune_removes_and_disconnects(self) -> None:
        """Test prune is the step that drops listeners."""
        hub = NotificationHub()
        listener = _listener()
        hub.register(listener, Notification("", SINCE))

        hub.prune([listener])

        assert len(hub) == 0
        assert listener.connected is False

    def test_publish_drops_failed_listeners(self) -> None:
        """Test publish broadcasts and prunes."""
        hub = NotificationHub()
        good = _listener()
        bad = _listener()
        hub.register(good, Notification("", SINCE))
        hub.register(bad, Notification("", SINCE))
        bad.transport.sendall.side_effect = TimeoutError("slow")

        hub.publish(Notification("writing", SINCE))

        assert hub.listeners == [good]

    def test_broadcast_to_nobody(self) -> None:
        """Test broadcasting without listeners."""
        assert NotificationHub().broadcast(Notification("", SINCE)) == []

    def test_shutdown(self) -> None:
        """Test shutdown sends the sentinel then disconnects everyone."""
        hub = NotificationHub()
        listeners = [_listener(), _listener()]
        transports = [listener.transport for listener in listeners]
        for listener in listeners:
            hub.register(listener, Notification("", SINCE))

        hub.shutdown(Notification.shutdown(SINCE))

        assert len(hub) == 0
        for listener, transport in zip(listeners, transports):
            assert listener.connected is False
            last = json.loads(transport.sendall.call_args.args[0])
            assert last["task"] == "--shutdown"
            transport.close.assert_called_once()
