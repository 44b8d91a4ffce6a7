"""Task session: the single active task slot and its transitions."""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from tilo.core import models
from tilo.core.models import Notification, Task
from tilo.core.notifications import Listener, NotificationHub
from tilo.core.storage import StorageBackend, StorageError

logger = logging.getLogger(__name__)


class TaskStateError(ValueError):
    """Raised when an operation does not fit the current task state."""

    pass


@dataclass
class Transition:
    """Outcome of a state-changing operation.

    Attributes:
        stopped: Task that was ended, if any
        started: Task that became active, if any
        error: Persistence failure while saving ``stopped``
    """

    stopped: Optional[Task] = None
    started: Optional[Task] = None
    error: Optional[StorageError] = None

    @property
    def changed(self) -> bool:
        return self.stopped is not None or self.started is not None


class TaskSession:
    """Owns the current task and keeps storage and listeners in step.

    At most one task is active. Every transition persists the ended task
    (unless aborted) and broadcasts exactly one notification with the
    resulting state. Persistence failures are reported in the returned
    :class:`Transition` but never undo the in-memory change.
    """

    def __init__(
        self,
        backend: StorageBackend,
        hub: Optional[NotificationHub] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize session.

        Args:
            backend: Storage for completed tasks
            hub: Listener registry (creates an empty one if None)
            clock: Time source (defaults to wall-clock seconds)
        """
        self.backend = backend
        self.hub = hub if hub is not None else NotificationHub()
        self.clock = clock or models.now
        self._current = Task.idle(self.clock())
        self._shut_down = False
        self.shutdown_requested = threading.Event()

    @property
    def active(self) -> Optional[Task]:
        """The running task, or None when idle."""
        return None if self._current.is_idle else self._current

    def snapshot(self) -> Notification:
        return Notification.from_task(self._current)

    def start(self, name: str) -> Transition:
        """Start a task, stopping and persisting the active one first.

        Args:
            name: Task name

        Returns:
            Transition with the stopped (if any) and started task
        """
        at = self.clock()
        transition = Transition()
        if not self._current.is_idle:
            transition.stopped, transition.error = self._end(at, persist=True)
        self._current = Task(name=name, started=at)
        transition.started = self._current
        logger.info(f"Started task {name}")
        self._notify()
        return transition

    def stop(self) -> Transition:
        """Stop and persist the active task.

        Returns:
            Transition; empty when there was nothing to stop
        """
        if self._current.is_idle:
            logger.warning("Stop requested while idle")
            return Transition()
        stopped, error = self._end(self.clock(), persist=True)
        self._notify()
        return Transition(stopped=stopped, error=error)

    def abort(self) -> Task:
        """End the active task without saving it.

        Raises:
            TaskStateError: If no task is active
        """
        if self._current.is_idle:
            raise TaskStateError("No active task")
        aborted, _ = self._end(self.clock(), persist=False)
        logger.info(f"Aborted task {aborted.name}")
        self._notify()
        return aborted

    def current(self) -> Task:
        """Get the active task.

        Raises:
            TaskStateError: If no task is active
        """
        if self._current.is_idle:
            raise TaskStateError("No active task")
        return self._current

    def resume(self) -> Transition:
        """Restart the most recently completed task with a fresh timer.

        Raises:
            TaskStateError: If a task is active or nothing was recorded yet
            StorageError: If the history cannot be read
        """
        if not self._current.is_idle:
            raise TaskStateError("A task is already active")
        recent = self.backend.recent(1)
        if not recent:
            raise TaskStateError("No recent activity to continue")
        return self.start(recent[0].name)

    def register_listener(self, listener: Listener) -> None:
        """Add a listener and send it the current state.

        Raises:
            ListenerError: If the first send fails
        """
        self.hub.register(listener, self.snapshot())

    def shutdown(self) -> Transition:
        """Stop the active task, tell listeners and flag the loop to exit.

        Calling it again does nothing.
        """
        if self._shut_down:
            return Transition()
        self._shut_down = True
        at = self.clock()
        transition = Transition()
        if not self._current.is_idle:
            transition.stopped, transition.error = self._end(at, persist=True)
            self._notify()
        logger.info("Session shutting down")
        self.hub.shutdown(Notification.shutdown(at))
        self.shutdown_requested.set()
        return transition

    def _end(self, at: datetime, persist: bool) -> tuple[Task, Optional[StorageError]]:
        ended = self._current.stop(at)
        self._current = Task.idle(ended.ended or at)
        error = self._persist(ended) if persist else None
        return ended, error

    def _persist(self, task: Task) -> Optional[StorageError]:
        try:
            self.backend.save(task)
        except StorageError as e:
            logger.error(f"Failed to persist task {task.name}: {e}")
            return e
        return None

    def _notify(self) -> None:
        self.hub.publish(self.snapshot())
