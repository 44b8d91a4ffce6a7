"""Core data models for task timing."""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Optional

from tilo.core.quantifier import Quantity

ALL_TASKS = ":all"
SHUTDOWN_TASK = "--shutdown"
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def now() -> datetime:
    """Current local time truncated to whole seconds."""
    return datetime.now().replace(microsecond=0)


def valid_task_name(name: str) -> bool:
    """Check whether a name can be used for a task.

    Names may not be empty, start with ``-`` or ``:`` or contain
    whitespace or commas.
    """
    if not name or name[0] in "-:":
        return False
    return not any(ch.isspace() or ch == "," for ch in name)


def validate_task_names(names: list[str], allow_all: bool = False) -> list[str]:
    """Validate a list of task names.

    Args:
        names: Task names to check
        allow_all: Whether the ``:all`` marker is accepted

    Returns:
        The validated names

    Raises:
        ValueError: If the list is empty or a name is invalid
    """
    if not names:
        raise ValueError("No task given")
    if ALL_TASKS in names:
        if not allow_all:
            raise ValueError(f"'{ALL_TASKS}' is not allowed here")
        if len(names) > 1:
            raise ValueError(f"'{ALL_TASKS}' must be the only task")
        return names
    for name in names:
        if not valid_task_name(name):
            raise ValueError(f"Invalid task name: '{name}'")
    return names


def parse_task_names(field: str, allow_all: bool = False) -> list[str]:
    """Split a comma-separated task list and validate it."""
    names = [name.strip() for name in field.split(",") if name.strip()]
    return validate_task_names(names, allow_all=allow_all)


@dataclass
class Task:
    """A timed task.

    Attributes:
        name: Task name (empty when representing the idle state)
        started: When the task started, or when the idle state began
        ended: When the task ended (None while running)
    """

    name: str
    started: datetime
    ended: Optional[datetime] = None

    @classmethod
    def idle(cls, at: datetime) -> "Task":
        """Create the idle placeholder starting at ``at``."""
        return cls(name="", started=at)

    @property
    def is_idle(self) -> bool:
        return self.name == ""

    @property
    def is_running(self) -> bool:
        """Check if this is an active, not yet ended task."""
        return not self.is_idle and self.ended is None

    @property
    def duration_seconds(self) -> Optional[int]:
        """Calculate duration in seconds. Returns None if the task is ongoing."""
        if self.ended is None:
            return None
        return int((self.ended - self.started).total_seconds())

    def stop(self, at: datetime) -> "Task":
        """Mark the task as ended at ``at`` (never before it started)."""
        self.ended = max(at, self.started)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "started": self.started.isoformat(),
            "ended": self.ended.isoformat() if self.ended else "",
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        return cls(
            name=data["name"],
            started=datetime.fromisoformat(data["started"]),
            ended=datetime.fromisoformat(data["ended"]) if data.get("ended") else None,
        )


@dataclass(frozen=True)
class Summary:
    """Aggregated time of one task over one date range."""

    task: str
    total_seconds: int
    first_logged: datetime
    last_logged: datetime
    quantity: Optional[Quantity] = None

    def with_quantity(self, quantity: Quantity) -> "Summary":
        return replace(self, quantity=quantity)


@dataclass(frozen=True)
class Notification:
    """State change pushed to listeners.

    An empty task name means idle; ``--shutdown`` means the server is
    going away.
    """

    task: str
    since: datetime

    @classmethod
    def from_task(cls, task: Task) -> "Notification":
        """Snapshot a task slot. Ended tasks report their end time."""
        if task.is_idle or task.ended is None:
            return cls(task=task.name, since=task.started)
        return cls(task="", since=task.ended)

    @classmethod
    def shutdown(cls, at: datetime) -> "Notification":
        return cls(task=SHUTDOWN_TASK, since=at)

    @property
    def is_shutdown(self) -> bool:
        return self.task == SHUTDOWN_TASK

    def to_dict(self) -> dict[str, Any]:
        return {"task": self.task, "since": self.since.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Notification":
        return cls(task=data["task"], since=datetime.fromisoformat(data["since"]))


def format_duration(seconds: int) -> str:
    """Format duration as human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string (e.g., "2h 15m 30s")
    """
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def format_time(value: Optional[datetime]) -> str:
    return value.strftime(TIME_FORMAT) if value else ""
