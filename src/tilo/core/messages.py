"""Request and response messages exchanged with the daemon."""

from dataclasses import dataclass, field
from typing import Any, Optional

from tilo.core.models import Summary, Task, format_duration, format_time
from tilo.core.quantifier import Quantity

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


@dataclass
class Request:
    """A single client request.

    Attributes:
        operation: Operation identifier, e.g. ``start``
        tasks: Task names the operation applies to
        quantities: Resolved date ranges (queries only)
        flags: Boolean knobs
        options: String knobs, e.g. ``limit`` for ``recent``
    """

    operation: str
    tasks: list[str] = field(default_factory=list)
    quantities: list[Quantity] = field(default_factory=list)
    flags: dict[str, bool] = field(default_factory=dict)
    options: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "tasks": list(self.tasks),
            "quantities": [q.to_dict() for q in self.quantities],
            "flags": dict(self.flags),
            "options": dict(self.options),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Request":
        """Decode a request envelope.

        Raises:
            ValueError: If the envelope is malformed
        """
        if not isinstance(data, dict):
            raise ValueError("Request must be an object")
        operation = data.get("operation")
        if not isinstance(operation, str) or not operation:
            raise ValueError("Request has no operation")
        tasks = data.get("tasks") or []
        if not isinstance(tasks, list) or not all(isinstance(t, str) for t in tasks):
            raise ValueError("Request tasks must be a list of strings")
        quantities = data.get("quantities") or []
        if not isinstance(quantities, list):
            raise ValueError("Request quantities must be a list")
        flags = data.get("flags") or {}
        options = data.get("options") or {}
        if not isinstance(flags, dict) or not isinstance(options, dict):
            raise ValueError("Request flags and options must be objects")
        return cls(
            operation=operation,
            tasks=tasks,
            quantities=[Quantity.from_dict(q) for q in quantities],
            flags={str(k): bool(v) for k, v in flags.items()},
            options={str(k): str(v) for k, v in options.items()},
        )


@dataclass
class Response:
    """Structured reply with a tabular body of text rows."""

    status: str = STATUS_SUCCESS
    error: str = ""
    body: list[list[str]] = field(default_factory=list)

    @classmethod
    def failure(cls, error: str) -> "Response":
        return cls(status=STATUS_ERROR, error=error)

    @property
    def failed(self) -> bool:
        return self.status == STATUS_ERROR

    def set_error(self, error: str) -> "Response":
        self.status = STATUS_ERROR
        self.error = error
        return self

    def add_line(self, *fields: str) -> "Response":
        self.body.append([str(f) for f in fields])
        return self

    def add_task(self, tag: str, task: Task) -> "Response":
        """Append a tagged task description.

        Running tasks show only their start; ended tasks show both ends.
        """
        if task.ended is None:
            self.add_line(tag, "Since")
            self.add_line(task.name, format_time(task.started))
        else:
            self.add_line(tag, "Since", "Until")
            self.add_line(task.name, format_time(task.started), format_time(task.ended))
        return self

    def add_summaries(self, summaries: list[Summary]) -> "Response":
        """Append query results, separated by blank rows."""
        if not summaries:
            return self.add_line("Nothing found")
        for i, summary in enumerate(summaries):
            if i:
                self.add_line()
            header = [summary.task]
            if summary.quantity is not None:
                header.extend([summary.quantity.kind, *summary.quantity.operands])
            self.add_line(" ".join(header))
            self.add_line("First logged", format_time(summary.first_logged))
            self.add_line("Last logged", format_time(summary.last_logged))
            self.add_line("Total time", format_duration(summary.total_seconds))
        return self

    def add_recent(self, tasks: list[Task]) -> "Response":
        if not tasks:
            return self.add_line("Nothing found")
        self.add_line("Task", "Started", "Ended", "Duration")
        for task in tasks:
            duration = task.duration_seconds
            self.add_line(
                task.name,
                format_time(task.started),
                format_time(task.ended) if task.ended else "running",
                format_duration(duration) if duration is not None else "",
            )
        return self

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status, "error": self.error, "body": self.body}

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "Response":
        if not isinstance(data, dict):
            return cls.failure("Malformed response")
        return cls(
            status=data.get("status", STATUS_ERROR),
            error=data.get("error", ""),
            body=[[str(f) for f in row] for row in data.get("body") or []],
        )
