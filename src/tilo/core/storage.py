"""Storage backends for completed tasks."""

import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from tilo.core.models import ALL_TASKS, Summary, Task
from tilo.core.quantifier import Quantity

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the backend cannot read or write records."""

    pass


class StorageBackend(ABC):
    """Relational store holding one record per completed task."""

    @abstractmethod
    def init(self) -> None:
        """Open the store and create its schema if needed."""

    @abstractmethod
    def close(self) -> None:
        """Release the store."""

    @abstractmethod
    def save(self, task: Task) -> None:
        """Persist a completed task."""

    @abstractmethod
    def aggregate(
        self, task: Optional[str], start: datetime, end: datetime
    ) -> list[Summary]:
        """Aggregate records per name.

        Args:
            task: Task name, or None / ``:all`` for every name
            start: Inclusive lower bound on the start time
            end: Exclusive upper bound on the end time

        Returns:
            One summary per matching name, ordered by name
        """

    @abstractmethod
    def recent(self, limit: int) -> list[Task]:
        """Get the ``limit`` most recently completed tasks, newest first."""

    def summarize(self, task: str, quantity: Quantity) -> list[Summary]:
        """Aggregate a task over a resolved quantity.

        Args:
            task: Task name or ``:all``
            quantity: Date range to aggregate over

        Returns:
            Summaries tagged with ``quantity``
        """
        start, end = quantity.bounds()
        name = None if task == ALL_TASKS else task
        return [s.with_quantity(quantity) for s in self.aggregate(name, start, end)]


def _epoch(value: datetime) -> int:
    return int(value.timestamp())


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(int(value))


class SQLiteBackend(StorageBackend):
    """SQLite implementation of :class:`StorageBackend`."""

    SCHEMA = (
        "CREATE TABLE IF NOT EXISTS task ("
        " name TEXT NOT NULL,"
        " started INTEGER NOT NULL,"
        " ended INTEGER NOT NULL)",
        "CREATE INDEX IF NOT EXISTS task_name ON task (name)",
    )

    def __init__(self, db_file: str):
        """Initialize backend.

        Args:
            db_file: Database path, or ``:memory:``
        """
        self.db_file = db_file
        self.conn: Optional[sqlite3.Connection] = None

    def init(self) -> None:
        if self.conn is not None:
            return
        try:
            if self.db_file != ":memory:":
                Path(self.db_file).expanduser().parent.mkdir(parents=True, exist_ok=True)
                path = str(Path(self.db_file).expanduser())
            else:
                path = self.db_file
            self.conn = sqlite3.connect(path, check_same_thread=False)
            with self.conn:
                for statement in self.SCHEMA:
                    self.conn.execute(statement)
        except (OSError, sqlite3.Error) as e:
            self.conn = None
            raise StorageError(f"Failed to open database {self.db_file}: {e}") from e
        logger.info(f"Opened database {self.db_file}")

    def close(self) -> None:
        if self.conn is None:
            return
        try:
            self.conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to close database: {e}") from e
        finally:
            self.conn = None

    def _connection(self) -> sqlite3.Connection:
        if self.conn is None:
            raise StorageError("Database is not open")
        return self.conn

    def save(self, task: Task) -> None:
        if task.is_idle or task.ended is None:
            raise StorageError(f"Cannot save a task that has not ended: '{task.name}'")
        conn = self._connection()
        try:
            with conn:
                conn.execute(
                    "INSERT INTO task (name, started, ended) VALUES (?, ?, ?)",
                    (task.name, _epoch(task.started), _epoch(task.ended)),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save task '{task.name}': {e}") from e
        logger.debug(f"Saved task {task.name} ({task.duration_seconds}s)")

    def aggregate(
        self, task: Optional[str], start: datetime, end: datetime
    ) -> list[Summary]:
        query = (
            "SELECT name, total(ended - started), min(started), max(ended) FROM task"
            " WHERE started >= ? AND ended < ?"
        )
        params: list[Any] = [_epoch(start), _epoch(end)]
        if task is not None and task != ALL_TASKS:
            query += " AND name = ?"
            params.append(task)
        query += " GROUP BY name ORDER BY name"

        try:
            rows = self._connection().execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to query tasks: {e}") from e

        return [
            Summary(
                task=name,
                total_seconds=int(total),
                first_logged=_from_epoch(first),
                last_logged=_from_epoch(last),
            )
            for name, total, first, last in rows
        ]

    def recent(self, limit: int) -> list[Task]:
        if limit <= 0:
            return []
        try:
            rows = (
                self._connection()
                .execute(
                    "SELECT name, started, ended FROM task"
                    " ORDER BY ended DESC, rowid DESC LIMIT ?",
                    (limit,),
                )
                .fetchall()
            )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read recent tasks: {e}") from e
        return [
            Task(name=name, started=_from_epoch(started), ended=_from_epoch(ended))
            for name, started, ended in rows
        ]


BACKENDS: dict[str, Callable[[Any], StorageBackend]] = {
    "sqlite3": lambda config: SQLiteBackend(config.get("backend.sqlite3.db_file")),
}


def create_backend(config: Any) -> StorageBackend:
    """Create the backend selected by ``backend.name``.

    Args:
        config: Configuration manager

    Raises:
        StorageError: If the backend name is unknown
    """
    name = config.get("backend.name", "sqlite3")
    factory = BACKENDS.get(name)
    if factory is None:
        raise StorageError(f"Unknown backend: '{name}'")
    return factory(config)
