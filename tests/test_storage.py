"""Tests for storage backends."""

from datetime import datetime
from pathlib import Path
from unittest.mock import Mock

import pytest  # type: ignore[import-not-found]

from tilo.core.models import ALL_TASKS, Task
from tilo.core.quantifier import BETWEEN, DAY, MONTH, YEAR, QuantifierError, Quantity
from tilo.core.storage import SQLiteBackend, StorageError, create_backend


def _task(name: str, start: datetime, end: datetime) -> Task:
    return Task(name=name, started=start, ended=end)


class TestSQLiteBackend:
    """Test SQLiteBackend."""

    def test_init_creates_database_file(self, tmp_path: Path) -> None:
        """Test init creates missing parent directories and the file."""
        db_file = tmp_path / "nested" / "tilo.db"
        backend = SQLiteBackend(str(db_file))
        backend.init()
        backend.close()

        assert db_file.exists()

    def test_data_survives_reopen(self, tmp_path: Path) -> None:
        """Test saved tasks are durable."""
        db_file = str(tmp_path / "tilo.db")
        backend = SQLiteBackend(db_file)
        backend.init()
        backend.save(_task("writing", datetime(2019, 5, 14, 9), datetime(2019, 5, 14, 10)))
        backend.close()

        reopened = SQLiteBackend(db_file)
        reopened.init()
        assert [t.name for t in reopened.recent(5)] == ["writing"]
        reopened.close()

    def test_save_and_aggregate_round_trip(self, backend: SQLiteBackend) -> None:
        """Test the aggregated total equals the task duration."""
        task = _task("writing", datetime(2019, 5, 14, 9, 0, 0), datetime(2019, 5, 14, 9, 45, 30))
        backend.save(task)

        (summary,) = backend.aggregate("writing", datetime(2019, 5, 14), datetime(2019, 5, 15))

        assert summary.task == "writing"
        assert summary.total_seconds == task.duration_seconds
        assert summary.first_logged == task.started
        assert summary.last_logged == task.ended

    def test_aggregate_sums_per_name(self, backend: SQLiteBackend) -> None:
        """Test multiple records of one name are summed."""
        backend.save(_task("writing", datetime(2019, 5, 14, 9), datetime(2019, 5, 14, 10)))
        backend.save(_task("writing", datetime(2019, 5, 14, 14), datetime(2019, 5, 14, 14, 30)))
        backend.save(_task("reading", datetime(2019, 5, 14, 11), datetime(2019, 5, 14, 12)))

        (summary,) = backend.aggregate("writing", datetime(2019, 5, 14), datetime(2019, 5, 15))

        assert summary.total_seconds == 5400
        assert summary.first_logged == datetime(2019, 5, 14, 9)
        assert summary.last_logged == datetime(2019, 5, 14, 14, 30)

    def test_aggregate_all_is_ordered_by_name(self, backend: SQLiteBackend) -> None:
        """Test aggregating every name."""
        backend.save(_task("writing", datetime(2019, 5, 14, 9), datetime(2019, 5, 14, 10)))
        backend.save(_task("reading", datetime(2019, 5, 14, 11), datetime(2019, 5, 14, 12)))

        for task in (None, ALL_TASKS):
            summaries = backend.aggregate(task, datetime(2019, 5, 14), datetime(2019, 5, 15))
            assert [s.task for s in summaries] == ["reading", "writing"]

    def test_aggregate_range_is_half_open(self, backend: SQLiteBackend) -> None:
        """Test records must start inside and end before the range end."""
        backend.save(_task("early", datetime(2019, 5, 13, 23), datetime(2019, 5, 13, 23, 59)))
        backend.save(_task("inside", datetime(2019, 5, 14, 0), datetime(2019, 5, 14, 1)))
        backend.save(_task("spans", datetime(2019, 5, 14, 23), datetime(2019, 5, 15, 1)))

        summaries = backend.aggregate(None, datetime(2019, 5, 14), datetime(2019, 5, 15))

        assert [s.task for s in summaries] == ["inside"]

    def test_aggregate_empty(self, backend: SQLiteBackend) -> None:
        """Test no matches give no summaries."""
        assert backend.aggregate("writing", datetime(2019, 5, 14), datetime(2019, 5, 15)) == []

    def test_save_rejects_running_task(self, backend: SQLiteBackend) -> None:
        """Test only ended tasks are stored."""
        with pytest.raises(StorageError):
            backend.save(Task(name="writing", started=datetime(2019, 5, 14, 9)))
        with pytest.raises(StorageError):
            backend.save(Task.idle(datetime(2019, 5, 14, 9)))

    def test_recent_newest_first(self, backend: SQLiteBackend) -> None:
        """Test recent ordering and limit."""
        backend.save(_task("a", datetime(2019, 5, 14, 9), datetime(2019, 5, 14, 10)))
        backend.save(_task("b", datetime(2019, 5, 14, 10), datetime(2019, 5, 14, 11)))
        backend.save(_task("c", datetime(2019, 5, 14, 11), datetime(2019, 5, 14, 12)))

        recent = backend.recent(2)

        assert [t.name for t in recent] == ["c", "b"]
        assert recent[0].ended == datetime(2019, 5, 14, 12)
        assert backend.recent(0) == []

    def test_operations_require_init(self) -> None:
        """Test using a closed backend fails with StorageError."""
        backend = SQLiteBackend(":memory:")

        with pytest.raises(StorageError, match="not open"):
            backend.recent(1)

    def test_init_failure(self, tmp_path: Path) -> None:
        """Test an unusable path raises StorageError."""
        blocker = tmp_path / "file"
        blocker.write_text("x")
        backend = SQLiteBackend(str(blocker / "tilo.db"))

        with pytest.raises(StorageError):
            backend.init()


class TestSummarize:
    """Test aggregation over resolved quantities."""

    def test_summarize_day(self, backend: SQLiteBackend) -> None:
        """Test summaries are tagged with their quantity."""
        backend.save(_task("writing", datetime(2019, 5, 14, 9), datetime(2019, 5, 14, 10)))
        quantity = Quantity(DAY, ("2019-05-14",))

        (summary,) = backend.summarize("writing", quantity)

        assert summary.quantity == quantity
        assert summary.total_seconds == 3600

    def test_summarize_month_and_between(self, backend: SQLiteBackend) -> None:
        """Test month and inclusive between ranges."""
        backend.save(_task("writing", datetime(2019, 5, 31, 9), datetime(2019, 5, 31, 10)))
        backend.save(_task("writing", datetime(2019, 6, 1, 9), datetime(2019, 6, 1, 10)))

        assert backend.summarize("writing", Quantity(MONTH, ("2019-05",)))[0].total_seconds == 3600
        (summary,) = backend.summarize(
            ALL_TASKS, Quantity(BETWEEN, ("2019-05-31", "2019-06-01"))
        )
        assert summary.total_seconds == 7200

    def test_reversed_between_is_empty(self, backend: SQLiteBackend) -> None:
        """Test a reversed range yields nothing."""
        backend.save(_task("writing", datetime(2019, 5, 14, 9), datetime(2019, 5, 14, 10)))

        assert backend.summarize("writing", Quantity(BETWEEN, ("2019-05-31", "2019-05-01"))) == []

    def test_range_before_local_time(self, backend: SQLiteBackend) -> None:
        """Test an unrepresentable year fails as a quantifier error, not a storage error."""
        with pytest.raises(QuantifierError, match="year 0001"):
            backend.summarize("writing", Quantity(YEAR, ("0001",)))


class TestCreateBackend:
    """Test backend selection."""

    def test_sqlite3(self, tmp_path: Path) -> None:
        """Test the sqlite3 backend is built from config."""
        config = Mock()
        config.get.side_effect = lambda key, default=None: {
            "backend.name": "sqlite3",
            "backend.sqlite3.db_file": str(tmp_path / "tilo.db"),
        }.get(key, default)

        backend = create_backend(config)

        assert isinstance(backend, SQLiteBackend)
        assert backend.db_file == str(tmp_path / "tilo.db")

    def test_unknown_backend(self) -> None:
        """Test an unknown backend name."""
        config = Mock()
        config.get.return_value = "postgres"

        with pytest.raises(StorageError, match="postgres"):
            create_backend(config)
