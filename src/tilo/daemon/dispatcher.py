"""Request dispatcher: maps operation names to handlers."""

import logging
from typing import Any, Callable, Optional

from tilo.core.messages import Request, Response
from tilo.core.models import validate_task_names
from tilo.core.notifications import Listener, ListenerError
from tilo.core.session import TaskSession, Transition
from tilo.core.storage import StorageError

logger = logging.getLogger(__name__)

Handler = Callable[[Request, Any], Optional[Response]]


class Dispatcher:
    """Serves decoded requests against a task session.

    Handlers return a :class:`Response`, or None when the connection was
    handed over to the notification hub (``listen``).
    """

    def __init__(
        self,
        session: TaskSession,
        recent_limit: int = 5,
        listener_timeout: float = 2.0,
    ):
        """Initialize dispatcher.

        Args:
            session: Task session to operate on
            recent_limit: Default number of rows for ``recent``
            listener_timeout: Send timeout applied to listener sockets
        """
        self.session = session
        self.recent_limit = recent_limit
        self.listener_timeout = listener_timeout
        self.operations: dict[str, Handler] = {
            "ping": self.ping,
            "start": self.start,
            "stop": self.stop,
            "abort": self.abort,
            "current": self.current,
            "resume": self.resume,
            "query": self.query,
            "recent": self.recent,
            "listen": self.listen,
            "shutdown": self.shutdown,
        }

    def dispatch(self, request: Request, conn: Any = None) -> Optional[Response]:
        """Run the handler registered for ``request.operation``.

        Validation, state and storage errors become error responses.

        Args:
            request: Decoded request
            conn: Client connection (only used by ``listen``)
        """
        logger.debug(f"Request: {request.to_dict()}")
        handler = self.operations.get(request.operation)
        if handler is None:
            logger.warning(f"Unknown operation: {request.operation}")
            return Response.failure(f"No such operation: {request.operation}")
        try:
            response = handler(request, conn)
        except (ValueError, StorageError) as e:
            response = Response.failure(str(e))
        if response is not None:
            logger.debug(f"Response: {response.to_dict()}")
        return response

    def ping(self, request: Request, conn: Any) -> Response:
        return Response().add_line("pong")

    def start(self, request: Request, conn: Any) -> Response:
        names = validate_task_names(request.tasks)
        if len(names) != 1:
            raise ValueError("Exactly one task can be started")
        return self._transition_response(self.session.start(names[0]))

    def stop(self, request: Request, conn: Any) -> Response:
        transition = self.session.stop()
        if not transition.changed:
            return Response().add_line("No active task, nothing to stop")
        return self._transition_response(transition)

    def abort(self, request: Request, conn: Any) -> Response:
        return Response().add_task("Aborted", self.session.abort())

    def current(self, request: Request, conn: Any) -> Response:
        return Response().add_task("Currently", self.session.current())

    def resume(self, request: Request, conn: Any) -> Response:
        return self._transition_response(self.session.resume())

    def query(self, request: Request, conn: Any) -> Response:
        """Aggregate every requested task over every requested range.

        Results are ordered by task, then by range, in request order. A
        failing aggregation fails the whole query.
        """
        tasks = validate_task_names(request.tasks, allow_all=True)
        if not request.quantities:
            raise ValueError("No time range given")
        summaries = []
        for task in tasks:
            for quantity in request.quantities:
                summaries.extend(self.session.backend.summarize(task, quantity))
        return Response().add_summaries(summaries)

    def recent(self, request: Request, conn: Any) -> Response:
        raw_limit = request.options.get("limit", str(self.recent_limit))
        try:
            limit = int(raw_limit)
        except ValueError:
            raise ValueError(f"Invalid limit: '{raw_limit}'")
        if limit < 1:
            raise ValueError(f"Invalid limit: '{raw_limit}'")

        active = self.session.active
        tasks = [active] if active is not None else []
        tasks.extend(self.session.backend.recent(limit - len(tasks)))
        return Response().add_recent(tasks)

    def listen(self, request: Request, conn: Any) -> Optional[Response]:
        if conn is None:
            raise ValueError("Listening requires a connection")
        conn.settimeout(self.listener_timeout)
        try:
            self.session.register_listener(Listener(conn))
        except ListenerError as e:
            logger.warning(str(e))
            return Response.failure(str(e))
        return None

    def shutdown(self, request: Request, conn: Any) -> Response:
        transition = self.session.shutdown()
        response = Response().add_line("Received shutdown request -- shutting down")
        if transition.stopped is not None:
            response.add_task("Stopped", transition.stopped)
        if transition.error is not None:
            response.set_error(str(transition.error))
        return response

    def _transition_response(self, transition: Transition) -> Response:
        response = Response()
        if transition.stopped is not None:
            response.add_task("Stopped", transition.stopped)
        if transition.started is not None:
            response.add_task("Now", transition.started)
        if transition.error is not None:
            response.set_error(str(transition.error))
        return response

