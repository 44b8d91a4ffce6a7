"""Core functionality for task timing."""

from tilo.core.models import Notification, Summary, Task
from tilo.core.quantifier import Quantity
from tilo.core.session import TaskSession

__all__ = ["Task", "Summary", "Notification", "Quantity", "TaskSession"]
