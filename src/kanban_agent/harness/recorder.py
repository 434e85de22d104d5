"""
Store-then-publish helper shared by the run modes.

Every field write the harness makes is followed by a task:updated event
carrying the full record, so observers re-reading storage on the event
always see the new state.
"""

import logging
from typing import Any, Dict

from .errors import TaskNotFoundError
from .events import EventPublisher, EventType
from .models import Task
from .state import TaskStore

logger = logging.getLogger(__name__)


class TaskRecorder:
    """Writes task fields and publishes the matching lifecycle events."""

    def __init__(self, store: TaskStore, publisher: EventPublisher):
        self.store = store
        self.publisher = publisher

    def read(self, task_id: str) -> Task:
        """Return the latest snapshot of a task.

        Raises:
            TaskNotFoundError: if the task no longer exists
        """
        task = self.store.read(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def write(self, task_id: str, **fields: Any) -> Task:
        """Persist fields, then publish task:updated with the new record.

        Raises:
            TaskNotFoundError: if the task no longer exists
        """
        task = self.store.write(task_id, **fields)
        if task is None:
            raise TaskNotFoundError(task_id)
        self.publisher.publish(EventType.TASK_UPDATED, task.to_dict())
        return task

    def publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        self.publisher.publish(event_type, payload)

    def progress(self, task_id: str, message: str) -> None:
        self.publisher.publish(EventType.RUN_PROGRESS, {"taskId": task_id, "message": message})

    def log_run(self, task_id: str, mode: str, outcome: str, **details: Any) -> None:
        """Record a finished run, never raising."""
        try:
            self.store.log_run(task_id, mode, outcome, **details)
        except Exception:
            logger.exception(f"Failed to record run history for task {task_id}")
