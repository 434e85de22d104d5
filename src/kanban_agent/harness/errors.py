"""Exceptions raised inside the harness.

None of these escape the orchestrator's public entry points; they mark the
internal faults that end a run with the ``error`` outcome.
"""


class OrchestratorError(Exception):
    """Base class for harness faults."""


class TaskNotFoundError(OrchestratorError):
    """The store has no record for a task the harness is running."""

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class ConfigError(OrchestratorError):
    """The configuration file could not be loaded or holds invalid values."""
