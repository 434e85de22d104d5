"""
Data models for the task execution harness.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

DEFAULT_MAX_ITERATIONS = 10
DEFAULT_COMPLETION_PROMISE = "TASK_COMPLETE"


class TaskStatus(Enum):
    """Kanban workflow states (owned by the board, not the harness)."""
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class TaskPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AgentModel(Enum):
    """Model aliases understood by the agent CLI."""
    OPUS = "opus"
    SONNET = "sonnet"
    HAIKU = "haiku"


class RalphStatus(Enum):
    """Run state of a ralph loop as written back to the task."""
    ITERATING = "iterating"
    COMPLETED = "completed"
    MAX_REACHED = "max_reached"
    CANCELLED = "cancelled"
    ERROR = "error"


class RunOutcome(Enum):
    """Terminal reason of a loop run."""
    PROMISE_FULFILLED = "promise_fulfilled"
    MAX_REACHED = "max_reached"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def ralph_status(self) -> RalphStatus:
        return {
            RunOutcome.PROMISE_FULFILLED: RalphStatus.COMPLETED,
            RunOutcome.MAX_REACHED: RalphStatus.MAX_REACHED,
            RunOutcome.CANCELLED: RalphStatus.CANCELLED,
            RunOutcome.ERROR: RalphStatus.ERROR,
        }[self]


class RunMode(Enum):
    SINGLE = "single"
    LOOP = "loop"


@dataclass
class Task:
    """Snapshot of a kanban task as read from the store."""
    id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.BACKLOG
    priority: TaskPriority = TaskPriority.MEDIUM
    project_directory: Optional[str] = None
    allow_shell_commands: bool = False
    claude_model: AgentModel = AgentModel.OPUS

    # Ralph loop configuration
    ralph_enabled: bool = False
    ralph_max_iterations: int = DEFAULT_MAX_ITERATIONS
    ralph_completion_promise: str = DEFAULT_COMPLETION_PROMISE

    # Ralph loop run state
    ralph_current_iteration: int = 0
    ralph_status: Optional[RalphStatus] = None

    claude_output: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def max_iterations(self) -> int:
        """Configured iteration bound, falling back to the default for non-positive values."""
        if self.ralph_max_iterations and self.ralph_max_iterations > 0:
            return self.ralph_max_iterations
        return DEFAULT_MAX_ITERATIONS

    @property
    def completion_promise(self) -> str:
        return (self.ralph_completion_promise or "").strip() or DEFAULT_COMPLETION_PROMISE

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON shape carried by task:updated events."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "project_directory": self.project_directory,
            "allow_shell_commands": self.allow_shell_commands,
            "claude_model": self.claude_model.value,
            "ralph_enabled": self.ralph_enabled,
            "ralph_max_iterations": self.ralph_max_iterations,
            "ralph_completion_promise": self.ralph_completion_promise,
            "ralph_current_iteration": self.ralph_current_iteration,
            "ralph_status": self.ralph_status.value if self.ralph_status else None,
            "claude_output": self.claude_output,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class IterationResult:
    """Outcome of one ralph loop pass."""
    captured_output: str
    exit_code: Optional[int]
    promise_matched: bool = False


@dataclass
class ExecutionResult:
    """Result from a single-shot agent run."""
    task_id: str
    success: bool
    output: str
    exit_code: Optional[int] = None
    cancelled: bool = False
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def summary(self) -> str:
        """Brief summary for logging."""
        if self.cancelled:
            status = "CANCELLED"
        else:
            status = "SUCCESS" if self.success else "FAILED"
        duration = f"{self.duration_seconds:.1f}s"
        preview = self.output[:100] + "..." if len(self.output) > 100 else self.output
        return f"[{status}] ({duration}) {preview}"


@dataclass
class AnalysisSubject:
    """A task whose implementation state the codebase analysis should judge."""
    title: str
    description: Optional[str] = None

