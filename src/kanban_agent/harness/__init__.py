"""
Task execution harness.

Spawns the agent CLI for kanban tasks in three modes: a single run, a
ralph loop that repeats until the completion promise appears, and a
read-only codebase analysis.

Supported CLIs:
- claude: Anthropic Claude Code CLI (opus, sonnet, haiku)
"""

from .models import (
    AgentModel,
    AnalysisSubject,
    ExecutionResult,
    RalphStatus,
    RunMode,
    RunOutcome,
    Task,
    TaskPriority,
    TaskStatus,
)
from .errors import ConfigError, OrchestratorError, TaskNotFoundError
from .events import (
    CallbackPublisher,
    EventPublisher,
    EventType,
    JsonLinesPublisher,
    LoggingPublisher,
    NullPublisher,
)
from .executors import (
    AgentInvocation,
    BaseCLIExecutor,
    ClaudeExecutor,
    ProcessResult,
    create_executor,
)
from .registry import CancellationToken, TaskRunRegistry
from .state import SQLiteTaskStore, TaskStore
from .analysis import AnalysisResult, AnalysisStatus, CodebaseAnalyzer, Confidence
from .ralph import RalphExecutor, RalphResult
from .orchestrator import TaskOrchestrator

__all__ = [
    "AgentModel",
    "AnalysisSubject",
    "ExecutionResult",
    "RalphStatus",
    "RunMode",
    "RunOutcome",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "ConfigError",
    "OrchestratorError",
    "TaskNotFoundError",
    "CallbackPublisher",
    "EventPublisher",
    "EventType",
    "JsonLinesPublisher",
    "LoggingPublisher",
    "NullPublisher",
    "AgentInvocation",
    "BaseCLIExecutor",
    "ClaudeExecutor",
    "ProcessResult",
    "create_executor",
    "CancellationToken",
    "TaskRunRegistry",
    "SQLiteTaskStore",
    "TaskStore",
    "AnalysisResult",
    "AnalysisStatus",
    "CodebaseAnalyzer",
    "Confidence",
    "RalphExecutor",
    "RalphResult",
    "TaskOrchestrator",
]
