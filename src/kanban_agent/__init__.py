"""
kanban-agent: run kanban board tasks through the Claude Code CLI.

Each task is either run once, or re-run as a ralph loop until the agent
emits its completion promise. A read-only analysis mode reports which
tasks a codebase already implements.

Quick Start:
    from kanban_agent import OrchestratorConfig, SQLiteTaskStore, TaskOrchestrator

    config = OrchestratorConfig.load()
    store = SQLiteTaskStore(config.db_path)
    orchestrator = TaskOrchestrator.from_config(config, store)

    task = store.create_task("Add logout button", project_directory="/path/to/app")
    result = asyncio.run(orchestrator.run_once(task))
"""

__version__ = "0.1.0"

from kanban_agent.config import Config, OrchestratorConfig
from kanban_agent.harness import (
    SQLiteTaskStore,
    Task,
    TaskOrchestrator,
    TaskStatus,
)

__all__ = [
    "Config",
    "OrchestratorConfig",
    "SQLiteTaskStore",
    "Task",
    "TaskOrchestrator",
    "TaskStatus",
]
