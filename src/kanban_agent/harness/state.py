"""
Task storage for the harness.

The harness reads task snapshots and writes back individual fields through
the TaskStore interface. SQLiteTaskStore is the durable implementation used
by the command line and the tests.
"""

import logging
import sqlite3
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Generator, Optional

from .models import (
    DEFAULT_COMPLETION_PROMISE,
    DEFAULT_MAX_ITERATIONS,
    AgentModel,
    RalphStatus,
    Task,
    TaskPriority,
    TaskStatus,
)

logger = logging.getLogger(__name__)

# Columns the harness (or a board) may update through write()
WRITABLE_FIELDS = frozenset({
    "title",
    "description",
    "status",
    "priority",
    "project_directory",
    "allow_shell_commands",
    "claude_model",
    "ralph_enabled",
    "ralph_max_iterations",
    "ralph_completion_promise",
    "ralph_current_iteration",
    "ralph_status",
    "claude_output",
})


class TaskStore(ABC):
    """Read/write contract the orchestrator needs from task storage."""

    @abstractmethod
    def read(self, task_id: str) -> Optional[Task]:
        """Return the current snapshot of a task, or None if it does not exist."""
        pass

    @abstractmethod
    def write(self, task_id: str, **fields: Any) -> Optional[Task]:
        """Apply a partial update and return the new snapshot, or None if not found."""
        pass

    def log_run(
        self,
        task_id: str,
        mode: str,
        outcome: str,
        iterations: int = 0,
        exit_code: Optional[int] = None,
        duration_seconds: Optional[float] = None,
    ) -> None:
        """Record a finished run. Stores without run history ignore this."""


class SQLiteTaskStore(TaskStore):
    """Manage kanban tasks and run history in SQLite."""

    def __init__(self, db_path: str = ".kanban/kanban.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._connection() as conn:
            conn.executescript(f"""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT,
                    status TEXT DEFAULT 'backlog',
                    priority TEXT DEFAULT 'medium',
                    project_directory TEXT,
                    allow_shell_commands INTEGER DEFAULT 0,
                    claude_model TEXT DEFAULT 'opus',
                    ralph_enabled INTEGER DEFAULT 0,
                    ralph_max_iterations INTEGER DEFAULT {DEFAULT_MAX_ITERATIONS},
                    ralph_completion_promise TEXT DEFAULT '{DEFAULT_COMPLETION_PROMISE}',
                    ralph_current_iteration INTEGER DEFAULT 0,
                    ralph_status TEXT,
                    claude_output TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS run_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id TEXT NOT NULL,
                    mode TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    iterations INTEGER DEFAULT 0,
                    exit_code INTEGER,
                    duration_seconds REAL,
                    finished_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
                CREATE INDEX IF NOT EXISTS idx_run_log_task ON run_log(task_id);
            """)

    @contextmanager
    def _connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # Task Operations

    def create_task(
        self,
        title: str,
        description: Optional[str] = None,
        task_id: Optional[str] = None,
        **fields: Any,
    ) -> Task:
        """Insert a new task and return it."""
        task_id = task_id or str(uuid.uuid4())
        now = datetime.utcnow().isoformat()

        with self._connection() as conn:
            conn.execute(
                "INSERT INTO tasks (id, title, description, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (task_id, title, description, now, now),
            )

        if fields:
            return self.write(task_id, **fields)
        return self.read(task_id)

    def read(self, task_id: str) -> Optional[Task]:
        """Load a task by ID."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE id = ?", (task_id,)
            ).fetchone()

            if not row:
                return None

            return self._row_to_task(row)

    def write(self, task_id: str, **fields: Any) -> Optional[Task]:
        """Update the given fields of a task.

        An empty update only re-reads the task. Unknown field names raise
        ValueError.
        """
        unknown = set(fields) - WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown task fields: {', '.join(sorted(unknown))}")

        if fields:
            updates = [f"{name} = ?" for name in fields]
            values = [self._to_column(value) for value in fields.values()]
            updates.append("updated_at = ?")
            values.append(datetime.utcnow().isoformat())
            values.append(task_id)

            sql = f"UPDATE tasks SET {', '.join(updates)} WHERE id = ?"
            with self._connection() as conn:
                cursor = conn.execute(sql, values)
                if cursor.rowcount == 0:
                    logger.warning(f"Update for unknown task {task_id}")
                    return None

        return self.read(task_id)

    def list_tasks(self, status: Optional[TaskStatus] = None) -> list[Task]:
        """Load all tasks, newest first."""
        with self._connection() as conn:
            if status is None:
                rows = conn.execute(
                    "SELECT * FROM tasks ORDER BY created_at DESC"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM tasks WHERE status = ? ORDER BY created_at DESC",
                    (status.value,),
                ).fetchall()
            return [self._row_to_task(row) for row in rows]

    def delete_task(self, task_id: str) -> bool:
        """Delete a task and its run history."""
        with self._connection() as conn:
            conn.execute("DELETE FROM run_log WHERE task_id = ?", (task_id,))
            result = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            return result.rowcount > 0

    @staticmethod
    def _to_column(value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, bool):
            return int(value)
        return value

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        """Convert a database row to a Task object."""
        return Task(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            status=TaskStatus(row["status"]),
            priority=TaskPriority(row["priority"]),
            project_directory=row["project_directory"],
            allow_shell_commands=bool(row["allow_shell_commands"]),
            claude_model=AgentModel(row["claude_model"] or AgentModel.OPUS.value),
            ralph_enabled=bool(row["ralph_enabled"]),
            ralph_max_iterations=row["ralph_max_iterations"],
            ralph_completion_promise=row["ralph_completion_promise"],
            ralph_current_iteration=row["ralph_current_iteration"] or 0,
            ralph_status=RalphStatus(row["ralph_status"]) if row["ralph_status"] else None,
            claude_output=row["claude_output"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # Run Log Operations

    def log_run(
        self,
        task_id: str,
        mode: str,
        outcome: str,
        iterations: int = 0,
        exit_code: Optional[int] = None,
        duration_seconds: Optional[float] = None,
    ) -> None:
        """Record a finished run."""
        with self._connection() as conn:
            conn.execute("""
                INSERT INTO run_log (
                    task_id, mode, outcome, iterations, exit_code, duration_seconds, finished_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                task_id,
                mode,
                outcome,
                iterations,
                exit_code,
                duration_seconds,
                datetime.utcnow().isoformat(),
            ))

    def get_run_history(self, task_id: str) -> list[dict]:
        """Get run history for a task, newest first."""
        with self._connection() as conn:
            rows = conn.execute("""
                SELECT * FROM run_log WHERE task_id = ?
                ORDER BY id DESC
            """, (task_id,)).fetchall()

            return [dict(row) for row in rows]
