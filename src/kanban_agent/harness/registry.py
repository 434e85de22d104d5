"""
Registry of active task runs.

Tracks, per task id, the cancellation token and the live agent process of
the run currently executing for that task. At most one run is registered
per task id; starting a new run cancels and evicts the previous one.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from .executors import terminate_process
from .models import RunMode

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class CancellationToken:
    """Cooperative cancellation flag for one task run."""

    task_id: str
    _cancelled: bool = field(default=False, repr=False)
    _superseded: bool = field(default=False, repr=False)

    def cancel(self, superseded: bool = False) -> None:
        self._cancelled = True
        self._superseded = self._superseded or superseded

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def superseded(self) -> bool:
        """True if a newer run for the same task replaced this one."""
        return self._superseded


@dataclass
class RunHandle:
    """A live run: its token and, while one is running, the agent process."""

    task_id: str
    token: CancellationToken
    mode: RunMode
    started_at: datetime = field(default_factory=datetime.utcnow)
    process: Optional[asyncio.subprocess.Process] = None

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process is not None else None


class TaskRunRegistry:
    """
    Maps task ids to their active run.

    Example usage:
        registry = TaskRunRegistry()
        token = registry.start_or_replace("task-1", RunMode.LOOP)
        ...
        registry.cancel("task-1")   # sets token, kills the process
        registry.release(token)     # owner removes its own entry
    """

    def __init__(self):
        self._runs: Dict[str, RunHandle] = {}
        self._lock = threading.Lock()

    def start_or_replace(self, task_id: str, mode: RunMode) -> CancellationToken:
        """Cancel any run registered for task_id and register a fresh one."""
        token = CancellationToken(task_id=task_id)
        with self._lock:
            previous = self._runs.pop(task_id, None)
            if previous is not None:
                self._stop(previous, superseded=True)
                logger.info(f"Replaced active {previous.mode.value} run for task {task_id}")
            self._runs[task_id] = RunHandle(task_id=task_id, token=token, mode=mode)
        return token

    def attach_process(self, token: CancellationToken, process: asyncio.subprocess.Process) -> bool:
        """Record the live process for the run owning token.

        If the run was cancelled or superseded before the process could be
        recorded, the process is terminated straight away.

        Returns:
            True if the process was recorded
        """
        with self._lock:
            handle = self._runs.get(token.task_id)
            if handle is not None and handle.token is token and not token.cancelled:
                handle.process = process
                return True

        logger.info(f"Run for task {token.task_id} no longer active, terminating pid {process.pid}")
        terminate_process(process)
        return False

    def detach_process(self, token: CancellationToken) -> None:
        """Forget the process of the run owning token once it has exited."""
        with self._lock:
            handle = self._runs.get(token.task_id)
            if handle is not None and handle.token is token:
                handle.process = None

    def cancel(self, task_id: str) -> bool:
        """Cancel the run for task_id, terminating its process.

        Returns:
            True if a run was registered
        """
        with self._lock:
            handle = self._runs.pop(task_id, None)
            if handle is None:
                return False
            self._stop(handle)

        logger.info(f"Cancelled {handle.mode.value} run for task {task_id}")
        return True

    def release(self, token: CancellationToken) -> bool:
        """Remove the entry for token's task if token still owns it.

        Called by the run itself on every exit path. A run that has been
        replaced leaves the newer entry untouched.
        """
        with self._lock:
            handle = self._runs.get(token.task_id)
            if handle is None or handle.token is not token:
                return False
            del self._runs[token.task_id]
            return True

    def is_active(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._runs

    def get(self, task_id: str) -> Optional[RunHandle]:
        with self._lock:
            return self._runs.get(task_id)

    def active_task_ids(self) -> List[str]:
        with self._lock:
            return list(self._runs)

    def cancel_all(self) -> int:
        """Cancel every registered run (used on shutdown)."""
        with self._lock:
            handles = list(self._runs.values())
            self._runs.clear()
            for handle in handles:
                self._stop(handle)
        return len(handles)

    @staticmethod
    def _stop(handle: RunHandle, superseded: bool = False) -> None:
        handle.token.cancel(superseded=superseded)
        if handle.process is not None:
            terminate_process(handle.process)
