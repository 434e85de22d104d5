"""
Task orchestrator.

Public entry point of the harness. Runs a task once or as a ralph loop,
cancels runs, and runs codebase analysis. None of the public coroutines
raise for run failures; faults are logged and reported through the
returned result and the task's stored state.

Example:
    config = OrchestratorConfig.load()
    store = SQLiteTaskStore(config.db_path)
    orchestrator = TaskOrchestrator.from_config(config, store, LoggingPublisher())

    task = store.read(task_id)
    await orchestrator.start(task)
"""

import logging
import time
from typing import List, Optional, Sequence, Union

from .analysis import AnalysisResult, CodebaseAnalyzer
from .events import EventPublisher, EventType, NullPublisher
from .executors import BaseCLIExecutor, create_executor
from .models import AnalysisSubject, ExecutionResult, RunMode, Task, TaskStatus
from .prompts import build_task_prompt
from .ralph.executor import RalphExecutor, RalphResult
from .recorder import TaskRecorder
from .registry import CancellationToken, TaskRunRegistry
from .state import TaskStore

logger = logging.getLogger(__name__)


class TaskOrchestrator:
    """Runs kanban tasks through the agent CLI.

    Args:
        executor: Agent executor used for every run
        store: Task storage read and written by the runs
        publisher: Receives lifecycle events
        registry: Active-run registry; a private one is created if omitted
        analyzer: Codebase analyzer; built on executor if omitted
    """

    def __init__(
        self,
        executor: BaseCLIExecutor,
        store: TaskStore,
        publisher: Optional[EventPublisher] = None,
        registry: Optional[TaskRunRegistry] = None,
        analyzer: Optional[CodebaseAnalyzer] = None,
    ):
        self.executor = executor
        self.store = store
        self.publisher = publisher or NullPublisher()
        self.registry = registry or TaskRunRegistry()
        self.recorder = TaskRecorder(store, self.publisher)
        self.ralph = RalphExecutor(executor, self.recorder, self.registry)
        self.analyzer = analyzer or CodebaseAnalyzer(executor, self.publisher)

    @classmethod
    def from_config(
        cls,
        config,
        store: TaskStore,
        publisher: Optional[EventPublisher] = None,
    ) -> "TaskOrchestrator":
        """Build an orchestrator from an OrchestratorConfig."""
        executor = create_executor(config)
        publisher = publisher or NullPublisher()
        analyzer = CodebaseAnalyzer(
            executor,
            publisher,
            model=config.analysis_model,
            allowed_tools=list(config.analysis_tools),
            timeout=config.analysis_timeout_seconds,
        )
        return cls(executor, store, publisher, analyzer=analyzer)

    async def start(self, task: Task) -> Union[ExecutionResult, RalphResult]:
        """Run a task in the mode its configuration asks for."""
        if task.ralph_enabled:
            return await self.run_loop(task)
        return await self.run_once(task)

    async def run_once(self, task: Task) -> ExecutionResult:
        """Run the agent once on a task.

        A clean exit moves the task to done. Any newer run started for the
        same task cancels this one.
        """
        token = self.registry.start_or_replace(task.id, RunMode.SINGLE)
        start_time = time.monotonic()
        logger.info(f"Starting single run for task {task.id}: {task.title}")

        try:
            result = await self._run_once(task, token)
        except Exception as e:
            logger.exception(f"Single run for task {task.id} failed")
            result = ExecutionResult(
                task_id=task.id,
                success=False,
                output="",
                error=str(e) or e.__class__.__name__,
            )
        finally:
            self.registry.release(token)

        result.duration_seconds = time.monotonic() - start_time
        if result.cancelled:
            outcome = "cancelled"
        else:
            outcome = "completed" if result.success else "failed"
        self.recorder.log_run(
            task.id,
            RunMode.SINGLE.value,
            outcome,
            exit_code=result.exit_code,
            duration_seconds=result.duration_seconds,
        )
        logger.info(f"Single run for task {task.id} finished: {result.summary}")
        return result

    async def _run_once(self, task: Task, token: CancellationToken) -> ExecutionResult:
        self.recorder.progress(task.id, "Starting agent...\n")

        result = await self.executor.run(
            self.executor.task_invocation(task, build_task_prompt(task)),
            on_output=lambda text: self.recorder.progress(task.id, text),
            on_spawn=lambda process: self.registry.attach_process(token, process),
            is_cancelled=lambda: token.cancelled,
        )
        self.registry.detach_process(token)

        if token.cancelled:
            if token.superseded:
                logger.info(f"Single run for task {task.id} was superseded")
            else:
                self.recorder.write(task.id, claude_output=result.output + "\n\n[Run cancelled]")
            return ExecutionResult(
                task_id=task.id,
                success=False,
                output=result.output,
                exit_code=result.exit_code,
                cancelled=True,
            )

        if result.exit_code == 0:
            self.recorder.write(task.id, status=TaskStatus.DONE, claude_output=result.output)
            self.recorder.publish(EventType.RUN_COMPLETE, {"taskId": task.id, "result": result.output})
            return ExecutionResult(
                task_id=task.id,
                success=True,
                output=result.output,
                exit_code=0,
            )

        annotated = f"{result.output}\n\n[Process exited with code {result.exit_code}]"
        if result.spawn_failed:
            annotated += f"\n--- Error ---\n{result.error}"
        self.recorder.write(task.id, claude_output=annotated)
        if result.spawn_failed:
            message = f"Error: Failed to start agent: {result.error}\n"
        else:
            message = f"Error: Process exited with code {result.exit_code}\n"
        self.recorder.progress(task.id, message)
        return ExecutionResult(
            task_id=task.id,
            success=False,
            output=result.output,
            exit_code=result.exit_code,
            error=result.error,
        )

    async def run_loop(self, task: Task) -> RalphResult:
        """Run a task as a ralph loop until its promise, its bound, or cancellation."""
        token = self.registry.start_or_replace(task.id, RunMode.LOOP)
        return await self.ralph.execute(task, token)

    def cancel(self, task_id: str) -> bool:
        """Cancel the active run of a task.

        Returns:
            True if a run was active
        """
        return self.registry.cancel(task_id)

    def is_running(self, task_id: str) -> bool:
        return self.registry.is_active(task_id)

    async def analyze_codebase(
        self,
        project_directory: str,
        subjects: Sequence[AnalysisSubject],
    ) -> List[AnalysisResult]:
        """Ask the agent which subjects the project already implements."""
        return await self.analyzer.analyze(project_directory, subjects)

    def shutdown(self) -> int:
        """Cancel every active run. Returns the number cancelled."""
        count = self.registry.cancel_all()
        if count:
            logger.info(f"Cancelled {count} active run(s) on shutdown")
        return count
