"""
Ralph loop executor.

Re-runs the agent on a task until it emits the completion promise, the
iteration bound is reached, the run is cancelled, or the loop cannot
proceed at all. A non-zero agent exit is not fatal: the loop moves on to
the next iteration.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from ..events import EventType
from ..executors import BaseCLIExecutor
from ..models import IterationResult, RalphStatus, RunMode, RunOutcome, Task, TaskStatus
from ..prompts import build_iteration_prompt
from ..recorder import TaskRecorder
from ..registry import CancellationToken, TaskRunRegistry
from .iteration_tracker import IterationRecord, IterationTracker
from .promise_detector import PromiseDetector

logger = logging.getLogger(__name__)


@dataclass
class RalphResult:
    """Result from a ralph loop execution."""

    task_id: str
    outcome: RunOutcome
    iterations: int
    max_iterations: int
    total_duration: timedelta
    final_output: str
    promise_text: Optional[str] = None
    error: Optional[str] = None
    history: list[IterationRecord] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.outcome == RunOutcome.PROMISE_FULFILLED

    @property
    def summary(self) -> str:
        """Brief summary for logging."""
        status = "SUCCESS" if self.success else "FAILED"
        duration = f"{self.total_duration.total_seconds():.1f}s"
        return (
            f"[{status}] {self.iterations}/{self.max_iterations} iterations in {duration}: "
            f"{self.outcome.value}"
        )


class RalphExecutor:
    """Drives the ralph loop for one task at a time.

    The caller registers the run and passes its cancellation token; the
    executor releases the registry entry itself on every exit path.

    Example:
        token = registry.start_or_replace(task.id, RunMode.LOOP)
        ralph = RalphExecutor(executor, recorder, registry)
        result = await ralph.execute(task, token)
        if result.success:
            print(f"Completed in {result.iterations} iterations")
    """

    def __init__(
        self,
        executor: BaseCLIExecutor,
        recorder: TaskRecorder,
        registry: TaskRunRegistry,
    ):
        self.executor = executor
        self.recorder = recorder
        self.registry = registry

    async def execute(self, task: Task, token: CancellationToken) -> RalphResult:
        """Execute a task using the ralph loop.

        The iteration bound and completion promise are taken from the
        snapshot passed in; title and description are re-read from the
        store before every iteration.
        """
        tracker = IterationTracker(task_id=task.id, max_iterations=task.max_iterations)
        detector = PromiseDetector(task.completion_promise)
        promise_text: Optional[str] = None
        error: Optional[str] = None

        logger.info(
            f"Starting ralph loop for task {task.id}: max {tracker.max_iterations} iterations, "
            f"promise {detector.promise!r}"
        )

        try:
            self.recorder.write(
                task.id,
                ralph_status=RalphStatus.ITERATING,
                ralph_current_iteration=0,
            )

            while True:
                if token.cancelled:
                    tracker.mark_complete(RunOutcome.CANCELLED)
                    break
                if not tracker.can_continue():
                    tracker.mark_complete(RunOutcome.MAX_REACHED)
                    break

                iteration, matched_text = await self._run_iteration(
                    task.id, token, tracker, detector
                )
                if iteration.promise_matched:
                    promise_text = matched_text
                    tracker.mark_complete(RunOutcome.PROMISE_FULFILLED)
                    break
                # The bound is checked before any cancel that arrived mid-iteration
                if not tracker.can_continue():
                    tracker.mark_complete(RunOutcome.MAX_REACHED)
                    break

        except asyncio.CancelledError:
            tracker.mark_complete(RunOutcome.CANCELLED)
            self.registry.release(token)
            self._finish(task, tracker, token)
            raise
        except Exception as e:
            logger.exception(f"Ralph loop for task {task.id} failed at iteration {tracker.current_iteration}")
            error = str(e) or e.__class__.__name__
            tracker.record_error(error)
            tracker.mark_complete(RunOutcome.ERROR)

        self.registry.release(token)
        self._finish(task, tracker, token)

        result = RalphResult(
            task_id=task.id,
            outcome=tracker.outcome,
            iterations=tracker.current_iteration,
            max_iterations=tracker.max_iterations,
            total_duration=tracker.total_duration,
            final_output=tracker.transcript,
            promise_text=promise_text,
            error=error,
            history=list(tracker.iteration_history),
        )
        logger.info(f"Ralph loop for task {task.id} finished: {result.summary}")
        logger.debug(f"Iteration summary for task {task.id}: {tracker.get_summary()}")
        return result

    async def _run_iteration(
        self,
        task_id: str,
        token: CancellationToken,
        tracker: IterationTracker,
        detector: PromiseDetector,
    ) -> tuple[IterationResult, Optional[str]]:
        record = tracker.start_iteration()
        iteration_num = record.iteration_num
        max_iterations = tracker.max_iterations

        self.recorder.write(task_id, ralph_current_iteration=iteration_num)
        self.recorder.publish(EventType.ITERATION_START, {
            "taskId": task_id,
            "iteration": iteration_num,
            "maxIterations": max_iterations,
        })

        # Title/description may have been edited since the loop started
        current = self.recorder.read(task_id)
        prompt = build_iteration_prompt(current, iteration_num, max_iterations, detector.promise)

        logger.info(f"Ralph loop iteration {iteration_num}/{max_iterations} for task {task_id}")
        self.recorder.progress(
            task_id,
            f"--- Ralph Loop: Starting iteration {iteration_num}/{max_iterations} ---\n",
        )

        result = await self.executor.run(
            self.executor.task_invocation(current, prompt),
            on_output=lambda text: self.recorder.progress(task_id, text),
            on_spawn=lambda process: self.registry.attach_process(token, process),
            is_cancelled=lambda: token.cancelled,
        )
        self.registry.detach_process(token)

        captured = result.output
        if result.spawn_failed:
            captured += f"\n[error] {result.error}"
            self.recorder.progress(task_id, f"[error] Failed to start agent: {result.error}\n")

        # Only this iteration's output counts, not the whole transcript
        detection = detector.detect(result.output)
        iteration = IterationResult(
            captured_output=captured,
            exit_code=result.exit_code,
            promise_matched=detection.found,
        )
        tracker.end_iteration(iteration)

        self.recorder.publish(EventType.ITERATION_COMPLETE, {
            "taskId": task_id,
            "iteration": iteration_num,
            "promiseFound": detection.found,
        })

        if detection.found:
            logger.info(
                f"Promise detected on iteration {iteration_num} for task {task_id}: "
                f"{detection.promise_text}"
            )
        elif result.exit_code != 0:
            if token.cancelled:
                message = f"\n[Iteration {iteration_num} interrupted by cancellation]\n"
            else:
                message = (
                    f"\n[Iteration {iteration_num} exited with code {result.exit_code}, "
                    f"continuing...]\n"
                )
            logger.warning(message.strip())
            self.recorder.progress(task_id, message)
        elif detection.promise_text is not None:
            logger.info(
                f"Iteration {iteration_num} for task {task_id} emitted promise "
                f"{detection.promise_text!r}, expected {detector.promise!r}"
            )

        return iteration, detection.promise_text

    def _finish(self, task: Task, tracker: IterationTracker, token: CancellationToken) -> None:
        """Write back the final state and publish the terminal events."""
        outcome = tracker.outcome

        # A newer run owns the task; its state must not be overwritten
        if token.superseded:
            logger.info(f"Ralph loop for task {task.id} was superseded, skipping final write")
        else:
            fields = {
                "claude_output": tracker.transcript,
                "ralph_status": outcome.ralph_status,
                "ralph_current_iteration": tracker.current_iteration,
            }
            # Other outcomes leave the card in its active column
            if outcome == RunOutcome.PROMISE_FULFILLED:
                fields["status"] = TaskStatus.DONE
            try:
                self.recorder.write(task.id, **fields)
            except Exception:
                logger.exception(f"Failed to store final state of ralph loop for task {task.id}")

        self.recorder.publish(EventType.LOOP_COMPLETE, {
            "taskId": task.id,
            "iteration": tracker.current_iteration,
            "reason": outcome.value,
        })
        if outcome == RunOutcome.PROMISE_FULFILLED:
            self.recorder.publish(EventType.RUN_COMPLETE, {
                "taskId": task.id,
                "result": tracker.transcript,
            })

        self.recorder.log_run(
            task.id,
            RunMode.LOOP.value,
            outcome.value,
            iterations=tracker.current_iteration,
            duration_seconds=tracker.total_duration.total_seconds(),
        )
