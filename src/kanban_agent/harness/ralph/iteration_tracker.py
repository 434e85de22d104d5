"""
Iteration tracking for ralph loop execution.

Tracks the iteration counter against its bound, the running transcript
of agent output, and a per-iteration history for logging.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from ..models import IterationResult, RunOutcome


@dataclass
class IterationRecord:
    """Record of a single iteration attempt."""

    iteration_num: int
    started_at: datetime
    ended_at: Optional[datetime] = None
    output_snippet: str = ""
    exit_code: Optional[int] = None
    promise_found: bool = False

    @property
    def duration(self) -> Optional[timedelta]:
        """Get the duration of this iteration."""
        if self.ended_at is None:
            return None
        return self.ended_at - self.started_at


@dataclass
class IterationTracker:
    """Tracks iteration state for one ralph loop run.

    Example:
        tracker = IterationTracker(task_id="task-001", max_iterations=10)
        while tracker.can_continue():
            tracker.start_iteration()
            result = await run_agent()
            tracker.end_iteration(IterationResult(result.output, result.exit_code, found))
            if found:
                tracker.mark_complete(RunOutcome.PROMISE_FULFILLED)
    """

    task_id: str
    max_iterations: int = 10
    current_iteration: int = 0
    start_time: datetime = field(default_factory=datetime.utcnow)
    iteration_history: list[IterationRecord] = field(default_factory=list)
    transcript: str = ""

    # Internal state
    _current_record: Optional[IterationRecord] = field(default=None, repr=False)
    _outcome: Optional[RunOutcome] = field(default=None, repr=False)

    def can_continue(self) -> bool:
        """Check if another iteration can be executed.

        Returns:
            True if max_iterations not reached and no outcome recorded
        """
        if self._outcome is not None:
            return False
        return self.current_iteration < self.max_iterations

    def start_iteration(self) -> IterationRecord:
        """Start a new iteration.

        Returns:
            The new IterationRecord for this iteration
        """
        if self.current_iteration >= self.max_iterations:
            raise RuntimeError(
                f"Iteration limit reached for {self.task_id} ({self.max_iterations})"
            )
        self.current_iteration += 1
        self._current_record = IterationRecord(
            iteration_num=self.current_iteration,
            started_at=datetime.utcnow(),
        )
        return self._current_record

    def end_iteration(
        self,
        result: IterationResult,
        output_snippet_length: int = 500,
    ) -> IterationRecord:
        """End the current iteration, folding its output into the transcript.

        Args:
            result: Output, exit code and promise match of the iteration
            output_snippet_length: Max length of output to keep in history

        Returns:
            The completed IterationRecord
        """
        if self._current_record is None:
            raise RuntimeError("end_iteration called without start_iteration")

        record = self._current_record
        record.ended_at = datetime.utcnow()
        record.output_snippet = result.captured_output[:output_snippet_length]
        record.exit_code = result.exit_code
        record.promise_found = result.promise_matched

        self.transcript += f"\n--- Iteration {record.iteration_num} ---\n{result.captured_output}"
        self.iteration_history.append(record)
        self._current_record = None
        return record

    def record_error(self, message: str) -> None:
        """Append an orchestration error to the transcript."""
        self.transcript += f"\n--- Error ---\n{message}"

    def mark_complete(self, outcome: RunOutcome) -> None:
        """Record the terminal outcome."""
        self._outcome = outcome

    @property
    def outcome(self) -> Optional[RunOutcome]:
        return self._outcome

    @property
    def total_duration(self) -> timedelta:
        """Get total time elapsed since start."""
        return datetime.utcnow() - self.start_time

    @property
    def iterations_remaining(self) -> int:
        """Get number of iterations remaining."""
        return max(0, self.max_iterations - self.current_iteration)

    def get_summary(self) -> dict:
        """Get a summary of the iteration state.

        Returns:
            Dictionary with iteration statistics
        """
        failed_iterations = sum(
            1 for r in self.iteration_history if r.exit_code is None or r.exit_code != 0
        )

        avg_duration = None
        durations = [
            r.duration.total_seconds() for r in self.iteration_history if r.duration is not None
        ]
        if durations:
            avg_duration = sum(durations) / len(durations)

        return {
            "task_id": self.task_id,
            "max_iterations": self.max_iterations,
            "current_iteration": self.current_iteration,
            "iterations_remaining": self.iterations_remaining,
            "outcome": self._outcome.value if self._outcome else None,
            "total_duration_seconds": self.total_duration.total_seconds(),
            "failed_iterations": failed_iterations,
            "average_iteration_seconds": avg_duration,
            "start_time": self.start_time.isoformat(),
        }
