"""
Unit tests for IterationTracker and IterationRecord.
"""

import os
import sys
import unittest
from datetime import datetime, timedelta

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "src"))

from kanban_agent.harness.models import IterationResult, RunOutcome
from kanban_agent.harness.ralph.iteration_tracker import IterationRecord, IterationTracker


class TestIterationRecord(unittest.TestCase):

    def test_duration_open_record(self):
        record = IterationRecord(iteration_num=1, started_at=datetime.utcnow())

        self.assertIsNone(record.duration)

    def test_duration_closed_record(self):
        start = datetime(2026, 1, 1, 12, 0, 0)
        record = IterationRecord(
            iteration_num=1,
            started_at=start,
            ended_at=start + timedelta(seconds=30),
        )

        self.assertEqual(record.duration, timedelta(seconds=30))


class TestIterationTracker(unittest.TestCase):

    def test_counts_up_to_bound(self):
        tracker = IterationTracker(task_id="task-001", max_iterations=2)

        self.assertTrue(tracker.can_continue())
        tracker.start_iteration()
        tracker.end_iteration(IterationResult("one", 0))
        tracker.start_iteration()
        tracker.end_iteration(IterationResult("two", 0))

        self.assertEqual(tracker.current_iteration, 2)
        self.assertEqual(tracker.iterations_remaining, 0)
        self.assertFalse(tracker.can_continue())

    def test_start_past_bound_raises(self):
        tracker = IterationTracker(task_id="task-001", max_iterations=1)
        tracker.start_iteration()
        tracker.end_iteration(IterationResult("one", 0))

        with self.assertRaises(RuntimeError):
            tracker.start_iteration()

    def test_end_without_start_raises(self):
        tracker = IterationTracker(task_id="task-001")

        with self.assertRaises(RuntimeError):
            tracker.end_iteration(IterationResult("orphan", 0))

    def test_transcript_separators(self):
        tracker = IterationTracker(task_id="task-001", max_iterations=3)
        tracker.start_iteration()
        tracker.end_iteration(IterationResult("first pass", 1))
        tracker.start_iteration()
        tracker.end_iteration(IterationResult("second pass", 0, promise_matched=True))

        self.assertEqual(
            tracker.transcript,
            "\n--- Iteration 1 ---\nfirst pass\n--- Iteration 2 ---\nsecond pass",
        )
        self.assertEqual([r.exit_code for r in tracker.iteration_history], [1, 0])
        self.assertTrue(tracker.iteration_history[1].promise_found)

    def test_record_error(self):
        tracker = IterationTracker(task_id="task-001")

        tracker.record_error("database is locked")

        self.assertEqual(tracker.transcript, "\n--- Error ---\ndatabase is locked")

    def test_snippet_truncated(self):
        tracker = IterationTracker(task_id="task-001")
        tracker.start_iteration()

        record = tracker.end_iteration(IterationResult("x" * 1000, 0), output_snippet_length=100)

        self.assertEqual(len(record.output_snippet), 100)
        self.assertIn("x" * 1000, tracker.transcript)

    def test_outcome_stops_iteration(self):
        tracker = IterationTracker(task_id="task-001", max_iterations=5)

        tracker.mark_complete(RunOutcome.CANCELLED)

        self.assertEqual(tracker.outcome, RunOutcome.CANCELLED)
        self.assertFalse(tracker.can_continue())

    def test_summary(self):
        tracker = IterationTracker(task_id="task-001", max_iterations=4)
        tracker.start_iteration()
        tracker.end_iteration(IterationResult("failed", 2))
        tracker.start_iteration()
        tracker.end_iteration(IterationResult("killed", None))
        tracker.start_iteration()
        tracker.end_iteration(IterationResult("ok", 0))
        tracker.mark_complete(RunOutcome.MAX_REACHED)

        summary = tracker.get_summary()

        self.assertEqual(summary["current_iteration"], 3)
        self.assertEqual(summary["iterations_remaining"], 1)
        self.assertEqual(summary["failed_iterations"], 2)
        self.assertEqual(summary["outcome"], "max_reached")
        self.assertIsNotNone(summary["average_iteration_seconds"])


if __name__ == "__main__":
    unittest.main()
