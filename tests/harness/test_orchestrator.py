"""
Tests for TaskOrchestrator: single runs, mode dispatch, cancellation.
"""

import asyncio
import os
import shutil
import sys
import tempfile
import unittest

sys.path.insert(0, os.path.dirname(__file__))

from fakes import RecordingPublisher, ScriptedExecutor, failed, ok, spawn_error

from kanban_agent.config import OrchestratorConfig
from kanban_agent.harness.events import EventType
from kanban_agent.harness.executors import ClaudeExecutor
from kanban_agent.harness.models import ExecutionResult, RalphStatus, RunMode, TaskStatus
from kanban_agent.harness.orchestrator import TaskOrchestrator
from kanban_agent.harness.ralph.executor import RalphResult
from kanban_agent.harness.state import SQLiteTaskStore


class OrchestratorTestCase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.store = SQLiteTaskStore(os.path.join(self.temp_dir, "kanban.db"))
        self.publisher = RecordingPublisher()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def make_orchestrator(self, responses):
        self.executor = ScriptedExecutor(responses)
        return TaskOrchestrator(self.executor, self.store, self.publisher)

    def create_task(self, **fields):
        fields.setdefault("status", TaskStatus.IN_PROGRESS)
        return self.store.create_task(
            "Add logout button",
            description="Put it in the navbar",
            project_directory=self.temp_dir,
            **fields,
        )


class TestRunOnce(OrchestratorTestCase):

    def test_success_marks_done(self):
        task = self.create_task()
        orchestrator = self.make_orchestrator([ok("Done.")])

        result = asyncio.run(orchestrator.run_once(task))

        self.assertTrue(result.success)
        self.assertEqual(result.output, "Done.")
        stored = self.store.read(task.id)
        self.assertEqual(stored.status, TaskStatus.DONE)
        self.assertEqual(stored.claude_output, "Done.")
        self.assertFalse(orchestrator.is_running(task.id))

        progress = self.publisher.of_type(EventType.RUN_PROGRESS)
        self.assertEqual(progress[0], {"taskId": task.id, "message": "Starting agent...\n"})
        self.assertIn({"taskId": task.id, "message": "Done."}, progress)
        self.assertEqual(
            self.publisher.of_type(EventType.RUN_COMPLETE),
            [{"taskId": task.id, "result": "Done."}],
        )
        updates = self.publisher.of_type(EventType.TASK_UPDATED)
        self.assertEqual(updates[-1]["status"], "done")

    def test_instruction_contains_task(self):
        task = self.create_task()
        orchestrator = self.make_orchestrator([ok("Done.")])

        asyncio.run(orchestrator.run_once(task))

        prompt = self.executor.invocations[0].prompt
        self.assertIn("**Task:** Add logout button", prompt)
        self.assertIn("**Details:** Put it in the navbar", prompt)
        self.assertNotIn("Bash", self.executor.invocations[0].allowed_tools)

    def test_non_zero_exit_keeps_status(self):
        task = self.create_task()
        orchestrator = self.make_orchestrator([failed("compile failed", exit_code=2)])

        result = asyncio.run(orchestrator.run_once(task))

        self.assertFalse(result.success)
        self.assertEqual(result.exit_code, 2)
        stored = self.store.read(task.id)
        self.assertEqual(stored.status, TaskStatus.IN_PROGRESS)
        self.assertEqual(stored.claude_output, "compile failed\n\n[Process exited with code 2]")
        self.assertIn("Error: Process exited with code 2\n", self.publisher.progress_text())
        self.assertEqual(self.publisher.of_type(EventType.RUN_COMPLETE), [])

    def test_spawn_failure(self):
        task = self.create_task()
        orchestrator = self.make_orchestrator([spawn_error()])

        result = asyncio.run(orchestrator.run_once(task))

        self.assertFalse(result.success)
        self.assertEqual(result.exit_code, 127)
        self.assertIsNotNone(result.error)
        self.assertEqual(
            self.store.read(task.id).claude_output,
            "\n\n[Process exited with code 127]\n--- Error ---\n" + result.error,
        )
        self.assertIn("No such file or directory", result.error)
        self.assertIn("Error: Failed to start agent", self.publisher.progress_text())

    def test_cancelled_run(self):
        task = self.create_task()
        orchestrator = None

        async def cancelled(process):
            orchestrator.cancel(task.id)
            return ok("half way")

        orchestrator = self.make_orchestrator([cancelled])
        result = asyncio.run(orchestrator.run_once(task))

        self.assertTrue(result.cancelled)
        self.assertFalse(result.success)
        self.assertTrue(self.executor.processes[0].terminated)
        stored = self.store.read(task.id)
        self.assertEqual(stored.status, TaskStatus.IN_PROGRESS)
        self.assertEqual(stored.claude_output, "half way\n\n[Run cancelled]")
        self.assertEqual(self.publisher.of_type(EventType.RUN_COMPLETE), [])

    def test_replacement_kills_previous_process(self):
        task = self.create_task()
        gate = {}

        async def slow_first_run(process):
            gate["first_started"].set()
            await gate["release_first"].wait()
            return ok("first run output")

        orchestrator = self.make_orchestrator([slow_first_run, ok("Second run done.")])

        async def scenario():
            gate["first_started"] = asyncio.Event()
            gate["release_first"] = asyncio.Event()
            first = asyncio.create_task(orchestrator.run_once(task))
            await gate["first_started"].wait()

            second = await orchestrator.run_once(task)
            gate["release_first"].set()
            return await first, second

        first, second = asyncio.run(scenario())

        self.assertTrue(self.executor.processes[0].terminated)
        self.assertTrue(first.cancelled)
        self.assertTrue(second.success)
        stored = self.store.read(task.id)
        self.assertEqual(stored.status, TaskStatus.DONE)
        self.assertEqual(stored.claude_output, "Second run done.")
        self.assertFalse(orchestrator.is_running(task.id))

    def test_task_deleted_before_write(self):
        task = self.create_task()

        async def delete(process):
            self.store.delete_task(task.id)
            return ok("Done.")

        orchestrator = self.make_orchestrator([delete])
        result = asyncio.run(orchestrator.run_once(task))

        self.assertFalse(result.success)
        self.assertIn(task.id, result.error)
        self.assertFalse(orchestrator.is_running(task.id))

    def test_run_history_recorded(self):
        task = self.create_task()
        orchestrator = self.make_orchestrator([failed("x", 1), ok("Done.")])

        asyncio.run(orchestrator.run_once(task))
        asyncio.run(orchestrator.run_once(task))

        history = self.store.get_run_history(task.id)
        self.assertEqual([h["outcome"] for h in history], ["completed", "failed"])
        self.assertEqual([h["mode"] for h in history], ["single", "single"])


class TestStartAndCancel(OrchestratorTestCase):

    def test_start_dispatches_single(self):
        task = self.create_task()
        orchestrator = self.make_orchestrator([ok("Done.")])

        result = asyncio.run(orchestrator.start(task))

        self.assertIsInstance(result, ExecutionResult)

    def test_start_dispatches_loop(self):
        task = self.create_task(ralph_enabled=True, ralph_max_iterations=3)
        orchestrator = self.make_orchestrator([ok("step"), ok("<promise>TASK_COMPLETE</promise>")])

        result = asyncio.run(orchestrator.start(task))

        self.assertIsInstance(result, RalphResult)
        self.assertTrue(result.success)
        self.assertEqual(result.iterations, 2)
        stored = self.store.read(task.id)
        self.assertEqual(stored.status, TaskStatus.DONE)
        self.assertEqual(stored.ralph_status, RalphStatus.COMPLETED)

    def test_cancel_idle(self):
        orchestrator = self.make_orchestrator([])

        self.assertFalse(orchestrator.cancel("missing"))
        self.assertFalse(orchestrator.is_running("missing"))

    def test_is_running_during_run(self):
        task = self.create_task()
        seen = []
        orchestrator = None

        async def observe(process):
            seen.append(orchestrator.is_running(task.id))
            return ok("Done.")

        orchestrator = self.make_orchestrator([observe])
        asyncio.run(orchestrator.run_once(task))

        self.assertEqual(seen, [True])
        self.assertFalse(orchestrator.is_running(task.id))

    def test_shutdown_cancels_all(self):
        first = self.create_task()
        second = self.create_task()
        orchestrator = self.make_orchestrator([])
        tokens = [
            orchestrator.registry.start_or_replace(first.id, RunMode.SINGLE),
            orchestrator.registry.start_or_replace(second.id, RunMode.SINGLE),
        ]

        self.assertEqual(orchestrator.shutdown(), 2)
        self.assertTrue(all(token.cancelled for token in tokens))


class TestFromConfig(OrchestratorTestCase):

    def test_builds_claude_executor_and_analyzer(self):
        config = OrchestratorConfig(
            cli_path="/opt/claude",
            analysis_model="sonnet",
            analysis_timeout_seconds=45,
        )

        orchestrator = TaskOrchestrator.from_config(config, self.store, self.publisher)

        self.assertIsInstance(orchestrator.executor, ClaudeExecutor)
        self.assertIs(orchestrator.analyzer.executor, orchestrator.executor)
        self.assertEqual(orchestrator.analyzer.model, "sonnet")
        self.assertEqual(orchestrator.analyzer.timeout, 45)
        self.assertIs(orchestrator.analyzer.publisher, self.publisher)


if __name__ == "__main__":
    unittest.main()
