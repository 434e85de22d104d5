"""
Unit tests for TaskRunRegistry.
"""

import os
import sys
import threading
import unittest

sys.path.insert(0, os.path.dirname(__file__))

from fakes import FakeProcess

from kanban_agent.harness.models import RunMode
from kanban_agent.harness.registry import CancellationToken, TaskRunRegistry


class TestCancellationToken(unittest.TestCase):

    def test_cancel(self):
        token = CancellationToken(task_id="t1")

        self.assertFalse(token.cancelled)
        token.cancel()
        self.assertTrue(token.cancelled)

    def test_tokens_compare_by_identity(self):
        self.assertNotEqual(CancellationToken("t1"), CancellationToken("t1"))


class TestTaskRunRegistry(unittest.TestCase):

    def setUp(self):
        self.registry = TaskRunRegistry()

    def test_start_registers_run(self):
        token = self.registry.start_or_replace("t1", RunMode.SINGLE)

        self.assertTrue(self.registry.is_active("t1"))
        handle = self.registry.get("t1")
        self.assertIs(handle.token, token)
        self.assertEqual(handle.mode, RunMode.SINGLE)
        self.assertIsNone(handle.pid)

    def test_replace_cancels_previous_run(self):
        old = self.registry.start_or_replace("t1", RunMode.SINGLE)
        process = FakeProcess()
        self.registry.attach_process(old, process)

        new = self.registry.start_or_replace("t1", RunMode.LOOP)

        self.assertTrue(old.cancelled)
        self.assertTrue(old.superseded)
        self.assertTrue(process.terminated)
        self.assertFalse(new.cancelled)
        self.assertIs(self.registry.get("t1").token, new)
        self.assertEqual(self.registry.active_task_ids(), ["t1"])

    def test_cancel_terminates_process(self):
        token = self.registry.start_or_replace("t1", RunMode.LOOP)
        process = FakeProcess()
        self.assertTrue(self.registry.attach_process(token, process))
        self.assertEqual(self.registry.get("t1").pid, process.pid)

        self.assertTrue(self.registry.cancel("t1"))

        self.assertTrue(token.cancelled)
        self.assertFalse(token.superseded)
        self.assertTrue(process.terminated)
        self.assertFalse(self.registry.is_active("t1"))

    def test_cancel_idle_task(self):
        self.assertFalse(self.registry.cancel("missing"))

    def test_cancel_skips_exited_process(self):
        token = self.registry.start_or_replace("t1", RunMode.SINGLE)
        process = FakeProcess()
        self.registry.attach_process(token, process)
        process.returncode = 0

        self.registry.cancel("t1")

        self.assertFalse(process.terminated)

    def test_attach_after_cancel_terminates(self):
        token = self.registry.start_or_replace("t1", RunMode.SINGLE)
        self.registry.cancel("t1")
        process = FakeProcess()

        self.assertFalse(self.registry.attach_process(token, process))
        self.assertTrue(process.terminated)

    def test_attach_after_replace_terminates(self):
        old = self.registry.start_or_replace("t1", RunMode.SINGLE)
        self.registry.start_or_replace("t1", RunMode.SINGLE)
        process = FakeProcess()

        self.assertFalse(self.registry.attach_process(old, process))
        self.assertTrue(process.terminated)
        self.assertIsNone(self.registry.get("t1").process)

    def test_detach_process(self):
        token = self.registry.start_or_replace("t1", RunMode.LOOP)
        self.registry.attach_process(token, FakeProcess())

        self.registry.detach_process(token)

        self.assertIsNone(self.registry.get("t1").process)
        self.assertTrue(self.registry.is_active("t1"))

    def test_release_by_owner(self):
        token = self.registry.start_or_replace("t1", RunMode.SINGLE)

        self.assertTrue(self.registry.release(token))
        self.assertFalse(self.registry.is_active("t1"))
        self.assertFalse(self.registry.release(token))

    def test_release_by_replaced_run_keeps_newer_entry(self):
        old = self.registry.start_or_replace("t1", RunMode.SINGLE)
        new = self.registry.start_or_replace("t1", RunMode.SINGLE)

        self.assertFalse(self.registry.release(old))
        self.assertIs(self.registry.get("t1").token, new)

    def test_tasks_are_independent(self):
        t1 = self.registry.start_or_replace("t1", RunMode.SINGLE)
        t2 = self.registry.start_or_replace("t2", RunMode.LOOP)

        self.registry.cancel("t1")

        self.assertTrue(t1.cancelled)
        self.assertFalse(t2.cancelled)
        self.assertEqual(self.registry.active_task_ids(), ["t2"])

    def test_cancel_all(self):
        tokens = [self.registry.start_or_replace(f"t{i}", RunMode.SINGLE) for i in range(3)]

        self.assertEqual(self.registry.cancel_all(), 3)

        self.assertTrue(all(token.cancelled for token in tokens))
        self.assertEqual(self.registry.active_task_ids(), [])

    def test_concurrent_replacement_keeps_one_entry(self):
        tokens = []
        lock = threading.Lock()

        def start():
            token = self.registry.start_or_replace("t1", RunMode.SINGLE)
            with lock:
                tokens.append(token)

        threads = [threading.Thread(target=start) for _ in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        live = [token for token in tokens if not token.cancelled]
        self.assertEqual(len(live), 1)
        self.assertIs(self.registry.get("t1").token, live[0])


if __name__ == "__main__":
    unittest.main()
