# Copyright Red Hat
#
# tests/test_gate.py - Lifecycle gate tests
#
# This file is part of the lvmvd project.
#
# SPDX-License-Identifier: Apache-2.0
import threading
import unittest
import logging
import time

log = logging.getLogger()

from lvmvd.driver import LifecycleGate


class LifecycleGateTests(unittest.TestCase):
    """
    Test ``LifecycleGate`` mutual exclusion
    """

    def test_context_manager(self):
        gate = LifecycleGate()
        self.assertFalse(gate.locked)
        with gate:
            self.assertTrue(gate.locked)
        self.assertFalse(gate.locked)

    def test_released_on_exception(self):
        gate = LifecycleGate()
        with self.assertRaises(ValueError):
            with gate:
                raise ValueError("boom")
        self.assertFalse(gate.locked)

    def test_serialized_preserves_metadata_and_result(self):
        gate = LifecycleGate()

        @gate.serialized
        def answer(value):
            """Answer docstring"""
            return value * 2

        self.assertEqual(answer(21), 42)
        self.assertEqual(answer.__name__, "answer")
        self.assertEqual(answer.__doc__, "Answer docstring")

    def test_serialized_excludes_concurrent_callers(self):
        gate = LifecycleGate()
        state = {"active": 0, "max_active": 0}
        state_lock = threading.Lock()

        @gate.serialized
        def work():
            with state_lock:
                state["active"] += 1
                state["max_active"] = max(state["max_active"], state["active"])
            time.sleep(0.01)
            with state_lock:
                state["active"] -= 1

        threads = [threading.Thread(target=work) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(state["max_active"], 1)
        self.assertFalse(gate.locked)
