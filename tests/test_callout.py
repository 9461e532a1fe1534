# Copyright Red Hat
#
# tests/test_callout.py - External program execution tests
#
# This file is part of the lvmvd project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
from unittest.mock import patch
import logging

log = logging.getLogger()

import lvmvd
from lvmvd import CommandResult, run_command
import lvmvd._callout as callout


class CalloutTests(unittest.TestCase):
    """
    Test ``run_command`` and ``CommandResult``
    """

    def test_run_command_success(self):
        result = run_command("echo", ["hello", "world"])
        self.assertTrue(result.succeeded)
        self.assertEqual(result.status, 0)
        self.assertEqual(result.stdout, "hello world\n")
        self.assertEqual(result.lines(), ["hello world"])
        self.assertEqual(result.cmd, "echo hello world")

    def test_run_command_failure(self):
        result = run_command("false")
        self.assertFalse(result.succeeded)
        self.assertNotEqual(result.status, 0)

    def test_run_command_stderr(self):
        result = run_command("sh", ["-c", "echo oops >&2; exit 3"])
        self.assertEqual(result.status, 3)
        self.assertEqual(result.stderr, "oops\n")
        self.assertEqual(
            str(result), 'Command "sh -c echo oops >&2; exit 3" failed with status: 3: oops\n'
        )

    def test_run_command_missing_program(self):
        result = run_command("/nonexistent/lvmvd-no-such-program")
        self.assertEqual(result.status, lvmvd.CALLOUT_START_FAILED)
        self.assertIn("No such file or directory", result.stderr)
        self.assertEqual(result.stdout, "")

    def test_run_command_sanitizes_environment(self):
        with patch.dict("os.environ", {"LVM_VG_NAME": "vg", "LANG": "de_DE.UTF-8"}):
            result = run_command("sh", ["-c", 'echo "${LVM_VG_NAME:-unset} $LC_ALL"'])
        self.assertEqual(result.stdout, "unset C\n")

    def test_run_command_uses_subprocess_run(self):
        with patch("lvmvd._callout.run", side_effect=PermissionError("denied")) as run:
            result = callout.run_command("lvs", ["vg"])
        run.assert_called_once()
        self.assertEqual(run.call_args.args[0], ["lvs", "vg"])
        self.assertEqual(result, CommandResult("lvs vg", stderr="denied", status=1))
