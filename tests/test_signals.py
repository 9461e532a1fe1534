# Copyright Red Hat
#
# tests/test_signals.py - Termination cleanup tests
#
# This file is part of the lvmvd project.
#
# SPDX-License-Identifier: Apache-2.0
from os.path import exists, join
from signal import SIGINT, SIGTERM
import unittest
from unittest.mock import patch
import tempfile
import logging
import shutil

log = logging.getLogger()

from lvmvd._signals import register_cleanup_handler, remove_files


class SignalTests(unittest.TestCase):
    """
    Test removal of runtime files on termination
    """

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)
        self.tmpdir = tempfile.mkdtemp("_lvmvd_signals")
        self.addCleanup(shutil.rmtree, self.tmpdir, ignore_errors=True)

    def _touch(self, name):
        path = join(self.tmpdir, name)
        with open(path, "w", encoding="utf8") as fp:
            fp.write("")
        return path

    def test_remove_files(self):
        path = self._touch("lvm-volume-driver.json")
        remove_files([path, join(self.tmpdir, "missing.sock"), ""])
        self.assertFalse(exists(path))

    @patch("lvmvd._signals.signal")
    def test_register_cleanup_handler(self, signal):
        path = self._touch("lvm-volume-driver.sock")
        register_cleanup_handler([path])
        self.assertEqual(
            sorted(call.args[0] for call in signal.call_args_list), sorted([SIGINT, SIGTERM])
        )
        handler = signal.call_args_list[0].args[1]
        with self.assertRaises(SystemExit) as cm:
            handler(SIGTERM, None)
        self.assertEqual(cm.exception.code, 0)
        self.assertFalse(exists(path))
