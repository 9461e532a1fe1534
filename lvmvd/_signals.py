# Copyright Red Hat
#
# lvmvd/_signals.py - LVM volume driver signal handling
#
# This file is part of the lvmvd project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Helpers for removing runtime files when the daemon is terminated.
"""
from signal import SIGINT, SIGTERM, signal
from typing import Iterable
import logging
import sys
import os

_log = logging.getLogger(__name__)
_log_info = _log.info
_log_warn = _log.warning

_to_handle = (SIGINT, SIGTERM)


def remove_files(paths: Iterable[str]):
    """
    Remove each of ``paths`` if it exists. Errors other than a missing file
    are logged and otherwise ignored.
    """
    for path in paths:
        if not path:
            continue
        try:
            os.unlink(path)
        except FileNotFoundError:
            continue
        except OSError as err:
            _log_warn("Could not remove %s: %s", path, err)


def register_cleanup_handler(paths: Iterable[str]):
    """
    Install handlers for termination signals that remove ``paths`` and
    exit with status 0.
    """
    paths = list(paths)

    def _handler(signum, _frame):
        _log_info("Exiting on signal %d", signum)
        remove_files(paths)
        sys.exit(0)

    for sig in _to_handle:
        signal(sig, _handler)
