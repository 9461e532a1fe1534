# Copyright Red Hat
#
# lvmvd/driver/_gate.py - LVM volume driver lifecycle gate
#
# This file is part of the lvmvd project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Process-wide serialization of volume lifecycle operations.
"""
from functools import wraps
import threading
import logging

from lvmvd import LVMVD_SUBSYSTEM_DRIVER

_log = logging.getLogger(__name__)


def _log_debug_driver(msg, *args, **kwargs):
    """A wrapper for driver subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": LVMVD_SUBSYSTEM_DRIVER}, **kwargs)


def _thread_id():
    return getattr(threading, "get_native_id", threading.get_ident)()


class LifecycleGate:
    """
    A single mutual-exclusion gate admitting one lifecycle operation at a
    time.

    The gate is held from the first state query of an operation until its
    last command (including cleanup) has exited. One lock covers all
    volumes: operations on unrelated volumes are serialized too.

    The gate is not reentrant: a gated function must not call another
    gated function.
    """

    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self):
        tid = _thread_id()
        self._lock.acquire()
        _log_debug_driver("Acquired lifecycle gate (tid=%d)", tid)
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self._lock.release()
        _log_debug_driver("Released lifecycle gate (tid=%d)", _thread_id())
        return False

    @property
    def locked(self) -> bool:
        """``True`` if an operation currently holds the gate."""
        return self._lock.locked()

    def serialized(self, func):
        """
        Decorator running ``func`` with this gate held for the whole call.
        """

        @wraps(func)
        def wrapper(*args, **kwargs):
            with self:
                return func(*args, **kwargs)

        return wrapper
