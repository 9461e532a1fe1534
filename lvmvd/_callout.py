# Copyright Red Hat
#
# lvmvd/_callout.py - LVM volume driver external program support
#
# This file is part of the lvmvd project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Execution of external programs with a uniform result contract.
"""
from dataclasses import dataclass
from subprocess import run
from os import environ
from typing import Dict, List, Sequence
import logging

from ._lvmvd import LVMVD_SUBSYSTEM_DRIVER

_log = logging.getLogger(__name__)


def _log_debug_driver(msg, *args, **kwargs):
    """A wrapper for driver subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": LVMVD_SUBSYSTEM_DRIVER}, **kwargs)


#: Exit status reported for programs that could not be started.
CALLOUT_START_FAILED = 1

# LVM2 environment variables to filter out
_LVM_ENV_FILTER = [
    "LVM_OUT_FD",
    "LVM_ERR_FD",
    "LVM_REPORT_FD",
    "LVM_COMMAND_PROFILE",
    "LVM_RUN_BY_DMEVENTD",
    "LVM_SUPPRESS_FD_WARNINGS",
    "LVM_VG_NAME",
    "LVM_EXPECTED_EXIT_STATUS",
]


def _sanitize_environment() -> Dict[str, str]:
    env = environ.copy()
    for var in _LVM_ENV_FILTER:
        env.pop(var, None)

    # Parsed output must not depend on the daemon's locale.
    env["LC_ALL"] = "C"
    return env


@dataclass(frozen=True)
class CommandResult:
    """
    The outcome of running one external program.

    An exit ``status`` of zero means success, any other value is a failure.
    """

    cmd: str
    stdout: str = ""
    stderr: str = ""
    status: int = 0

    @property
    def succeeded(self) -> bool:
        """``True`` if the program exited with status zero."""
        return self.status == 0

    def lines(self) -> List[str]:
        """Return the captured standard output split into lines."""
        return self.stdout.splitlines()

    def __str__(self):
        return (
            f'Command "{self.cmd}" failed with status: {self.status}: '
            f"{self.stdout}{self.stderr}"
        )


def run_command(program: str, args: Sequence[str] = ()) -> CommandResult:
    """
    Run ``program`` with ``args`` and wait for it to exit.

    Output is fully buffered. This function never raises for a failed
    program: a non-zero exit status is returned in the result, and a
    program that cannot be started at all is reported with status
    ``CALLOUT_START_FAILED`` and the operating system error as ``stderr``.

    :param program: The name or path of the program to run.
    :param args: A sequence of arguments to pass to ``program``.
    :returns: A ``CommandResult`` describing the outcome.
    :rtype: ``CommandResult``
    """
    cmd_args = [program] + list(args)
    cmd = " ".join(cmd_args)
    run_env = _sanitize_environment()

    _log_debug_driver("Calling %s", cmd)
    try:
        proc = run(
            cmd_args,
            capture_output=True,
            encoding="utf8",
            errors="replace",
            check=False,
            env=run_env,
        )
    except OSError as err:
        _log_debug_driver("Failed to start %s: %s", program, err)
        return CommandResult(cmd, stderr=str(err), status=CALLOUT_START_FAILED)

    result = CommandResult(cmd, proc.stdout or "", proc.stderr or "", proc.returncode)
    if not result.succeeded:
        _log_debug_driver("%s exited with status %d", program, result.status)
    return result


__all__ = [
    "CALLOUT_START_FAILED",
    "CommandResult",
    "run_command",
]
