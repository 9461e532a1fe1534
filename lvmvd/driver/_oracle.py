# Copyright Red Hat
#
# lvmvd/driver/_oracle.py - LVM volume driver state queries
#
# This file is part of the lvmvd project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Volume existence and mount state derived from the volume manager and the
mount table.
"""
from os.path import realpath
from typing import Callable, List, Set
import logging

from lvmvd import (
    LVMVD_SUBSYSTEM_DRIVER,
    LvmvdOracleError,
    CommandResult,
    Volume,
    run_command,
)

_log = logging.getLogger(__name__)

_log_warn = _log.warning


def _log_debug_driver(msg, *args, **kwargs):
    """A wrapper for driver subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": LVMVD_SUBSYSTEM_DRIVER}, **kwargs)


# mount table listing
MOUNT_CMD = "mount"
MOUNT_ON = "on"

# lvs report options
LVS_CMD = "lvs"
LVS_NO_HEADINGS = "--noheadings"
LVM_OPTIONS = "-o"
LVS_LV_NAME = "lv_name"

#: Signature of the callable used to run external programs.
Runner = Callable[..., CommandResult]


class VolumeStateOracle:
    """
    Answer questions about logical volumes in one volume group and their
    mount state below one mount root.

    Nothing is cached: every query runs the listing commands again so that
    each answer reflects the system state at the time of the call.
    """

    def __init__(self, volume_group: str, mount_root: str, runner: Runner = None):
        """
        Initialise a new ``VolumeStateOracle``.

        :param volume_group: The volume group to list logical volumes from.
        :param mount_root: The directory below which volumes are mounted.
                           Symbolic links and relative components are
                           resolved to match the paths in the mount table.
        :param runner: Callable used to run external programs, with the
                       signature of ``lvmvd.run_command``.
        """
        self.volume_group = volume_group
        self.mount_root = realpath(mount_root)
        self._run = runner or run_command

    def _mount_root_prefix(self) -> str:
        if self.mount_root.endswith("/"):
            return self.mount_root
        return self.mount_root + "/"

    def mountpoint(self, name: str) -> str:
        """Return the mount point path for the volume named ``name``."""
        return self._mount_root_prefix() + name

    def mounted_volume_names(self) -> Set[str]:
        """
        Return the names of volumes currently mounted directly below the
        mount root.

        Lines of ``mount`` output have the form
        ``<what> on <where> type <fstype> (<options>)``.

        :returns: A set of volume names.
        :raises LvmvdOracleError: if the mount table cannot be listed.
        """
        result = self._run(MOUNT_CMD, [])
        if not result.succeeded:
            raise LvmvdOracleError(
                "Unable to retrieve mountpoints. Return code: "
                f"{result.status}: {result.stderr}",
                result=result,
            )

        prefix = self._mount_root_prefix()
        names = set()
        for line in result.lines():
            parts = line.split()
            if not parts:
                continue
            if len(parts) < 3 or parts[1] != MOUNT_ON:
                _log_warn("Skipping malformed %s line: %s", MOUNT_CMD, line)
                continue
            where = parts[2]
            if not where.startswith(prefix):
                continue
            name = where[len(prefix) :]
            if not name or "/" in name:
                continue
            names.add(name)
        _log_debug_driver("Found mounted volumes: %s", ", ".join(sorted(names)))
        return names

    def list_volumes(self) -> List[Volume]:
        """
        Return the logical volumes of the volume group in the order they are
        reported by ``lvs``, with ``mountpoint`` set for mounted volumes.

        :returns: A list of ``Volume`` objects.
        :raises LvmvdOracleError: if either listing command fails.
        """
        mounted = self.mounted_volume_names()

        lvs_args = [LVS_NO_HEADINGS, LVM_OPTIONS, LVS_LV_NAME, self.volume_group]
        result = self._run(LVS_CMD, lvs_args)
        if not result.succeeded:
            raise LvmvdOracleError(str(result), result=result)

        volumes = []
        for line in result.lines():
            name = line.strip()
            if not name:
                continue
            volume = Volume(name)
            if name in mounted:
                volume.mountpoint = self.mountpoint(name)
            volumes.append(volume)
        return volumes

    def exists(self, name: str) -> bool:
        """
        Return ``True`` if a logical volume named ``name`` exists in the
        volume group.
        """
        return any(volume.name == name for volume in self.list_volumes())

    def is_mounted(self, name: str) -> bool:
        """
        Return ``True`` if the volume named ``name`` is mounted below the
        mount root.
        """
        return name in self.mounted_volume_names()
