# Copyright Red Hat
#
# lvmvd/_lvmvd.py - LVM volume driver global definitions
#
# This file is part of the lvmvd project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Global definitions for the top-level lvmvd package.
"""
from dataclasses import dataclass
from stat import S_ISDIR
from typing import Optional, TYPE_CHECKING
import logging
import grp
import re
import os

if TYPE_CHECKING:
    from ._callout import CommandResult

_log = logging.getLogger("lvmvd")

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

# Lvmvd debugging subsystem mask (legacy interface)
LVMVD_DEBUG_DRIVER = 1
LVMVD_DEBUG_SERVER = 2
LVMVD_DEBUG_COMMAND = 4
LVMVD_DEBUG_ALL = LVMVD_DEBUG_DRIVER | LVMVD_DEBUG_SERVER | LVMVD_DEBUG_COMMAND

# Lvmvd debugging subsystem names
LVMVD_SUBSYSTEM_DRIVER = "lvmvd.driver"
LVMVD_SUBSYSTEM_SERVER = "lvmvd.server"
LVMVD_SUBSYSTEM_COMMAND = "lvmvd.command"

_DEBUG_MASK_TO_SUBSYSTEM = {
    LVMVD_DEBUG_DRIVER: LVMVD_SUBSYSTEM_DRIVER,
    LVMVD_DEBUG_SERVER: LVMVD_SUBSYSTEM_SERVER,
    LVMVD_DEBUG_COMMAND: LVMVD_SUBSYSTEM_COMMAND,
}

_debug_subsystems = set()

#: Name under which the plugin is registered with the container host.
VOLUME_DRIVER_NAME = "lvm-volume-driver"

#: Default size of new logical volumes in MiB.
DEFAULT_VOLUME_SIZE = 512

#: Default file system created on new logical volumes.
DEFAULT_FILESYSTEM = "ext4"

#: Default device namespace for logical volume device nodes.
DEFAULT_DEVICE_ROOT = "/dev"

#: Group granted access to the mount root, socket and spec files.
DOCKER_GROUP = "docker"

#: Volume name suffix requesting a size: ``-oS<digits>[M|G]``
_NAME_SIZE_RE = re.compile(r"-oS([0-9]+)([MG])?$")

#: Multipliers for name size suffixes, expressed in MiB.
_NAME_SIZE_UNITS = {
    None: 1,
    "M": 1,
    "G": 1024,
}

# Constants for Volume property names
VOLUME_NAME = "Name"
VOLUME_MOUNTPOINT = "Mountpoint"


class SubsystemFilter(logging.Filter):
    """
    Filters DEBUG records based on a set of enabled subsystem names.
    Non-DEBUG records or DEBUG records without a 'subsystem' attribute
    are always passed through.
    """

    def __init__(self, name=""):
        super().__init__(name)
        self.enabled_subsystems = set(_debug_subsystems)

    def filter(self, record):
        # Always pass non-DEBUG messages.
        if record.levelno != logging.DEBUG:
            return True

        # Always pass DEBUG messages that aren't for a specific subsystem.
        if not hasattr(record, "subsystem"):
            return True

        return record.subsystem in self.enabled_subsystems

    def set_debug_subsystems(self, subsystems):
        """Sets the collection of subsystems to allow."""
        self.enabled_subsystems = set(subsystems)


def get_debug_mask():
    """
    Return the current debug mask for the ``lvmvd`` package.

    :returns: The current debug mask value
    :rtype: int
    """
    enabled_subsystems = set(_debug_subsystems)
    lvmvd_log = logging.getLogger("lvmvd")

    for handler in lvmvd_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                enabled_subsystems.update(f.enabled_subsystems)

    mask_map = {v: k for k, v in _DEBUG_MASK_TO_SUBSYSTEM.items()}
    mask = 0
    for subsystem_name in enabled_subsystems:
        mask |= mask_map.get(subsystem_name, 0)
    return mask


def set_debug_mask(mask):
    """
    Set the debug mask for the ``lvmvd`` package.

    :param mask: the logical OR of the ``LVMVD_DEBUG_*``
                 values to log.
    :rtype: None
    """
    # pylint: disable=global-statement
    global _debug_subsystems

    if mask < 0 or mask > LVMVD_DEBUG_ALL:
        raise ValueError(f"Invalid lvmvd debug mask: {mask}")

    enabled_subsystems = []
    for flag, subsystem_name in _DEBUG_MASK_TO_SUBSYSTEM.items():
        if mask & flag:
            enabled_subsystems.append(subsystem_name)

    lvmvd_log = logging.getLogger("lvmvd")
    for handler in lvmvd_log.handlers:
        for f in handler.filters:
            if isinstance(f, SubsystemFilter):
                f.set_debug_subsystems(enabled_subsystems)

    _debug_subsystems = set(enabled_subsystems)


#
# Lvmvd exception types
#


class LvmvdError(Exception):
    """
    Base class for volume driver errors.
    """


class LvmvdSystemError(LvmvdError):
    """
    An error when calling the operating system.
    """


class LvmvdCalloutError(LvmvdError):
    """
    An error calling out to an external program.
    """

    def __init__(self, msg: str, result: Optional["CommandResult"] = None):
        """
        Initialise a new ``LvmvdCalloutError`` exception.

        :param msg: A human readable description of the failure.
        :param result: The ``CommandResult`` of the failed program, if any.
        """
        self.result = result
        super().__init__(msg)


class LvmvdMountError(LvmvdCalloutError):
    """
    An error performing a mount operation.
    """


class LvmvdOracleError(LvmvdCalloutError):
    """
    An error listing logical volumes or mounted file systems.
    """


class LvmvdExistsError(LvmvdError):
    """
    The named volume already exists.
    """


class LvmvdNotFoundError(LvmvdError):
    """
    The requested object does not exist.
    """


class LvmvdMountedError(LvmvdError):
    """
    The named volume is mounted and the operation requires it not to be.
    """


class LvmvdNotMountedError(LvmvdError):
    """
    The named volume is not mounted and the operation requires it to be.
    """


class LvmvdRequestError(LvmvdError):
    """
    A malformed protocol request was received.
    """


class LvmvdArgumentError(LvmvdError):
    """
    An invalid argument was passed to a volume driver API call.
    """


@dataclass
class Volume:
    """
    A logical volume as observed at the time of the query.

    ``mountpoint`` is the empty string unless the volume is currently
    mounted below the configured mount root.
    """

    name: str
    mountpoint: str = ""

    @property
    def mounted(self) -> bool:
        """``True`` if this volume was mounted when it was observed."""
        return bool(self.mountpoint)

    def to_dict(self):
        """
        Return a representation of this ``Volume`` using the property names
        of the plugin protocol.
        """
        return {
            VOLUME_NAME: self.name,
            VOLUME_MOUNTPOINT: self.mountpoint,
        }


def change_group(path: str, group: str):
    """
    Set the group ownership of ``path`` to ``group``, leaving the owner
    unchanged.

    :param path: The path to modify.
    :param group: The name of the group.
    :raises LvmvdNotFoundError: if ``group`` does not exist.
    :raises LvmvdSystemError: if the ownership cannot be changed.
    """
    try:
        gid = grp.getgrnam(group).gr_gid
    except KeyError as err:
        raise LvmvdNotFoundError(f"Group {group} not found") from err
    try:
        os.chown(path, -1, gid)
    except OSError as err:
        raise LvmvdSystemError(
            f"Failed to change group of {path} to {group}: {err}"
        ) from err


def ensure_directory(dirpath: str, mode: int, group: Optional[str] = None) -> str:
    """
    Check for the presence of a directory and create it if necessary.

    An existing directory is left with its current permissions. The group
    ownership is set to ``group`` on a best effort basis: failure is logged
    as a warning.

    :param dirpath: Path to the directory.
    :param mode: Permissions mode for a newly created directory.
    :param group: Optional name of the group to own the directory.
    :returns: The directory path.
    :raises LvmvdSystemError: if ``dirpath`` exists and is not a directory,
                              or cannot be created.
    """
    try:
        st = os.lstat(dirpath)
        if not S_ISDIR(st.st_mode):
            raise LvmvdSystemError(
                f"{dirpath} exists and does not appear to be a directory."
            )
    except FileNotFoundError:
        try:
            os.makedirs(dirpath, mode=mode)
            os.chmod(dirpath, mode)
        except OSError as err:
            raise LvmvdSystemError(f"Failed to create {dirpath}: {err}") from err
        _log_debug("Created directory %s", dirpath)
    except OSError as err:
        raise LvmvdSystemError(f"Failed to stat {dirpath}: {err}") from err

    if group:
        try:
            change_group(dirpath, group)
        except LvmvdError as err:
            _log_warn("Could not set group of %s: %s", dirpath, err)
    return dirpath


def size_from_name(name: str) -> int:
    """
    Return the size in MiB requested by a ``-oS<digits>[M|G]`` suffix of
    ``name``, or 0 if the name carries no size suffix.

    Any name matching the pattern is treated as size tagged:
    ``"backup-oS2G"`` requests 2048MiB whether or not that was intended.

    :param name: The volume name to examine.
    :returns: The requested size in MiB or 0.
    :rtype: ``int``
    """
    match = _NAME_SIZE_RE.search(name)
    if not match:
        return 0
    return int(match.group(1)) * _NAME_SIZE_UNITS[match.group(2)]


def parse_size(value) -> int:
    """
    Parse an explicit volume size in MiB.

    :param value: A positive integer or a string containing one.
    :returns: The size as an integer.
    :raises LvmvdArgumentError: if ``value`` is not a positive integer.
    """
    try:
        size = int(str(value).strip())
    except ValueError as err:
        raise LvmvdArgumentError(f"Invalid volume size: '{value}'") from err
    if size <= 0:
        raise LvmvdArgumentError(f"Invalid volume size: '{value}'")
    return size


__all__ = [
    "LVMVD_DEBUG_DRIVER",
    "LVMVD_DEBUG_SERVER",
    "LVMVD_DEBUG_COMMAND",
    "LVMVD_DEBUG_ALL",
    # Debug logging - subsystem name interface
    "SubsystemFilter",
    "LVMVD_SUBSYSTEM_DRIVER",
    "LVMVD_SUBSYSTEM_SERVER",
    "LVMVD_SUBSYSTEM_COMMAND",
    # Debug logging - legacy interface
    "set_debug_mask",
    "get_debug_mask",
    "VOLUME_DRIVER_NAME",
    "DEFAULT_VOLUME_SIZE",
    "DEFAULT_FILESYSTEM",
    "DEFAULT_DEVICE_ROOT",
    "DOCKER_GROUP",
    "VOLUME_NAME",
    "VOLUME_MOUNTPOINT",
    "LvmvdError",
    "LvmvdSystemError",
    "LvmvdCalloutError",
    "LvmvdMountError",
    "LvmvdOracleError",
    "LvmvdExistsError",
    "LvmvdNotFoundError",
    "LvmvdMountedError",
    "LvmvdNotMountedError",
    "LvmvdRequestError",
    "LvmvdArgumentError",
    "Volume",
    "change_group",
    "ensure_directory",
    "size_from_name",
    "parse_size",
]
