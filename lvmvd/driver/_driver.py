# Copyright Red Hat
#
# lvmvd/driver/_driver.py - LVM volume driver lifecycle engine
#
# This file is part of the lvmvd project.
#
# SPDX-License-Identifier: Apache-2.0
"""
Volume lifecycle operations on LVM logical volumes.
"""
from dataclasses import dataclass
from os.path import join
from typing import Dict, List, Optional
import logging
import os

from lvmvd import (
    LVMVD_SUBSYSTEM_DRIVER,
    DEFAULT_VOLUME_SIZE,
    DEFAULT_FILESYSTEM,
    DEFAULT_DEVICE_ROOT,
    DOCKER_GROUP,
    LvmvdSystemError,
    LvmvdCalloutError,
    LvmvdMountError,
    LvmvdExistsError,
    LvmvdNotFoundError,
    LvmvdMountedError,
    LvmvdNotMountedError,
    Volume,
    ensure_directory,
    parse_size,
    size_from_name,
    run_command,
)

from ._oracle import VolumeStateOracle, Runner, MOUNT_CMD

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


def _log_debug_driver(msg, *args, **kwargs):
    """A wrapper for driver subsystem debug logs."""
    _log.debug(msg, *args, extra={"subsystem": LVMVD_SUBSYSTEM_DRIVER}, **kwargs)


# lvcreate command options
LVCREATE_CMD = "lvcreate"
LVCREATE_SIZE = "-L"
LVCREATE_NAME = "-n"

# lvremove command options
LVREMOVE_CMD = "lvremove"
LVREMOVE_FORCE = "-f"

# vgdisplay command options
VGDISPLAY_CMD = "vgdisplay"
VGDISPLAY_SHORT = "-s"

# file system commands
MKFS_CMD_PREFIX = "mkfs."
UMOUNT_CMD = "umount"
RMDIR_CMD = "rmdir"

#: Permissions for the mount root and volume mount points
MOUNT_DIR_MODE = 0o750

#: Size option key accepted by ``VolumeDriver.create()``
OPT_SIZE = "size"

#: Drivers implemented by this plugin
IMPLEMENTS = ["VolumeDriver"]

#: Volume scope advertised to the container host
SCOPE_LOCAL = "local"


@dataclass(frozen=True)
class DriverConfig:
    """
    Volume group context for a ``VolumeDriver``.
    """

    volume_group: str
    mount_root: str
    default_size: int = DEFAULT_VOLUME_SIZE
    device_root: str = DEFAULT_DEVICE_ROOT
    filesystem: str = DEFAULT_FILESYSTEM


class VolumeDriver:
    """
    Lifecycle operations for the logical volumes of one volume group.

    The driver keeps no record of volumes: each operation queries LVM and
    the mount table through a ``VolumeStateOracle`` before acting. Callers
    that may run operations concurrently must serialize them with a
    ``LifecycleGate``.
    """

    def __init__(self, config: DriverConfig, runner: Runner = None):
        """
        Initialise a new ``VolumeDriver``.

        :param config: The volume group context.
        :param runner: Callable used to run external programs, with the
                       signature of ``lvmvd.run_command``.
        """
        self.config = config
        self._run = runner or run_command
        self.oracle = VolumeStateOracle(
            config.volume_group, config.mount_root, runner=self._run
        )

    def mountpoint(self, name: str) -> str:
        """Return the mount point path for the volume named ``name``."""
        return self.oracle.mountpoint(name)

    def device_path(self, name: str) -> str:
        """Return the device node path for the volume named ``name``."""
        return join(self.config.device_root, self.config.volume_group, name)

    def resolve_size(self, name: str, options: Optional[Dict[str, str]] = None):
        """
        Return the size in MiB to use for a new volume named ``name``.

        An explicit ``size`` option takes precedence over a size suffix in
        the volume name, which takes precedence over the configured default.

        :param name: The name of the new volume.
        :param options: Volume creation options.
        :returns: The size in MiB.
        :rtype: ``int``
        """
        if options and options.get(OPT_SIZE) is not None:
            return parse_size(options[OPT_SIZE])
        name_size = size_from_name(name)
        if name_size:
            _log_debug_driver("Using size %dMiB from volume name %s", name_size, name)
            return name_size
        return self.config.default_size

    def _makefs(self, device: str):
        mkfs_cmd = MKFS_CMD_PREFIX + self.config.filesystem
        result = self._run(mkfs_cmd, [device])
        if not result.succeeded:
            raise LvmvdCalloutError(
                f"Cannot create filesystem on volume {result.status}: {result.stderr}",
                result=result,
            )

    def _create_logical_volume(self, name: str, size: int):
        lvcreate_args = [
            LVCREATE_SIZE,
            f"{size}M",
            LVCREATE_NAME,
            name,
            self.config.volume_group,
        ]
        result = self._run(LVCREATE_CMD, lvcreate_args)
        if not result.succeeded:
            raise LvmvdCalloutError(
                f"Cannot create volume, return code is {result.status}: "
                f"{result.stderr}",
                result=result,
            )

    def _remove_mountpoint(self, name: str):
        mount_point = self.mountpoint(name)
        result = self._run(RMDIR_CMD, [mount_point])
        if not result.succeeded:
            raise LvmvdCalloutError(
                f"Cannot delete mountpoint {mount_point} of volume {name}: {result}",
                result=result,
            )
        _log_debug_driver("Deleted mountpoint %s of volume %s", mount_point, name)

    def _remove_mountpoint_silent(self, name: str):
        try:
            self._remove_mountpoint(name)
        except LvmvdCalloutError as err:
            _log_warn("Ignoring mountpoint removal error: %s", err)

    def _remove_logical_volume(self, name: str):
        if self.oracle.is_mounted(name):
            raise LvmvdMountedError(f"Volume {name} is still mounted")
        result = self._run(LVREMOVE_CMD, [LVREMOVE_FORCE, self.device_path(name)])
        if not result.succeeded:
            raise LvmvdCalloutError(str(result), result=result)

    def activate(self) -> List[str]:
        """Return the plugin protocols implemented by this driver."""
        return list(IMPLEMENTS)

    def capabilities(self) -> Dict[str, str]:
        """Return the capabilities advertised by this driver."""
        return {"Scope": SCOPE_LOCAL}

    def create(self, name: str, options: Optional[Dict[str, str]] = None):
        """
        Create a logical volume named ``name`` and a file system on it.

        If the file system cannot be created the logical volume is left in
        place.

        :param name: The name of the new volume.
        :param options: Volume creation options (``size`` in MiB).
        :raises LvmvdExistsError: if the volume already exists.
        :raises LvmvdCalloutError: if ``lvcreate`` or ``mkfs`` fails.
        """
        size = self.resolve_size(name, options)
        if self.oracle.exists(name):
            raise LvmvdExistsError(f"Volume {name} already exists")

        _log_info("Creating volume %s with size %dMB", name, size)
        self._create_logical_volume(name, size)
        self._makefs(self.device_path(name))

    def remove(self, name: str):
        """
        Remove the logical volume named ``name`` and its mount point.

        :param name: The name of the volume to remove.
        :raises LvmvdNotFoundError: if the volume does not exist.
        :raises LvmvdMountedError: if the volume is mounted.
        :raises LvmvdCalloutError: if ``lvremove`` fails.
        """
        if not self.oracle.exists(name):
            msg = f"Cannot delete volume {name}: it does not exist"
            _log_info(msg)
            raise LvmvdNotFoundError(msg)
        _log_info("Volume %s exists, deleting", name)
        if self.oracle.is_mounted(name):
            raise LvmvdMountedError(f"Volume {name} is still mounted")

        self._remove_logical_volume(name)
        # The mount point normally went away with the last unmount.
        self._remove_mountpoint_silent(name)
        _log_info("Volume %s removed", name)

    def mount(self, name: str) -> str:
        """
        Mount the volume named ``name`` on its mount point.

        Mounting a volume that is already mounted returns the existing
        mount point without running ``mount`` again.

        :param name: The name of the volume to mount.
        :returns: The mount point path.
        :raises LvmvdSystemError: if the mount point cannot be created.
        :raises LvmvdMountError: if ``mount`` fails.
        """
        mount_point = self.mountpoint(name)
        device = self.device_path(name)

        if self.oracle.is_mounted(name):
            _log_info("Remounting already mounted volume %s", name)
            return mount_point

        try:
            os.makedirs(mount_point, mode=MOUNT_DIR_MODE, exist_ok=True)
        except OSError as err:
            raise LvmvdSystemError(
                f"Cannot create mountpoint {mount_point}: {err}"
            ) from err

        result = self._run(MOUNT_CMD, [device, mount_point])
        if not result.succeeded:
            raise LvmvdMountError(
                f"Cannot mount device {device}: {result.stderr}", result=result
            )
        _log_info("Mounted volume %s on %s", name, mount_point)
        return mount_point

    def unmount(self, name: str):
        """
        Unmount the volume named ``name`` and remove its mount point.

        A failing ``umount`` is logged and ignored, and the mount point is
        removed on a best effort basis.

        :param name: The name of the volume to unmount.
        :raises LvmvdCalloutError: if ``umount`` succeeds but the mount point
                                   cannot be removed.
        """
        device = self.device_path(name)
        result = self._run(UMOUNT_CMD, [device])
        if not result.succeeded:
            _log_warn(
                "Ignoring unmount error Cannot unmount device %s: %s",
                device,
                result.stderr,
            )
            self._remove_mountpoint_silent(name)
            return
        self._remove_mountpoint(name)
        _log_info("Unmounted volume %s", name)

    def path(self, name: str) -> str:
        """
        Return the mount point of the mounted volume named ``name``.

        :raises LvmvdNotMountedError: if the volume is not mounted.
        """
        if not self.oracle.is_mounted(name):
            raise LvmvdNotMountedError(f"Volume {name} not mounted")
        return self.mountpoint(name)

    def get(self, name: str) -> Volume:
        """
        Return the ``Volume`` named ``name``.

        :raises LvmvdNotFoundError: if the volume does not exist.
        """
        if not self.oracle.exists(name):
            raise LvmvdNotFoundError(f"Volume {name} does not exist")
        volume = Volume(name)
        if self.oracle.is_mounted(name):
            volume.mountpoint = self.mountpoint(name)
        return volume

    def list(self) -> List[Volume]:
        """Return all volumes in the volume group."""
        volumes = self.oracle.list_volumes()
        _log_debug_driver(
            "Listed %d volumes (%d mounted)",
            len(volumes),
            len([volume for volume in volumes if volume.mounted]),
        )
        return volumes

    def ensure_vg_exists(self):
        """
        Check that the configured volume group is known to LVM.

        :raises LvmvdSystemError: if ``vgdisplay`` cannot be run.
        :raises LvmvdNotFoundError: if the volume group does not exist.
        """
        vg_name = self.config.volume_group
        result = self._run(VGDISPLAY_CMD, [VGDISPLAY_SHORT])
        if not result.succeeded:
            raise LvmvdSystemError(f"Cannot run program {VGDISPLAY_CMD}: {result}")
        quoted = f'"{vg_name}"'
        if any(quoted in line for line in result.lines()):
            _log_debug_driver("Found volume group %s", vg_name)
            return
        raise LvmvdNotFoundError(f"No such volume group: {vg_name}")

    def ensure_mountpoint_exists(self):
        """
        Check that the mount root is a directory, creating it if necessary,
        and give the ``docker`` group access to it.

        :raises LvmvdSystemError: if the mount root exists and is not a
                                  directory, or cannot be created.
        """
        ensure_directory(self.oracle.mount_root, MOUNT_DIR_MODE, DOCKER_GROUP)
