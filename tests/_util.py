# Copyright Red Hat
#
# tests/_util.py - LVM volume driver test helpers
#
# This file is part of the lvmvd project.
#
# SPDX-License-Identifier: Apache-2.0
from os.path import basename, join, realpath
import threading
import tempfile
import logging
import shutil
import time
import os

from lvmvd import CommandResult
from lvmvd.driver import VolumeDriver, DriverConfig

log = logging.getLogger()

_VG_NAME = "test_vg0"

_DEV_ROOT = "/dev"

_FOREIGN_MOUNTS = [
    "proc on /proc type proc (rw,nosuid,nodev,noexec,relatime)",
    "/dev/vda1 on / type xfs (rw,relatime,seclabel)",
    "tmpfs on /run type tmpfs (rw,nosuid,nodev,seclabel,mode=755)",
]

_VGDISPLAY_OUT = '  "%s" <20.00 GiB [1.00 GiB used / <19.00 GiB free]'


class FakeLvm(object):
    """
    Stand-in for the LVM2, mount and file system programs used by the
    volume driver. An instance is passed as the ``runner`` of a
    ``VolumeDriver`` and keeps the volume group and mount table state in
    memory.

    Every call is recorded in ``calls`` as a list of the program name and
    its arguments. A program listed in ``failures`` exits with the given
    status and error output instead of acting.
    """

    def __init__(self, mount_root, vg_name=_VG_NAME, device_root=_DEV_ROOT):
        self.mount_root = mount_root
        self.vg_name = vg_name
        self.device_root = device_root
        self.volumes = []
        self.sizes = {}
        self.formatted = set()
        self.mounts = {}
        self.calls = []
        self.failures = {}
        self.delay = 0.0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()
        self._handlers = {
            "lvs": self._lvs,
            "mount": self._mount,
            "umount": self._umount,
            "lvcreate": self._lvcreate,
            "lvremove": self._lvremove,
            "mkfs.ext4": self._mkfs,
            "rmdir": self._rmdir,
            "vgdisplay": self._vgdisplay,
        }

    def __call__(self, program, args=()):
        args = list(args)
        cmd = " ".join([program] + args)
        with self._lock:
            self.calls.append([program] + args)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if program in self.failures:
                status, stderr = self.failures[program]
                return CommandResult(cmd, stderr=stderr, status=status)
            if program not in self._handlers:
                return CommandResult(
                    cmd, stderr=f"[Errno 2] No such file or directory: '{program}'",
                    status=1
                )
            stdout, stderr, status = self._handlers[program](args)
            return CommandResult(cmd, stdout, stderr, status)
        finally:
            with self._lock:
                self.active -= 1

    def fail(self, program, status=5, stderr="Failed"):
        self.failures[program] = (status, stderr)

    def programs(self):
        """Return the names of the programs called, in order."""
        return [call[0] for call in self.calls]

    def mutating_calls(self):
        """Return the calls that change volume or mount state."""
        readers = ("lvs", "vgdisplay")
        return [
            call for call in self.calls
            if call[0] not in readers and not (call[0] == "mount" and len(call) == 1)
        ]

    def device(self, name):
        return join(self.device_root, self.vg_name, name)

    def add_volume(self, name, size=512, mounted=False):
        self.volumes.append(name)
        self.sizes[name] = size
        self.formatted.add(self.device(name))
        if mounted:
            mount_point = join(self.mount_root, name)
            os.makedirs(mount_point, exist_ok=True)
            self.mounts[self.device(name)] = realpath(mount_point)

    def _lvs(self, args):
        if args[-1] != self.vg_name:
            return "", f'  Volume group "{args[-1]}" not found\n', 5
        out = "".join(f"  {name}\n" for name in self.volumes)
        return out, "", 0

    def _mount(self, args):
        if not args:
            lines = list(_FOREIGN_MOUNTS)
            for device, mount_point in self.mounts.items():
                name = basename(device)
                lines.append(
                    f"/dev/mapper/{self.vg_name}-{name} on {mount_point} "
                    "type ext4 (rw,relatime,seclabel)"
                )
            return "\n".join(lines) + "\n", "", 0
        device, mount_point = args
        if basename(device) not in self.volumes:
            return "", f"mount: {mount_point}: special device {device} does not exist.\n", 32
        if device in self.mounts:
            return "", f"mount: {mount_point}: {device} already mounted.\n", 32
        # The mount table records the canonical target path.
        self.mounts[device] = realpath(mount_point)
        return "", "", 0

    def _umount(self, args):
        device = args[0]
        if device not in self.mounts:
            return "", f"umount: {device}: not mounted.\n", 32
        del self.mounts[device]
        return "", "", 0

    def _lvcreate(self, args):
        size = args[args.index("-L") + 1]
        name = args[args.index("-n") + 1]
        if args[-1] != self.vg_name:
            return "", f'  Volume group "{args[-1]}" not found\n', 5
        if name in self.volumes:
            return "", f'  Logical Volume "{name}" already exists in volume group "{self.vg_name}"\n', 5
        self.volumes.append(name)
        self.sizes[name] = int(size.rstrip("M"))
        return f'  Logical volume "{name}" created.\n', "", 0

    def _lvremove(self, args):
        device = args[-1]
        name = basename(device)
        if name not in self.volumes:
            return "", f'  Failed to find logical volume "{self.vg_name}/{name}"\n', 5
        if device in self.mounts:
            return "", f'  Logical volume {self.vg_name}/{name} contains a filesystem in use.\n', 5
        self.volumes.remove(name)
        self.sizes.pop(name, None)
        self.formatted.discard(device)
        return f'  Logical volume "{name}" successfully removed.\n', "", 0

    def _mkfs(self, args):
        device = args[-1]
        if basename(device) not in self.volumes:
            return "", f"The file {device} does not exist and no size was specified.\n", 1
        self.formatted.add(device)
        return "", "", 0

    def _rmdir(self, args):
        try:
            os.rmdir(args[0])
        except OSError as err:
            return "", f"rmdir: failed to remove '{args[0]}': {err.strerror}\n", 1
        return "", "", 0

    def _vgdisplay(self, _args):
        return _VGDISPLAY_OUT % self.vg_name + "\n", "", 0


class FakeLvmDriverMixin(object):
    """
    ``unittest.TestCase`` mixin providing ``self.driver``, a
    ``VolumeDriver`` backed by a ``FakeLvm`` and a temporary mount root.
    """

    default_size = 512

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)
        self.mount_root = realpath(tempfile.mkdtemp("_lvmvd_mounts"))
        self.addCleanup(shutil.rmtree, self.mount_root, ignore_errors=True)
        self.lvm = FakeLvm(self.mount_root)
        config = DriverConfig(
            volume_group=_VG_NAME,
            mount_root=self.mount_root,
            default_size=self.default_size,
        )
        self.driver = VolumeDriver(config, runner=self.lvm)

    def tearDown(self):
        log.debug("Tearing down %s", self._testMethodName)
