#!/usr/bin/env python3
"""
Filesystem drivers: one per supported kind.

    driver = get_driver("zfs", registry.system_device)
    token  = driver.format("/dev/sdb").mount_token     # pool name for zfs
    driver.mount(token, "/mnt/testdisk")
    ...
    driver.unmount("/mnt/testdisk")
    driver.destroy(token, "/dev/sdb")

`format` never touches the system device. `destroy` is a no-op on a pool,
tree or device that is already gone, so teardown can always be retried.
"""
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from fsbench.config import OVERLAY_ROOT, ZFS_POOL_PREFIX
from fsbench.errors import (
    DeviceBusyError, FormatError, MountError, SystemDiskProtectedError,
    TeardownFailure,
)
from fsbench.utils import is_block_device, is_mounted, mountpoints_of, same_device, shell


def log(msg):
    print(f"[Format] {msg}")


@dataclass
class FormatResult:
    fs: str
    device: str
    mount_token: str


class FilesystemDriver:
    fs = None
    mkfs = None         # argv prefix, device appended
    mount_options = ["-o", "noatime"]

    def __init__(self, system_device):
        self.system_device = system_device

    # ── safety ──────────────────────────────────────────────────────────
    def _guard(self, device):
        if same_device(device, self.system_device):
            raise SystemDiskProtectedError(
                f"refusing to touch {device}: it is the system disk")

    def _release(self, device, error=DeviceBusyError):
        for mp in mountpoints_of(device):
            log(f"{device} is mounted at {mp}, unmounting...")
            shell(["umount", mp], check=False)
        still = mountpoints_of(device)
        if still:
            raise error(f"unable to unmount {device} from {', '.join(still)}")

    # ── create ──────────────────────────────────────────────────────────
    def format(self, device) -> FormatResult:
        self._guard(device)
        if not is_block_device(device):
            raise FormatError(f"{device} does not exist or is not a block device")

        log(f"Formatting {device} with {self.fs}...")
        self._release(device)
        self._prepare(device)
        try:
            result = self._create(device)
        except (subprocess.CalledProcessError, OSError) as e:
            raise FormatError(f"creating {self.fs} on {device} failed: {e}") from e
        log(f"Formatting of {device} with {self.fs} complete.")
        return result

    def _prepare(self, device):
        """Clear old signatures."""
        if shell(["wipefs", "-a", device], check=False).returncode != 0:
            log("WARNING: failed to clear filesystem signatures, continuing anyway")

    def _create(self, device) -> FormatResult:
        shell(self.mkfs + [device])
        return FormatResult(self.fs, device, self.default_token(device))

    def default_token(self, device):
        """Token format() would return; lets teardown run after a partial format."""
        return device

    # ── attach ──────────────────────────────────────────────────────────
    def _mount_argv(self, token, target):
        return ["mount"] + self.mount_options + [token, target]

    def mount(self, token, target):
        target = Path(target)
        target.mkdir(parents=True, exist_ok=True)
        try:
            shell(self._mount_argv(token, str(target)))
        except (subprocess.CalledProcessError, OSError) as e:
            raise MountError(f"mounting {token} at {target} failed: {e}") from e
        os.chmod(target, 0o777)
        log(f"{token} mounted at {target}")

    def unmount(self, target):
        if not is_mounted(target):
            return
        if shell(["umount", target], check=False).returncode != 0:
            log(f"WARNING: umount {target} failed, retrying lazily")
            shell(["umount", "-fl", target], check=False)
        if is_mounted(target):
            raise TeardownFailure(f"{target} is still mounted")

    # ── destroy ─────────────────────────────────────────────────────────
    def destroy(self, token, device):
        self._guard(device)
        if not is_block_device(device):
            log(f"{device} is gone, nothing to destroy")
            return
        self._release(device, error=TeardownFailure)
        if shell(["wipefs", "-a", device], check=False).returncode != 0:
            raise TeardownFailure(f"wipefs on {device} failed")


class Ext4Driver(FilesystemDriver):
    fs = "ext4"
    mkfs = ["mkfs.ext4", "-F"]


class XfsDriver(FilesystemDriver):
    fs = "xfs"
    mkfs = ["mkfs.xfs", "-f"]


class BtrfsDriver(FilesystemDriver):
    fs = "btrfs"
    mkfs = ["mkfs.btrfs", "-f"]


class ZfsDriver(FilesystemDriver):
    """The mount token is the pool, named after the device."""

    fs = "zfs"

    @staticmethod
    def pool_name(device):
        return f"{ZFS_POOL_PREFIX}{Path(device).name}"

    def default_token(self, device):
        return self.pool_name(device)

    @staticmethod
    def module_loaded():
        return Path("/sys/module/zfs").exists()

    @staticmethod
    def pool_exists(pool):
        res = shell(["zpool", "list", "-H", "-o", "name", pool],
                    check=False, capture=True)
        return res.returncode == 0

    def _drop_pool(self, pool, error):
        for mp in mountpoints_of(pool):
            shell(["umount", mp], check=False)
        shell(["zpool", "destroy", "-f", pool], check=False)
        if self.pool_exists(pool):
            raise error(f"unable to destroy zfs pool {pool}")

    def _prepare(self, device):
        if not self.module_loaded():
            raise FormatError("ZFS kernel module not loaded, run 'modprobe zfs' first")
        pool = self.pool_name(device)
        if self.pool_exists(pool):
            log(f"ZFS pool {pool} exists, destroying...")
            self._drop_pool(pool, DeviceBusyError)
        super()._prepare(device)

    def _create(self, device):
        pool = self.pool_name(device)
        log(f"Creating ZFS pool {pool}...")
        shell(["zpool", "create", "-f", pool, device])
        shell(["zfs", "set", "atime=off", pool])
        shell(["zfs", "set", "compression=off", pool])
        shell(["zfs", "set", "mountpoint=legacy", pool])
        return FormatResult(self.fs, device, pool)

    def _mount_argv(self, token, target):
        return ["mount", "-t", "zfs", token, target]

    def destroy(self, token, device):
        self._guard(device)
        if not self.pool_exists(token):
            log(f"ZFS pool {token} already absent")
            return
        log(f"Destroying ZFS pool {token}...")
        self._drop_pool(token, TeardownFailure)


class OverlayDriver(FilesystemDriver):
    """
    Control kind: an overlayfs tree on the host's own storage. The device
    only names the tree; nothing is written to it.
    """

    fs = "overlay"

    def __init__(self, system_device, root=OVERLAY_ROOT):
        super().__init__(system_device)
        self.root = Path(root)

    def default_token(self, device):
        return str(self.root / Path(device).name)

    def format(self, device):
        self._guard(device)
        base = Path(self.default_token(device))
        if base.exists():
            shutil.rmtree(base)
        for sub in ("lower", "upper", "work"):
            (base / sub).mkdir(parents=True)
        log(f"Overlay tree ready at {base}")
        return FormatResult(self.fs, device, str(base))

    def _mount_argv(self, token, target):
        opts = f"lowerdir={token}/lower,upperdir={token}/upper,workdir={token}/work"
        return ["mount", "-t", "overlay", "overlay", "-o", opts, target]

    def destroy(self, token, device):
        self._guard(device)
        base = Path(token)
        if not base.exists():
            log(f"Overlay tree {base} already absent")
            return
        try:
            shutil.rmtree(base)
        except OSError as e:
            raise TeardownFailure(f"removing {base} failed: {e}") from e


DRIVERS = {d.fs: d for d in (Ext4Driver, XfsDriver, BtrfsDriver, ZfsDriver, OverlayDriver)}


def get_driver(fs, system_device):
    try:
        return DRIVERS[fs](system_device)
    except KeyError:
        raise ValueError(f"unsupported filesystem {fs!r}") from None
