"""Creating, inspecting and tearing down bcache devices."""

from __future__ import annotations

import logging

from .commands import CommandError, CommandExecutor, Executor
from .types import BcacheDeviceInfo

log = logging.getLogger(__name__)

_SUPERBLOCK_FIELDS = {
    "sb.magic": "magic",
    "sb.first_sector": "first_sector",
    "sb.csum": "csum",
    "sb.version": "version",
    "dev.label": "label",
    "dev.uuid": "uuid",
    "dev.sectors_per_block": "sectors_per_block",
    "dev.sectors_per_bucket": "sectors_per_bucket",
    "dev.data.first_sector": "data_first_sector",
    "dev.data.cache_mode": "data_cache_mode",
    "dev.data.cache_state": "data_cache_state",
    "cset.uuid": "cset_uuid",
}

_UINT32_MAX = 0xFFFFFFFF


def _parse_uint32(value: str) -> int:
    if not (value.isascii() and value.isdigit()):
        return 0
    return min(int(value), _UINT32_MAX)


def parse_bcache(text: str) -> BcacheDeviceInfo:
    """Parse the tab-separated output of ``bcache-super-show -f``."""
    info = BcacheDeviceInfo()
    for line in text.split("\n"):
        parts = line.replace("\t\t\t", "\t").replace("\t\t", "\t").split("\t")
        if len(parts) < 2:
            continue
        key, value = parts[0], parts[1]
        attr = _SUPERBLOCK_FIELDS.get(key)
        if attr is None:
            log.warning("undefined field %s=%s", key, value)
            continue
        setattr(info, attr, value)
    return info


def parse_device(text: str) -> BcacheDeviceInfo:
    """Parse ``lsblk --pairs --output KNAME,MAJ:MIN`` output; the last line wins."""
    info = BcacheDeviceInfo()
    if text == "":
        log.error("the device information is empty")
        return info
    for line in text.replace('"', "").split("\n"):
        for token in line.split(" "):
            if not token:
                continue
            key, _, value = token.partition("=")
            if key == "MAJ:MIN":
                major, _, minor = value.partition(":")
                info.kernel_major = _parse_uint32(major)
                info.kernel_minor = _parse_uint32(minor)
            elif key == "KNAME":
                info.name = value
            else:
                log.warning("undefined field %s-%s", key, value)
    info.bcache_path = "/dev/" + info.name
    return info


class Bcache:
    """bcache operations carried out through the bcache tools and sysfs."""

    def __init__(self, executor: Executor | None = None) -> None:
        self.executor = executor if executor is not None else CommandExecutor()

    def _shell(self, script: str) -> None:
        self.executor.execute_command("/bin/sh", "-c", script)

    def create_bcache(self, dev: str, cache_dev: str, block: str, bucket: str) -> None:
        """Wipe both devices and format them as backing and cache device."""
        for device in (dev, cache_dev):
            try:
                self.executor.execute_command("wipefs", "-af", device)
            except CommandError as exc:
                log.debug("wipefs %s: %s", device, exc)
        if block and bucket:
            self.executor.execute_command(
                "make-bcache", "--block", block, "--bucket", bucket,
                "-B", dev, "-C", cache_dev, "--wipe-bcache",
            )
            return
        self.executor.execute_command("make-bcache", "-B", dev, "-C", cache_dev, "--wipe-bcache")

    def remove_bcache(self, info: BcacheDeviceInfo) -> None:
        """Detach the cache set, unregister it and stop the backing device."""
        self._shell(f"echo {info.cset_uuid} > /sys/block/{info.name}/bcache/detach")
        try:
            self._shell(f"echo 1 > /sys/fs/bcache/{info.cset_uuid}/unregister")
        except CommandError as exc:
            log.debug("unregister %s: %s", info.cset_uuid, exc)
        try:
            self.executor.execute_command("umount", f"/dev/{info.name}")
        except CommandError as exc:
            log.debug("umount /dev/%s: %s", info.name, exc)
        self._shell(f"echo 1 > /sys/block/{info.name}/bcache/stop")

    def get_device_bcache(self, dev: str) -> BcacheDeviceInfo:
        """Return the kernel name and numbers of the device stacked on ``dev``."""
        output = self.executor.execute_command_with_output(
            "lsblk", "--pairs", "--noheadings", "--output", "KNAME,MAJ:MIN", dev
        )
        return parse_device(output)

    def register_device(self, *args: str) -> None:
        """Register each device with the kernel, stopping at the first failure."""
        for device in args:
            self.executor.execute_command("bcache-register", device)

    def show_device(self, dev: str) -> BcacheDeviceInfo:
        """Read the bcache superblock of ``dev``."""
        output = self.executor.execute_command_with_output("bcache-super-show", "-f", dev)
        return parse_bcache(output)

    def set_cache_mode(self, bcache: str, cache_policy: str) -> None:
        """Set the cache mode (writethrough, writeback, ...) of a bcache device."""
        self._shell(f"echo {cache_policy} > /sys/block/{bcache}/bcache/cache_mode")