"""Listing local block devices and managing the partition number cache."""

from __future__ import annotations

import logging
import os

from .commands import CommandExecutor, Executor
from .types import KEYWORD, LocalDisk

log = logging.getLogger(__name__)

DISK_MUTEX = "DiskMutex"

_MIN_DISK_SIZE = 10 << 30
_UINT64_MAX = 0xFFFFFFFFFFFFFFFF

_LSBLK_COLUMNS = "NAME,FSTYPE,MOUNTPOINT,SIZE,STATE,TYPE,ROTA,RO,PKNAME,MAJ:MIN"


def _uint64(value: str) -> int:
    if not (value.isascii() and value.isdigit()):
        return 0
    return min(int(value), _UINT64_MAX)


def parse_udev_info(output: str) -> dict[str, str]:
    """Parse ``KEY=value`` lines; lines without ``=`` are ignored."""
    result = {}
    for line in output.split("\n"):
        pairs = line.split("=")
        if len(pairs) > 1:
            result[pairs[0]] = pairs[1]
    return result


_DISK_FIELDS = {
    "NAME": ("name", str),
    "MOUNTPOINT": ("mount_point", str),
    "SIZE": ("size", _uint64),
    "STATE": ("state", str),
    "TYPE": ("type", str),
    "ROTA": ("rotational", str),
    "RO": ("readonly", lambda value: value == "1"),
    "FSTYPE": ("filesystem", str),
    "PKNAME": ("parent_name", str),
    "MAJ:MIN": ("device_number", str),
}


def parse_disk_string(text: str) -> list[LocalDisk]:
    """Parse ``lsblk --pairs`` output into one LocalDisk per line."""
    if text == "":
        return []
    disks = []
    for line in text.replace('"', "").split("\n"):
        disk = LocalDisk()
        for token in line.split(" "):
            if not token:
                continue
            parts = token.split("=")
            key, value = parts[0], parts[1] if len(parts) > 1 else ""
            spec = _DISK_FIELDS.get(key)
            if spec is None:
                log.warning("undefined field %s-%s", key, value)
                continue
            attr, convert = spec
            setattr(disk, attr, convert(value))
        disks.append(disk)
    return disks


def filter_disks(disks: list[LocalDisk]) -> list[LocalDisk]:
    """Keep writable, unformatted, unmounted disks of at least 10 GiB."""
    kept = []
    for disk in disks:
        if KEYWORD in disk.name:
            continue
        if disk.readonly or disk.size < _MIN_DISK_SIZE or disk.filesystem or disk.mount_point:
            log.debug(
                "Mismatched disk:%s, filesystem:%s, mountpoint:%s, readonly:%s, size:%d",
                disk.name, disk.filesystem, disk.mount_point, disk.readonly, disk.size,
            )
            continue
        kept.append(disk)
    return kept


class LocalPartition:
    """Block device discovery through lsblk and the partition number cache."""

    def __init__(self, executor: Executor | None = None) -> None:
        self.executor = executor if executor is not None else CommandExecutor()
        self.cache_partition_num: dict[str, int] = {}

    def list_devices_detail_without_filter(self, device: str) -> list[LocalDisk]:
        """List every block device, or just ``device`` when it is given."""
        args = ["--pairs", "--paths", "--bytes", "--output", _LSBLK_COLUMNS]
        if device:
            args.append(device)
        output = self.executor.execute_command_with_output("lsblk", *args)
        return parse_disk_string(output)

    def list_devices_detail(self, device: str) -> list[LocalDisk]:
        """List the block devices that could be given to a device group."""
        return filter_disks(self.list_devices_detail_without_filter(device))

    def get_disk_used(self, device: str) -> int:
        """Return the used block count of the filesystem holding ``device``."""
        os.stat(device)
        try:
            stat = os.statvfs(device)
        except OSError as exc:
            log.debug("statvfs %s: %s", device, exc)
            return 0
        return stat.f_blocks - stat.f_bavail

    def get_device(self, device_number: str) -> LocalDisk | None:
        """Find the block device with the given ``major:minor`` number."""
        for disk in self.list_devices_detail_without_filter(""):
            if disk.device_number == device_number:
                return disk
        return None

    def update_partition_cache(self, name: str, number: int) -> None:
        """Remember a partition number unless one is already cached for ``name``."""
        if name not in self.cache_partition_num:
            self.cache_partition_num[name] = number
            log.info("update partition cache %s=%d", name, number)

    def udev_settle(self) -> None:
        """Wait for pending udev events to finish."""
        self.executor.execute_command_with_output("udevadm", "settle")

    def part_probe(self) -> None:
        """Ask the kernel to re-read partition tables."""
        self.executor.execute_command("bash", "-c", "partprobe")