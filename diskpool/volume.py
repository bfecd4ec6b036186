"""Volume-level operations built on top of LVM and bcache."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from .bcache import Bcache
from .commands import CommandError
from .lvm import Lvm2
from .lvmparse import VOLUME_PREFIX
from .types import BcacheDeviceInfo, LvInfo, PVInfo, ResourceExhaustedError, VgGroup

log = logging.getLogger(__name__)

VOLUME_MUTEX = "VolumeMutex"

DEVICE_VG_HDD = "carina-vg-hdd"
DEVICE_VG_SSD = "carina-vg-ssd"

# Space kept free in every volume group, and the tolerance allowed on it.
DEFAULT_RESERVED_SPACE = 10 << 30
DEFAULT_EDGE_SPACE = 1 << 30


class VolumeError(Exception):
    """A volume operation was refused or could not be carried out."""


class GlobalLocks:
    """Named non-blocking locks shared by the volume and partition layers."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._held: set[str] = set()

    def try_acquire(self, name: str) -> bool:
        """Take the lock ``name`` if it is free; return whether it was taken."""
        with self._guard:
            if name in self._held:
                return False
            self._held.add(name)
            return True

    def release(self, name: str) -> None:
        """Release the lock ``name``."""
        with self._guard:
            self._held.discard(name)


class LocalVolume:
    """Creates, resizes and removes logical volumes and manages device groups."""

    def __init__(
        self,
        lv: Lvm2 | None = None,
        bcache: Bcache | None = None,
        mutex: GlobalLocks | None = None,
        reserved_space: int = DEFAULT_RESERVED_SPACE,
        edge_space: int = DEFAULT_EDGE_SPACE,
    ) -> None:
        self.lv = lv if lv is not None else Lvm2()
        self.bcache = bcache if bcache is not None else Bcache()
        self.mutex = mutex if mutex is not None else GlobalLocks()
        self.reserved_space = reserved_space
        self.edge_space = edge_space

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self.mutex.try_acquire(VOLUME_MUTEX):
            log.info("wait other task release mutex, please retry...")
            raise VolumeError("get global mutex failed")
        try:
            yield
        finally:
            self.mutex.release(VOLUME_MUTEX)

    def _find_lv(self, lv_name: str, vg_name: str) -> LvInfo | None:
        try:
            return self.lv.lv_display(lv_name, vg_name)
        except (LookupError, CommandError):
            return None

    def _minimum_free(self) -> int:
        return self.reserved_space - self.edge_space

    def create_volume(self, lv_name: str, vg_name: str, size: int, ratio: int) -> None:
        """Create the volume ``lv_name`` of ``size`` bytes unless it exists."""
        with self._exclusive():
            vg_info = self.lv.vg_display(vg_name)
            if vg_info.vg_free - size < self._minimum_free():
                log.warning("%s don't have enough space, reserved 10g", vg_name)
                raise ResourceExhaustedError()

            name = VOLUME_PREFIX + lv_name
            existing = self._find_lv(name, vg_name)
            if existing is not None and existing.vg_name == vg_name:
                log.info("%s/%s volume exists", vg_name, name)
                return
            self.lv.lv_create_from_vg(name, vg_name, size, [], 0, "")

    def delete_volume(self, lv_name: str, vg_name: str) -> None:
        """Remove a volume, its bcache device and any thin pool behind it."""
        with self._exclusive():
            name = lv_name if lv_name.startswith(VOLUME_PREFIX) else VOLUME_PREFIX + lv_name
            try:
                lv_info = self.lv.lv_display(name, vg_name)
            except LookupError:
                log.warning("volume %s/%s not exist", vg_name, lv_name)
                return

            try:
                self.delete_bcache(f"/dev/{vg_name}/{name}", "")
            except (CommandError, VolumeError) as exc:
                log.debug("delete bcache of %s/%s: %s", vg_name, name, exc)

            self.lv.lv_remove(name, vg_name)

            if self._find_lv(lv_info.pool_lv, vg_name) is None:
                return
            self.lv.delete_thin_pool(lv_info.pool_lv, vg_name)

    def resize_volume(self, lv_name: str, vg_name: str, size: int, ratio: int) -> None:
        """Grow a volume to ``size`` bytes, growing its thin pool if needed."""
        with self._exclusive():
            vg_info = self.lv.vg_display(vg_name)

            name = VOLUME_PREFIX + lv_name
            try:
                lv_info = self.lv.lv_display(name, vg_name)
            except (LookupError, CommandError) as exc:
                log.error("get volume info failed %s/%s %s", vg_name, name, exc)
                return

            if lv_info.lv_size == size:
                log.info("%s/%s have expend", vg_name, lv_name)
                return

            if vg_info.vg_free - (size - lv_info.lv_size) < self._minimum_free():
                log.warning("%s don't have enough space, reserved 10g", vg_name)
                raise ResourceExhaustedError()

            thin_info = self._find_lv(lv_info.pool_lv, vg_name)
            if thin_info is not None and thin_info.lv_size < size:
                self.lv.resize_thin_pool(lv_info.pool_lv, vg_name, size * ratio)

            self.lv.lv_resize(name, vg_name, size)

    def volume_list(self, lv_name: str, vg_name: str) -> list[LvInfo]:
        """List volumes: all of them, or only ``vg_name/lv_name`` when both are given."""
        name = f"{vg_name}/{lv_name}" if lv_name and vg_name else ""
        return self.lv.lvs(name)

    def volume_info(self, lv_name: str, vg_name: str) -> LvInfo:
        """Return the volume named ``lv_name``; LookupError if there is none."""
        try:
            volumes = self.volume_list(lv_name, vg_name)
        except CommandError as exc:
            raise VolumeError(f"failed to list lv :{exc}") from exc
        for volume in volumes:
            if volume.lv_name == lv_name:
                return volume
        raise LookupError("not found")

    def get_current_vg_struct(self) -> list[VgGroup]:
        """List volume groups, each with the physical volumes that belong to it."""
        groups: dict[str, VgGroup] = {group.vg_name: group for group in self.lv.vgs()}
        for pv in self.lv.pvs():
            if not pv.vg_name:
                continue
            group = groups.get(pv.vg_name)
            if group is not None:
                group.pvs.append(pv)
        return list(groups.values())

    def get_current_pv_struct(self) -> list[PVInfo]:
        """List all physical volumes."""
        return self.lv.pvs()

    def add_new_disk_to_vg(self, disk: str, vg_name: str) -> None:
        """Turn ``disk`` into a physical volume and add it to ``vg_name``."""
        vg_name = vg_name.lower()
        with self._exclusive():
            try:
                pv_info: PVInfo | None = self.lv.pv_display(disk)
            except LookupError:
                pv_info = None
            if pv_info is None:
                self.lv.pv_create(disk)
            elif pv_info.vg_name:
                log.error("pv %s have bind vg %s", pv_info.pv_name, pv_info.vg_name)
                raise VolumeError(f"pv {pv_info.pv_name} have bind vg {pv_info.vg_name} ")

            try:
                vg_info: VgGroup | None = self.lv.vg_display(vg_name)
            except LookupError:
                vg_info = None
            if vg_info is None:
                self.lv.vg_create(vg_name, [vg_name], [disk])
            else:
                self.lv.vg_extend(vg_name, disk)

    def remove_disk_in_vg(self, disk: str, vg_name: str) -> None:
        """Take ``disk`` out of ``vg_name``, removing the group if it was the last disk."""
        with self._exclusive():
            pv_info = self.lv.pv_display(disk)
            if pv_info.vg_name != vg_name:
                log.error(
                    "pv %s have bind vg %s not %s", pv_info.pv_name, pv_info.vg_name, vg_name
                )
                raise VolumeError(
                    f"pv {pv_info.pv_name} have bind vg {pv_info.vg_name} not {vg_name} "
                )
            if not pv_info.vg_name:
                self.lv.pv_remove(disk)
                return

            vg_info = self.lv.vg_display(vg_name)
            if vg_info.pv_count == 1:
                if vg_info.lv_count > 0:
                    log.warning(
                        "cannot remove the disk %s because there are still logic volumes", disk
                    )
                    raise VolumeError("still have logical volumes")
                self.lv.vg_remove(vg_name)
                self.lv.pv_remove(disk)
                return

            if vg_info.vg_free - self.reserved_space + self.edge_space < pv_info.pv_size:
                log.warning("cannot remove the disk %s because there will not enough space", disk)
                raise ResourceExhaustedError()
            self.lv.vg_reduce(vg_name, disk)

    def health_check(self) -> None:
        """Drop missing physical volumes from the default device groups."""
        if not self.mutex.try_acquire(VOLUME_MUTEX):
            log.info("wait other task release mutex, please retry...")
            return
        try:
            for vg in (DEVICE_VG_HDD, DEVICE_VG_SSD):
                try:
                    self.lv.remove_unknown_device(vg)
                except CommandError as exc:
                    log.debug("remove unknown device from %s: %s", vg, exc)
        finally:
            self.mutex.release(VOLUME_MUTEX)

    def refresh_lvm_cache(self) -> None:
        """Start lvmpolld and rescan physical volumes and volume groups."""
        try:
            self.lv.start_lvm2()
        except CommandError as exc:
            log.debug("start lvm2: %s", exc)
        try:
            self.lv.pv_scan("")
        except CommandError as exc:
            log.warning("error during pvscan: %s", exc)
        try:
            self.lv.vg_scan("")
        except CommandError as exc:
            log.warning("error during vgscan: %s", exc)

    def create_bcache(
        self, dev: str, cache_dev: str, block: str, bucket: str, cache_policy: str
    ) -> BcacheDeviceInfo:
        """Create and register a bcache device and set its cache mode."""
        try:
            self.bcache.create_bcache(dev, cache_dev, block, bucket)
        except CommandError as exc:
            log.error("create bcache failed device %s cache device %s error %s", dev, cache_dev, exc)
            raise
        try:
            self.bcache.register_device(dev, cache_dev)
        except CommandError as exc:
            log.error(
                "register bcache failed device %s cache device %s error %s", dev, cache_dev, exc
            )
            raise
        device_info = self.bcache.get_device_bcache(dev)
        try:
            self.bcache.set_cache_mode(device_info.name, cache_policy)
        except CommandError as exc:
            log.error("set cache mode failed %s %s", device_info.name, exc)
            raise
        return device_info

    def delete_bcache(self, dev: str, cache_dev: str) -> None:
        """Tear down the bcache device on ``dev``; nothing happens if there is none."""
        try:
            device_info = self.bcache_device_info(dev)
        except CommandError as exc:
            if exc.returncode == 2:
                return
            log.error("get device info error %s %s", dev, exc)
            raise
        self.bcache.remove_bcache(device_info)

    def bcache_device_info(self, dev: str) -> BcacheDeviceInfo:
        """Combine the bcache superblock of ``dev`` with its kernel device details."""
        info = self.bcache.show_device(dev)
        info.device_path = dev
        device_info = self.bcache.get_device_bcache(dev)
        info.kernel_major = device_info.kernel_major
        info.kernel_minor = device_info.kernel_minor
        info.name = device_info.name
        info.bcache_path = device_info.bcache_path
        return info