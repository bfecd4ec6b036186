"""Periodic discovery of local disks and their assignment to volume groups."""

from __future__ import annotations

import logging
import re
import threading
import time
from typing import Callable, Iterable

from .commands import CommandError
from .manager import DeviceManager, DiskSelectorItem, Trigger
from .types import CRYPT_TYPE, LVM_TYPE, MULTI_PATH, ROM_TYPE, ResourceExhaustedError
from .volume import VolumeError

log = logging.getLogger(__name__)

DEFAULT_SCAN_INTERVAL = 300
CONFIG_NOTICE_DELAY = 10.0
SETTLE_DELAY = 5

_UNSUPPORTED_TYPES = (LVM_TYPE, CRYPT_TYPE, MULTI_PATH, ROM_TYPE)
_OPERATION_ERRORS = (CommandError, VolumeError, ResourceExhaustedError, LookupError)


def _selector(patterns: Iterable[str]) -> re.Pattern:
    return re.compile("|".join(patterns))


def _merge_unique(first: list[str], second: list[str]) -> list[str]:
    merged = list(first)
    for item in second:
        if item not in merged:
            merged.append(item)
    return merged


class DeviceCheck:
    """Adds matching empty disks to their device groups and drops those that no longer match."""

    def __init__(
        self,
        dm: DeviceManager,
        disk_scan_interval: Callable[[], float] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        poll_interval: float = 1.0,
        config_notice_delay: float = CONFIG_NOTICE_DELAY,
    ) -> None:
        self.dm = dm
        self._scan_interval = (
            disk_scan_interval if disk_scan_interval is not None else (lambda: DEFAULT_SCAN_INTERVAL)
        )
        self._sleep = sleep
        self.poll_interval = poll_interval
        self.config_notice_delay = config_notice_delay
        self._config_changed = threading.Event()

    def notify_config_change(self) -> None:
        """Ask the running scanner to rescan because the configuration changed."""
        self._config_changed.set()

    def start(self, stop_event: threading.Event) -> None:
        """Scan once, then keep scanning on every tick or configuration change until stopped."""
        log.info("Starting device scan...")
        self.dm.volume_manager.refresh_lvm_cache()
        self.add_and_remove_device()

        interval = self._scan_interval() or DEFAULT_SCAN_INTERVAL
        deadline = time.monotonic() + interval
        while not stop_event.is_set():
            remaining = max(0.0, deadline - time.monotonic())
            if self._config_changed.wait(timeout=min(self.poll_interval, remaining)):
                self._config_changed.clear()
                log.info("config modify trigger disk scan...")
                self.add_and_remove_device()
                timer = threading.Timer(
                    self.config_notice_delay,
                    self.dm.notice_update_capacity,
                    args=(Trigger.CONFIG_MODIFY, None),
                )
                timer.daemon = True
                timer.start()
                continue
            if stop_event.is_set() or time.monotonic() < deadline:
                continue

            current = self._scan_interval()
            if not current:
                deadline = time.monotonic() + DEFAULT_SCAN_INTERVAL
                log.info("skip disk discovery...")
                continue
            if current != interval:
                interval = current
            deadline = time.monotonic() + interval
            log.info("clock %s second device scan...", current)
            self.add_and_remove_device()
            self.dm.notice_update_capacity(Trigger.DUMMY, None)
        log.info("stop device scan...")

    def add_and_remove_device(self) -> None:
        """Add newly found disks to their groups, then remove disks that no longer match."""
        disk_class = self.dm.get_node_disk_select_group()
        volumes = self.dm.volume_manager
        try:
            change_before = volumes.get_current_vg_struct()
        except CommandError as exc:
            log.error("get current vg struct failed: %s", exc)
            return
        try:
            new_disk = self.discover_disk(disk_class)
        except CommandError as exc:
            log.error("find new device failed: %s", exc)
            return
        try:
            new_pv = self.discover_pv(disk_class)
        except (CommandError, re.error) as exc:
            log.error("find new pv failed: %s", exc)
            return

        for key, value in new_disk.items():
            if key in new_pv:
                new_disk[key] = _merge_unique(value, new_pv[key])
        for key, value in new_pv.items():
            new_disk.setdefault(key, value)
        log.debug("newDisk: %s", new_disk)

        actual: dict[str, list[str]] = {}
        for vg in change_before:
            for pv in vg.pvs:
                actual.setdefault(vg.vg_name, []).append(pv.pv_name)

        for vg_name, pvs in new_disk.items():
            log.info("vg:%s, pvs:%s", vg_name, pvs)
            for pv in pvs:
                if pv in actual.get(vg_name, ()):
                    continue
                try:
                    volumes.add_new_disk_to_vg(pv, vg_name)
                except _OPERATION_ERRORS as exc:
                    log.error("add new disk failed vg: %s, disk: %s, error: %s", vg_name, pv, exc)

        self._sleep(SETTLE_DELAY)

        try:
            current = volumes.get_current_vg_struct()
        except CommandError as exc:
            log.error("get current vg struct failed: %s", exc)
            return

        for vg in current:
            item = disk_class.get(vg.vg_name)
            if item is None:
                continue
            try:
                selector = _selector(item.patterns)
            except re.error as exc:
                log.warning("disk regex %s error %s", "|".join(item.patterns), exc)
                return
            for pv in vg.pvs:
                if "unknown" in pv.pv_name:
                    try:
                        volumes.lv.remove_unknown_device(pv.vg_name)
                    except CommandError as exc:
                        log.debug("remove unknown device from %s: %s", pv.vg_name, exc)
                    continue
                if selector.search(pv.pv_name):
                    continue
                log.info("try to remove pv %s from vg %s", pv.pv_name, vg.vg_name)
                try:
                    volumes.remove_disk_in_vg(pv.pv_name, vg.vg_name)
                except _OPERATION_ERRORS as exc:
                    log.error("remove pv %s error %s", pv.pv_name, exc)
                    continue
                log.info("succeeded in removing pv %s from vg %s", pv.pv_name, vg.vg_name)

        try:
            change_after = volumes.get_current_vg_struct()
        except CommandError as exc:
            log.error("get current vg struct failed: %s", exc)
            return
        if change_before != change_after:
            self.dm.notice_update_capacity(Trigger.LVM_CHECK, None)

    def discover_disk(self, disk_class: dict[str, DiskSelectorItem]) -> dict[str, list[str]]:
        """Find empty, supported block devices that match each non-raw group."""
        block_class: dict[str, list[str]] = {}
        local_disks = self.dm.partition.list_devices_detail("")
        if not local_disks:
            log.info("cannot find new device")
            return block_class

        parents = {disk.parent_name for disk in local_disks}
        matched: set[str] = set()

        for item in disk_class.values():
            if item.policy.lower() == "raw":
                continue
            try:
                selector = _selector(item.patterns)
            except re.error as exc:
                log.warning("disk regex %s error %s", "|".join(item.patterns), exc)
                continue
            for disk in local_disks:
                if disk.name in parents or "cache" in disk.name:
                    continue
                if any(kind in disk.type for kind in _UNSUPPORTED_TYPES):
                    log.info("mismatched disk:%s, disktype:%s", disk.name, disk.type)
                    continue
                if not selector.search(disk.name):
                    log.info("mismatched disk:%s, regex:%s", disk.name, selector.pattern)
                    continue
                try:
                    used = self.dm.partition.get_disk_used(disk.name)
                except OSError as exc:
                    log.warning("get disk %s used failed %s", disk.name, exc)
                    continue
                if used > 0:
                    log.warning("block device don't empty %s", disk.name)
                    continue
                log.info("eligible %s device %s", item.name, disk.name)
                group = block_class.get(item.name, [])
                if disk.name in group or disk.name in matched:
                    continue
                block_class.setdefault(item.name, []).append(disk.name)
                matched.add(disk.name)
        return block_class

    def discover_pv(self, disk_class: dict[str, DiskSelectorItem]) -> dict[str, list[str]]:
        """Find physical volumes without a volume group that match each non-raw group."""
        found: dict[str, list[str]] = {}
        pv_list = self.dm.volume_manager.get_current_pv_struct()
        for item in disk_class.values():
            if item.policy.lower() == "raw":
                continue
            try:
                selector = _selector(item.patterns)
            except re.error as exc:
                log.warning("disk regex %s error %s", "|".join(item.patterns), exc)
                raise
            for pv in pv_list:
                if pv.vg_name == item.name:
                    try:
                        self.dm.volume_manager.lv.pv_resize(pv.pv_name)
                    except CommandError:
                        log.error("resize %s error", pv.pv_name)
                if pv.vg_name:
                    continue
                if not selector.search(pv.pv_name):
                    log.info("mismatched pv:%s, regex:%s", pv.pv_name, selector.pattern)
                    continue
                try:
                    disks = self.dm.partition.list_devices_detail_without_filter(pv.pv_name)
                except CommandError as exc:
                    log.error("get device failed %s", exc)
                    continue
                if len(disks) != 1:
                    log.error("get disk count not equal 1")
                    continue
                name = disks[0].name
                log.info("eligible %s pv %s", item.name, name)
                group = found.setdefault(item.name, [])
                if name not in group:
                    group.append(name)
        return found

    def need_leader_election(self) -> bool:
        """Disk scanning runs on every node, never only on the leader."""
        return False