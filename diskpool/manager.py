"""The device manager that ties volumes, partitions and capacity notices together."""

from __future__ import annotations

import enum
import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Mapping

from .bcache import Bcache
from .commands import CommandExecutor, Executor
from .lvm import Lvm2
from .partition import LocalPartition
from .volume import GlobalLocks, LocalVolume

log = logging.getLogger(__name__)

NOTICE_TIMEOUT = 10.0


class Trigger(str, enum.Enum):
    """What caused a capacity update notice."""

    DUMMY = "dummy"
    CONFIG_MODIFY = "configModify"
    LVM_CHECK = "lvmCheck"
    CLEANUP_ORPHAN = "cleanupOrphan"
    LOGIC_VOLUME_CONTROLLER = "logicVolumeController"


@dataclass
class VolumeEvent:
    """A request to recompute node storage capacity."""

    trigger: Trigger
    trigger_at: datetime = field(default_factory=datetime.now)
    done: threading.Event | None = None


@dataclass
class DiskSelectorItem:
    """One configured device group: which disks belong to it and how they are used."""

    name: str
    patterns: list[str] = field(default_factory=list)
    policy: str = "LVM"
    node_label: str = ""


class DeviceManager:
    """Holds the volume and partition layers of one node and fans out capacity notices."""

    def __init__(
        self,
        node_name: str,
        disk_selector: Callable[[], Iterable[DiskSelectorItem]] | None = None,
        node_labels: Callable[[], Mapping[str, str] | None] | None = None,
        volume_manager: LocalVolume | None = None,
        partition: LocalPartition | None = None,
        executor: Executor | None = None,
        notice_timeout: float = NOTICE_TIMEOUT,
    ) -> None:
        executor = executor if executor is not None else CommandExecutor()
        self.node_name = node_name
        self._disk_selector = disk_selector if disk_selector is not None else (lambda: [])
        self._node_labels = node_labels if node_labels is not None else (lambda: {})
        if volume_manager is None:
            volume_manager = LocalVolume(
                lv=Lvm2(executor), bcache=Bcache(executor), mutex=GlobalLocks()
            )
        self.volume_manager = volume_manager
        self.partition = partition if partition is not None else LocalPartition(executor)
        self.notice_timeout = notice_timeout
        self._notice_queues: list[queue.Queue] = []

    def get_node_disk_select_group(self) -> dict[str, DiskSelectorItem]:
        """Return the device groups that apply to this node, keyed by group name."""
        selectors = list(self._disk_selector())
        labels = self._node_labels()
        if labels is None:
            log.error("get node %s error: node not found", self.node_name)
            return {}
        disk_class: dict[str, DiskSelectorItem] = {}
        for item in selectors:
            if item.node_label == "" or item.node_label in labels:
                disk_class[item.name] = item
        return disk_class

    def notice_update_capacity(
        self, trigger: Trigger, done: threading.Event | None = None
    ) -> None:
        """Send a capacity update event to every registered queue."""
        for notice in self._notice_queues:
            event = VolumeEvent(trigger=trigger, done=done)
            try:
                notice.put(event, timeout=self.notice_timeout)
            except queue.Full:
                log.debug(
                    "Notice channel is full, send update channel timeout(%ss).",
                    self.notice_timeout,
                )

    def register_notice_queue(self, notice: queue.Queue) -> None:
        """Add a queue that receives capacity update events."""
        self._notice_queues.append(notice)