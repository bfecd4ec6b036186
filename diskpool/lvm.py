"""LVM2 operations carried out through the lvm command-line tools."""

from __future__ import annotations

import logging
import os
import time
from typing import Callable, Sequence

from .commands import CommandError, CommandExecutor, Executor
from .lvmparse import parse_lvs, parse_pvs, parse_vgs
from .types import LvInfo, PVInfo, VgGroup

log = logging.getLogger(__name__)

LVMPOLLD_SOCKET = "/run/lvm/lvmpolld.socket"

_REPORT_ARGS = (
    "--noheadings",
    "--separator=,",
    "--units=b",
    "--nosuffix",
    "--unbuffered",
    "--nameprefixes",
)
_VG_COLUMNS = "VG_NAME,PV_COUNT,LV_COUNT,VG_ATTR,VG_SIZE,VG_FREE"
_LV_COLUMNS = (
    "lv_name,vg_name,lv_path,lv_size,data_percent,lv_attr,lv_kernel_major,"
    "lv_kernel_minor,origin,origin_size,pool_lv,thin_count,lv_tags,lv_active"
)


def _gib(size: int) -> str:
    """Format a byte count as whole GiB the way lvm expects it, e.g. ``2g``."""
    return f"{size >> 30}g"


def _tag_args(tags: Sequence[str]) -> list[str]:
    return [f"--add-tag={tag}" for tag in tags if tag]


class Lvm2:
    """Physical volume, volume group, logical volume and snapshot management."""

    lvmpolld_socket = LVMPOLLD_SOCKET

    def __init__(
        self,
        executor: Executor | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.executor = executor if executor is not None else CommandExecutor()
        self._sleep = sleep

    # Physical volumes

    def pv_check(self, dev: str) -> str:
        """Check the metadata of a physical volume and return pvck's report."""
        return self.executor.execute_command_with_combined_output("pvck", dev)

    def pv_create(self, dev: str) -> None:
        """Initialise ``dev`` as a physical volume."""
        self.executor.execute_command("pvcreate", dev)

    def pv_remove(self, dev: str) -> None:
        """Wipe the physical volume label from ``dev``."""
        self.executor.execute_command("pvremove", dev)

    def pv_resize(self, dev: str) -> None:
        """Grow the physical volume to the current size of its device."""
        self.executor.execute_command("pvresize", dev)

    def pvs(self) -> list[PVInfo]:
        """List all physical volumes."""
        output = self.executor.execute_command_with_output("pvs", *_REPORT_ARGS)
        return parse_pvs(output)

    def pv_display(self, dev: str) -> PVInfo:
        """Return the physical volume on ``dev``; LookupError if there is none."""
        for pv in self.pvs():
            if pv.pv_name == dev:
                return pv
        raise LookupError("disk not found")

    def pv_scan(self, dev: str) -> None:
        """Scan ``dev`` (or every device when empty) into the lvm metadata cache."""
        args = ["--cache"]
        if dev:
            args.append(dev)
        self.executor.execute_command("pvscan", *args)

    # Volume groups

    def vg_check(self, vg: str) -> None:
        """Check the consistency of a volume group."""
        self.executor.execute_command("vgck", vg)

    def vg_create(self, vg: str, tags: Sequence[str], pvs: Sequence[str]) -> None:
        """Create a volume group from ``pvs``, tagged with every non-empty tag."""
        self.executor.execute_command("vgcreate", *_tag_args(tags), vg, *pvs)

    def vg_remove(self, vg: str) -> None:
        """Remove a volume group by force."""
        self.executor.execute_command("vgremove", "-f", vg)

    def vgs(self) -> list[VgGroup]:
        """List all volume groups."""
        output = self.executor.execute_command_with_output(
            "vgs", "-o", _VG_COLUMNS, *_REPORT_ARGS
        )
        return parse_vgs(output)

    def vg_display(self, vg: str) -> VgGroup:
        """Return the volume group named ``vg``; LookupError if there is none."""
        for group in self.vgs():
            if group.vg_name == vg:
                return group
        raise LookupError("vg not found")

    def vg_scan(self, vg: str) -> None:
        """Scan ``vg`` (or every volume group when empty) into the metadata cache."""
        args = ["--cache"]
        if vg:
            args.append(vg)
        self.executor.execute_command("vgscan", *args)

    def vg_extend(self, vg: str, pv: str) -> None:
        """Add the physical volume ``pv`` to ``vg``."""
        self.executor.execute_command("vgextend", vg, pv)

    def vg_reduce(self, vg: str, pv: str) -> None:
        """Move data off ``pv``, drop it from ``vg`` and wipe its label."""
        try:
            self.executor.execute_command_with_output("pvmove", pv)
        except CommandError as exc:
            if "No data to move" not in exc.output:
                log.error("%s", exc.output)
                raise
        log.info("wait 1s to exec vgreduce")
        self._sleep(1)
        self.executor.execute_command("vgreduce", vg, pv)
        self.pv_remove(pv)

    # Thin pools and logical volumes

    def create_thin_pool(self, lv: str, vg: str, size: int) -> None:
        """Create a thin pool of ``size`` bytes (rounded down to GiB)."""
        self.executor.execute_command("lvcreate", "-T", f"{vg}/{lv}", "--size", _gib(size))

    def resize_thin_pool(self, lv: str, vg: str, size: int) -> None:
        """Resize a thin pool to ``size`` bytes (rounded down to GiB)."""
        self.executor.execute_command("lvresize", "-f", "-L", _gib(size), f"{vg}/{lv}")

    def delete_thin_pool(self, lv: str, vg: str) -> None:
        """Remove a thin pool."""
        self.lv_remove(lv, vg)

    def lv_create_from_pool(self, lv: str, thin: str, vg: str, size: int) -> None:
        """Create a thin volume ``lv`` inside the pool ``thin``."""
        self.executor.execute_command(
            "lvcreate", "-T", f"{vg}/{thin}", "-n", lv, "-V", _gib(size)
        )

    def lv_create_from_vg(
        self,
        lv: str,
        vg: str,
        size: int,
        tags: Sequence[str],
        stripe: int,
        stripe_size: str,
    ) -> None:
        """Create a linear (or, with ``stripe``, striped) logical volume in ``vg``."""
        args = ["-n", lv, "-L", _gib(size), "-W", "y", "-y", *_tag_args(tags)]
        if stripe:
            args += ["-i", str(stripe)]
            if stripe_size:
                args += ["-I", stripe_size]
        args.append(vg)
        self.executor.execute_command("lvcreate", *args)

    def lv_remove(self, lv: str, vg: str) -> None:
        """Remove a logical volume by force."""
        self.executor.execute_command("lvremove", "-f", f"{vg}/{lv}")

    def lv_resize(self, lv: str, vg: str, size: int) -> None:
        """Resize a logical volume to ``size`` bytes (rounded down to GiB)."""
        self.executor.execute_command("lvresize", "-L", _gib(size), f"{vg}/{lv}")

    def lv_display(self, lv: str, vg: str) -> LvInfo:
        """Return the logical volume ``vg/lv``; LookupError if there is none."""
        volumes = self.lvs(f"{vg}/{lv}")
        if not volumes:
            raise LookupError("not found")
        return volumes[0]

    def lvs(self, lv_name: str) -> list[LvInfo]:
        """List logical volumes, all of them or only ``lv_name`` (``vg/lv``)."""
        args = ["-o", _LV_COLUMNS, *_REPORT_ARGS]
        if lv_name:
            args.append(lv_name)
        try:
            output = self.executor.execute_command_with_output("lvs", *args)
        except CommandError as exc:
            if "Failed to find logical volume" in exc.output:
                return []
            raise
        return parse_lvs(output)

    # Snapshots

    def create_snapshot(self, snap: str, lv: str, vg: str) -> None:
        """Create an activated thin snapshot ``snap`` of ``vg/lv``."""
        self.executor.execute_command("lvcreate", "-s", f"{vg}/{lv}", "-n", snap, "-ay", "-Ky")

    def delete_snapshot(self, snap: str, vg: str) -> None:
        """Remove a snapshot."""
        self.lv_remove(snap, vg)

    def restore_snapshot(self, snap: str, vg: str) -> None:
        """Merge a snapshot back into its origin; the snapshot disappears."""
        self.executor.execute_command("lvconvert", "--merge", f"{vg}/{snap}")

    # Service and maintenance

    def start_lvm2(self) -> None:
        """Start lvmpolld unless its socket already exists."""
        if not os.path.exists(self.lvmpolld_socket):
            self.executor.execute_command_resident_binary(3, "lvmpolld")

    def remove_unknown_device(self, vg: str) -> None:
        """Drop missing physical volumes from ``vg``."""
        self.executor.execute_command("vgreduce", "--removemissing", vg)