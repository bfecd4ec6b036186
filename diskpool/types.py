"""Plain data records describing disks, LVM objects and bcache devices."""

from __future__ import annotations

from dataclasses import dataclass, field

KEYWORD = "carina-"

DISK_TYPE = "disk"
SSD_TYPE = "ssd"
PART_TYPE = "part"
CRYPT_TYPE = "crypt"
LVM_TYPE = "lvm"
ROM_TYPE = "rom"
LVM2_FS_TYPE = "LVM2_member"
MULTI_PATH = "mpath"


class ResourceExhaustedError(Exception):
    """Raised when a device group or disk has no room left for a request."""

    def __init__(self, message: str = "resource exhausted") -> None:
        super().__init__(message)


@dataclass
class BcacheDeviceInfo:
    """Superblock and kernel details of a bcache device."""

    magic: str = ""
    first_sector: str = ""
    csum: str = ""
    label: str = ""
    uuid: str = ""
    sectors_per_block: str = ""
    sectors_per_bucket: str = ""
    data_first_sector: str = ""
    data_cache_mode: str = ""
    data_cache_state: str = ""
    cset_uuid: str = ""
    version: str = ""

    name: str = ""
    bcache_path: str = ""
    device_path: str = ""
    kernel_major: int = 0
    kernel_minor: int = 0


@dataclass
class LocalDisk:
    """A block device as reported by lsblk."""

    name: str = ""
    mount_point: str = ""
    size: int = 0
    state: str = ""
    type: str = ""
    # "1" for spinning disks, "0" for ssd and nvme
    rotational: str = ""
    readonly: bool = False
    filesystem: str = ""
    used: int = 0
    parent_name: str = ""
    device_number: str = ""


@dataclass
class LvInfo:
    """Details of one logical volume."""

    lv_name: str = ""
    vg_name: str = ""
    lv_path: str = ""
    lv_size: int = 0
    lv_kernel_major: int = 0
    lv_kernel_minor: int = 0
    origin: str = ""
    origin_size: int = 0
    pool_lv: str = ""
    thin_count: int = 0
    lv_tags: str = ""
    data_percent: float = 0.0
    lv_attr: str = ""
    lv_active: str = ""


@dataclass
class PVInfo:
    """Details of one physical volume."""

    pv_name: str = ""
    vg_name: str = ""
    pv_fmt: str = ""
    pv_attr: str = ""
    pv_size: int = 0
    pv_free: int = 0


@dataclass
class VgGroup:
    """Details of one volume group and the physical volumes inside it."""

    vg_name: str = ""
    pv_count: int = 0
    lv_count: int = 0
    vg_attr: str = ""
    vg_size: int = 0
    vg_free: int = 0
    pvs: list[PVInfo] = field(default_factory=list)