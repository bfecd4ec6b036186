"""Parsing the ``--nameprefixes`` reports of pvs, vgs and lvs."""

from __future__ import annotations

import logging
from typing import Callable, Iterator

from .types import LvInfo, PVInfo, VgGroup

log = logging.getLogger(__name__)

VOLUME_PREFIX = "volume-"
THIN_PREFIX = "thin-"

_UINT64_MAX = 0xFFFFFFFFFFFFFFFF
_UINT32_MAX = 0xFFFFFFFF


def _uint(limit: int) -> Callable[[str], int]:
    def convert(value: str) -> int:
        if not (value.isascii() and value.isdigit()):
            return 0
        return min(int(value), limit)

    return convert


_uint64 = _uint(_UINT64_MAX)
_uint32 = _uint(_UINT32_MAX)


def _float(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        return 0.0


_Fields = dict[str, tuple[str, Callable[[str], object]]]

_VG_FIELDS: _Fields = {
    "LVM2_VG_NAME": ("vg_name", str),
    "LVM2_PV_COUNT": ("pv_count", _uint64),
    "LVM2_LV_COUNT": ("lv_count", _uint64),
    "LVM2_VG_ATTR": ("vg_attr", str),
    "LVM2_VG_SIZE": ("vg_size", _uint64),
    "LVM2_VG_FREE": ("vg_free", _uint64),
}

_LV_FIELDS: _Fields = {
    "LVM2_LV_NAME": ("lv_name", str),
    "LVM2_VG_NAME": ("vg_name", str),
    "LVM2_LV_PATH": ("lv_path", str),
    "LVM2_LV_SIZE": ("lv_size", _uint64),
    "LVM2_LV_KERNEL_MAJOR": ("lv_kernel_major", _uint32),
    "LVM2_LV_KERNEL_MINOR": ("lv_kernel_minor", _uint32),
    "LVM2_ORIGIN": ("origin", str),
    "LVM2_ORIGIN_SIZE": ("origin_size", _uint64),
    "LVM2_POOL_LV": ("pool_lv", str),
    "LVM2_THIN_COUNT": ("thin_count", _uint64),
    "LVM2_LV_TAGS": ("lv_tags", str),
    "LVM2_DATA_PERCENT": ("data_percent", _float),
    "LVM2_LV_ATTR": ("lv_attr", str),
    "LVM2_LV_ACTIVE": ("lv_active", str),
}

_PV_FIELDS: _Fields = {
    "LVM2_PV_NAME": ("pv_name", str),
    "LVM2_VG_NAME": ("vg_name", str),
    "LVM2_PV_FMT": ("pv_fmt", str),
    "LVM2_PV_ATTR": ("pv_attr", str),
    "LVM2_PV_SIZE": ("pv_size", _uint64),
    "LVM2_PV_FREE": ("pv_free", _uint64),
}


def _records(text: str) -> Iterator[list[tuple[str, str]]]:
    """Yield the key/value pairs of each report line, quotes and spaces removed."""
    cleaned = text.replace("'", "").replace(" ", "")
    for line in cleaned.split("\n"):
        if not line:
            continue
        pairs = []
        for token in line.split(","):
            parts = token.split("=")
            pairs.append((parts[0], parts[1] if len(parts) > 1 else ""))
        yield pairs


def _fill(record: object, pairs: list[tuple[str, str]], fields: _Fields) -> None:
    for key, value in pairs:
        spec = fields.get(key)
        if spec is None:
            log.warning("undefined field %s=%s", key, value)
            continue
        attr, convert = spec
        setattr(record, attr, convert(value))


def parse_vgs(text: str) -> list[VgGroup]:
    """Parse ``vgs --nameprefixes`` output into volume groups with empty PV lists."""
    groups = []
    for pairs in _records(text):
        group = VgGroup()
        _fill(group, pairs, _VG_FIELDS)
        group.pvs = []
        groups.append(group)
    return groups


def parse_lvs(text: str) -> list[LvInfo]:
    """Parse ``lvs --nameprefixes`` output, keeping only volumes and thin pools."""
    volumes = []
    for pairs in _records(text):
        lv = LvInfo()
        _fill(lv, pairs, _LV_FIELDS)
        if lv.lv_name.startswith((VOLUME_PREFIX, THIN_PREFIX)):
            volumes.append(lv)
    return volumes


def parse_pvs(text: str) -> list[PVInfo]:
    """Parse ``pvs --nameprefixes`` output."""
    physical = []
    for pairs in _records(text):
        pv = PVInfo()
        _fill(pv, pairs, _PV_FIELDS)
        physical.append(pv)
    return physical