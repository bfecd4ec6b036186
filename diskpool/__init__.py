"""Local disk, LVM and bcache management for node-level storage pools."""

__version__ = "0.1.0"

__all__ = [
    "bcache",
    "commands",
    "devicecheck",
    "lvm",
    "lvmparse",
    "manager",
    "partition",
    "readiness",
    "types",
    "volume",
]