# diskpool

Node-level management of local block storage on Linux. The package finds
eligible disks, gathers them into LVM volume groups, creates, resizes and
removes logical volumes, and sets up bcache devices. It does this by running
the standard system tools (`lsblk`, `pvs`, `vgs`, `lvs`, `lvcreate`,
`vgreduce`, `make-bcache`, `bcache-super-show`, ...) and parsing their
output into plain Python dataclasses.

## Installation

```
pip install .
```

Tests:

```
pip install ".[test]"
pytest
```

Working on real devices needs root privileges and the LVM2 and bcache tools
on the host. Parsing captured tool output needs neither.

## Modules

- `diskpool.types`: dataclasses for parsed tool output (`LocalDisk`,
  `PVInfo`, `VgGroup`, `LvInfo`, `BcacheDeviceInfo`) and
  `ResourceExhaustedError`, raised when a group has no room for a request.
- `diskpool.commands`: `CommandExecutor` runs external commands. It offers
  `execute_command`, `execute_command_with_output`,
  `execute_command_with_combined_output` and
  `execute_command_resident_binary`, and raises `CommandError` (carrying
  `argv`, `returncode` and `output`) when a command cannot start or exits
  with an error.
- `diskpool.lvmparse`: `parse_pvs`, `parse_vgs` and `parse_lvs` turn
  `--nameprefixes` reports into `PVInfo`, `VgGroup` and `LvInfo` lists.
  `parse_lvs` keeps only volumes whose names start with `volume-` or `thin-`.
- `diskpool.bcache`: `parse_bcache` reads `bcache-super-show -f` output,
  and `parse_device` reads `lsblk --pairs --output KNAME,MAJ:MIN` output.
  `Bcache` creates, registers, inspects and removes bcache devices and sets
  their cache mode through sysfs.
- `diskpool.lvm`: `Lvm2` has one method per LVM operation. These cover
  physical volumes (`pv_create`, `pvs`, `pv_display`, `pv_resize`, ...),
  volume groups (`vg_create`, `vgs`, `vg_extend`, `vg_reduce`, ...),
  logical volumes and thin pools (`lv_create_from_vg`, `lv_resize`, `lvs`,
  `create_thin_pool`, ...) and snapshots (`create_snapshot`,
  `restore_snapshot`, ...). The `*_display` lookups raise `LookupError`
  when nothing matches. `start_lvm2` starts `lvmpolld` unless its socket
  already exists.
- `diskpool.partition`: `LocalPartition` lists block devices with `lsblk`.
  `list_devices_detail` keeps only writable, unformatted, unmounted devices
  of at least 10 GiB. It also reports filesystem usage (`get_disk_used`),
  finds a device by `major:minor` (`get_device`), keeps a partition-number
  cache, and runs `udevadm settle` and `partprobe`. The helper functions
  `parse_disk_string`, `filter_disks` and `parse_udev_info` are exposed as
  well.
- `diskpool.volume`: `LocalVolume` applies business rules on top of `Lvm2`
  and `Bcache`:
  - it keeps 10 GiB free in each volume group, with a 1 GiB tolerance;
  - it adds disks to volume groups, creating the group when it does not
    exist;
  - it removes disks from volume groups, removing the group when the disk
    was its last one;
  - it manages the volume lifecycle, with volume names prefixed `volume-`.

  `GlobalLocks` provides the named non-blocking locks. An operation that
  finds its lock taken raises `VolumeError`.
- `diskpool.manager`: `DeviceManager` wires the layers together for one
  node.
  - Its `get_node_disk_select_group` resolves which `DiskSelectorItem`
    groups apply to the node. The disk selector and the node labels are
    supplied as callables.
  - Its `notice_update_capacity` sends `VolumeEvent`s (with a `Trigger`) to
    every queue registered with `register_notice_queue`.
- `diskpool.devicecheck`: `DeviceCheck.start(stop_event)` scans once and
  then keeps scanning at a configurable interval (default 300 seconds) or
  whenever `notify_config_change()` is called.
  - Each scan adds empty matching disks and orphan physical volumes to their
    groups.
  - It drops disks that no longer match their group's patterns.
  - It sends a capacity notice when the volume groups changed.
- `diskpool.readiness`: `ReadinessCheck` runs a check function every
  `interval` seconds until a stop event is set. The check signals failure
  by raising. `ready()` returns `(ready, last_error)`, and the check stays
  ready once it has passed.

## Examples

Listing volume groups:

```python
from diskpool.commands import CommandExecutor
from diskpool.lvm import Lvm2

lvm = Lvm2(CommandExecutor())
for vg in lvm.vgs():
    print(vg.vg_name, vg.vg_size, vg.vg_free)
```

Parsing captured output:

```python
from diskpool.lvmparse import parse_pvs

pvs = parse_pvs(
    "LVM2_PV_NAME='/dev/loop2',LVM2_VG_NAME='lvmvg',LVM2_PV_FMT='lvm2',"
    "LVM2_PV_ATTR='a--',LVM2_PV_SIZE='16101933056',LVM2_PV_FREE='16101933056'"
)
print(pvs[0].pv_name, pvs[0].vg_name)
```

Running the disk scanner in a thread:

```python
import threading

from diskpool.devicecheck import DeviceCheck
from diskpool.manager import DeviceManager, DiskSelectorItem

groups = [DiskSelectorItem(name="carina-vg-hdd", patterns=["loop[0-9]+"])]
dm = DeviceManager("node-1", disk_selector=lambda: groups)
stop = threading.Event()
checker = DeviceCheck(dm, disk_scan_interval=lambda: 60)
threading.Thread(target=checker.start, args=(stop,), daemon=True).start()
```

## What this package does not do

- There is no command-line program and no service wrapper. Callers start
  `DeviceCheck` and `ReadinessCheck` in their own threads and stop them
  with a `threading.Event`.
- It does not talk to any cluster or orchestration API. The node labels and
  the disk selector configuration come from callables that you pass to
  `DeviceManager`.
- It does not publish metrics and does not serve requests over the network.
- It does not create, resize or delete partitions on raw disks.
  `LocalPartition` lists devices and keeps a partition-number cache only.