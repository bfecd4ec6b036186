import queue
import threading

from diskpool.manager import DeviceManager, DiskSelectorItem, Trigger, VolumeEvent


def _selectors():
    return [
        DiskSelectorItem(name="carina-vg-hdd", patterns=["loop"]),
        DiskSelectorItem(name="carina-vg-ssd", patterns=["nvme"], node_label="ssd"),
        DiskSelectorItem(name="carina-raw-hdd", patterns=["sd"], policy="RAW", node_label="raw"),
    ]


def test_selector_without_label_always_applies():
    dm = DeviceManager("node1", disk_selector=_selectors, node_labels=lambda: {})
    groups = dm.get_node_disk_select_group()
    assert list(groups) == ["carina-vg-hdd"]


def test_selector_with_label_applies_when_node_carries_label():
    dm = DeviceManager(
        "node1", disk_selector=_selectors, node_labels=lambda: {"ssd": "true"}
    )
    groups = dm.get_node_disk_select_group()
    assert set(groups) == {"carina-vg-hdd", "carina-vg-ssd"}
    assert groups["carina-vg-ssd"].patterns == ["nvme"]


def test_unknown_node_gives_no_groups():
    dm = DeviceManager("node1", disk_selector=_selectors, node_labels=lambda: None)
    assert dm.get_node_disk_select_group() == {}


def test_notice_reaches_every_registered_queue():
    dm = DeviceManager("node1")
    first, second = queue.Queue(), queue.Queue()
    dm.register_notice_queue(first)
    dm.register_notice_queue(second)
    done = threading.Event()
    dm.notice_update_capacity(Trigger.LVM_CHECK, done)
    for q in (first, second):
        event = q.get_nowait()
        assert isinstance(event, VolumeEvent)
        assert event.trigger is Trigger.LVM_CHECK
        assert event.done is done
        assert q.empty()


def test_full_queue_is_skipped_after_timeout():
    dm = DeviceManager("node1", notice_timeout=0.01)
    full = queue.Queue(maxsize=1)
    full.put("old")
    other = queue.Queue()
    dm.register_notice_queue(full)
    dm.register_notice_queue(other)
    dm.notice_update_capacity(Trigger.DUMMY)
    assert full.get_nowait() == "old"
    assert other.get_nowait().trigger is Trigger.DUMMY


def test_no_registered_queues_sends_nothing():
    dm = DeviceManager("node1")
    dm.notice_update_capacity(Trigger.CLEANUP_ORPHAN)
    q = queue.Queue()
    dm.register_notice_queue(q)
    assert q.empty()


def test_default_layers_share_one_executor():
    dm = DeviceManager("node1")
    assert dm.volume_manager.lv.executor is dm.partition.executor
    assert dm.volume_manager.bcache.executor is dm.partition.executor
    assert dm.node_name == "node1"


def test_trigger_values_are_the_wire_names():
    event = VolumeEvent(trigger=Trigger("configModify"))
    assert event.trigger is Trigger.CONFIG_MODIFY
    assert event.done is None