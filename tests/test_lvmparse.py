import logging

from diskpool.lvmparse import THIN_PREFIX, VOLUME_PREFIX, parse_lvs, parse_pvs, parse_vgs
from diskpool.types import LvInfo, PVInfo, VgGroup

VGS_OUTPUT = (
    "  LVM2_VG_NAME='lvmvg',LVM2_PV_COUNT='1',LVM2_LV_COUNT='0',LVM2_VG_ATTR='wz--n-',"
    "LVM2_VG_SIZE='16101933056',LVM2_VG_FREE='16101933056'\n"
    "  LVM2_VG_NAME='v1',LVM2_PV_COUNT='2',LVM2_LV_COUNT='0',LVM2_VG_ATTR='wz--n-',"
    "LVM2_VG_SIZE='32203866112',LVM2_VG_FREE='32203866112'"
)

PVS_OUTPUT = (
    "  LVM2_PV_NAME='/dev/loop2',LVM2_VG_NAME='lvmvg',LVM2_PV_FMT='lvm2',"
    "LVM2_PV_ATTR='a--',LVM2_PV_SIZE='16101933056',LVM2_PV_FREE='16101933056'"
)

LVS_OUTPUT = (
    "  LVM2_LV_NAME='volume-v1',LVM2_VG_NAME='v1',LVM2_LV_PATH='/dev/v1/volume-v1',"
    "LVM2_LV_SIZE='2147483648',LVM2_DATA_PERCENT='',LVM2_LV_ATTR='-wi-a-----',"
    "LVM2_LV_KERNEL_MAJOR='252',LVM2_LV_KERNEL_MINOR='5',LVM2_ORIGIN='',"
    "LVM2_ORIGIN_SIZE='',LVM2_POOL_LV='thin-v1',LVM2_THIN_COUNT='',LVM2_LV_TAGS='',"
    "LVM2_LV_ACTIVE='active'\n"
    "  LVM2_LV_NAME='thin-v1',LVM2_VG_NAME='v1',LVM2_LV_PATH='',"
    "LVM2_LV_SIZE='6979321856',LVM2_DATA_PERCENT='12.50',LVM2_LV_ATTR='twi-aotz--',"
    "LVM2_LV_KERNEL_MAJOR='252',LVM2_LV_KERNEL_MINOR='3',LVM2_ORIGIN='',"
    "LVM2_ORIGIN_SIZE='',LVM2_POOL_LV='',LVM2_THIN_COUNT='1',LVM2_LV_TAGS='',"
    "LVM2_LV_ACTIVE='active'\n"
    "  LVM2_LV_NAME='m2',LVM2_VG_NAME='v1',LVM2_LV_PATH='/dev/v1/m2',"
    "LVM2_LV_SIZE='2147483648',LVM2_LV_KERNEL_MAJOR='252',LVM2_LV_KERNEL_MINOR='6'"
)


def test_parse_vgs_sample():
    groups = parse_vgs(VGS_OUTPUT)
    assert [g.vg_name for g in groups] == ["lvmvg", "v1"]
    assert [g.pv_count for g in groups] == [1, 2]
    assert groups[0].vg_size == 16101933056
    assert groups[1].vg_free == 32203866112
    assert all(g.vg_attr == "wz--n-" for g in groups)
    assert all(g.pvs == [] and g.lv_count == 0 for g in groups)


def test_parse_empty_reports():
    assert parse_vgs("") == []
    assert parse_pvs("") == []
    assert parse_lvs("") == []


def test_parse_vgs_warns_on_unknown_field(caplog):
    line = "LVM2_VG_NAME='lvmvg',LVM2_SNAP_COUNT='0',LVM2_VG_SIZE='16101933056'"
    with caplog.at_level(logging.WARNING):
        groups = parse_vgs(line)
    assert groups == [VgGroup(vg_name="lvmvg", vg_size=16101933056)]
    assert "LVM2_SNAP_COUNT" in caplog.text


def test_parse_vgs_bad_numbers_become_zero():
    groups = parse_vgs("LVM2_VG_NAME='v1',LVM2_VG_SIZE='lots',LVM2_PV_COUNT=''")
    assert groups[0].vg_size == 0
    assert groups[0].pv_count == 0


def test_parse_pvs_sample():
    assert parse_pvs(PVS_OUTPUT) == [
        PVInfo(
            pv_name="/dev/loop2",
            vg_name="lvmvg",
            pv_fmt="lvm2",
            pv_attr="a--",
            pv_size=16101933056,
            pv_free=16101933056,
        )
    ]


def test_parse_pvs_round_trip():
    original = PVInfo("/dev/sdb", "carina-vg-hdd", "lvm2", "a--", 214748364800, 107374182400)
    line = (
        f"LVM2_PV_NAME='{original.pv_name}',LVM2_VG_NAME='{original.vg_name}',"
        f"LVM2_PV_FMT='{original.pv_fmt}',LVM2_PV_ATTR='{original.pv_attr}',"
        f"LVM2_PV_SIZE='{original.pv_size}',LVM2_PV_FREE='{original.pv_free}'"
    )
    assert parse_pvs(line + "\n" + line) == [original, original]


def test_parse_lvs_keeps_only_prefixed_volumes():
    volumes = parse_lvs(LVS_OUTPUT)
    assert [v.lv_name for v in volumes] == ["volume-v1", "thin-v1"]
    assert all(v.lv_name.startswith((VOLUME_PREFIX, THIN_PREFIX)) for v in volumes)


def test_parse_lvs_fields():
    volume, pool = parse_lvs(LVS_OUTPUT)
    assert volume == LvInfo(
        lv_name="volume-v1",
        vg_name="v1",
        lv_path="/dev/v1/volume-v1",
        lv_size=2147483648,
        lv_kernel_major=252,
        lv_kernel_minor=5,
        pool_lv="thin-v1",
        lv_attr="-wi-a-----",
        lv_active="active",
    )
    assert pool.data_percent == 12.5
    assert pool.thin_count == 1
    assert pool.lv_size == 6979321856
    assert pool.lv_path == ""


def test_parse_lvs_clamps_kernel_numbers_to_uint32():
    volumes = parse_lvs("LVM2_LV_NAME='volume-x',LVM2_LV_KERNEL_MAJOR='99999999999'")
    assert volumes[0].lv_kernel_major == 0xFFFFFFFF