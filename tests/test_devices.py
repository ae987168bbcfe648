from types import SimpleNamespace

import pytest

from fsbench import devices
from fsbench.devices import (
    classify, detect_devices, guess_system_device, load_registry, parent_disk,
    registry_from_dict, write_catalogue,
)
from fsbench.errors import ConfigurationError

CATALOGUE = """\
system_device: /dev/sdc
devices:
  /dev/nvme0n1: {class: nvme, label: nvme1}
  /dev/sda: {class: hdd, label: hdd1}
  /dev/sdb: {class: hdd}
  /dev/sdc: {class: ssd, label: boot}
  /dev/sdd: {class: ssd, label: ssd1}
"""


def always_block(path):
    return True


@pytest.fixture
def catalogue(tmp_path):
    path = tmp_path / "devices.yaml"
    path.write_text(CATALOGUE)
    return path


def test_list_devices_keeps_registry_order(catalogue):
    registry = load_registry(catalogue, block_check=always_block)
    assert [d.path for d in registry.list_devices("hdd")] == ["/dev/sda", "/dev/sdb"]
    assert [d.path for d in registry.list_devices("nvme")] == ["/dev/nvme0n1"]


def test_system_device_never_listed(catalogue):
    registry = load_registry(catalogue, block_check=always_block)
    assert registry.is_system_device("/dev/sdc")
    assert [d.path for d in registry.list_devices("ssd")] == ["/dev/sdd"]


def test_missing_block_device_is_excluded_not_fatal(catalogue):
    registry = load_registry(catalogue, block_check=lambda p: p != "/dev/sda")
    assert [d.path for d in registry.list_devices("hdd")] == ["/dev/sdb"]
    registry = load_registry(catalogue, block_check=lambda p: False)
    assert registry.list_devices("nvme") == []


def test_resolve_name(catalogue):
    registry = load_registry(catalogue, block_check=always_block)
    assert registry.resolve_name("/dev/sda") == "hdd1"
    assert registry.resolve_name("/dev/sdb") == "sdb"
    assert registry.resolve_name("/dev/sdx") == "sdx"


def test_missing_catalogue(tmp_path):
    with pytest.raises(ConfigurationError):
        load_registry(tmp_path / "nope.yaml")


def test_unreadable_yaml(tmp_path):
    path = tmp_path / "devices.yaml"
    path.write_text("devices: [unclosed\n")
    with pytest.raises(ConfigurationError):
        load_registry(path)


@pytest.mark.parametrize("data", [
    ["/dev/sda"],
    {"devices": {}},
    {"system_device": "/dev/sda", "devices": ["/dev/sdb"]},
])
def test_malformed_catalogue(data):
    with pytest.raises(ConfigurationError):
        registry_from_dict(data, block_check=always_block)


def test_bad_entry_is_skipped():
    registry = registry_from_dict({
        "system_device": "/dev/sdc",
        "devices": {
            "/dev/sda": {"class": "tape"},
            "sdb": {"class": "hdd"},
            "/dev/sdd": "ssd",
            "/dev/sde": {"class": "ssd", "label": "fast"},
        },
    }, block_check=always_block)
    assert [d.path for d in registry] == ["/dev/sde"]


def test_classify(tmp_path):
    for name, rotational in (("sda", "1"), ("sdb", "0")):
        queue = tmp_path / name / "queue"
        queue.mkdir(parents=True)
        (queue / "rotational").write_text(rotational + "\n")
    assert classify("sda", str(tmp_path)) == "hdd"
    assert classify("sdb", str(tmp_path)) == "ssd"
    assert classify("nvme0n1", str(tmp_path)) == "nvme"


def test_detect_devices_skips_system_disk(tmp_path):
    queue = tmp_path / "sdb" / "queue"
    queue.mkdir(parents=True)
    (queue / "rotational").write_text("0\n")

    data = detect_devices(system_device="/dev/sda", disks=["sda", "sdb", "nvme0n1"],
                          sys_block=str(tmp_path))
    assert data["system_device"] == "/dev/sda"
    assert data["devices"] == {
        "/dev/sdb": {"class": "ssd", "label": "ssd_sdb"},
        "/dev/nvme0n1": {"class": "nvme", "label": "nvme_nvme0n1"},
    }


def test_written_catalogue_loads_back(tmp_path):
    data = detect_devices(system_device="/dev/sda", disks=["nvme0n1"], sys_block=str(tmp_path))
    path = write_catalogue(data, tmp_path / "config" / "devices.yaml")
    registry = load_registry(path, block_check=always_block)
    assert registry.system_device == "/dev/sda"
    assert registry.resolve_name("/dev/nvme0n1") == "nvme_nvme0n1"


def test_system_device_named_through_symlink(tmp_path):
    disk = tmp_path / "sdc"
    disk.write_text("")
    by_id = tmp_path / "ata-BOOT_DISK"
    by_id.symlink_to(disk)

    registry = registry_from_dict({
        "system_device": str(by_id),
        "devices": {
            str(disk): {"class": "ssd", "label": "boot"},
            "/dev/sdd": {"class": "ssd", "label": "ssd1"},
        },
    }, block_check=always_block)
    assert registry.is_system_device(str(disk))
    assert [d.path for d in registry.list_devices("ssd")] == ["/dev/sdd"]


@pytest.fixture
def lvm_sysfs(tmp_path):
    """/ on /dev/mapper/vg-root -> dm-0, a linear volume on sda2."""
    sysfs = tmp_path / "sys"
    (sysfs / "devices" / "sda" / "sda2").mkdir(parents=True)
    (sysfs / "devices" / "sda" / "sda2" / "partition").write_text("2\n")
    (sysfs / "devices" / "dm-0" / "slaves" / "sda2").mkdir(parents=True)
    classdir = sysfs / "class"
    classdir.mkdir()
    for name, target in (("sda", "sda"), ("sda2", "sda/sda2"), ("dm-0", "dm-0")):
        (classdir / name).symlink_to(sysfs / "devices" / target)

    dev = tmp_path / "dev"
    (dev / "mapper").mkdir(parents=True)
    (dev / "dm-0").write_text("")
    (dev / "mapper" / "vg-root").symlink_to(dev / "dm-0")
    return classdir, dev


def test_parent_disk_walks_lvm_and_partitions(lvm_sysfs):
    classdir, dev = lvm_sysfs
    assert parent_disk(str(dev / "mapper" / "vg-root"), str(classdir)) == "/dev/sda"
    assert parent_disk("/dev/sda2", str(classdir)) == "/dev/sda"
    assert parent_disk("/dev/sda", str(classdir)) == "/dev/sda"


def test_parent_disk_unknown_node(lvm_sysfs):
    classdir, _ = lvm_sysfs
    assert parent_disk("/dev/vda1", str(classdir)) is None


def test_guess_system_device_from_root_mount(lvm_sysfs, monkeypatch):
    classdir, dev = lvm_sysfs
    parts = [SimpleNamespace(device="tmpfs", mountpoint="/run"),
             SimpleNamespace(device=str(dev / "mapper" / "vg-root"), mountpoint="/")]
    monkeypatch.setattr(devices.psutil, "disk_partitions", lambda all=False: parts)
    assert guess_system_device(str(classdir)) == "/dev/sda"


def test_detect_devices_refuses_without_system_disk(monkeypatch):
    monkeypatch.setattr(devices, "guess_system_device", lambda: None)
    with pytest.raises(ConfigurationError):
        detect_devices(disks=["sda", "sdb"])
