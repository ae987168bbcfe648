# devices.py

import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

import psutil
import yaml

from fsbench.config import DEVICE_CLASSES
from fsbench.errors import ConfigurationError
from fsbench.utils import is_block_device, same_device


def log(msg):
    print(f"[Devices] {msg}")


@dataclass(frozen=True)
class Device:
    path: str
    device_class: str
    label: str


class DeviceRegistry:
    """
    In-memory view of the device catalogue. Built once per process;
    only block-device presence is re-checked on each listing.
    """

    def __init__(self, devices: List[Device], system_device: str,
                 block_check: Callable[[str], bool] = is_block_device):
        self._devices = list(devices)
        self._by_path = {d.path: d for d in self._devices}
        self.system_device = system_device
        self._block_check = block_check

    def __len__(self):
        return len(self._devices)

    def __iter__(self):
        return iter(self._devices)

    def list_devices(self, device_class: str) -> List[Device]:
        found = []
        for dev in self._devices:
            if dev.device_class != device_class or self.is_system_device(dev.path):
                continue
            if not self._block_check(dev.path):
                log(f"WARNING: {dev.path} is not a block device, skipping")
                continue
            found.append(dev)
        return found

    def is_system_device(self, path: str) -> bool:
        return same_device(path, self.system_device)

    def resolve_name(self, path: str) -> str:
        dev = self._by_path.get(path)
        if dev and dev.label:
            return dev.label
        return Path(path).name


# ──────────────────────────────────────────────────────────────────────
def _parse_entry(path, entry) -> Optional[Device]:
    if not isinstance(path, str) or not path.startswith("/dev/"):
        log(f"WARNING: skipping entry with invalid path {path!r}")
        return None
    if not isinstance(entry, dict):
        log(f"WARNING: skipping {path}: entry must be a mapping")
        return None
    dev_class = entry.get("class")
    if dev_class not in DEVICE_CLASSES:
        log(f"WARNING: skipping {path}: unknown class {dev_class!r}")
        return None
    label = str(entry.get("label") or "").strip() or Path(path).name
    return Device(path=path, device_class=dev_class, label=label)


def registry_from_dict(data, block_check=is_block_device) -> DeviceRegistry:
    if not isinstance(data, dict):
        raise ConfigurationError("catalogue must be a mapping")
    system_device = data.get("system_device")
    if not system_device or not isinstance(system_device, str):
        raise ConfigurationError("catalogue does not name a system_device")
    entries = data.get("devices") or {}
    if not isinstance(entries, dict):
        raise ConfigurationError("'devices' must map device paths to entries")

    devices = []
    for path, entry in entries.items():
        dev = _parse_entry(path, entry)
        if dev is not None:
            devices.append(dev)
    return DeviceRegistry(devices, system_device, block_check=block_check)


def load_registry(catalogue, block_check=is_block_device) -> DeviceRegistry:
    catalogue = Path(catalogue)
    if not catalogue.is_file():
        raise ConfigurationError(f"device catalogue {catalogue} not found")
    try:
        with open(catalogue) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"cannot read {catalogue}: {e}") from e
    registry = registry_from_dict(data, block_check=block_check)
    log(f"Loaded {len(registry)} device(s), system device {registry.system_device}")
    return registry


# ──────────────────────────────────────────────────────────────────────
def classify(name: str, sys_block: str = "/sys/block") -> str:
    if name.startswith("nvme"):
        return "nvme"
    rotational = Path(sys_block) / name / "queue" / "rotational"
    try:
        return "hdd" if rotational.read_text().strip() == "1" else "ssd"
    except OSError:
        return "hdd"


def parent_disk(dev: str, sys_class: str = "/sys/class/block") -> Optional[str]:
    """Walks sysfs from `dev` down to the whole disk underneath it.

    Device-mapper and md nodes are followed through their first slave,
    partitions up to the disk that holds them. Returns None when sysfs
    does not know the node.
    """
    name = Path(os.path.realpath(dev)).name
    seen = set()
    while name not in seen:
        seen.add(name)
        node = Path(sys_class) / name
        slaves = node / "slaves"
        if slaves.is_dir() and any(slaves.iterdir()):
            name = sorted(p.name for p in slaves.iterdir())[0]
        elif (node / "partition").exists():
            name = Path(os.path.realpath(node / "..")).name
        elif node.exists():
            return f"/dev/{name}"
        else:
            return None
    return None


def guess_system_device(sys_class: str = "/sys/class/block") -> Optional[str]:
    """Whole-disk path backing the root mount."""
    for part in psutil.disk_partitions(all=False):
        if part.mountpoint == "/":
            return parent_disk(part.device, sys_class)
    return None


def list_block_disks() -> List[str]:
    """Parses `lsblk -d` and returns the disk names."""
    try:
        result = subprocess.run(["lsblk", "-d", "-n", "-o", "NAME,TYPE"],
                                capture_output=True, text=True, check=True)
    except (OSError, subprocess.CalledProcessError) as e:
        log(f"ERROR: running lsblk: {e}")
        return []

    disks = []
    for line in result.stdout.splitlines():
        match = re.match(r"^\s*(\S+)\s+disk\s*$", line)
        if match:
            disks.append(match.group(1))
    return disks


def detect_devices(system_device: Optional[str] = None,
                   disks: Optional[List[str]] = None,
                   sys_block: str = "/sys/block") -> Dict:
    """Catalogue document derived from the live block-device list."""
    system_device = system_device or guess_system_device()
    if not system_device:
        raise ConfigurationError("cannot determine the system disk, pass --system-device")
    if disks is None:
        disks = list_block_disks()

    entries = {}
    for name in disks:
        path = f"/dev/{name}"
        if same_device(path, system_device):
            continue
        dev_class = classify(name, sys_block)
        entries[path] = {"class": dev_class, "label": f"{dev_class}_{name}"}
    return {"system_device": system_device, "devices": entries}


def write_catalogue(data: Dict, path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        f.write("# Device catalogue: path -> class (hdd|ssd|nvme), label\n")
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
    return path
