# config.py
from dataclasses import dataclass
from pathlib import Path

# ---------------------------------------------------------------------------
# Storage target(s)
# ---------------------------------------------------------------------------
CATALOGUE_FILE = "./config/devices.yaml"   # device path -> class, label
DEVICE_CLASSES = ["hdd", "ssd", "nvme"]    # matrix order
MOUNT_POINT = "/mnt/testdisk"              # single shared lease

# ---------------------------------------------------------------------------
# Filesystems, in matrix order. "overlay" is the control kind and only runs
# when targeted explicitly.
# ---------------------------------------------------------------------------
FILESYSTEMS = ["ext4", "xfs", "btrfs", "zfs"]
CONTROL_FILESYSTEM = "overlay"
ALL_FILESYSTEMS = FILESYSTEMS + [CONTROL_FILESYSTEM]

ZFS_POOL_PREFIX = "zfspool_"
OVERLAY_ROOT = "/var/tmp/fsbench-overlay"

# ---------------------------------------------------------------------------
# Workloads
# ---------------------------------------------------------------------------
FIO_VARIANTS = [
    {"name": "seqread",   "rw": "read",      "bs": "1m"},
    {"name": "seqwrite",  "rw": "write",     "bs": "1m"},
    {"name": "randread",  "rw": "randread",  "bs": "4k"},
    {"name": "randwrite", "rw": "randwrite", "bs": "4k"},
]
FIO_SIZE = "1G"
FIO_NUMJOBS = 4
USE_DIRECT = True

PULL_IMAGE = "alpine:latest"
BUILD_TAG = "benchmark_test"
START_STOP_ITERATIONS = 10        # 5 in constrained mode
ML_IMAGE = "tensorflow/tensorflow:latest"

# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------
COMPOSE_DIR = "./docker"
EXPORTER_IMAGE = "prom/node-exporter:latest"
EXPORTER_NAME = "fs-benchmark-node-exporter"
EXPORTER_LISTEN = "127.0.0.1:9100"
STACK_CONTAINERS = ["node-exporter", "prometheus", "grafana"]
CPU_SAMPLE_INTERVAL = 1.0

# ---------------------------------------------------------------------------
# Run-time knobs
# ---------------------------------------------------------------------------
IDLE_BASELINE_SECONDS = 900
DEBUG_BASELINE_SECONDS = 5
ENABLE_RESUME = True
SAVE_EXCEL = False
RESULT_DIR = "./results"


@dataclass
class RunSettings:
    """Everything a matrix invocation needs, built once in main."""

    debug: bool = False
    constrained: bool = False
    monitoring: bool = True
    ml_suite: bool = True
    resume: bool = ENABLE_RESUME
    mount_point: str = MOUNT_POINT
    results_dir: str = RESULT_DIR
    compose_dir: str = COMPOSE_DIR
    idle_baseline_seconds: float = IDLE_BASELINE_SECONDS
    start_stop_iterations: int = START_STOP_ITERATIONS

    def __post_init__(self) -> None:
        if self.debug and self.idle_baseline_seconds == IDLE_BASELINE_SECONDS:
            self.idle_baseline_seconds = DEBUG_BASELINE_SECONDS
        if self.constrained and self.start_stop_iterations == START_STOP_ITERATIONS:
            self.start_stop_iterations = 5

    @classmethod
    def direct(cls, **overrides) -> "RunSettings":
        """Constrained profile: no monitoring stack, no ML suite."""
        values = {"constrained": True, "monitoring": False, "ml_suite": False}
        values.update(overrides)
        return cls(**values)

    @property
    def raw_dir(self) -> Path:
        return Path(self.results_dir) / "raw"

    @property
    def processed_dir(self) -> Path:
        return Path(self.results_dir) / "processed"
