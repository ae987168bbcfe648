# workloads.py
import csv
import shutil
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from fsbench.config import (
    BUILD_TAG, FIO_NUMJOBS, FIO_SIZE, FIO_VARIANTS, ML_IMAGE, PULL_IMAGE,
    USE_DIRECT,
)
from fsbench.errors import WorkloadSuiteFailure
from fsbench.monitor import run_with_cpu_monitoring
from fsbench.utils import format_duration, shell

# Artifact names, one per (family, variant). The result parser keys on these.
FIO_ARTIFACT = "fio_{name}.txt"
BONNIE_ARTIFACT = "bonnie.txt"
IO_CPU_ARTIFACT = "io_cpu_usage.csv"
PULL_ARTIFACT = "docker_pull_time.txt"
BUILD_ARTIFACT = "docker_build_time.txt"
START_STOP_ARTIFACT = "docker_start_stop_time.txt"
ML_ARTIFACT = "ml_benchmark.txt"
FS_INFO_ARTIFACT = "filesystem_info.txt"

BUILD_DOCKERFILE = """\
FROM alpine:latest
RUN apk add --no-cache python3 py3-pip
WORKDIR /app
CMD ["echo", "Hello, World!"]
"""

# Runs inside the ML framework image. Model files land in TARGET_DIR.
ML_SCRIPT = """\
import os, time
import numpy as np
import tensorflow as tf

target_dir = os.environ.get('TARGET_DIR', '/data')
output_dir = os.environ.get('OUTPUT_DIR', '/data/results')

model = tf.keras.Sequential([
    tf.keras.layers.Dense(128, activation='relu', input_shape=(784,)),
    tf.keras.layers.Dense(64, activation='relu'),
    tf.keras.layers.Dense(10, activation='softmax'),
])
model.compile(optimizer='adam', loss='sparse_categorical_crossentropy', metrics=['accuracy'])
x = np.random.random((1000, 784))
y = np.random.randint(10, size=(1000,))
model.fit(x, y, epochs=1, verbose=0)

path = os.path.join(target_dir, 'model.h5')
t0 = time.time()
model.save(path)
save_time = time.time() - t0

t0 = time.time()
loaded = tf.keras.models.load_model(path)
load_time = time.time() - t0
loaded.predict(x[:1], verbose=0)

with open(os.path.join(output_dir, 'ml_benchmark.txt'), 'w') as f:
    f.write(f'Model save time: {save_time:.2f} seconds\\n')
    f.write(f'Model load time: {load_time:.2f} seconds\\n')
    f.write(f'Model size: {os.path.getsize(path) / (1024*1024):.2f} MB\\n')
"""


def log(msg):
    print(f"[Workload] {msg}")


@dataclass
class SuiteResult:
    family: str
    ok: bool = True
    skipped: bool = False
    artifacts: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def fail(self, msg):
        log(f"ERROR: {self.family}: {msg}")
        self.ok = False
        self.errors.append(msg)


# ──────────────────────────────────────────────────────────────────────
def build_fio_command(variant, target_dir, out_dir):
    """Return (cmd:list, output_file:Path)"""
    output_file = Path(out_dir) / FIO_ARTIFACT.format(name=variant["name"])
    cmd = [
        "fio",
        f"--directory={target_dir}",
        f"--name={variant['name']}",
        f"--rw={variant['rw']}",
        f"--bs={variant['bs']}",
        f"--direct={int(USE_DIRECT)}",
        f"--size={FIO_SIZE}",
        f"--numjobs={FIO_NUMJOBS}",
        "--group_reporting",
        f"--output={output_file}",
    ]
    return cmd, output_file


def _check(res, what):
    if res.returncode != 0:
        tail = (res.stdout or "").strip()[-200:]
        raise WorkloadSuiteFailure(f"{what} exited {res.returncode}: {tail}")


def timed(cmd):
    """Run cmd, return (ok, text) where text ends with a `real` line on success."""
    start = time.perf_counter()
    res = shell(cmd, check=False, capture=True)
    elapsed = time.perf_counter() - start
    text = res.stdout or ""
    if res.returncode == 0:
        text += f"\nreal\t{format_duration(elapsed)}\n"
    else:
        text += f"\nexit status {res.returncode}\n"
    return res.returncode == 0, text


class WorkloadAdapter:
    """Invokes the three workload suites and leaves raw artifacts in out_dir."""

    def __init__(self, settings):
        self.settings = settings

    def record_filesystem_info(self, mount_path, out_dir):
        res = shell(["df", "-h", mount_path], check=False, capture=True)
        (Path(out_dir) / FS_INFO_ARTIFACT).write_text(res.stdout or "")
        if res.returncode != 0:
            log(f"WARNING: could not record filesystem info for {mount_path}")

    # ── I/O ─────────────────────────────────────────────────────────────
    def run_io_suite(self, mount_path, out_dir) -> SuiteResult:
        result = SuiteResult("io")
        out_dir = Path(out_dir)
        cpu_rows = []

        for variant in FIO_VARIANTS:
            cmd, output_file = build_fio_command(variant, mount_path, out_dir)
            log(f"fio {variant['name']} on {mount_path}")
            try:
                rc, output, avg_cpu, total_cpu = run_with_cpu_monitoring(cmd)
            except (OSError, subprocess.SubprocessError) as e:
                result.fail(f"fio {variant['name']}: {e}")
                continue
            if rc != 0:
                result.fail(f"fio {variant['name']} exited {rc}: {output.strip()[-200:]}")
            if output_file.exists():
                result.artifacts.append(output_file.name)
            cpu_rows.append([variant["name"], avg_cpu, total_cpu])

        if cpu_rows:
            with open(out_dir / IO_CPU_ARTIFACT, "w", newline="") as f:
                writer = csv.writer(f)
                writer.writerow(["variant", "cpu_avg", "cpu_total"])
                writer.writerows(cpu_rows)

        log("bonnie++ file operation tests")
        try:
            res = shell(["bonnie++", "-d", mount_path, "-u", "root", "-n", "0",
                         "-r", "1024", "-s", "1024", "-f", "-b", "-D"],
                        check=False, capture=True)
            (out_dir / BONNIE_ARTIFACT).write_text(res.stdout or "")
            result.artifacts.append(BONNIE_ARTIFACT)
            _check(res, "bonnie++")
        except (WorkloadSuiteFailure, OSError, subprocess.SubprocessError) as e:
            result.fail(str(e))
        return result

    # ── container ops ───────────────────────────────────────────────────
    def run_container_ops_suite(self, out_dir, build_root=None) -> SuiteResult:
        result = SuiteResult("container")
        out_dir = Path(out_dir)

        try:
            log(f"Measuring image pull time ({PULL_IMAGE})")
            shell(["docker", "rmi", PULL_IMAGE], check=False, capture=True)
            ok, text = timed(["docker", "pull", PULL_IMAGE])
            (out_dir / PULL_ARTIFACT).write_text(text)
            result.artifacts.append(PULL_ARTIFACT)
            if not ok:
                result.fail("image pull failed")
        except (OSError, subprocess.SubprocessError) as e:
            result.fail(f"pull: {e}")

        scratch = None
        try:
            if build_root is None:
                build_root = scratch = tempfile.mkdtemp(prefix="fsbench-build-")
            context = Path(build_root) / "docker_build_test"
            context.mkdir(parents=True, exist_ok=True)
            (context / "Dockerfile").write_text(BUILD_DOCKERFILE)
            log("Measuring image build time")
            ok, text = timed(["docker", "build", "-t", BUILD_TAG, str(context)])
            (out_dir / BUILD_ARTIFACT).write_text(text)
            result.artifacts.append(BUILD_ARTIFACT)
            if not ok:
                result.fail("image build failed")
        except (OSError, subprocess.SubprocessError) as e:
            result.fail(f"build: {e}")
        finally:
            if scratch:
                shutil.rmtree(scratch, ignore_errors=True)

        iterations = self.settings.start_stop_iterations
        log(f"Measuring container start/stop time ({iterations} iterations)")
        failures = 0
        try:
            with open(out_dir / START_STOP_ARTIFACT, "w") as f:
                for i in range(1, iterations + 1):
                    ok, text = timed(["docker", "run", "--rm", PULL_IMAGE, "echo", f"Test {i}"])
                    f.write(text)
                    failures += not ok
            result.artifacts.append(START_STOP_ARTIFACT)
            if failures:
                result.fail(f"{failures}/{iterations} start/stop iterations failed")
        except (OSError, subprocess.SubprocessError) as e:
            result.fail(f"start/stop: {e}")
        return result

    # ── ML checkpoint ───────────────────────────────────────────────────
    def run_ml_checkpoint_suite(self, mount_path, out_dir) -> SuiteResult:
        result = SuiteResult("ml")
        if not self.settings.ml_suite:
            log("ML checkpoint suite disabled, skipping")
            result.skipped = True
            return result

        out_dir = Path(out_dir).resolve()
        cmd = [
            "docker", "run", "--rm",
            "-v", f"{mount_path}:/data",
            "-v", f"{out_dir}:/data/results",
            "-e", "TARGET_DIR=/data",
            "-e", "OUTPUT_DIR=/data/results",
            "--name", "benchmark_ml",
            ML_IMAGE, "python", "-c", ML_SCRIPT,
        ]
        log("Running ML checkpoint save/load")
        try:
            res = shell(cmd, check=False, capture=True)
            if (out_dir / ML_ARTIFACT).exists():
                result.artifacts.append(ML_ARTIFACT)
            _check(res, "ML container")
            if not result.artifacts:
                raise WorkloadSuiteFailure(f"{ML_ARTIFACT} was not written")
        except (WorkloadSuiteFailure, OSError, subprocess.SubprocessError) as e:
            result.fail(str(e))
        return result
