# matrix.py – device class x device x filesystem sweep
import re
import time
from typing import List

from fsbench.config import ALL_FILESYSTEMS, DEVICE_CLASSES, FILESYSTEMS
from fsbench.errors import ConfigurationError
from fsbench.lifecycle import COMPLETE_MARKER, LifecycleController, Run, write_marker
from fsbench.monitor import MonitoringController
from fsbench.utils import is_block_device, safe_filename
from fsbench.workloads import WorkloadAdapter


def log(msg):
    print(f"[Matrix] {msg}", flush=True)


class MatrixRunner:

    def __init__(self, registry, settings, controller=None, monitor=None, sleep=time.sleep):
        self.registry = registry
        self.settings = settings
        self.monitor = monitor or MonitoringController.for_settings(settings)
        self.controller = controller or LifecycleController(
            registry.system_device, settings, self.monitor, WorkloadAdapter(settings))
        self.sleep = sleep

    # ───────── design space ────────────────────────────────────────────
    def points(self):
        for device_class in DEVICE_CLASSES:
            devices = self.registry.list_devices(device_class)
            if not devices:
                log(f"No valid {device_class} devices found, skipping class")
                continue
            for dev in devices:
                if self.registry.is_system_device(dev.path):
                    log(f"Skipping system disk {dev.path}")
                    continue
                for fs in FILESYSTEMS:
                    yield dev.path, fs

    def completed(self, device, fs) -> bool:
        """A finished Run for this pair already sits under raw/."""
        label = safe_filename(self.registry.resolve_name(device))
        pattern = re.compile(rf"{re.escape(label)}_{fs}_\d{{8}}_\d{{6}}")
        raw = self.settings.raw_dir
        if not raw.is_dir():
            return False
        return any(pattern.fullmatch(d.name) and (d / COMPLETE_MARKER).is_file()
                   for d in raw.iterdir())

    # ───────── phases ──────────────────────────────────────────────────
    def run_idle_baseline(self):
        seconds = self.settings.idle_baseline_seconds
        log(f"Running idle state baseline for {seconds:g}s...")
        handle = self.monitor.start()
        try:
            self.sleep(seconds)
        finally:
            self.monitor.stop(handle)
        log("Idle state baseline complete.")

    def run_pair(self, device, fs) -> Run:
        run = Run.create(device, self.registry.resolve_name(device), fs, self.settings.raw_dir)
        try:
            return self.controller.execute(run)
        except Exception as e:
            log(f"ERROR: {device} with {fs} aborted: {e}")
            run.fail(f"{type(e).__name__}: {e}")
            write_marker(run)
            return run

    def run_all(self) -> List[Run]:
        pts = list(self.points())
        log(f"Total runs: {len(pts)}")
        pending = []
        for device, fs in pts:
            if self.settings.resume and self.completed(device, fs):
                log(f"skip {device} {fs}, already completed")
            else:
                pending.append((device, fs))
        if not pending:
            log("Nothing left to run.")
            return []
        if self.settings.monitoring and self.settings.idle_baseline_seconds > 0:
            self.run_idle_baseline()

        runs = []
        for done, (device, fs) in enumerate(pending, 1):
            log(f"Run {done}/{len(pending)} ({done / len(pending) * 100:.1f}%) -> {device} {fs}")
            runs.append(self.run_pair(device, fs))
        return runs

    def run_single(self, device, fs) -> Run:
        if fs not in ALL_FILESYSTEMS:
            raise ConfigurationError(
                f"filesystem {fs} is not supported (choose from {', '.join(ALL_FILESYSTEMS)})")
        if not is_block_device(device):
            raise ConfigurationError(f"{device} does not exist or is not a block device")
        return self.run_pair(device, fs)


def print_summary(runs):
    if not runs:
        print("No runs executed.")
        return
    print(f"\n{'device':<16} {'label':<14} {'fs':<8} {'state':<10} notes")
    for run in runs:
        notes = []
        failed = [name for name, s in run.suites.items() if not s.ok]
        if failed:
            notes.append("suites failed: " + ",".join(failed))
        if run.error:
            notes.append(run.error)
        print(f"{run.device:<16} {run.label:<14} {run.fs:<8} {run.state.value:<10} {'; '.join(notes)}")
    ok = sum(r.succeeded for r in runs)
    print(f"\n{ok}/{len(runs)} runs completed cleanly.")
