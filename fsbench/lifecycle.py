# lifecycle.py
"""
One Run = one (device, filesystem) trial, driven through

    pending -> formatted -> mounted -> monitoring -> executing -> collected
            -> unmounted -> destroyed

with `failed` reachable from any step. Teardown (monitor stop, unmount,
destroy) runs after every step that could have left state behind, so the
shared mount point is free again when execute() returns. The only
exception is a refusal to touch the system device: nothing was changed,
so nothing is torn down.
"""
import json
import os
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from fsbench.errors import FsBenchError, MountError, SystemDiskProtectedError, TeardownFailure
from fsbench.prepare_fs import get_driver
from fsbench.utils import current_timestamp, is_mounted, log_message, safe_filename
from fsbench.workloads import SuiteResult

COMPLETE_MARKER = "run_complete.json"


class RunState(Enum):
    PENDING = "pending"
    FORMATTED = "formatted"
    MOUNTED = "mounted"
    MONITORING = "monitoring"
    EXECUTING = "executing"
    COLLECTED = "collected"
    UNMOUNTED = "unmounted"
    DESTROYED = "destroyed"
    FAILED = "failed"


@dataclass
class Run:
    device: str
    label: str
    fs: str
    timestamp: str
    result_dir: Path
    state: RunState = RunState.PENDING
    history: List[RunState] = field(default_factory=lambda: [RunState.PENDING])
    mount_token: Optional[str] = None
    monitoring: Optional[str] = None
    failed_at: Optional[RunState] = None
    error: Optional[str] = None
    suites: Dict[str, SuiteResult] = field(default_factory=dict)
    teardown_errors: List[str] = field(default_factory=list)

    @classmethod
    def create(cls, device, label, fs, raw_dir, timestamp=None):
        timestamp = timestamp or current_timestamp()
        result_dir = Path(raw_dir) / f"{safe_filename(label)}_{fs}_{timestamp}"
        result_dir.mkdir(parents=True, exist_ok=True)
        return cls(device, label, fs, timestamp, result_dir)

    @property
    def log_file(self):
        return self.result_dir / "log.txt"

    @property
    def succeeded(self):
        return self.state is RunState.DESTROYED

    def advance(self, state):
        self.history.append(state)
        if self.state is not RunState.FAILED:
            self.state = state

    def fail(self, error):
        if self.state is not RunState.FAILED:
            self.failed_at = self.state
            self.state = RunState.FAILED
            self.history.append(RunState.FAILED)
        self.error = error if self.error is None else f"{self.error}; {error}"

    def to_dict(self):
        return {
            "device": self.device,
            "label": self.label,
            "filesystem": self.fs,
            "timestamp": self.timestamp,
            "state": self.state.value,
            "failed_at": self.failed_at.value if self.failed_at else None,
            "error": self.error,
            "history": [s.value for s in self.history],
            "monitoring": self.monitoring,
            "suites": {
                name: {"ok": s.ok, "skipped": s.skipped,
                       "artifacts": s.artifacts, "errors": s.errors}
                for name, s in self.suites.items()
            },
            "teardown_errors": self.teardown_errors,
        }


class LifecycleController:

    def __init__(self, system_device, settings, monitor, workloads, driver_factory=get_driver):
        self.system_device = system_device
        self.settings = settings
        self.monitor = monitor
        self.workloads = workloads
        self.driver_factory = driver_factory

    def execute(self, run: Run) -> Run:
        def note(msg):
            log_message(run.log_file, f"[Run] {msg}")

        mount_point = self.settings.mount_point
        driver = self.driver_factory(run.fs, self.system_device)
        handle = None
        touched = False
        note(f"=== {run.device} ({run.label}) with {run.fs} ===")

        try:
            self._free_mount_point(driver, mount_point)
            touched = True
            result = driver.format(run.device)
            run.mount_token = result.mount_token
            run.advance(RunState.FORMATTED)

            driver.mount(run.mount_token, mount_point)
            self._verify_mount(mount_point)
            run.advance(RunState.MOUNTED)

            handle = self.monitor.start()
            run.monitoring = handle.strategy
            run.advance(RunState.MONITORING)

            run.advance(RunState.EXECUTING)
            self._execute_workloads(run, mount_point)
            run.advance(RunState.COLLECTED)

        except SystemDiskProtectedError as e:
            touched = False
            run.fail(str(e))
            note(f"ERROR: {e}")
        except (FsBenchError, OSError, subprocess.SubprocessError) as e:
            run.fail(f"{type(e).__name__}: {e}")
            note(f"ERROR: {run.fs} on {run.device} failed while {run.failed_at.value}: {e}")
        finally:
            if touched:
                self._teardown(run, driver, handle, mount_point, note)
            write_marker(run)

        note(f"=== {run.device} with {run.fs}: {run.state.value} ===")
        return run

    # ──────────────────────────────────────────────────────────────────
    def _free_mount_point(self, driver, mount_point):
        if not is_mounted(mount_point):
            return
        try:
            driver.unmount(mount_point)
        except TeardownFailure as e:
            raise MountError(f"mount point {mount_point} is occupied: {e}") from e

    @staticmethod
    def _verify_mount(mount_point):
        path = Path(mount_point)
        if not path.is_dir() or not os.access(path, os.W_OK):
            raise MountError(f"mount point {mount_point} is not accessible")
        if not is_mounted(mount_point):
            raise MountError(f"nothing is mounted at {mount_point}")

    def _execute_workloads(self, run, mount_point):
        adapter, out_dir = self.workloads, run.result_dir
        try:
            adapter.record_filesystem_info(mount_point, out_dir)
        except (OSError, subprocess.SubprocessError) as e:
            log_message(run.log_file, f"[Run] WARNING: filesystem info: {e}")

        suites = [
            ("io", lambda: adapter.run_io_suite(mount_point, out_dir)),
            ("container", lambda: adapter.run_container_ops_suite(out_dir, build_root=mount_point)),
            ("ml", lambda: adapter.run_ml_checkpoint_suite(mount_point, out_dir)),
        ]
        for family, call in suites:
            try:
                result = call()
            except (FsBenchError, OSError, subprocess.SubprocessError) as e:
                result = SuiteResult(family, ok=False, errors=[str(e)])
            run.suites[family] = result
            status = "skipped" if result.skipped else ("ok" if result.ok else "FAILED")
            log_message(run.log_file, f"[Run] {family} suite: {status}")

    def _teardown(self, run, driver, handle, mount_point, note):
        if handle is not None:
            self.monitor.stop(handle)

        try:
            driver.unmount(mount_point)
            run.advance(RunState.UNMOUNTED)
        except (TeardownFailure, OSError, subprocess.SubprocessError) as e:
            run.teardown_errors.append(f"unmount: {e}")

        token = run.mount_token or driver.default_token(run.device)
        try:
            driver.destroy(token, run.device)
            run.advance(RunState.DESTROYED)
        except (FsBenchError, OSError, subprocess.SubprocessError) as e:
            run.teardown_errors.append(f"destroy: {e}")

        if is_mounted(mount_point):
            run.teardown_errors.append(f"{mount_point} still occupied after teardown")
        for err in run.teardown_errors:
            note(f"ERROR: TEARDOWN FAILED for {run.device} ({run.fs}): {err}")
        if run.teardown_errors:
            run.fail("teardown incomplete")


def write_marker(run: Run):
    try:
        with open(run.result_dir / COMPLETE_MARKER, "w") as f:
            json.dump(run.to_dict(), f, indent=2)
    except OSError as e:
        print(f"[Run] WARNING: could not write completion marker: {e}")
