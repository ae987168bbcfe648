import json
from pathlib import Path

import pytest

from fsbench import lifecycle
from fsbench.errors import FormatError, MountError, SystemDiskProtectedError, TeardownFailure
from fsbench.lifecycle import COMPLETE_MARKER, LifecycleController, Run, RunState
from fsbench.monitor import MonitoringHandle
from fsbench.prepare_fs import FormatResult
from fsbench.workloads import SuiteResult

from conftest import SYSTEM


class MountTable:
    def __init__(self):
        self.mounted = False

    def __call__(self, path):
        return self.mounted


class FakeDriver:

    def __init__(self, table, events, fail_format=False, fail_mount=False, fail_destroy=False):
        self.table = table
        self.events = events
        self.fail_format = fail_format
        self.fail_mount = fail_mount
        self.fail_destroy = fail_destroy

    def default_token(self, device):
        return device

    def format(self, device):
        if device == SYSTEM:
            raise SystemDiskProtectedError(device)
        self.events.append("format")
        if self.fail_format:
            raise FormatError("mkfs exited 1")
        return FormatResult("ext4", device, device)

    def mount(self, token, target):
        self.events.append("mount")
        if self.fail_mount:
            raise MountError("mount exited 32")
        Path(target).mkdir(parents=True, exist_ok=True)
        self.table.mounted = True

    def unmount(self, target):
        self.events.append("unmount")
        self.table.mounted = False

    def destroy(self, token, device):
        self.events.append("destroy")
        if self.fail_destroy:
            raise TeardownFailure("wipefs failed")


class FakeMonitor:

    def __init__(self, events):
        self.events = events

    def start(self):
        self.events.append("monitor.start")
        return MonitoringHandle("exporter")

    def stop(self, handle):
        self.events.append("monitor.stop")


class FakeAdapter:

    def __init__(self, events, broken=()):
        self.events = events
        self.broken = broken

    def _suite(self, family):
        self.events.append(family)
        if family in self.broken:
            raise OSError(f"{family} exploded")
        return SuiteResult(family)

    def record_filesystem_info(self, mount_path, out_dir):
        pass

    def run_io_suite(self, mount_path, out_dir):
        return self._suite("io")

    def run_container_ops_suite(self, out_dir, build_root=None):
        return self._suite("container")

    def run_ml_checkpoint_suite(self, mount_path, out_dir):
        return self._suite("ml")


@pytest.fixture
def table(monkeypatch):
    table = MountTable()
    monkeypatch.setattr(lifecycle, "is_mounted", table)
    return table


def make(settings, table, broken=(), **driver_opts):
    events = []
    driver = FakeDriver(table, events, **driver_opts)
    controller = LifecycleController(SYSTEM, settings, FakeMonitor(events),
                                     FakeAdapter(events, broken),
                                     driver_factory=lambda fs, system: driver)
    return controller, events


def new_run(settings, device="/dev/sdb"):
    return Run.create(device, "ssd1", "ext4", settings.raw_dir, timestamp="20250101_120000")


def test_full_lifecycle(settings, table):
    controller, events = make(settings, table)
    run = controller.execute(new_run(settings))

    assert run.succeeded
    assert run.history == [
        RunState.PENDING, RunState.FORMATTED, RunState.MOUNTED, RunState.MONITORING,
        RunState.EXECUTING, RunState.COLLECTED, RunState.UNMOUNTED, RunState.DESTROYED,
    ]
    assert run.monitoring == "exporter"
    assert events == ["format", "mount", "monitor.start", "io", "container", "ml",
                      "monitor.stop", "unmount", "destroy"]
    assert not table.mounted
    assert run.result_dir.name == "ssd1_ext4_20250101_120000"

    marker = json.loads((run.result_dir / COMPLETE_MARKER).read_text())
    assert marker["state"] == "destroyed"
    assert set(marker["suites"]) == {"io", "container", "ml"}


def test_failed_suite_does_not_block_siblings(settings, table):
    controller, events = make(settings, table, broken=("ml", "io"))
    run = controller.execute(new_run(settings))

    assert "container" in events
    assert not run.suites["io"].ok
    assert not run.suites["ml"].ok
    assert run.suites["container"].ok
    assert run.state is RunState.DESTROYED
    assert not table.mounted


def test_format_failure_skips_mount_but_tears_down(settings, table):
    controller, events = make(settings, table, fail_format=True)
    run = controller.execute(new_run(settings))

    assert run.state is RunState.FAILED
    assert run.failed_at is RunState.PENDING
    assert "mount" not in events
    assert "destroy" in events
    assert (run.result_dir / COMPLETE_MARKER).is_file()


def test_mount_failure_still_destroys(settings, table):
    controller, events = make(settings, table, fail_mount=True)
    run = controller.execute(new_run(settings))

    assert run.state is RunState.FAILED
    assert run.failed_at is RunState.FORMATTED
    assert "monitor.start" not in events
    assert events[-2:] == ["unmount", "destroy"]
    assert "MountError" in run.error


def test_system_device_is_never_touched(settings, table):
    controller, events = make(settings, table)
    run = controller.execute(new_run(settings, device=SYSTEM))

    assert run.state is RunState.FAILED
    assert events == []
    assert (run.result_dir / COMPLETE_MARKER).is_file()


def test_teardown_failure_marks_run_failed(settings, table):
    controller, events = make(settings, table, fail_destroy=True)
    run = controller.execute(new_run(settings))

    assert run.state is RunState.FAILED
    assert "teardown incomplete" in run.error
    assert run.teardown_errors and run.teardown_errors[0].startswith("destroy:")
    assert "monitor.stop" in events
    assert not table.mounted
    assert "TEARDOWN FAILED" in run.log_file.read_text()


def test_occupied_mount_point_is_freed_first(settings, table):
    table.mounted = True
    controller, events = make(settings, table)
    run = controller.execute(new_run(settings))

    assert events[:2] == ["unmount", "format"]
    assert run.succeeded
    assert not table.mounted
