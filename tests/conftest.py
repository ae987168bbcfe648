import subprocess

import pytest

from fsbench.config import RunSettings

SYSTEM = "/dev/sdc"


class FakeShell:
    """
    Stands in for fsbench.utils.shell. Records every argv and keeps just
    enough zpool state for the zfs driver to see its own pools.
    """

    def __init__(self, fail=(), stdout=""):
        self.calls = []
        self.fail = [list(p) for p in fail]
        self.stdout = stdout
        self.pools = set()

    def __call__(self, cmd, check=True, capture=False, **kw):
        cmd = [str(c) for c in cmd]
        self.calls.append(cmd)
        rc = 1 if any(cmd[:len(p)] == p for p in self.fail) else 0

        if cmd[:2] == ["zpool", "create"] and not rc:
            self.pools.add(cmd[3])
        elif cmd[:2] == ["zpool", "destroy"] and not rc:
            self.pools.discard(cmd[3])
        elif cmd[:2] == ["zpool", "list"]:
            rc = 0 if cmd[-1] in self.pools else 1

        if rc and check:
            raise subprocess.CalledProcessError(rc, cmd)
        return subprocess.CompletedProcess(cmd, rc, stdout=self.stdout if capture else None)

    def ran(self, *prefix):
        return [c for c in self.calls if c[:len(prefix)] == list(prefix)]


@pytest.fixture
def settings(tmp_path):
    return RunSettings(
        mount_point=str(tmp_path / "mnt"),
        results_dir=str(tmp_path / "results"),
        monitoring=False,
        idle_baseline_seconds=0,
    )
