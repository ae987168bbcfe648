import pytest
import yaml

from fsbench import main as cli


@pytest.fixture
def as_root(monkeypatch):
    monkeypatch.setattr(cli.os, "geteuid", lambda: 0)


def test_missing_catalogue_exits_2(as_root, tmp_path):
    rc = cli.main(["run", "--catalogue", str(tmp_path / "missing.yaml"),
                   "--results-dir", str(tmp_path)])
    assert rc == cli.EXIT_CONFIG


def test_run_needs_root(monkeypatch, tmp_path):
    monkeypatch.setattr(cli.os, "geteuid", lambda: 1000)
    assert cli.main(["run", "--catalogue", str(tmp_path / "x.yaml")]) == 1


def test_device_and_fs_go_together():
    with pytest.raises(SystemExit):
        cli.main(["run", "--device", "/dev/sdb"])


def test_single_pair_exit_status_follows_run(as_root, monkeypatch, tmp_path):
    catalogue = tmp_path / "devices.yaml"
    catalogue.write_text("system_device: /dev/sdc\ndevices: {}\n")

    class FakeRun:
        succeeded = False

    class FakeRunner:
        def __init__(self, registry, settings):
            self.settings = settings

        def run_single(self, device, fs):
            return FakeRun()

    monkeypatch.setattr(cli, "MatrixRunner", FakeRunner)
    monkeypatch.setattr(cli, "print_summary", lambda runs: None)
    args = ["run", "--device", "/dev/sdb", "--fs", "xfs", "--catalogue", str(catalogue),
            "--results-dir", str(tmp_path)]
    assert cli.main(args) == 1
    FakeRun.succeeded = True
    assert cli.main(args) == 0


def test_detect_devices_writes_side_file(monkeypatch, tmp_path):
    data = {"system_device": "/dev/sda", "devices": {"/dev/sdb": {"class": "ssd", "label": "ssd_sdb"}}}
    monkeypatch.setattr(cli, "detect_devices", lambda system_device=None: data)
    catalogue = tmp_path / "devices.yaml"

    assert cli.main(["detect-devices", "--catalogue", str(catalogue)]) == 0
    assert not catalogue.exists()
    assert yaml.safe_load((tmp_path / "devices.yaml.new").read_text()) == data

    assert cli.main(["detect-devices", "--catalogue", str(catalogue), "--write"]) == 0
    assert yaml.safe_load(catalogue.read_text()) == data


def test_analyze_without_results(tmp_path):
    assert cli.main(["analyze", "--results-dir", str(tmp_path)]) == 1
