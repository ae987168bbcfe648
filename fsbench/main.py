#!/usr/bin/env python3
"""
fsbench run                                  # full matrix
fsbench run --device /dev/sdb --fs xfs       # one pair
fsbench run --direct                         # constrained host, no monitoring/ML
fsbench detect-devices [--write]
fsbench format-only --device /dev/sdb --fs zfs
fsbench analyze
"""
import argparse
import os
import sys
from pathlib import Path

import yaml

from fsbench import __version__
from fsbench.analyze import analyze
from fsbench.config import (
    ALL_FILESYSTEMS, CATALOGUE_FILE, COMPOSE_DIR, ENABLE_RESUME, RESULT_DIR,
    SAVE_EXCEL, RunSettings,
)
from fsbench.devices import detect_devices, load_registry, write_catalogue
from fsbench.errors import ConfigurationError, FsBenchError
from fsbench.matrix import MatrixRunner, print_summary
from fsbench.prepare_fs import get_driver

EXIT_RUN_FAILED = 1
EXIT_CONFIG = 2


def parse(argv=None):
    p = argparse.ArgumentParser(prog="fsbench",
                                description="Filesystem benchmark matrix runner")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = p.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="run the full matrix or a single pair")
    run.add_argument("--device", help="run exactly this device (needs --fs)")
    run.add_argument("--fs", choices=ALL_FILESYSTEMS, help="filesystem for --device")
    run.add_argument("--catalogue", default=CATALOGUE_FILE)
    run.add_argument("--results-dir", default=RESULT_DIR)
    run.add_argument("--compose-dir", default=COMPOSE_DIR)
    run.add_argument("--debug", action="store_true", help="short idle baseline")
    run.add_argument("--direct", action="store_true",
                     help="constrained mode: no monitoring stack, no ML suite")
    run.add_argument("--no-resume", action="store_true",
                     help="re-run pairs that already have a completed Run")

    det = sub.add_parser("detect-devices", help="derive the catalogue from lsblk")
    det.add_argument("--catalogue", default=CATALOGUE_FILE)
    det.add_argument("--system-device",
                     help="disk holding the OS, when it cannot be read from the root mount")
    det.add_argument("--write", action="store_true",
                     help="replace the catalogue instead of writing <catalogue>.new")

    fmt = sub.add_parser("format-only", help="format and mount one device, nothing else")
    fmt.add_argument("--device", required=True)
    fmt.add_argument("--fs", choices=ALL_FILESYSTEMS, required=True)
    fmt.add_argument("--catalogue", default=CATALOGUE_FILE)

    ana = sub.add_parser("analyze", help="parse raw results and score filesystems")
    ana.add_argument("--results-dir", default=RESULT_DIR)
    ana.add_argument("--excel", action="store_true", default=SAVE_EXCEL,
                     help="also write an Excel workbook")

    A = p.parse_args(argv)
    if A.command == "run" and bool(A.device) != bool(A.fs):
        p.error("--device and --fs must be given together")
    return A


def require_root():
    if os.geteuid() != 0:
        print("ERROR: this command formats and mounts devices, run it as root",
              file=sys.stderr)
        return False
    return True


# ───────── commands ───────────────────────────────────────────────────────
def cmd_run(A):
    if not require_root():
        return EXIT_RUN_FAILED
    registry = load_registry(A.catalogue)
    opts = dict(debug=A.debug, resume=ENABLE_RESUME and not A.no_resume,
                results_dir=A.results_dir, compose_dir=A.compose_dir)
    settings = RunSettings.direct(**opts) if A.direct else RunSettings(**opts)
    runner = MatrixRunner(registry, settings)

    if A.device:
        run = runner.run_single(A.device, A.fs)
        print_summary([run])
        return 0 if run.succeeded else EXIT_RUN_FAILED

    runs = runner.run_all()
    print_summary(runs)
    print(f"Results under {settings.raw_dir}, run `fsbench analyze` to score them.")
    return 0


def cmd_detect(A):
    data = detect_devices(system_device=A.system_device)
    catalogue = Path(A.catalogue)
    target = catalogue if A.write else catalogue.with_name(catalogue.name + ".new")
    write_catalogue(data, target)
    print(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
    print(f"Catalogue written to {target}")
    if not A.write:
        print(f"Review it, then move it over {catalogue} or re-run with --write.")
    return 0


def cmd_format_only(A):
    if not require_root():
        return EXIT_RUN_FAILED
    registry = load_registry(A.catalogue)
    settings = RunSettings()
    driver = get_driver(A.fs, registry.system_device)
    try:
        result = driver.format(A.device)
        driver.mount(result.mount_token, settings.mount_point)
    except FsBenchError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_RUN_FAILED
    print(f"{A.device} formatted as {A.fs} and mounted at {settings.mount_point}")
    return 0


def cmd_analyze(A):
    summary = analyze(RunSettings(results_dir=A.results_dir), save_excel=A.excel)
    return 0 if summary is not None else EXIT_RUN_FAILED


COMMANDS = {
    "run": cmd_run,
    "detect-devices": cmd_detect,
    "format-only": cmd_format_only,
    "analyze": cmd_analyze,
}


def main(argv=None):
    A = parse(argv)
    try:
        return COMMANDS[A.command](A)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG


if __name__ == "__main__":
    sys.exit(main())
