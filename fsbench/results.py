# results.py
"""
Turns the raw artifacts of each Run directory into flat records:

    ParsedRecord(device, filesystem, timestamp, family, variant,
                 metric, raw, value)

`value` is a float or NOT_AVAILABLE. Extraction never raises on bad
input; a missing field just yields a NOT_AVAILABLE record.
"""
import csv
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from fsbench.config import ALL_FILESYSTEMS
from fsbench.errors import ParseFailure
from fsbench.workloads import (
    BONNIE_ARTIFACT, BUILD_ARTIFACT, FIO_ARTIFACT, IO_CPU_ARTIFACT, ML_ARTIFACT,
    PULL_ARTIFACT, START_STOP_ARTIFACT,
)

NOT_AVAILABLE = None
NA_TEXT = "N/A"

MULTIPLIERS = {"": 1, "k": 1e3, "M": 1e6, "G": 1e9, "T": 1e12}
LATENCY_TO_USEC = {"nsec": 1e-3, "usec": 1.0, "msec": 1e3}

RUN_DIR_RE = re.compile(
    r"^(?P<device>.+)_(?P<fs>{})_(?P<ts>\d{{8}}_\d{{6}})$".format("|".join(ALL_FILESYSTEMS)))


def log(msg):
    print(f"[Parse] {msg}")


@dataclass
class ParsedRecord:
    device: str
    filesystem: str
    timestamp: str
    family: str
    variant: str
    metric: str
    raw: str
    value: Optional[float]


# ───────── converters ─────────────────────────────────────────────────────
def unit_convert(value) -> Optional[float]:
    """
    Converts a number with an optional k/M/G/T suffix: '4k' -> 4000.0.
    Trailing text after the suffix ('123MiB') is ignored.
    """
    match = re.match(r"\s*(\d+(?:\.\d+)?)\s*([kMGT]?)", str(value))
    if not match:
        return NOT_AVAILABLE
    number, suffix = match.groups()
    return float(number) * MULTIPLIERS[suffix]


def duration_convert(value) -> Optional[float]:
    """'1m30.50s' -> 90.5"""
    match = re.fullmatch(r"\s*(\d+)m(\d+(?:\.\d+)?)s\s*", str(value))
    if not match:
        return NOT_AVAILABLE
    return int(match.group(1)) * 60 + float(match.group(2))


# ───────── extraction rules ───────────────────────────────────────────────
# Each rule maps artifact text to {metric: (raw, value)}.

def parse_fio(content: str) -> Dict:
    metrics = {}

    m = re.search(r"IOPS=(\d+(?:\.\d+)?[kMGT]?)", content)
    raw = m.group(1) if m else NA_TEXT
    metrics["iops"] = (raw, unit_convert(raw) if m else NOT_AVAILABLE)

    m = re.search(r"BW=(\d+(?:\.\d+)?)([kKMGT]?)i?B/s", content)
    if m:
        number, suffix = m.group(1), m.group(2).replace("K", "k")
        metrics["bandwidth"] = (f"{number}{suffix}B/s", unit_convert(number + suffix))
    else:
        metrics["bandwidth"] = (NA_TEXT, NOT_AVAILABLE)

    # total latency only, not slat/clat
    m = re.search(r"(?<![cs])lat \((nsec|usec|msec)\): min=\s*([\d.]+[kMGT]?), "
                  r"max=\s*([\d.]+[kMGT]?), avg=\s*([\d.]+)", content)
    for idx, name in ((2, "lat_min"), (3, "lat_max"), (4, "lat_avg")):
        if m:
            value = unit_convert(m.group(idx))
            if value is not NOT_AVAILABLE:
                value *= LATENCY_TO_USEC[m.group(1)]
            metrics[name] = (f"{m.group(idx)} {m.group(1)}", value)
        else:
            metrics[name] = (NA_TEXT, NOT_AVAILABLE)
    return metrics


# offsets from the per-char output column of the bonnie++ CSV summary line
BONNIE_FIELDS = {
    "seq_out_per_char": 0,
    "seq_out_block": 2,
    "seq_out_rewrite": 4,
    "seq_in_per_char": 6,
    "seq_in_block": 8,
    "rand_seeks": 10,
}


def bonnie_first_column(format_version: str) -> int:
    """1.98 added two columns ahead of the results; older formats start at 7."""
    version = tuple(int(p) for p in format_version.split("."))
    return 7 if version < (1, 98) else 9


def parse_bonnie(content: str) -> Dict:
    row, first = None, 0
    for line in content.splitlines():
        fields = line.strip().split(",")
        if not re.match(r"^\d+\.\d+$", fields[0]):
            continue
        start = bonnie_first_column(fields[0])
        if len(fields) > start + max(BONNIE_FIELDS.values()):
            row, first = fields, start
    if row is None and content.strip():
        raise ParseFailure("no bonnie++ CSV summary line")
    metrics = {}
    for name, idx in BONNIE_FIELDS.items():
        raw = row[first + idx].strip() if row else ""
        if not raw or "+" in raw:
            metrics[name] = (raw or NA_TEXT, NOT_AVAILABLE)
        else:
            metrics[name] = (raw, unit_convert(raw))
    return metrics


REAL_RE = re.compile(r"real\s+(\d+m\d+(?:\.\d+)?s)")


def parse_elapsed(content: str) -> Dict:
    m = REAL_RE.search(content)
    if not m:
        return {"elapsed": (NA_TEXT, NOT_AVAILABLE)}
    return {"elapsed": (m.group(1), duration_convert(m.group(1)))}


def parse_start_stop(content: str) -> Dict:
    """Mean over all iterations that finished."""
    times = [duration_convert(t) for t in REAL_RE.findall(content)]
    times = [t for t in times if t is not NOT_AVAILABLE]
    if not times:
        return {"elapsed": (NA_TEXT, NOT_AVAILABLE)}
    mean = sum(times) / len(times)
    return {"elapsed": (f"{mean:.2f}s", mean)}


def parse_ml(content: str) -> Dict:
    metrics = {}
    for name, pattern in (("save_time", r"Model save time: (\d+(?:\.\d+)?) seconds"),
                          ("load_time", r"Model load time: (\d+(?:\.\d+)?) seconds"),
                          ("model_size", r"Model size: (\d+(?:\.\d+)?) MB")):
        m = re.search(pattern, content)
        metrics[name] = (m.group(1), float(m.group(1))) if m else (NA_TEXT, NOT_AVAILABLE)
    return metrics


# artifact -> (family, variant, rule)
RULES = {
    FIO_ARTIFACT.format(name="seqread"): ("io", "seqread", parse_fio),
    FIO_ARTIFACT.format(name="seqwrite"): ("io", "seqwrite", parse_fio),
    FIO_ARTIFACT.format(name="randread"): ("io", "randread", parse_fio),
    FIO_ARTIFACT.format(name="randwrite"): ("io", "randwrite", parse_fio),
    BONNIE_ARTIFACT: ("io", "bonnie", parse_bonnie),
    PULL_ARTIFACT: ("container", "pull", parse_elapsed),
    BUILD_ARTIFACT: ("container", "build", parse_elapsed),
    START_STOP_ARTIFACT: ("container", "start_stop", parse_start_stop),
    ML_ARTIFACT: ("ml", "checkpoint", parse_ml),
}


# ───────── directory walking ──────────────────────────────────────────────
def split_run_dir(name: str):
    """'hdd_sdb_xfs_20250101_120000' -> ('hdd_sdb', 'xfs', '20250101_120000')"""
    m = RUN_DIR_RE.match(name)
    if not m:
        return None
    return m.group("device"), m.group("fs"), m.group("ts")


def _cpu_records(path: Path, device, fs, ts) -> List[ParsedRecord]:
    records = []
    try:
        with open(path, newline="") as f:
            for row in csv.DictReader(f):
                raw = row.get("cpu_avg") or NA_TEXT
                try:
                    value = float(raw)
                except ValueError:
                    value = NOT_AVAILABLE
                records.append(ParsedRecord(device, fs, ts, "io", row.get("variant", ""),
                                            "cpu_avg", raw, value))
    except (OSError, csv.Error) as e:
        log(f"WARNING: unreadable {path}: {e}")
    return records


def parse_run_dir(run_dir) -> List[ParsedRecord]:
    run_dir = Path(run_dir)
    parts = split_run_dir(run_dir.name)
    if parts is None:
        log(f"Skipping directory with invalid name format: {run_dir.name}")
        return []
    device, fs, ts = parts

    records = []
    for artifact, (family, variant, rule) in RULES.items():
        path = run_dir / artifact
        if not path.is_file():
            log(f"File not found: {path}")
            continue
        try:
            content = path.read_text(errors="replace")
        except OSError as e:
            log(f"WARNING: unreadable {path}: {e}")
            continue
        try:
            metrics = rule(content)
        except ParseFailure as e:
            log(f"WARNING: {path.name}: {e}")
            metrics = rule("")
        for metric, (raw, value) in metrics.items():
            records.append(ParsedRecord(device, fs, ts, family, variant, metric, raw, value))

    cpu = run_dir / IO_CPU_ARTIFACT
    if cpu.is_file():
        records.extend(_cpu_records(cpu, device, fs, ts))
    return records


def parse_results(raw_dir) -> List[ParsedRecord]:
    raw_dir = Path(raw_dir)
    if not raw_dir.is_dir():
        log(f"No raw results under {raw_dir}")
        return []
    records = []
    for run_dir in sorted(p for p in raw_dir.iterdir() if p.is_dir()):
        records.extend(parse_run_dir(run_dir))
    log(f"Parsed {len(records)} records from {raw_dir}")
    return records
