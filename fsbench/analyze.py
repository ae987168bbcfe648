# analyze.py – parsed records -> per-filesystem scores
"""
Min-max scoring of filesystems.

For every scored metric the per-filesystem means are scaled to [0, 1]
across the filesystems present; lower-is-better metrics are flipped so a
higher score is always better. `overall` is the mean of whatever scores a
filesystem has.
"""
from dataclasses import asdict
from pathlib import Path

import pandas as pd

from fsbench.config import ALL_FILESYSTEMS, SAVE_EXCEL
from fsbench.results import parse_results

RECORD_COLUMNS = ["device", "filesystem", "timestamp", "family", "variant",
                  "metric", "raw", "value"]
FAMILIES = ["io", "container", "ml"]
TIE_SCORE = 0.5
OVERALL = "overall"

# (name, family, variant, metric, higher_is_better)
SCORED_METRICS = [
    ("rand_read_iops",    "io",        "randread",   "iops",          True),
    ("rand_write_iops",   "io",        "randwrite",  "iops",          True),
    ("seq_read_bw",       "io",        "seqread",    "bandwidth",     True),
    ("seq_write_bw",      "io",        "seqwrite",   "bandwidth",     True),
    ("seq_read",          "io",        "bonnie",     "seq_in_block",  True),
    ("seq_write",         "io",        "bonnie",     "seq_out_block", True),
    ("rand_read_latency", "io",        "randread",   "lat_avg",       False),
    ("docker_build",      "container", "build",      "elapsed",       False),
    ("docker_start_stop", "container", "start_stop", "elapsed",       False),
    ("ml_save",           "ml",        "checkpoint", "save_time",     False),
    ("ml_load",           "ml",        "checkpoint", "load_time",     False),
]
HIGHER_IS_BETTER = {name: higher for name, _, _, _, higher in SCORED_METRICS}


def log(msg):
    print(f"[Analyze] {msg}")


def records_frame(records) -> pd.DataFrame:
    """ParsedRecords (or their dicts) -> DataFrame; unavailable values become NaN."""
    rows = [r if isinstance(r, dict) else asdict(r) for r in records]
    df = pd.DataFrame(rows, columns=RECORD_COLUMNS)
    df["value"] = pd.to_numeric(df["value"], errors="coerce")
    return df


def normalize_series(series: pd.Series, higher_is_better=True) -> pd.Series:
    """
    Min-max scale to [0, 1], NaN stays NaN. A tie across all entries
    scores TIE_SCORE; lower-is-better values are flipped.
    """
    series = pd.to_numeric(series, errors="coerce")
    present = series.dropna()
    if present.empty:
        return series
    lo, hi = present.min(), present.max()
    if hi == lo:
        scores = series.where(series.isna(), TIE_SCORE)
    else:
        scores = (series - lo) / (hi - lo)
    if not higher_is_better:
        scores = 1 - scores
    return scores


def _ordered(index):
    known = [fs for fs in ALL_FILESYSTEMS if fs in index]
    return known + sorted(fs for fs in index if fs not in known)


def metric_means(df: pd.DataFrame) -> pd.DataFrame:
    """filesystem x scored-metric table of means; missing readings are skipped."""
    columns = {}
    for name, family, variant, metric, _ in SCORED_METRICS:
        sel = df[(df["family"] == family) & (df["variant"] == variant) & (df["metric"] == metric)]
        columns[name] = sel.groupby("filesystem")["value"].mean()
    means = pd.DataFrame(columns, columns=[m[0] for m in SCORED_METRICS])
    return means.reindex(_ordered(means.index))


def score_table(means: pd.DataFrame) -> pd.DataFrame:
    scores = pd.DataFrame(index=means.index)
    for name in means.columns:
        scores[name] = normalize_series(means[name], HIGHER_IS_BETTER.get(name, True))
    scores[OVERALL] = scores.mean(axis=1, skipna=True)
    return scores


def _long_form(means, scores, **keys):
    rows = []
    for fs in scores.index:
        for metric in scores.columns:
            mean = means.at[fs, metric] if metric in means.columns else float("nan")
            rows.append({**keys, "filesystem": fs, "metric": metric,
                         "mean": mean, "score": scores.at[fs, metric]})
    return rows


def summarize(df: pd.DataFrame) -> pd.DataFrame:
    """Long-form (filesystem, metric, mean, score) table, including `overall`."""
    means = metric_means(df)
    return pd.DataFrame(_long_form(means, score_table(means)),
                        columns=["filesystem", "metric", "mean", "score"])


def summarize_by_device(df: pd.DataFrame) -> pd.DataFrame:
    """Same scoring, but filesystems only compete on the same device."""
    rows = []
    for device, group in df.groupby("device", sort=False):
        means = metric_means(group)
        rows.extend(_long_form(means, score_table(means), device=device))
    return pd.DataFrame(rows, columns=["device", "filesystem", "metric", "mean", "score"])


def print_scores(summary: pd.DataFrame):
    if summary.empty:
        print("No scores to report.")
        return
    table = summary.pivot(index="filesystem", columns="metric", values="score")
    table = table.reindex(index=_ordered(table.index),
                          columns=[m[0] for m in SCORED_METRICS if m[0] in table.columns] + [OVERALL])
    print("\nNormalized scores (higher is better):")
    print(table.to_string(float_format=lambda v: f"{v:.2f}", na_rep="N/A"))


# ───────── persistence ────────────────────────────────────────────────────
def write_tables(df: pd.DataFrame, processed_dir, save_excel=SAVE_EXCEL):
    processed_dir = Path(processed_dir)
    processed_dir.mkdir(parents=True, exist_ok=True)

    family_tables = {}
    for family in FAMILIES:
        family_tables[family] = df[df["family"] == family]
        path = processed_dir / f"{family}_results.csv"
        family_tables[family].to_csv(path, index=False)
        log(f"{len(family_tables[family])} {family} records -> {path}")

    summary = summarize(df)
    summary.to_csv(processed_dir / "performance_summary.csv", index=False)
    by_device = summarize_by_device(df)
    by_device.to_csv(processed_dir / "performance_summary_by_device.csv", index=False)
    log(f"Summary -> {processed_dir / 'performance_summary.csv'}")

    if save_excel:
        excel_path = processed_dir / "benchmark_results.xlsx"
        with pd.ExcelWriter(excel_path, engine="openpyxl") as writer:
            summary.to_excel(writer, sheet_name="summary", index=False)
            by_device.to_excel(writer, sheet_name="by_device", index=False)
            for family, table in family_tables.items():
                table.to_excel(writer, sheet_name=family, index=False)
        print(f"Excel → {excel_path}")
    return summary


def analyze(settings, save_excel=SAVE_EXCEL):
    """Parse everything under <results>/raw and write the processed tables."""
    records = parse_results(settings.raw_dir)
    if not records:
        log("No results found, nothing to analyze")
        return None
    summary = write_tables(records_frame(records), settings.processed_dir, save_excel)
    print_scores(summary)
    return summary
