"""SPR dataset builder and loaders for the built outputs."""

from __future__ import annotations

import os
import warnings
from pathlib import Path
from typing import Dict, Optional, Set

import pandas as pd

from .constants import (
    RAW_DIR,
    ITEMS_PATH,
    PARTICIPANT_FIELDS,
    PARTICIPANTS_FILE,
    READING_FILE,
    READING_RAW_FILE,
    QUESTIONS_FILE,
    FEATURES_FILE,
    QC_REPORT_FILE,
    QC_IDS_FILE,
    VALID_DATASETS,
    get_results_dir,
)
from .core import ensure_participant_id, coerce_bool, zscore_within
from .design import ExperimentDesign, DEFAULT_DESIGN
from .features import add_rt_columns, residualize_rt, add_contrasts, derive_participant_features
from .filters import (
    SPRQCCriteria,
    compute_participant_qc,
    apply_trial_filters,
    mark_rt_window,
    filter_rt_outliers,
)
from .loaders import load_raw_results, split_controllers, load_participant_info, load_items
from .trials import segment_trials, propagate_within_trial, fill_participant_fields, assign_regions


def _log_step(name: str, before: int, after: int, verbose: bool) -> None:
    if verbose:
        print(f"  {name}: {before} -> {after} rows")


def build_spr_dataset(
    raw_dir: Optional[Path] = None,
    items_path: Optional[Path] = None,
    output_dir: Optional[Path] = None,
    design: Optional[ExperimentDesign] = None,
    criteria: Optional[SPRQCCriteria] = None,
    save: bool = True,
    verbose: bool = True,
) -> Dict[str, pd.DataFrame]:
    """
    Clean raw Ibex logs into analysis-ready word- and trial-level tables.

    Steps: load -> split controllers -> segment trials -> propagate question
    outcome -> regions -> RT columns -> participant QC -> trial filters ->
    RT outliers -> residual RTs -> contrasts.

    Returns
    -------
    dict with keys 'participants', 'reading', 'reading_raw', 'questions',
    'features', 'qc' and 'outlier_report'.
    """
    if raw_dir is None:
        raw_dir = RAW_DIR
    if output_dir is None:
        output_dir = get_results_dir("spr")
    if design is None:
        design = DEFAULT_DESIGN
    if criteria is None:
        criteria = SPRQCCriteria()

    if verbose:
        print("=" * 60)
        print("SPR dataset build")
        print("=" * 60)

    raw = load_raw_results(raw_dir, verbose=verbose)
    parts = split_controllers(raw)
    reading, questions, forms = parts["reading"], parts["questions"], parts["forms"]
    if verbose:
        print(f"  Controllers: reading={len(reading)}, questions={len(questions)}, forms={len(forms)}")

    before = len(reading)
    reading, questions = segment_trials(reading, questions, design)
    _log_step("Trial segmentation", before, len(reading), verbose)

    reading = propagate_within_trial(reading, questions)

    participants = load_participant_info(forms, participant_ids=reading["participant_id"].unique())
    field_cols = [c for c in PARTICIPANT_FIELDS if c in participants.columns]
    reading = reading.merge(participants[["participant_id"] + field_cols], on="participant_id", how="left")
    reading = fill_participant_fields(reading, field_cols + ["group"])

    items = None
    if items_path is not None or ITEMS_PATH.exists():
        items = load_items(items_path)
    reading = assign_regions(reading, items, design)
    reading = add_rt_columns(reading)
    reading_raw = mark_rt_window(reading, criteria)

    qc = compute_participant_qc(questions, reading, criteria)
    valid_ids = set(qc.loc[qc["passed"], "participant_id"].astype(str))
    if verbose:
        print(f"\nValid participants: {len(valid_ids)}/{len(qc)}")
        for _, row in qc[~qc["passed"]].iterrows():
            print(f"  [INFO] excluded {row['participant_id']}: {row['excluded_reason']}")

    if not valid_ids:
        if verbose:
            print("[WARN] no valid SPR participants")
        return {}

    before = len(reading)
    reading = reading[reading["participant_id"].isin(valid_ids)]
    questions = questions[questions["participant_id"].isin(valid_ids)].reset_index(drop=True)
    _log_step("Participant QC", before, len(reading), verbose)

    before = len(reading)
    reading = apply_trial_filters(reading, criteria)
    _log_step("Trial filters", before, len(reading), verbose)

    reading, outlier_report = filter_rt_outliers(reading, criteria)
    if verbose:
        print(
            "  RT outliers: {n_below_min} < min, {n_above_max} > max, {n_sd_outliers} SD "
            "({pct_lost:.1f}% lost)".format(**outlier_report)
        )

    reading = residualize_rt(reading, fit_mask=reading["trial_type"] != "practice")
    reading["rt_z"] = zscore_within(reading, "rt", ["participant_id"])
    reading = add_contrasts(reading, design)
    questions = add_contrasts(questions, design)

    features = derive_participant_features(reading, questions)
    qc = qc.merge(features.drop(columns=["n_trials"], errors="ignore"), on="participant_id", how="left")

    results: Dict[str, pd.DataFrame] = {
        "participants": participants[participants["participant_id"].isin(valid_ids)].reset_index(drop=True),
        "reading": reading,
        "reading_raw": reading_raw,
        "questions": questions,
        "features": features,
        "qc": qc,
        "outlier_report": pd.DataFrame([outlier_report]),
    }

    if save:
        os.makedirs(output_dir, exist_ok=True)
        files = {
            PARTICIPANTS_FILE: results["participants"],
            READING_FILE: reading,
            READING_RAW_FILE: reading_raw,
            QUESTIONS_FILE: questions,
            FEATURES_FILE: features,
            QC_REPORT_FILE: qc,
        }
        for filename, df in files.items():
            df.to_csv(Path(output_dir) / filename, index=False, encoding="utf-8-sig")
            if verbose:
                print(f"  [OK] {filename}: {len(df)} rows")

        ids_path = Path(output_dir) / QC_IDS_FILE
        pd.DataFrame({"participant_id": sorted(valid_ids)}).to_csv(ids_path, index=False, encoding="utf-8-sig")
        if verbose:
            print(f"  [OK] participant ids: {ids_path}")
            print(f"\nDone: '{output_dir}'")

    return results


# =============================================================================
# Built-output loaders
# =============================================================================

def _read_output(filename: str, data_dir: Optional[Path]) -> pd.DataFrame:
    if data_dir is None:
        data_dir = get_results_dir("spr")
    path = Path(data_dir) / filename
    if not path.exists():
        raise FileNotFoundError(f"{path} not found; run `python -m spr_analysis.preprocessing --build` first.")
    df = pd.read_csv(path, encoding="utf-8-sig")
    return ensure_participant_id(df)


def load_qc_ids(data_dir: Optional[Path] = None) -> Set[str]:
    if data_dir is None:
        data_dir = get_results_dir("spr")
    path = Path(data_dir) / QC_IDS_FILE
    if not path.exists():
        return set()
    ids = ensure_participant_id(pd.read_csv(path, encoding="utf-8-sig"))
    return set(ids["participant_id"].dropna().astype(str))


def load_reading_trials(
    data_dir: Optional[Path] = None,
    trial_type: Optional[str] = "experimental",
    region: Optional[str] = None,
) -> pd.DataFrame:
    """Cleaned word-level reading data, optionally restricted to a trial type and region."""
    df = _read_output(READING_FILE, data_dir)
    if "question_correct" in df.columns:
        df["question_correct"] = coerce_bool(df["question_correct"])
    qc_ids = load_qc_ids(data_dir)
    if qc_ids:
        df = df[df["participant_id"].isin(qc_ids)]
    if trial_type is not None:
        df = df[df["trial_type"] == trial_type]
    if region is not None:
        df = df[df["region"] == region]
    return df.reset_index(drop=True)


def load_question_trials(
    data_dir: Optional[Path] = None,
    trial_type: Optional[str] = "experimental",
) -> pd.DataFrame:
    df = _read_output(QUESTIONS_FILE, data_dir)
    df["question_correct"] = coerce_bool(df["question_correct"])
    if trial_type is not None:
        df = df[df["trial_type"] == trial_type]
    return df.reset_index(drop=True)


def get_dataset_info(dataset: Optional[str] = None) -> Dict:
    if dataset is not None and dataset not in VALID_DATASETS:
        raise ValueError(f"Unknown dataset: {dataset}. Valid datasets: {VALID_DATASETS}")

    datasets = [dataset] if dataset else sorted(VALID_DATASETS)
    info = {}
    for name in datasets:
        data_dir = get_results_dir(name)
        entry = {
            "path": str(data_dir),
            "exists": data_dir.exists(),
            "n_participants": 0,
            "files": [],
        }
        if data_dir.exists():
            entry["files"] = sorted(f.relative_to(data_dir).as_posix() for f in data_dir.rglob("*.csv"))
            ids_path = data_dir / QC_IDS_FILE
            if ids_path.exists():
                with warnings.catch_warnings():
                    warnings.simplefilter("ignore", UserWarning)
                    entry["n_participants"] = len(load_qc_ids(data_dir))
        info[name] = entry
    return info


def print_dataset_summary() -> None:
    print("=" * 60)
    print("Dataset summary")
    print("=" * 60)

    for name, entry in get_dataset_info().items():
        status = "OK" if entry["exists"] else "NO"
        print(f"  [{status}] {name.upper():8} - N={entry['n_participants']:3} ({entry['path']})")

    raw_files = sorted(RAW_DIR.glob("*.txt")) + sorted(RAW_DIR.glob("*.csv")) if RAW_DIR.exists() else []
    print(f"\n  [Raw] files={len(raw_files)} ({RAW_DIR})")
