"""
Shared helpers for the analysis suites: output paths, data access and
console formatting.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from spr_analysis.preprocessing import (
    DEFAULT_DESIGN,
    ExperimentDesign,
    get_results_dir,
    load_reading_trials,
    load_question_trials,
)


def get_output_dir(suite: str, base_dir: Optional[Path] = None) -> Path:
    """Return (and create) the output directory for an analysis suite."""
    if base_dir is None:
        base_dir = get_results_dir("analysis")
    output_dir = Path(base_dir) / suite
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


def prepare_model_data(
    df: pd.DataFrame,
    dv: str,
    predictors: Iterable[str],
    group_cols: Iterable[str] = ("participant_id", "item"),
) -> pd.DataFrame:
    """Keep rows with a finite DV, every predictor and every grouping column."""
    predictors = list(predictors)
    required = [dv] + predictors + list(group_cols)
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise KeyError(f"Model data missing columns: {missing}")
    out = df.dropna(subset=required).copy()
    out[dv] = pd.to_numeric(out[dv], errors="coerce")
    out = out[out[dv].abs() != float("inf")].dropna(subset=[dv])
    out["participant_id"] = out["participant_id"].astype(str)
    return out.reset_index(drop=True)


def load_region_data(
    region: Optional[str],
    data: Optional[pd.DataFrame] = None,
) -> pd.DataFrame:
    """Experimental-trial reading data for one region (all regions when None)."""
    if data is None:
        return load_reading_trials(trial_type="experimental", region=region)
    df = data
    if "trial_type" in df.columns:
        df = df[df["trial_type"] == "experimental"]
    if region is not None:
        df = df[df["region"] == region]
    return df.reset_index(drop=True)


def load_accuracy_data(data: Optional[pd.DataFrame] = None) -> pd.DataFrame:
    """Experimental-trial question rows with an answer."""
    df = load_question_trials(trial_type="experimental") if data is None else data
    if "trial_type" in df.columns:
        df = df[df["trial_type"] == "experimental"]
    df = df.dropna(subset=["question_correct"]).copy()
    df["correct"] = df["question_correct"].astype(bool).astype(int)
    return df.reset_index(drop=True)


def analysis_regions(df: pd.DataFrame, design: ExperimentDesign = DEFAULT_DESIGN) -> list[str]:
    present = set(df["region"].dropna()) if "region" in df.columns else set()
    return [r for r in design.region_order if r in present]


def format_pvalue(p: float, threshold: float = 0.001) -> str:
    """Format p-value for publication."""
    if pd.isna(p):
        return "NA"
    if p < threshold:
        return f"< {threshold}"
    return f"{p:.3f}"


def print_section_header(title: str, width: int = 70) -> None:
    """Print formatted section header."""
    print("\n" + "=" * width)
    print(title)
    print("=" * width)
