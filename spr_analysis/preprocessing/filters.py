"""
Participant QC criteria and reading-time outlier filtering.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Set, Tuple

import numpy as np
import pandas as pd

from .constants import SPR_RT_MIN, SPR_RT_MAX, SPR_SD_CUTOFF, SPR_MIN_ACCURACY
from .features import compute_accuracy


# =============================================================================
# QC Criteria
# =============================================================================

@dataclass
class SPRQCCriteria:
    """Self-paced reading quality criteria."""
    min_accuracy: float = SPR_MIN_ACCURACY
    accuracy_scope: str = "all"          # 'all', 'experimental' or 'filler'
    min_trials: int = 1                  # scored (non-practice) trials read
    rt_min: float = SPR_RT_MIN
    rt_max: float = SPR_RT_MAX
    sd_cutoff: Optional[float] = SPR_SD_CUTOFF
    sd_group: Tuple[str, ...] = ("participant_id", "region")
    sd_mode: str = "trim"                # 'trim' drops, 'winsorize' clips
    require_correct: bool = False        # drop trials with a wrong answer
    exclude_practice: bool = True

    def __post_init__(self) -> None:
        if self.accuracy_scope not in {"all", "experimental", "filler"}:
            raise ValueError(f"Unknown accuracy_scope: {self.accuracy_scope}")
        if self.sd_mode not in {"trim", "winsorize"}:
            raise ValueError(f"Unknown sd_mode: {self.sd_mode}")
        if self.rt_min >= self.rt_max:
            raise ValueError(f"rt_min ({self.rt_min}) must be below rt_max ({self.rt_max})")


# =============================================================================
# Participant filtering
# =============================================================================

def compute_participant_qc(
    questions: pd.DataFrame,
    reading: pd.DataFrame,
    criteria: Optional[SPRQCCriteria] = None,
) -> pd.DataFrame:
    """
    Per-participant QC table.

    Columns: participant_id, accuracy, n_questions, n_trials, passed,
    excluded_reason (empty string when passed).
    """
    if criteria is None:
        criteria = SPRQCCriteria()

    scored = reading[reading["trial_type"] != "practice"]
    trials = scored.groupby("participant_id")["trial_index"].nunique().rename("n_trials").reset_index()

    if criteria.accuracy_scope == "all":
        scope = questions["trial_type"].isin(["experimental", "filler"])
    else:
        scope = questions["trial_type"] == criteria.accuracy_scope
    accuracy = compute_accuracy(questions[scope])

    qc = trials.merge(accuracy, on="participant_id", how="outer")
    qc["n_trials"] = qc["n_trials"].fillna(0).astype(int)
    qc["n_questions"] = qc["n_questions"].fillna(0).astype(int)

    reasons = pd.Series("", index=qc.index, dtype=object)
    low_acc = qc["accuracy"] < criteria.min_accuracy
    reasons[low_acc] = "accuracy<" + f"{criteria.min_accuracy:.2f}"
    few_trials = qc["n_trials"] < criteria.min_trials
    reasons[few_trials] = np.where(
        reasons[few_trials] == "",
        f"trials<{criteria.min_trials}",
        reasons[few_trials] + f";trials<{criteria.min_trials}",
    )
    qc["excluded_reason"] = reasons
    qc["passed"] = qc["excluded_reason"] == ""
    return qc.sort_values("participant_id").reset_index(drop=True)


def get_valid_participants(
    questions: pd.DataFrame,
    reading: pd.DataFrame,
    criteria: Optional[SPRQCCriteria] = None,
    verbose: bool = False,
) -> Set[str]:
    """Return ids of participants passing the accuracy and trial-count criteria."""
    qc = compute_participant_qc(questions, reading, criteria)
    valid = set(qc.loc[qc["passed"], "participant_id"].astype(str))
    if verbose:
        excluded = qc[~qc["passed"]]
        print(f"Valid participants: {len(valid)}/{len(qc)}")
        for _, row in excluded.iterrows():
            acc = "NA" if pd.isna(row["accuracy"]) else f"{row['accuracy']:.2f}"
            print(f"  [INFO] excluded {row['participant_id']}: {row['excluded_reason']} (accuracy={acc})")
    return valid


# =============================================================================
# Trial / word filtering
# =============================================================================

def apply_trial_filters(df: pd.DataFrame, criteria: Optional[SPRQCCriteria] = None) -> pd.DataFrame:
    """Drop practice trials and, if required, wrongly answered trials (NA outcome is kept)."""
    if criteria is None:
        criteria = SPRQCCriteria()
    mask = pd.Series(True, index=df.index)
    if criteria.exclude_practice and "trial_type" in df.columns:
        mask &= df["trial_type"] != "practice"
    if criteria.require_correct and "question_correct" in df.columns:
        mask &= df["question_correct"].fillna(True).astype(bool)
    return df[mask].copy()


def mark_rt_window(
    df: pd.DataFrame,
    criteria: Optional[SPRQCCriteria] = None,
) -> pd.DataFrame:
    """Flag words inside ``[rt_min, rt_max]`` in ``is_rt_valid`` without dropping any."""
    if criteria is None:
        criteria = SPRQCCriteria()
    df = df.copy()
    rt = pd.to_numeric(df["rt"], errors="coerce")
    df["is_rt_valid"] = rt.between(criteria.rt_min, criteria.rt_max)
    return df


def filter_rt_outliers(
    df: pd.DataFrame,
    criteria: Optional[SPRQCCriteria] = None,
) -> Tuple[pd.DataFrame, Dict[str, float]]:
    """
    Absolute RT window followed by a within-group SD rule.

    Words outside ``[rt_min, rt_max]`` are removed first. The remaining words
    are compared with their group mean +/- ``sd_cutoff`` SDs (groups from
    ``sd_group``; NA region is its own group). ``trim`` removes outliers,
    ``winsorize`` clips them to the boundary and flags them in
    ``rt_winsorized``. Groups with a single word are never trimmed.

    Returns
    -------
    (filtered_df, report)
    """
    if criteria is None:
        criteria = SPRQCCriteria()
    if "rt" not in df.columns:
        raise KeyError("filter_rt_outliers requires an rt column.")

    df = df.copy()
    n_input = len(df)
    rt = pd.to_numeric(df["rt"], errors="coerce")
    below = rt < criteria.rt_min
    above = rt > criteria.rt_max
    missing = rt.isna()
    df = df[~(below | above | missing)].copy()

    n_sd = 0
    if criteria.sd_cutoff is not None and not df.empty:
        group_cols = [c for c in criteria.sd_group if c in df.columns]
        if not group_cols:
            group_cols = ["participant_id"]
        grouped = df.groupby(group_cols, dropna=False)["rt"]
        mean = grouped.transform("mean")
        std = grouped.transform("std")
        lower = mean - criteria.sd_cutoff * std
        upper = mean + criteria.sd_cutoff * std
        outlier = std.notna() & ((df["rt"] < lower) | (df["rt"] > upper))
        n_sd = int(outlier.sum())
        if criteria.sd_mode == "trim":
            df = df[~outlier].copy()
        else:
            df["rt_winsorized"] = outlier
            df["rt"] = np.where(
                outlier & (df["rt"] < lower),
                lower,
                np.where(outlier & (df["rt"] > upper), upper, df["rt"]),
            )
            if "log_rt" in df.columns:
                df["log_rt"] = np.log(df["rt"])

    n_output = len(df)
    report = {
        "n_words_input": n_input,
        "n_missing_rt": int(missing.sum()),
        "n_below_min": int(below.sum()),
        "n_above_max": int(above.sum()),
        "n_sd_outliers": n_sd,
        "n_words_output": n_output,
        "pct_lost": (n_input - n_output) / n_input * 100 if n_input else 0.0,
    }
    return df.reset_index(drop=True), report
