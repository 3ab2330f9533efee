"""
Derived accuracy and reading-time columns.

Usage:
    from spr_analysis.preprocessing import add_rt_columns, residualize_rt, add_contrasts

    reading = add_rt_columns(reading)
    reading = residualize_rt(reading, fit_mask=reading["trial_type"] != "practice")
    reading = add_contrasts(reading, design)
"""

from __future__ import annotations

import re
from itertools import combinations
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .constants import RESIDUAL_MIN_WORDS
from .core import zscore_within
from .design import ExperimentDesign, DEFAULT_DESIGN


def word_length(word: object) -> float:
    """Number of letters/digits in a displayed word (punctuation excluded)."""
    if not isinstance(word, str):
        return np.nan
    return float(len(re.sub(r"[^\w]|_", "", word)))


def add_rt_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Add numeric rt, log_rt, word_length and within-participant rt_z."""
    df = df.copy()
    df["rt"] = pd.to_numeric(df["rt"], errors="coerce")
    df["log_rt"] = np.where(df["rt"] > 0, np.log(df["rt"].where(df["rt"] > 0)), np.nan)
    if "word" in df.columns:
        df["word_length"] = df["word"].map(word_length)
    df["rt_z"] = zscore_within(df, "rt", ["participant_id"])
    return df


def residualize_rt(
    df: pd.DataFrame,
    fit_mask: Optional[pd.Series] = None,
    min_words: int = RESIDUAL_MIN_WORDS,
    rt_col: str = "rt",
) -> pd.DataFrame:
    """
    Length-corrected residual reading times.

    For each participant a linear regression of RT on word length is fit on
    the rows selected by ``fit_mask`` (default: every row with a valid RT),
    and ``residual_rt = rt - predicted_rt`` is computed for all of that
    participant's rows.

    Participants with fewer than ``min_words`` fitting rows, or whose fitting
    words all share one length, get NaN.
    """
    if "word_length" not in df.columns:
        raise KeyError("residualize_rt requires a word_length column (see add_rt_columns).")

    df = df.copy()
    if fit_mask is None:
        fit_mask = pd.Series(True, index=df.index)
    fit_mask = fit_mask.reindex(df.index).fillna(False).astype(bool)

    df["predicted_rt"] = np.nan
    for pid, grp in df.groupby("participant_id"):
        fit = grp[fit_mask.loc[grp.index]].dropna(subset=[rt_col, "word_length"])
        if len(fit) < min_words or fit["word_length"].nunique() < 2:
            continue
        slope, intercept = np.polyfit(
            fit["word_length"].to_numpy(dtype=float),
            fit[rt_col].to_numpy(dtype=float),
            1,
        )
        df.loc[grp.index, "predicted_rt"] = intercept + slope * grp["word_length"].to_numpy(dtype=float)

    df["residual_rt"] = df[rt_col] - df["predicted_rt"]
    return df


def add_contrasts(df: pd.DataFrame, design: ExperimentDesign = DEFAULT_DESIGN) -> pd.DataFrame:
    """
    Sum-coded (+/-0.5) contrasts for every two-level factor.

    Adds ``c_<factor>``, the pairwise products ``c_<a>_x_<b>`` and nested
    contrasts ``c_<b>_in_<level of a>`` (the effect of ``b`` within one level
    of ``a``, zero elsewhere). Rows without a condition get NaN.
    """
    df = df.copy()
    for factor, (neg, pos) in design.factor_levels.items():
        if factor not in df.columns:
            raise KeyError(f"Factor column '{factor}' not found; run segment_trials first.")
        df[design.contrast_column(factor)] = df[factor].map({neg: -0.5, pos: 0.5}).astype(float)

    for first, second in combinations(design.factors, 2):
        df[design.interaction_column(first, second)] = (
            df[design.contrast_column(first)] * df[design.contrast_column(second)]
        )

    for within in design.factors:
        for factor in design.factors:
            if factor == within:
                continue
            for level in design.factor_levels[within]:
                col = design.nested_column(factor, within, level)
                df[col] = np.where(
                    df[within] == level,
                    df[design.contrast_column(factor)],
                    np.where(df[within].notna(), 0.0, np.nan),
                )
    return df


def compute_accuracy(
    questions: pd.DataFrame,
    by: Sequence[str] = ("participant_id",),
) -> pd.DataFrame:
    """Comprehension accuracy (answered questions only) and question counts."""
    by = list(by)
    answered = questions.dropna(subset=["question_correct"]).copy()
    answered["question_correct"] = answered["question_correct"].astype(float)
    return (
        answered.groupby(by, dropna=False)["question_correct"]
        .agg(accuracy="mean", n_questions="size")
        .reset_index()
    )


def derive_participant_features(reading: pd.DataFrame, questions: pd.DataFrame) -> pd.DataFrame:
    """One row per participant with accuracy and reading-time summaries."""
    scored = reading[reading["trial_type"] != "practice"]
    rt_summary = scored.groupby("participant_id").agg(
        n_trials=("trial_index", "nunique"),
        n_words=("rt", "size"),
        mean_rt=("rt", "mean"),
        median_rt=("rt", "median"),
    )
    if "residual_rt" in scored.columns:
        rt_summary["mean_residual_rt"] = scored.groupby("participant_id")["residual_rt"].mean()

    features = rt_summary.reset_index()

    scored_q = questions[questions["trial_type"].isin(["experimental", "filler"])]
    overall = compute_accuracy(scored_q).rename(
        columns={"accuracy": "accuracy_all", "n_questions": "n_questions_all"}
    )
    features = features.merge(overall, on="participant_id", how="outer")

    by_type = compute_accuracy(scored_q, by=["participant_id", "trial_type"])
    if not by_type.empty:
        wide = by_type.pivot(index="participant_id", columns="trial_type", values="accuracy")
        wide = wide.rename(columns=lambda t: f"accuracy_{t}").reset_index()
        wide.columns.name = None
        features = features.merge(wide, on="participant_id", how="left")
    for col in ("accuracy_experimental", "accuracy_filler"):
        if col not in features.columns:
            features[col] = np.nan

    return features.sort_values("participant_id").reset_index(drop=True)
