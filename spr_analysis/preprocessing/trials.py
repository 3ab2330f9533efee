"""
Trial segmentation and within-group NA propagation.

A trial is one ``(participant_id, item, type)`` block: the word-by-word
reading rows plus the comprehension question that follows them. Trials are
numbered per participant in the order they were presented.
"""

from __future__ import annotations

import warnings
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from .design import ExperimentDesign, DEFAULT_DESIGN

TRIAL_KEYS = ["participant_id", "item", "type"]


def _require(df: pd.DataFrame, columns: Iterable[str], name: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise KeyError(f"{name} missing required columns: {missing}")


def build_trial_table(reading: pd.DataFrame, design: ExperimentDesign = DEFAULT_DESIGN) -> pd.DataFrame:
    """
    One row per presented trial with its type, condition and presentation order.

    Labels the design does not recognise (consent screens, separators,
    instructions) are not trials and get no index.
    """
    _require(reading, TRIAL_KEYS + ["row_order"], "Reading frame")

    trials = (
        reading.groupby(TRIAL_KEYS, sort=False, dropna=True)["row_order"]
        .min()
        .reset_index()
        .rename(columns={"row_order": "first_row"})
    )
    trials["trial_type"] = trials["type"].map(design.classify_type)
    trials = trials[trials["trial_type"].notna()].copy()

    trials = trials.sort_values(["participant_id", "first_row"])
    trials["trial_index"] = trials.groupby("participant_id").cumcount() + 1

    trials["condition"] = np.where(
        trials["trial_type"] == "experimental",
        trials["type"].map(design.parse_condition),
        None,
    )
    unparsed = (trials["trial_type"] == "experimental") & trials["condition"].isna()
    if unparsed.any():
        labels = sorted(trials.loc[unparsed, "type"].astype(str).unique())
        warnings.warn(f"Experimental labels without a known condition: {labels}", UserWarning)

    for factor in design.factors:
        level_map = {code: levels.get(factor) for code, levels in design.conditions.items()}
        trials[factor] = trials["condition"].map(level_map)

    scored = trials["trial_type"] != "practice"
    order = trials["trial_index"].where(scored)
    lo = order.groupby(trials["participant_id"]).transform("min")
    hi = order.groupby(trials["participant_id"]).transform("max")
    span = (hi - lo).replace(0, np.nan)
    trials["trial_position_scaled"] = (order - lo) / span

    return trials.drop(columns=["first_row"]).reset_index(drop=True)


def segment_trials(
    reading: pd.DataFrame,
    questions: pd.DataFrame,
    design: ExperimentDesign = DEFAULT_DESIGN,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Attach trial index, trial type, condition and factor levels to the
    reading and question frames.

    Reading rows outside any trial are dropped; question rows keep their
    trial columns as NA when their trial had no reading part.
    """
    trials = build_trial_table(reading, design)

    reading = reading.merge(trials, on=TRIAL_KEYS, how="inner")
    reading = reading.sort_values(["participant_id", "trial_index", "word_number"]).reset_index(drop=True)

    if questions.empty:
        questions = questions.reindex(columns=list(dict.fromkeys([*questions.columns, *trials.columns])))
    else:
        _require(questions, TRIAL_KEYS, "Question frame")
        questions = questions.merge(trials, on=TRIAL_KEYS, how="left")
        unmatched = questions["trial_index"].isna()
        if unmatched.any():
            questions.loc[unmatched, "trial_type"] = questions.loc[unmatched, "type"].map(design.classify_type)
    return reading, questions


def propagate_within_trial(
    reading: pd.DataFrame,
    questions: pd.DataFrame,
    columns: Optional[list[str]] = None,
) -> pd.DataFrame:
    """
    Broadcast each trial's question outcome onto every word of the trial.

    When a trial has several questions the first non-missing answer is used.
    Trials without a question keep NA; a missing answer is never read as an
    error.
    """
    if columns is None:
        columns = ["question_correct", "answer_rt"]
    reading = reading.drop(columns=[c for c in columns if c in reading.columns])
    columns = [c for c in columns if c in questions.columns]
    if not columns or questions.empty:
        reading["question_correct"] = pd.Series(pd.NA, index=reading.index, dtype="boolean")
        return reading

    outcome = questions.groupby(TRIAL_KEYS, dropna=True)[columns].first().reset_index()
    before = len(reading)
    merged = reading.merge(outcome, on=TRIAL_KEYS, how="left")
    if len(merged) != before:
        raise RuntimeError(f"Question merge changed row count: {before} -> {len(merged)}")
    if "question_correct" in merged.columns:
        merged["question_correct"] = merged["question_correct"].astype("boolean")
    return merged


def fill_participant_fields(df: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
    """Forward/back-fill participant-level fields within each participant."""
    columns = [c for c in columns if c in df.columns]
    if not columns:
        return df
    df = df.copy()
    df[columns] = df.groupby("participant_id")[columns].transform(lambda s: s.ffill().bfill())
    return df


def assign_regions(
    reading: pd.DataFrame,
    items: Optional[pd.DataFrame],
    design: ExperimentDesign = DEFAULT_DESIGN,
) -> pd.DataFrame:
    """
    Label words by their position relative to the critical word.

    ``rel_position`` is ``word_number - critical_word``; ``region`` takes the
    design's name for that offset and is NA elsewhere (and for fillers).
    """
    reading = reading.drop(columns=[c for c in ("critical_word", "rel_position", "region") if c in reading.columns])
    if items is None or items.empty:
        warnings.warn("No item table supplied; regions left unassigned.", UserWarning)
        reading["rel_position"] = np.nan
        reading["region"] = pd.Series(pd.NA, index=reading.index, dtype=object)
        return reading

    exp_mask = reading["trial_type"] == "experimental"
    keys = ["item", "condition"] if "condition" in items.columns else ["item"]
    lookup = items[keys + ["critical_word"]].drop_duplicates(subset=keys, keep="last")

    before = len(reading)
    reading = reading.merge(lookup, on=keys, how="left")
    if len(reading) != before:
        raise RuntimeError(f"Item merge changed row count: {before} -> {len(reading)}")

    reading.loc[~exp_mask.to_numpy(), "critical_word"] = np.nan
    missing_items = reading.loc[exp_mask.to_numpy() & reading["critical_word"].isna().to_numpy(), "item"].unique()
    if len(missing_items):
        warnings.warn(f"Experimental items missing from item table: {sorted(missing_items)}", UserWarning)

    reading["rel_position"] = reading["word_number"] - reading["critical_word"]
    reading["region"] = reading["rel_position"].map(
        lambda v: design.regions.get(int(v)) if pd.notna(v) else None
    )
    return reading
