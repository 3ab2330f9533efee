"""
Descriptive Statistics
======================

Condition x region reading-time means with within-subject standard errors,
comprehension accuracy by condition, and the QC exclusion summary.

Output:
    data/outputs/analysis/descriptive/region_condition_means_<dv>.csv
    data/outputs/analysis/descriptive/accuracy_by_condition.csv
    data/outputs/analysis/descriptive/region_profile_<dv>.png

Usage:
    python -m spr_analysis.analysis --suite descriptive
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import matplotlib
matplotlib.use("Agg")  # Headless backend

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns

from spr_analysis.preprocessing import DEFAULT_DESIGN, ExperimentDesign, load_question_trials
from ._utils import get_output_dir, load_region_data, print_section_header


def region_condition_means(
    df: pd.DataFrame,
    dv: str = "rt",
    design: ExperimentDesign = DEFAULT_DESIGN,
) -> pd.DataFrame:
    """
    Grand means per region x condition over by-participant means.

    The SE is the Cousineau-Morey within-subject SE: participant means are
    normalised by removing each participant's region mean and adding back the
    region grand mean, then scaled by sqrt(J / (J - 1)) for J conditions.
    """
    required = ["participant_id", "region", "condition", dv]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise KeyError(f"region_condition_means missing columns: {missing}")

    data = df.dropna(subset=required)
    subj = data.groupby(["participant_id", "region", "condition"], as_index=False)[dv].mean()
    subj_region = subj.groupby(["participant_id", "region"])[dv].transform("mean")
    grand_region = subj.groupby("region")[dv].transform("mean")
    subj["normalized"] = subj[dv] - subj_region + grand_region

    n_conditions = subj.groupby("region")["condition"].transform("nunique")
    correction = np.sqrt(n_conditions / (n_conditions - 1).replace(0, np.nan))
    subj["normalized"] = grand_region + (subj["normalized"] - grand_region) * correction

    table = subj.groupby(["region", "condition"]).agg(
        mean=(dv, "mean"),
        sd=(dv, "std"),
        n=(dv, "size"),
        sd_within=("normalized", "std"),
    ).reset_index()
    table["se"] = table["sd_within"] / np.sqrt(table["n"])
    table = table.drop(columns=["sd_within"])

    levels = design.conditions
    for factor in design.factors:
        table[factor] = table["condition"].map({c: lv.get(factor) for c, lv in levels.items()})

    order = {r: i for i, r in enumerate(design.region_order)}
    table["_order"] = table["region"].map(order)
    table = table.sort_values(["_order", "condition"]).drop(columns=["_order"])
    table.insert(0, "dv", dv)
    return table.reset_index(drop=True)


def accuracy_by_condition(questions: pd.DataFrame) -> pd.DataFrame:
    """Mean comprehension accuracy (by-participant means) per trial type and condition."""
    df = questions.dropna(subset=["question_correct"]).copy()
    df["correct"] = df["question_correct"].astype(bool).astype(float)
    df["condition"] = df["condition"].fillna("-")
    subj = df.groupby(["trial_type", "condition", "participant_id"], as_index=False)["correct"].mean()
    table = subj.groupby(["trial_type", "condition"]).agg(
        accuracy=("correct", "mean"),
        sd=("correct", "std"),
        n=("correct", "size"),
    ).reset_index()
    table["se"] = table["sd"] / np.sqrt(table["n"])
    return table


def qc_summary(qc: pd.DataFrame, outlier_report: Optional[Dict[str, float]] = None) -> str:
    """Short text summary of participant exclusions and RT trimming."""
    n_total = len(qc)
    n_kept = int(qc["passed"].sum()) if "passed" in qc.columns else n_total
    lines = [f"Participants: {n_kept}/{n_total} retained"]
    if "excluded_reason" in qc.columns:
        reasons = qc.loc[qc["excluded_reason"].fillna("") != "", "excluded_reason"].value_counts()
        for reason, count in reasons.items():
            lines.append(f"  excluded ({reason}): {count}")
    if outlier_report:
        lines.append(
            "Words: {n_words_output}/{n_words_input} retained "
            "({n_below_min} < min, {n_above_max} > max, {n_sd_outliers} SD; {pct_lost:.1f}% lost)".format(
                **outlier_report
            )
        )
    return "\n".join(lines)


def plot_region_profile(
    table: pd.DataFrame,
    output_path: Path,
    design: ExperimentDesign = DEFAULT_DESIGN,
    title: Optional[str] = None,
) -> Path:
    """Line plot of condition means (+/- SE) across regions."""
    regions = [r for r in design.region_order if r in set(table["region"])]
    x_pos = {r: i for i, r in enumerate(regions)}
    palette = sns.color_palette("deep", n_colors=max(table["condition"].nunique(), 1))

    fig, ax = plt.subplots(figsize=(7, 4.5))
    for color, (condition, grp) in zip(palette, table.groupby("condition")):
        grp = grp[grp["region"].isin(regions)].copy()
        grp["x"] = grp["region"].map(x_pos)
        grp = grp.sort_values("x")
        levels = design.conditions.get(condition, {})
        label = f"{condition}: " + ", ".join(levels.values()) if levels else str(condition)
        ax.errorbar(grp["x"], grp["mean"], yerr=grp["se"], marker="o", capsize=3, color=color, label=label)

    ax.set_xticks(range(len(regions)))
    ax.set_xticklabels(regions)
    ax.set_xlabel("Region")
    dv = table["dv"].iloc[0] if "dv" in table.columns and len(table) else "rt"
    ax.set_ylabel(f"Mean {dv}")
    if title:
        ax.set_title(title)
    ax.legend(frameon=False, fontsize=8)
    sns.despine(ax=ax)

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(output_path, dpi=300, bbox_inches="tight")
    plt.close(fig)
    return output_path


def run(
    data: Optional[pd.DataFrame] = None,
    questions: Optional[pd.DataFrame] = None,
    output_dir: Optional[Path] = None,
    verbose: bool = True,
) -> Dict[str, pd.DataFrame]:
    """Write region x condition tables, the accuracy table and region profile plots."""
    if output_dir is None:
        output_dir = get_output_dir("descriptive")
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    if verbose:
        print_section_header("DESCRIPTIVE STATISTICS")

    reading = load_region_data(region=None, data=data)
    results: Dict[str, pd.DataFrame] = {}
    for dv in ("rt", "residual_rt"):
        if dv not in reading.columns or reading[dv].isna().all():
            continue
        table = region_condition_means(reading, dv=dv)
        table.to_csv(output_dir / f"region_condition_means_{dv}.csv", index=False, encoding="utf-8-sig")
        plot_region_profile(table, output_dir / f"region_profile_{dv}.png")
        results[f"means_{dv}"] = table
        if verbose:
            print(f"\n  {dv} by region x condition")
            print(table.to_string(index=False, float_format=lambda v: f"{v:.1f}"))

    if questions is None:
        questions = load_question_trials(trial_type=None)
    answered = questions[questions["trial_type"].isin(["experimental", "filler"])]
    acc = accuracy_by_condition(answered)
    acc.to_csv(output_dir / "accuracy_by_condition.csv", index=False, encoding="utf-8-sig")
    results["accuracy"] = acc
    if verbose:
        print("\n  Comprehension accuracy")
        print(acc.to_string(index=False, float_format=lambda v: f"{v:.3f}"))
        print(f"\n  [OK] saved to {output_dir}")

    return results
