"""
Core helpers for preprocessing.
"""

from __future__ import annotations

import hashlib
import warnings
from typing import Dict, Iterable, Optional, Set

import numpy as np
import pandas as pd

from .constants import COLUMN_ALIASES, IBEX_NULL_TOKENS


def rename_columns(df: pd.DataFrame, aliases: Optional[Dict[str, Set[str]]] = None) -> pd.DataFrame:
    """
    Rename known column aliases to their canonical names.

    The canonical column wins when present; otherwise the first alias found
    (in column order) is renamed and any further aliases are dropped.
    """
    if aliases is None:
        aliases = COLUMN_ALIASES

    rename: Dict[str, str] = {}
    drop: list[str] = []
    for canonical, names in aliases.items():
        matches = [c for c in df.columns if c == canonical or c in names]
        if not matches:
            continue
        keep = canonical if canonical in matches else matches[0]
        if keep != canonical:
            rename[keep] = canonical
        drop.extend(c for c in matches if c != keep)

    drop = [c for c in dict.fromkeys(drop) if c not in rename]
    if drop:
        df = df.drop(columns=drop)
    return df.rename(columns=rename)


def participant_hash(reception_time: object, md5: object) -> Optional[str]:
    if pd.isna(md5):
        return None
    key = f"{'' if pd.isna(reception_time) else reception_time}_{md5}"
    return "p" + hashlib.md5(key.encode()).hexdigest()[:8]


def ensure_participant_id(df: pd.DataFrame, warn_threshold: float = 1.0) -> pd.DataFrame:
    """
    Ensure there is exactly one 'participant_id' column.

    Ibex identifies a session by the time the results were received plus the
    MD5 hash of the participant's IP address; both are combined into a short
    stable id when no explicit participant column exists.

    Parameters
    ----------
    df : pd.DataFrame
        Input dataframe
    warn_threshold : float
        Warn if more than this percentage of participant_id values are NaN (default: 1%)
    """
    canonical = "participant_id"
    if canonical not in df.columns:
        df = rename_columns(df, {canonical: COLUMN_ALIASES[canonical]})
    if canonical not in df.columns:
        if "md5" not in df.columns:
            raise KeyError("No participant id column found in dataframe.")
        reception = df["reception_time"] if "reception_time" in df.columns else pd.Series(np.nan, index=df.index)
        df = df.assign(**{canonical: [participant_hash(t, m) for t, m in zip(reception, df["md5"])]})

    missing_count = df[canonical].isna().sum()
    missing_pct = missing_count / len(df) * 100 if len(df) > 0 else 0

    if missing_pct > warn_threshold:
        warnings.warn(
            f"participant_id column has {missing_pct:.1f}% missing values ({missing_count}/{len(df)} rows). "
            "This may cause silent data loss in downstream analyses.",
            UserWarning,
        )

    ids = df[canonical]
    return df.assign(**{canonical: ids.where(ids.isna(), ids.astype(str))})


def null_to_na(series: pd.Series) -> pd.Series:
    if series.dtype != object:
        return series
    stripped = series.map(lambda v: v.strip() if isinstance(v, str) else v)
    return stripped.mask(stripped.isin(IBEX_NULL_TOKENS))


def coerce_bool(series: pd.Series) -> pd.Series:
    """Map 1/0/true/false/yes/no text to a nullable boolean; unknown tokens become NA."""
    if series.dtype == bool:
        return series.astype("boolean")
    text = series.astype("string").str.strip().str.lower()
    mapped = text.map({
        "true": True,
        "false": False,
        "1": True,
        "0": False,
        "1.0": True,
        "0.0": False,
        "yes": True,
        "no": False,
    })
    return mapped.astype("boolean")


def coerce_numeric(df: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
    for col in columns:
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce")
    return df


def zscore_within(df: pd.DataFrame, value_col: str, group_cols: list[str]) -> pd.Series:
    """Within-group z-score (ddof=1); single-observation groups yield NaN."""
    grouped = df.groupby(group_cols, dropna=False)[value_col]
    mean = grouped.transform("mean")
    std = grouped.transform("std")
    return (df[value_col] - mean) / std.replace(0, np.nan)
