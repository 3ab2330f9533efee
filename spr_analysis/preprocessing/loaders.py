"""
Raw Ibex result loaders.

Ibex Farm writes one comma-separated line per recorded event with no header;
``#`` lines describe the columns. The first seven columns are common to every
controller, the rest depend on the controller that produced the line:

    DashedSentence: word number, word, reading time, newline?, sentence
    Question:       question, answer, whether correct, time taken to answer
    Form:           field name, field value

Exported tables that already carry a header row are accepted too; their
columns are renamed through ``COLUMN_ALIASES``.
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import Dict, Iterable, Optional
from urllib.parse import unquote

import pandas as pd

from .constants import (
    RAW_DIR,
    ITEMS_PATH,
    IBEX_COMMON_COLUMNS,
    IBEX_CONTROLLER_COLUMNS,
    READING_CONTROLLERS,
    QUESTION_CONTROLLERS,
    FORM_CONTROLLERS,
    COLUMN_ALIASES,
    PARTICIPANT_FIELDS,
)
from .core import (
    rename_columns,
    ensure_participant_id,
    null_to_na,
    coerce_bool,
    coerce_numeric,
)


N_EXTRA_FIELDS = max(len(cols) for cols in IBEX_CONTROLLER_COLUMNS.values())
EXTRA_COLUMNS = [f"extra_{i}" for i in range(N_EXTRA_FIELDS)]
RAW_PATTERNS = ("*.txt", "*.csv")


def _first_data_line(path: Path) -> Optional[str]:
    with open(path, encoding="utf-8-sig") as fh:
        for line in fh:
            stripped = line.strip()
            if stripped and not stripped.startswith("#"):
                return stripped
    return None


def _field_counts(path: Path) -> list:
    counts = []
    with open(path, encoding="utf-8-sig") as fh:
        for line in fh:
            data = line.split("#", 1)[0].rstrip("\r\n")
            if data.strip():
                counts.append(len(data.split(",")))
    return counts


def _has_header(line: str) -> bool:
    tokens = {t.strip().strip('"') for t in line.split(",")}
    header_names = COLUMN_ALIASES["controller"] | COLUMN_ALIASES["participant_id"] | COLUMN_ALIASES["md5"]
    return bool(tokens & header_names)


def read_ibex_results(path: Path | str) -> pd.DataFrame:
    """
    Parse one Ibex results file into a long frame.

    Comment lines are skipped, controller fields are padded and long rows
    truncated. Rows with fewer than the seven common fields, or with an empty
    controller/item/type, are dropped with a warning. ``NULL`` is a valid group.
    A ``row_order`` column preserves the file order (used for trial indexing).
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Results file not found: {path}")

    first = _first_data_line(path)
    if first is None:
        return pd.DataFrame(columns=IBEX_COMMON_COLUMNS + ["row_order", "source_file"])

    if _has_header(first):
        df = pd.read_csv(path, comment="#", dtype=str, keep_default_na=False, encoding="utf-8-sig")
        df = rename_columns(df)
        # exported files occasionally repeat the header mid-file
        if "controller" in df.columns:
            df = df[~df["controller"].isin(COLUMN_ALIASES["controller"])]
    else:
        n_cols = len(IBEX_COMMON_COLUMNS) + N_EXTRA_FIELDS
        df = pd.read_csv(
            path,
            header=None,
            names=IBEX_COMMON_COLUMNS + EXTRA_COLUMNS,
            comment="#",
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            index_col=False,
            engine="python",
            on_bad_lines=lambda fields: fields[:n_cols],
            encoding="utf-8-sig",
        )
        counts = _field_counts(path)
        if len(counts) == len(df):
            short = pd.Series(counts, index=df.index) < len(IBEX_COMMON_COLUMNS)
            if short.any():
                warnings.warn(
                    f"{path.name}: dropped {int(short.sum())} rows with fewer than "
                    f"{len(IBEX_COMMON_COLUMNS)} fields.",
                    UserWarning,
                )
                df = df[~short]

    df = df.apply(null_to_na)
    required = [c for c in ("controller", "item", "type") if c in df.columns]
    incomplete = df[required].isna().any(axis=1) if required else pd.Series(False, index=df.index)
    if incomplete.any():
        warnings.warn(
            f"{path.name}: dropped {int(incomplete.sum())} rows missing {required}.",
            UserWarning,
        )
        df = df[~incomplete]

    df = df.reset_index(drop=True)
    df["row_order"] = range(len(df))
    df["source_file"] = path.name
    return df


def load_raw_results(
    raw_dir: Optional[Path] = None,
    paths: Optional[Iterable[Path | str]] = None,
    verbose: bool = False,
) -> pd.DataFrame:
    """Load and concatenate every results file in ``raw_dir`` (or the given paths)."""
    if paths is None:
        if raw_dir is None:
            raw_dir = RAW_DIR
        raw_dir = Path(raw_dir)
        if not raw_dir.exists():
            raise FileNotFoundError(f"Raw data directory not found: {raw_dir}")
        paths = sorted(p for pattern in RAW_PATTERNS for p in raw_dir.glob(pattern))
    paths = [Path(p) for p in paths]
    if not paths:
        raise FileNotFoundError(f"No results files ({', '.join(RAW_PATTERNS)}) in {raw_dir}")

    frames = []
    offset = 0
    for path in paths:
        df = read_ibex_results(path)
        df["row_order"] = df["row_order"] + offset
        offset += len(df)
        frames.append(df)
        if verbose:
            print(f"  [OK] {path.name}: {len(df)} rows")

    combined = pd.concat(frames, ignore_index=True, sort=False)
    combined = ensure_participant_id(combined)
    return coerce_numeric(combined, ["item", "element"])


def _controller_frame(df: pd.DataFrame, controllers: set, columns: list[str]) -> pd.DataFrame:
    if "controller" in df.columns:
        frame = df[df["controller"].isin(controllers)].copy()
    else:
        frame = df.copy()
    if EXTRA_COLUMNS[0] in frame.columns:
        frame = frame.rename(columns=dict(zip(EXTRA_COLUMNS, columns)))
        frame = frame.drop(columns=[c for c in EXTRA_COLUMNS if c in frame.columns])
    return frame.reset_index(drop=True)


def split_controllers(df: pd.DataFrame) -> Dict[str, pd.DataFrame]:
    """
    Split a long Ibex frame into reading, question and form frames.

    Returns
    -------
    dict
        'reading'   : word-level self-paced reading rows
        'questions' : comprehension question rows
        'forms'     : demographic form rows
    """
    has_controller = "controller" in df.columns
    if not has_controller and "rt" not in df.columns:
        raise KeyError("Results frame has neither a controller nor an rt column.")

    reading = _controller_frame(df, READING_CONTROLLERS, IBEX_CONTROLLER_COLUMNS["DashedSentence"])
    reading = coerce_numeric(reading, ["word_number", "rt"])
    if "word" in reading.columns:
        reading["word"] = reading["word"].map(lambda w: unquote(w) if isinstance(w, str) else w)

    if has_controller:
        questions = _controller_frame(df, QUESTION_CONTROLLERS, IBEX_CONTROLLER_COLUMNS["Question"])
        forms = _controller_frame(df, FORM_CONTROLLERS, IBEX_CONTROLLER_COLUMNS["Form"])
    else:
        questions = pd.DataFrame(columns=["participant_id", "item", "type"])
        forms = pd.DataFrame(columns=["participant_id", "field", "value"])

    questions = coerce_numeric(questions, ["answer_rt"])
    if "question_correct" in questions.columns:
        questions["question_correct"] = coerce_bool(questions["question_correct"])
    else:
        questions["question_correct"] = pd.Series(pd.NA, index=questions.index, dtype="boolean")

    return {"reading": reading, "questions": questions, "forms": forms}


def load_participant_info(
    forms: pd.DataFrame,
    participant_ids: Optional[Iterable[str]] = None,
) -> pd.DataFrame:
    """One row per participant from Form rows (last answer wins)."""
    if forms.empty or not {"field", "value"}.issubset(forms.columns):
        info = pd.DataFrame({"participant_id": pd.Series(dtype=object)})
    else:
        forms = forms.dropna(subset=["field"]).copy()
        forms["field"] = forms["field"].astype(str).str.strip().str.lower()
        info = (
            forms.drop_duplicates(subset=["participant_id", "field"], keep="last")
            .pivot(index="participant_id", columns="field", values="value")
            .reset_index()
        )
        info.columns.name = None

    if participant_ids is not None:
        ids = pd.DataFrame({"participant_id": sorted(set(participant_ids))})
        info = ids.merge(info, on="participant_id", how="left")

    for col in PARTICIPANT_FIELDS:
        if col not in info.columns:
            info[col] = pd.NA
    info = coerce_numeric(info, ["age"])
    return info


def load_items(path: Optional[Path | str] = None) -> pd.DataFrame:
    """
    Load the item table (item, condition, critical_word).

    ``critical_word`` is the 1-based word number of the critical region (the
    verb, for agreement items). ``condition`` is optional when the critical
    word does not move across conditions.
    """
    path = Path(path) if path is not None else ITEMS_PATH
    if not path.exists():
        raise FileNotFoundError(f"Item table not found: {path}")

    items = pd.read_csv(path, encoding="utf-8-sig")
    items = rename_columns(items, {
        "item": COLUMN_ALIASES["item"],
        "condition": {"condition", "Condition", "cond"},
        "critical_word": {"critical_word", "critical_position", "critical", "critical_word_number"},
    })
    missing = [c for c in ("item", "critical_word") if c not in items.columns]
    if missing:
        raise KeyError(f"Item table missing columns: {missing}")

    items = coerce_numeric(items, ["item", "critical_word"])
    if "condition" in items.columns:
        items["condition"] = items["condition"].astype(str).str.strip().str.lower()
    return items.dropna(subset=["item", "critical_word"]).reset_index(drop=True)
