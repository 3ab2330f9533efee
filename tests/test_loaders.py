"""
Tests for raw Ibex ingestion (preprocessing/loaders.py).
"""
from __future__ import annotations

import pandas as pd
import pytest

from spr_analysis.preprocessing import (
    read_ibex_results,
    load_raw_results,
    split_controllers,
    load_participant_info,
    load_items,
    rename_columns,
    ensure_participant_id,
    coerce_bool,
)
from spr_analysis.preprocessing.core import participant_hash

from conftest import (
    N_EXPERIMENTAL_ITEMS,
    FILLER_ITEMS,
    N_PARTICIPANTS,
    write_ibex_results,
)


def test_read_ibex_results_skips_comments_and_pads_rows(tmp_path):
    path = write_ibex_results(tmp_path / "results.txt", [0])
    df = read_ibex_results(path)

    assert not df["controller"].astype(str).str.startswith("#").any()
    assert set(df["controller"]) == {"Form", "DashedSentence", "Question"}
    assert df["row_order"].tolist() == list(range(len(df)))
    assert (df["source_file"] == "results.txt").all()
    # Form rows carry only two trailing fields; the rest are padded as missing
    forms = df[df["controller"] == "Form"]
    assert forms["extra_2"].isna().all()


def test_read_ibex_results_drops_incomplete_rows(tmp_path):
    path = tmp_path / "results.txt"
    path.write_text(
        "# header comment\n"
        "1700000000,abc,DashedSentence,1,0,exp-a,0,1,The,350,False,The key\n"
        "1700000000,abc,DashedSentence,1,0,,0,2,key,360,False,The key\n",
        encoding="utf-8",
    )
    with pytest.warns(UserWarning, match="dropped 1 rows"):
        df = read_ibex_results(path)
    assert len(df) == 1


def test_read_ibex_results_drops_rows_without_group_field(tmp_path):
    path = tmp_path / "results.txt"
    path.write_text(
        "# header comment\n"
        "1700000000,abc,DashedSentence,1,0,exp-a,0,1,The,350,False,The key\n"
        "1700000000,abc,DashedSentence,1,0,exp-a\n"
        "1700000000,abc,Form,0,0,intro,NULL,age,23\n",
        encoding="utf-8",
    )
    with pytest.warns(UserWarning, match="dropped 1 rows with fewer than 7 fields"):
        df = read_ibex_results(path)

    assert df["controller"].tolist() == ["DashedSentence", "Form"]
    assert df["extra_2"].iloc[0] == "350"
    assert df["row_order"].tolist() == [0, 1]


def test_read_ibex_results_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_ibex_results(tmp_path / "nope.txt")


def test_read_ibex_results_truncates_long_rows(tmp_path):
    path = tmp_path / "results.txt"
    path.write_text(
        "1700000000,abc,DashedSentence,1,0,exp-a,0,1,The,350,False,The key\n"
        "1700000000,abc,DashedSentence,1,0,exp-a,0,2,key,360,False,The key,extra,fields\n",
        encoding="utf-8",
    )
    df = read_ibex_results(path)
    assert len(df) == 2
    assert df["extra_4"].tolist() == ["The key", "The key"]


def test_read_headered_export(tmp_path):
    path = tmp_path / "export.csv"
    pd.DataFrame({
        "participant": ["s1", "s1", "s1"],
        "Controller": ["DashedSentence"] * 3,
        "Item": [1, 1, 1],
        "element": [0, 0, 0],
        "Label": ["exp-b"] * 3,
        "group": [1, 1, 1],
        "Word number": [1, 2, 3],
        "Word": ["The", "key", "was"],
        "Reading time": [310, 320, "NULL"],
    }).to_csv(path, index=False)

    df = read_ibex_results(path)
    assert {"participant_id", "controller", "item", "type", "word_number", "word", "rt"}.issubset(df.columns)
    assert df["rt"].isna().sum() == 1

    parts = split_controllers(df)
    assert len(parts["reading"]) == 3
    assert parts["questions"].empty
    assert str(parts["questions"]["question_correct"].dtype) == "boolean"


def test_load_raw_results_concatenates_files(synthetic_study):
    raw = load_raw_results(synthetic_study.raw_dir)

    assert raw["row_order"].is_unique
    assert set(raw["source_file"]) == {"results_1.txt", "results_2.txt"}
    assert set(raw["participant_id"]) == set(synthetic_study.participant_ids)
    assert len(set(raw["participant_id"])) == N_PARTICIPANTS
    assert pd.api.types.is_numeric_dtype(raw["item"])


def test_load_raw_results_missing_dir(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_raw_results(tmp_path / "missing")


def test_load_raw_results_empty_dir(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_raw_results(tmp_path)


def test_split_controllers(synthetic_study):
    raw = load_raw_results(synthetic_study.raw_dir)
    parts = split_controllers(raw)
    reading, questions, forms = parts["reading"], parts["questions"], parts["forms"]

    n_trials = N_EXPERIMENTAL_ITEMS + len(FILLER_ITEMS) + 1
    assert len(reading) == N_PARTICIPANTS * n_trials * 8
    assert len(questions) == N_PARTICIPANTS * n_trials
    assert set(forms["field"]) == {"age", "gender"}

    assert pd.api.types.is_numeric_dtype(reading["rt"])
    assert pd.api.types.is_numeric_dtype(reading["word_number"])
    assert not any(c.startswith("extra_") for c in reading.columns)

    assert str(questions["question_correct"].dtype) == "boolean"
    null_rows = questions[questions["participant_id"] == synthetic_study.null_answer_id]
    assert null_rows["question_correct"].isna().sum() == 1


def test_split_controllers_requires_controller_or_rt():
    with pytest.raises(KeyError):
        split_controllers(pd.DataFrame({"participant_id": ["p1"], "item": [1]}))


def test_split_controllers_unquotes_words(tmp_path):
    path = tmp_path / "results.txt"
    path.write_text(
        "1700000000,abc,DashedSentence,1,0,exp-a,0,1,rusty%2C,350,False,x\n",
        encoding="utf-8",
    )
    parts = split_controllers(load_raw_results(paths=[path]))
    assert parts["reading"]["word"].iloc[0] == "rusty,"


def test_load_participant_info(synthetic_study):
    parts = split_controllers(load_raw_results(synthetic_study.raw_dir))
    info = load_participant_info(parts["forms"], participant_ids=synthetic_study.participant_ids)

    assert len(info) == N_PARTICIPANTS
    assert {"age", "gender", "native_language", "handedness", "list"}.issubset(info.columns)
    assert pd.api.types.is_numeric_dtype(info["age"])
    assert info["native_language"].isna().all()
    row = info[info["participant_id"] == synthetic_study.participant_ids[3]].iloc[0]
    assert row["age"] == 23


def test_load_participant_info_without_forms():
    info = load_participant_info(pd.DataFrame(), participant_ids=["p1", "p2"])
    assert info["participant_id"].tolist() == ["p1", "p2"]
    assert info["age"].isna().all()


def test_load_items_aliases(synthetic_study):
    items = load_items(synthetic_study.items_path)
    assert {"item", "condition", "critical_word"}.issubset(items.columns)
    assert (items["critical_word"] == 6).all()
    assert set(items["condition"]) == {"a", "b", "c", "d"}


def test_load_items_missing_column(tmp_path):
    path = tmp_path / "items.csv"
    pd.DataFrame({"item": [1, 2]}).to_csv(path, index=False)
    with pytest.raises(KeyError, match="critical_word"):
        load_items(path)


def test_load_items_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_items(tmp_path / "items.csv")


# ---------------------------------------------------------------------------
# core helpers
# ---------------------------------------------------------------------------

def test_rename_columns_prefers_canonical():
    df = pd.DataFrame({"rt": [1], "RT": [2], "Word": ["a"]})
    out = rename_columns(df)
    assert list(out.columns) == ["rt", "word"]
    assert out["rt"].iloc[0] == 1


def test_ensure_participant_id_from_md5():
    df = pd.DataFrame({"reception_time": ["1", "1", "2"], "md5": ["x", "x", "x"]})
    out = ensure_participant_id(df)
    assert out["participant_id"].nunique() == 2
    assert out["participant_id"].iloc[0] == participant_hash("1", "x")
    assert "participant_id" not in df.columns


def test_ensure_participant_id_missing():
    with pytest.raises(KeyError):
        ensure_participant_id(pd.DataFrame({"rt": [1]}))


def test_ensure_participant_id_warns_on_missing_values():
    df = pd.DataFrame({"participant_id": ["a", None, None]})
    with pytest.warns(UserWarning, match="missing values"):
        ensure_participant_id(df)


def test_coerce_bool():
    out = coerce_bool(pd.Series(["1", "0", "True", "no", None, "maybe"]))
    assert str(out.dtype) == "boolean"
    assert out.tolist()[:4] == [True, False, True, False]
    assert out.isna().tolist()[4:] == [True, True]
