"""
End-to-end tests for the SPR dataset build (preprocessing/dataset.py, cli.py).
"""
from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from spr_analysis.preprocessing import (
    SPRQCCriteria,
    build_spr_dataset,
    residualize_rt,
    SPR_RT_MIN,
    SPR_RT_MAX,
    load_reading_trials,
    load_question_trials,
    load_qc_ids,
    get_dataset_info,
)
from spr_analysis.preprocessing.cli import main as preprocess_main
from spr_analysis.preprocessing.constants import (
    PARTICIPANTS_FILE,
    READING_FILE,
    READING_RAW_FILE,
    QUESTIONS_FILE,
    FEATURES_FILE,
    QC_REPORT_FILE,
    QC_IDS_FILE,
)

from conftest import N_PARTICIPANTS


def test_build_returns_all_tables(built_dataset):
    for key in ("participants", "reading", "reading_raw", "questions", "features", "qc", "outlier_report"):
        assert key in built_dataset


def test_low_accuracy_participant_excluded(built_dataset, synthetic_study):
    qc = built_dataset["qc"].set_index("participant_id")
    assert len(qc) == N_PARTICIPANTS
    assert not qc.loc[synthetic_study.low_accuracy_id, "passed"]
    assert qc.loc[synthetic_study.low_accuracy_id, "excluded_reason"].startswith("accuracy<")
    assert qc["passed"].sum() == N_PARTICIPANTS - 1

    valid = set(synthetic_study.participant_ids) - {synthetic_study.low_accuracy_id}
    assert set(built_dataset["reading"]["participant_id"]) == valid
    assert set(built_dataset["questions"]["participant_id"]) == valid
    assert set(built_dataset["participants"]["participant_id"]) == valid
    assert synthetic_study.low_accuracy_id in set(built_dataset["reading_raw"]["participant_id"])


def test_reading_table_is_cleaned(built_dataset):
    reading = built_dataset["reading"]
    assert "practice" not in set(reading["trial_type"])
    assert reading["rt"].between(SPR_RT_MIN, SPR_RT_MAX).all()
    assert reading["residual_rt"].notna().all()
    assert {"precritical", "critical", "spillover", "spillover2"}.issubset(set(reading["region"].dropna()))

    exp = reading[reading["trial_type"] == "experimental"]
    assert exp[["c_gram", "c_attr", "c_gram_x_attr", "c_attr_in_ungrammatical"]].notna().all().all()
    fillers = reading[reading["trial_type"] == "filler"]
    assert fillers["c_gram"].isna().all()

    # participant fields broadcast onto every word
    assert reading["age"].notna().all()
    assert reading["gender"].notna().all()


def test_outlier_report(built_dataset):
    report = built_dataset["outlier_report"].iloc[0]
    assert report["n_below_min"] == 1
    assert report["n_above_max"] == 1
    assert report["n_words_output"] == len(built_dataset["reading"])
    assert 0 < report["pct_lost"] < 10


def test_reading_raw_marks_rt_window(built_dataset):
    raw = built_dataset["reading_raw"]
    flagged = raw[~raw["is_rt_valid"]]
    assert sorted(flagged["rt"].tolist()) == [40, 4000]
    assert len(raw) > len(built_dataset["reading"])
    assert "is_rt_valid" not in built_dataset["reading"].columns


def test_residual_fit_ignores_kept_practice_words(synthetic_study, tmp_path):
    results = build_spr_dataset(
        raw_dir=synthetic_study.raw_dir,
        items_path=synthetic_study.items_path,
        output_dir=tmp_path,
        criteria=SPRQCCriteria(exclude_practice=False),
        save=False,
        verbose=False,
    )
    reading = results["reading"]
    practice = reading["trial_type"] == "practice"
    assert practice.any()

    refit = residualize_rt(reading[["participant_id", "rt", "word_length"]], fit_mask=~practice)
    assert np.allclose(reading["predicted_rt"], refit["predicted_rt"])
    scored_means = reading[~practice].groupby("participant_id")["residual_rt"].mean()
    assert np.allclose(scored_means, 0.0, atol=1e-6)


def test_features_table(built_dataset):
    features = built_dataset["features"]
    assert len(features) == N_PARTICIPANTS - 1
    assert features["accuracy_all"].between(0.9, 1.0).all()
    assert features["mean_residual_rt"].abs().lt(50).all()


def test_outputs_written(built_dataset):
    out = built_dataset["output_dir"]
    for filename in (PARTICIPANTS_FILE, READING_FILE, READING_RAW_FILE, QUESTIONS_FILE,
                     FEATURES_FILE, QC_REPORT_FILE, QC_IDS_FILE):
        assert (out / filename).exists(), filename
    assert len(load_qc_ids(out)) == N_PARTICIPANTS - 1


def test_load_reading_trials_from_outputs(built_dataset):
    critical = load_reading_trials(built_dataset["output_dir"], region="critical")
    assert not critical.empty
    assert (critical["region"] == "critical").all()
    assert (critical["trial_type"] == "experimental").all()
    assert str(critical["question_correct"].dtype) == "boolean"

    everything = load_reading_trials(built_dataset["output_dir"], trial_type=None)
    assert len(everything) == len(built_dataset["reading"])


def test_load_question_trials_from_outputs(built_dataset):
    questions = load_question_trials(built_dataset["output_dir"])
    assert (questions["trial_type"] == "experimental").all()
    assert str(questions["question_correct"].dtype) == "boolean"
    assert {"c_gram", "c_attr"}.issubset(questions.columns)


def test_load_reading_trials_missing_outputs(tmp_path):
    with pytest.raises(FileNotFoundError, match="--build"):
        load_reading_trials(tmp_path)


def test_get_dataset_info_rejects_unknown():
    with pytest.raises(ValueError):
        get_dataset_info("stroop")


def test_cli_build(synthetic_study, tmp_path):
    preprocess_main([
        "--build",
        "--raw-dir", str(synthetic_study.raw_dir),
        "--items", str(synthetic_study.items_path),
        "--output-dir", str(tmp_path),
        "--sd-mode", "winsorize",
        "--quiet",
    ])
    reading = pd.read_csv(tmp_path / READING_FILE)
    assert "rt_winsorized" in reading.columns
    assert (tmp_path / QC_IDS_FILE).exists()


def test_cli_no_save(synthetic_study, tmp_path):
    preprocess_main([
        "--build",
        "--raw-dir", str(synthetic_study.raw_dir),
        "--items", str(synthetic_study.items_path),
        "--output-dir", str(tmp_path / "out"),
        "--no-save",
        "--quiet",
    ])
    assert not (tmp_path / "out").exists()
