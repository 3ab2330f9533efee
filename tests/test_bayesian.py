"""
Tests for the Bayesian mixed-effects suite (analysis/bayesian_suite.py).
"""
from __future__ import annotations

import arviz as az
import numpy as np
import pandas as pd
import pytest

from spr_analysis.analysis import bayesian_suite
from spr_analysis.analysis.bayesian_suite import FitConfig, PriorConfig


TERMS = ["c_gram", "c_attr", "c_gram_x_attr"]


@pytest.fixture(scope="module")
def model_data():
    rng = np.random.default_rng(11)
    rows = []
    for p in range(8):
        for item in range(1, 9):
            gram = 0.5 if item % 2 else -0.5
            attr = 0.5 if (item + p) % 2 else -0.5
            log_rt = 6.0 + 0.08 * gram + rng.normal(0.0, 0.1)
            rows.append({
                "participant_id": f"p{p}",
                "item": item,
                "c_gram": gram,
                "c_attr": attr,
                "c_gram_x_attr": gram * attr,
                "log_rt": log_rt,
                "correct": int(rng.random() < 0.9),
            })
    return pd.DataFrame(rows)


def _posterior(draws_by_term, seed=3):
    rng = np.random.default_rng(seed)
    beta = np.stack([rng.normal(mu, sd, size=(2, 1000)) for mu, sd in draws_by_term.values()], axis=-1)
    return az.from_dict(
        posterior={"beta": beta},
        coords={"term": list(draws_by_term)},
        dims={"beta": ["term"]},
    )


def test_build_lmm_model_structure(model_data):
    model = bayesian_suite.build_lmm_model(model_data, "log_rt", TERMS)

    assert list(model.coords["term"]) == TERMS
    assert list(model.coords["effect"]) == ["Intercept"] + TERMS
    assert len(model.coords["participant"]) == 8
    assert len(model.coords["item"]) == 8
    names = {v.name for v in model.free_RVs}
    assert {"intercept", "beta", "sd_participant", "z_participant", "sd_item", "z_item", "sigma"} <= names
    assert "log_rt_obs" in {v.name for v in model.observed_RVs}


def test_build_lmm_model_intercepts_only(model_data):
    model = bayesian_suite.build_lmm_model(model_data, "log_rt", TERMS, random_slopes=False)
    assert list(model.coords["effect"]) == ["Intercept"]


def test_build_logistic_model(model_data):
    model = bayesian_suite.build_logistic_model(model_data, "correct", TERMS)
    assert "correct_obs" in {v.name for v in model.observed_RVs}
    assert "sigma" not in {v.name for v in model.free_RVs}


def test_hypothesis_test_credible_effect():
    idata = _posterior({"c_gram": (0.08, 0.01), "c_attr": (0.0, 0.003)})
    result = bayesian_suite.hypothesis_test(idata, "c_gram", rope=(-0.02, 0.02), prior_sigma=0.2)

    assert result["prob_positive"] > 0.99
    assert result["hdi_low"] > 0.02
    assert result["p_in_rope"] < 0.01
    assert result["bf01"] < 1 / 3
    assert result["conclusion"].startswith("credible effect")


def test_hypothesis_test_null_effect():
    idata = _posterior({"c_gram": (0.08, 0.01), "c_attr": (0.0, 0.003)})
    result = bayesian_suite.hypothesis_test(idata, "c_attr", rope=(-0.02, 0.02), prior_sigma=0.2)

    assert 0.3 < result["prob_positive"] < 0.7
    assert result["p_in_rope"] > 0.99
    assert result["bf01"] > 3
    assert result["conclusion"].startswith("practically equivalent")
    assert result["hdi_low"] < result["mean"] < result["hdi_high"]


def test_hypothesis_test_rejects_bad_rope():
    idata = _posterior({"c_gram": (0.0, 0.01)})
    with pytest.raises(ValueError):
        bayesian_suite.hypothesis_test(idata, "c_gram", rope=(0.1, -0.1))


def test_posterior_samples_requires_term_coordinate():
    idata = az.from_dict(posterior={"beta": np.zeros((1, 10, 2))})
    with pytest.raises(KeyError):
        bayesian_suite.posterior_samples(idata, "c_gram")


def test_savage_dickey_degenerate_samples():
    assert np.isnan(bayesian_suite.savage_dickey_bf01(np.zeros(100), prior_sigma=0.2))


def test_savage_dickey_matches_prior_when_posterior_equals_prior():
    samples = np.random.default_rng(5).normal(0.0, 0.2, 20000)
    assert bayesian_suite.savage_dickey_bf01(samples, prior_sigma=0.2) == pytest.approx(1.0, abs=0.1)


def test_prior_defaults():
    assert bayesian_suite.LOG_RT_PRIORS.intercept_mu == 6.0
    assert bayesian_suite.ACCURACY_PRIORS.beta_sigma > bayesian_suite.LOG_RT_PRIORS.beta_sigma
    assert PriorConfig().lkj_eta > 0


@pytest.mark.slow
def test_rt_critical_end_to_end(model_data, tmp_path):
    data = model_data.assign(region="critical", trial_type="experimental")
    cfg = FitConfig(draws=100, tune=100, chains=1, cores=1, progressbar=False)
    tests = bayesian_suite.analyze_rt_critical(
        verbose=False,
        data=data,
        output_dir=tmp_path,
        cfg=cfg,
        random_slopes=False,
        save_trace=False,
    )
    assert tests["term"].tolist() == TERMS
    assert tests[["mean", "hdi_low", "hdi_high", "prob_positive", "p_in_rope"]].notna().all().all()
    assert (tmp_path / "rt_critical_summary.csv").exists()
    assert (tmp_path / "rt_critical_hypotheses.csv").exists()


def test_run_unknown_analysis():
    with pytest.raises(ValueError, match="Unknown analysis"):
        bayesian_suite.run(analysis="nope", verbose=False)


def test_registry():
    assert set(bayesian_suite.ANALYSES) == {"rt_critical", "rt_spillover", "accuracy"}
