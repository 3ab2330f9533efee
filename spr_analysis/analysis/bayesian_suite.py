"""
Bayesian Mixed-Effects Suite
============================

Hierarchical Bayesian models (PyMC) for reading times and comprehension
accuracy with crossed participant and item random effects.

Models:
- log RT ~ c_gram + c_attr + c_gram_x_attr
          + (1 + contrasts | participant) + (1 + contrasts | item)
- correct ~ same structure, Bernoulli likelihood on the logit scale

Random effects are non-centered (z * sd). Each contrast is evaluated with
the posterior probability of a positive effect, a ROPE around zero, the 95%
HDI and a Savage-Dickey Bayes factor against the point null.

Analyses:
---------
1. rt_critical:  log RT at the critical word
2. rt_spillover: log RT at the spillover word
3. accuracy:     comprehension accuracy (logistic)

Usage:
    python -m spr_analysis.analysis.bayesian_suite
    python -m spr_analysis.analysis.bayesian_suite --analysis rt_critical
    python -m spr_analysis.analysis.bayesian_suite --list
"""

from __future__ import annotations

import sys
if sys.platform.startswith("win") and hasattr(sys.stdout, "reconfigure"):
    sys.stdout.reconfigure(encoding='utf-8')

import argparse
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, Tuple

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm
from scipy import stats

from spr_analysis.preprocessing import DEFAULT_DESIGN, ExperimentDesign
from ._utils import (
    get_output_dir,
    prepare_model_data,
    load_region_data,
    load_accuracy_data,
    print_section_header,
)


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class FitConfig:
    draws: int = 2000
    tune: int = 2000
    chains: int = 4
    target_accept: float = 0.95
    random_seed: int = 42
    cores: Optional[int] = None
    progressbar: bool = True


@dataclass
class PriorConfig:
    """
    Prior scales.

    The defaults are for log RT in milliseconds: an intercept near
    exp(6) ~ 400 ms and contrast effects of at most a few tens of percent.
    """
    intercept_mu: float = 6.0
    intercept_sigma: float = 1.5
    beta_sigma: float = 0.2
    sd_sigma: float = 0.5
    sigma_sigma: float = 1.0
    lkj_eta: float = 2.0  # reserved for correlated random effects


LOG_RT_PRIORS = PriorConfig()
ACCURACY_PRIORS = PriorConfig(intercept_mu=1.5, intercept_sigma=1.5, beta_sigma=1.0, sd_sigma=1.0)

LOG_RT_ROPE = (-0.02, 0.02)
ACCURACY_ROPE = (-0.18, 0.18)


# =============================================================================
# ANALYSIS REGISTRY
# =============================================================================

@dataclass
class AnalysisSpec:
    """Specification for an analysis."""
    name: str
    description: str
    function: Callable


ANALYSES: Dict[str, AnalysisSpec] = {}


def register_analysis(name: str, description: str):
    """Decorator to register an analysis function."""
    def decorator(func: Callable):
        ANALYSES[name] = AnalysisSpec(
            name=name,
            description=description,
            function=func
        )
        return func
    return decorator


# =============================================================================
# MODELS
# =============================================================================

def _linear_predictor(
    df: pd.DataFrame,
    predictors: Sequence[str],
    priors: PriorConfig,
    random_slopes: bool,
):
    """Fixed effects plus crossed non-centered random effects; call inside a model context."""
    predictors = list(predictors)
    X = df[predictors].to_numpy(dtype=float)
    pid_idx, participants = pd.factorize(df["participant_id"].astype(str))
    item_idx, items = pd.factorize(df["item"])

    effects = ["Intercept"] + (predictors if random_slopes else [])
    X_re = np.column_stack([np.ones(len(df))] + ([X] if random_slopes else []))

    model = pm.modelcontext(None)
    model.add_coord("term", predictors)
    model.add_coord("effect", effects)
    model.add_coord("participant", [str(p) for p in participants])
    model.add_coord("item", [str(i) for i in items])

    intercept = pm.Normal("intercept", mu=priors.intercept_mu, sigma=priors.intercept_sigma)
    beta = pm.Normal("beta", mu=0.0, sigma=priors.beta_sigma, dims="term")

    sd_participant = pm.HalfNormal("sd_participant", sigma=priors.sd_sigma, dims="effect")
    z_participant = pm.Normal("z_participant", 0.0, 1.0, dims=("participant", "effect"))
    u_participant = pm.Deterministic(
        "u_participant", z_participant * sd_participant, dims=("participant", "effect")
    )

    sd_item = pm.HalfNormal("sd_item", sigma=priors.sd_sigma, dims="effect")
    z_item = pm.Normal("z_item", 0.0, 1.0, dims=("item", "effect"))
    u_item = pm.Deterministic("u_item", z_item * sd_item, dims=("item", "effect"))

    mu = (
        intercept
        + pm.math.dot(X, beta)
        + (u_participant[pid_idx] * X_re).sum(axis=1)
        + (u_item[item_idx] * X_re).sum(axis=1)
    )
    return mu


def build_lmm_model(
    df: pd.DataFrame,
    dv: str,
    predictors: Sequence[str],
    priors: PriorConfig = LOG_RT_PRIORS,
    random_slopes: bool = True,
) -> pm.Model:
    """Gaussian mixed model for a continuous DV (log RT)."""
    with pm.Model() as model:
        mu = _linear_predictor(df, predictors, priors, random_slopes)
        sigma = pm.HalfNormal("sigma", sigma=priors.sigma_sigma)
        pm.Normal(f"{dv}_obs", mu=mu, sigma=sigma, observed=df[dv].to_numpy(dtype=float))
    return model


def build_logistic_model(
    df: pd.DataFrame,
    dv: str,
    predictors: Sequence[str],
    priors: PriorConfig = ACCURACY_PRIORS,
    random_slopes: bool = True,
) -> pm.Model:
    """Logistic mixed model for a binary DV (question accuracy)."""
    with pm.Model() as model:
        logit_p = _linear_predictor(df, predictors, priors, random_slopes)
        pm.Bernoulli(f"{dv}_obs", logit_p=logit_p, observed=df[dv].to_numpy(dtype=int))
    return model


def fit_model(model: pm.Model, cfg: Optional[FitConfig] = None) -> az.InferenceData:
    cfg = cfg or FitConfig()
    with model:
        idata = pm.sample(
            draws=cfg.draws,
            tune=cfg.tune,
            chains=cfg.chains,
            cores=cfg.cores,
            target_accept=cfg.target_accept,
            init="jitter+adapt_diag_grad",
            random_seed=cfg.random_seed,
            return_inferencedata=True,
            progressbar=cfg.progressbar,
        )
    return idata


def summarize_posterior(
    idata: az.InferenceData,
    var_names: Sequence[str] = ("intercept", "beta", "sd_participant", "sd_item"),
) -> pd.DataFrame:
    present = [v for v in var_names if v in idata.posterior]
    summary = az.summary(idata, var_names=present, hdi_prob=0.95, round_to=4)
    return summary.reset_index().rename(columns={"index": "parameter"})


# =============================================================================
# HYPOTHESIS TESTS
# =============================================================================

def posterior_samples(idata: az.InferenceData, term: str) -> np.ndarray:
    """Flattened posterior draws of one fixed effect."""
    beta = idata.posterior["beta"]
    if "term" in beta.dims:
        return beta.sel(term=term).values.reshape(-1)
    raise KeyError(f"Posterior has no 'term' coordinate for {term}")


def savage_dickey_bf01(samples: np.ndarray, prior_sigma: float) -> float:
    """
    Savage-Dickey density ratio for H0: beta = 0 under a Normal(0, prior_sigma) prior.

    BF01 > 1 favours the null.
    """
    samples = np.asarray(samples, dtype=float)
    samples = samples[np.isfinite(samples)]
    if samples.size < 2 or np.std(samples) == 0:
        return np.nan
    posterior_at_zero = float(stats.gaussian_kde(samples)(0.0)[0])
    prior_at_zero = float(stats.norm.pdf(0.0, loc=0.0, scale=prior_sigma))
    return posterior_at_zero / prior_at_zero


def _interpret(hdi_low: float, hdi_high: float, rope: Tuple[float, float], bf01: float) -> str:
    if hdi_low >= rope[0] and hdi_high <= rope[1]:
        decision = "practically equivalent to zero (HDI inside ROPE)"
    elif hdi_low > rope[1] or hdi_high < rope[0]:
        decision = "credible effect (HDI outside ROPE)"
    else:
        decision = "undecided (HDI overlaps ROPE)"
    if np.isfinite(bf01):
        if bf01 > 3:
            decision += "; BF01 supports the null"
        elif bf01 < 1 / 3:
            decision += "; BF10 supports an effect"
    return decision


def hypothesis_test(
    idata: az.InferenceData,
    term: str,
    rope: Tuple[float, float] = LOG_RT_ROPE,
    prior_sigma: float = LOG_RT_PRIORS.beta_sigma,
    hdi_prob: float = 0.95,
) -> Dict[str, object]:
    if rope[0] >= rope[1]:
        raise ValueError(f"ROPE lower bound must be below upper bound, got {rope}")
    samples = posterior_samples(idata, term)
    hdi_low, hdi_high = (float(v) for v in az.hdi(samples, hdi_prob=hdi_prob))
    bf01 = savage_dickey_bf01(samples, prior_sigma)
    return {
        "term": term,
        "mean": float(np.mean(samples)),
        "sd": float(np.std(samples, ddof=1)),
        "hdi_low": hdi_low,
        "hdi_high": hdi_high,
        "prob_positive": float(np.mean(samples > 0)),
        "rope_low": rope[0],
        "rope_high": rope[1],
        "p_in_rope": float(np.mean((samples >= rope[0]) & (samples <= rope[1]))),
        "p_below_rope": float(np.mean(samples < rope[0])),
        "p_above_rope": float(np.mean(samples > rope[1])),
        "bf01": bf01,
        "bf10": 1.0 / bf01 if bf01 and np.isfinite(bf01) else np.nan,
        "conclusion": _interpret(hdi_low, hdi_high, rope, bf01),
    }


# =============================================================================
# ANALYSES
# =============================================================================

def _fit_and_report(
    name: str,
    df: pd.DataFrame,
    dv: str,
    predictors: Sequence[str],
    logistic: bool,
    cfg: FitConfig,
    priors: PriorConfig,
    rope: Tuple[float, float],
    random_slopes: bool,
    output_dir: Optional[Path],
    save_trace: bool,
    verbose: bool,
) -> pd.DataFrame:
    if df.empty or df["participant_id"].nunique() < 2:
        raise ValueError(f"{name}: insufficient data for a hierarchical model")

    builder = build_logistic_model if logistic else build_lmm_model
    model = builder(df, dv, predictors, priors=priors, random_slopes=random_slopes)
    idata = fit_model(model, cfg)

    summary = summarize_posterior(idata)
    tests = pd.DataFrame([
        hypothesis_test(idata, term, rope=rope, prior_sigma=priors.beta_sigma)
        for term in predictors
    ])
    tests.insert(0, "model", name)
    tests["n_obs"] = len(df)
    tests["n_participants"] = df["participant_id"].nunique()
    tests["n_items"] = df["item"].nunique()
    rhat = summary["r_hat"].max() if "r_hat" in summary.columns else np.nan
    tests["max_rhat"] = rhat

    if output_dir is None:
        output_dir = get_output_dir("bayesian")
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    summary.to_csv(output_dir / f"{name}_summary.csv", index=False, encoding="utf-8-sig")
    tests.to_csv(output_dir / f"{name}_hypotheses.csv", index=False, encoding="utf-8-sig")
    if save_trace:
        idata.to_netcdf(str(output_dir / f"{name}_trace.nc"))

    if verbose:
        print(f"\n  N obs={len(df)}, participants={df['participant_id'].nunique()}, "
              f"items={df['item'].nunique()}, max R-hat={rhat:.3f}")
        if np.isfinite(rhat) and rhat > 1.01:
            print("  [WARN] R-hat > 1.01; consider more draws or tuning")
        for _, row in tests.iterrows():
            print(
                f"    {row['term']:<18} mean={row['mean']:+.4f}  "
                f"95% HDI [{row['hdi_low']:+.4f}, {row['hdi_high']:+.4f}]  "
                f"P(>0)={row['prob_positive']:.3f}  P(ROPE)={row['p_in_rope']:.3f}  "
                f"BF01={row['bf01']:.2f}"
            )
            print(f"      -> {row['conclusion']}")
    return tests


def _rt_region_analysis(
    name: str,
    region: str,
    verbose: bool,
    data: Optional[pd.DataFrame],
    output_dir: Optional[Path],
    design: ExperimentDesign,
    cfg: Optional[FitConfig],
    random_slopes: bool,
    save_trace: bool,
) -> pd.DataFrame:
    if verbose:
        print_section_header(f"ANALYSIS: BAYESIAN LOG RT ({region.upper()})")
    predictors = design.contrast_terms()
    df = prepare_model_data(load_region_data(region=region, data=data), "log_rt", predictors)
    return _fit_and_report(
        name, df, "log_rt", predictors, False, cfg or FitConfig(), LOG_RT_PRIORS,
        LOG_RT_ROPE, random_slopes, output_dir, save_trace, verbose,
    )


@register_analysis(
    name="rt_critical",
    description="Bayesian log RT model at the critical word"
)
def analyze_rt_critical(
    verbose: bool = True,
    data: Optional[pd.DataFrame] = None,
    output_dir: Optional[Path] = None,
    design: ExperimentDesign = DEFAULT_DESIGN,
    cfg: Optional[FitConfig] = None,
    random_slopes: bool = True,
    save_trace: bool = True,
) -> pd.DataFrame:
    return _rt_region_analysis(
        "rt_critical", "critical", verbose, data, output_dir, design, cfg, random_slopes, save_trace
    )


@register_analysis(
    name="rt_spillover",
    description="Bayesian log RT model at the spillover word"
)
def analyze_rt_spillover(
    verbose: bool = True,
    data: Optional[pd.DataFrame] = None,
    output_dir: Optional[Path] = None,
    design: ExperimentDesign = DEFAULT_DESIGN,
    cfg: Optional[FitConfig] = None,
    random_slopes: bool = True,
    save_trace: bool = True,
) -> pd.DataFrame:
    return _rt_region_analysis(
        "rt_spillover", "spillover", verbose, data, output_dir, design, cfg, random_slopes, save_trace
    )


@register_analysis(
    name="accuracy",
    description="Bayesian logistic model of comprehension accuracy"
)
def analyze_accuracy(
    verbose: bool = True,
    data: Optional[pd.DataFrame] = None,
    output_dir: Optional[Path] = None,
    design: ExperimentDesign = DEFAULT_DESIGN,
    cfg: Optional[FitConfig] = None,
    random_slopes: bool = True,
    save_trace: bool = True,
) -> pd.DataFrame:
    if verbose:
        print_section_header("ANALYSIS: BAYESIAN COMPREHENSION ACCURACY")
    predictors = design.contrast_terms()
    df = prepare_model_data(load_accuracy_data(data), "correct", predictors)
    return _fit_and_report(
        "accuracy", df, "correct", predictors, True, cfg or FitConfig(), ACCURACY_PRIORS,
        ACCURACY_ROPE, random_slopes, output_dir, save_trace, verbose,
    )


# =============================================================================
# RUNNER
# =============================================================================

def run(analysis: Optional[str] = None, verbose: bool = True, **kwargs) -> Dict[str, pd.DataFrame]:
    """Run Bayesian analyses."""
    if verbose:
        print("=" * 70)
        print("BAYESIAN MIXED-EFFECTS SUITE")
        print("=" * 70)

    results = {}

    if analysis:
        if analysis not in ANALYSES:
            raise ValueError(f"Unknown analysis: {analysis}. Available: {list(ANALYSES.keys())}")
        spec = ANALYSES[analysis]
        if verbose:
            print(f"\nRunning: {spec.name}")
        results[analysis] = spec.function(verbose=verbose, **kwargs)
    else:
        for name, spec in ANALYSES.items():
            try:
                if verbose:
                    print(f"\n--- Running: {spec.description} ---")
                results[name] = spec.function(verbose=verbose, **kwargs)
            except Exception as e:
                print(f"  ERROR in {name}: {e}")

    if verbose:
        print("\n" + "=" * 70)
        print("BAYESIAN MIXED-EFFECTS SUITE COMPLETE")
        print("=" * 70)

    return results


def list_analyses():
    """List available analyses."""
    print("\nAvailable Bayesian Analyses:")
    print("-" * 60)
    for name, spec in ANALYSES.items():
        print(f"  {name}")
        print(f"    {spec.description}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Bayesian Mixed-Effects Suite")
    parser.add_argument('--analysis', '-a', type=str, default=None,
                        help="Specific analysis to run")
    parser.add_argument('--list', '-l', action='store_true',
                        help="List available analyses")
    parser.add_argument('--quiet', '-q', action='store_true',
                        help="Suppress output")
    parser.add_argument('--draws', type=int, default=FitConfig.draws)
    parser.add_argument('--chains', type=int, default=FitConfig.chains)
    args = parser.parse_args()

    if args.list:
        list_analyses()
    else:
        cfg = replace(FitConfig(), draws=args.draws, tune=args.draws, chains=args.chains)
        run(analysis=args.analysis, verbose=not args.quiet, cfg=cfg)
