"""
Linear Mixed-Effects Suite
==========================

Frequentist mixed-effects models for the retrieval-interference design.

Reading times are modelled region by region on the log scale with sum-coded
(+/-0.5) contrasts. The random-effects structure starts maximal and is
simplified until the fit converges without warnings:

    1. crossed participant + item intercepts, by-participant slopes
    2. crossed participant + item intercepts
    3. by-participant intercept and slopes
    4. by-participant intercept

Crossed effects use statsmodels' variance-component formulation on a single
group, which does not estimate random-effect correlations.

Analyses:
---------
1. rt_by_region:          log_rt ~ c_gram + c_attr + c_gram_x_attr per region
2. residual_rt_by_region: same fixed effects on length-residualised RT
3. nested_contrasts:      attraction effect within each grammaticality level
4. accuracy_glmm:         comprehension accuracy, Bayesian mixed GLM (VB)

Usage:
    python -m spr_analysis.analysis.lmm_suite
    python -m spr_analysis.analysis.lmm_suite --analysis rt_by_region
    python -m spr_analysis.analysis.lmm_suite --list
"""

from __future__ import annotations

import sys
if sys.platform.startswith("win") and hasattr(sys.stdout, "reconfigure"):
    sys.stdout.reconfigure(encoding='utf-8')

import argparse
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from statsmodels.genmod.bayes_mixed_glm import BinomialBayesMixedGLM
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from spr_analysis.preprocessing import DEFAULT_DESIGN, ExperimentDesign
from ._utils import (
    get_output_dir,
    prepare_model_data,
    load_region_data,
    load_accuracy_data,
    analysis_regions,
    format_pvalue,
    print_section_header,
)


SINGLE_GROUP = "_all"
FIT_METHODS = ("lbfgs", "powell")


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
# RANDOM-EFFECTS LADDER AND FITTING
# =============================================================================

@dataclass
class RandomEffectsSpec:
    """One random-effects structure to try.

    ``groups=None`` fits a single group so that ``vc_formula`` components
    are crossed rather than nested.
    """
    name: str
    groups: Optional[str]
    re_formula: Optional[str] = None
    vc_formula: Optional[Dict[str, str]] = field(default=None)


def build_random_effects_ladder(
    slopes: Sequence[str],
    participant_col: str = "participant_id",
    item_col: str = "item",
) -> List[RandomEffectsSpec]:
    """Random-effects structures from maximal to minimal."""
    crossed = {
        "participant": f"0 + C({participant_col})",
        "item": f"0 + C({item_col})",
    }
    crossed_slopes = dict(crossed)
    for slope in slopes:
        crossed_slopes[f"participant_{slope}"] = f"0 + C({participant_col}):{slope}"

    ladder = []
    if slopes:
        ladder.append(RandomEffectsSpec("crossed_slopes", None, "0", crossed_slopes))
    ladder.append(RandomEffectsSpec("crossed_intercepts", None, "0", crossed))
    if slopes:
        ladder.append(RandomEffectsSpec("participant_slopes", participant_col, "1 + " + " + ".join(slopes)))
    ladder.append(RandomEffectsSpec("participant_intercept", participant_col, "1"))
    return ladder


RANDOM_EFFECTS_LADDER = build_random_effects_ladder(
    [DEFAULT_DESIGN.contrast_column(f) for f in DEFAULT_DESIGN.factors]
)


def _fit_mixedlm(
    formula: str,
    df: pd.DataFrame,
    spec: RandomEffectsSpec,
    method: str,
) -> Tuple[object, List[str]]:
    warning_msgs: List[str] = []
    if spec.groups is None:
        df = df.assign(**{SINGLE_GROUP: 1})
        groups = SINGLE_GROUP
    else:
        groups = spec.groups
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", ConvergenceWarning)
        model = smf.mixedlm(
            formula,
            data=df,
            groups=df[groups],
            re_formula=spec.re_formula,
            vc_formula=spec.vc_formula,
        )
        result = model.fit(reml=False, method=method, maxiter=200)
    for warn in caught:
        if issubclass(warn.category, ConvergenceWarning):
            warning_msgs.append(str(warn.message))
    return result, warning_msgs


@dataclass
class FitOutcome:
    result: object
    structure: str
    method: str
    warnings: List[str]
    note: Optional[str] = None

    @property
    def converged(self) -> bool:
        return bool(getattr(self.result, "converged", False)) and not self.warnings


def fit_with_fallback(
    formula: str,
    df: pd.DataFrame,
    ladder: Sequence[RandomEffectsSpec],
    methods: Sequence[str] = FIT_METHODS,
) -> FitOutcome:
    """
    Walk the ladder until a fit converges without warnings.

    Returns the first clean fit; otherwise the last fit that did not raise,
    with its warnings and the last error message as ``note``.
    """
    last: Optional[FitOutcome] = None
    last_note: Optional[str] = None
    for spec in ladder:
        for method in methods:
            try:
                result, warning_msgs = _fit_mixedlm(formula, df, spec, method)
            except Exception as exc:
                last_note = f"{spec.name}/{method}: {exc}"
                continue
            last = FitOutcome(result, spec.name, method, warning_msgs)
            if last.converged:
                return last
    if last is None:
        raise RuntimeError(f"All MixedLM attempts failed. Last error: {last_note}")
    last.note = last_note
    return last


def extract_terms(result: object, terms: Sequence[str]) -> List[Dict[str, float]]:
    params = getattr(result, "params", pd.Series(dtype=float))
    bse = getattr(result, "bse", pd.Series(dtype=float))
    tvalues = getattr(result, "tvalues", pd.Series(dtype=float))
    pvalues = getattr(result, "pvalues", pd.Series(dtype=float))
    try:
        ci = result.conf_int()
    except Exception:
        ci = pd.DataFrame(columns=[0, 1])
    rows = []
    for term in terms:
        rows.append({
            "term": term,
            "beta": float(params.get(term, np.nan)),
            "se": float(bse.get(term, np.nan)),
            "z": float(tvalues.get(term, np.nan)),
            "p": float(pvalues.get(term, np.nan)),
            "ci_low": float(ci.loc[term, 0]) if term in ci.index else np.nan,
            "ci_high": float(ci.loc[term, 1]) if term in ci.index else np.nan,
        })
    return rows


def fit_region_models(
    df: pd.DataFrame,
    dv: str,
    terms: Sequence[str],
    slopes: Sequence[str],
    label: str,
    design: ExperimentDesign = DEFAULT_DESIGN,
    verbose: bool = True,
) -> pd.DataFrame:
    """Fit ``dv ~ terms`` separately in every region and stack the coefficients."""
    rows: List[Dict[str, object]] = []
    formula = f"{dv} ~ " + " + ".join(terms)
    ladder = build_random_effects_ladder(slopes)

    for region in analysis_regions(df, design):
        subset = prepare_model_data(df[df["region"] == region], dv, terms)
        if subset.empty or subset["participant_id"].nunique() < 2:
            if verbose:
                print(f"  [SKIP] {region}: insufficient data")
            continue

        try:
            outcome = fit_with_fallback(formula, subset, ladder)
        except RuntimeError as exc:
            if verbose:
                print(f"  [ERROR] {region}: {exc}")
            rows.append({"model": label, "region": region, "term": None, "note": str(exc)})
            continue

        for entry in extract_terms(outcome.result, terms):
            entry.update({
                "model": label,
                "region": region,
                "dv": dv,
                "n_obs": len(subset),
                "n_participants": subset["participant_id"].nunique(),
                "n_items": subset["item"].nunique(),
                "random_effects": outcome.structure,
                "method": outcome.method,
                "converged": outcome.converged,
                "warnings": " | ".join(outcome.warnings) if outcome.warnings else "",
                "note": outcome.note or "",
            })
            rows.append(entry)

        if verbose:
            print(f"\n  {region} (N obs={len(subset)}, RE={outcome.structure}, method={outcome.method})")
            for entry in rows[-len(terms):]:
                print(
                    f"    {entry['term']:<28} b={entry['beta']:+.4f}  SE={entry['se']:.4f}  "
                    f"z={entry['z']:+.2f}  p={format_pvalue(entry['p'])}"
                )

    return pd.DataFrame(rows)


# =============================================================================
# ANALYSES
# =============================================================================

@register_analysis(
    name="rt_by_region",
    description="log RT ~ factorial contrasts, one mixed model per region"
)
def analyze_rt_by_region(
    verbose: bool = True,
    data: Optional[pd.DataFrame] = None,
    output_dir: Optional[Path] = None,
    design: ExperimentDesign = DEFAULT_DESIGN,
) -> pd.DataFrame:
    if verbose:
        print_section_header("ANALYSIS: LOG RT BY REGION")
    df = load_region_data(region=None, data=data)
    slopes = [design.contrast_column(f) for f in design.factors]
    results = fit_region_models(df, "log_rt", design.contrast_terms(), slopes, "log_rt_factorial", design, verbose)
    _save(results, "rt_by_region.csv", output_dir)
    return results


@register_analysis(
    name="residual_rt_by_region",
    description="Length-residualised RT ~ factorial contrasts per region"
)
def analyze_residual_rt_by_region(
    verbose: bool = True,
    data: Optional[pd.DataFrame] = None,
    output_dir: Optional[Path] = None,
    design: ExperimentDesign = DEFAULT_DESIGN,
) -> pd.DataFrame:
    if verbose:
        print_section_header("ANALYSIS: RESIDUAL RT BY REGION")
    df = load_region_data(region=None, data=data)
    slopes = [design.contrast_column(f) for f in design.factors]
    results = fit_region_models(
        df, "residual_rt", design.contrast_terms(), slopes, "residual_rt_factorial", design, verbose
    )
    _save(results, "residual_rt_by_region.csv", output_dir)
    return results


@register_analysis(
    name="nested_contrasts",
    description="Attraction effect nested within each grammaticality level"
)
def analyze_nested_contrasts(
    verbose: bool = True,
    data: Optional[pd.DataFrame] = None,
    output_dir: Optional[Path] = None,
    design: ExperimentDesign = DEFAULT_DESIGN,
    factor: str = "attr",
    within: str = "gram",
) -> pd.DataFrame:
    if verbose:
        print_section_header(f"ANALYSIS: {factor.upper()} NESTED WITHIN {within.upper()}")
    df = load_region_data(region=None, data=data)
    terms = [design.contrast_column(within)] + design.nested_terms(factor, within)
    results = fit_region_models(df, "log_rt", terms, [design.contrast_column(within)], "log_rt_nested", design, verbose)
    _save(results, "nested_contrasts.csv", output_dir)
    return results


@register_analysis(
    name="accuracy_glmm",
    description="Comprehension accuracy, logistic mixed model with crossed intercepts"
)
def analyze_accuracy_glmm(
    verbose: bool = True,
    data: Optional[pd.DataFrame] = None,
    output_dir: Optional[Path] = None,
    design: ExperimentDesign = DEFAULT_DESIGN,
) -> pd.DataFrame:
    """
    Logistic mixed model for question accuracy.

    statsmodels has no frequentist GLMM; BinomialBayesMixedGLM with a
    variational Bayes fit gives posterior means and SDs for the fixed effects.
    """
    if verbose:
        print_section_header("ANALYSIS: COMPREHENSION ACCURACY GLMM")
    terms = design.contrast_terms()
    df = prepare_model_data(load_accuracy_data(data), "correct", terms)
    if df.empty:
        raise ValueError("No answered experimental questions available.")

    formula = "correct ~ " + " + ".join(terms)
    vc = {"participant": "0 + C(participant_id)", "item": "0 + C(item)"}
    model = BinomialBayesMixedGLM.from_formula(formula, vc, df)
    result = model.fit_vb()

    names = list(model.fep_names)
    rows = []
    for term in ["Intercept"] + terms:
        idx = names.index(term)
        mean = float(result.fe_mean[idx])
        sd = float(result.fe_sd[idx])
        rows.append({
            "model": "accuracy_glmm",
            "term": term,
            "post_mean": mean,
            "post_sd": sd,
            "ci_low": mean - 1.96 * sd,
            "ci_high": mean + 1.96 * sd,
            "odds_ratio": float(np.exp(mean)),
            "n_obs": len(df),
            "n_participants": df["participant_id"].nunique(),
        })
    results = pd.DataFrame(rows)

    if verbose:
        print(f"\n  N obs={len(df)}, accuracy={df['correct'].mean():.3f}")
        for _, row in results.iterrows():
            print(
                f"    {row['term']:<28} b={row['post_mean']:+.3f}  SD={row['post_sd']:.3f}  "
                f"OR={row['odds_ratio']:.2f}"
            )
    _save(results, "accuracy_glmm.csv", output_dir)
    return results


def _save(results: pd.DataFrame, filename: str, output_dir: Optional[Path]) -> None:
    if output_dir is None:
        output_dir = get_output_dir("lmm")
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    results.to_csv(output_dir / filename, index=False, encoding="utf-8-sig")


# =============================================================================
# RUNNER
# =============================================================================

def run(analysis: Optional[str] = None, verbose: bool = True, **kwargs) -> Dict[str, pd.DataFrame]:
    """Run mixed-effects analyses."""
    if verbose:
        print("=" * 70)
        print("LINEAR MIXED-EFFECTS SUITE")
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
        print("LINEAR MIXED-EFFECTS SUITE COMPLETE")
        print("=" * 70)

    return results


def list_analyses():
    """List available analyses."""
    print("\nAvailable Mixed-Effects Analyses:")
    print("-" * 60)
    for name, spec in ANALYSES.items():
        print(f"  {name}")
        print(f"    {spec.description}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Linear Mixed-Effects Suite")
    parser.add_argument('--analysis', '-a', type=str, default=None,
                        help="Specific analysis to run")
    parser.add_argument('--list', '-l', action='store_true',
                        help="List available analyses")
    parser.add_argument('--quiet', '-q', action='store_true',
                        help="Suppress output")
    args = parser.parse_args()

    if args.list:
        list_analyses()
    else:
        run(analysis=args.analysis, verbose=not args.quiet)
