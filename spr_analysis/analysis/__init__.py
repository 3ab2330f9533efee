"""
Analysis Suites
===============

    descriptive     condition x region means, accuracy table, region plots
    lmm_suite       frequentist mixed models (statsmodels)
    bayesian_suite  Bayesian mixed models (PyMC)

Usage:
    python -m spr_analysis.analysis --suite lmm
    python -m spr_analysis.analysis --suite bayesian --analysis rt_critical
    python -m spr_analysis.analysis --suite lmm --list

    from spr_analysis.analysis import lmm_suite
    lmm_suite.run()
"""

import importlib

# Suite modules are imported on first use
SUITES = {
    "descriptive": "descriptive",
    "lmm": "lmm_suite",
    "bayesian": "bayesian_suite",
}


def get_suite(name: str):
    """Import and return the suite module registered under ``name``."""
    if name not in SUITES:
        raise ValueError(f"Unknown suite: {name}. Available: {sorted(SUITES)}")
    return importlib.import_module(f".{SUITES[name]}", __name__)


__all__ = ["SUITES", "get_suite"]
