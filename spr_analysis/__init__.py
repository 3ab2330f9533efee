"""
Self-paced reading analysis of cue-based retrieval interference.

    spr_analysis.preprocessing  raw Ibex logs -> cleaned word/trial tables
    spr_analysis.analysis       descriptive tables, mixed models, Bayesian models
"""

__version__ = "0.1.0"
