"""
Experiment design description.

Maps Ibex trial labels (``exp-a``, ``filler-12``, ``practice``) onto trial
types and experimental conditions, and condition codes onto factor levels.
The default is a 2x2 agreement-attraction design:

    a: grammatical,   attractor mismatch
    b: grammatical,   attractor match
    c: ungrammatical, attractor mismatch
    d: ungrammatical, attractor match

Retrieval interference predicts facilitation in ungrammatical sentences when
the attractor matches the verb's number cue (the ``attr`` effect nested
within ``gram == ungrammatical``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, List, Optional, Tuple

from .constants import (
    DEFAULT_EXPERIMENTAL_PREFIXES,
    DEFAULT_PRACTICE_PREFIXES,
    DEFAULT_FILLER_PREFIXES,
    DEFAULT_REGIONS,
)


def _default_conditions() -> Dict[str, Dict[str, str]]:
    return {
        "a": {"gram": "grammatical", "attr": "mismatch"},
        "b": {"gram": "grammatical", "attr": "match"},
        "c": {"gram": "ungrammatical", "attr": "mismatch"},
        "d": {"gram": "ungrammatical", "attr": "match"},
    }


def _default_factor_levels() -> Dict[str, Tuple[str, str]]:
    # (level coded -0.5, level coded +0.5)
    return {
        "gram": ("grammatical", "ungrammatical"),
        "attr": ("mismatch", "match"),
    }


@dataclass
class ExperimentDesign:
    """Trial labelling, condition-to-factor map and region offsets."""
    conditions: Dict[str, Dict[str, str]] = field(default_factory=_default_conditions)
    factor_levels: Dict[str, Tuple[str, str]] = field(default_factory=_default_factor_levels)
    experimental_prefixes: Tuple[str, ...] = DEFAULT_EXPERIMENTAL_PREFIXES
    practice_prefixes: Tuple[str, ...] = DEFAULT_PRACTICE_PREFIXES
    filler_prefixes: Tuple[str, ...] = DEFAULT_FILLER_PREFIXES
    regions: Dict[int, str] = field(default_factory=lambda: dict(DEFAULT_REGIONS))

    def __post_init__(self) -> None:
        for code, levels in self.conditions.items():
            for factor, level in levels.items():
                if factor not in self.factor_levels:
                    raise ValueError(f"Condition '{code}' uses unknown factor '{factor}'")
                if level not in self.factor_levels[factor]:
                    raise ValueError(
                        f"Condition '{code}': level '{level}' not in {self.factor_levels[factor]}"
                    )

    @property
    def factors(self) -> List[str]:
        return list(self.factor_levels)

    @property
    def region_order(self) -> List[str]:
        return [self.regions[k] for k in sorted(self.regions)]

    def classify_type(self, label: object) -> Optional[str]:
        """Return 'practice', 'experimental', 'filler' or None for non-trial labels."""
        if not isinstance(label, str):
            return None
        cleaned = label.strip().lower()
        if not cleaned:
            return None
        if cleaned.startswith(tuple(p.lower() for p in self.practice_prefixes)):
            return "practice"
        if cleaned.startswith(tuple(p.lower() for p in self.experimental_prefixes)):
            return "experimental"
        if cleaned.startswith(tuple(p.lower() for p in self.filler_prefixes)):
            return "filler"
        return None

    def parse_condition(self, label: object) -> Optional[str]:
        if not isinstance(label, str):
            return None
        tokens = [t for t in re.split(r"[-_.\s]+", label.strip().lower()) if t]
        for token in reversed(tokens):
            if token in self.conditions:
                return token
        return None

    def contrast_column(self, factor: str) -> str:
        if factor not in self.factor_levels:
            raise ValueError(f"Unknown factor: {factor}. Factors: {self.factors}")
        return f"c_{factor}"

    def interaction_column(self, first: str, second: str) -> str:
        return f"c_{first}_x_{second}"

    def nested_column(self, factor: str, within: str, level: str) -> str:
        return f"c_{factor}_in_{level}"

    def contrast_terms(self) -> List[str]:
        """Main-effect and two-way interaction contrast columns."""
        terms = [self.contrast_column(f) for f in self.factors]
        terms += [self.interaction_column(a, b) for a, b in combinations(self.factors, 2)]
        return terms

    def nested_terms(self, factor: str, within: str) -> List[str]:
        """Contrast columns for ``factor`` nested in each level of ``within``."""
        if within not in self.factor_levels:
            raise ValueError(f"Unknown factor: {within}. Factors: {self.factors}")
        return [self.nested_column(factor, within, level) for level in self.factor_levels[within]]


DEFAULT_DESIGN = ExperimentDesign()
