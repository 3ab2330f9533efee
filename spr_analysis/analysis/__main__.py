"""
Command-line dispatcher for the analysis suites.

    python -m spr_analysis.analysis --suite lmm
    python -m spr_analysis.analysis --suite bayesian -a accuracy --draws 1000
    python -m spr_analysis.analysis --suite lmm --list
"""

from __future__ import annotations

import sys
if sys.platform.startswith("win") and hasattr(sys.stdout, "reconfigure"):
    sys.stdout.reconfigure(encoding='utf-8')

import argparse
from typing import Optional, Sequence

from . import SUITES, get_suite


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="SPR analysis suites")
    parser.add_argument('--suite', '-s', choices=sorted(SUITES), default="lmm",
                        help="Analysis suite to run")
    parser.add_argument('--analysis', '-a', type=str, default=None,
                        help="Specific analysis within the suite")
    parser.add_argument('--list', '-l', action='store_true',
                        help="List available analyses")
    parser.add_argument('--quiet', '-q', action='store_true',
                        help="Suppress output")
    parser.add_argument('--draws', type=int, default=None,
                        help="Posterior draws per chain (bayesian suite)")
    parser.add_argument('--chains', type=int, default=None,
                        help="Number of chains (bayesian suite)")
    args = parser.parse_args(argv)

    suite = get_suite(args.suite)
    verbose = not args.quiet

    if args.suite == "descriptive":
        if args.list or args.analysis:
            print("The descriptive suite has a single analysis; running it.")
        suite.run(verbose=verbose)
        return

    if args.list:
        suite.list_analyses()
        return

    kwargs = {}
    if args.suite == "bayesian" and (args.draws or args.chains):
        from .bayesian_suite import FitConfig

        cfg = FitConfig()
        if args.draws:
            cfg.draws = args.draws
            cfg.tune = args.draws
        if args.chains:
            cfg.chains = args.chains
        kwargs["cfg"] = cfg
    suite.run(analysis=args.analysis, verbose=verbose, **kwargs)


if __name__ == "__main__":
    main()
