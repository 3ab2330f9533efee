"""
Preprocessing CLI for building the cleaned SPR dataset.

Usage:
    python -m spr_analysis.preprocessing --build
    python -m spr_analysis.preprocessing --build --raw-dir data/raw --items data/items.csv
    python -m spr_analysis.preprocessing --build --sd-mode winsorize --require-correct
    python -m spr_analysis.preprocessing --list
    python -m spr_analysis.preprocessing --info spr
"""

import argparse
import sys
from pathlib import Path

from .constants import VALID_DATASETS, SPR_RT_MIN, SPR_RT_MAX, SPR_SD_CUTOFF, SPR_MIN_ACCURACY
from .dataset import build_spr_dataset, get_dataset_info, print_dataset_summary
from .filters import SPRQCCriteria


if sys.platform.startswith("win") and hasattr(sys.stdout, "reconfigure"):
    sys.stdout.reconfigure(encoding="utf-8")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Preprocessing CLI for building the cleaned SPR dataset",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m spr_analysis.preprocessing --build
    python -m spr_analysis.preprocessing --build --raw-dir data/raw --items data/items.csv
    python -m spr_analysis.preprocessing --list
    python -m spr_analysis.preprocessing --info spr
        """,
    )

    parser.add_argument("--build", action="store_true", help="Build the cleaned SPR dataset")
    parser.add_argument("--raw-dir", type=Path, default=None, help="Directory with Ibex results files")
    parser.add_argument("--items", type=Path, default=None, help="Item table (item, condition, critical_word)")
    parser.add_argument("--output-dir", type=Path, default=None, help="Output directory")
    parser.add_argument("--rt-min", type=float, default=SPR_RT_MIN, help="Lower RT bound in ms")
    parser.add_argument("--rt-max", type=float, default=SPR_RT_MAX, help="Upper RT bound in ms")
    parser.add_argument("--sd-cutoff", type=float, default=SPR_SD_CUTOFF, help="SD trimming cutoff (0 disables)")
    parser.add_argument("--sd-mode", choices=("trim", "winsorize"), default="trim", help="SD outlier handling")
    parser.add_argument("--min-accuracy", type=float, default=SPR_MIN_ACCURACY, help="Comprehension accuracy cutoff")
    parser.add_argument(
        "--accuracy-scope",
        choices=("all", "experimental", "filler"),
        default="all",
        help="Questions counted for the accuracy cutoff",
    )
    parser.add_argument("--require-correct", action="store_true", help="Drop trials with a wrong answer")
    parser.add_argument("--list", action="store_true", help="List available datasets and their status")
    parser.add_argument("--info", choices=sorted(VALID_DATASETS), help="Show detailed info for a dataset")
    parser.add_argument("--no-save", action="store_true", help="Build without saving to disk")
    parser.add_argument("--quiet", action="store_true", help="Suppress verbose output")

    args = parser.parse_args(argv)

    if args.info:
        info = get_dataset_info(args.info)[args.info]
        print(f"\n{args.info.upper()} Dataset Info:")
        print(f"  Path: {info['path']}")
        print(f"  Exists: {info['exists']}")
        print(f"  N participants: {info['n_participants']}")
        print(f"  Files: {', '.join(info['files']) if info['files'] else 'None'}")
        return

    if not args.build:
        print_dataset_summary()
        return

    criteria = SPRQCCriteria(
        min_accuracy=args.min_accuracy,
        accuracy_scope=args.accuracy_scope,
        rt_min=args.rt_min,
        rt_max=args.rt_max,
        sd_cutoff=args.sd_cutoff if args.sd_cutoff > 0 else None,
        sd_mode=args.sd_mode,
        require_correct=args.require_correct,
    )
    build_spr_dataset(
        raw_dir=args.raw_dir,
        items_path=args.items,
        output_dir=args.output_dir,
        criteria=criteria,
        save=not args.no_save,
        verbose=not args.quiet,
    )


if __name__ == "__main__":
    main()
