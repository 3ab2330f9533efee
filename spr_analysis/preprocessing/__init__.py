"""
SPR Preprocessing Module
========================

Loading, cleaning and derived columns for self-paced reading logs.

Build the cleaned dataset:
    from spr_analysis.preprocessing import build_spr_dataset
    outputs = build_spr_dataset(raw_dir=Path("data/raw"), items_path=Path("data/items.csv"))

Load it for analysis:
    from spr_analysis.preprocessing import load_reading_trials
    critical = load_reading_trials(region="critical")

CLI:
    python -m spr_analysis.preprocessing --build
    python -m spr_analysis.preprocessing --list
"""

from .constants import (
    BASE_DIR,
    DATA_DIR,
    RAW_DIR,
    RESULTS_DIR,
    ITEMS_PATH,
    VALID_DATASETS,
    SPR_RT_MIN,
    SPR_RT_MAX,
    SPR_SD_CUTOFF,
    SPR_MIN_ACCURACY,
    COLUMN_ALIASES,
    get_results_dir,
)

from .core import (
    rename_columns,
    ensure_participant_id,
    coerce_bool,
    zscore_within,
)

from .design import ExperimentDesign, DEFAULT_DESIGN

from .loaders import (
    read_ibex_results,
    load_raw_results,
    split_controllers,
    load_participant_info,
    load_items,
)

from .trials import (
    build_trial_table,
    segment_trials,
    propagate_within_trial,
    fill_participant_fields,
    assign_regions,
)

from .features import (
    word_length,
    add_rt_columns,
    residualize_rt,
    add_contrasts,
    compute_accuracy,
    derive_participant_features,
)

from .filters import (
    SPRQCCriteria,
    compute_participant_qc,
    get_valid_participants,
    apply_trial_filters,
    mark_rt_window,
    filter_rt_outliers,
)

from .dataset import (
    build_spr_dataset,
    load_reading_trials,
    load_question_trials,
    load_qc_ids,
    get_dataset_info,
    print_dataset_summary,
)

__all__ = [
    # Constants
    'BASE_DIR',
    'DATA_DIR',
    'RAW_DIR',
    'RESULTS_DIR',
    'ITEMS_PATH',
    'VALID_DATASETS',
    'SPR_RT_MIN',
    'SPR_RT_MAX',
    'SPR_SD_CUTOFF',
    'SPR_MIN_ACCURACY',
    'COLUMN_ALIASES',
    'get_results_dir',
    # Core
    'rename_columns',
    'ensure_participant_id',
    'coerce_bool',
    'zscore_within',
    # Design
    'ExperimentDesign',
    'DEFAULT_DESIGN',
    # Loaders
    'read_ibex_results',
    'load_raw_results',
    'split_controllers',
    'load_participant_info',
    'load_items',
    # Trials
    'build_trial_table',
    'segment_trials',
    'propagate_within_trial',
    'fill_participant_fields',
    'assign_regions',
    # Features
    'word_length',
    'add_rt_columns',
    'residualize_rt',
    'add_contrasts',
    'compute_accuracy',
    'derive_participant_features',
    # Filters
    'SPRQCCriteria',
    'compute_participant_qc',
    'get_valid_participants',
    'apply_trial_filters',
    'mark_rt_window',
    'filter_rt_outliers',
    # Dataset
    'build_spr_dataset',
    'load_reading_trials',
    'load_question_trials',
    'load_qc_ids',
    'get_dataset_info',
    'print_dataset_summary',
]
