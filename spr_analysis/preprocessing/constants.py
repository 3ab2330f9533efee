"""
Shared constants for SPR data preprocessing.
"""

from pathlib import Path

# Directory paths
BASE_DIR = Path(__file__).resolve().parents[2]
DATA_DIR = BASE_DIR / "data"
RAW_DIR = DATA_DIR / "raw"
RESULTS_DIR = DATA_DIR / "outputs"
ITEMS_PATH = DATA_DIR / "items.csv"

DATASET_DIRS = {
    'spr': RESULTS_DIR / "complete_spr",
    'analysis': RESULTS_DIR / "analysis",
}

VALID_DATASETS = {'spr', 'analysis'}


def get_results_dir(dataset: str) -> Path:
    """Return the dataset-specific output directory.

    Args:
        dataset: 'spr' or 'analysis'

    Returns:
        Path to the dataset directory
    """
    if dataset not in VALID_DATASETS:
        raise ValueError(f"Unknown dataset: {dataset}. Valid datasets: {VALID_DATASETS}")
    return DATASET_DIRS[dataset]


# Output filenames
PARTICIPANTS_FILE = "1_participants_info.csv"
READING_FILE = "2_reading_trials.csv"
READING_RAW_FILE = "2_reading_trials_raw.csv"
QUESTIONS_FILE = "3_question_trials.csv"
FEATURES_FILE = "4_participant_features.csv"
QC_REPORT_FILE = "qc_report.csv"
QC_IDS_FILE = "filtered_participant_ids.csv"

# RT filtering constants
SPR_RT_MIN = 100              # ms; key-press anticipations
SPR_RT_MAX = 2000             # ms; inattentive reading
SPR_SD_CUTOFF = 2.5           # SDs from participant x region mean
SPR_MIN_ACCURACY = 0.80       # comprehension accuracy cutoff
RESIDUAL_MIN_WORDS = 20       # words needed for per-participant length regression

# Ibex Farm result layout (columns shared by every controller)
IBEX_COMMON_COLUMNS = [
    "reception_time",
    "md5",
    "controller",
    "item",
    "element",
    "type",
    "group",
]

# Controller-specific trailing columns
IBEX_CONTROLLER_COLUMNS = {
    "DashedSentence": ["word_number", "word", "rt", "newline", "sentence"],
    "Question": ["question", "answer", "question_correct", "answer_rt"],
    "Form": ["field", "value"],
}

IBEX_NULL_TOKENS = {"NULL", "null", "undefined", "NA", ""}

READING_CONTROLLERS = {"DashedSentence", "SelfPacedReading", "DashedSentenceSPR"}
QUESTION_CONTROLLERS = {"Question", "AcceptabilityJudgment"}
FORM_CONTROLLERS = {"Form"}

# Column aliases for exported (headered) tables
COLUMN_ALIASES = {
    "participant_id": {"participant_id", "participant", "participantId", "subject", "subj", "Subject"},
    "md5": {"md5", "MD5", "MD5 hash of participant's IP address", "ip_md5"},
    "reception_time": {"reception_time", "Time results were received", "ReceptionTime", "time_received"},
    "controller": {"controller", "Controller name", "Controller"},
    "item": {"item", "Item", "Item number", "item_number", "itemId"},
    "element": {"element", "Element number", "element_number"},
    "type": {"type", "Type", "Label", "label"},
    "group": {"group", "Group", "Latin.Square.Group", "list"},
    "word_number": {"word_number", "Word number", "WordNumber", "position", "word_position"},
    "word": {"word", "Word"},
    "rt": {"rt", "RT", "Reading time", "reading_time", "ReadingTime", "rt_ms"},
    "newline": {"newline", "Newline?", "new_line"},
    "sentence": {"sentence", "Sentence", "Sentence (or sentence MD5)"},
    "question": {"question", "Question", "Question (NULL if none)"},
    "answer": {"answer", "Answer"},
    "question_correct": {
        "question_correct",
        "Whether or not answer was correct (NULL if N/A)",
        "correct",
        "Correct",
        "accuracy",
    },
    "answer_rt": {"answer_rt", "Time taken to answer.", "answer_time", "question_rt"},
    "field": {"field", "Field name"},
    "value": {"value", "Field value"},
}

# Form fields kept as participant-level columns
PARTICIPANT_FIELDS = ["age", "gender", "native_language", "handedness", "list"]

# Design defaults (2x2 agreement attraction)
DEFAULT_EXPERIMENTAL_PREFIXES = ("exp",)
DEFAULT_PRACTICE_PREFIXES = ("practice", "prac")
DEFAULT_FILLER_PREFIXES = ("filler", "fill")
DEFAULT_REGIONS = {
    -1: "precritical",
    0: "critical",
    1: "spillover",
    2: "spillover2",
}
