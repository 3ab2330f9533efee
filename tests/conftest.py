from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple

import numpy as np
import pandas as pd
import pytest

from spr_analysis.preprocessing import build_spr_dataset
from spr_analysis.preprocessing.core import participant_hash


# ---------------------------------------------------------------------------
# Deterministic synthetic Ibex Farm results.
# Six participants read 16 experimental items (Latin-square rotated over the
# four conditions), 4 fillers and 1 practice item, each followed by a
# comprehension question. Participant 5 answers mostly wrong and must be
# excluded by the accuracy criterion.
# ---------------------------------------------------------------------------

TEST_SEED = 1337
N_PARTICIPANTS = 6
N_EXPERIMENTAL_ITEMS = 16
FILLER_ITEMS = (101, 102, 103, 104)
PRACTICE_ITEM = 99
CRITICAL_WORD = 6
LOW_ACCURACY_INDEX = 5
NULL_ANSWER_INDEX = 1
CONDITIONS = ("a", "b", "c", "d")

ATTRACTOR_VERB = {
    "a": ("cabinets", "was"),
    "b": ("cabinet", "was"),
    "c": ("cabinet", "were"),
    "d": ("cabinets", "were"),
}
FILLER_WORDS = ["The", "dog", "chased", "the", "cat", "across", "the", "yard."]
PRACTICE_WORDS = ["This", "is", "a", "short", "practice", "sentence", "for", "you."]


@dataclass(frozen=True)
class SyntheticStudy:
    """Paths and expectations for the synthetic study."""

    raw_dir: Path
    items_path: Path
    participant_ids: Tuple[str, ...]
    low_accuracy_id: str
    null_answer_id: str


def _sessions() -> List[Tuple[str, str]]:
    return [(str(1700000000 + 37 * p), f"{p:02d}" + "ab" * 15) for p in range(N_PARTICIPANTS)]


def _experimental_words(condition: str) -> List[str]:
    attractor, verb = ATTRACTOR_VERB[condition]
    return ["The", "key", "to", "the", attractor, verb, "rusty", "today."]


def _reading_rt(rng: np.random.Generator, offset: float, word: str, position: int, condition: str | None) -> int:
    rt = 300.0 + offset + 12.0 * len(word.strip(".")) + rng.normal(0.0, 25.0)
    if condition in ("c", "d") and position in (CRITICAL_WORD, CRITICAL_WORD + 1):
        rt += 60.0
        if condition == "d":
            rt -= 30.0
    return int(round(rt))


def _participant_lines(p: int, rng: np.random.Generator) -> List[str]:
    reception, md5 = _sessions()[p]
    group = p % 4
    offset = rng.normal(0.0, 40.0)
    lines = [
        f"{reception},{md5},Form,0,0,intro,NULL,age,{20 + p}",
        f"{reception},{md5},Form,0,0,intro,NULL,gender,{'female' if p % 2 else 'male'}",
    ]

    trials: List[Tuple[str, int, str | None, List[str]]] = []
    trials.append(("practice", PRACTICE_ITEM, None, PRACTICE_WORDS))
    scored: List[Tuple[str, int, str | None, List[str]]] = []
    for item in range(1, N_EXPERIMENTAL_ITEMS + 1):
        condition = CONDITIONS[(item + group) % 4]
        scored.append((f"exp-{condition}", item, condition, _experimental_words(condition)))
    for item in FILLER_ITEMS:
        scored.append(("filler", item, None, FILLER_WORDS))
    order = np.random.default_rng(TEST_SEED + p).permutation(len(scored))
    trials.extend(scored[i] for i in order)

    exp_seen = 0
    for position, (label, item, condition, words) in enumerate(trials):
        sentence = " ".join(words)
        for n, word in enumerate(words, start=1):
            rt = _reading_rt(rng, offset, word, n, condition)
            if p == 0 and label.startswith("exp") and exp_seen == 0:
                if n == 1:
                    rt = 40
                elif n == 2:
                    rt = 4000
            lines.append(
                f"{reception},{md5},DashedSentence,{item},0,{label},{group},{n},{word},{rt},False,{sentence}"
            )

        if p == LOW_ACCURACY_INDEX:
            correct = "1" if position % 4 == 0 else "0"
        elif label.startswith("exp") and exp_seen == 2:
            correct = "0"
        elif p == NULL_ANSWER_INDEX and item == FILLER_ITEMS[0]:
            correct = "NULL"
        else:
            correct = "1"
        answer_rt = 1200 + 10 * position
        lines.append(
            f"{reception},{md5},Question,{item},1,{label},{group},Was it clear?,Yes,{correct},{answer_rt}"
        )
        if label.startswith("exp"):
            exp_seen += 1
    return lines


def write_ibex_results(path: Path, participants: List[int], seed: int = TEST_SEED) -> Path:
    """Write an Ibex raw results file for the given participant indices."""
    lines = [
        "# Results on Tuesday October 17 2026 10:15:00 UTC.",
        "# USER AGENT: Mozilla/5.0",
        "# Columns below this comment are as follows:",
        "# 1. Time results were received.",
        "# 2. MD5 hash of participant's IP address.",
    ]
    for p in participants:
        lines.extend(_participant_lines(p, np.random.default_rng(seed + 100 * p)))
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def write_items(path: Path) -> Path:
    rows = [
        {"item": item, "condition": condition, "critical_position": CRITICAL_WORD}
        for item in range(1, N_EXPERIMENTAL_ITEMS + 1)
        for condition in CONDITIONS
    ]
    pd.DataFrame(rows).to_csv(path, index=False)
    return path


def expected_participant_ids() -> Tuple[str, ...]:
    return tuple(participant_hash(t, m) for t, m in _sessions())


@pytest.fixture(scope="session")
def synthetic_study(tmp_path_factory) -> SyntheticStudy:
    root = tmp_path_factory.mktemp("spr_study")
    raw_dir = root / "raw"
    raw_dir.mkdir()
    # two result files, as when results are downloaded in batches
    write_ibex_results(raw_dir / "results_1.txt", [0, 1, 2])
    write_ibex_results(raw_dir / "results_2.txt", [3, 4, 5])
    items_path = write_items(root / "items.csv")

    ids = expected_participant_ids()
    return SyntheticStudy(
        raw_dir=raw_dir,
        items_path=items_path,
        participant_ids=ids,
        low_accuracy_id=ids[LOW_ACCURACY_INDEX],
        null_answer_id=ids[NULL_ANSWER_INDEX],
    )


@pytest.fixture(scope="session")
def built_dataset(synthetic_study, tmp_path_factory) -> Dict[str, object]:
    """Full preprocessing run saved to a temporary output directory."""
    output_dir = tmp_path_factory.mktemp("spr_outputs")
    results = build_spr_dataset(
        raw_dir=synthetic_study.raw_dir,
        items_path=synthetic_study.items_path,
        output_dir=output_dir,
        save=True,
        verbose=False,
    )
    results["output_dir"] = output_dir
    return results
