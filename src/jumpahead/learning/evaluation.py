# SPDX-FileCopyrightText: 2025 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

""" Rubric evaluations: scoring text produced by the tutor model, the
lenient average-score extractor, and the structured record parsed from it.
"""

import re
from dataclasses import dataclass
from typing import Final

CATEGORIES: Final = (
    "Remembering",
    "Understanding",
    "Applying",
    "Analyzing",
    "Evaluating",
    "Creating",
)

MAX_SCORE: Final = 5

# average score needed to complete a learning module
COMPLETION_THRESHOLD: Final = 4.0

# "Average Score", then any run of non-digits on the same line (punctuation, markup, colons,
# whitespace), then an integer or decimal number.
_AVERAGE_RE: Final = re.compile(r"Average Score[^0-9\n]*?(\d+(?:\.\d+)?)", re.IGNORECASE)


class UnparseableScore(Exception):
    """ Evaluation text did not contain the expected scores. """


def extract_average_score(text: str | None) -> float | None:
    """ Best-effort extraction of the average score from an evaluation's text.
    Returns None if there is no "Average Score" followed by a number.
    """
    if not text:
        return None
    match = _AVERAGE_RE.search(text)
    if not match:
        return None
    return float(match.group(1))


def _score_re(category: str) -> re.Pattern[str]:
    # "**Category**: N/5" or "**Category:** N/5"
    return re.compile(rf"\*\*\s*{category}\s*:?\s*\*\*\s*:?\s*(\d)\s*/\s*{MAX_SCORE}", re.IGNORECASE)


def _evidence_re(category: str) -> re.Pattern[str]:
    # a category entry that is *not* a score line
    return re.compile(rf"\*\*\s*{category}\s*(?::\s*\*\*|\*\*[ \t]*:)[ \t]*(?!\d\s*/\s*{MAX_SCORE})(\S.*?)\s*$", re.IGNORECASE | re.MULTILINE)


def average_of(scores: dict[str, int]) -> float:
    """ Mean of the category scores, rounded to one decimal place. """
    return round(sum(scores[cat] for cat in CATEGORIES) / len(CATEGORIES), 1)


@dataclass(frozen=True)
class Evaluation:
    scores: dict[str, int]
    evidence: dict[str, str]
    average: float
    text: str

    @classmethod
    def build(cls, scores: dict[str, int], evidence: dict[str, str]) -> "Evaluation":
        """ Make an evaluation from scores and evidence, computing the average
        and rendering the canonical rubric text. """
        average = average_of(scores)
        return cls(scores=dict(scores), evidence=dict(evidence), average=average, text=render(scores, evidence, average))

    @property
    def score_list(self) -> list[int]:
        return [self.scores[cat] for cat in CATEGORIES]


def render(scores: dict[str, int], evidence: dict[str, str], average: float) -> str:
    lines = ["## Evaluation Results"]
    lines += [f"- **{cat}**: {scores[cat]}/{MAX_SCORE}" for cat in CATEGORIES]
    lines += ["", "### Evidence"]
    lines += [f"- **{cat}**: {evidence.get(cat, '') or 'No evidence.'}" for cat in CATEGORIES]
    lines += ["", f"**Average Score:** {average:.1f}"]
    return "\n".join(lines)


def parse_evaluation(text: str | None) -> Evaluation:
    """ Strictly parse rubric text into an Evaluation.

    Every category needs a "**Category**: N/5" line and the text needs an
    "Average Score" line.  Evidence lines are optional.

    Raises UnparseableScore if anything required is missing.
    """
    if not text:
        raise UnparseableScore("Evaluation text is empty.")

    scores: dict[str, int] = {}
    evidence: dict[str, str] = {}
    for cat in CATEGORIES:
        score_match = _score_re(cat).search(text)
        if not score_match:
            raise UnparseableScore(f"No score found for {cat}.")
        score = int(score_match.group(1))
        if score > MAX_SCORE:
            raise UnparseableScore(f"Score out of range for {cat}: {score}")
        scores[cat] = score

        evidence_match = _evidence_re(cat).search(text)
        evidence[cat] = evidence_match.group(1) if evidence_match else ""

    average = extract_average_score(text)
    if average is None:
        raise UnparseableScore("No average score found.")

    return Evaluation(scores=scores, evidence=evidence, average=average, text=text.strip())


def merge_evaluations(old: Evaluation, new: Evaluation) -> Evaluation:
    """ Keep the higher score (and its evidence) in each category.
    Ties keep the newer evidence.
    """
    scores: dict[str, int] = {}
    evidence: dict[str, str] = {}
    for cat in CATEGORIES:
        if old.scores[cat] > new.scores[cat]:
            scores[cat] = old.scores[cat]
            evidence[cat] = old.evidence[cat]
        else:
            scores[cat] = new.scores[cat]
            evidence[cat] = new.evidence[cat]
    return Evaluation.build(scores, evidence)
