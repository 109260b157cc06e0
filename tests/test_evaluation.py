# SPDX-FileCopyrightText: 2025 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

import pytest

from jumpahead.learning.evaluation import (
    CATEGORIES,
    Evaluation,
    UnparseableScore,
    extract_average_score,
    merge_evaluations,
    parse_evaluation,
)


def make_evaluation(scores: list[int], evidence_prefix: str = "evidence") -> Evaluation:
    return Evaluation.build(
        dict(zip(CATEGORIES, scores, strict=True)),
        {cat: f"{evidence_prefix} for {cat}" for cat in CATEGORIES},
    )


@pytest.mark.parametrize(("text", "expected"), [
    ("**Average Score:** 4.2", 4.2),
    ("Average Score: 3", 3.0),
    ("average score - 2.5 overall", 2.5),
    ("AVERAGE SCORE**: **4.0**", 4.0),
    ("## Results\n...\n**Average Score:**\n\n  3.8\n", 3.8),
])
def test_extract_average_score(text: str, expected: float) -> None:
    assert extract_average_score(text) == expected


@pytest.mark.parametrize("text", [
    "",
    None,
    "No average here.",
    "Average Score: not yet computed",
    "**Average Score:** N/A\n\n- **Remembering**: 3/5",
])
def test_extract_average_score_missing(text: str | None) -> None:
    assert extract_average_score(text) is None


def test_build_renders_rubric() -> None:
    evaluation = make_evaluation([3, 4, 2, 5, 1, 3])
    assert evaluation.average == 3.0
    assert "- **Remembering**: 3/5" in evaluation.text
    assert "- **Creating**: evidence for Creating" in evaluation.text
    assert evaluation.text.endswith("**Average Score:** 3.0")
    assert extract_average_score(evaluation.text) == 3.0


def test_parse_rendered_text() -> None:
    evaluation = make_evaluation([0, 1, 2, 3, 4, 5])
    parsed = parse_evaluation(evaluation.text)
    assert parsed.score_list == [0, 1, 2, 3, 4, 5]
    assert parsed.evidence == evaluation.evidence
    assert parsed.average == 2.5


def test_parse_tolerates_model_formatting() -> None:
    text = """\
Here is my evaluation.

## Evaluation Results
- **Remembering:** 4 / 5
- **Understanding**:3/5
- **Applying** : 2/5
- **Analyzing**: 1/5
- **Evaluating**: 0/5
- **Creating**: 5/5

### Evidence
- **Remembering:** Recalled the definition.
- **Understanding**: Paraphrased it.
- **Applying**: Tried an example.
- **Analyzing**: Little comparison.
- **Evaluating**: None.
- **Creating**: Proposed a new model.

**Average Score**: 2.5
"""
    parsed = parse_evaluation(text)
    assert parsed.score_list == [4, 3, 2, 1, 0, 5]
    assert parsed.evidence['Remembering'] == "Recalled the definition."
    assert parsed.evidence['Creating'] == "Proposed a new model."
    assert parsed.average == 2.5


def test_parse_missing_evidence() -> None:
    text = "\n".join(f"- **{cat}**: 3/5" for cat in CATEGORIES) + "\n**Average Score:** 3.0"
    parsed = parse_evaluation(text)
    assert parsed.score_list == [3] * 6
    assert all(evidence == "" for evidence in parsed.evidence.values())


@pytest.mark.parametrize("text", [
    "",
    None,
    "I cannot evaluate this response.",
    "\n".join(f"- **{cat}**: 3/5" for cat in CATEGORIES),  # no average
    "\n".join(f"- **{cat}**: 3/5" for cat in CATEGORIES[:5]) + "\n**Average Score:** 3.0",  # missing a category
    "\n".join(f"- **{cat}**: 7/5" for cat in CATEGORIES) + "\n**Average Score:** 7.0",  # out of range
])
def test_parse_unparseable(text: str | None) -> None:
    with pytest.raises(UnparseableScore):
        parse_evaluation(text)


def test_merge_keeps_higher_scores() -> None:
    old = make_evaluation([3, 4, 2, 5, 1, 3], "old")
    new = make_evaluation([4, 3, 3, 2, 5, 4], "new")
    merged = merge_evaluations(old, new)

    assert merged.score_list == [4, 4, 3, 5, 5, 4]
    assert merged.average == 4.2
    assert merged.evidence['Remembering'] == "new for Remembering"
    assert merged.evidence['Understanding'] == "old for Understanding"
    assert merged.evidence['Analyzing'] == "old for Analyzing"
    assert extract_average_score(merged.text) == 4.2


def test_merge_ties_take_newer_evidence() -> None:
    old = make_evaluation([2] * 6, "old")
    new = make_evaluation([2] * 6, "new")
    merged = merge_evaluations(old, new)
    assert merged.score_list == [2] * 6
    assert all(evidence.startswith("new") for evidence in merged.evidence.values())


def test_merge_never_decreases() -> None:
    old = make_evaluation([5, 5, 5, 5, 5, 5])
    new = make_evaluation([0, 0, 0, 0, 0, 0])
    merged = merge_evaluations(old, new)
    assert merged.score_list == [5] * 6
    assert merged.average == 5.0
