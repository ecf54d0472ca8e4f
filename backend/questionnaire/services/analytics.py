# questionnaire/services/analytics.py
"""
Per-question tabulation of survey responses.

summarize_survey() is a pure function of the survey definition and a
snapshot of its responses: one summary per question, in question order.
Answers that are present but cannot be tallied (unknown option, not a
number, outside the scale) are counted in ``dropped`` instead of raising.
"""
from __future__ import annotations

import math
from typing import Any, Dict, List, Sequence

from questionnaire.models import (
    FreeTextSummary,
    MultipleChoiceSummary,
    Question,
    QuestionKind,
    QuestionSummary,
    ResponseSet,
    ScaleBin,
    ScaleSummary,
    Survey,
    to_number,
)


def summarize_multiple_choice(question: Question, index: int,
                              responses: Sequence[ResponseSet]) -> MultipleChoiceSummary:
    labels = question.labels()
    counts = [0] * len(labels)
    dropped = 0
    for response in responses:
        value = response.answer_at(index)
        if value is None:
            continue
        if not isinstance(value, str):
            dropped += 1
            continue
        try:
            # duplicate labels: the first one wins
            counts[labels.index(value.strip())] += 1
        except ValueError:
            dropped += 1
    return MultipleChoiceSummary(text=question.text, labels=labels, counts=counts, dropped=dropped)


def summarize_scale(question: Question, index: int,
                    responses: Sequence[ResponseSet]) -> ScaleSummary:
    lo, hi = question.scale_range()
    bins = [ScaleBin(label=str(n)) for n in range(lo, hi + 1)]
    dropped = 0
    for response in responses:
        value = response.answer_at(index)
        if value is None:
            continue
        number = to_number(value)
        if number is None:
            dropped += 1
            continue
        # fractional answers round half up
        offset = math.floor(number + 0.5) - lo
        if 0 <= offset < len(bins):
            bins[offset].count += 1
        else:
            dropped += 1
    return ScaleSummary(text=question.text, bins=bins, dropped=dropped)


def summarize_free_text(question: Question, index: int,
                        responses: Sequence[ResponseSet]) -> FreeTextSummary:
    count = sum(1 for response in responses if response.answer_at(index))
    return FreeTextSummary(text=question.text, count=count)


_SUMMARIZERS = {
    QuestionKind.MULTIPLE_CHOICE: summarize_multiple_choice,
    QuestionKind.SCALE: summarize_scale,
    QuestionKind.FREE_TEXT: summarize_free_text,
}


def summarize_question(raw_question: Dict[str, Any], index: int,
                       responses: Sequence[ResponseSet]) -> QuestionSummary:
    question = Question.from_raw(raw_question)
    return _SUMMARIZERS[question.kind](question, index, responses)


def summarize_survey(survey: Survey, responses: Sequence[ResponseSet]) -> List[QuestionSummary]:
    """Raises ConfigurationError when a question cannot be evaluated (e.g. scale min > max)."""
    return [
        summarize_question(raw, index, responses)
        for index, raw in enumerate(survey.questions)
    ]
