# questionnaire/models.py
"""Survey data model.

Questions are persisted exactly as submitted (a survey echoes its own
definition back), so the stored form is a plain dict. ``Question.from_raw``
gives the normalised view the aggregator works on.

Answers are matched to questions by position: ``answers[i]`` answers
``questions[i]``. Reordering questions after responses exist changes which
answers are tallied against which question.
"""
from __future__ import annotations

import math
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from questionnaire.errors import ConfigurationError

DEFAULT_SCALE_MIN = 1
DEFAULT_SCALE_MAX = 5
MAX_SCALE_BINS = 1000
UNTITLED = "Untitled"
OPTION_PLACEHOLDER = "Option"


class QuestionKind(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    SCALE = "scale"
    FREE_TEXT = "free_text"


# Older clients send {"type": "mcq" | "scale" | "text"}
_KIND_ALIASES = {
    "multiple_choice": QuestionKind.MULTIPLE_CHOICE,
    "mcq": QuestionKind.MULTIPLE_CHOICE,
    "scale": QuestionKind.SCALE,
    "free_text": QuestionKind.FREE_TEXT,
    "text": QuestionKind.FREE_TEXT,
}


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"scale {name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ConfigurationError(f"scale {name} must be an integer")


class Question(BaseModel):
    text: Optional[str] = None
    kind: QuestionKind = QuestionKind.FREE_TEXT
    options: List[Any] = Field(default_factory=list)
    min: Any = None
    max: Any = None

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "Question":
        """Normalise a stored question dict. Unknown kinds fall back to free text."""
        kind_name = raw.get("kind") or raw.get("type") or ""
        kind = _KIND_ALIASES.get(str(kind_name).strip().lower(), QuestionKind.FREE_TEXT)
        text = raw.get("text")
        options = raw.get("options")
        if options is None:
            options = []
        if kind is QuestionKind.MULTIPLE_CHOICE and not isinstance(options, list):
            raise ConfigurationError("multiple_choice options must be a list")
        return cls(
            text=None if text is None else str(text),
            kind=kind,
            options=options if isinstance(options, list) else [],
            min=raw.get("min"),
            max=raw.get("max"),
        )

    def labels(self) -> List[str]:
        labels = []
        for option in self.options:
            label = "" if option is None else str(option).strip()
            labels.append(label or OPTION_PLACEHOLDER)
        return labels

    def scale_range(self) -> tuple[int, int]:
        lo = DEFAULT_SCALE_MIN if self.min is None else _as_int(self.min, "min")
        hi = DEFAULT_SCALE_MAX if self.max is None else _as_int(self.max, "max")
        if lo > hi:
            raise ConfigurationError(f"scale min ({lo}) is greater than max ({hi})")
        if hi - lo + 1 > MAX_SCALE_BINS:
            raise ConfigurationError(f"scale range {lo}..{hi} exceeds {MAX_SCALE_BINS} points")
        return lo, hi


class Survey(BaseModel):
    id: str
    title: str = UNTITLED
    questions: List[Dict[str, Any]] = Field(default_factory=list)


class ResponseSet(BaseModel):
    ts: int  # epoch millis
    answers: List[Any] = Field(default_factory=list)

    def answer_at(self, index: int) -> Any:
        """Return the answer value at a question position, or None when absent."""
        if index >= len(self.answers):
            return None
        item = self.answers[index]
        if not isinstance(item, dict):
            return None
        return item.get("answer")


def to_number(value: Any) -> Optional[float]:
    """Numeric value of a scale answer, or None when it is not a finite number."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            # JSON integers are unbounded
            return None
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


# ---------- Analytics summaries ----------

class MultipleChoiceSummary(BaseModel):
    type: QuestionKind = QuestionKind.MULTIPLE_CHOICE
    text: Optional[str] = None
    labels: List[str]
    counts: List[int]
    dropped: int = 0


class ScaleBin(BaseModel):
    label: str
    count: int = 0


class ScaleSummary(BaseModel):
    type: QuestionKind = QuestionKind.SCALE
    text: Optional[str] = None
    bins: List[ScaleBin]
    dropped: int = 0


class FreeTextSummary(BaseModel):
    type: QuestionKind = QuestionKind.FREE_TEXT
    text: Optional[str] = None
    count: int = 0


QuestionSummary = Union[MultipleChoiceSummary, ScaleSummary, FreeTextSummary]
