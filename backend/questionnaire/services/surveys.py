# questionnaire/services/surveys.py
"""
Survey definitions, the response store, and analytics orchestration.

State is a single JSON document persisted under STATE_KEY:

    {"surveys": {id: Survey}, "responses": {id: [ResponseSet, ...]}}

It is rewritten wholesale after every mutation. One writer lock covers the
in-memory change and the flush, so concurrent submissions are never lost; a
failed flush rolls the in-memory change back.
"""
from __future__ import annotations

import logging
import math
import threading
import time
import uuid
from typing import Any, Dict, List, Optional

from questionnaire.errors import ConfigurationError, NotFoundError, ValidationError
from questionnaire.models import (
    UNTITLED,
    Question,
    QuestionKind,
    QuestionSummary,
    ResponseSet,
    Survey,
)
from questionnaire.services.analytics import summarize_survey
from questionnaire.services.storage import StorageBackend

logger = logging.getLogger(__name__)

STATE_KEY = "surveys.json"
SURVEY_ID_LENGTH = 8


def _now_ms() -> int:
    return int(time.time() * 1000)


def new_survey_id() -> str:
    return uuid.uuid4().hex[:SURVEY_ID_LENGTH]


def _has_non_finite(value: Any) -> bool:
    # NaN/Infinity parse from request JSON but cannot be echoed back
    if isinstance(value, float):
        return not math.isfinite(value)
    if isinstance(value, dict):
        return any(_has_non_finite(v) for v in value.values())
    if isinstance(value, list):
        return any(_has_non_finite(v) for v in value)
    return False


class SurveyService:
    def __init__(self, storage: StorageBackend, state_key: str = STATE_KEY):
        self.storage = storage
        self.state_key = state_key
        self._lock = threading.Lock()
        self._surveys: Dict[str, Survey] = {}
        self._responses: Dict[str, List[ResponseSet]] = {}
        self._load()

    # ---------- Persistence ----------

    def _load(self) -> None:
        if not self.storage.exists(self.state_key):
            return
        try:
            doc = self.storage.read_json(self.state_key)
            surveys = {sid: Survey.model_validate(s) for sid, s in (doc.get("surveys") or {}).items()}
            responses = {
                sid: [ResponseSet.model_validate(r) for r in rs]
                for sid, rs in (doc.get("responses") or {}).items()
            }
        except (ValueError, TypeError, AttributeError) as e:
            # pydantic.ValidationError is a ValueError
            logger.warning("could not load survey state, starting empty: %s", e,
                           extra={"state_key": self.state_key})
            return
        for sid in surveys:
            responses.setdefault(sid, [])
        self._surveys = surveys
        self._responses = responses
        logger.info("loaded survey state", extra={"surveys": len(surveys)})

    def _flush(self) -> None:
        doc = {
            "surveys": {sid: s.model_dump() for sid, s in self._surveys.items()},
            "responses": {sid: [r.model_dump() for r in rs] for sid, rs in self._responses.items()},
        }
        self.storage.write_json(self.state_key, doc)

    # ---------- Operations ----------

    def create_survey(self, title: Optional[Any], questions: Any) -> Survey:
        if not isinstance(questions, list):
            raise ValidationError("questions required")
        for i, raw in enumerate(questions):
            if not isinstance(raw, dict):
                raise ValidationError(f"questions[{i}] must be an object")
            if _has_non_finite(raw):
                raise ValidationError(f"questions[{i}] contains a non-finite number")
            try:
                question = Question.from_raw(raw)
                if question.kind is QuestionKind.SCALE:
                    question.scale_range()
            except ConfigurationError as e:
                raise ValidationError(f"questions[{i}]: {e}") from e
        if title is not None and not isinstance(title, str):
            raise ValidationError("title must be a string")

        with self._lock:
            sid = new_survey_id()
            while sid in self._surveys:
                sid = new_survey_id()
            survey = Survey(id=sid, title=title or UNTITLED, questions=questions)
            self._surveys[sid] = survey
            self._responses[sid] = []
            try:
                self._flush()
            except Exception:
                del self._surveys[sid]
                del self._responses[sid]
                raise
        logger.info("survey created", extra={"survey_id": sid, "questions": len(questions)})
        return survey

    def get_survey(self, survey_id: str) -> Survey:
        survey = self._surveys.get(survey_id)
        if survey is None:
            raise NotFoundError(f"survey {survey_id} not found")
        return survey

    def submit_response(self, survey_id: str, answers: Any) -> ResponseSet:
        self.get_survey(survey_id)
        if not isinstance(answers, list):
            raise ValidationError("answers required")

        response = ResponseSet(ts=_now_ms(), answers=answers)
        with self._lock:
            bucket = self._responses.setdefault(survey_id, [])
            bucket.append(response)
            try:
                self._flush()
            except Exception:
                bucket.pop()
                raise
        logger.info("response recorded", extra={"survey_id": survey_id, "answers": len(answers)})
        return response

    def responses(self, survey_id: str) -> List[ResponseSet]:
        """Snapshot copy of a survey's responses."""
        self.get_survey(survey_id)
        with self._lock:
            return list(self._responses.get(survey_id, []))

    def analytics(self, survey_id: str) -> List[QuestionSummary]:
        survey = self.get_survey(survey_id)
        return summarize_survey(survey, self.responses(survey_id))
