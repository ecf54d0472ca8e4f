# questionnaire/routers/surveys.py
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from typing import Any, Optional

from questionnaire.services.surveys import SurveyService

router = APIRouter(prefix="/api/surveys", tags=["surveys"])


# ---------- Models ----------
# Fields are typed loosely on purpose: shape checks live in SurveyService
# so that a wrong-typed field is a 400 {error}, like a missing one.

class SurveyIn(BaseModel):
    title: Optional[Any] = None
    questions: Any = None


class ResponseIn(BaseModel):
    answers: Any = None


def get_survey_service(request: Request) -> SurveyService:
    return request.app.state.surveys


# ---------- Routes ----------

@router.post("", status_code=201)
def create_survey(payload: SurveyIn, service: SurveyService = Depends(get_survey_service)):
    survey = service.create_survey(payload.title, payload.questions)
    return {"id": survey.id}


@router.get("/{survey_id}")
def get_survey(survey_id: str, service: SurveyService = Depends(get_survey_service)):
    return service.get_survey(survey_id).model_dump()


@router.post("/{survey_id}/responses")
def submit_response(survey_id: str, payload: ResponseIn,
                    service: SurveyService = Depends(get_survey_service)):
    service.submit_response(survey_id, payload.answers)
    return {"ok": True}


@router.get("/{survey_id}/analytics")
def survey_analytics(survey_id: str, service: SurveyService = Depends(get_survey_service)):
    """One summary per question, in question order."""
    return [summary.model_dump(mode="json") for summary in service.analytics(survey_id)]
