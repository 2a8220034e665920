from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, conint, constr
from typing import List, Optional
from datetime import datetime
from sqlalchemy.orm import Session
from exam_engine.api.common import ApiResponse, ok
from exam_engine.core.database import get_db
from exam_engine.core.auth import require_roles, Identity, ROLE_EMPLOYEE
from exam_engine.services import grader
from exam_engine.services.grader import SubmittedAnswer

router = APIRouter()


class AnswerIn(BaseModel):
    question_id: int
    selected: constr(min_length=1, max_length=1)


class SubmitRequest(BaseModel):
    assignment_id: int
    exam_id: int
    answers: List[AnswerIn] = []
    elapsed_seconds: Optional[conint(ge=0)] = None


class ExamResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    attempt_id: int
    attempt_number: int
    total_questions: int
    correct_answers: int
    percentage: int
    passed: bool
    duration_seconds: int
    max_attempts: int
    attempts_used: int
    attempts_remaining: int
    submitted_at: datetime


class AttemptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    attempt_id: int
    assignment_id: int
    exam_id: int
    attempt_number: int
    total_questions: int
    correct_answers: int
    percentage: int
    passed: bool
    duration_seconds: int
    submitted_at: datetime


@router.post("", response_model=ApiResponse[ExamResultOut], status_code=201)
def submit_attempt(payload: SubmitRequest, who: Identity = Depends(require_roles(ROLE_EMPLOYEE)), db: Session = Depends(get_db)):
    result = grader.submit_attempt(
        db, who.tenant_id, who.user_id, payload.assignment_id, payload.exam_id,
        [SubmittedAnswer(question_id=a.question_id, selected=a.selected) for a in payload.answers],
        elapsed_seconds=payload.elapsed_seconds,
    )
    return ok("Exam submitted", ExamResultOut.model_validate(result))


@router.get("/my", response_model=ApiResponse[List[AttemptOut]])
def my_attempts(who: Identity = Depends(require_roles(ROLE_EMPLOYEE)), db: Session = Depends(get_db)):
    rows = grader.list_attempts_for_employee(db, who.tenant_id, who.user_id)
    return ok("Attempts retrieved", [AttemptOut.model_validate(r) for r in rows])
