from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, conint, constr
from typing import List, Optional
from datetime import datetime
from sqlalchemy.orm import Session
from exam_engine.api.common import ApiResponse, ok
from exam_engine.core.database import get_db
from exam_engine.core.auth import require_roles, Identity, ADMIN_ROLES
from exam_engine.services import composer, delivery
from exam_engine.services.composer import TopicRequest

router = APIRouter()


class ExamTopicIn(BaseModel):
    topic_id: int
    questions_count: conint(ge=1)


class ExamCreate(BaseModel):
    title: constr(min_length=1, max_length=255)
    description: Optional[str] = None
    duration_minutes: conint(ge=1)
    passing_percentage: Optional[conint(ge=0, le=100)] = None
    topics: List[ExamTopicIn] = Field(min_length=1)


class ExamUpdate(BaseModel):
    title: constr(min_length=1, max_length=255)
    description: Optional[str] = None
    duration_minutes: conint(ge=1)
    passing_percentage: Optional[conint(ge=0, le=100)] = None


class ExamOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    title: str
    description: Optional[str] = None
    total_questions: int
    duration_minutes: int
    passing_percentage: int
    selected_topic_count: Optional[int] = None
    created_at: datetime


class ExamQuestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    topic_id: Optional[int] = None
    question_text: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str


@router.post("", response_model=ApiResponse[ExamOut], status_code=201)
def compose_exam(payload: ExamCreate, who: Identity = Depends(require_roles(*ADMIN_ROLES)), db: Session = Depends(get_db)):
    exam = composer.compose_exam(
        db, who.tenant_id, payload.title, payload.description, payload.duration_minutes, payload.passing_percentage,
        [TopicRequest(topic_id=t.topic_id, count=t.questions_count) for t in payload.topics],
        created_by=who.user_id, created_by_role=who.role,
    )
    summary = composer.summarize(db, exam, with_topic_count=False)
    summary.selected_topic_count = len(payload.topics)
    return ok("Exam created", ExamOut.model_validate(summary))


@router.get("", response_model=ApiResponse[List[ExamOut]])
def list_exams(who: Identity = Depends(require_roles(*ADMIN_ROLES)), db: Session = Depends(get_db)):
    rows = composer.list_exams(db, who.tenant_id)
    return ok("Exams retrieved", [ExamOut.model_validate(composer.summarize(db, e, with_topic_count=False)) for e in rows])


@router.get("/{exam_id}", response_model=ApiResponse[ExamOut])
def get_exam(exam_id: int, who: Identity = Depends(require_roles(*ADMIN_ROLES)), db: Session = Depends(get_db)):
    exam = composer.get_exam(db, who.tenant_id, exam_id)
    return ok("Exam retrieved", ExamOut.model_validate(composer.summarize(db, exam)))


@router.get("/{exam_id}/questions", response_model=ApiResponse[List[ExamQuestionOut]])
def exam_questions(exam_id: int, who: Identity = Depends(require_roles(*ADMIN_ROLES)), db: Session = Depends(get_db)):
    exam = composer.get_exam(db, who.tenant_id, exam_id)
    return ok("Exam questions retrieved", [ExamQuestionOut.model_validate(v) for v in delivery.question_views(db, exam)])


@router.put("/{exam_id}", response_model=ApiResponse[ExamOut])
def update_exam(exam_id: int, payload: ExamUpdate, who: Identity = Depends(require_roles(*ADMIN_ROLES)),
                db: Session = Depends(get_db)):
    exam = composer.update_exam(
        db, who.tenant_id, exam_id, payload.title, payload.description, payload.duration_minutes,
        payload.passing_percentage, updated_by=who.user_id, updated_by_role=who.role,
    )
    return ok("Exam updated", ExamOut.model_validate(composer.summarize(db, exam)))


@router.delete("/{exam_id}", response_model=ApiResponse[None])
def delete_exam(exam_id: int, who: Identity = Depends(require_roles(*ADMIN_ROLES)), db: Session = Depends(get_db)):
    composer.delete_exam(db, who.tenant_id, exam_id)
    return ok("Exam deleted")
