from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, constr
from typing import List, Optional
from datetime import datetime
from sqlalchemy.orm import Session
from exam_engine.api.common import ApiResponse, ok
from exam_engine.core.database import get_db
from exam_engine.core.auth import require_roles, Identity, ADMIN_ROLES
from exam_engine.models.orm import OptionLabel
from exam_engine.services import question_store

router = APIRouter()


class TopicCreate(BaseModel):
    name: constr(min_length=1, max_length=255)
    description: Optional[str] = None


class TopicOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str
    description: Optional[str] = None
    created_at: datetime


class QuestionIn(BaseModel):
    topic_id: int
    question_text: constr(min_length=1)
    option_a: constr(min_length=1)
    option_b: constr(min_length=1)
    option_c: constr(min_length=1)
    option_d: constr(min_length=1)
    correct_answer: constr(min_length=1, max_length=1) = Field(description="A, B, C or D")

    def options(self) -> List[str]:
        return [self.option_a, self.option_b, self.option_c, self.option_d]


class QuestionOut(BaseModel):
    """Authoring view; includes the correct answer, so admins only."""
    model_config = ConfigDict(from_attributes=True)
    id: int
    topic_id: int
    question_text: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    correct_answer: OptionLabel
    is_active: bool
    created_at: datetime


@router.post("/topics", response_model=ApiResponse[TopicOut], status_code=201)
def create_topic(payload: TopicCreate, who: Identity = Depends(require_roles(*ADMIN_ROLES)), db: Session = Depends(get_db)):
    t = question_store.create_topic(db, who.tenant_id, payload.name, who.user_id, payload.description)
    return ok("Topic created", TopicOut.model_validate(t))


@router.get("/topics", response_model=ApiResponse[List[TopicOut]])
def list_topics(who: Identity = Depends(require_roles(*ADMIN_ROLES)), db: Session = Depends(get_db)):
    return ok("Topics retrieved", [TopicOut.model_validate(t) for t in question_store.list_topics(db, who.tenant_id)])


@router.post("/questions", response_model=ApiResponse[QuestionOut], status_code=201)
def create_question(payload: QuestionIn, who: Identity = Depends(require_roles(*ADMIN_ROLES)), db: Session = Depends(get_db)):
    q = question_store.create_question(
        db, who.tenant_id, payload.topic_id, payload.question_text, payload.options(),
        payload.correct_answer, created_by=who.user_id, created_by_role=who.role,
    )
    return ok("Question created", QuestionOut.model_validate(q))


@router.get("/topics/{topic_id}/questions", response_model=ApiResponse[List[QuestionOut]])
def questions_by_topic(topic_id: int, who: Identity = Depends(require_roles(*ADMIN_ROLES)), db: Session = Depends(get_db)):
    rows = question_store.list_questions_by_topic(db, who.tenant_id, topic_id)
    return ok("Questions retrieved", [QuestionOut.model_validate(q) for q in rows])


@router.put("/questions/{question_id}", response_model=ApiResponse[QuestionOut])
def update_question(question_id: int, payload: QuestionIn, who: Identity = Depends(require_roles(*ADMIN_ROLES)),
                    db: Session = Depends(get_db)):
    q = question_store.update_question(
        db, who.tenant_id, question_id, payload.topic_id, payload.question_text, payload.options(), payload.correct_answer
    )
    return ok("Question updated", QuestionOut.model_validate(q))


@router.delete("/questions/{question_id}", response_model=ApiResponse[None])
def delete_question(question_id: int, who: Identity = Depends(require_roles(*ADMIN_ROLES)), db: Session = Depends(get_db)):
    question_store.deactivate_question(db, who.tenant_id, question_id)
    return ok("Question deleted")
