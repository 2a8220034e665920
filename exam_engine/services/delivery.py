"""
Answer-free question views for test-taking sessions.
"""
from dataclasses import dataclass, field
from datetime import datetime
import logging
import random
from typing import List, Optional

from sqlalchemy.orm import Session

from exam_engine.core.randomness import secure_rng
from exam_engine.models.orm import Exam, ExamAssignment
from exam_engine.services import composer, question_store

logger = logging.getLogger(__name__)


@dataclass
class QuestionView:
    # No correct answer here, ever.
    id: int
    question_text: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    topic_id: Optional[int] = None


@dataclass
class SessionQuestion:
    # What the test taker sees: no topic, no correct answer.
    id: int
    question_text: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str


@dataclass
class DeliverySession:
    assignment_id: int
    exam_id: int
    title: str
    description: Optional[str]
    duration_minutes: int
    started_at: datetime
    questions: List[SessionQuestion] = field(default_factory=list)


def question_views(db: Session, exam: Exam) -> List[QuestionView]:
    """The exam's questions in canonical position order."""
    eqs = composer.canonical_questions(db, exam.id)
    questions = question_store.questions_by_ids(db, exam.tenant_id, [eq.question_id for eq in eqs])
    views = []
    for eq in eqs:
        q = questions.get(eq.question_id)
        if q is None:
            logger.warning("Exam %s references missing question %s", exam.id, eq.question_id)
            continue
        views.append(QuestionView(
            id=q.id, question_text=q.question_text,
            option_a=q.option_a, option_b=q.option_b, option_c=q.option_c, option_d=q.option_d,
            topic_id=q.topic_id,
        ))
    return views


def build_session(
    db: Session,
    assignment: ExamAssignment,
    exam: Exam,
    started_at: datetime,
    rng: Optional[random.Random] = None,
) -> DeliverySession:
    """Freshly shuffled display order; canonical positions are left untouched."""
    questions = [
        SessionQuestion(
            id=v.id, question_text=v.question_text,
            option_a=v.option_a, option_b=v.option_b, option_c=v.option_c, option_d=v.option_d,
        )
        for v in question_views(db, exam)
    ]
    (rng or secure_rng()).shuffle(questions)
    return DeliverySession(
        assignment_id=assignment.id,
        exam_id=exam.id,
        title=exam.title,
        description=exam.description,
        duration_minutes=exam.duration_minutes,
        started_at=started_at,
        questions=questions,
    )
