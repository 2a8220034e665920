"""
Exam composition by stratified random sampling over topics.

For every requested topic a fixed number of active questions is drawn without
replacement, the per-topic picks are concatenated and then shuffled as a whole
so topics interleave. The resulting order becomes the exam's canonical
``position`` sequence 1..N and never changes afterwards.
"""
from dataclasses import dataclass
from datetime import datetime
import logging
import random
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from exam_engine.core.clock import utcnow
from exam_engine.core.config import settings
from exam_engine.core.database import atomic
from exam_engine.core.errors import BusinessRuleError, InsufficientPoolError, NotFoundError, ValidationError
from exam_engine.core.randomness import secure_rng
from exam_engine.models.orm import Exam, ExamAssignment, ExamQuestion, Question
from exam_engine.services import question_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TopicRequest:
    topic_id: int
    count: int


@dataclass
class ExamSummary:
    id: int
    tenant_id: str
    title: str
    description: Optional[str]
    total_questions: int
    duration_minutes: int
    passing_percentage: int
    selected_topic_count: Optional[int]
    created_at: datetime


def _validate_metadata(title: str, duration_minutes: int, passing_percentage: Optional[int]) -> int:
    if not (title or "").strip():
        raise ValidationError("Title is required")
    if duration_minutes is None or duration_minutes <= 0:
        raise ValidationError("Duration must be greater than 0")
    passing = 0 if passing_percentage is None else passing_percentage
    if passing < 0 or passing > 100:
        raise ValidationError("Passing percentage must be between 0 and 100")
    return passing


def _validate_topic_requests(topic_requests: Sequence[TopicRequest]) -> None:
    if not topic_requests:
        raise ValidationError("At least one topic is required")
    seen = set()
    for t in topic_requests:
        if t.topic_id is None or t.count is None or t.count < 1:
            raise ValidationError("Each topic must include topicId and questionsCount >= 1")
        if t.count > settings.MAX_QUESTIONS_PER_TOPIC:
            raise ValidationError(f"At most {settings.MAX_QUESTIONS_PER_TOPIC} questions per topic")
        if t.topic_id in seen:
            raise ValidationError(f"Topic listed more than once: {t.topic_id}")
        seen.add(t.topic_id)


def sample_questions(pools: Sequence[Sequence[int]], counts: Sequence[int], rng: random.Random) -> List[int]:
    """Draw ``counts[i]`` ids from ``pools[i]`` without replacement, then interleave all picks."""
    chosen: List[int] = []
    for pool, count in zip(pools, counts):
        chosen.extend(rng.sample(list(pool), count))
    rng.shuffle(chosen)
    return chosen


def compose_exam(
    db: Session,
    tenant_id: str,
    title: str,
    description: Optional[str],
    duration_minutes: int,
    passing_percentage: Optional[int],
    topic_requests: Sequence[TopicRequest],
    created_by: str,
    created_by_role: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> Exam:
    """Build and persist an exam with its ordered question list.

    Raises ``ValidationError`` for bad metadata or topic requests, ``NotFoundError``
    when a topic is not in the tenant and ``InsufficientPoolError`` when a topic
    has fewer active questions than requested. Nothing is written on failure.
    """
    passing = _validate_metadata(title, duration_minutes, passing_percentage)
    _validate_topic_requests(topic_requests)
    rng = rng or secure_rng()
    logger.info("Composing exam '%s' for tenant %s from %d topics", title, tenant_id, len(topic_requests))

    with atomic(db):
        pools = []
        for t in topic_requests:
            question_store.get_topic(db, tenant_id, t.topic_id)
            ids = question_store.active_question_ids(db, tenant_id, t.topic_id)
            if len(ids) < t.count:
                raise InsufficientPoolError(t.topic_id, t.count, len(ids))
            pools.append(ids)

        chosen = sample_questions(pools, [t.count for t in topic_requests], rng)
        total = sum(t.count for t in topic_requests)

        exam = Exam(
            tenant_id=tenant_id,
            title=title.strip(),
            description=description,
            duration_minutes=duration_minutes,
            passing_percentage=passing,
            total_questions=total,
            created_by=created_by,
            created_by_role=created_by_role,
        )
        exam.questions = [ExamQuestion(question_id=qid, position=pos) for pos, qid in enumerate(chosen, start=1)]
        db.add(exam)

    logger.info("Exam %s composed with %d questions", exam.id, total)
    return exam


# ---- Administration ----

def get_exam(db: Session, tenant_id: str, exam_id: int) -> Exam:
    exam = db.scalar(select(Exam).where(Exam.id == exam_id, Exam.tenant_id == tenant_id))
    if exam is None:
        raise NotFoundError(f"Exam not found: {exam_id}")
    return exam


def canonical_questions(db: Session, exam_id: int) -> List[ExamQuestion]:
    stmt = select(ExamQuestion).where(ExamQuestion.exam_id == exam_id).order_by(ExamQuestion.position)
    return list(db.scalars(stmt))


def summarize(db: Session, exam: Exam, with_topic_count: bool = True) -> ExamSummary:
    topic_count = None
    if with_topic_count:
        topic_count = db.scalar(
            select(func.count(func.distinct(Question.topic_id)))
            .join(ExamQuestion, ExamQuestion.question_id == Question.id)
            .where(ExamQuestion.exam_id == exam.id)
        ) or 0
    return ExamSummary(
        id=exam.id,
        tenant_id=exam.tenant_id,
        title=exam.title,
        description=exam.description,
        total_questions=exam.total_questions,
        duration_minutes=exam.duration_minutes,
        passing_percentage=exam.passing_percentage,
        selected_topic_count=topic_count,
        created_at=exam.created_at,
    )


def list_exams(db: Session, tenant_id: str) -> List[Exam]:
    stmt = select(Exam).where(Exam.tenant_id == tenant_id).order_by(Exam.created_at.desc(), Exam.id.desc())
    return list(db.scalars(stmt))


def update_exam(
    db: Session,
    tenant_id: str,
    exam_id: int,
    title: str,
    description: Optional[str],
    duration_minutes: int,
    passing_percentage: Optional[int],
    updated_by: str,
    updated_by_role: Optional[str] = None,
) -> Exam:
    # Metadata only: the question set and total_questions stay as composed.
    passing = _validate_metadata(title, duration_minutes, passing_percentage)
    with atomic(db):
        exam = get_exam(db, tenant_id, exam_id)
        exam.title = title.strip()
        exam.description = description
        exam.duration_minutes = duration_minutes
        exam.passing_percentage = passing
        exam.updated_by = updated_by
        exam.updated_by_role = updated_by_role
        exam.updated_at = utcnow()
    return exam


def delete_exam(db: Session, tenant_id: str, exam_id: int) -> None:
    with atomic(db):
        exam = get_exam(db, tenant_id, exam_id)
        assigned = db.scalar(select(func.count(ExamAssignment.id)).where(ExamAssignment.exam_id == exam.id))
        if assigned:
            raise BusinessRuleError(f"Exam {exam_id} has {assigned} assignment(s) and cannot be deleted")
        db.delete(exam)
    logger.info("Exam %s deleted", exam_id)
