"""
Tenant-scoped access to topics and questions.

Every lookup filters on ``(tenant_id, id)`` in the query itself, so a row from
another tenant is indistinguishable from a missing one.
"""
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exam_engine.core.database import atomic
from exam_engine.core.errors import BusinessRuleError, NotFoundError, ValidationError
from exam_engine.models.orm import OptionLabel, Question, Topic

logger = logging.getLogger(__name__)


def parse_option(value: str | OptionLabel | None) -> OptionLabel:
    if isinstance(value, OptionLabel):
        return value
    try:
        return OptionLabel((value or "").strip().upper())
    except ValueError:
        raise ValidationError(f"Invalid option: {value}") from None


# ---- Lookups ----

def get_topic(db: Session, tenant_id: str, topic_id: int) -> Topic:
    topic = db.scalar(select(Topic).where(Topic.id == topic_id, Topic.tenant_id == tenant_id))
    if topic is None:
        raise NotFoundError(f"Topic not found: {topic_id}")
    return topic


def list_topics(db: Session, tenant_id: str) -> List[Topic]:
    return list(db.scalars(select(Topic).where(Topic.tenant_id == tenant_id).order_by(Topic.name)))


def active_question_ids(db: Session, tenant_id: str, topic_id: int) -> List[int]:
    stmt = (
        select(Question.id)
        .where(Question.tenant_id == tenant_id, Question.topic_id == topic_id, Question.is_active.is_(True))
        .order_by(Question.id)
    )
    return list(db.scalars(stmt))


def questions_by_ids(db: Session, tenant_id: str, ids: Iterable[int]) -> Dict[int, Question]:
    """Bulk fetch, active or not: soft-deleted questions still belong to exams that use them."""
    ids = list(ids)
    if not ids:
        return {}
    rows = db.scalars(select(Question).where(Question.tenant_id == tenant_id, Question.id.in_(ids)))
    return {q.id: q for q in rows}


def get_question(db: Session, tenant_id: str, question_id: int) -> Question:
    q = db.scalar(select(Question).where(Question.id == question_id, Question.tenant_id == tenant_id))
    if q is None:
        raise NotFoundError(f"Question not found: {question_id}")
    return q


def list_questions_by_topic(db: Session, tenant_id: str, topic_id: int) -> List[Question]:
    get_topic(db, tenant_id, topic_id)
    stmt = (
        select(Question)
        .where(Question.tenant_id == tenant_id, Question.topic_id == topic_id, Question.is_active.is_(True))
        .order_by(Question.created_at.desc(), Question.id.desc())
    )
    return list(db.scalars(stmt))


def _text_taken(db: Session, tenant_id: str, text: str, exclude_id: Optional[int] = None) -> bool:
    stmt = select(Question.id).where(
        Question.tenant_id == tenant_id,
        Question.is_active.is_(True),
        func.lower(Question.question_text) == text.lower(),
    )
    if exclude_id is not None:
        stmt = stmt.where(Question.id != exclude_id)
    return db.scalar(stmt.limit(1)) is not None


# ---- Authoring ----

def create_topic(db: Session, tenant_id: str, name: str, created_by: str, description: Optional[str] = None) -> Topic:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Topic name is required")
    try:
        with atomic(db):
            exists = db.scalar(
                select(Topic.id).where(Topic.tenant_id == tenant_id, func.lower(Topic.name) == name.lower()).limit(1)
            )
            if exists is not None:
                raise BusinessRuleError(f"Topic already exists: {name}")
            topic = Topic(tenant_id=tenant_id, name=name, description=description, created_by=created_by)
            db.add(topic)
    except IntegrityError:
        # a concurrent insert of the same name won the unique index
        raise BusinessRuleError(f"Topic already exists: {name}") from None
    logger.info("Topic %s created for tenant %s", topic.id, tenant_id)
    return topic


def create_question(
    db: Session,
    tenant_id: str,
    topic_id: int,
    question_text: str,
    options: List[str],
    correct_answer: str,
    created_by: str,
    created_by_role: Optional[str] = None,
) -> Question:
    text, option_a, option_b, option_c, option_d = _clean_question_fields(question_text, options)
    correct = parse_option(correct_answer)
    with atomic(db):
        get_topic(db, tenant_id, topic_id)
        if _text_taken(db, tenant_id, text):
            raise BusinessRuleError("Question with similar text already exists")
        q = Question(
            tenant_id=tenant_id, topic_id=topic_id, question_text=text,
            option_a=option_a, option_b=option_b, option_c=option_c, option_d=option_d,
            correct_answer=correct, is_active=True, created_by=created_by, created_by_role=created_by_role,
        )
        db.add(q)
    logger.info("Question %s created in topic %s for tenant %s", q.id, topic_id, tenant_id)
    return q


def update_question(
    db: Session,
    tenant_id: str,
    question_id: int,
    topic_id: int,
    question_text: str,
    options: List[str],
    correct_answer: str,
) -> Question:
    text, option_a, option_b, option_c, option_d = _clean_question_fields(question_text, options)
    correct = parse_option(correct_answer)
    with atomic(db):
        q = get_question(db, tenant_id, question_id)
        get_topic(db, tenant_id, topic_id)
        if q.is_active and _text_taken(db, tenant_id, text, exclude_id=q.id):
            raise BusinessRuleError("Question with similar text already exists")
        q.topic_id = topic_id
        q.question_text = text
        q.option_a, q.option_b, q.option_c, q.option_d = option_a, option_b, option_c, option_d
        q.correct_answer = correct
    return q


def deactivate_question(db: Session, tenant_id: str, question_id: int) -> None:
    """Soft delete: the question leaves the sampling pool but keeps grading existing exams."""
    with atomic(db):
        q = get_question(db, tenant_id, question_id)
        q.is_active = False
    logger.info("Question soft-deleted: %s", question_id)


def _clean_question_fields(question_text: str, options: List[str]):
    text = (question_text or "").strip()
    if not text:
        raise ValidationError("Question text is required")
    if len(options) != 4:
        raise ValidationError("Exactly four options (A-D) are required")
    cleaned = [(o or "").strip() for o in options]
    for label, value in zip("ABCD", cleaned):
        if not value:
            raise ValidationError(f"Missing value for option{label}")
    return (text, *cleaned)
