from datetime import datetime
from typing import List, Optional
import enum

from sqlalchemy import (
    BigInteger, Integer, String, Text, Boolean, DateTime,
    ForeignKey, UniqueConstraint, CheckConstraint, Index,
    Enum as SQLEnum, func
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from exam_engine.core.clock import utcnow

# SQLite only autoincrements INTEGER PRIMARY KEY.
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


class OptionLabel(str, enum.Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"


class AssignmentStatus(str, enum.Enum):
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    REVOKED = "REVOKED"


# Display-only; never persisted.
EXPIRED = "EXPIRED"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


# ========== Question Bank ==========

class Topic(TimestampMixin, Base):
    __tablename__ = "topics"
    __table_args__ = (
        Index("idx_topics_tenant", "tenant_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)

    questions: Mapped[List["Question"]] = relationship(back_populates="topic")


class Question(TimestampMixin, Base):
    __tablename__ = "questions"
    __table_args__ = (
        Index("idx_questions_tenant_topic_active", "tenant_id", "topic_id", "is_active"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    topic_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("topics.id"), nullable=False)
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    option_a: Mapped[str] = mapped_column(Text, nullable=False)
    option_b: Mapped[str] = mapped_column(Text, nullable=False)
    option_c: Mapped[str] = mapped_column(Text, nullable=False)
    option_d: Mapped[str] = mapped_column(Text, nullable=False)
    correct_answer: Mapped[OptionLabel] = mapped_column(SQLEnum(OptionLabel, name="option_label"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by_role: Mapped[Optional[str]] = mapped_column(String(50))

    topic: Mapped["Topic"] = relationship(back_populates="questions")


# Topic names are unique per tenant, ignoring case.
Index("uq_topics_tenant_name", Topic.tenant_id, func.lower(Topic.name), unique=True)


# Question text is unique per tenant among active questions, ignoring case.
Index(
    "uq_questions_active_text",
    Question.tenant_id,
    func.lower(Question.question_text),
    unique=True,
    postgresql_where=Question.is_active.is_(True),
    sqlite_where=Question.is_active.is_(True),
)


# ========== Exams ==========

class Exam(TimestampMixin, Base):
    __tablename__ = "exams"
    __table_args__ = (
        Index("idx_exams_tenant", "tenant_id"),
        CheckConstraint("duration_minutes > 0", name="ck_exams_duration_positive"),
        CheckConstraint(
            "passing_percentage >= 0 AND passing_percentage <= 100",
            name="ck_exams_passing_percentage_range",
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    passing_percentage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # Set once at composition; authoritative even if rows are later tampered with.
    total_questions: Mapped[int] = mapped_column(Integer, nullable=False)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by_role: Mapped[Optional[str]] = mapped_column(String(50))
    updated_by: Mapped[Optional[str]] = mapped_column(String(255))
    updated_by_role: Mapped[Optional[str]] = mapped_column(String(50))

    questions: Mapped[List["ExamQuestion"]] = relationship(
        back_populates="exam", cascade="all, delete-orphan", order_by="ExamQuestion.position"
    )


class ExamQuestion(Base):
    __tablename__ = "exam_questions"
    __table_args__ = (
        UniqueConstraint("exam_id", "position", name="uq_exam_question_position"),
        UniqueConstraint("exam_id", "question_id", name="uq_exam_question_question"),
        CheckConstraint("position >= 1", name="ck_exam_question_position_positive"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    exam_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False)
    question_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("questions.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    exam: Mapped["Exam"] = relationship(back_populates="questions")
    question: Mapped["Question"] = relationship()


# ========== Delivery ==========

class ExamAssignment(TimestampMixin, Base):
    __tablename__ = "exam_assignments"
    __table_args__ = (
        Index("idx_ea_tenant_employee", "tenant_id", "employee_id"),
        UniqueConstraint("tenant_id", "exam_id", "employee_id", name="uq_exam_assignment_employee"),
        CheckConstraint("max_attempts >= 1", name="ck_exam_assignment_max_attempts"),
        CheckConstraint(
            "attempts_used >= 0 AND attempts_used <= max_attempts",
            name="ck_exam_assignment_attempt_budget",
        ),
        CheckConstraint(
            "start_time IS NULL OR end_time IS NULL OR end_time >= start_time",
            name="ck_exam_assignment_window",
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    exam_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("exams.id"), nullable=False)
    employee_id: Mapped[str] = mapped_column(String(255), nullable=False)
    assigned_by: Mapped[str] = mapped_column(String(255), nullable=False)
    assigned_by_role: Mapped[Optional[str]] = mapped_column(String(50))
    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    max_attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    attempts_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[AssignmentStatus] = mapped_column(
        SQLEnum(AssignmentStatus, name="assignment_status"),
        default=AssignmentStatus.ASSIGNED,
        nullable=False,
    )

    exam: Mapped["Exam"] = relationship()
    attempts: Mapped[List["ExamAttempt"]] = relationship(
        back_populates="assignment", order_by="ExamAttempt.attempt_number"
    )


class ExamAttempt(Base):
    __tablename__ = "exam_attempts"
    __table_args__ = (
        Index("idx_eat_tenant_employee", "tenant_id", "employee_id"),
        UniqueConstraint("assignment_id", "attempt_number", name="uq_exam_attempt_number"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    exam_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("exams.id"), nullable=False)
    assignment_id: Mapped[int] = mapped_column(BigIntPK, ForeignKey("exam_assignments.id"), nullable=False)
    employee_id: Mapped[str] = mapped_column(String(255), nullable=False)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    total_questions: Mapped[int] = mapped_column(Integer, nullable=False)
    correct_answers: Mapped[int] = mapped_column(Integer, nullable=False)
    percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    passed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    assignment: Mapped["ExamAssignment"] = relationship(back_populates="attempts")
    answers: Mapped[List["ExamAttemptAnswer"]] = relationship(
        back_populates="attempt", cascade="all, delete-orphan", order_by="ExamAttemptAnswer.position"
    )


class ExamAttemptAnswer(Base):
    __tablename__ = "exam_attempt_answers"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_exam_attempt_answer"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    attempt_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("exam_attempts.id", ondelete="CASCADE"), nullable=False
    )
    question_id: Mapped[int] = mapped_column(BigIntPK, nullable=False)
    selected: Mapped[Optional[OptionLabel]] = mapped_column(SQLEnum(OptionLabel, name="option_label"))
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    attempt: Mapped["ExamAttempt"] = relationship(back_populates="answers")
