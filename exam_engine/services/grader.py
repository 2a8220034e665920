"""
Submission grading.

A submission is validated in a fixed order (first failure wins, nothing is
written), graded against the exam's canonical question list in position order,
and persisted as one ExamAttempt with one ExamAttemptAnswer per canonical
question. The assignment's attempt counter is advanced with a
compare-and-increment so concurrent submissions cannot overspend the budget.
"""
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from exam_engine.core.clock import utcnow
from exam_engine.core.database import atomic
from exam_engine.core.errors import BusinessRuleError, ValidationError
from exam_engine.models.orm import (
    AssignmentStatus, Exam, ExamAssignment, ExamAttempt, ExamAttemptAnswer, ExamQuestion, OptionLabel
)
from exam_engine.services import composer, question_store
from exam_engine.services.assignments import get_assignment_for_employee

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmittedAnswer:
    question_id: int
    selected: str


@dataclass
class ExamResult:
    # Aggregates only; per-question correctness stays server-side.
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


@dataclass
class AttemptSummary:
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


def percentage_of(correct: int, total: int) -> int:
    """Whole-number percentage, rounding halves up; 0 when there are no questions."""
    if total <= 0:
        return 0
    return (200 * correct + total) // (2 * total)


def clamp_duration_seconds(elapsed_seconds: Optional[int], duration_minutes: Optional[int]) -> int:
    limit = max(1, duration_minutes or 1) * 60
    value = limit if elapsed_seconds is None else elapsed_seconds
    return min(max(0, value), limit)


def check_window(a: ExamAssignment, now: datetime) -> None:
    if a.start_time is not None and now < a.start_time:
        raise BusinessRuleError("Assignment window not started")
    if a.end_time is not None and now > a.end_time:
        raise BusinessRuleError("Assignment window ended")


def validate_answers(answers: Sequence[SubmittedAnswer], exam_question_ids: set) -> Dict[int, OptionLabel]:
    """Every answer must target an exam question, at most once, with a letter A-D."""
    selected: Dict[int, OptionLabel] = {}
    for ans in answers:
        if ans.question_id not in exam_question_ids:
            raise ValidationError(f"Answer includes non-exam question: {ans.question_id}")
        if ans.question_id in selected:
            raise ValidationError(f"Duplicate answer for question: {ans.question_id}")
        letter = (ans.selected or "").strip().upper()
        if letter not in OptionLabel.__members__:
            raise ValidationError(f"Invalid option: {ans.selected}")
        selected[ans.question_id] = OptionLabel(letter)
    return selected


def grade(
    eqs: Sequence[ExamQuestion],
    correct_by_question: Dict[int, OptionLabel],
    selected: Dict[int, OptionLabel],
) -> Tuple[int, List[ExamAttemptAnswer]]:
    """Walk the canonical order; a missing answer counts as wrong."""
    correct = 0
    rows = []
    for eq in eqs:
        choice = selected.get(eq.question_id)
        key = correct_by_question.get(eq.question_id)
        is_correct = choice is not None and key is not None and choice == key
        if is_correct:
            correct += 1
        rows.append(ExamAttemptAnswer(
            question_id=eq.question_id, selected=choice, is_correct=is_correct, position=eq.position
        ))
    return correct, rows


def _claim_attempt(db: Session, a: ExamAssignment, expected_used: int, passed: bool, now: datetime) -> None:
    """Compare-and-increment the attempt counter; lose the race and the whole submission rolls back."""
    values = {"attempts_used": expected_used + 1, "updated_at": now}
    if passed:
        values["status"] = AssignmentStatus.COMPLETED
    # A failed attempt leaves the status alone: IN_PROGRESS stays, COMPLETED is never undone.
    result = db.execute(
        update(ExamAssignment)
        .where(
            ExamAssignment.id == a.id,
            ExamAssignment.attempts_used == expected_used,
            ExamAssignment.attempts_used < ExamAssignment.max_attempts,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Assignment %s attempt budget changed during submission", a.id)
        raise BusinessRuleError("No attempts remaining")
    db.expire(a)


def submit_attempt(
    db: Session,
    tenant_id: str,
    employee_id: str,
    assignment_id: int,
    exam_id: int,
    answers: Sequence[SubmittedAnswer],
    elapsed_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> ExamResult:
    """Validate, grade and persist one attempt."""
    now = now or utcnow()
    answers = list(answers or [])

    with atomic(db):
        a = get_assignment_for_employee(db, assignment_id, tenant_id, employee_id)
        if a.status == AssignmentStatus.REVOKED:
            raise BusinessRuleError("Assignment revoked")

        exam: Exam = composer.get_exam(db, tenant_id, exam_id)
        if exam.id != a.exam_id:
            raise ValidationError("Exam does not match assignment")

        check_window(a, now)

        attempts_used = a.attempts_used
        if attempts_used >= a.max_attempts:
            raise BusinessRuleError(f"No attempts remaining (max {a.max_attempts})")

        eqs = composer.canonical_questions(db, exam.id)
        if len(eqs) != exam.total_questions:
            logger.warning(
                "Exam %s question count mismatch: expected %s, got %s", exam.id, exam.total_questions, len(eqs)
            )
        selected = validate_answers(answers, {eq.question_id for eq in eqs})

        questions = question_store.questions_by_ids(db, tenant_id, [eq.question_id for eq in eqs])
        correct, answer_rows = grade(eqs, {qid: q.correct_answer for qid, q in questions.items()}, selected)
        total = len(eqs)
        percentage = percentage_of(correct, total)
        passed = percentage >= (exam.passing_percentage or 0)
        duration = clamp_duration_seconds(elapsed_seconds, exam.duration_minutes)
        attempt_number = attempts_used + 1

        _claim_attempt(db, a, attempts_used, passed, now)

        attempt = ExamAttempt(
            tenant_id=tenant_id,
            exam_id=exam.id,
            assignment_id=a.id,
            employee_id=str(employee_id),
            attempt_number=attempt_number,
            total_questions=total,
            correct_answers=correct,
            percentage=percentage,
            passed=passed,
            duration_seconds=duration,
            submitted_at=now,
        )
        attempt.answers = answer_rows
        db.add(attempt)
        db.flush()
        attempt_id = attempt.id
        max_attempts = a.max_attempts

    logger.info(
        "Attempt %s (#%d) graded for assignment %s: %d/%d, passed=%s",
        attempt_id, attempt_number, assignment_id, correct, total, passed,
    )
    return ExamResult(
        attempt_id=attempt_id,
        attempt_number=attempt_number,
        total_questions=total,
        correct_answers=correct,
        percentage=percentage,
        passed=passed,
        duration_seconds=duration,
        max_attempts=max_attempts,
        attempts_used=attempt_number,
        attempts_remaining=max(0, max_attempts - attempt_number),
        submitted_at=now,
    )


def list_attempts_for_employee(db: Session, tenant_id: str, employee_id: str) -> List[AttemptSummary]:
    rows = db.scalars(
        select(ExamAttempt)
        .where(ExamAttempt.tenant_id == tenant_id, ExamAttempt.employee_id == str(employee_id))
        .order_by(ExamAttempt.submitted_at.desc(), ExamAttempt.id.desc())
    )
    return [
        AttemptSummary(
            attempt_id=r.id, assignment_id=r.assignment_id, exam_id=r.exam_id, attempt_number=r.attempt_number,
            total_questions=r.total_questions, correct_answers=r.correct_answers, percentage=r.percentage,
            passed=r.passed, duration_seconds=r.duration_seconds, submitted_at=r.submitted_at,
        )
        for r in rows
    ]
