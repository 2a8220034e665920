"""
Exam assignment lifecycle: ASSIGNED -> IN_PROGRESS -> COMPLETED.

REVOKED is set by administrators outside this module. EXPIRED is never stored;
it is derived from ``end_time`` at read time and only overrides the displayed
status. Every operation samples "now" once and uses it for all of its checks.
"""
from dataclasses import dataclass
from datetime import datetime
import logging
import random
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from exam_engine.core.clock import as_naive_utc, utcnow
from exam_engine.core.config import settings
from exam_engine.core.database import atomic
from exam_engine.core.errors import BusinessRuleError, ForbiddenError, NotFoundError, ValidationError
from exam_engine.models.orm import EXPIRED, AssignmentStatus, Exam, ExamAssignment, ExamAttempt
from exam_engine.services import composer, delivery
from exam_engine.services.directory import EmployeeDirectory, employee_ids

logger = logging.getLogger(__name__)

_UNIQUE_KEY = ["tenant_id", "exam_id", "employee_id"]
# Only these dialects can skip a duplicate inside the INSERT itself.
_CONFLICT_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


@dataclass
class AssignmentView:
    id: int
    exam_id: int
    employee_id: str
    exam_title: str
    exam_description: Optional[str]
    total_questions: int
    duration_minutes: int
    passing_percentage: int
    status: str
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    can_start: bool
    status_message: str
    max_attempts: int
    attempts_used: int
    attempts_remaining: int
    last_result: Optional[str] = None
    last_percentage: Optional[int] = None
    created_at: Optional[datetime] = None


# ---- Derived state ----

def is_expired(a: ExamAssignment, now: datetime) -> bool:
    return a.end_time is not None and now > a.end_time


def not_yet_open(a: ExamAssignment, now: datetime) -> bool:
    return a.start_time is not None and now < a.start_time


def can_start(a: ExamAssignment, now: datetime) -> bool:
    if is_expired(a, now):
        return False
    if a.status not in (AssignmentStatus.ASSIGNED, AssignmentStatus.IN_PROGRESS):
        return False
    if not_yet_open(a, now):
        return False
    return True


def status_message(a: ExamAssignment, now: datetime) -> str:
    # completed > expired > not yet open > ready
    if a.status == AssignmentStatus.COMPLETED:
        return "Completed"
    if is_expired(a, now):
        return "Expired"
    if not_yet_open(a, now):
        return f"Available from {a.start_time.isoformat()}"
    return "Ready to start"


def display_status(a: ExamAssignment, now: datetime) -> str:
    if a.status == AssignmentStatus.COMPLETED:
        return AssignmentStatus.COMPLETED.value
    if is_expired(a, now):
        return EXPIRED
    return AssignmentStatus(a.status).value


def to_view(a: ExamAssignment, exam: Exam, now: datetime, last_attempt: Optional[ExamAttempt] = None) -> AssignmentView:
    return AssignmentView(
        id=a.id,
        exam_id=a.exam_id,
        employee_id=a.employee_id,
        exam_title=exam.title,
        exam_description=exam.description,
        total_questions=exam.total_questions,
        duration_minutes=exam.duration_minutes,
        passing_percentage=exam.passing_percentage,
        status=display_status(a, now),
        start_time=a.start_time,
        end_time=a.end_time,
        can_start=can_start(a, now),
        status_message=status_message(a, now),
        max_attempts=a.max_attempts,
        attempts_used=a.attempts_used,
        attempts_remaining=max(0, a.max_attempts - a.attempts_used),
        last_result=None if last_attempt is None else ("PASSED" if last_attempt.passed else "FAILED"),
        last_percentage=None if last_attempt is None else last_attempt.percentage,
        created_at=a.created_at,
    )


# ---- Lookups ----

def get_assignment_for_employee(db: Session, assignment_id: int, tenant_id: str, employee_id: str) -> ExamAssignment:
    """Tenant-scoped fetch; another tenant's row reads as missing, another employee's as forbidden."""
    a = db.scalar(
        select(ExamAssignment).where(ExamAssignment.id == assignment_id, ExamAssignment.tenant_id == tenant_id)
    )
    if a is None:
        raise NotFoundError("Assignment not found")
    if a.employee_id != str(employee_id):
        raise ForbiddenError("Assignment not accessible")
    return a


def _latest_attempts(db: Session, assignment_ids: Sequence[int]) -> Dict[int, ExamAttempt]:
    if not assignment_ids:
        return {}
    latest: Dict[int, ExamAttempt] = {}
    rows = db.scalars(
        select(ExamAttempt).where(ExamAttempt.assignment_id.in_(assignment_ids)).order_by(ExamAttempt.attempt_number)
    )
    for row in rows:
        latest[row.assignment_id] = row
    return latest


# ---- Operations ----

def _insert_if_absent(db: Session, values: dict) -> Optional[int]:
    """Insert one assignment unless the (tenant, exam, employee) key already exists.

    The unique constraint decides, so two concurrent calls cannot both insert.
    """
    dialect = db.get_bind().dialect.name
    insert = _CONFLICT_INSERTS.get(dialect)
    if insert is None:
        raise NotImplementedError(f"Unsupported database dialect: {dialect}")
    stmt = (
        insert(ExamAssignment)
        .values(**values)
        .on_conflict_do_nothing(index_elements=_UNIQUE_KEY)
        .returning(ExamAssignment.id)
    )
    return db.execute(stmt).scalar_one_or_none()


def assign_exam(
    db: Session,
    tenant_id: str,
    exam_id: int,
    employee_ids_requested: Sequence[str],
    admin_id: str,
    admin_role: Optional[str],
    directory: EmployeeDirectory,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    max_attempts: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[AssignmentView]:
    """Assign an exam to employees; already-assigned employees are skipped silently.

    Returns one view per newly created assignment.
    """
    now = now or utcnow()
    start_time, end_time = as_naive_utc(start_time), as_naive_utc(end_time)
    max_attempts = settings.DEFAULT_MAX_ATTEMPTS if max_attempts is None else max_attempts
    if max_attempts < 1:
        raise ValidationError("maxAttempts must be at least 1")
    requested = list(dict.fromkeys(str(e) for e in (employee_ids_requested or [])))
    if not requested:
        raise ValidationError("At least one employee is required")

    if start_time is not None and end_time is not None and end_time < start_time:
        raise ValidationError("Invalid date window")

    # Remote lookup first: no transaction is open while it blocks.
    known = employee_ids(directory)
    for emp in requested:
        if emp not in known:
            raise ValidationError(f"Employee not in company: {emp}")

    with atomic(db):
        exam = composer.get_exam(db, tenant_id, exam_id)
        created_ids = []
        for emp in requested:
            new_id = _insert_if_absent(db, {
                "tenant_id": tenant_id,
                "exam_id": exam.id,
                "employee_id": emp,
                "assigned_by": str(admin_id),
                "assigned_by_role": admin_role,
                "start_time": start_time,
                "end_time": end_time,
                "max_attempts": max_attempts,
                "attempts_used": 0,
                "status": AssignmentStatus.ASSIGNED,
                "created_at": now,
                "updated_at": now,
            })
            if new_id is not None:
                created_ids.append(new_id)

    logger.info(
        "Exam %s assigned to %d employee(s) in tenant %s, %d already assigned",
        exam.id, len(created_ids), tenant_id, len(requested) - len(created_ids),
    )
    if not created_ids:
        return []
    rows = {a.id: a for a in db.scalars(select(ExamAssignment).where(ExamAssignment.id.in_(created_ids)))}
    return [to_view(rows[i], exam, now) for i in created_ids]


def list_for_employee(db: Session, tenant_id: str, employee_id: str, now: Optional[datetime] = None) -> List[AssignmentView]:
    now = now or utcnow()
    assignments = list(db.scalars(
        select(ExamAssignment)
        .where(ExamAssignment.tenant_id == tenant_id, ExamAssignment.employee_id == str(employee_id))
        .order_by(ExamAssignment.created_at.desc(), ExamAssignment.id.desc())
    ))
    exam_ids = {a.exam_id for a in assignments}
    exams = {}
    if exam_ids:
        exams = {e.id: e for e in db.scalars(select(Exam).where(Exam.tenant_id == tenant_id, Exam.id.in_(exam_ids)))}
    latest = _latest_attempts(db, [a.id for a in assignments])
    return [to_view(a, exams[a.exam_id], now, latest.get(a.id)) for a in assignments if a.exam_id in exams]


def start_assignment(
    db: Session,
    assignment_id: int,
    tenant_id: str,
    employee_id: str,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> delivery.DeliverySession:
    """Authorize the employee, mark the assignment IN_PROGRESS once and deliver a shuffled session.

    A COMPLETED assignment keeps its status and is re-delivered while attempts remain.
    """
    now = now or utcnow()
    with atomic(db):
        a = get_assignment_for_employee(db, assignment_id, tenant_id, employee_id)
        if is_expired(a, now):
            raise BusinessRuleError("Assignment expired")
        if a.status == AssignmentStatus.REVOKED:
            raise BusinessRuleError("Assignment revoked")
        if not_yet_open(a, now):
            raise BusinessRuleError("Assignment window not started")
        # COMPLETED still re-delivers while the attempt budget allows another submission.
        if a.attempts_used >= a.max_attempts:
            raise BusinessRuleError(f"No attempts remaining (max {a.max_attempts})")

        exam = composer.get_exam(db, tenant_id, a.exam_id)
        if a.status == AssignmentStatus.ASSIGNED:
            a.status = AssignmentStatus.IN_PROGRESS
            a.updated_at = now
            logger.info("Assignment %s started by employee %s", a.id, employee_id)
        session = delivery.build_session(db, a, exam, now, rng)
    return session
