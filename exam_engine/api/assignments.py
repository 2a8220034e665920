from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, conint
from typing import List, Optional
from datetime import datetime
from sqlalchemy.orm import Session
from exam_engine.api.common import ApiResponse, ok
from exam_engine.core.database import get_db
from exam_engine.core.auth import require_roles, get_identity, Identity, ADMIN_ROLES, ROLE_EMPLOYEE
from exam_engine.services import assignments
from exam_engine.services.directory import EmployeeDirectory, HttpEmployeeDirectory

router = APIRouter()


def get_employee_directory(identity: Identity = Depends(get_identity)) -> EmployeeDirectory:
    return HttpEmployeeDirectory(identity.token)


class AssignRequest(BaseModel):
    exam_id: int
    employee_ids: List[str] = Field(min_length=1)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    max_attempts: Optional[conint(ge=1)] = None


class AssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    exam_id: int
    employee_id: str
    exam_title: str
    exam_description: Optional[str] = None
    total_questions: int
    duration_minutes: int
    passing_percentage: int
    status: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    can_start: bool
    status_message: str
    max_attempts: int
    attempts_used: int
    attempts_remaining: int
    last_result: Optional[str] = None
    last_percentage: Optional[int] = None


class SessionQuestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    question_text: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str


class TestSessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    assignment_id: int
    exam_id: int
    title: str
    description: Optional[str] = None
    duration_minutes: int
    started_at: datetime
    questions: List[SessionQuestionOut]


@router.post("", response_model=ApiResponse[List[AssignmentOut]])
def assign_exam(payload: AssignRequest, who: Identity = Depends(require_roles(*ADMIN_ROLES)),
                directory: EmployeeDirectory = Depends(get_employee_directory), db: Session = Depends(get_db)):
    views = assignments.assign_exam(
        db, who.tenant_id, payload.exam_id, payload.employee_ids, who.user_id, who.role, directory,
        start_time=payload.start_time, end_time=payload.end_time, max_attempts=payload.max_attempts,
    )
    return ok("Exam assigned successfully", [AssignmentOut.model_validate(v) for v in views])


@router.get("/my", response_model=ApiResponse[List[AssignmentOut]])
def my_assignments(who: Identity = Depends(require_roles(ROLE_EMPLOYEE)), db: Session = Depends(get_db)):
    views = assignments.list_for_employee(db, who.tenant_id, who.user_id)
    return ok("Assignments retrieved", [AssignmentOut.model_validate(v) for v in views])


@router.post("/{assignment_id}/start", response_model=ApiResponse[TestSessionOut])
def start_assignment(assignment_id: int, who: Identity = Depends(require_roles(ROLE_EMPLOYEE)), db: Session = Depends(get_db)):
    session = assignments.start_assignment(db, assignment_id, who.tenant_id, who.user_id)
    return ok("Exam started successfully", TestSessionOut.model_validate(session))
