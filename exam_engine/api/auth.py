from fastapi import APIRouter
from pydantic import BaseModel, field_validator
from exam_engine.core.auth import create_token, ADMIN_ROLES, ROLE_EMPLOYEE

router = APIRouter()


class MockLogin(BaseModel):
    user_id: str
    tenant_id: str
    role: str

    @field_validator("role")
    @classmethod
    def known_role(cls, v: str) -> str:
        v = v.upper()
        if v not in (*ADMIN_ROLES, ROLE_EMPLOYEE):
            raise ValueError(f"unknown role {v}")
        return v


@router.post("/mock-login")
def mock_login(payload: MockLogin):
    token = create_token(payload.user_id, payload.tenant_id, payload.role)
    return {"access_token": token, "token_type": "bearer", "role": payload.role}
