from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
import jwt
from datetime import datetime, timedelta, timezone
from exam_engine.core.config import settings
from exam_engine.core.errors import AuthError

ROLE_SUPER_ADMIN = "SUPER_ADMIN"
ROLE_ADMIN = "ADMIN"
ROLE_EMPLOYEE = "EMPLOYEE"
ADMIN_ROLES = (ROLE_SUPER_ADMIN, ROLE_ADMIN)


class Identity(BaseModel):
    user_id: str
    tenant_id: str
    role: str
    token: str


bearer = HTTPBearer(auto_error=False)


def create_token(user_id: str, tenant_id: str, role: str, ttl_minutes: int | None = None) -> str:
    now = datetime.now(timezone.utc)
    ttl = ttl_minutes if ttl_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    payload = {
        "sub": str(user_id), "tenant_id": str(tenant_id), "role": role.upper(),
        "iat": int(now.timestamp()), "exp": int((now + timedelta(minutes=ttl)).timestamp()),
    }
    return jwt.encode(payload, settings.SECRET_KEY.get_secret_value(), algorithm=settings.ALGORITHM)


def decode_token(token: str) -> Identity:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY.get_secret_value(), algorithms=[settings.ALGORITHM])
        return Identity(
            user_id=str(payload["sub"]),
            tenant_id=str(payload["tenant_id"]),
            role=str(payload["role"]).upper().removeprefix("ROLE_"),
            token=token,
        )
    except (jwt.PyJWTError, KeyError) as e:
        raise AuthError("Invalid or expired token") from e


def get_identity(creds: HTTPAuthorizationCredentials | None = Depends(bearer)) -> Identity:
    if creds is None:
        raise AuthError("Missing bearer token")
    return decode_token(creds.credentials)


def require_roles(*required: str):
    def checker(identity: Identity = Depends(get_identity)):
        if identity.role not in required:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return identity
    return checker
