import os
from enum import Enum
from typing import Generator, Optional, Set
from fastapi import Depends, Header, HTTPException, status
from gellobit.db.database import SessionLocal


def _codes(var: str) -> Set[str]:
    return {c.strip() for c in os.getenv(var, "").split(",") if c.strip()}


class Role(str, Enum):
    user = "user"
    admin = "admin"


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_role(x_access_code: Optional[str] = Header(None, alias="X-Access-Code")) -> Role:
    if x_access_code is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing access code",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if x_access_code in _codes("ADMIN_CODES"):
        return Role.admin
    if x_access_code in _codes("USER_CODES"):
        return Role.user
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid access code")


def require_admin(role: Role = Depends(get_role)) -> Role:
    if role != Role.admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return role


def require_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    secret = os.getenv("CRON_SECRET", "")
    if not secret or authorization != f"Bearer {secret}":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron secret")
