from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from report_validation.config import settings
from report_validation.core.schemas import ActorContext
from report_validation.db import SessionLocal
from report_validation.services.workflow import ValidationWorkflowEngine


def get_db():
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _extract_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.strip().split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def require_token(
    x_api_token: str | None = Header(default=None),
    authorization: str | None = Header(default=None),
) -> None:
    tokens = settings.api_tokens()
    if not tokens:
        return

    bearer = _extract_bearer(authorization)
    candidate = x_api_token or bearer
    if candidate not in tokens:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid api token")


def get_actor(
    request: Request,
    x_actor_id: str | None = Header(default=None),
    x_actor_name: str | None = Header(default=None),
    x_actor_roles: str | None = Header(default=None),
    user_agent: str | None = Header(default=None),
) -> ActorContext | None:
    if not x_actor_id or not x_actor_id.strip():
        return None
    roles = [role.strip() for role in (x_actor_roles or "").split(",") if role.strip()]
    return ActorContext(
        actor_id=x_actor_id.strip(),
        display_name=(x_actor_name or "").strip() or "Unknown",
        roles=roles,
        ip_address=request.client.host if request.client else None,
        user_agent=user_agent,
    )


def get_engine(db: Session = Depends(get_db)) -> ValidationWorkflowEngine:
    return ValidationWorkflowEngine(db)
