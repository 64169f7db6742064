from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session
import structlog

from app.db.session import get_db
from app.api.deps import get_current_user
from app.core.config import settings
from app.core.errors import InvalidRequest
from app.core.security import hash_password, verify_password, issue_staff_token
from app.models.user import User
from app.schemas.auth import LoginRequest, PasswordChange, TokenOut
from app.schemas.envelope import ok
from app.services.audit_service import log_audit

router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger().bind(component="auth")


@router.post("/login")
def login(body: LoginRequest, db: Session = Depends(get_db)):
    email = body.email.strip().lower()
    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user or not user.is_active or not verify_password(body.password, user.password_hash):
        logger.info("login_rejected", email=email)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    token = TokenOut(
        access_token=issue_staff_token(user.id, user.role),
        role=user.role,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    return ok(token.model_dump())


@router.get("/me")
def me(me: User = Depends(get_current_user)):
    return ok({
        "id": me.id,
        "email": me.email,
        "fullName": me.full_name or "",
        "role": me.role,
        "lastLoginAt": me.last_login_at.isoformat() if me.last_login_at else None,
    })


@router.post("/change-password")
def change_password(body: PasswordChange, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    if not verify_password(body.oldPassword, me.password_hash):
        raise InvalidRequest("Old password incorrect", code="wrong_password")
    me.password_hash = hash_password(body.newPassword)
    log_audit(db, me.email, "password_changed", "user", me.id)
    db.commit()
    return ok(message="Password changed")
