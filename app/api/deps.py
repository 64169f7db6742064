from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.core.security import read_staff_token
from app.models.user import User
from app.services.email_service import MailTransport
from app.services.stripe_client import PaymentGateway, build_stripe_client

bearer = HTTPBearer(auto_error=False)

def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    claims = read_staff_token(creds.credentials)
    if not claims:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.get(User, claims.get("sub"))
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user

def require_roles(*roles: str):
    def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return _guard


def get_gateway() -> PaymentGateway:
    return build_stripe_client()


def get_mail_transport() -> MailTransport:
    return MailTransport()


def get_payment_sync(request: Request):
    return request.app.state.sweeps["payment_sync"]


def get_email_retry(request: Request):
    return request.app.state.sweeps["email_retry"]
