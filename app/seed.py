"""Bootstrap staff accounts from the environment.

ADMIN_EMAIL/ADMIN_PASSWORD create the first admin, GATE_EMAIL/GATE_PASSWORD
an optional scanner login for the entrance tablets. Existing accounts are
left untouched, so changing a password here after the first boot does nothing.
"""
import uuid

import structlog
from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import hash_password
from app.db.session import SessionLocal
from app.models.user import User

logger = structlog.get_logger().bind(component="seed")


def bootstrap_accounts() -> list[tuple[str, str, str, str]]:
    """(email, password, role, full name) for every account configured in the environment."""
    accounts = []
    if settings.ADMIN_PASSWORD:
        accounts.append((settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD, "admin", "Admin"))
    if settings.GATE_EMAIL and settings.GATE_PASSWORD:
        accounts.append((settings.GATE_EMAIL, settings.GATE_PASSWORD, "staff", "Gate scanner"))
    return accounts


def ensure_user(db: Session, email: str, password: str, role: str, name: str) -> bool:
    email = email.strip().lower()
    if db.execute(select(User.id).where(User.email == email)).first():
        return False
    db.add(User(id=str(uuid.uuid4()), email=email, full_name=name, role=role,
                password_hash=hash_password(password), is_active=True))
    db.commit()
    logger.info("user_seeded", email=email, role=role)
    return True


def run(db=None) -> int:
    """Returns the number of accounts created."""
    if db is None:
        db = SessionLocal()
    try:
        try:
            db.execute(text("SELECT 1 FROM users LIMIT 1"))
        except (ProgrammingError, OperationalError):
            # not migrated yet; the API must still come up
            db.rollback()
            logger.warning("seed_skipped", reason="users table missing, run alembic upgrade head")
            return 0

        accounts = bootstrap_accounts()
        if not accounts:
            logger.warning("seed_skipped", reason="no bootstrap passwords configured")
            return 0
        return sum(ensure_user(db, *account) for account in accounts)
    finally:
        db.close()


if __name__ == "__main__":
    run()
