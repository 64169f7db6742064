import uuid
from sqlalchemy import select
from sqlalchemy.orm import Session
from app.models.audit_log import AuditLog


def log_audit(db: Session, actor: str, action: str, entity_type: str, entity_id: str, details: dict | None = None):
    """Stage an audit row; committed together with the change it describes."""
    db.add(AuditLog(
        id=str(uuid.uuid4()),
        actor=actor or "system",
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details or {},
    ))


def history(db: Session, entity_type: str, entity_id: str) -> list[dict]:
    rows = db.execute(
        select(AuditLog)
        .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.created_at.asc())
    ).scalars().all()
    return [
        {
            "action": r.action,
            "actor": r.actor,
            "details": r.details or {},
            "at": r.created_at.isoformat() if r.created_at else None,
        }
        for r in rows
    ]
