from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from jobpilot.db import models


def add_sent_application(db: Session, *, owner_id: str, session_id: str, **fields: Any) -> models.SentApplication:
    row = models.SentApplication(owner_id=owner_id, session_id=session_id, **fields)
    db.add(row)
    db.flush()
    return row


def list_sent_applications(
    db: Session,
    *,
    owner_id: str,
    success: bool | None = None,
    limit: int = 100,
) -> list[models.SentApplication]:
    stmt = select(models.SentApplication).where(models.SentApplication.owner_id == owner_id)
    if success is not None:
        stmt = stmt.where(models.SentApplication.success == success)
    stmt = stmt.order_by(models.SentApplication.sent_at.desc(), models.SentApplication.id.desc()).limit(limit)
    return list(db.scalars(stmt))


def list_audit_logs(
    db: Session,
    *,
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    limit: int = 200,
) -> list[models.AuditLog]:
    stmt = select(models.AuditLog)
    if action:
        stmt = stmt.where(models.AuditLog.action == action)
    if entity_type:
        stmt = stmt.where(models.AuditLog.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(models.AuditLog.entity_id == entity_id)
    stmt = stmt.order_by(models.AuditLog.created_at.desc(), models.AuditLog.id.desc()).limit(limit)
    return list(db.scalars(stmt))


def add_audit_log(
    db: Session,
    *,
    actor_type: str,
    actor_id: str | None,
    action: str,
    entity_type: str,
    entity_id: str,
    payload: dict[str, Any] | None = None,
) -> models.AuditLog:
    event = models.AuditLog(
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=payload or {},
    )
    db.add(event)
    db.flush()
    return event
