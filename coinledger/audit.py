"""Append-only audit trail for financial and configuration actions.

Entries are added to the caller's session and land in the caller's commit, so
an audited action and its audit row are written together or not at all.
"""

import uuid
from typing import Any

from sqlalchemy.orm import Session

from . import models


def record(
    db: Session,
    *,
    actor_id: str,
    actor_type: str,
    action: str,
    target_type: str,
    target_id: str | None = None,
    details: dict[str, Any] | None = None,
    ip_address: str | None = None,
) -> models.AuditLog:
    entry = models.AuditLog(
        id=uuid.uuid4(),
        actor_id=actor_id,
        actor_type=actor_type,
        action=action,
        target_type=target_type,
        target_id=target_id,
        details=details or {},
        ip_address=ip_address,
        created_at=models.utcnow(),
    )
    db.add(entry)
    return entry


def _filtered(
    db: Session,
    *,
    actor_id: str | None = None,
    action: str | None = None,
    target_type: str | None = None,
    target_id: str | None = None,
):
    query = db.query(models.AuditLog)
    if actor_id:
        query = query.filter(models.AuditLog.actor_id == actor_id)
    if action:
        query = query.filter(models.AuditLog.action == action)
    if target_type:
        query = query.filter(models.AuditLog.target_type == target_type)
    if target_id:
        query = query.filter(models.AuditLog.target_id == target_id)
    return query


def list_entries(db: Session, *, limit: int = 50, offset: int = 0, **filters) -> list[models.AuditLog]:
    return (
        _filtered(db, **filters)
        .order_by(models.AuditLog.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def count_entries(db: Session, **filters) -> int:
    return _filtered(db, **filters).count()
