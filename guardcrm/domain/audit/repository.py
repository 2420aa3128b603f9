"""Audit log queries"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from ...models_audit import AuditLog


class AuditRepository:
    """Data access layer for audit records"""

    @staticmethod
    def _filtered(
        db: Session,
        organization_id: int,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        actor_id: Optional[int] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Query:
        query = db.query(AuditLog).filter(AuditLog.organization_id == organization_id)
        if action:
            query = query.filter(AuditLog.action == action)
        if entity_type:
            query = query.filter(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            query = query.filter(AuditLog.entity_id == entity_id)
        if actor_id is not None:
            query = query.filter(AuditLog.actor_id == actor_id)
        if date_from:
            query = query.filter(AuditLog.created_at >= date_from)
        if date_to:
            query = query.filter(AuditLog.created_at <= date_to)
        return query

    @staticmethod
    def get_logs(db: Session, organization_id: int, limit: int = 50, offset: int = 0, **filters) -> list[AuditLog]:
        return (
            AuditRepository._filtered(db, organization_id, **filters)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    @staticmethod
    def count_logs(db: Session, organization_id: int, **filters) -> int:
        return AuditRepository._filtered(db, organization_id, **filters).count()

    @staticmethod
    def get_all_logs(db: Session, organization_id: int, **filters) -> list[AuditLog]:
        return (
            AuditRepository._filtered(db, organization_id, **filters)
            .order_by(AuditLog.created_at, AuditLog.id)
            .all()
        )

    @staticmethod
    def count_by_action(
        db: Session, organization_id: int, date_from: datetime, date_to: datetime
    ) -> dict[str, int]:
        rows = (
            db.query(AuditLog.action, func.count(AuditLog.id))
            .filter(
                AuditLog.organization_id == organization_id,
                AuditLog.created_at >= date_from,
                AuditLog.created_at <= date_to,
            )
            .group_by(AuditLog.action)
            .all()
        )
        return {action: count for action, count in rows}
