"""Shift repository - database access for shifts, workflow history, alerts and certifications"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ...models import User
from ...models_shift import GuardCertification, Shift, ShiftUrgencyAlert, ShiftWorkflowHistory
from .schemas import ShiftBoardFilters


class ShiftRepository:
    """Repository for shift database operations"""

    @staticmethod
    def get_shift(db: Session, shift_id: int, organization_id: int) -> Optional[Shift]:
        return db.query(Shift).filter(Shift.id == shift_id, Shift.organization_id == organization_id).first()

    @staticmethod
    def get_shifts(
        db: Session,
        organization_id: int,
        guard_id: Optional[int] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        include_archived: bool = False,
    ) -> list[Shift]:
        query = db.query(Shift).filter(Shift.organization_id == organization_id)
        if guard_id:
            query = query.filter(Shift.assigned_guard_id == guard_id)
        if date_from:
            query = query.filter(Shift.start_time >= date_from)
        if date_to:
            query = query.filter(Shift.start_time <= date_to)
        if not include_archived:
            query = query.filter(Shift.status != "archived")
        return query.order_by(Shift.start_time).all()

    @staticmethod
    def get_board_shifts(db: Session, organization_id: int, filters: ShiftBoardFilters) -> list[Shift]:
        query = db.query(Shift).filter(Shift.organization_id == organization_id, Shift.status != "archived")
        if filters.dateFrom:
            query = query.filter(Shift.start_time >= filters.dateFrom)
        if filters.dateTo:
            query = query.filter(Shift.start_time <= filters.dateTo)
        if filters.clientName:
            query = query.filter(func.lower(Shift.client_name).like(f"%{filters.clientName.strip().lower()}%"))
        if filters.siteName:
            query = query.filter(func.lower(Shift.site_name).like(f"%{filters.siteName.strip().lower()}%"))
        if filters.guardId:
            query = query.filter(Shift.assigned_guard_id == filters.guardId)
        if filters.statuses:
            query = query.filter(Shift.status.in_(filters.statuses))
        if filters.priorities:
            query = query.filter(Shift.priority.in_(filters.priorities))
        if filters.assignmentStatus == "assigned":
            query = query.filter(Shift.assigned_guard_id.isnot(None))
        elif filters.assignmentStatus == "unassigned":
            query = query.filter(Shift.assigned_guard_id.is_(None))
        if filters.urgentOnly:
            urgent_ids = select(ShiftUrgencyAlert.shift_id).where(ShiftUrgencyAlert.alert_status == "active")
            query = query.filter(Shift.id.in_(urgent_ids))
        return query.order_by(Shift.priority, Shift.start_time).all()

    @staticmethod
    def get_overlapping(db: Session, guard_id: int, start: datetime, end: datetime, exclude_id: int) -> list[Shift]:
        return (
            db.query(Shift)
            .filter(
                Shift.assigned_guard_id == guard_id,
                Shift.id != exclude_id,
                Shift.status != "archived",
                Shift.start_time < end,
                Shift.end_time > start,
            )
            .all()
        )

    @staticmethod
    def get_active_guards(db: Session, organization_id: int) -> list[User]:
        return (
            db.query(User)
            .filter(
                User.organization_id == organization_id,
                User.role == "guard",
                User.is_active == True,  # noqa: E712
            )
            .order_by(User.last_name, User.first_name)
            .all()
        )

    @staticmethod
    def get_guard(db: Session, guard_id: int, organization_id: int) -> Optional[User]:
        return (
            db.query(User)
            .filter(
                User.id == guard_id,
                User.organization_id == organization_id,
                User.role == "guard",
                User.is_active == True,  # noqa: E712
            )
            .first()
        )

    @staticmethod
    def get_managers(db: Session, organization_id: int) -> list[User]:
        return (
            db.query(User)
            .filter(
                User.organization_id == organization_id,
                User.role.in_(("admin", "manager")),
                User.is_active == True,  # noqa: E712
            )
            .all()
        )

    @staticmethod
    def get_recent_history(db: Session, organization_id: int, limit: int = 20) -> list[ShiftWorkflowHistory]:
        return (
            db.query(ShiftWorkflowHistory)
            .join(Shift, Shift.id == ShiftWorkflowHistory.shift_id)
            .filter(Shift.organization_id == organization_id)
            .order_by(ShiftWorkflowHistory.changed_at.desc(), ShiftWorkflowHistory.id.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def get_shift_history(db: Session, shift_id: int) -> list[ShiftWorkflowHistory]:
        return (
            db.query(ShiftWorkflowHistory)
            .filter(ShiftWorkflowHistory.shift_id == shift_id)
            .order_by(ShiftWorkflowHistory.changed_at.desc(), ShiftWorkflowHistory.id.desc())
            .all()
        )

    # Alerts

    @staticmethod
    def get_monitored_shifts(db: Session, now: datetime, until: datetime) -> list[Shift]:
        return (
            db.query(Shift)
            .filter(
                Shift.status.in_(("unassigned", "assigned", "confirmed")),
                Shift.start_time > now,
                Shift.start_time <= until,
            )
            .all()
        )

    @staticmethod
    def get_open_alerts(db: Session, shift_id: int) -> list[ShiftUrgencyAlert]:
        return (
            db.query(ShiftUrgencyAlert)
            .filter(
                ShiftUrgencyAlert.shift_id == shift_id,
                ShiftUrgencyAlert.alert_status.in_(("active", "acknowledged")),
            )
            .all()
        )

    @staticmethod
    def get_active_alerts(db: Session) -> list[ShiftUrgencyAlert]:
        return db.query(ShiftUrgencyAlert).filter(ShiftUrgencyAlert.alert_status == "active").all()

    @staticmethod
    def count_active_alerts(db: Session, organization_id: int) -> int:
        return (
            db.query(ShiftUrgencyAlert)
            .join(Shift, Shift.id == ShiftUrgencyAlert.shift_id)
            .filter(Shift.organization_id == organization_id, ShiftUrgencyAlert.alert_status == "active")
            .count()
        )

    @staticmethod
    def get_alerts(
        db: Session,
        organization_id: int,
        statuses: Optional[list[str]] = None,
        alert_types: Optional[list[str]] = None,
        priorities: Optional[list[str]] = None,
    ) -> list[ShiftUrgencyAlert]:
        query = (
            db.query(ShiftUrgencyAlert)
            .join(Shift, Shift.id == ShiftUrgencyAlert.shift_id)
            .filter(Shift.organization_id == organization_id)
        )
        if statuses:
            query = query.filter(ShiftUrgencyAlert.alert_status.in_(statuses))
        if alert_types:
            query = query.filter(ShiftUrgencyAlert.alert_type.in_(alert_types))
        if priorities:
            query = query.filter(ShiftUrgencyAlert.alert_priority.in_(priorities))
        return query.order_by(ShiftUrgencyAlert.hours_until_shift, ShiftUrgencyAlert.id).all()

    @staticmethod
    def get_alert(db: Session, alert_id: int, organization_id: int) -> Optional[ShiftUrgencyAlert]:
        return (
            db.query(ShiftUrgencyAlert)
            .join(Shift, Shift.id == ShiftUrgencyAlert.shift_id)
            .filter(ShiftUrgencyAlert.id == alert_id, Shift.organization_id == organization_id)
            .first()
        )

    # Certifications

    @staticmethod
    def get_certifications(db: Session, guard_ids: list[int]) -> list[GuardCertification]:
        if not guard_ids:
            return []
        return db.query(GuardCertification).filter(GuardCertification.guard_id.in_(guard_ids)).all()

    @staticmethod
    def get_certification(db: Session, certification_id: int, organization_id: int) -> Optional[GuardCertification]:
        return (
            db.query(GuardCertification)
            .join(User, User.id == GuardCertification.guard_id)
            .filter(GuardCertification.id == certification_id, User.organization_id == organization_id)
            .first()
        )

    @staticmethod
    def list_certifications(
        db: Session, organization_id: int, guard_id: Optional[int] = None
    ) -> list[GuardCertification]:
        query = (
            db.query(GuardCertification)
            .join(User, User.id == GuardCertification.guard_id)
            .filter(User.organization_id == organization_id)
        )
        if guard_id:
            query = query.filter(GuardCertification.guard_id == guard_id)
        return query.order_by(GuardCertification.expires_at).all()
