"""Lead repository - Database operations for leads"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ...models import Lead, LeadAssignmentRule, LeadScoringConfig, Organization, User
from .assignment import ACTIVE_LEAD_STATUSES, RESPONSE_SAMPLE_SIZE


class LeadRepository:
    """Repository for lead database operations"""

    @staticmethod
    def get_leads(
        db: Session,
        organization_id: int,
        status: Optional[str] = None,
        assigned_to: Optional[int] = None,
        source: Optional[str] = None,
        search: Optional[str] = None,
        lead_type: Optional[str] = None,
    ) -> list[Lead]:
        """Leads ordered by qualification score (unscored last), newest first"""
        query = db.query(Lead).filter(Lead.organization_id == organization_id)

        if status:
            query = query.filter(Lead.status == status)
        if assigned_to:
            query = query.filter(Lead.assigned_to == assigned_to)
        if source:
            query = query.filter(Lead.source_type == source)
        if lead_type:
            query = query.filter(Lead.lead_type == lead_type)
        if search:
            pattern = f"%{search.strip().lower()}%"
            query = query.filter(
                or_(
                    func.lower(Lead.first_name).like(pattern),
                    func.lower(Lead.last_name).like(pattern),
                    func.lower(Lead.email).like(pattern),
                )
            )

        return query.order_by(
            Lead.qualification_score.desc().nullslast(), Lead.created_at.desc(), Lead.id.desc()
        ).all()

    @staticmethod
    def get_lead_by_id(db: Session, lead_id: int, organization_id: int) -> Optional[Lead]:
        return db.query(Lead).filter(Lead.id == lead_id, Lead.organization_id == organization_id).first()

    @staticmethod
    def get_leads_by_ids(db: Session, lead_ids: list[int], organization_id: int) -> list[Lead]:
        return db.query(Lead).filter(Lead.id.in_(lead_ids), Lead.organization_id == organization_id).all()

    @staticmethod
    def find_duplicate_candidates(db: Session, organization_id: int, email: str, phone_digits: str) -> list[Lead]:
        """Leads sharing the email or ending with the same 10 phone digits"""
        conditions = [func.lower(Lead.email) == email.lower()]
        if len(phone_digits) == 10:
            conditions.append(Lead.phone.like(f"%{phone_digits}"))
        return (
            db.query(Lead)
            .filter(Lead.organization_id == organization_id, or_(*conditions))
            .order_by(Lead.created_at.asc(), Lead.id.asc())
            .all()
        )

    @staticmethod
    def create_lead(db: Session, organization_id: int, **lead_data) -> Lead:
        lead = Lead(organization_id=organization_id, **lead_data)
        db.add(lead)
        db.commit()
        db.refresh(lead)
        return lead

    @staticmethod
    def update_lead(db: Session, lead: Lead, **updates) -> Lead:
        for key, value in updates.items():
            if value is not None and hasattr(lead, key):
                setattr(lead, key, value)
        db.commit()
        db.refresh(lead)
        return lead

    @staticmethod
    def delete_lead(db: Session, lead: Lead) -> None:
        db.delete(lead)
        db.commit()

    @staticmethod
    def get_organization_by_slug(db: Session, slug: str) -> Optional[Organization]:
        return db.query(Organization).filter(Organization.slug == slug).first()

    # ========================================================================
    # ASSIGNMENT
    # ========================================================================

    @staticmethod
    def get_managers(db: Session, organization_id: int) -> list[User]:
        return (
            db.query(User)
            .filter(
                User.organization_id == organization_id,
                User.role == "manager",
                User.is_active == True,  # noqa: E712
            )
            .order_by(User.id)
            .all()
        )

    @staticmethod
    def get_manager(db: Session, manager_id: int, organization_id: int) -> Optional[User]:
        return (
            db.query(User)
            .filter(User.id == manager_id, User.organization_id == organization_id)
            .first()
        )

    @staticmethod
    def count_active_leads(db: Session, manager_id: int) -> int:
        return (
            db.query(func.count(Lead.id))
            .filter(Lead.assigned_to == manager_id, Lead.status.in_(ACTIVE_LEAD_STATUSES))
            .scalar()
        )

    @staticmethod
    def count_contacted_since(db: Session, manager_id: int, since: datetime) -> int:
        return (
            db.query(func.count(Lead.id))
            .filter(Lead.assigned_to == manager_id, Lead.last_contact_date >= since)
            .scalar()
        )

    @staticmethod
    def get_recent_contacted(db: Session, manager_id: int) -> list[Lead]:
        return (
            db.query(Lead)
            .filter(
                Lead.assigned_to == manager_id,
                Lead.assigned_at.isnot(None),
                Lead.last_contact_date.isnot(None),
            )
            .order_by(Lead.last_contact_date.desc())
            .limit(RESPONSE_SAMPLE_SIZE)
            .all()
        )

    @staticmethod
    def get_last_assigned_at(db: Session, manager_id: int) -> Optional[datetime]:
        return db.query(func.max(Lead.assigned_at)).filter(Lead.assigned_to == manager_id).scalar()

    @staticmethod
    def get_assignment_rules(db: Session, organization_id: int) -> list[LeadAssignmentRule]:
        return (
            db.query(LeadAssignmentRule)
            .filter(LeadAssignmentRule.organization_id == organization_id)
            .order_by(LeadAssignmentRule.priority)
            .all()
        )

    # ========================================================================
    # SCORING
    # ========================================================================

    @staticmethod
    def get_active_scoring_config(db: Session, organization_id: int) -> Optional[LeadScoringConfig]:
        return (
            db.query(LeadScoringConfig)
            .filter(
                LeadScoringConfig.organization_id == organization_id,
                LeadScoringConfig.is_active == True,  # noqa: E712
            )
            .order_by(LeadScoringConfig.version.desc())
            .first()
        )

    @staticmethod
    def get_latest_config_version(db: Session, organization_id: int, name: str) -> int:
        return (
            db.query(func.max(LeadScoringConfig.version))
            .filter(LeadScoringConfig.organization_id == organization_id, LeadScoringConfig.name == name)
            .scalar()
        ) or 0

    @staticmethod
    def get_scored_leads(db: Session, organization_id: int, since: Optional[datetime] = None) -> list[Lead]:
        query = db.query(Lead).filter(
            Lead.organization_id == organization_id,
            Lead.lead_type == "guard",
            Lead.qualification_score.isnot(None),
        )
        if since:
            query = query.filter(Lead.created_at >= since)
        return query.all()

    # ========================================================================
    # ANALYTICS
    # ========================================================================

    @staticmethod
    def count_by_status(db: Session, organization_id: int) -> dict[str, int]:
        rows = (
            db.query(Lead.status, func.count(Lead.id))
            .filter(Lead.organization_id == organization_id)
            .group_by(Lead.status)
            .all()
        )
        return dict(rows)

    @staticmethod
    def count_by_source(db: Session, organization_id: int) -> dict[str, int]:
        rows = (
            db.query(Lead.source_type, func.count(Lead.id))
            .filter(Lead.organization_id == organization_id)
            .group_by(Lead.source_type)
            .all()
        )
        return dict(rows)

    @staticmethod
    def average_score(db: Session, organization_id: int) -> Optional[float]:
        return (
            db.query(func.avg(Lead.qualification_score))
            .filter(Lead.organization_id == organization_id, Lead.qualification_score.isnot(None))
            .scalar()
        )

    @staticmethod
    def active_pipeline_value(db: Session, organization_id: int) -> float:
        return (
            db.query(func.coalesce(func.sum(Lead.estimated_value), 0))
            .filter(Lead.organization_id == organization_id, Lead.status.in_(ACTIVE_LEAD_STATUSES))
            .scalar()
        ) or 0.0
