"""Contract repository - Database operations for contracts and renewals"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ...models_contract import Contract, ContractRenewal, RenewalAlert


class ContractRepository:
    """Repository for contract database operations"""

    @staticmethod
    def get_contracts(
        db: Session,
        organization_id: int,
        status: Optional[str] = None,
        contract_type: Optional[str] = None,
        assigned_manager: Optional[int] = None,
    ) -> list[Contract]:
        """Get all contracts for an organization with optional filters"""
        query = db.query(Contract).filter(Contract.organization_id == organization_id)
        if status:
            query = query.filter(Contract.status == status)
        if contract_type:
            query = query.filter(Contract.contract_type == contract_type)
        if assigned_manager:
            query = query.filter(Contract.assigned_manager == assigned_manager)
        return query.order_by(Contract.created_at.desc(), Contract.id.desc()).all()

    @staticmethod
    def get_contract_by_id(db: Session, contract_id: int, organization_id: int) -> Optional[Contract]:
        return (
            db.query(Contract)
            .filter(Contract.id == contract_id, Contract.organization_id == organization_id)
            .first()
        )

    @staticmethod
    def create_contract(db: Session, organization_id: int, **contract_data) -> Contract:
        contract = Contract(organization_id=organization_id, **contract_data)
        db.add(contract)
        db.commit()
        db.refresh(contract)
        return contract

    @staticmethod
    def update_contract(db: Session, contract: Contract, **updates) -> Contract:
        """Update a contract with provided fields"""
        for key, value in updates.items():
            if value is not None and hasattr(contract, key):
                setattr(contract, key, value)
        db.commit()
        db.refresh(contract)
        return contract

    @staticmethod
    def delete_contract(db: Session, contract: Contract) -> None:
        db.delete(contract)
        db.commit()

    @staticmethod
    def get_contracts_for_automation(db: Session) -> list[Contract]:
        return db.query(Contract).filter(Contract.status.in_(("signed", "active"))).all()

    @staticmethod
    def get_expiring_contracts(db: Session, now: datetime, until: datetime) -> list[Contract]:
        """Active contracts ending in (now, until] with no renewal opportunity yet"""
        has_renewal = select(ContractRenewal.original_contract_id)
        return (
            db.query(Contract)
            .filter(
                Contract.status == "active",
                Contract.end_date > now,
                Contract.end_date <= until,
                ~Contract.id.in_(has_renewal),
            )
            .all()
        )

    # Renewals

    @staticmethod
    def get_renewal(db: Session, renewal_id: int, organization_id: int) -> Optional[ContractRenewal]:
        return (
            db.query(ContractRenewal)
            .filter(ContractRenewal.id == renewal_id, ContractRenewal.organization_id == organization_id)
            .first()
        )

    @staticmethod
    def get_renewal_pipeline(db: Session, organization_id: int, until: datetime) -> list[ContractRenewal]:
        return (
            db.query(ContractRenewal)
            .filter(
                ContractRenewal.organization_id == organization_id,
                ContractRenewal.status.in_(("upcoming", "in_negotiation")),
                ContractRenewal.original_end_date <= until,
            )
            .order_by(ContractRenewal.original_end_date)
            .all()
        )

    @staticmethod
    def get_due_alerts(db: Session, now: datetime) -> list[RenewalAlert]:
        return (
            db.query(RenewalAlert)
            .join(ContractRenewal, ContractRenewal.id == RenewalAlert.renewal_id)
            .filter(
                RenewalAlert.is_sent == False,  # noqa: E712
                RenewalAlert.alert_date <= now,
                ContractRenewal.status.in_(("upcoming", "in_negotiation")),
            )
            .order_by(RenewalAlert.alert_date)
            .all()
        )

    # Analytics

    @staticmethod
    def count_by_status(db: Session, organization_id: int) -> dict[str, int]:
        rows = (
            db.query(Contract.status, func.count(Contract.id))
            .filter(Contract.organization_id == organization_id)
            .group_by(Contract.status)
            .all()
        )
        return {status: count for status, count in rows}

    @staticmethod
    def active_value_stats(db: Session, organization_id: int) -> tuple[float, float]:
        total, average = (
            db.query(func.sum(Contract.contract_value), func.avg(Contract.contract_value))
            .filter(Contract.organization_id == organization_id, Contract.status == "active")
            .one()
        )
        return float(total or 0), float(average or 0)

    @staticmethod
    def count_renewals_by_status(db: Session, organization_id: int) -> dict[str, int]:
        rows = (
            db.query(ContractRenewal.status, func.count(ContractRenewal.id))
            .filter(ContractRenewal.organization_id == organization_id)
            .group_by(ContractRenewal.status)
            .all()
        )
        return {status: count for status, count in rows}
