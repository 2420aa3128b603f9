"""Contract service - Business logic for contracts, status automation and renewals"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...email_service import EmailDeliveryError, send_renewal_alert_email
from ...models import Lead, User
from ...models_contract import Contract, ContractRenewal, RenewalAlert
from ...utils.sanitization import sanitize_string, sanitize_text
from ..audit.trail import record_event
from ..hiring.stages import TransitionError
from .renewals import (
    RENEWAL_WINDOW_DAYS,
    add_one_year,
    assess_churn_risk,
    automatic_status,
    renewal_alert_dates,
    validate_contract_transition,
)
from .repository import ContractRepository
from .schemas import ContractCreate, ContractFromLead, ContractUpdate, RenewalUpdate

logger = logging.getLogger(__name__)


def serialize_contract(contract: Contract) -> dict:
    return {
        "id": contract.id,
        "leadId": contract.lead_id,
        "clientName": contract.client_name,
        "clientEmail": contract.client_email,
        "title": contract.title,
        "description": contract.description,
        "contractType": contract.contract_type,
        "status": contract.status,
        "startDate": contract.start_date,
        "endDate": contract.end_date,
        "contractValue": contract.contract_value,
        "autoRenew": bool(contract.auto_renew),
        "assignedManager": contract.assigned_manager,
        "createdAt": contract.created_at,
        "updatedAt": contract.updated_at,
    }


def serialize_renewal(renewal: ContractRenewal) -> dict:
    contract = renewal.original_contract
    return {
        "id": renewal.id,
        "contractId": renewal.original_contract_id,
        "contractTitle": contract.title if contract else None,
        "clientName": contract.client_name if contract else None,
        "status": renewal.status,
        "renewalType": renewal.renewal_type,
        "originalEndDate": renewal.original_end_date,
        "renewalStartDate": renewal.renewal_start_date,
        "renewalEndDate": renewal.renewal_end_date,
        "proposedValue": renewal.proposed_value,
        "churnRisk": renewal.churn_risk,
        "churnReasons": renewal.churn_reasons or [],
        "retentionStrategy": renewal.retention_strategy,
        "assignedManager": renewal.assigned_manager,
    }


class ContractService:
    """Service layer for contract business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ContractRepository()

    def get_contracts(
        self,
        user: User,
        status: Optional[str] = None,
        contract_type: Optional[str] = None,
        assigned_manager: Optional[int] = None,
    ) -> list[Contract]:
        return self.repo.get_contracts(self.db, user.organization_id, status, contract_type, assigned_manager)

    def get_contract(self, contract_id: int, user: User) -> Contract:
        contract = self.repo.get_contract_by_id(self.db, contract_id, user.organization_id)
        if not contract:
            raise HTTPException(status_code=404, detail="Contract not found")
        return contract

    def _check_manager(self, manager_id: Optional[int], user: User) -> None:
        if manager_id is None:
            return
        manager = (
            self.db.query(User)
            .filter(
                User.id == manager_id,
                User.organization_id == user.organization_id,
                User.role.in_(("admin", "manager")),
            )
            .first()
        )
        if not manager:
            raise HTTPException(status_code=400, detail="Assigned manager not found")

    def create_contract(self, data: ContractCreate, user: User, lead: Optional[Lead] = None) -> Contract:
        logger.info(f"📝 Creating contract for organization {user.organization_id}")
        self._check_manager(data.assignedManager, user)
        contract = self.repo.create_contract(
            self.db,
            user.organization_id,
            lead_id=lead.id if lead else None,
            client_name=sanitize_string(data.clientName),
            client_email=data.clientEmail,
            title=sanitize_string(data.title),
            description=sanitize_text(data.description) if data.description else None,
            contract_type=data.contractType,
            status="draft",
            start_date=data.startDate,
            end_date=data.endDate,
            contract_value=data.contractValue,
            auto_renew=data.autoRenew,
            assigned_manager=data.assignedManager or user.id,
        )
        logger.info(f"✅ Contract {contract.id} created")
        return contract

    def create_from_lead(self, lead_id: int, data: ContractFromLead, user: User) -> Contract:
        """Convert a won client lead; marks the lead converted_to_contract"""
        lead = (
            self.db.query(Lead)
            .filter(Lead.id == lead_id, Lead.organization_id == user.organization_id)
            .first()
        )
        if not lead:
            raise HTTPException(status_code=404, detail="Lead not found")
        if lead.status != "won":
            raise HTTPException(status_code=400, detail="Only won leads can be converted to contracts")
        if lead.converted_to_contract:
            raise HTTPException(status_code=409, detail="Lead has already been converted to a contract")

        contract = self.create_contract(
            ContractCreate(
                clientName=f"{lead.first_name} {lead.last_name}".strip(),
                clientEmail=lead.email,
                title=data.title,
                contractType=data.contractType,
                startDate=data.startDate,
                endDate=data.endDate,
                contractValue=data.contractValue if data.contractValue is not None else lead.estimated_value,
                autoRenew=data.autoRenew,
                assignedManager=lead.assigned_to,
            ),
            user,
            lead=lead,
        )
        lead.converted_to_contract = True
        record_event(
            self.db,
            action="lead_converted",
            entity_type="lead",
            entity_id=lead.id,
            organization_id=user.organization_id,
            actor_id=user.id,
            new_state={"contractId": contract.id},
        )
        return contract

    def update_contract(self, contract_id: int, data: ContractUpdate, user: User) -> Contract:
        contract = self.get_contract(contract_id, user)
        if contract.status in ("completed", "cancelled"):
            raise HTTPException(status_code=400, detail=f"Cannot edit a {contract.status} contract")
        self._check_manager(data.assignedManager, user)

        start = data.startDate or contract.start_date
        end = data.endDate or contract.end_date
        if start and end and end <= start:
            raise HTTPException(status_code=400, detail="endDate must be after startDate")

        return self.repo.update_contract(
            self.db,
            contract,
            client_name=sanitize_string(data.clientName) if data.clientName else None,
            client_email=data.clientEmail,
            title=sanitize_string(data.title) if data.title else None,
            description=sanitize_text(data.description) if data.description else None,
            contract_type=data.contractType,
            start_date=data.startDate,
            end_date=data.endDate,
            contract_value=data.contractValue,
            auto_renew=data.autoRenew,
            assigned_manager=data.assignedManager,
            updated_at=datetime.utcnow(),
        )

    def update_status(self, contract_id: int, new_status: str, user: User) -> Contract:
        contract = self.get_contract(contract_id, user)
        try:
            validate_contract_transition(contract.status, new_status)
        except TransitionError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        return self._set_status(contract, new_status, user.id)

    def _set_status(self, contract: Contract, new_status: str, actor_id: Optional[int]) -> Contract:
        previous = contract.status
        contract.status = new_status
        contract.updated_at = datetime.utcnow()
        record_event(
            self.db,
            action="contract_status_change",
            entity_type="contract",
            entity_id=contract.id,
            organization_id=contract.organization_id,
            actor_id=actor_id,
            previous_state={"status": previous},
            new_state={"status": new_status},
            is_system_generated=actor_id is None,
            commit=False,
        )
        self.db.commit()
        self.db.refresh(contract)
        logger.info(f"🔄 Contract {contract.id}: {previous} -> {new_status}")
        return contract

    def delete_contract(self, contract_id: int, user: User) -> dict:
        contract = self.get_contract(contract_id, user)
        if contract.status not in ("draft", "cancelled"):
            raise HTTPException(status_code=400, detail="Only draft or cancelled contracts can be deleted")
        self.repo.delete_contract(self.db, contract)
        return {"message": "Contract deleted"}

    # ========================================================================
    # AUTOMATION (daily jobs)
    # ========================================================================

    def run_status_automation(self, now: Optional[datetime] = None) -> dict:
        """signed -> active on start date, active -> completed after end date"""
        now = now or datetime.utcnow()
        activated = completed = 0
        for contract in self.repo.get_contracts_for_automation(self.db):
            target = automatic_status(contract, now)
            if not target:
                continue
            validate_contract_transition(contract.status, target, automatic=True)
            self._set_status(contract, target, None)
            if target == "active":
                activated += 1
            else:
                completed += 1
        logger.info(f"📊 Contract automation: {activated} activated, {completed} completed")
        return {"activated": activated, "completed": completed}

    def create_renewal_opportunities(self, now: Optional[datetime] = None) -> dict:
        now = now or datetime.utcnow()
        contracts = self.repo.get_expiring_contracts(self.db, now, now + timedelta(days=RENEWAL_WINDOW_DAYS))
        created = 0
        for contract in contracts:
            risk = assess_churn_risk(contract, now)
            renewal = ContractRenewal(
                organization_id=contract.organization_id,
                original_contract_id=contract.id,
                status="upcoming",
                renewal_type="automatic" if contract.auto_renew else "manual",
                original_end_date=contract.end_date,
                renewal_start_date=contract.end_date,
                renewal_end_date=add_one_year(contract.end_date),
                proposed_value=contract.contract_value or 0,
                churn_risk=risk.level,
                churn_reasons=risk.reasons,
                retention_strategy=risk.strategy,
                assigned_manager=contract.assigned_manager,
            )
            self.db.add(renewal)
            self.db.flush()
            for days_before, alert_date in renewal_alert_dates(contract.end_date, now):
                self.db.add(RenewalAlert(renewal_id=renewal.id, days_before=days_before, alert_date=alert_date))
            created += 1
        self.db.commit()
        if created:
            logger.info(f"🆕 Created {created} renewal opportunities")
        return {"created": created}

    async def send_due_renewal_alerts(self, now: Optional[datetime] = None) -> dict:
        """Email the assigned manager for every renewal alert whose date has arrived"""
        now = now or datetime.utcnow()
        sent = failed = 0
        for alert in self.repo.get_due_alerts(self.db, now):
            renewal = alert.renewal
            contract = renewal.original_contract
            manager = None
            if renewal.assigned_manager:
                manager = self.db.query(User).filter(User.id == renewal.assigned_manager).first()
            if not manager:
                alert.is_sent = True
                alert.sent_at = now
                logger.warning(f"⚠️ Renewal {renewal.id} has no assigned manager - alert skipped")
                continue
            try:
                await send_renewal_alert_email(
                    to=manager.email,
                    contract_title=contract.title,
                    client_name=contract.client_name,
                    days_before=alert.days_before,
                    end_date=renewal.original_end_date,
                    churn_risk=renewal.churn_risk,
                    retention_strategy=renewal.retention_strategy,
                )
                alert.is_sent = True
                alert.sent_at = now
                sent += 1
            except EmailDeliveryError as e:
                failed += 1
                logger.error(f"❌ Renewal alert {alert.id} failed: {e}")
        self.db.commit()
        return {"sent": sent, "failed": failed}

    # ========================================================================
    # RENEWALS & ANALYTICS
    # ========================================================================

    def get_renewal_pipeline(self, user: User, days_ahead: int = 180, now: Optional[datetime] = None) -> list[dict]:
        now = now or datetime.utcnow()
        renewals = self.repo.get_renewal_pipeline(self.db, user.organization_id, now + timedelta(days=days_ahead))
        return [serialize_renewal(r) for r in renewals]

    def update_renewal(self, renewal_id: int, data: RenewalUpdate, user: User) -> ContractRenewal:
        renewal = self.repo.get_renewal(self.db, renewal_id, user.organization_id)
        if not renewal:
            raise HTTPException(status_code=404, detail="Renewal not found")
        if renewal.status in ("renewed", "churned"):
            raise HTTPException(status_code=400, detail=f"Renewal is already {renewal.status}")
        if data.status:
            renewal.status = data.status
        if data.proposedValue is not None:
            renewal.proposed_value = data.proposedValue
        if data.retentionStrategy:
            renewal.retention_strategy = sanitize_text(data.retentionStrategy, 2000)
        renewal.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(renewal)
        return renewal

    def get_contract_analytics(self, user: User) -> dict:
        by_status = self.repo.count_by_status(self.db, user.organization_id)
        total_value, average_value = self.repo.active_value_stats(self.db, user.organization_id)
        renewals = self.repo.count_renewals_by_status(self.db, user.organization_id)
        decided = renewals.get("renewed", 0) + renewals.get("churned", 0)
        return {
            "totalContracts": sum(by_status.values()),
            "byStatus": by_status,
            "activeValue": round(total_value, 2),
            "averageActiveValue": round(average_value, 2),
            "renewalRate": round(renewals.get("renewed", 0) / decided * 100, 2) if decided else 0.0,
            "renewalsByStatus": renewals,
        }
