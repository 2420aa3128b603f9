"""Lead service - intake, deduplication, scoring, assignment and pipeline analytics"""

import logging
import random
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...email_service import EmailDeliveryError, send_lead_assigned_email
from ...models import Lead, LeadAssignmentRule, LeadScoringConfig, User
from ...utils.sanitization import sanitize_dict, sanitize_text
from ..audit.trail import record_event
from ..notifications.service import NotificationService
from .assignment import (
    AssignmentError,
    AssignmentRule,
    ManagerWorkload,
    availability_score,
    choose_assignment,
)
from .deduplication import find_duplicate, merge_into, phone_key
from .repository import LeadRepository
from .schemas import AssignmentRuleCreate, ContactRecord, LeadCreate, LeadUpdate, ScoringConfigCreate
from .scoring import ScoringError, analyze_accuracy, calculate_lead_score, get_default_config, validate_config

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("won", "lost")
BATCH_SCORE_CHUNK_SIZE = 10
ACCURACY_LOOKBACK_DAYS = 90


def validate_status_transition(current: str, new: str) -> None:
    """won and lost are terminal; a lost lead may only be reopened to prospect"""
    if current == new:
        return
    if current == "won":
        raise HTTPException(status_code=400, detail="Won leads cannot change status")
    if current == "lost" and new != "prospect":
        raise HTTPException(status_code=400, detail="Lost leads can only be reopened as prospect")


class LeadService:
    """Service layer for lead business logic"""

    def __init__(self, db: Session, rng: Optional[random.Random] = None):
        self.db = db
        self.repo = LeadRepository()
        self.rng = rng

    # ========================================================================
    # CRUD
    # ========================================================================

    def list_leads(
        self,
        user: User,
        status: Optional[str] = None,
        assigned_to: Optional[int] = None,
        source: Optional[str] = None,
        search: Optional[str] = None,
        lead_type: Optional[str] = None,
    ) -> list[Lead]:
        return self.repo.get_leads(self.db, user.organization_id, status, assigned_to, source, search, lead_type)

    def get_lead(self, lead_id: int, user: User) -> Lead:
        lead = self.repo.get_lead_by_id(self.db, lead_id, user.organization_id)
        if not lead:
            raise HTTPException(status_code=404, detail="Lead not found")
        return lead

    async def create_lead(self, organization_id: int, data: LeadCreate, actor: Optional[User] = None) -> dict:
        """
        Create a lead. A duplicate (by email or phone) is merged into the
        existing lead instead; new leads are scored and auto-assigned.
        """
        lead_data = {
            "lead_type": data.leadType,
            "first_name": sanitize_text(data.firstName, 100),
            "last_name": sanitize_text(data.lastName, 100),
            "email": data.email,
            "phone": data.phone,
            "source_type": data.sourceType,
            "source_details": sanitize_dict(data.sourceDetails) if data.sourceDetails else {},
            "service_type": data.serviceType,
            "message": sanitize_text(data.message),
            "estimated_value": data.estimatedValue,
            "years_experience": data.yearsExperience,
            "has_security_experience": data.hasSecurityExperience,
            "has_license": data.hasLicense,
            "transportation_available": data.transportationAvailable,
            "willing_to_relocate": data.willingToRelocate,
            "salary_expectations": data.salaryExpectations,
            "certifications": data.certifications,
            "preferred_locations": data.preferredLocations,
            "availability": data.availability,
            "referrer_id": data.referrerId,
        }

        candidates = self.repo.find_duplicate_candidates(
            self.db, organization_id, data.email, phone_key(data.phone)
        )
        match = find_duplicate(lead_data, candidates)
        if match.is_duplicate:
            existing = match.existing
            changes = merge_into(existing, lead_data)
            record_event(
                self.db,
                action="lead_merged",
                entity_type="lead",
                entity_id=existing.id,
                organization_id=organization_id,
                actor_id=actor.id if actor else None,
                new_state={k: v for k, v in changes.items() if k != "source_details"},
                reason=f"Duplicate detected by {match.match_type} ({match.confidence}%)",
                is_system_generated=actor is None,
                commit=False,
            )
            self.db.commit()
            self.db.refresh(existing)
            logger.info(
                f"🔄 Merged duplicate lead into {existing.id} via {match.match_type} ({match.confidence}%)"
            )
            return {
                "lead": existing,
                "merged": True,
                "matchType": match.match_type,
                "confidence": match.confidence,
                "assignment": None,
            }

        lead = self.repo.create_lead(
            self.db,
            organization_id,
            status="prospect",
            contact_count=0,
            converted_to_contract=False,
            converted_to_hire=False,
            **lead_data,
        )
        logger.info(f"🆕 Lead {lead.id} created in organization {organization_id} ({lead.lead_type})")

        if lead.lead_type == "guard":
            try:
                self.score_lead(lead)
            except ScoringError as e:
                logger.error(f"❌ Scoring failed for lead {lead.id}: {e}")

        assignment = None
        try:
            assignment = await self.auto_assign(lead)
        except HTTPException as e:
            logger.warning(f"⚠️ Lead {lead.id} left unassigned: {e.detail}")

        return {"lead": lead, "merged": False, "matchType": None, "confidence": None, "assignment": assignment}

    async def create_public_lead(self, slug: str, data: LeadCreate) -> dict:
        organization = self.repo.get_organization_by_slug(self.db, slug)
        if not organization:
            raise HTTPException(status_code=404, detail="Organization not found")
        return await self.create_lead(organization.id, data)

    def update_lead(self, lead_id: int, data: LeadUpdate, user: User) -> Lead:
        lead = self.get_lead(lead_id, user)
        fields = data.model_dump(exclude_unset=True)

        if "status" in fields and fields["status"] is not None:
            validate_status_transition(lead.status, fields["status"])

        mapping = {
            "firstName": "first_name",
            "lastName": "last_name",
            "email": "email",
            "phone": "phone",
            "status": "status",
            "serviceType": "service_type",
            "estimatedValue": "estimated_value",
            "nextFollowUpDate": "next_follow_up_date",
        }
        updates = {column: fields[key] for key, column in mapping.items() if key in fields}
        if "message" in fields:
            updates["message"] = sanitize_text(fields["message"])
        if "qualificationNotes" in fields:
            updates["qualification_notes"] = sanitize_text(fields["qualificationNotes"])

        previous_status = lead.status
        lead = self.repo.update_lead(self.db, lead, **updates)
        if lead.status != previous_status:
            record_event(
                self.db,
                action="lead_status_change",
                entity_type="lead",
                entity_id=lead.id,
                organization_id=user.organization_id,
                actor_id=user.id,
                previous_state={"status": previous_status},
                new_state={"status": lead.status},
            )
        return lead

    def delete_lead(self, lead_id: int, user: User) -> dict:
        lead = self.get_lead(lead_id, user)
        snapshot = {"email": lead.email, "status": lead.status, "leadType": lead.lead_type}
        self.repo.delete_lead(self.db, lead)
        record_event(
            self.db,
            action="lead_deleted",
            entity_type="lead",
            entity_id=lead_id,
            organization_id=user.organization_id,
            actor_id=user.id,
            previous_state=snapshot,
        )
        return {"message": "Lead deleted"}

    def record_contact(self, lead_id: int, data: ContactRecord, user: User) -> Lead:
        """Log a contact attempt; the first contact moves a prospect to contacted"""
        lead = self.get_lead(lead_id, user)
        if lead.status in TERMINAL_STATUSES:
            raise HTTPException(status_code=400, detail=f"Cannot record contact on a {lead.status} lead")

        lead.contact_count = (lead.contact_count or 0) + 1
        lead.last_contact_date = datetime.utcnow()
        if data.nextFollowUpDate:
            lead.next_follow_up_date = data.nextFollowUpDate
        if lead.status == "prospect":
            lead.status = "contacted"
        if data.notes:
            note = f"Contact ({lead.last_contact_date.date().isoformat()}): {sanitize_text(data.notes, 2000)}"
            lead.qualification_notes = f"{lead.qualification_notes}\n{note}" if lead.qualification_notes else note

        self.db.commit()
        self.db.refresh(lead)
        return lead

    # ========================================================================
    # SCORING
    # ========================================================================

    def _scoring_config(self, organization_id: int) -> Optional[dict]:
        config = self.repo.get_active_scoring_config(self.db, organization_id)
        if not config:
            return None
        return {
            "name": config.name,
            "version": config.version,
            "qualification_threshold": config.qualification_threshold,
            "high_priority_threshold": config.high_priority_threshold,
            "factors": config.factors or [],
        }

    def _history(self, organization_id: int) -> list[dict]:
        return [
            {
                "qualification_score": lead.qualification_score,
                "application_status": lead.application_status,
                "converted_to_hire": lead.converted_to_hire,
            }
            for lead in self.repo.get_scored_leads(self.db, organization_id)
        ]

    @staticmethod
    def _profile(lead: Lead) -> dict:
        return {
            "has_security_experience": lead.has_security_experience,
            "years_experience": lead.years_experience,
            "has_license": lead.has_license,
            "transportation_available": lead.transportation_available,
            "willing_to_relocate": lead.willing_to_relocate,
            "salary_expectations": lead.salary_expectations,
            "certifications": lead.certifications,
            "preferred_locations": lead.preferred_locations,
            "availability": lead.availability,
            "source_type": lead.source_type,
            "referrer_id": lead.referrer_id,
            "application_status": lead.application_status,
        }

    def score_lead(self, lead: Lead, config: Optional[dict] = None, history: Optional[list[dict]] = None) -> Lead:
        if config is None:
            config = self._scoring_config(lead.organization_id)
        if history is None:
            history = self._history(lead.organization_id)

        result = calculate_lead_score(self._profile(lead), config, history)
        lead.qualification_score = result.normalized_score
        lead.qualification_factors = result.factors_summary()
        lead.priority = result.priority
        lead.application_probability = result.application_probability
        lead.hire_probability = result.hire_probability
        self.db.commit()
        logger.info(
            f"📊 Lead {lead.id} scored {result.normalized_score} "
            f"({'qualified' if result.qualified else 'not qualified'}, {result.priority} priority)"
        )
        return lead

    def batch_score(self, lead_ids: list[int], user: User) -> dict:
        config = self._scoring_config(user.organization_id)
        history = self._history(user.organization_id)
        results, errors = [], []

        for start in range(0, len(lead_ids), BATCH_SCORE_CHUNK_SIZE):
            chunk = lead_ids[start : start + BATCH_SCORE_CHUNK_SIZE]
            found = {lead.id: lead for lead in self.repo.get_leads_by_ids(self.db, chunk, user.organization_id)}
            for lead_id in chunk:
                lead = found.get(lead_id)
                if not lead:
                    errors.append({"leadId": lead_id, "error": "Lead not found"})
                    continue
                try:
                    self.score_lead(lead, config, history)
                    results.append(
                        {"leadId": lead.id, "score": lead.qualification_score, "priority": lead.priority}
                    )
                except ScoringError as e:
                    self.db.rollback()
                    errors.append({"leadId": lead_id, "error": str(e)})

        return {"processed": len(results), "failed": len(errors), "results": results, "errors": errors}

    def get_scoring_accuracy(self, user: User, lookback_days: int = ACCURACY_LOOKBACK_DAYS) -> dict:
        since = datetime.utcnow() - timedelta(days=lookback_days)
        leads = self.repo.get_scored_leads(self.db, user.organization_id, since)
        try:
            return analyze_accuracy(
                [
                    {
                        "qualification_score": lead.qualification_score,
                        "application_status": lead.application_status,
                        "converted_to_hire": lead.converted_to_hire,
                    }
                    for lead in leads
                ]
            )
        except ScoringError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

    def create_scoring_config(self, data: ScoringConfigCreate, user: User) -> LeadScoringConfig:
        """New active config version; earlier versions with the same name are deactivated"""
        config = {
            "qualification_threshold": data.qualificationThreshold,
            "high_priority_threshold": data.highPriorityThreshold,
            "factors": data.factors,
        }
        try:
            validate_config(config)
        except ScoringError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        version = self.repo.get_latest_config_version(self.db, user.organization_id, data.name) + 1
        self.db.query(LeadScoringConfig).filter(
            LeadScoringConfig.organization_id == user.organization_id
        ).update({"is_active": False}, synchronize_session=False)

        record = LeadScoringConfig(
            organization_id=user.organization_id,
            name=data.name,
            version=version,
            is_active=True,
            qualification_threshold=data.qualificationThreshold,
            high_priority_threshold=data.highPriorityThreshold,
            factors=data.factors,
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        logger.info(f"📝 Scoring config '{data.name}' v{version} activated for organization {user.organization_id}")
        return record

    def get_active_scoring_config(self, user: User) -> dict:
        """Active config for the organization, or the built-in default when none is stored"""
        config = self._scoring_config(user.organization_id)
        if config is None:
            config = get_default_config()
            config["isDefault"] = True
        else:
            config["isDefault"] = False
        return config

    # ========================================================================
    # ASSIGNMENT
    # ========================================================================

    def get_manager_workloads(self, organization_id: int, now: Optional[datetime] = None) -> list[ManagerWorkload]:
        now = now or datetime.utcnow()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        workloads = []

        for manager in self.repo.get_managers(self.db, organization_id):
            active = self.repo.count_active_leads(self.db, manager.id)
            response_times = [
                max(0.0, (lead.last_contact_date - lead.assigned_at).total_seconds() / 60)
                for lead in self.repo.get_recent_contacted(self.db, manager.id)
            ]
            avg_response = sum(response_times) / len(response_times) if response_times else 0.0
            workloads.append(
                ManagerWorkload(
                    manager_id=manager.id,
                    name=manager.full_name,
                    email=manager.email,
                    active_leads=active,
                    contacted_today=self.repo.count_contacted_since(self.db, manager.id, start_of_day),
                    avg_response_minutes=round(avg_response, 1),
                    last_assigned=self.repo.get_last_assigned_at(self.db, manager.id),
                    availability_score=availability_score(active, avg_response),
                )
            )
        return workloads

    def _assignment_rules(self, organization_id: int) -> Optional[list[AssignmentRule]]:
        """Tenant rules, or None to use the built-in defaults"""
        stored = self.repo.get_assignment_rules(self.db, organization_id)
        if not stored:
            return None
        return [
            AssignmentRule(
                id=str(rule.id),
                name=rule.name,
                priority=rule.priority,
                assignment_method=rule.assignment_method,
                conditions=rule.conditions or {},
                eligible_managers=rule.eligible_managers or [],
                is_active=rule.is_active,
            )
            for rule in stored
        ]

    async def auto_assign(self, lead: Lead, now: Optional[datetime] = None) -> dict:
        if lead.assigned_to:
            raise HTTPException(status_code=409, detail="Lead is already assigned")

        now = now or datetime.utcnow()
        workloads = self.get_manager_workloads(lead.organization_id, now)
        lead_facts = {
            "service_type": lead.service_type,
            "source_type": lead.source_type,
            "estimated_value": lead.estimated_value,
        }
        try:
            manager, rule, reason = choose_assignment(
                lead_facts, workloads, self._assignment_rules(lead.organization_id), now, self.rng
            )
        except AssignmentError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e

        lead.assigned_to = manager.manager_id
        lead.assigned_at = now
        self.db.commit()
        logger.info(f"✅ Lead {lead.id} assigned to manager {manager.manager_id}: {reason}")

        await self._notify_manager(lead, manager.manager_id, manager.name, manager.email, reason)

        return {
            "assignedTo": manager.manager_id,
            "managerName": manager.name,
            "managerEmail": manager.email,
            "assignmentReason": reason,
            "ruleUsed": rule.name if rule else None,
            "assignmentMethod": rule.assignment_method if rule else "round_robin",
        }

    def _get_assignable_manager(self, manager_id: int, organization_id: int) -> User:
        manager = self.repo.get_manager(self.db, manager_id, organization_id)
        if not manager or manager.role != "manager" or not manager.is_active:
            raise HTTPException(status_code=400, detail="Assignee must be an active manager in this organization")
        return manager

    async def manual_assign(self, lead_id: int, manager_id: int, reason: str, user: User) -> Lead:
        lead = self.get_lead(lead_id, user)
        if lead.assigned_to:
            raise HTTPException(status_code=409, detail="Lead is already assigned; use reassign")
        manager = self._get_assignable_manager(manager_id, user.organization_id)
        return await self._assign(lead, manager, f"Manual assignment: {sanitize_text(reason, 500)}", user)

    async def reassign(self, lead_id: int, manager_id: int, reason: str, user: User) -> Lead:
        lead = self.get_lead(lead_id, user)
        manager = self._get_assignable_manager(manager_id, user.organization_id)
        if lead.assigned_to == manager.id:
            raise HTTPException(status_code=400, detail="Lead is already assigned to this manager")
        return await self._assign(lead, manager, f"Reassigned: {sanitize_text(reason, 500)}", user)

    async def _assign(self, lead: Lead, manager: User, note: str, user: User) -> Lead:
        previous = lead.assigned_to
        lead.assigned_to = manager.id
        lead.assigned_at = datetime.utcnow()
        lead.qualification_notes = f"{lead.qualification_notes}\n{note}" if lead.qualification_notes else note
        record_event(
            self.db,
            action="lead_assignment",
            entity_type="lead",
            entity_id=lead.id,
            organization_id=user.organization_id,
            actor_id=user.id,
            previous_state={"assignedTo": previous},
            new_state={"assignedTo": manager.id},
            reason=note,
            commit=False,
        )
        self.db.commit()
        self.db.refresh(lead)
        await self._notify_manager(lead, manager.id, manager.full_name, manager.email, note)
        return lead

    async def _notify_manager(self, lead: Lead, manager_id: int, name: str, email: str, reason: str) -> None:
        """In-app notification plus assignment email; failures are logged only"""
        lead_name = f"{lead.first_name} {lead.last_name}"
        try:
            await NotificationService(self.db).create(
                lead.organization_id,
                manager_id,
                title="New lead assigned",
                message=f"{lead_name} has been assigned to you. {reason}",
                category="leads",
                priority="high" if lead.priority == "high" else "normal",
                entity_type="lead",
                entity_id=lead.id,
            )
        except HTTPException as e:
            logger.warning(f"⚠️ Assignment notification failed for lead {lead.id}: {e.detail}")

        try:
            await send_lead_assigned_email(email, name, lead_name, lead.email, reason, lead.id)
        except EmailDeliveryError as e:
            logger.warning(f"⚠️ Assignment email for lead {lead.id} not sent: {e}")

    def list_assignment_rules(self, user: User) -> list[LeadAssignmentRule]:
        return self.repo.get_assignment_rules(self.db, user.organization_id)

    def create_assignment_rule(self, data: AssignmentRuleCreate, user: User) -> LeadAssignmentRule:
        conditions: dict = {}
        if data.serviceTypes:
            conditions["service_types"] = data.serviceTypes
        if data.sources:
            conditions["sources"] = list(data.sources)
        if data.valueMin is not None or data.valueMax is not None:
            conditions["value_range"] = {"min": data.valueMin, "max": data.valueMax}

        for manager_id in data.eligibleManagers:
            self._get_assignable_manager(manager_id, user.organization_id)

        rule = LeadAssignmentRule(
            organization_id=user.organization_id,
            name=data.name,
            priority=data.priority,
            is_active=data.isActive,
            conditions=conditions,
            assignment_method=data.assignmentMethod,
            eligible_managers=data.eligibleManagers,
        )
        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        return rule

    # ========================================================================
    # ANALYTICS
    # ========================================================================

    def get_pipeline_analytics(self, user: User) -> dict:
        organization_id = user.organization_id
        by_status = self.repo.count_by_status(self.db, organization_id)
        won = by_status.get("won", 0)
        lost = by_status.get("lost", 0)
        decided = won + lost
        average = self.repo.average_score(self.db, organization_id)

        return {
            "totalLeads": sum(by_status.values()),
            "byStatus": by_status,
            "conversionRate": round(won / decided * 100, 2) if decided else 0,
            "averageScore": round(average, 2) if average is not None else 0,
            "pipelineValue": float(self.repo.active_pipeline_value(self.db, organization_id)),
            "bySource": self.repo.count_by_source(self.db, organization_id),
        }
