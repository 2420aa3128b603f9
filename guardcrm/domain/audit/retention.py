"""
Data retention - per entity-type policies, audit log archival and purge jobs.

Policies with no organization are the platform defaults. A tenant may
override a policy; the override applies to that tenant's rows only. A run
scoped to a tenant touches that tenant's rows only, while the scheduled run
covers every tenant, each under its effective policy.

Each run writes a RetentionJob row. Audit records are copied into
archived_audit_logs before deletion when the policy asks for it; other entity
types are purged outright.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ...models import User
from ...models_audit import ArchivedAuditLog, AuditLog, RetentionJob, RetentionPolicy
from ...models_calendar import OAuthState
from ...models_notification import Notification

logger = logging.getLogger(__name__)

BATCH_SIZE = 1000

DEFAULT_POLICIES = {
    "audit_log": {"retention_days": 2555, "archive_before_delete": True},  # 7 years
    "notification": {"retention_days": 90, "archive_before_delete": False},
    "oauth_state": {"retention_days": 1, "archive_before_delete": False},
}

RETAINED_MODELS = {
    "audit_log": (AuditLog, AuditLog.created_at),
    "notification": (Notification, Notification.created_at),
    "oauth_state": (OAuthState, OAuthState.created_at),
}


def serialize_policy(policy: RetentionPolicy) -> dict:
    return {
        "entityType": policy.entity_type,
        "organizationId": policy.organization_id,
        "retentionDays": policy.retention_days,
        "archiveBeforeDelete": policy.archive_before_delete,
        "isActive": policy.is_active,
        "updatedAt": policy.updated_at,
    }


def serialize_job(job: RetentionJob) -> dict:
    return {
        "id": job.id,
        "organizationId": job.organization_id,
        "status": job.status,
        "triggeredBy": job.triggered_by,
        "recordsArchived": job.records_archived,
        "recordsDeleted": job.records_deleted,
        "details": job.details or {},
        "error": job.error,
        "startedAt": job.started_at,
        "finishedAt": job.finished_at,
    }


def _archive_payload(log: AuditLog) -> dict:
    return {
        "actor_id": log.actor_id,
        "action": log.action,
        "entity_type": log.entity_type,
        "entity_id": log.entity_id,
        "previous_state": log.previous_state,
        "new_state": log.new_state,
        "reason": log.reason,
        "ip_address": log.ip_address,
        "user_agent": log.user_agent,
        "signature": log.signature,
        "is_system_generated": log.is_system_generated,
    }


def tenant_clause(entity_type: str, organization_ids: list[int]):
    """Filter matching rows owned by any of the given tenants"""
    if entity_type == "oauth_state":
        owners = select(User.id).where(User.organization_id.in_(organization_ids))
        return OAuthState.user_id.in_(owners)
    model, _ = RETAINED_MODELS[entity_type]
    return model.organization_id.in_(organization_ids)


def outside_tenants_clause(entity_type: str, organization_ids: list[int]):
    """Filter matching rows not owned by any of the given tenants (None when the list is empty)"""
    if not organization_ids:
        return None
    owned = tenant_clause(entity_type, organization_ids)
    if entity_type == "audit_log":
        return or_(AuditLog.organization_id.is_(None), ~owned)
    return ~owned


class RetentionService:
    def __init__(self, db: Session):
        self.db = db

    def ensure_default_policies(self) -> list[RetentionPolicy]:
        """Platform default policies, created on first use"""
        existing = {
            p.entity_type: p
            for p in self.db.query(RetentionPolicy).filter(RetentionPolicy.organization_id.is_(None)).all()
        }
        for entity_type, defaults in DEFAULT_POLICIES.items():
            if entity_type not in existing:
                policy = RetentionPolicy(entity_type=entity_type, is_active=True, **defaults)
                self.db.add(policy)
                existing[entity_type] = policy
        self.db.commit()
        return list(existing.values())

    def _tenant_policy(self, entity_type: str, organization_id: int) -> Optional[RetentionPolicy]:
        return (
            self.db.query(RetentionPolicy)
            .filter(RetentionPolicy.entity_type == entity_type, RetentionPolicy.organization_id == organization_id)
            .first()
        )

    def get_policy(self, entity_type: str, organization_id: Optional[int] = None) -> RetentionPolicy:
        """Effective policy: the tenant override when one exists, otherwise the platform default"""
        self.ensure_default_policies()
        if organization_id is not None:
            override = self._tenant_policy(entity_type, organization_id)
            if override:
                return override
        policy = (
            self.db.query(RetentionPolicy)
            .filter(RetentionPolicy.entity_type == entity_type, RetentionPolicy.organization_id.is_(None))
            .first()
        )
        if not policy:
            raise HTTPException(status_code=404, detail=f"No retention policy for {entity_type}")
        return policy

    def update_policy(self, entity_type: str, updates: dict, organization_id: Optional[int] = None) -> RetentionPolicy:
        """
        Update a policy. With an organization the change is stored as that
        tenant's override (created from the platform default on first edit);
        without one it changes the platform default.
        """
        if updates.get("retentionDays") is not None and updates["retentionDays"] < 1:
            raise HTTPException(status_code=400, detail="retentionDays must be at least 1")

        policy = self.get_policy(entity_type, organization_id)
        if organization_id is not None and policy.organization_id is None:
            policy = RetentionPolicy(
                organization_id=organization_id,
                entity_type=entity_type,
                retention_days=policy.retention_days,
                archive_before_delete=policy.archive_before_delete,
                is_active=policy.is_active,
            )
            self.db.add(policy)

        if updates.get("retentionDays") is not None:
            policy.retention_days = updates["retentionDays"]
        if updates.get("archiveBeforeDelete") is not None:
            policy.archive_before_delete = updates["archiveBeforeDelete"]
        if updates.get("isActive") is not None:
            policy.is_active = updates["isActive"]
        policy.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(policy)
        scope = f"organization {organization_id}" if organization_id is not None else "platform"
        logger.info(f"📝 Retention policy {entity_type} ({scope}) updated: {policy.retention_days} days")
        return policy

    # ========================================================================
    # ARCHIVAL
    # ========================================================================

    def _purge_plan(self, entity_type: str, organization_id: Optional[int]) -> list[tuple]:
        """(policy, row filter) pairs covering every row the run may touch"""
        if organization_id is not None:
            return [(self.get_policy(entity_type, organization_id), tenant_clause(entity_type, [organization_id]))]

        default = self.get_policy(entity_type)
        overrides = (
            self.db.query(RetentionPolicy)
            .filter(RetentionPolicy.entity_type == entity_type, RetentionPolicy.organization_id.isnot(None))
            .all()
        )
        plan = [(o, tenant_clause(entity_type, [o.organization_id])) for o in overrides]
        plan.append((default, outside_tenants_clause(entity_type, [o.organization_id for o in overrides])))
        return plan

    def _purge(self, policy: RetentionPolicy, cutoff: datetime, scope=None) -> tuple[int, int]:
        model, created_column = RETAINED_MODELS[policy.entity_type]
        archived = deleted = 0
        while True:
            query = self.db.query(model).filter(created_column < cutoff)
            if scope is not None:
                query = query.filter(scope)
            rows = query.order_by(model.id).limit(BATCH_SIZE).all()
            if not rows:
                break
            for row in rows:
                if policy.archive_before_delete and model is AuditLog:
                    self.db.add(
                        ArchivedAuditLog(
                            original_id=row.id,
                            organization_id=row.organization_id,
                            payload=_archive_payload(row),
                            original_created_at=row.created_at,
                        )
                    )
                    archived += 1
                self.db.delete(row)
                deleted += 1
            self.db.commit()
        return archived, deleted

    def run_archival(
        self,
        now: Optional[datetime] = None,
        triggered_by: str = "system",
        organization_id: Optional[int] = None,
    ) -> RetentionJob:
        """Archive and purge expired rows; organization_id limits the run to one tenant"""
        now = now or datetime.utcnow()
        self.ensure_default_policies()

        job = RetentionJob(
            organization_id=organization_id,
            status="running",
            triggered_by=triggered_by,
            records_archived=0,
            records_deleted=0,
            started_at=now,
            details={},
        )
        self.db.add(job)
        self.db.commit()
        scope = f"organization {organization_id}" if organization_id is not None else "all tenants"
        logger.info(f"🗄️ Retention job {job.id} started by {triggered_by} for {scope}")

        details = {}
        try:
            for entity_type in RETAINED_MODELS:
                for policy, row_filter in self._purge_plan(entity_type, organization_id):
                    if not policy.is_active:
                        continue
                    cutoff = now - timedelta(days=policy.retention_days)
                    archived, deleted = self._purge(policy, cutoff, row_filter)
                    entry = details.setdefault(entity_type, {"cutoff": None, "archived": 0, "deleted": 0})
                    if organization_id is None and policy.organization_id is not None:
                        entry.setdefault("tenantCutoffs", {})[str(policy.organization_id)] = cutoff.isoformat()
                    else:
                        entry["cutoff"] = cutoff.isoformat()
                    entry["archived"] += archived
                    entry["deleted"] += deleted
                    job.records_archived += archived
                    job.records_deleted += deleted
        except Exception as e:
            self.db.rollback()
            job.status = "failed"
            job.error = str(e)
            job.details = details
            job.finished_at = datetime.utcnow()
            self.db.commit()
            logger.error(f"❌ Retention job {job.id} failed: {e}")
            raise

        job.status = "completed"
        job.details = details
        job.finished_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(job)
        logger.info(
            f"✅ Retention job {job.id} completed: {job.records_archived} archived, {job.records_deleted} deleted"
        )
        return job

    # ========================================================================
    # REPORTING
    # ========================================================================

    def get_jobs(self, limit: int = 10, organization_id: Optional[int] = None) -> list[RetentionJob]:
        query = self.db.query(RetentionJob)
        if organization_id is not None:
            query = query.filter(RetentionJob.organization_id == organization_id)
        return query.order_by(RetentionJob.started_at.desc(), RetentionJob.id.desc()).limit(limit).all()

    def get_stats(self, organization_id: Optional[int] = None) -> dict:
        active = self.db.query(func.count(AuditLog.id))
        archived = self.db.query(func.count(ArchivedAuditLog.id))
        oldest = self.db.query(func.min(AuditLog.created_at))
        if organization_id is not None:
            active = active.filter(AuditLog.organization_id == organization_id)
            archived = archived.filter(ArchivedAuditLog.organization_id == organization_id)
            oldest = oldest.filter(AuditLog.organization_id == organization_id)

        jobs = self.get_jobs(limit=1, organization_id=organization_id)
        last_job = jobs[0] if jobs else None
        return {
            "activeAuditLogs": active.scalar() or 0,
            "archivedAuditLogs": archived.scalar() or 0,
            "oldestActiveRecord": oldest.scalar(),
            "lastJob": serialize_job(last_job) if last_job else None,
            "policies": [serialize_policy(self.get_policy(t, organization_id)) for t in DEFAULT_POLICIES],
        }
